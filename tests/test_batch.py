import pytest

from voteledger.ledger import PartialWriteError, run_batch
from voteledger.ledger.batch import SKIPPED


def test_run_batch_success():
    written: list[str] = []
    batch = run_batch("seed", ["a", "b"], record_id=str, write=written.append)
    assert batch.ok
    assert batch.applied == ["a", "b"]
    assert batch.failed is None
    assert written == ["a", "b"]


def test_run_batch_stops_at_first_failure():
    written: list[str] = []

    def write(item: str) -> None:
        if item == "b":
            raise RuntimeError("boom")
        written.append(item)

    batch = run_batch("seed", ["a", "b", "c"], record_id=str, write=write)
    assert not batch.ok
    assert written == ["a"]
    assert batch.applied == ["a"]
    assert batch.failed is not None
    assert batch.failed.record_id == "b"
    assert batch.results[2].error == SKIPPED
    assert "record b" in batch.describe_failure()

    error = PartialWriteError(batch)
    assert "record b" in str(error)
    assert error.batch is batch


def test_run_batch_only_catches_requested_errors():
    def write(item: str) -> None:
        raise KeyError(item)

    with pytest.raises(KeyError):
        run_batch("seed", ["a"], record_id=str, write=write, catch=RuntimeError)
