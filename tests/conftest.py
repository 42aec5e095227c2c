import pytest

from voteledger.persistence import SQLiteLedgerStore


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store(tmp_path) -> SQLiteLedgerStore:
    return SQLiteLedgerStore(tmp_path / "ledger.sqlite")
