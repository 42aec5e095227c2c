"""Per-record result tracking for fan-out writes that are not atomic."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, TypeVar

from .errors import LedgerError


T = TypeVar("T")

SKIPPED = "skipped after earlier failure"


@dataclass(frozen=True)
class RecordResult:
    record_id: str
    ok: bool
    error: Optional[str] = None


@dataclass
class BatchResult:
    """Outcome of a sequence of independent per-record writes.

    Records before a failure stay written; records after it are reported as
    skipped. Nothing is rolled back.
    """

    operation: str
    results: List[RecordResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(result.ok for result in self.results)

    @property
    def applied(self) -> List[str]:
        return [result.record_id for result in self.results if result.ok]

    @property
    def failed(self) -> Optional[RecordResult]:
        for result in self.results:
            if not result.ok and result.error != SKIPPED:
                return result
        return None

    def describe_failure(self) -> str:
        failed = self.failed
        if failed is None:
            return f"{self.operation} succeeded"
        return (
            f"{self.operation} failed at record {failed.record_id}: {failed.error} "
            f"({len(self.applied)} record(s) already applied)"
        )


def run_batch(
    operation: str,
    items: Iterable[T],
    *,
    record_id: Callable[[T], str],
    write: Callable[[T], None],
    catch: type[Exception] | tuple[type[Exception], ...] = Exception,
) -> BatchResult:
    """Apply ``write`` to each item in order, stopping at the first failure."""

    batch = BatchResult(operation=operation)
    stopped = False
    for item in items:
        key = record_id(item)
        if stopped:
            batch.results.append(RecordResult(record_id=key, ok=False, error=SKIPPED))
            continue
        try:
            write(item)
        except catch as exc:
            batch.results.append(RecordResult(record_id=key, ok=False, error=str(exc)))
            stopped = True
        else:
            batch.results.append(RecordResult(record_id=key, ok=True))
    return batch


class PartialWriteError(LedgerError):
    """Raised when a fan-out write stops part-way; carries the batch."""

    def __init__(self, batch: BatchResult):
        super().__init__(batch.describe_failure())
        self.batch = batch
