"""Exception hierarchy for ledger operations."""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for every failure the ledger reports to its caller."""


class LedgerValidationError(LedgerError, ValueError):
    """Request rejected before any store call was made."""


class NameValidationError(LedgerValidationError):
    def __init__(self, kind: str):
        super().__init__(f"{kind.capitalize()} name cannot be empty")
        self.kind = kind


class InsufficientCreditsError(LedgerError):
    def __init__(self, *, remaining: int, requested: int):
        super().__init__(
            f"Not enough credits: {requested} requested, {remaining} remaining"
        )
        self.remaining = remaining
        self.requested = requested


def require_name(value: str | None, kind: str) -> str:
    """Return the stripped name or raise ``NameValidationError``."""

    name = (value or "").strip()
    if not name:
        raise NameValidationError(kind)
    return name
