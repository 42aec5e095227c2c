"""Ledger stores: the contract, a local SQLite store and a hosted REST store."""

from __future__ import annotations

from voteledger.config import LedgerSettings

from .base import LedgerStore, StoreError, clean_allocations
from .rest import RestLedgerStore
from .sqlite import SQLiteLedgerStore


def open_store(settings: LedgerSettings) -> LedgerStore:
    """Instantiate the backend selected by ``settings.backend``."""

    if settings.backend == "rest":
        if not settings.rest_url:
            raise ValueError("rest backend requires a base URL")
        return RestLedgerStore(
            settings.rest_url,
            api_key=settings.rest_key,
            timeout=settings.timeout,
        )
    return SQLiteLedgerStore(settings.db_path)


__all__ = [
    "LedgerStore",
    "RestLedgerStore",
    "SQLiteLedgerStore",
    "StoreError",
    "clean_allocations",
    "open_store",
]
