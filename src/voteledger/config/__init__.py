"""Configuration helpers for the ledger runtime."""

from .settings import CREDIT_BUDGET, LedgerSettings, load_settings

__all__ = [
    "CREDIT_BUDGET",
    "LedgerSettings",
    "load_settings",
]
