"""Credit-budgeted voting ledger with derived character rankings."""

__version__ = "0.1.0"
