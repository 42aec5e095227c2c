"""Credit budget arithmetic."""

from __future__ import annotations

from typing import Mapping, Optional

from voteledger.config import CREDIT_BUDGET


def consumed_credits(allocations: Optional[Mapping[str, int]]) -> int:
    return sum(abs(weight) for weight in (allocations or {}).values())


def remaining_credits(allocations: Optional[Mapping[str, int]]) -> int:
    """Budget left after the player's current allocations.

    A missing or empty map consumes nothing, so the full budget is available.
    """

    return CREDIT_BUDGET - consumed_credits(allocations)
