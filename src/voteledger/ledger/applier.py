"""Validation and application of a single signed vote delta."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from voteledger.config import CREDIT_BUDGET

from .credits import consumed_credits, remaining_credits
from .errors import InsufficientCreditsError, LedgerValidationError


@dataclass(frozen=True)
class VoteOutcome:
    """Result of an accepted delta; ``allocations`` is a fresh map."""

    character_id: str
    delta: int
    previous_weight: int
    new_weight: int
    allocations: Dict[str, int]
    remaining: int
    withdrawal: bool


def is_withdrawal(current_weight: int, delta: int) -> bool:
    """True when ``delta`` points against the sign of the existing weight."""

    return delta * current_weight < 0


def apply_vote(
    allocations: Optional[Mapping[str, int]],
    character_id: str,
    delta: int,
) -> VoteOutcome:
    """Apply ``delta`` to ``character_id`` under the strict budget rule.

    A withdrawal is accepted whenever the resulting map still fits the
    budget, so one that stops at or before zero always passes, even with no
    credits left. Any other delta needs ``remaining >= abs(delta)``. Weights
    that land on zero are dropped from the returned map. The input mapping is
    never mutated.

    Raises ``LedgerValidationError`` for an empty character or a zero delta and
    ``InsufficientCreditsError`` when the budget would be exceeded.
    """

    if not character_id:
        raise LedgerValidationError("Character id cannot be empty")
    if delta == 0:
        raise LedgerValidationError("Vote delta must be non-zero")

    current = dict(allocations or {})
    current_weight = current.get(character_id, 0)
    new_weight = current_weight + delta
    remaining = remaining_credits(current)
    withdrawal = is_withdrawal(current_weight, delta)

    if withdrawal:
        # an overshoot past zero only pays for the magnitude it adds
        extra = abs(new_weight) - abs(current_weight)
        if consumed_credits(current) + extra > CREDIT_BUDGET:
            raise InsufficientCreditsError(remaining=remaining, requested=extra)
    elif remaining < abs(delta):
        raise InsufficientCreditsError(remaining=remaining, requested=abs(delta))

    if new_weight == 0:
        current.pop(character_id, None)
    else:
        current[character_id] = new_weight

    return VoteOutcome(
        character_id=character_id,
        delta=delta,
        previous_weight=current_weight,
        new_weight=new_weight,
        allocations=current,
        remaining=remaining_credits(current),
        withdrawal=withdrawal,
    )
