"""Pure ledger rules: credit math, vote application and aggregation."""

from .aggregate import (
    NO_FAVORITE,
    PlayerFavorites,
    RankedCharacter,
    discover_characters,
    player_favorites,
    rank_characters,
    total_score,
)
from .applier import VoteOutcome, apply_vote, is_withdrawal
from .batch import BatchResult, PartialWriteError, RecordResult, run_batch
from .credits import consumed_credits, remaining_credits
from .errors import (
    InsufficientCreditsError,
    LedgerError,
    LedgerValidationError,
    NameValidationError,
    require_name,
)

__all__ = [
    "NO_FAVORITE",
    "PlayerFavorites",
    "RankedCharacter",
    "discover_characters",
    "player_favorites",
    "rank_characters",
    "total_score",
    "VoteOutcome",
    "apply_vote",
    "is_withdrawal",
    "BatchResult",
    "PartialWriteError",
    "RecordResult",
    "run_batch",
    "consumed_credits",
    "remaining_credits",
    "InsufficientCreditsError",
    "LedgerError",
    "LedgerValidationError",
    "NameValidationError",
    "require_name",
]
