"""Read/write contract every ledger backend implements."""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Protocol, runtime_checkable

from voteledger.ledger.errors import LedgerError
from voteledger.models import AllocationLogEntry, CharacterRecord, PlayerRecord


class StoreError(LedgerError):
    """Backend call failed; the caller's prior snapshot stays authoritative."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@runtime_checkable
class LedgerStore(Protocol):
    # False for map-only backends that keep no character table.
    supports_characters: bool

    def list_players(self) -> List[PlayerRecord]: ...

    def list_characters(self) -> List[CharacterRecord]: ...

    def insert_player(self, name: str) -> str: ...

    def insert_character(self, name: str) -> str: ...

    def update_player_allocations(self, player_id: str, allocations: Mapping[str, int]) -> None: ...

    def allocate(self, player_id: str, character_id: str, amount: int) -> PlayerRecord: ...

    def append_allocation_log(self, player_name: str, character_name: str, amount: int) -> None: ...

    def list_recent_allocation_log(self, limit: int = 50) -> List[AllocationLogEntry]: ...


def clean_allocations(raw: Mapping[str, object] | None) -> Dict[str, int]:
    """Coerce a stored vote map to ``{str: int}``; null becomes empty."""

    if not raw:
        return {}
    return {str(key): int(value) for key, value in raw.items()}  # type: ignore[call-overload]
