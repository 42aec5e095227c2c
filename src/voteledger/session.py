"""Application state and the round-trip sync between a ledger store and it."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional, Set, Tuple, TypeVar

from voteledger.ledger import (
    BatchResult,
    InsufficientCreditsError,
    LedgerError,
    LedgerValidationError,
    PartialWriteError,
    PlayerFavorites,
    RankedCharacter,
    RecordResult,
    VoteOutcome,
    apply_vote,
    player_favorites,
    rank_characters,
    remaining_credits,
    require_name,
    run_batch,
)
from voteledger.models import AllocationLogEntry, CharacterRecord, PlayerRecord
from voteledger.persistence import LedgerStore, StoreError


logger = logging.getLogger(__name__)

T = TypeVar("T")

NoticeKind = Literal["validation", "budget", "store", "partial", "cancelled"]


class OperationCancelledError(LedgerError):
    """An in-flight mutation was abandoned because the selection changed."""


@dataclass(frozen=True)
class Notice:
    kind: NoticeKind
    message: str


@dataclass
class LedgerState:
    """Everything the view layer renders from; owned by ``LedgerSession``."""

    players: Tuple[PlayerRecord, ...] = ()
    characters: Tuple[CharacterRecord, ...] = ()
    selected_player_id: Optional[str] = None
    sort_by_own_score: bool = False
    notices: List[Notice] = field(default_factory=list)

    def player(self, player_id: str) -> Optional[PlayerRecord]:
        for player in self.players:
            if player.player_id == player_id:
                return player
        return None

    @property
    def selected_player(self) -> Optional[PlayerRecord]:
        if self.selected_player_id is None:
            return None
        return self.player(self.selected_player_id)


def _notice_kind(exc: BaseException) -> NoticeKind:
    if isinstance(exc, InsufficientCreditsError):
        return "budget"
    if isinstance(exc, PartialWriteError):
        return "partial"
    if isinstance(exc, OperationCancelledError):
        return "cancelled"
    if isinstance(exc, LedgerValidationError):
        return "validation"
    return "store"


class LedgerSession:
    """Single-user session over a ledger store.

    Writes are never optimistic: the store call must succeed before the local
    snapshot changes, and the snapshot is re-fetched afterwards. Mutations for
    one player run one at a time. Reads get a single retry; writes get none.
    """

    def __init__(self, store: LedgerStore, *, log_limit: int = 50):
        self.store = store
        self.log_limit = log_limit
        self.state = LedgerState()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._inflight: Dict[str, Set[asyncio.Task[Any]]] = {}
        self._cancelled: Set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Error reporting
    # ------------------------------------------------------------------

    def _report(self, exc: LedgerError) -> None:
        kind = _notice_kind(exc)
        if kind == "store" or kind == "partial":
            logger.error("Ledger %s error: %s", kind, exc)
        else:
            logger.info("Ledger %s rejection: %s", kind, exc)
        self.state.notices.append(Notice(kind=kind, message=str(exc)))

    def drain_notices(self) -> List[Notice]:
        notices, self.state.notices = self.state.notices, []
        return notices

    # ------------------------------------------------------------------
    # Store round trips
    # ------------------------------------------------------------------

    async def _read(self, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except StoreError as exc:
            logger.warning("Store read failed, retrying once: %s", exc)
            return await asyncio.to_thread(func, *args)

    async def _write(self, func: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(func, *args)

    async def refresh(self) -> LedgerState:
        """Re-fetch players and characters; the old snapshot survives failure."""

        try:
            players = await self._read(self.store.list_players)
            characters = await self._read(self.store.list_characters)
        except StoreError as exc:
            self._report(exc)
            raise
        self.state.players = tuple(players)
        self.state.characters = tuple(characters)
        if self.state.selected_player_id and self.state.selected_player is None:
            self.state.selected_player_id = None
        return self.state

    async def _refresh_after_write(self) -> None:
        # the write already landed; a failed re-fetch is reported, not raised
        try:
            await self.refresh()
        except StoreError:
            pass

    # ------------------------------------------------------------------
    # Selection and view options
    # ------------------------------------------------------------------

    def select_player(self, player_id: Optional[str]) -> None:
        """Change the selected player, cancelling the previous one's writes."""

        previous = self.state.selected_player_id
        if previous is not None and previous != player_id:
            for task in self._inflight.get(previous, set()):
                if not task.done():
                    self._cancelled.add(task)
                    task.cancel()
        if player_id is not None and self.state.player(player_id) is None:
            exc = LedgerValidationError(f"Player {player_id} not found")
            self._report(exc)
            raise exc
        self.state.selected_player_id = player_id

    def toggle_sort(self) -> bool:
        self.state.sort_by_own_score = not self.state.sort_by_own_score
        return self.state.sort_by_own_score

    # ------------------------------------------------------------------
    # Admin actions
    # ------------------------------------------------------------------

    async def add_player(self, name: str) -> str:
        try:
            name = require_name(name, "player")
            player_id = await self._write(self.store.insert_player, name)
        except LedgerError as exc:
            self._report(exc)
            raise
        logger.info("Added player %s (%s)", name, player_id)
        await self._refresh_after_write()
        return player_id

    async def add_character(self, name: str) -> BatchResult:
        """Register a character.

        Stores with a character table get a single insert. Map-only stores get
        a zero-weight key written into every player's map, one player at a
        time; a failure part-way raises ``PartialWriteError`` and leaves the
        players already written as they are.
        """

        try:
            name = require_name(name, "character")
            if self.store.supports_characters:
                character_id = await self._write(self.store.insert_character, name)
                batch = BatchResult(
                    operation=f"add character {name!r}",
                    results=[RecordResult(record_id=character_id, ok=True)],
                )
            else:
                players = await self._read(self.store.list_players)
                batch = await self._write(self._seed_character, name, players)
                if not batch.ok:
                    raise PartialWriteError(batch)
        except LedgerError as exc:
            self._report(exc)
            if isinstance(exc, PartialWriteError):
                await self._refresh_after_write()
            raise
        logger.info("Added character %s", name)
        await self._refresh_after_write()
        return batch

    def _seed_character(self, name: str, players: List[PlayerRecord]) -> BatchResult:
        def write(player: PlayerRecord) -> None:
            allocations = dict(player.allocations)
            allocations.setdefault(name, 0)
            self.store.update_player_allocations(player.player_id, allocations)

        return run_batch(
            f"add character {name!r}",
            players,
            record_id=lambda player: player.player_id,
            write=write,
            catch=StoreError,
        )

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    def _lock_for(self, player_id: str) -> asyncio.Lock:
        return self._locks.setdefault(player_id, asyncio.Lock())

    async def _run_tracked(self, player_id: str, coro: Any) -> Any:
        task = asyncio.create_task(coro)
        tasks = self._inflight.setdefault(player_id, set())
        tasks.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            if task not in self._cancelled:
                raise
            exc = OperationCancelledError(
                f"Operation for player {player_id} cancelled by selection change"
            )
            self._report(exc)
            raise exc from None
        finally:
            tasks.discard(task)
            self._cancelled.discard(task)

    def _resolve_player_id(self, player_id: Optional[str]) -> str:
        resolved = player_id or self.state.selected_player_id
        if not resolved:
            exc = LedgerValidationError("No player selected")
            self._report(exc)
            raise exc
        return resolved

    async def vote(self, character_id: str, delta: int, *, player_id: Optional[str] = None) -> VoteOutcome:
        """Client-side read-modify-write of one player's vote map."""

        resolved = self._resolve_player_id(player_id)
        return await self._run_tracked(resolved, self._vote(resolved, character_id, delta))

    async def _vote(self, player_id: str, character_id: str, delta: int) -> VoteOutcome:
        async with self._lock_for(player_id):
            try:
                player = await self._fetch_player(player_id)
                self._require_character(character_id)
                outcome = apply_vote(player.allocations, character_id, delta)
                await self._write(self.store.update_player_allocations, player_id, outcome.allocations)
            except LedgerError as exc:
                self._report(exc)
                raise
            self._mirror(player.model_copy(update={"allocations": outcome.allocations}))
            await self._log_allocation(player.name, character_id, delta)
            await self._refresh_after_write()
            return outcome

    async def allocate(self, character_id: str, amount: int, *, player_id: Optional[str] = None) -> PlayerRecord:
        """Server-validated allocation; the store applies the budget rule."""

        resolved = self._resolve_player_id(player_id)
        return await self._run_tracked(resolved, self._allocate(resolved, character_id, amount))

    async def _allocate(self, player_id: str, character_id: str, amount: int) -> PlayerRecord:
        async with self._lock_for(player_id):
            try:
                updated = await self._write(self.store.allocate, player_id, character_id, amount)
            except LedgerError as exc:
                self._report(exc)
                raise
            self._mirror(updated)
            await self._refresh_after_write()
            return updated

    async def _fetch_player(self, player_id: str) -> PlayerRecord:
        # the cached snapshot may predate this player's last write
        players = await self._read(self.store.list_players)
        player = next((p for p in players if p.player_id == player_id), None)
        if player is None:
            raise LedgerValidationError(f"Player {player_id} not found")
        self._mirror(player)
        return player

    def _require_character(self, character_id: str) -> None:
        if not self.store.supports_characters or not character_id:
            return
        known = any(c.character_id == character_id for c in self.state.characters)
        if not known and not any(character_id in p.allocations for p in self.state.players):
            raise LedgerValidationError(f"Character {character_id} not found")

    def _mirror(self, updated: PlayerRecord) -> None:
        self.state.players = tuple(
            updated if player.player_id == updated.player_id else player
            for player in self.state.players
        )

    async def _log_allocation(self, player_name: str, character_id: str, amount: int) -> None:
        character_name = next(
            (c.name for c in self.state.characters if c.character_id == character_id),
            character_id,
        )
        try:
            await self._write(self.store.append_allocation_log, player_name, character_name, amount)
        except StoreError as exc:
            # the vote itself is already persisted
            self._report(exc)

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def credits(self, player_id: str) -> int:
        player = self.state.player(player_id)
        return remaining_credits(player.allocations if player else None)

    def rankings(
        self,
        *,
        player_id: Optional[str] = None,
        sort_by_own: Optional[bool] = None,
    ) -> List[RankedCharacter]:
        selected = self.state.player(player_id) if player_id else self.state.selected_player
        return rank_characters(
            self.state.players,
            self.state.characters,
            selected=selected,
            sort_by_own=self.state.sort_by_own_score if sort_by_own is None else sort_by_own,
        )

    def favorites(self) -> List[PlayerFavorites]:
        return [player_favorites(player) for player in self.state.players]

    async def recent_log(self, limit: Optional[int] = None) -> List[AllocationLogEntry]:
        limit = min(limit or self.log_limit, self.log_limit)
        try:
            return await self._read(self.store.list_recent_allocation_log, limit)
        except StoreError as exc:
            self._report(exc)
            raise


__all__ = [
    "LedgerSession",
    "LedgerState",
    "Notice",
    "OperationCancelledError",
]
