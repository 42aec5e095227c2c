import asyncio
import threading

import pytest

from voteledger.ledger import (
    InsufficientCreditsError,
    LedgerValidationError,
    NameValidationError,
    PartialWriteError,
)
from voteledger.ledger.batch import SKIPPED
from voteledger.models import CharacterRecord
from voteledger.persistence import SQLiteLedgerStore, StoreError
from voteledger.session import LedgerSession, OperationCancelledError


class FlakyStore(SQLiteLedgerStore):
    """SQLite store that fails the next N calls of selected operations."""

    def __init__(self, db_path):
        super().__init__(db_path)
        self.failures: dict[str, int] = {}
        self.calls: dict[str, int] = {}

    def _maybe_fail(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1
        if self.failures.get(name, 0) > 0:
            self.failures[name] -= 1
            raise StoreError(f"{name} unavailable")

    def list_players(self):
        self._maybe_fail("list_players")
        return super().list_players()

    def update_player_allocations(self, player_id, allocations):
        self._maybe_fail("update_player_allocations")
        return super().update_player_allocations(player_id, allocations)

    def append_allocation_log(self, player_name, character_name, amount):
        self._maybe_fail("append_allocation_log")
        return super().append_allocation_log(player_name, character_name, amount)


class MapOnlyStore(SQLiteLedgerStore):
    """Characters exist only as keys in player maps; one player can be made to fail."""

    supports_characters = False

    def __init__(self, db_path):
        super().__init__(db_path)
        self.fail_for: str | None = None

    def list_characters(self):
        return []

    def insert_character(self, name):  # pragma: no cover
        raise AssertionError("map-only store has no character table")

    def update_player_allocations(self, player_id, allocations):
        if player_id == self.fail_for:
            raise StoreError(f"Error updating player {player_id}: timeout")
        return super().update_player_allocations(player_id, allocations)


class GatedStore(SQLiteLedgerStore):
    """Blocks allocation writes until the test releases the gate."""

    def __init__(self, db_path):
        super().__init__(db_path)
        self.entered = threading.Event()
        self.gate = threading.Event()
        self.writes: list[dict] = []

    def update_player_allocations(self, player_id, allocations):
        self.writes.append(dict(allocations))
        self.entered.set()
        self.gate.wait(timeout=5)
        return super().update_player_allocations(player_id, allocations)


class SlowReadStore(SQLiteLedgerStore):
    """Holds a player listing after taking it, so it lands late."""

    def __init__(self, db_path):
        super().__init__(db_path)
        self.hold_reads = False
        self.read_taken = threading.Event()
        self.release = threading.Event()

    def list_players(self):
        players = super().list_players()
        if self.hold_reads:
            self.read_taken.set()
            self.release.wait(timeout=5)
        return players


async def _wait_for(event: threading.Event) -> None:
    assert await asyncio.to_thread(event.wait, 5)


@pytest.fixture
def flaky(tmp_path) -> FlakyStore:
    return FlakyStore(tmp_path / "flaky.sqlite")


@pytest.mark.anyio
async def test_vote_scenario_round_trip(store):
    session = LedgerSession(store)
    player_id = await session.add_player("Penelope")
    await session.add_character("Colin")
    await session.add_character("Marina")
    colin, marina = (c.character_id for c in session.state.characters)
    session.select_player(player_id)

    outcome = await session.vote(colin, 30)
    assert outcome.allocations == {colin: 30}
    assert session.credits(player_id) == 70
    assert store.list_players()[0].allocations == {colin: 30}

    with pytest.raises(InsufficientCreditsError):
        await session.vote(marina, 80)
    assert session.credits(player_id) == 70
    assert session.state.selected_player.allocations == {colin: 30}
    assert session.state.notices[-1].kind == "budget"

    await session.vote(colin, -30)
    assert session.state.selected_player.allocations == {}
    assert session.credits(player_id) == 100

    log = await session.recent_log()
    assert [(entry.character_name, entry.amount) for entry in log] == [("Colin", -30), ("Colin", 30)]


@pytest.mark.anyio
async def test_empty_names_rejected_before_store_call(flaky):
    session = LedgerSession(flaky)
    with pytest.raises(NameValidationError):
        await session.add_player("  ")
    with pytest.raises(NameValidationError):
        await session.add_character("")
    assert flaky.calls == {}
    assert [notice.kind for notice in session.drain_notices()] == ["validation", "validation"]
    assert session.state.notices == []


@pytest.mark.anyio
async def test_vote_requires_selected_player(store):
    session = LedgerSession(store)
    with pytest.raises(LedgerValidationError):
        await session.vote("A", 1)


@pytest.mark.anyio
async def test_vote_for_unknown_character_rejected(store):
    session = LedgerSession(store)
    player_id = await session.add_player("Gregory")
    with pytest.raises(LedgerValidationError):
        await session.vote("ghost", 1, player_id=player_id)


@pytest.mark.anyio
async def test_reads_retry_once(flaky):
    flaky.insert_player("Eloise")
    session = LedgerSession(flaky)

    flaky.failures["list_players"] = 1
    await session.refresh()
    assert len(session.state.players) == 1
    assert flaky.calls["list_players"] == 2


@pytest.mark.anyio
async def test_read_failure_keeps_prior_snapshot(flaky):
    flaky.insert_player("Eloise")
    session = LedgerSession(flaky)
    await session.refresh()

    flaky.insert_player("Hyacinth")
    flaky.failures["list_players"] = 2
    with pytest.raises(StoreError):
        await session.refresh()
    assert [p.name for p in session.state.players] == ["Eloise"]
    assert session.state.notices[-1].kind == "store"


@pytest.mark.anyio
async def test_writes_are_not_retried_and_leave_state_alone(flaky):
    player_id = flaky.insert_player("Benedict")
    character_id = flaky.insert_character("Sophie")
    session = LedgerSession(flaky)
    await session.refresh()

    flaky.failures["update_player_allocations"] = 1
    with pytest.raises(StoreError):
        await session.vote(character_id, 10, player_id=player_id)
    assert flaky.calls["update_player_allocations"] == 1
    assert session.state.player(player_id).allocations == {}
    assert flaky.list_players()[0].allocations == {}
    assert session.state.notices[-1].kind == "store"


@pytest.mark.anyio
async def test_log_failure_is_reported_but_vote_stands(flaky):
    player_id = flaky.insert_player("Benedict")
    character_id = flaky.insert_character("Sophie")
    session = LedgerSession(flaky)
    await session.refresh()

    flaky.failures["append_allocation_log"] = 1
    await session.vote(character_id, 10, player_id=player_id)
    assert session.state.player(player_id).allocations == {character_id: 10}
    assert session.state.notices[-1].kind == "store"


@pytest.mark.anyio
async def test_map_only_character_fan_out(tmp_path):
    store = MapOnlyStore(tmp_path / "maponly.sqlite")
    first = store.insert_player("Anthony")
    store.update_player_allocations(first, {"Kate": 7})
    second = store.insert_player("Kate")
    session = LedgerSession(store)

    batch = await session.add_character("Kate")
    assert batch.ok
    assert batch.applied == [first, second]
    maps = {p.player_id: p.allocations for p in session.state.players}
    # existing votes are never overwritten by the registration marker
    assert maps[first] == {"Kate": 7}
    assert maps[second] == {"Kate": 0}
    assert [c.character_id for c in session.rankings()] == ["Kate"]


@pytest.mark.anyio
async def test_map_only_partial_failure_is_not_rolled_back(tmp_path):
    store = MapOnlyStore(tmp_path / "maponly.sqlite")
    ids = [store.insert_player(name) for name in ("Daphne", "Simon", "Violet")]
    store.fail_for = ids[1]
    session = LedgerSession(store)

    with pytest.raises(PartialWriteError) as excinfo:
        await session.add_character("Gregory")

    batch = excinfo.value.batch
    assert [result.ok for result in batch.results] == [True, False, False]
    assert batch.failed.record_id == ids[1]
    assert batch.results[2].error == SKIPPED
    assert ids[1] in str(excinfo.value)

    stored = {p.player_id: p.allocations for p in store.list_players()}
    assert stored[ids[0]] == {"Gregory": 0}
    assert stored[ids[1]] == {}
    assert stored[ids[2]] == {}
    assert session.state.notices[-1].kind == "partial"


@pytest.mark.anyio
async def test_votes_for_one_player_are_serialized(tmp_path):
    store = GatedStore(tmp_path / "gated.sqlite")
    player_id = store.insert_player("Francesca")
    a = store.insert_character("John")
    b = store.insert_character("Michael")
    session = LedgerSession(store)
    await session.refresh()

    first = asyncio.create_task(session.vote(a, 60, player_id=player_id))
    await _wait_for(store.entered)
    second = asyncio.create_task(session.vote(b, 60, player_id=player_id))
    await asyncio.sleep(0.05)
    assert len(store.writes) == 1

    store.gate.set()
    await first
    with pytest.raises(InsufficientCreditsError):
        await second
    assert len(store.writes) == 1
    assert session.state.player(player_id).allocations == {a: 60}


@pytest.mark.anyio
async def test_selection_change_cancels_in_flight_vote(tmp_path):
    store = GatedStore(tmp_path / "gated.sqlite")
    first = store.insert_player("Edwina")
    second = store.insert_player("Kate")
    character_id = store.insert_character("Anthony")
    session = LedgerSession(store)
    await session.refresh()
    session.select_player(first)

    task = asyncio.create_task(session.vote(character_id, 5))
    try:
        await _wait_for(store.entered)
        session.select_player(second)
        with pytest.raises(OperationCancelledError):
            await task
        assert session.state.player(first).allocations == {}
        assert session.state.selected_player_id == second
        assert session.state.notices[-1].kind == "cancelled"
    finally:
        store.gate.set()


@pytest.mark.anyio
async def test_select_unknown_player_rejected(store):
    session = LedgerSession(store)
    with pytest.raises(LedgerValidationError):
        session.select_player("nobody")
    assert session.state.selected_player_id is None


@pytest.mark.anyio
async def test_rankings_and_favorites_follow_state(store):
    session = LedgerSession(store)
    p1 = await session.add_player("P1")
    p2 = await session.add_player("P2")
    await session.add_character("A")
    await session.add_character("B")
    a, b = (c.character_id for c in session.state.characters)

    await session.allocate(a, 50, player_id=p1)
    await session.allocate(a, -20, player_id=p2)
    await session.allocate(b, 10, player_id=p2)

    ranking = session.rankings()
    assert [(item.name, item.group_score) for item in ranking] == [("A", 30), ("B", 10)]

    session.select_player(p2)
    assert session.toggle_sort() is True
    assert [item.name for item in session.rankings()] == ["B", "A"]

    favorites = {item.player_name: item for item in session.favorites()}
    assert favorites["P2"].favorite == b
    assert favorites["P2"].least_favorite == a
    assert session.state.characters == (
        CharacterRecord(character_id=a, name="A"),
        CharacterRecord(character_id=b, name="B"),
    )


@pytest.mark.anyio
async def test_late_refresh_does_not_lose_earlier_vote(tmp_path):
    store = SlowReadStore(tmp_path / "slow.sqlite")
    player_id = store.insert_player("Benedict")
    a = store.insert_character("Sophie")
    b = store.insert_character("Posy")
    session = LedgerSession(store)
    await session.refresh()

    store.hold_reads = True
    late_refresh = asyncio.create_task(session.refresh())
    try:
        await _wait_for(store.read_taken)
        store.hold_reads = False
        await session.vote(a, 10, player_id=player_id)
    finally:
        store.release.set()
    await late_refresh
    # the late refresh left the cached map without the first vote
    assert session.state.player(player_id).allocations == {}

    await session.vote(b, 20, player_id=player_id)
    assert store.list_players()[0].allocations == {a: 10, b: 20}
    assert session.state.player(player_id).allocations == {a: 10, b: 20}
