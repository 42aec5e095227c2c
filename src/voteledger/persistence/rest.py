"""Ledger store backed by a hosted PostgREST-style row API."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, NoReturn, Optional

import httpx

from voteledger.ledger.applier import apply_vote
from voteledger.ledger.errors import LedgerValidationError, require_name
from voteledger.models import AllocationLogEntry, CharacterRecord, PlayerRecord

from .base import StoreError, clean_allocations


logger = logging.getLogger(__name__)


class RestLedgerStore:
    """Talks to ``/rest/v1/<table>`` endpoints with an API key.

    Players live in ``players_table`` as ``{id, player_name, votes}`` rows.
    When ``characters_table`` is ``None`` the backend is map-only: characters
    exist only as keys inside player vote maps.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        players_table: str = "player_votes",
        characters_table: Optional[str] = "characters",
        log_table: str = "allocation_log",
        allocate_function: str = "allocate_credits",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/") + "/rest/v1",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self.players_table = players_table
        self.characters_table = characters_table
        self.log_table = log_table
        self.allocate_function = allocate_function

    @property
    def supports_characters(self) -> bool:
        return self.characters_table is not None

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, *, context: str, **kwargs: Any) -> Any:
        try:
            resp = self._client.request(method, path, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StoreError(
                f"{context}: {exc.response.status_code} {exc.response.text}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise StoreError(f"{context}: {exc}") from exc
        if not resp.content:
            return None
        return resp.json()

    def list_players(self) -> List[PlayerRecord]:
        rows = self._request(
            "GET",
            f"/{self.players_table}",
            params={"select": "*", "order": "id"},
            context="Error fetching players",
        )
        return [self._row_to_player(row) for row in rows or []]

    def list_characters(self) -> List[CharacterRecord]:
        if self.characters_table is None:
            return []
        rows = self._request(
            "GET",
            f"/{self.characters_table}",
            params={"select": "id,name", "order": "id"},
            context="Error fetching characters",
        )
        return [CharacterRecord(character_id=str(row["id"]), name=row["name"]) for row in rows or []]

    def insert_player(self, name: str) -> str:
        rows = self._request(
            "POST",
            f"/{self.players_table}",
            json=[{"player_name": require_name(name, "player"), "votes": {}}],
            headers={"Prefer": "return=representation"},
            context="Error adding player",
        )
        return self._first_id(rows, "player")

    def insert_character(self, name: str) -> str:
        if self.characters_table is None:
            raise StoreError("Backend has no character table")
        rows = self._request(
            "POST",
            f"/{self.characters_table}",
            json=[{"name": require_name(name, "character")}],
            headers={"Prefer": "return=representation"},
            context="Error adding character",
        )
        return self._first_id(rows, "character")

    def update_player_allocations(self, player_id: str, allocations: Mapping[str, int]) -> None:
        self._request(
            "PATCH",
            f"/{self.players_table}",
            params={"id": f"eq.{player_id}"},
            json={"votes": dict(allocations)},
            context=f"Error updating player {player_id}",
        )

    def allocate(self, player_id: str, character_id: str, amount: int) -> PlayerRecord:
        """Call the server-side procedure that validates and logs atomically.

        A 4xx from the procedure means the allocation was rejected; the player
        is re-read and the delta checked locally to raise the matching ledger
        error, as the SQLite store would.
        """

        try:
            self._request(
                "POST",
                f"/rpc/{self.allocate_function}",
                json={"p_player_id": player_id, "p_character_id": character_id, "p_amount": amount},
                context=f"Error allocating for player {player_id}",
            )
        except StoreError as exc:
            if exc.status_code is None or exc.status_code >= 500:
                raise
            self._raise_rejection(player_id, character_id, amount, exc)
        player = self._fetch_player(player_id)
        if player is None:
            raise StoreError(f"Player {player_id} not found after allocation")
        return player

    def _fetch_player(self, player_id: str) -> Optional[PlayerRecord]:
        rows = self._request(
            "GET",
            f"/{self.players_table}",
            params={"select": "*", "id": f"eq.{player_id}"},
            context=f"Error fetching player {player_id}",
        )
        return self._row_to_player(rows[0]) if rows else None

    def _raise_rejection(self, player_id: str, character_id: str, amount: int, exc: StoreError) -> NoReturn:
        player = self._fetch_player(player_id)
        if player is None:
            raise LedgerValidationError(f"Player {player_id} not found") from exc
        # raises InsufficientCreditsError or LedgerValidationError when the
        # local rule agrees with the rejection
        apply_vote(player.allocations, character_id, amount)
        raise LedgerValidationError(f"Allocation rejected: {exc}") from exc

    def append_allocation_log(self, player_name: str, character_name: str, amount: int) -> None:
        self._request(
            "POST",
            f"/{self.log_table}",
            json=[{"player_name": player_name, "character_name": character_name, "amount": amount}],
            context="Error writing allocation log",
        )

    def list_recent_allocation_log(self, limit: int = 50) -> List[AllocationLogEntry]:
        rows = self._request(
            "GET",
            f"/{self.log_table}",
            params={
                "select": "player_name,character_name,amount,created_at",
                "order": "created_at.desc",
                "limit": str(limit),
            },
            context="Error fetching allocation log",
        )
        return [
            AllocationLogEntry(
                player_name=row["player_name"],
                character_name=row["character_name"],
                amount=int(row["amount"]),
                timestamp=row["created_at"],
            )
            for row in rows or []
        ]

    @staticmethod
    def _first_id(rows: Any, kind: str) -> str:
        if not rows or "id" not in rows[0]:
            raise StoreError(f"Backend did not return an id for the new {kind}")
        return str(rows[0]["id"])

    @staticmethod
    def _row_to_player(row: Mapping[str, Any]) -> PlayerRecord:
        return PlayerRecord(
            player_id=str(row["id"]),
            name=row.get("player_name") or "",
            allocations=clean_allocations(row.get("votes")),
        )
