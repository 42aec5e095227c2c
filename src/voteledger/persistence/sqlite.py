"""SQLite-backed ledger store."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Mapping
from uuid import uuid4

from voteledger.ledger.applier import apply_vote
from voteledger.ledger.errors import LedgerValidationError, require_name
from voteledger.models import AllocationLogEntry, CharacterRecord, PlayerRecord

from .base import StoreError, clean_allocations


logger = logging.getLogger(__name__)


class SQLiteLedgerStore:
    """Players, characters and the allocation log in a single SQLite file.

    ``db_path`` may be a filesystem path or a ``file:`` URI.
    """

    supports_characters = True

    def __init__(self, db_path: Path | str):
        self._use_uri = isinstance(db_path, str) and db_path.startswith("file:")
        self.db_path: Path | str = db_path if self._use_uri else Path(db_path)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        try:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(self.db_path)
            else:
                conn = sqlite3.connect(self.db_path, uri=self._use_uri)
        except (OSError, sqlite3.Error) as exc:
            raise StoreError(f"Unable to open ledger database {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS players (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    allocations_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS characters (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS allocation_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    player_name TEXT NOT NULL,
                    character_name TEXT NOT NULL,
                    amount INTEGER NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def list_players(self) -> List[PlayerRecord]:
        try:
            with self._connect() as conn:
                rows = conn.execute("SELECT * FROM players ORDER BY created_at, rowid").fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"Error fetching players: {exc}") from exc
        return [self._row_to_player(row) for row in rows]

    def list_characters(self) -> List[CharacterRecord]:
        try:
            with self._connect() as conn:
                rows = conn.execute("SELECT * FROM characters ORDER BY created_at, rowid").fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"Error fetching characters: {exc}") from exc
        return [CharacterRecord(character_id=row["id"], name=row["name"]) for row in rows]

    def insert_player(self, name: str) -> str:
        name = require_name(name, "player")
        player_id = uuid4().hex
        now = datetime.now(timezone.utc).isoformat()
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO players (id, name, allocations_json, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (player_id, name, json.dumps({}), now, now),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Error adding player: {exc}") from exc
        return player_id

    def insert_character(self, name: str) -> str:
        name = require_name(name, "character")
        character_id = uuid4().hex
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO characters (id, name, created_at) VALUES (?, ?, ?)",
                    (character_id, name, datetime.now(timezone.utc).isoformat()),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Error adding character: {exc}") from exc
        return character_id

    def update_player_allocations(self, player_id: str, allocations: Mapping[str, int]) -> None:
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "UPDATE players SET allocations_json = ?, updated_at = ? WHERE id = ?",
                    (
                        json.dumps(dict(allocations)),
                        datetime.now(timezone.utc).isoformat(),
                        player_id,
                    ),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Error updating player {player_id}: {exc}") from exc
        if cursor.rowcount == 0:
            raise StoreError(f"Player {player_id} not found")

    def allocate(self, player_id: str, character_id: str, amount: int) -> PlayerRecord:
        """Validate and apply ``amount`` inside one transaction.

        The budget check, map update and log append commit together, so a
        concurrent writer can never see a half-applied allocation.
        """

        try:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute("SELECT * FROM players WHERE id = ?", (player_id,)).fetchone()
                if row is None:
                    raise LedgerValidationError(f"Player {player_id} not found")
                player = self._row_to_player(row)
                character = conn.execute(
                    "SELECT name FROM characters WHERE id = ?", (character_id,)
                ).fetchone()
                if character is None and character_id not in player.allocations:
                    raise LedgerValidationError(f"Character {character_id} not found")
                # rejected deltas roll back through the connection context manager
                outcome = apply_vote(player.allocations, character_id, amount)
                now = datetime.now(timezone.utc).isoformat()
                conn.execute(
                    "UPDATE players SET allocations_json = ?, updated_at = ? WHERE id = ?",
                    (json.dumps(outcome.allocations), now, player_id),
                )
                conn.execute(
                    """
                    INSERT INTO allocation_log (player_name, character_name, amount, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (player.name, character["name"] if character else character_id, amount, now),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Error allocating for player {player_id}: {exc}") from exc
        logger.debug("Allocated %s to %s for player %s", amount, character_id, player_id)
        return player.model_copy(update={"allocations": outcome.allocations})

    def append_allocation_log(self, player_name: str, character_name: str, amount: int) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO allocation_log (player_name, character_name, amount, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (player_name, character_name, amount, datetime.now(timezone.utc).isoformat()),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Error writing allocation log: {exc}") from exc

    def list_recent_allocation_log(self, limit: int = 50) -> List[AllocationLogEntry]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM allocation_log ORDER BY id DESC LIMIT ?",
                    (limit,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"Error fetching allocation log: {exc}") from exc
        return [
            AllocationLogEntry(
                player_name=row["player_name"],
                character_name=row["character_name"],
                amount=row["amount"],
                timestamp=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    def _row_to_player(self, row: sqlite3.Row) -> PlayerRecord:
        return PlayerRecord(
            player_id=row["id"],
            name=row["name"],
            allocations=clean_allocations(json.loads(row["allocations_json"])),
        )
