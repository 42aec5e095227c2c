"""Canonical player, character and allocation-log models."""

from __future__ import annotations

from datetime import datetime
from typing import Dict

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


class PlayerRecord(BaseModel):
    """Player snapshot as returned by a ledger store."""

    player_id: str = Field(..., min_length=1)
    name: str
    allocations: Dict[str, int] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    def weight_for(self, character_id: str) -> int:
        return self.allocations.get(character_id, 0)


class CharacterRecord(BaseModel):
    character_id: str = Field(..., min_length=1)
    name: str

    model_config = ConfigDict(frozen=True)


class AllocationLogEntry(BaseModel):
    """Append-only record written after each successful allocation."""

    player_name: str
    character_name: str
    amount: int
    timestamp: datetime

    model_config = ConfigDict(frozen=True)
