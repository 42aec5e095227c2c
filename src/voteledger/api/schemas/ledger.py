from __future__ import annotations

from datetime import datetime
from typing import Dict, List

from pydantic import BaseModel, Field


class NameRequest(BaseModel):
    name: str = ""


class VoteRequest(BaseModel):
    character_id: str
    delta: int


class AllocationRequest(BaseModel):
    player_id: str
    character_id: str
    amount: int


class PlayerResponse(BaseModel):
    player_id: str
    name: str
    allocations: Dict[str, int]
    credits: int


class CharacterResponse(BaseModel):
    character_id: str
    name: str


class VoteResponse(BaseModel):
    player: PlayerResponse
    character_id: str
    new_weight: int
    withdrawal: bool


class RankedCharacterResponse(BaseModel):
    rank: int
    character_id: str
    name: str
    group_score: int
    own_score: int


class RankingResponse(BaseModel):
    sort_by: str
    player_id: str | None = None
    characters: List[RankedCharacterResponse]


class FavoritesResponse(BaseModel):
    player_id: str
    player_name: str
    favorite: str
    favorite_weight: int
    least_favorite: str
    least_favorite_weight: int


class AllocationLogResponse(BaseModel):
    player_name: str
    character_name: str
    amount: int
    timestamp: datetime


class RecordResultResponse(BaseModel):
    record_id: str
    ok: bool
    error: str | None = None


class BatchResponse(BaseModel):
    operation: str
    ok: bool
    results: List[RecordResultResponse] = Field(default_factory=list)
