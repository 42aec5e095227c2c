"""Pydantic models for API I/O."""

from .ledger import (
    AllocationLogResponse,
    AllocationRequest,
    BatchResponse,
    CharacterResponse,
    FavoritesResponse,
    NameRequest,
    PlayerResponse,
    RankedCharacterResponse,
    RankingResponse,
    RecordResultResponse,
    VoteRequest,
    VoteResponse,
)

__all__ = [
    "AllocationLogResponse",
    "AllocationRequest",
    "BatchResponse",
    "CharacterResponse",
    "FavoritesResponse",
    "NameRequest",
    "PlayerResponse",
    "RankedCharacterResponse",
    "RankingResponse",
    "RecordResultResponse",
    "VoteRequest",
    "VoteResponse",
]
