"""Canonical ledger records shared by the store, session and API layers."""

from .ledger import AllocationLogEntry, CharacterRecord, PlayerRecord

__all__ = ["AllocationLogEntry", "CharacterRecord", "PlayerRecord"]
