"""Derived scores, rankings and favorites over a ledger snapshot."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from voteledger.models import CharacterRecord, PlayerRecord


NO_FAVORITE = "None"


@dataclass(frozen=True)
class RankedCharacter:
    rank: int
    character_id: str
    name: str
    group_score: int
    own_score: int


@dataclass(frozen=True)
class PlayerFavorites:
    player_id: str
    player_name: str
    favorite: str
    favorite_weight: int
    least_favorite: str
    least_favorite_weight: int


def discover_characters(
    players: Iterable[PlayerRecord],
    characters: Iterable[CharacterRecord] = (),
) -> List[CharacterRecord]:
    """Registered characters first, then keys only seen in player maps.

    Order is first encounter; this order is the tie-breaker for rankings.
    """

    discovered: dict[str, CharacterRecord] = {}
    for character in characters:
        discovered.setdefault(character.character_id, character)
    for player in players:
        for character_id in player.allocations:
            if character_id not in discovered:
                discovered[character_id] = CharacterRecord(character_id=character_id, name=character_id)
    return list(discovered.values())


def total_score(players: Iterable[PlayerRecord], character_id: str) -> int:
    return sum(player.weight_for(character_id) for player in players)


def rank_characters(
    players: Sequence[PlayerRecord],
    characters: Iterable[CharacterRecord] = (),
    *,
    selected: Optional[PlayerRecord] = None,
    sort_by_own: bool = False,
) -> List[RankedCharacter]:
    """Rank characters by group score, or by the selected player's weight.

    Both orderings are descending and stable, so equal scores keep discovery
    order. ``sort_by_own`` without a selected player falls back to group score.
    """

    rows: List[Tuple[CharacterRecord, int, int]] = []
    for character in discover_characters(players, characters):
        group = total_score(players, character.character_id)
        own = selected.weight_for(character.character_id) if selected else 0
        rows.append((character, group, own))

    by_own = sort_by_own and selected is not None
    rows.sort(key=lambda row: row[2] if by_own else row[1], reverse=True)
    return [
        RankedCharacter(
            rank=index,
            character_id=character.character_id,
            name=character.name,
            group_score=group,
            own_score=own,
        )
        for index, (character, group, own) in enumerate(rows, start=1)
    ]


def player_favorites(player: PlayerRecord) -> PlayerFavorites:
    votes = player.allocations
    if not votes:
        return PlayerFavorites(
            player_id=player.player_id,
            player_name=player.name,
            favorite=NO_FAVORITE,
            favorite_weight=0,
            least_favorite=NO_FAVORITE,
            least_favorite_weight=0,
        )

    keys = iter(votes)
    favorite = least = next(keys)
    for character_id in keys:
        # strict comparisons keep the first-encountered key on ties
        if votes[character_id] > votes[favorite]:
            favorite = character_id
        if votes[character_id] < votes[least]:
            least = character_id
    return PlayerFavorites(
        player_id=player.player_id,
        player_name=player.name,
        favorite=favorite,
        favorite_weight=votes[favorite],
        least_favorite=least,
        least_favorite_weight=votes[least],
    )
