"""REST API and read-only ranking page for the voting ledger."""

from __future__ import annotations

from html import escape
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import HTMLResponse

from voteledger.api.schemas import (
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
from voteledger.config import CREDIT_BUDGET, LedgerSettings, load_settings
from voteledger.ledger import (
    BatchResult,
    InsufficientCreditsError,
    LedgerError,
    LedgerValidationError,
    PartialWriteError,
    PlayerFavorites,
    RankedCharacter,
    remaining_credits,
)
from voteledger.models import PlayerRecord
from voteledger.persistence import LedgerStore, open_store
from voteledger.session import LedgerSession, OperationCancelledError


def player_to_response(player: PlayerRecord) -> PlayerResponse:
    return PlayerResponse(
        player_id=player.player_id,
        name=player.name,
        allocations=dict(player.allocations),
        credits=remaining_credits(player.allocations),
    )


def batch_to_response(batch: BatchResult) -> BatchResponse:
    return BatchResponse(
        operation=batch.operation,
        ok=batch.ok,
        results=[
            RecordResultResponse(record_id=result.record_id, ok=result.ok, error=result.error)
            for result in batch.results
        ],
    )


def _ranked_to_response(item: RankedCharacter) -> RankedCharacterResponse:
    return RankedCharacterResponse(
        rank=item.rank,
        character_id=item.character_id,
        name=item.name,
        group_score=item.group_score,
        own_score=item.own_score,
    )


def _favorites_to_response(item: PlayerFavorites) -> FavoritesResponse:
    return FavoritesResponse(
        player_id=item.player_id,
        player_name=item.player_name,
        favorite=item.favorite,
        favorite_weight=item.favorite_weight,
        least_favorite=item.least_favorite,
        least_favorite_weight=item.least_favorite_weight,
    )


def _http_error(exc: LedgerError) -> HTTPException:
    if isinstance(exc, InsufficientCreditsError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, OperationCancelledError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, LedgerValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, PartialWriteError):
        return HTTPException(
            status_code=502,
            detail={"message": str(exc), "batch": batch_to_response(exc.batch).model_dump()},
        )
    return HTTPException(status_code=502, detail=str(exc))


def _render_page(body: str) -> str:
    return f"""<!DOCTYPE html>
<html lang=\"en\">
<head>
    <meta charset=\"utf-8\">
    <title>Character Ranking</title>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 2rem auto; max-width: 640px; background: #f5f7fa; }}
        main {{ background: #fff; padding: 2rem; border-radius: 12px; box-shadow: 0 2px 6px rgba(0,0,0,0.08); }}
        nav a {{ margin-right: 1rem; color: #2563eb; text-decoration: none; }}
        table {{ border-collapse: collapse; width: 100%; margin-top: 1rem; }}
        th, td {{ padding: 0.5rem; border: 1px solid #e2e8f0; text-align: left; }}
        tbody tr:nth-child(odd) {{ background: #f8f8f8; }}
        .notice {{ margin: 0.5rem 0; padding: 0.75rem 1rem; border-radius: 6px; }}
        .notice.error {{ background: #fef2f2; color: #991b1b; border: 1px solid #fecaca; }}
    </style>
</head>
<body>
    <nav><a href=\"/ui\">Group Score</a></nav>
    <main>{body}</main>
</body>
</html>"""


def _render_ranking_page(
    session: LedgerSession,
    *,
    player_id: str | None,
    sort_by_own: bool,
    error: str | None,
) -> str:
    selected = session.state.player(player_id) if player_id else None
    own_label = f"{escape(selected.name)}'s Score" if selected else "Own Score"

    options = "".join(
        f"<option value=\"{escape(player.player_id)}\"{' selected' if selected and selected.player_id == player.player_id else ''}>"
        f"{escape(player.name)} (Credits: {remaining_credits(player.allocations)})</option>"
        for player in session.state.players
    )
    ranking_rows = "".join(
        f"<tr><td>{item.rank}</td><td>{escape(item.name)}</td><td>{item.group_score}</td><td>{item.own_score}</td></tr>"
        for item in session.rankings(player_id=player_id, sort_by_own=sort_by_own)
    )
    favorite_rows = "".join(
        f"<tr><td>{escape(item.player_name)}</td>"
        f"<td>{escape(item.favorite)} ({item.favorite_weight})</td>"
        f"<td>{escape(item.least_favorite)} ({item.least_favorite_weight})</td></tr>"
        for item in session.favorites()
    )
    error_html = f"<div class=\"notice error\">{escape(error)}</div>" if error else ""
    selected_html = (
        f"<p>Selected User: {escape(selected.name)} (Credits: {remaining_credits(selected.allocations)})</p>"
        if selected
        else ""
    )
    return _render_page(
        f"""
        <h1>Character Ranking</h1>
        {error_html}
        <form method=\"get\" action=\"/ui\">
            <select name=\"player_id\"><option value=\"\">Select a user</option>{options}</select>
            <select name=\"sort\">
                <option value=\"group\"{'' if sort_by_own else ' selected'}>Sort by Group Score</option>
                <option value=\"own\"{' selected' if sort_by_own else ''}>Sort by Own Score</option>
            </select>
            <button type=\"submit\">Show</button>
        </form>
        {selected_html}
        <p>Each player distributes {CREDIT_BUDGET} credits.</p>
        <table>
            <thead><tr><th>Rank</th><th>Character</th><th>Group Score</th><th>{own_label}</th></tr></thead>
            <tbody>{ranking_rows}</tbody>
        </table>
        <h2>User Favorites</h2>
        <table>
            <thead><tr><th>Player</th><th>Favorite</th><th>Least Favorite</th></tr></thead>
            <tbody>{favorite_rows}</tbody>
        </table>
        """
    )


def create_app(
    settings: LedgerSettings | None = None,
    *,
    store: LedgerStore | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    app = FastAPI(title="voteledger")
    session = LedgerSession(store or open_store(settings), log_limit=settings.log_limit)
    app.state.session = session

    async def _refresh() -> None:
        try:
            await session.refresh()
        except LedgerError as exc:
            raise _http_error(exc) from exc

    def _player_or_404(player_id: str) -> PlayerRecord:
        player = session.state.player(player_id)
        if player is None:
            raise HTTPException(status_code=404, detail="Player not found")
        return player

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/players", response_model=list[PlayerResponse])
    async def list_players() -> list[PlayerResponse]:
        await _refresh()
        return [player_to_response(player) for player in session.state.players]

    @app.post("/players", response_model=PlayerResponse, status_code=201)
    async def add_player(payload: NameRequest) -> PlayerResponse:
        try:
            player_id = await session.add_player(payload.name)
        except LedgerError as exc:
            raise _http_error(exc) from exc
        return player_to_response(_player_or_404(player_id))

    @app.get("/players/{player_id}", response_model=PlayerResponse)
    async def get_player(player_id: str) -> PlayerResponse:
        await _refresh()
        return player_to_response(_player_or_404(player_id))

    @app.get("/characters", response_model=list[CharacterResponse])
    async def list_characters() -> list[CharacterResponse]:
        await _refresh()
        return [
            CharacterResponse(character_id=item.character_id, name=item.name)
            for item in session.rankings(sort_by_own=False)
        ]

    @app.post("/characters", response_model=BatchResponse, status_code=201)
    async def add_character(payload: NameRequest) -> BatchResponse:
        try:
            batch = await session.add_character(payload.name)
        except LedgerError as exc:
            raise _http_error(exc) from exc
        return batch_to_response(batch)

    @app.post("/players/{player_id}/votes", response_model=VoteResponse)
    async def vote(player_id: str, payload: VoteRequest) -> VoteResponse:
        await _refresh()
        _player_or_404(player_id)
        try:
            outcome = await session.vote(payload.character_id, payload.delta, player_id=player_id)
        except LedgerError as exc:
            raise _http_error(exc) from exc
        return VoteResponse(
            player=player_to_response(_player_or_404(player_id)),
            character_id=outcome.character_id,
            new_weight=outcome.new_weight,
            withdrawal=outcome.withdrawal,
        )

    @app.post("/allocations", response_model=PlayerResponse)
    async def allocate(payload: AllocationRequest) -> PlayerResponse:
        await _refresh()
        _player_or_404(payload.player_id)
        try:
            updated = await session.allocate(
                payload.character_id,
                payload.amount,
                player_id=payload.player_id,
            )
        except LedgerError as exc:
            raise _http_error(exc) from exc
        return player_to_response(updated)

    @app.get("/rankings", response_model=RankingResponse)
    async def rankings(
        player_id: str | None = None,
        sort: Literal["group", "own"] = "group",
    ) -> RankingResponse:
        await _refresh()
        if player_id:
            _player_or_404(player_id)
        items = session.rankings(player_id=player_id, sort_by_own=sort == "own")
        return RankingResponse(
            sort_by="own" if sort == "own" and player_id else "group",
            player_id=player_id,
            characters=[_ranked_to_response(item) for item in items],
        )

    @app.get("/favorites", response_model=list[FavoritesResponse])
    async def favorites() -> list[FavoritesResponse]:
        await _refresh()
        return [_favorites_to_response(item) for item in session.favorites()]

    @app.get("/log", response_model=list[AllocationLogResponse])
    async def allocation_log(limit: int = Query(50, ge=1)) -> list[AllocationLogResponse]:
        try:
            entries = await session.recent_log(limit)
        except LedgerError as exc:
            raise _http_error(exc) from exc
        return [AllocationLogResponse(**entry.model_dump()) for entry in entries]

    @app.get("/notices")
    async def notices() -> list[dict[str, Any]]:
        return [{"kind": notice.kind, "message": notice.message} for notice in session.drain_notices()]

    @app.get("/ui", response_class=HTMLResponse)
    async def ui_index(player_id: str | None = None, sort: str = "group"):
        error = None
        try:
            await session.refresh()
        except LedgerError as exc:
            error = str(exc)
        if player_id and session.state.player(player_id) is None:
            player_id = None
        content = _render_ranking_page(
            session,
            player_id=player_id or None,
            sort_by_own=sort == "own",
            error=error,
        )
        return HTMLResponse(content)

    return app
