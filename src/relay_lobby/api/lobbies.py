"""Lobby control endpoints for presentation clients."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Request, status

from relay_lobby.api.schemas import (
    CreateLobbyRequest,
    LobbyList,
    LobbySummary,
    SessionStatus,
)
from relay_lobby.domain.errors import LobbyStateError, LobbyValidationError

if TYPE_CHECKING:
    from relay_lobby.containers import AppContainer

router = APIRouter(tags=["lobbies"])


def _session_status(container: AppContainer) -> SessionStatus:
    orchestrator = container.orchestrator
    board = container.status_board
    return SessionStatus(
        state=orchestrator.state.value,
        lobby_id=orchestrator.lobby_id,
        join_code=orchestrator.join_code,
        status_text=board.state_text,
        menu_visible=board.menu_visible,
    )


def _raise_for_lobby_error(exc: Exception) -> None:
    if isinstance(exc, LobbyValidationError):
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if isinstance(exc, LobbyStateError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(exc)
        ) from exc


@router.get("/session")
async def session_status(request: Request) -> SessionStatus:
    """Return the orchestrator state and the latest status text."""
    container: AppContainer = request.app.state.container
    return _session_status(container)


@router.post("/session/leave")
async def leave_session(request: Request) -> SessionStatus:
    """Leave the current lobby, if any."""
    container: AppContainer = request.app.state.container
    await container.orchestrator.leave_lobby()
    return _session_status(container)


@router.get("/lobbies")
async def list_lobbies(request: Request) -> LobbyList:
    """Refresh the list of open lobbies."""
    container: AppContainer = request.app.state.container
    lobbies = await container.orchestrator.refresh_lobby_list()
    return LobbyList(lobbies=[LobbySummary.from_lobby(lobby) for lobby in lobbies])


@router.post("/lobbies")
async def create_lobby(payload: CreateLobbyRequest, request: Request) -> SessionStatus:
    """Host a new lobby."""
    container: AppContainer = request.app.state.container
    try:
        await container.orchestrator.create_lobby(payload.name)
    except (LobbyValidationError, LobbyStateError) as exc:
        _raise_for_lobby_error(exc)
    return _session_status(container)


@router.post("/lobbies/quick-join")
async def quick_join(request: Request) -> SessionStatus:
    """Join any open lobby."""
    container: AppContainer = request.app.state.container
    try:
        await container.orchestrator.quick_join()
    except LobbyStateError as exc:
        _raise_for_lobby_error(exc)
    return _session_status(container)


@router.post("/lobbies/{lobby_id}/join")
async def join_lobby(lobby_id: str, request: Request) -> SessionStatus:
    """Join a lobby picked from the list."""
    container: AppContainer = request.app.state.container
    try:
        await container.orchestrator.join_lobby(lobby_id)
    except (LobbyValidationError, LobbyStateError) as exc:
        _raise_for_lobby_error(exc)
    return _session_status(container)
