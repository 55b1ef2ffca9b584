from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

import commands as cmd
import config
from config import Settings
from errors import GameError
from gateway import WebSocketConnection, deliver
from rooms import RoomRegistry, normalize_room_code
from views import hub_state, room_state

logger = logging.getLogger(__name__)

Handler = Callable[[RoomRegistry, WebSocketConnection, Any], Awaitable[None]]


async def _on_ping(registry: RoomRegistry, conn: WebSocketConnection, c: cmd.Ping) -> None:
    await deliver(conn, {"type": "PONG"})


async def _on_create_room(registry: RoomRegistry, conn: WebSocketConnection, c: cmd.CreateRoom) -> None:
    await registry.create_room(c.client_id or None, conn)


async def _on_get_room_state(registry: RoomRegistry, conn: WebSocketConnection, c: cmd.GetRoomState) -> None:
    session = registry.lookup(c.room_code)
    await deliver(conn, {
        "type": "ROOM_STATE",
        "data": room_state(session.room if session else None, c.room_code),
    })


async def _on_get_hub_state(registry: RoomRegistry, conn: WebSocketConnection, c: cmd.GetHubState) -> None:
    session = registry.get(c.room_code)
    await deliver(conn, {"type": "HUB_STATE", "data": hub_state(session.room)})


# Room-scoped commands: resolve the room first, then hand over to its actor.
_ROOM_HANDLERS: Dict[type, Callable[..., Awaitable[Any]]] = {
    cmd.AttachHost: lambda s, conn, c: s.attach_host(c.client_id, conn),
    cmd.SetDevMode: lambda s, conn, c: s.set_dev_mode(conn, c.enabled),
    cmd.JoinRoom: lambda s, conn, c: s.join(conn, c.client_id, c.name),
    cmd.AttachPlayer: lambda s, conn, c: s.attach_player(conn, c.client_id),
    cmd.SetReady: lambda s, conn, c: s.set_ready(conn, c.client_id, c.ready),
    cmd.Leave: lambda s, conn, c: s.leave(conn, c.client_id),
    cmd.SetCurrentGame: lambda s, conn, c: s.set_current_game(conn, c.game_key),
    cmd.StartGame: lambda s, conn, c: s.start_game(conn),
    cmd.AdvancePhase: lambda s, conn, c: s.advance_phase(conn),
    cmd.ForceResolveNight: lambda s, conn, c: s.force_resolve_night(conn),
    cmd.ForceResolveDay: lambda s, conn, c: s.force_resolve_day(conn),
    cmd.BackToLobby: lambda s, conn, c: s.back_to_lobby(conn),
    cmd.SubmitNightAction: lambda s, conn, c: s.submit_night_action(conn, c.client_id, c.action.value, c.target_id),
    cmd.SubmitVote: lambda s, conn, c: s.submit_vote(conn, c.client_id, c.target_id),
    cmd.RevealAllRoles: lambda s, conn, c: s.reveal_all_roles(conn),
    cmd.SetRole: lambda s, conn, c: s.set_role(conn, c.target_id, c.role),
    cmd.ToggleAlive: lambda s, conn, c: s.toggle_alive(conn, c.target_id),
}

_GLOBAL_HANDLERS: Dict[type, Handler] = {
    cmd.Ping: _on_ping,
    cmd.CreateRoom: _on_create_room,
    cmd.GetRoomState: _on_get_room_state,
    cmd.GetHubState: _on_get_hub_state,
}


async def dispatch(registry: RoomRegistry, conn: WebSocketConnection, command: Any) -> None:
    handler = _GLOBAL_HANDLERS.get(type(command))
    if handler is not None:
        await handler(registry, conn, command)
        return
    session = registry.get(command.room_code)
    await _ROOM_HANDLERS[type(command)](session, conn, command)


async def _reject(conn: WebSocketConnection, err: GameError, op: Optional[str]) -> None:
    if err.silent:
        logger.debug("dropped %s from %s: %s", op, conn.connection_id, err.code)
        return
    reply = err.to_message()
    if op:
        reply["command"] = op
    await deliver(conn, reply)


async def run_command(registry: RoomRegistry, conn: WebSocketConnection, command: Any) -> None:
    try:
        await dispatch(registry, conn, command)
    except GameError as err:
        await _reject(conn, err, command.type)


async def handle_message(registry: RoomRegistry, conn: WebSocketConnection, raw: str) -> None:
    """Parse and run one inbound message, replying to the caller on rejection."""
    try:
        command = cmd.parse_command(raw)
    except GameError as err:
        await _reject(conn, err, None)
        return
    await run_command(registry, conn, command)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or config.settings
    logging.basicConfig(level=settings.log_level)
    registry = RoomRegistry(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Mafia room server starting up...")
        yield
        await registry.shutdown()
        logger.info("Mafia room server shutting down.")

    app = FastAPI(title="Mafia Rooms", lifespan=lifespan)
    app.state.registry = registry
    app.state.settings = settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        return {"ok": True, "hint": "Connect to /ws and send CREATE_ROOM or JOIN."}

    @app.get("/api/health")
    async def health(request: Request):
        return {"ok": True, "rooms": len(request.app.state.registry)}

    @app.post("/api/rooms")
    async def api_create_room(request: Request, payload: Optional[Dict[str, Any]] = None):
        payload = payload or {}
        host_id = str(payload.get("clientId") or payload.get("client_id") or "").strip() or None
        session = await request.app.state.registry.create_room(host_id)
        return {"ok": True, "roomCode": session.code, "hostId": session.room.host_identity}

    @app.get("/api/rooms/{code}")
    async def api_room_state(code: str, request: Request):
        session = request.app.state.registry.lookup(code)
        if session is None:
            raise HTTPException(status_code=404, detail="ROOM_NOT_FOUND")
        return room_state(session.room)

    @app.get("/api/rooms/{code}/hub")
    async def api_hub_state(code: str, request: Request):
        session = request.app.state.registry.lookup(code)
        if session is None:
            raise HTTPException(status_code=404, detail="ROOM_NOT_FOUND")
        return hub_state(session.room)

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket):
        await ws.accept()
        conn = WebSocketConnection(ws)
        registry: RoomRegistry = ws.app.state.registry
        await conn.send({"type": "HELLO", "connectionId": conn.connection_id})

        # Optional shortcut: /ws?room=ABCD&client_id=... attaches right away.
        room = normalize_room_code(ws.query_params.get("room"))
        client_id = (ws.query_params.get("client_id") or "").strip()
        if room and client_id:
            await run_command(registry, conn, cmd.AttachPlayer(
                type="ATTACH_PLAYER", room_code=room, client_id=client_id,
            ))

        try:
            while True:
                raw = await ws.receive_text()
                await handle_message(registry, conn, raw)
        except WebSocketDisconnect:
            pass
        finally:
            await registry.disconnect(conn)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("server:app", host="0.0.0.0", port=8000)
