"""Room registry and the per-room actor.

Each ``RoomSession`` owns one room and serializes every mutation behind its
own ``asyncio.Lock``; rooms never share a lock, so they run independently.
Broadcasts happen while the lock is held so every connection sees a room's
events in the order they were applied.
"""
from __future__ import annotations

import asyncio
import logging
import random
import re
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from config import Settings
from errors import AuthorizationError, NotFoundError, PreconditionError, ValidationError
from game import MafiaGame
from gateway import Connection, deliver, fan_out
from models import Investigation, Phase, Player, PlayerId, Role, Room
from presence import Presence
from views import all_roles, hub_state, project_game, role_card, room_state

logger = logging.getLogger(__name__)

# No O/0/1/I.
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
MAX_ROOM_CODE_LENGTH = 8
GAME_KEYS = {"mafia"}


def normalize_room_code(value: Any) -> str:
    text = str(value or "").strip().upper()
    return re.sub(r"[^A-Z0-9]", "", text)[:MAX_ROOM_CODE_LENGTH]


def make_room_code(length: int, rng: random.Random) -> str:
    return "".join(rng.choice(ROOM_CODE_ALPHABET) for _ in range(length))


class RoomSession:
    def __init__(
        self,
        room: Room,
        registry: "RoomRegistry",
        settings: Settings,
        rng: random.Random,
    ) -> None:
        self.room = room
        self.presence = Presence(room.players)
        self.closed = False
        self._registry = registry
        self._settings = settings
        self._rng = rng
        self._lock = asyncio.Lock()
        self._grace_task: Optional[asyncio.Task] = None

    @property
    def code(self) -> str:
        return self.room.code

    @asynccontextmanager
    async def _serialized(self) -> AsyncIterator[None]:
        async with self._lock:
            if self.closed:
                raise NotFoundError("ROOM_NOT_FOUND")
            yield

    # ── Broadcasting ───────────────────────────────────────────────────────

    def _connections(self) -> List[Connection]:
        conns = [p.connection for p in self.room.players.values() if p.connection is not None]
        if self.room.host_connection is not None:
            conns.append(self.room.host_connection)
        return conns

    def _game_view(self, pid: Optional[PlayerId], is_host: bool = False) -> Dict[str, Any]:
        return {
            "type": "GAME_STATE",
            "data": project_game(self.room.game, self.room.players, pid, is_host=is_host),
        }

    async def _sync_room(self) -> None:
        await fan_out(self._connections(), {"type": "ROOM_STATE", "data": room_state(self.room)})

    async def _sync_hub(self) -> None:
        await fan_out(self._connections(), {"type": "HUB_STATE", "data": hub_state(self.room)})

    async def _sync_game(self) -> None:
        await deliver(self.room.host_connection, self._game_view(None, is_host=True))
        for pid, player in list(self.room.players.items()):
            if player.connection is not None:
                await deliver(player.connection, self._game_view(pid))

    async def _sync_all(self) -> None:
        await self._sync_room()
        await self._sync_hub()
        await self._sync_game()

    async def _resync(self, conn: Connection, pid: Optional[PlayerId]) -> None:
        """Full snapshot for one connection: room, hub, game and private data."""
        await deliver(conn, {"type": "ROOM_STATE", "data": room_state(self.room)})
        await deliver(conn, {"type": "HUB_STATE", "data": hub_state(self.room)})
        await deliver(conn, self._game_view(pid, is_host=pid is None))
        game = self.room.game
        if pid is not None and game is not None and pid in game.roles:
            await deliver(conn, role_card(game, pid))

    # ── Guards ─────────────────────────────────────────────────────────────

    def _require_host(self, conn: Optional[Connection]) -> None:
        if conn is None or self.room.host_connection is not conn:
            raise AuthorizationError()

    def _require_dev(self, conn: Optional[Connection]) -> None:
        self._require_host(conn)
        if not self.room.dev_mode:
            raise AuthorizationError("DEV_MODE_REQUIRED")

    def _game(self) -> MafiaGame:
        if self.room.game is None:
            raise PreconditionError("NO_GAME")
        return MafiaGame(self.room.game)

    def _game_running(self) -> bool:
        return self.room.game is not None and self.room.game.phase != Phase.ENDED

    def _caller(self, conn: Connection, client_id: str = "") -> PlayerId:
        """Identity bound to ``conn``; a claimed id must agree with it."""
        pid = self.presence.identity_of(conn)
        if pid is None:
            raise NotFoundError("PLAYER_NOT_FOUND", silent=True)
        if client_id and client_id != pid:
            raise AuthorizationError("IDENTITY_MISMATCH")
        return pid

    def _new_seat(self) -> str:
        taken = {p.seat for p in self.room.players.values()}
        if self.room.game is not None:
            taken.update(self.room.game.seats.values())
        while True:
            seat = uuid.uuid4().hex[:8]
            if seat not in taken:
                return seat

    # ── Host lifecycle ─────────────────────────────────────────────────────

    async def attach_host(self, identity: str, conn: Connection) -> None:
        async with self._serialized():
            if not identity or identity != self.room.host_identity:
                raise AuthorizationError("NOT_HOST", silent=False)
            self._cancel_grace_timer()
            self.room.host_connection = conn
            logger.info("[%s] host attached on %s", self.code, conn.connection_id)
            await self._resync(conn, None)
            await self._sync_room()

    async def detach(self, conn: Connection) -> None:
        close_now = False
        async with self._lock:
            if self.closed:
                return
            if self.room.host_connection is conn:
                self.room.host_connection = None
                logger.info("[%s] host detached", self.code)
                if self._settings.host_grace_seconds <= 0:
                    close_now = True
                else:
                    self.start_grace_timer()
                    await self._sync_room()
            elif self.presence.detach(conn) is not None:
                await self._sync_room()
        if close_now:
            await self._registry.destroy_room(self.code, "host_left")

    def start_grace_timer(self) -> None:
        self._cancel_grace_timer()
        self._grace_task = asyncio.create_task(self._host_grace(self._settings.host_grace_seconds))

    def _cancel_grace_timer(self) -> None:
        task, self._grace_task = self._grace_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    @property
    def grace_pending(self) -> bool:
        return self._grace_task is not None and not self._grace_task.done()

    async def _host_grace(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._grace_task = None
        logger.info("[%s] host did not return within %ss", self.code, delay)
        await self._registry.destroy_room(self.code, "host_timeout")

    async def close(self, reason: str) -> None:
        self._cancel_grace_timer()
        async with self._lock:
            if self.closed:
                return
            self.closed = True
            await fan_out(self._connections(), {
                "type": "ROOM_CLOSED",
                "roomCode": self.code,
                "reason": reason,
            })

    async def set_dev_mode(self, conn: Connection, enabled: bool) -> None:
        async with self._serialized():
            self._require_host(conn)
            self.room.dev_mode = enabled
            logger.info("[%s] dev mode %s", self.code, "on" if enabled else "off")
            await self._sync_room()

    async def set_current_game(self, conn: Connection, game_key: str) -> None:
        async with self._serialized():
            self._require_host(conn)
            if game_key not in GAME_KEYS:
                raise ValidationError("UNKNOWN_GAME", gameKey=game_key)
            if self._game_running():
                raise PreconditionError("GAME_IN_PROGRESS")
            self.room.current_game = game_key
            await self._sync_room()
            await self._sync_hub()

    # ── Players ────────────────────────────────────────────────────────────

    async def join(self, conn: Connection, client_id: str, name: str) -> Player:
        async with self._serialized():
            name = name.strip()[: self._settings.max_name_length]
            if not name:
                raise ValidationError("NAME_REQUIRED")
            if not client_id:
                raise ValidationError("CLIENT_ID_REQUIRED")
            pid = PlayerId(client_id)
            for other in self.room.players.values():
                if other.id != pid and other.name.casefold() == name.casefold():
                    raise ValidationError("NAME_ALREADY_TAKEN")

            player = self.room.players.get(pid)
            renamed = False
            if player is None:
                if self._game_running():
                    raise PreconditionError("GAME_IN_PROGRESS", silent=False)
                player = Player(id=pid, name=name, seat=self._new_seat())
                self.room.players[pid] = player
                logger.info("[%s] seat %s joined as %r", self.code, player.seat, name)
            else:
                player.name = name
                game = self.room.game
                if game is not None and pid in game.names:
                    renamed = game.names[pid] != name
                    game.names[pid] = name
            self.presence.attach(pid, conn)

            await deliver(conn, {
                "type": "PLAYER_JOINED",
                "roomCode": self.code,
                "name": name,
                "seat": player.seat,
            })
            await self._resync(conn, pid)
            await self._sync_room()
            await self._sync_hub()
            if renamed:
                await self._sync_game()
            return player

    async def attach_player(self, conn: Connection, client_id: str) -> None:
        if client_id and client_id == self.room.host_identity:
            await self.attach_host(client_id, conn)
            return
        async with self._serialized():
            if not client_id:
                raise ValidationError("CLIENT_ID_REQUIRED")
            pid = PlayerId(client_id)
            self.presence.attach(pid, conn)
            await self._resync(conn, pid)
            await self._sync_room()

    async def set_ready(self, conn: Connection, client_id: str, ready: bool) -> None:
        async with self._serialized():
            pid = self._caller(conn, client_id)
            self.room.players[pid].ready = ready
            await self._sync_room()

    async def leave(self, conn: Connection, client_id: str) -> None:
        async with self._serialized():
            pid = self._caller(conn, client_id)
            player = self.presence.forget(pid)
            logger.info("[%s] seat %s left", self.code, player.seat if player else "?")
            await self._sync_room()
            await self._sync_hub()

    # ── Game flow ──────────────────────────────────────────────────────────

    async def start_game(self, conn: Connection) -> None:
        async with self._serialized():
            self._require_host(conn)
            if self._game_running():
                raise PreconditionError("GAME_IN_PROGRESS")
            minimum = self._settings.dev_min_players if self.room.dev_mode else self._settings.min_players
            if len(self.room.players) < minimum:
                raise PreconditionError("NEED_MIN_PLAYERS", silent=False, minPlayers=minimum)
            if not all(p.ready for p in self.room.players.values()):
                raise PreconditionError("NOT_ALL_READY", silent=False)

            roster = [(p.id, p.name, p.seat) for p in self.room.players.values()]
            game = MafiaGame.start(roster, self._rng)
            self.room.game = game.state
            logger.info("[%s] game started with %d players", self.code, len(roster))

            for pid, player in self.room.players.items():
                await deliver(player.connection, role_card(game.state, pid))
            await self._sync_game()
            await self._sync_hub()

    async def _after_transition(
        self,
        game: MafiaGame,
        investigations: List[Tuple[PlayerId, Investigation]],
    ) -> None:
        for detective, result in investigations:
            await deliver(
                self.presence.connection_of(detective),
                {"type": "INVESTIGATION_RESULT", **result.to_dict(game.state.seats)},
            )
        if game.ended and not game.state.points_awarded:
            winners = game.award_points(self.room.players)
            self.room.history.append({
                "gameKey": self.room.current_game,
                "winningTeam": game.state.winning_team.value,
                "rounds": game.state.round,
                "winners": [game.state.seats[pid] for pid in winners],
                "endedAt": time.time(),
            })
            await self._sync_hub()
        await self._sync_game()

    async def advance_phase(self, conn: Connection) -> None:
        async with self._serialized():
            self._require_host(conn)
            game = self._game()
            results = game.advance()
            logger.info("[%s] phase -> %s", self.code, game.state.phase.value)
            await self._after_transition(game, results)

    async def force_resolve_night(self, conn: Connection) -> None:
        async with self._serialized():
            self._require_host(conn)
            game = self._game()
            if game.state.phase != Phase.NIGHT:
                return
            await self._after_transition(game, game.force_resolve_night())

    async def force_resolve_day(self, conn: Connection) -> None:
        async with self._serialized():
            self._require_host(conn)
            game = self._game()
            if game.state.phase != Phase.VOTE:
                return
            game.force_resolve_day()
            await self._after_transition(game, [])

    async def submit_night_action(
        self,
        conn: Connection,
        client_id: str,
        action: str,
        target_seat: str,
    ) -> None:
        async with self._serialized():
            pid = self._caller(conn, client_id)
            game = self._game()
            if game.submit_night_action(pid, action, game.player_at(target_seat)):
                await self._after_transition(game, game.resolve_night())
            else:
                await self._sync_game()

    async def submit_vote(self, conn: Connection, client_id: str, target_seat: str) -> None:
        async with self._serialized():
            pid = self._caller(conn, client_id)
            game = self._game()
            if game.submit_vote(pid, game.player_at(target_seat)):
                game.resolve_day()
                await self._after_transition(game, [])
            else:
                await self._sync_game()

    async def back_to_lobby(self, conn: Connection) -> None:
        async with self._serialized():
            self._require_host(conn)
            self.room.game = None
            for player in self.room.players.values():
                player.ready = False
            logger.info("[%s] back to lobby", self.code)
            await self._sync_all()

    # ── Dev mode ───────────────────────────────────────────────────────────

    async def reveal_all_roles(self, conn: Connection) -> None:
        async with self._serialized():
            self._require_dev(conn)
            game = self._game()
            await deliver(conn, {"type": "ALL_ROLES", "players": all_roles(game.state)})

    async def set_role(self, conn: Connection, target_seat: str, role: Role) -> None:
        async with self._serialized():
            self._require_dev(conn)
            game = self._game()
            pid = game.player_at(target_seat)
            game.set_role(pid, role)
            target_conn = self.presence.connection_of(pid)
            await deliver(target_conn, role_card(game.state, pid))
            await deliver(target_conn, self._game_view(pid))
            await deliver(conn, self._game_view(None, is_host=True))

    async def toggle_alive(self, conn: Connection, target_seat: str) -> None:
        async with self._serialized():
            self._require_dev(conn)
            game = self._game()
            game.toggle_alive(game.player_at(target_seat))
            await self._after_transition(game, [])


class RoomRegistry:
    """Directory of live rooms, keyed by room code.

    Built once by the app factory and handed to the handlers; nothing here
    survives a restart.
    """

    def __init__(self, settings: Settings, rng: Optional[random.Random] = None) -> None:
        self.settings = settings
        self._rng = rng or random.Random()
        self._rooms: Dict[str, RoomSession] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def _new_code(self) -> str:
        for _ in range(self.settings.room_code_attempts):
            code = make_room_code(self.settings.room_code_length, self._rng)
            if code not in self._rooms:
                return code
        while True:
            code = make_room_code(self.settings.room_code_fallback_length, self._rng)
            if code not in self._rooms:
                return code

    async def create_room(
        self,
        host_identity: Optional[str] = None,
        conn: Optional[Connection] = None,
    ) -> RoomSession:
        if conn is not None:
            for session in list(self._rooms.values()):
                if session.room.host_connection is conn:
                    await self.destroy_room(session.code, "host_recreated")

        # No await between picking the code and storing it.
        code = self._new_code()
        room = Room(code=code, host_identity=host_identity or uuid.uuid4().hex, host_connection=conn)
        session = RoomSession(room, self, self.settings, self._rng)
        self._rooms[code] = session
        logger.info("[%s] room created", code)

        if conn is None:
            session.start_grace_timer()
        else:
            await deliver(conn, {"type": "ROOM_CREATED", "roomCode": code, "hostId": room.host_identity})
            await deliver(conn, {"type": "ROOM_STATE", "data": room_state(room)})
        return session

    def lookup(self, code: Any) -> Optional[RoomSession]:
        return self._rooms.get(normalize_room_code(code))

    def get(self, code: Any) -> RoomSession:
        session = self.lookup(code)
        if session is None:
            raise NotFoundError("ROOM_NOT_FOUND")
        return session

    async def destroy_room(self, code: Any, reason: str = "closed") -> bool:
        session = self._rooms.pop(normalize_room_code(code), None)
        if session is None:
            return False
        await session.close(reason)
        logger.info("[%s] room destroyed (%s)", session.code, reason)
        return True

    async def disconnect(self, conn: Connection) -> None:
        for session in list(self._rooms.values()):
            await session.detach(conn)

    async def shutdown(self) -> None:
        for code in list(self._rooms):
            await self.destroy_room(code, "shutdown")
