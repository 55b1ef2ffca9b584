"""Shared fixtures and utilities for the Mafia room tests."""
from __future__ import annotations

import random
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest
from httpx import ASGITransport, AsyncClient

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import Settings
from game import MafiaGame
from models import PlayerId, Role
from rooms import RoomRegistry, RoomSession
from server import create_app


class FakeConnection:
    """Records everything the server sends to it."""

    def __init__(self, name: str = "") -> None:
        self.connection_id = name or uuid.uuid4().hex[:8]
        self.messages: List[Dict[str, Any]] = []

    async def send(self, message: Dict[str, Any]) -> None:
        self.messages.append(message)

    def of_type(self, msg_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m.get("type") == msg_type]

    def last(self, msg_type: str) -> Optional[Dict[str, Any]]:
        found = self.of_type(msg_type)
        return found[-1] if found else None

    def clear(self) -> None:
        self.messages.clear()


def make_settings(**overrides: Any) -> Settings:
    values = {"host_grace_seconds": 90.0, "log_level": "DEBUG"}
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
async def registry(settings: Settings):
    reg = RoomRegistry(settings, rng=random.Random(1234))
    yield reg
    await reg.shutdown()


async def make_room(
    registry: RoomRegistry,
    count: int,
    *,
    ready: bool = True,
    dev_mode: bool = False,
) -> Tuple[RoomSession, FakeConnection, Dict[PlayerId, FakeConnection]]:
    """Create a room with a host connection and ``count`` joined players."""
    host = FakeConnection("host")
    session = await registry.create_room("host-id", host)
    if dev_mode:
        await session.set_dev_mode(host, True)
    conns: Dict[PlayerId, FakeConnection] = {}
    for i in range(count):
        pid = PlayerId(f"p{i + 1}")
        conn = FakeConnection(f"conn-{pid}")
        await session.join(conn, pid, f"Player{i + 1}")
        if ready:
            await session.set_ready(conn, pid, True)
        conns[pid] = conn
    return session, host, conns


async def started_room(
    registry: RoomRegistry,
    count: int = 5,
    **kwargs: Any,
) -> Tuple[RoomSession, FakeConnection, Dict[PlayerId, FakeConnection]]:
    session, host, conns = await make_room(registry, count, **kwargs)
    await session.start_game(host)
    return session, host, conns


def seat_of(session: RoomSession, pid: str) -> str:
    """Public seat of ``pid``, also for players who left a running game."""
    game = session.room.game
    if game is not None and PlayerId(pid) in game.seats:
        return game.seats[PlayerId(pid)]
    return session.room.players[PlayerId(pid)].seat


def set_roles(game_state, roles: Dict[str, Role]) -> None:
    """Force roles; players not listed become villagers."""
    for pid in game_state.roles:
        game_state.roles[pid] = roles.get(pid, Role.VILLAGER)


def new_game(count: int, roles: Optional[Dict[str, Role]] = None) -> MafiaGame:
    roster = [(PlayerId(f"p{i + 1}"), f"Player{i + 1}", f"s{i + 1}") for i in range(count)]
    game = MafiaGame.start(roster, random.Random(99))
    if roles is not None:
        set_roles(game.state, roles)
    return game


def standard_roles() -> Dict[str, Role]:
    """p1 mafia, p2 detective, p3 doctor, p4/p5 villagers."""
    return {"p1": Role.MAFIA, "p2": Role.DETECTIVE, "p3": Role.DOCTOR}


def kill_player(game_state, pid: str) -> None:
    game_state.alive[PlayerId(pid)] = False


@pytest.fixture
async def client():
    """Async HTTP client against a fresh app."""
    app = create_app(make_settings())
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await app.state.registry.shutdown()
