from __future__ import annotations

import logging
from typing import Dict, Optional

from errors import NotFoundError
from gateway import Connection
from models import Player, PlayerId

logger = logging.getLogger(__name__)


class Presence:
    """Maps stable player identities to their current connection.

    Identities outlive connections: detaching only clears the handle, the
    player keeps their seat, role and score.
    """

    def __init__(self, players: Dict[PlayerId, Player]) -> None:
        self._players = players
        self._by_connection: Dict[str, PlayerId] = {}

    def attach(self, pid: PlayerId, conn: Connection) -> Player:
        player = self._players.get(pid)
        if player is None:
            raise NotFoundError("PLAYER_NOT_FOUND")
        if player.connection is not None and player.connection is not conn:
            self._by_connection.pop(player.connection.connection_id, None)
        # One identity per connection: a socket attaching as another id moves.
        previous = self._by_connection.get(conn.connection_id)
        if previous is not None and previous != pid and previous in self._players:
            self._players[previous].connection = None
        player.connection = conn
        self._by_connection[conn.connection_id] = pid
        logger.debug("attached %s on %s", pid, conn.connection_id)
        return player

    def detach(self, conn: Connection) -> Optional[PlayerId]:
        pid = self._by_connection.pop(conn.connection_id, None)
        if pid is None:
            return None
        player = self._players.get(pid)
        if player is not None and player.connection is conn:
            player.connection = None
        logger.debug("detached %s from %s", pid, conn.connection_id)
        return pid

    def forget(self, pid: PlayerId) -> Optional[Player]:
        player = self._players.pop(pid, None)
        if player is not None and player.connection is not None:
            self._by_connection.pop(player.connection.connection_id, None)
        return player

    def identity_of(self, conn: Connection) -> Optional[PlayerId]:
        pid = self._by_connection.get(conn.connection_id)
        player = self._players.get(pid) if pid is not None else None
        if player is None or player.connection is not conn:
            return None
        return pid

    def connection_of(self, pid: PlayerId) -> Optional[Connection]:
        player = self._players.get(pid)
        return player.connection if player else None
