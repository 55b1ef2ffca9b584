from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Protocol

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class Connection(Protocol):
    connection_id: str

    async def send(self, message: Dict[str, Any]) -> None:
        ...


@dataclass(eq=False)
class WebSocketConnection:
    websocket: WebSocket
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    async def send(self, message: Dict[str, Any]) -> None:
        await self.websocket.send_text(json.dumps(message, ensure_ascii=False))


async def deliver(conn: Optional[Connection], message: Dict[str, Any]) -> bool:
    """Send to one connection. A failed send is logged, never raised."""
    if conn is None:
        return False
    try:
        await conn.send(message)
    except Exception as exc:
        logger.warning("send to %s failed: %s", conn.connection_id, exc)
        return False
    return True


async def fan_out(conns: Iterable[Optional[Connection]], message: Dict[str, Any]) -> None:
    for conn in list(conns):
        await deliver(conn, message)
