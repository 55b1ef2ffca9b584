"""Rejections raised by room and game handlers.

Every rejection is recovered by the dispatcher that received the command.
A ``silent`` error is logged and dropped; anything else is replied to the
calling connection only, never broadcast.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class GameError(Exception):
    default_code = "ERROR"
    default_silent = False

    def __init__(
        self,
        code: Optional[str] = None,
        *,
        silent: Optional[bool] = None,
        **details: Any,
    ) -> None:
        self.code = code or self.default_code
        self.silent = self.default_silent if silent is None else silent
        self.details: Dict[str, Any] = details
        super().__init__(self.code)

    def to_message(self) -> Dict[str, Any]:
        return {"type": "ERROR", "code": self.code, **self.details}


class ValidationError(GameError):
    """Malformed or missing field."""

    default_code = "BAD_COMMAND"


class AuthorizationError(GameError):
    """Non-host calling a host-only operation, or a dev operation outside dev mode."""

    default_code = "NOT_HOST"
    default_silent = True


class NotFoundError(GameError):
    default_code = "ROOM_NOT_FOUND"


class PreconditionError(GameError):
    """Wrong phase, ended game, too few players."""

    default_code = "PRECONDITION_FAILED"
    default_silent = True
