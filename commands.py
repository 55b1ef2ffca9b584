"""Inbound command shapes.

One pydantic model per operation, discriminated on ``type``. Field names
accept snake_case or camelCase. Anything that does not parse is rejected
here and never reaches a room.
"""
from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

from errors import ValidationError
from models import NightAction, Role
from rooms import normalize_room_code


class _Command(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class _RoomCommand(_Command):
    room_code: str = ""

    @field_validator("room_code", mode="before")
    @classmethod
    def _normalize_code(cls, value: Any) -> str:
        return normalize_room_code(value)


class _IdentityCommand(_RoomCommand):
    client_id: str = ""


class Ping(_Command):
    type: Literal["PING"]


class CreateRoom(_Command):
    type: Literal["CREATE_ROOM"]
    client_id: str = ""


class AttachHost(_IdentityCommand):
    type: Literal["ATTACH_HOST"]


class SetDevMode(_RoomCommand):
    type: Literal["SET_DEV_MODE"]
    enabled: bool


class JoinRoom(_IdentityCommand):
    type: Literal["JOIN"]
    name: str = ""


class AttachPlayer(_IdentityCommand):
    type: Literal["ATTACH_PLAYER"]


class SetReady(_IdentityCommand):
    type: Literal["SET_READY"]
    ready: bool


class Leave(_IdentityCommand):
    type: Literal["LEAVE"]


class GetRoomState(_RoomCommand):
    type: Literal["GET_ROOM_STATE"]


class GetHubState(_RoomCommand):
    type: Literal["GET_HUB_STATE"]


class SetCurrentGame(_RoomCommand):
    type: Literal["SET_CURRENT_GAME"]
    game_key: str


class StartGame(_RoomCommand):
    type: Literal["START_GAME"]


class AdvancePhase(_RoomCommand):
    type: Literal["ADVANCE_PHASE"]


class ForceResolveNight(_RoomCommand):
    type: Literal["FORCE_RESOLVE_NIGHT"]


class ForceResolveDay(_RoomCommand):
    type: Literal["FORCE_RESOLVE_DAY"]


class BackToLobby(_RoomCommand):
    type: Literal["BACK_TO_LOBBY"]


class SubmitNightAction(_IdentityCommand):
    type: Literal["NIGHT_ACTION"]
    action: NightAction
    target_id: str


class SubmitVote(_IdentityCommand):
    type: Literal["VOTE"]
    target_id: str


class RevealAllRoles(_RoomCommand):
    type: Literal["DEV_REVEAL_ROLES"]


class SetRole(_RoomCommand):
    type: Literal["DEV_SET_ROLE"]
    target_id: str
    role: Role


class ToggleAlive(_RoomCommand):
    type: Literal["DEV_TOGGLE_ALIVE"]
    target_id: str


Command = Annotated[
    Union[
        Ping,
        CreateRoom,
        AttachHost,
        SetDevMode,
        JoinRoom,
        AttachPlayer,
        SetReady,
        Leave,
        GetRoomState,
        GetHubState,
        SetCurrentGame,
        StartGame,
        AdvancePhase,
        ForceResolveNight,
        ForceResolveDay,
        BackToLobby,
        SubmitNightAction,
        SubmitVote,
        RevealAllRoles,
        SetRole,
        ToggleAlive,
    ],
    Field(discriminator="type"),
]

_adapter: TypeAdapter[Any] = TypeAdapter(Command)


def parse_command(raw: Union[str, bytes, dict]) -> Any:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ValidationError("BAD_COMMAND") from None
    if not isinstance(raw, dict):
        raise ValidationError("BAD_COMMAND")
    try:
        return _adapter.validate_python(raw)
    except pydantic.ValidationError as exc:
        raise ValidationError("BAD_COMMAND", reason=exc.errors(include_url=False)[0]["msg"]) from None
