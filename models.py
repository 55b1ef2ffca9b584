from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, NewType, Optional

if TYPE_CHECKING:
    from gateway import Connection


PlayerId = NewType("PlayerId", str)


class Team(str, Enum):
    MAFIA = "mafia"
    TOWN = "town"


class Role(str, Enum):
    MAFIA = "mafia"
    DETECTIVE = "detective"
    DOCTOR = "doctor"
    VILLAGER = "villager"

    @property
    def team(self) -> Team:
        return Team.MAFIA if self is Role.MAFIA else Team.TOWN


class NightAction(str, Enum):
    KILL = "kill"
    SAVE = "save"
    CHECK = "check"


ROLE_ACTIONS: Dict[Role, NightAction] = {
    Role.MAFIA: NightAction.KILL,
    Role.DOCTOR: NightAction.SAVE,
    Role.DETECTIVE: NightAction.CHECK,
}


class Phase(str, Enum):
    LOBBY = "LOBBY"
    ROLE_REVEAL = "ROLE_REVEAL"
    NIGHT = "NIGHT"
    DAY_DISCUSSION = "DAY_DISCUSSION"
    VOTE = "VOTE"
    RESOLUTION = "RESOLUTION"
    ENDED = "ENDED"


@dataclass
class Player:
    id: PlayerId
    name: str
    # Public handle shown to other members; ``id`` is the private credential.
    seat: str = ""
    ready: bool = False
    connection: Optional["Connection"] = None
    score: int = 0

    @property
    def connected(self) -> bool:
        return self.connection is not None


@dataclass
class Resolution:
    type: str
    died: Optional[PlayerId] = None
    eliminated: Optional[PlayerId] = None
    tie: bool = False

    def to_public(self, seats: Dict[PlayerId, str]) -> Dict[str, Any]:
        if self.type == "night":
            return {"type": "night", "died": seats.get(self.died) if self.died else None}
        eliminated = seats.get(self.eliminated) if self.eliminated else None
        return {"type": "day", "eliminated": eliminated, "tie": self.tie}


@dataclass
class Investigation:
    target_id: PlayerId
    is_mafia: bool
    round: int

    def to_dict(self, seats: Dict[PlayerId, str]) -> Dict[str, Any]:
        return {"targetId": seats[self.target_id], "isMafia": self.is_mafia, "round": self.round}


@dataclass
class NightSelection:
    action: NightAction
    target: PlayerId


@dataclass
class GameInstance:
    phase: Phase = Phase.ROLE_REVEAL
    round: int = 1
    # Frozen at start: seats, names, roles and alive share one key set.
    seats: Dict[PlayerId, str] = field(default_factory=dict)
    names: Dict[PlayerId, str] = field(default_factory=dict)
    roles: Dict[PlayerId, Role] = field(default_factory=dict)
    alive: Dict[PlayerId, bool] = field(default_factory=dict)
    # Insertion order is submission order; a resubmission moves to the end.
    night_selections: Dict[PlayerId, NightSelection] = field(default_factory=dict)
    day_votes: Dict[PlayerId, PlayerId] = field(default_factory=dict)
    last_resolution: Optional[Resolution] = None
    winning_team: Optional[Team] = None
    investigations: Dict[PlayerId, List[Investigation]] = field(default_factory=dict)
    narrator: List[str] = field(default_factory=list)
    points_awarded: bool = False
    started_at: float = field(default_factory=time.time)


@dataclass
class Room:
    code: str
    host_identity: str
    host_connection: Optional["Connection"] = None
    created_at: float = field(default_factory=time.time)
    dev_mode: bool = False
    current_game: str = "mafia"
    players: Dict[PlayerId, Player] = field(default_factory=dict)
    game: Optional[GameInstance] = None
    history: List[Dict[str, Any]] = field(default_factory=list)
