"""Per-viewer snapshots of room and game state.

Everything here is a pure function of canonical state. Game views are
redacted: a viewer sees their own role and their own investigations, the
host sees aggregate progress counts, and nobody sees another player's
role, night target or individual vote.

Players are addressed by their public seat everywhere; a client id is a
credential and never appears in any snapshot.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from models import ROLE_ACTIONS, GameInstance, Phase, Player, PlayerId, Role, Room

ROLE_DESCRIPTIONS: Dict[Role, str] = {
    Role.MAFIA: "Each night, pick a member of the town to eliminate. Stay hidden during the day.",
    Role.DETECTIVE: "Each night, investigate one player to learn whether they belong to the mafia.",
    Role.DOCTOR: "Each night, choose one player to protect. You may protect yourself.",
    Role.VILLAGER: "No night power. Talk, deduce and vote out the mafia.",
}


def room_state(room: Optional[Room], code: str = "") -> Dict[str, Any]:
    if room is None:
        return {"roomCode": code, "players": []}
    return {
        "roomCode": room.code,
        "hostConnected": room.host_connection is not None,
        "devMode": room.dev_mode,
        "currentGame": room.current_game,
        "players": [
            {"id": p.seat, "name": p.name, "ready": p.ready, "connected": p.connected}
            for p in room.players.values()
        ],
    }


def hub_state(room: Room) -> Dict[str, Any]:
    scoreboard = sorted(room.players.values(), key=lambda p: (-p.score, p.name.lower()))
    game = room.game
    return {
        "roomCode": room.code,
        "currentGame": room.current_game,
        "scoreboard": [{"id": p.seat, "name": p.name, "score": p.score} for p in scoreboard],
        "history": list(room.history),
        "game": None if game is None else {
            "phase": game.phase.value,
            "round": game.round,
            "winningTeam": game.winning_team.value if game.winning_team else None,
        },
    }


def _progress(game: GameInstance) -> Dict[str, int]:
    alive = [pid for pid, a in game.alive.items() if a]
    actors = [pid for pid in alive if game.roles[pid] in ROLE_ACTIONS]
    return {
        "nightActed": sum(1 for pid in actors if pid in game.night_selections),
        "nightExpected": len(actors) if game.phase == Phase.NIGHT else 0,
        "votesCast": sum(1 for pid in alive if pid in game.day_votes),
        "votesExpected": len(alive) if game.phase == Phase.VOTE else 0,
    }


def project_game(
    game: Optional[GameInstance],
    players: Dict[PlayerId, Player],
    viewer: Optional[str],
    *,
    is_host: bool = False,
) -> Dict[str, Any]:
    if game is None:
        return {
            "phase": Phase.LOBBY.value,
            "round": 0,
            "players": [
                {"id": p.seat, "name": p.name, "alive": True, "connected": p.connected}
                for p in players.values()
            ],
            "lastResolution": None,
            "winningTeam": None,
            "narrator": [],
        }

    roster: List[Dict[str, Any]] = []
    for pid, name in game.names.items():
        member = players.get(pid)
        roster.append({
            "id": game.seats[pid],
            "name": name,
            "alive": game.alive[pid],
            "connected": member.connected if member else False,
        })

    view: Dict[str, Any] = {
        "phase": game.phase.value,
        "round": game.round,
        "players": roster,
        "lastResolution": game.last_resolution.to_public(game.seats) if game.last_resolution else None,
        "winningTeam": game.winning_team.value if game.winning_team else None,
        "narrator": list(game.narrator),
    }

    if is_host:
        view["progress"] = _progress(game)

    if viewer and PlayerId(viewer) in game.roles:
        pid = PlayerId(viewer)
        role = game.roles[pid]
        me: Dict[str, Any] = {
            "id": game.seats[pid],
            "role": role.value,
            "team": role.team.value,
            "alive": game.alive[pid],
            "investigations": [i.to_dict(game.seats) for i in game.investigations.get(pid, [])],
        }
        selection = game.night_selections.get(pid)
        if selection is not None:
            me["nightSelection"] = {"action": selection.action.value, "targetId": game.seats[selection.target]}
        if pid in game.day_votes:
            me["vote"] = game.seats[game.day_votes[pid]]
        view["me"] = me

    return view


def role_card(game: GameInstance, pid: PlayerId) -> Dict[str, Any]:
    role = game.roles[pid]
    return {
        "type": "ROLE_ASSIGNED",
        "role": role.value,
        "team": role.team.value,
        "description": ROLE_DESCRIPTIONS[role],
    }


def all_roles(game: GameInstance) -> List[Dict[str, Any]]:
    return [
        {"id": game.seats[pid], "name": game.names[pid], "role": game.roles[pid].value, "alive": game.alive[pid]}
        for pid in game.names
    ]
