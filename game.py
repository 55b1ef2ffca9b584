from __future__ import annotations

import logging
import random
import time
from typing import Dict, List, Optional, Sequence, Tuple

from errors import PreconditionError, ValidationError
from models import (
    ROLE_ACTIONS,
    GameInstance,
    Investigation,
    NightAction,
    NightSelection,
    Phase,
    Player,
    PlayerId,
    Resolution,
    Role,
    Team,
)

logger = logging.getLogger(__name__)

NARRATOR_LIMIT = 200


def get_mafia_count(player_count: int) -> int:
    if player_count <= 3:
        return 1
    return max(1, (player_count - 1) // 3)


def deal_roles(player_count: int, rng: Optional[random.Random] = None) -> List[Role]:
    """Build and shuffle one role per player."""
    rng = rng or random.Random()
    roles: List[Role] = [Role.MAFIA] * min(get_mafia_count(player_count), player_count)
    if player_count >= 3:
        if len(roles) < player_count:
            roles.append(Role.DETECTIVE)
        if len(roles) < player_count:
            roles.append(Role.DOCTOR)
    roles += [Role.VILLAGER] * (player_count - len(roles))
    rng.shuffle(roles)
    return roles


class MafiaGame:
    """Phase machine for a single game in a room.

    Pure state: no I/O, no awaiting. Callers hold the room lock and
    broadcast whatever changed afterwards. Rule violations that a client
    can trigger by being out of date (wrong phase, dead actor) raise silent
    ``PreconditionError``; shape problems raise ``ValidationError``.
    """

    def __init__(self, state: GameInstance) -> None:
        self.state = state

    @classmethod
    def start(
        cls,
        roster: Sequence[Tuple[PlayerId, str, str]],
        rng: Optional[random.Random] = None,
    ) -> "MafiaGame":
        """Deal roles to ``(id, name, seat)`` entries and open ROLE_REVEAL."""
        roles = deal_roles(len(roster), rng)
        state = GameInstance(phase=Phase.ROLE_REVEAL, round=1)
        for (pid, name, seat), role in zip(roster, roles):
            state.seats[pid] = seat
            state.names[pid] = name
            state.roles[pid] = role
            state.alive[pid] = True
        game = cls(state)
        game._narrate("The roles have been dealt.")
        return game

    # ── Queries ────────────────────────────────────────────────────────────

    @property
    def ended(self) -> bool:
        return self.state.phase == Phase.ENDED

    def is_alive(self, pid: Optional[str]) -> bool:
        return bool(pid) and self.state.alive.get(PlayerId(pid), False)

    def player_at(self, seat: str) -> PlayerId:
        for pid, value in self.state.seats.items():
            if value == seat:
                return pid
        raise PreconditionError("UNKNOWN_PLAYER")

    def alive_ids(self) -> List[PlayerId]:
        return [pid for pid, alive in self.state.alive.items() if alive]

    def night_actors(self) -> List[PlayerId]:
        """Living players whose role has a night action."""
        return [pid for pid in self.alive_ids() if self.state.roles[pid] in ROLE_ACTIONS]

    def check_winner(self) -> Optional[Team]:
        mafia_alive = 0
        town_alive = 0
        for pid in self.alive_ids():
            if self.state.roles[pid].team is Team.MAFIA:
                mafia_alive += 1
            else:
                town_alive += 1
        if mafia_alive == 0:
            return Team.TOWN
        if mafia_alive >= town_alive:
            return Team.MAFIA
        return None

    # ── Phase flow ─────────────────────────────────────────────────────────

    def advance(self) -> List[Tuple[PlayerId, Investigation]]:
        """Host-driven step to the next phase.

        Returns investigation results produced by a night resolution, if any.
        """
        phase = self.state.phase
        if phase == Phase.ROLE_REVEAL:
            self._enter_night()
        elif phase == Phase.NIGHT:
            return self.resolve_night()
        elif phase == Phase.DAY_DISCUSSION:
            self.state.phase = Phase.VOTE
            self.state.day_votes = {}
            self._narrate("Voting is open.")
        elif phase == Phase.VOTE:
            self.resolve_day()
        elif phase == Phase.RESOLUTION:
            self.state.round += 1
            self._enter_night()
        else:
            raise PreconditionError("GAME_ENDED")
        return []

    def _enter_night(self) -> None:
        self.state.phase = Phase.NIGHT
        self.state.night_selections = {}
        self._narrate(f"Night {self.state.round} falls.")

    # ── Night ──────────────────────────────────────────────────────────────

    def submit_night_action(self, actor: str, action: str, target: str) -> bool:
        """Record ``actor``'s pick for tonight.

        Returns True once every living role-holder has picked.
        """
        if self.state.phase != Phase.NIGHT:
            raise PreconditionError("WRONG_PHASE")
        actor_id = PlayerId(actor)
        target_id = PlayerId(target)
        if not self.is_alive(actor_id):
            raise PreconditionError("ACTOR_NOT_ALIVE")
        if not self.is_alive(target_id):
            raise PreconditionError("TARGET_NOT_ALIVE")
        try:
            requested = NightAction(action)
        except ValueError:
            raise ValidationError(silent=True) from None
        role = self.state.roles[actor_id]
        if ROLE_ACTIONS.get(role) is not requested:
            raise PreconditionError("ACTION_NOT_ALLOWED")
        if requested is NightAction.KILL and self.state.roles[target_id] is Role.MAFIA:
            raise PreconditionError("TARGET_NOT_ALLOWED")
        if requested is NightAction.CHECK and target_id == actor_id:
            raise PreconditionError("TARGET_NOT_ALLOWED")

        self.state.night_selections.pop(actor_id, None)
        self.state.night_selections[actor_id] = NightSelection(requested, target_id)
        return all(pid in self.state.night_selections for pid in self.night_actors())

    def _valid_selections(self, action: NightAction) -> List[Tuple[PlayerId, PlayerId]]:
        picks = []
        for actor, sel in self.state.night_selections.items():
            if sel.action is not action:
                continue
            if not self.is_alive(actor) or not self.is_alive(sel.target):
                continue
            if ROLE_ACTIONS.get(self.state.roles[actor]) is not action:
                continue
            picks.append((actor, sel.target))
        return picks

    def _kill_target(self) -> Optional[PlayerId]:
        picks = [
            (actor, target) for actor, target in self._valid_selections(NightAction.KILL)
            if self.state.roles[target] is not Role.MAFIA
        ]
        if not picks:
            return None
        tally: Dict[PlayerId, int] = {}
        for _, target in picks:
            tally[target] = tally.get(target, 0) + 1
        top = max(tally.values())
        leaders = {t for t, c in tally.items() if c == top}
        # Ties go to the most recent pick among the leaders.
        for _, target in reversed(picks):
            if target in leaders:
                return target
        return None

    def resolve_night(self) -> List[Tuple[PlayerId, Investigation]]:
        if self.state.phase != Phase.NIGHT:
            raise PreconditionError("WRONG_PHASE")

        kill = self._kill_target()
        saves = {target for _, target in self._valid_selections(NightAction.SAVE)}

        results: List[Tuple[PlayerId, Investigation]] = []
        for detective, target in self._valid_selections(NightAction.CHECK):
            if target == detective:
                continue
            result = Investigation(
                target_id=target,
                is_mafia=self.state.roles[target] is Role.MAFIA,
                round=self.state.round,
            )
            self.state.investigations.setdefault(detective, []).append(result)
            results.append((detective, result))

        died: Optional[PlayerId] = None
        if kill is not None and kill not in saves:
            died = kill
            self.state.alive[kill] = False

        self.state.last_resolution = Resolution(type="night", died=died)
        if died is None:
            self._narrate("Dawn breaks. Nobody died tonight.")
        else:
            self._narrate(f"Dawn breaks. {self.state.names[died]} did not survive the night.")

        if not self._evaluate_winner():
            self.state.night_selections = {}
            self.state.phase = Phase.DAY_DISCUSSION
            self._narrate("Discuss.")
        return results

    # ── Day ────────────────────────────────────────────────────────────────

    def submit_vote(self, voter: str, target: str) -> bool:
        """Record a vote. Returns True once every living player has voted."""
        if self.state.phase != Phase.VOTE:
            raise PreconditionError("WRONG_PHASE")
        voter_id = PlayerId(voter)
        target_id = PlayerId(target)
        if not self.is_alive(voter_id):
            raise PreconditionError("VOTER_NOT_ALIVE")
        if not self.is_alive(target_id):
            raise PreconditionError("TARGET_NOT_ALIVE")
        if voter_id == target_id:
            raise PreconditionError("TARGET_NOT_ALLOWED")
        self.state.day_votes[voter_id] = target_id
        return all(pid in self.state.day_votes for pid in self.alive_ids())

    def tally_votes(self) -> Dict[PlayerId, int]:
        tally: Dict[PlayerId, int] = {}
        for voter, target in self.state.day_votes.items():
            if self.is_alive(voter) and self.is_alive(target):
                tally[target] = tally.get(target, 0) + 1
        return tally

    def resolve_day(self) -> Resolution:
        if self.state.phase != Phase.VOTE:
            raise PreconditionError("WRONG_PHASE")

        tally = self.tally_votes()
        eliminated: Optional[PlayerId] = None
        tie = False
        if tally:
            top = max(tally.values())
            leaders = [pid for pid, count in tally.items() if count == top]
            if len(leaders) == 1:
                eliminated = leaders[0]
            else:
                tie = True

        if eliminated is not None:
            self.state.alive[eliminated] = False
            self._narrate(f"The town has eliminated {self.state.names[eliminated]}.")
        elif tie:
            self._narrate("The vote is tied. Nobody is eliminated.")
        else:
            self._narrate("Nobody was eliminated.")

        resolution = Resolution(type="day", eliminated=eliminated, tie=tie)
        self.state.last_resolution = resolution
        self.state.day_votes = {}
        if not self._evaluate_winner():
            self.state.phase = Phase.RESOLUTION
        return resolution

    # ── Host overrides ─────────────────────────────────────────────────────

    def force_resolve_night(self) -> List[Tuple[PlayerId, Investigation]]:
        if self.state.phase != Phase.NIGHT:
            return []
        return self.resolve_night()

    def force_resolve_day(self) -> Optional[Resolution]:
        if self.state.phase != Phase.VOTE:
            return None
        return self.resolve_day()

    # ── Dev mode ───────────────────────────────────────────────────────────

    def set_role(self, target: str, role: Role) -> None:
        if self.ended:
            raise PreconditionError("GAME_ENDED")
        target_id = PlayerId(target)
        if target_id not in self.state.roles:
            raise PreconditionError("UNKNOWN_PLAYER")
        self.state.roles[target_id] = role
        self.state.night_selections.pop(target_id, None)

    def toggle_alive(self, target: str) -> bool:
        if self.ended:
            raise PreconditionError("GAME_ENDED")
        target_id = PlayerId(target)
        if target_id not in self.state.alive:
            raise PreconditionError("UNKNOWN_PLAYER")
        self.state.alive[target_id] = not self.state.alive[target_id]
        self._evaluate_winner()
        return self.state.alive[target_id]

    # ── Endgame ────────────────────────────────────────────────────────────

    def _evaluate_winner(self) -> bool:
        if self.state.winning_team is not None:
            return True
        winner = self.check_winner()
        if winner is None:
            return False
        self.state.winning_team = winner
        self.state.phase = Phase.ENDED
        self._narrate(f"Game over. The {winner.value} wins.")
        logger.info("game ended round=%s winner=%s", self.state.round, winner.value)
        return True

    def award_points(self, players: Dict[PlayerId, Player]) -> List[PlayerId]:
        """Credit every winning-team member still in the room, once per game."""
        if self.state.winning_team is None or self.state.points_awarded:
            return []
        self.state.points_awarded = True
        credited = []
        for pid, role in self.state.roles.items():
            if role.team is self.state.winning_team and pid in players:
                players[pid].score += 1
                credited.append(pid)
        return credited

    def _narrate(self, line: str) -> None:
        ts = time.strftime("%H:%M:%S")
        self.state.narrator.append(f"[{ts}] {line}")
        self.state.narrator = self.state.narrator[-NARRATOR_LIMIT:]
