"""Tests for night action intake and night resolution."""
from __future__ import annotations

import pytest

from errors import AuthorizationError, NotFoundError, PreconditionError
from models import Phase, Role
from conftest import FakeConnection, kill_player, new_game, seat_of, set_roles, standard_roles, started_room


def night_game(count: int = 5, roles=None):
    game = new_game(count, roles or standard_roles())
    game.advance()  # ROLE_REVEAL -> NIGHT
    assert game.state.phase == Phase.NIGHT
    return game


class TestNightIntake:
    """Submissions are validated against phase, role and alive set."""

    def test_mafia_can_pick_target(self):
        game = night_game()
        game.submit_night_action("p1", "kill", "p4")

        assert game.state.night_selections["p1"].target == "p4"

    def test_resubmission_overwrites(self):
        game = night_game()
        game.submit_night_action("p1", "kill", "p4")
        game.submit_night_action("p1", "kill", "p5")

        assert len(game.state.night_selections) == 1
        assert game.state.night_selections["p1"].target == "p5"

    def test_action_must_match_role(self):
        game = night_game()
        with pytest.raises(PreconditionError):
            game.submit_night_action("p4", "kill", "p5")
        with pytest.raises(PreconditionError):
            game.submit_night_action("p3", "check", "p5")

        assert game.state.night_selections == {}

    def test_dead_actor_cannot_act(self):
        game = night_game()
        kill_player(game.state, "p3")

        with pytest.raises(PreconditionError):
            game.submit_night_action("p3", "save", "p4")
        assert "p3" not in game.state.night_selections

    def test_dead_target_rejected(self):
        game = night_game()
        kill_player(game.state, "p4")

        with pytest.raises(PreconditionError):
            game.submit_night_action("p1", "kill", "p4")

    def test_outside_night_rejected(self):
        game = new_game(5, standard_roles())
        with pytest.raises(PreconditionError):
            game.submit_night_action("p1", "kill", "p4")

    def test_doctor_may_save_self(self):
        game = night_game()
        game.submit_night_action("p3", "save", "p3")

        assert game.state.night_selections["p3"].target == "p3"

    def test_detective_cannot_check_self(self):
        game = night_game()
        with pytest.raises(PreconditionError):
            game.submit_night_action("p2", "check", "p2")

    def test_mafia_cannot_target_mafia(self):
        game = night_game(7, {"p1": Role.MAFIA, "p2": Role.MAFIA, "p3": Role.DOCTOR})
        with pytest.raises(PreconditionError):
            game.submit_night_action("p1", "kill", "p2")
        with pytest.raises(PreconditionError):
            game.submit_night_action("p1", "kill", "p1")

    def test_reports_when_every_role_has_acted(self):
        game = night_game()
        assert game.submit_night_action("p1", "kill", "p4") is False
        assert game.submit_night_action("p3", "save", "p5") is False
        assert game.submit_night_action("p2", "check", "p1") is True


class TestNightResolution:
    """Doctor saves, deaths and investigations."""

    def test_scenario_b_doctor_saves_target(self):
        game = night_game()
        game.submit_night_action("p1", "kill", "p4")
        game.submit_night_action("p3", "save", "p4")
        game.resolve_night()

        assert game.state.last_resolution.to_public(game.state.seats) == {"type": "night", "died": None}
        assert game.state.alive["p4"] is True
        assert game.state.phase == Phase.DAY_DISCUSSION

    def test_scenario_c_doctor_saves_someone_else(self):
        game = night_game()
        game.submit_night_action("p1", "kill", "p4")
        game.submit_night_action("p3", "save", "p5")
        game.resolve_night()

        assert game.state.last_resolution.died == "p4"
        assert game.state.alive["p4"] is False

    def test_no_kill_submitted_means_no_death(self):
        game = night_game()
        game.resolve_night()

        assert game.state.last_resolution.died is None
        assert all(game.state.alive.values())

    def test_selections_cleared_after_resolution(self):
        game = night_game()
        game.submit_night_action("p1", "kill", "p4")
        game.resolve_night()

        assert game.state.night_selections == {}

    def test_investigation_result_returned_for_detective_only(self):
        game = night_game()
        game.submit_night_action("p2", "check", "p1")
        results = game.resolve_night()

        assert len(results) == 1
        detective, result = results[0]
        assert detective == "p2"
        assert result.target_id == "p1"
        assert result.is_mafia is True
        assert game.state.investigations == {"p2": [result]}

    def test_investigation_of_town_member(self):
        game = night_game()
        game.submit_night_action("p2", "check", "p5")
        (_, result), = game.resolve_night()

        assert result.is_mafia is False

    def test_selection_by_player_killed_later_is_ignored(self):
        game = night_game()
        game.submit_night_action("p3", "save", "p4")
        game.submit_night_action("p1", "kill", "p4")
        kill_player(game.state, "p3")
        game.resolve_night()

        assert game.state.last_resolution.died == "p4"

    def test_mafia_plurality_picks_the_kill(self):
        roles = {"p1": Role.MAFIA, "p2": Role.MAFIA, "p3": Role.MAFIA}
        game = night_game(10, roles)
        game.submit_night_action("p1", "kill", "p5")
        game.submit_night_action("p2", "kill", "p6")
        game.submit_night_action("p3", "kill", "p5")
        game.resolve_night()

        assert game.state.last_resolution.died == "p5"

    def test_mafia_tie_goes_to_latest_pick(self):
        roles = {"p1": Role.MAFIA, "p2": Role.MAFIA}
        game = night_game(7, roles)
        game.submit_night_action("p1", "kill", "p5")
        game.submit_night_action("p2", "kill", "p6")
        game.resolve_night()

        assert game.state.last_resolution.died == "p6"

    def test_force_resolve_outside_night_is_noop(self):
        game = new_game(5, standard_roles())
        assert game.force_resolve_night() == []
        assert game.state.phase == Phase.ROLE_REVEAL


async def act(session, conns, pid: str, action: str, target: str) -> None:
    await session.submit_night_action(conns[pid], pid, action, seat_of(session, target))


class TestNightInRoom:
    """Night flow through a room with connections."""

    @pytest.mark.asyncio
    async def test_night_auto_resolves_when_all_roles_acted(self, registry):
        session, host, conns = await started_room(registry, 5)
        set_roles(session.room.game, standard_roles())
        await session.advance_phase(host)

        await act(session, conns, "p1", "kill", "p4")
        await act(session, conns, "p3", "save", "p5")
        assert session.room.game.phase == Phase.NIGHT
        await act(session, conns, "p2", "check", "p1")

        assert session.room.game.phase == Phase.DAY_DISCUSSION
        assert session.room.game.alive["p4"] is False

    @pytest.mark.asyncio
    async def test_investigation_delivered_privately(self, registry):
        session, host, conns = await started_room(registry, 5)
        set_roles(session.room.game, standard_roles())
        await session.advance_phase(host)

        await act(session, conns, "p2", "check", "p1")
        await session.force_resolve_night(host)

        result = conns["p2"].last("INVESTIGATION_RESULT")
        assert result == {
            "type": "INVESTIGATION_RESULT",
            "targetId": seat_of(session, "p1"),
            "isMafia": True,
            "round": 1,
        }
        for pid, conn in conns.items():
            if pid != "p2":
                assert conn.of_type("INVESTIGATION_RESULT") == []
        assert host.of_type("INVESTIGATION_RESULT") == []

    @pytest.mark.asyncio
    async def test_unattached_connection_is_rejected(self, registry):
        session, host, conns = await started_room(registry, 5)
        set_roles(session.room.game, standard_roles())
        await session.advance_phase(host)

        with pytest.raises(NotFoundError) as exc:
            await session.submit_night_action(FakeConnection(), "p1", "kill", seat_of(session, "p4"))
        assert exc.value.silent is True
        assert session.room.game.night_selections == {}

    @pytest.mark.asyncio
    async def test_cannot_act_as_another_player(self, registry):
        session, host, conns = await started_room(registry, 5)
        set_roles(session.room.game, standard_roles())
        await session.advance_phase(host)

        with pytest.raises(AuthorizationError) as exc:
            await session.submit_night_action(conns["p4"], "p1", "kill", seat_of(session, "p5"))
        assert exc.value.silent is True
        assert session.room.game.night_selections == {}

    @pytest.mark.asyncio
    async def test_action_is_taken_for_the_bound_identity(self, registry):
        session, host, conns = await started_room(registry, 5)
        set_roles(session.room.game, standard_roles())
        await session.advance_phase(host)

        # A villager socket with no claimed id still acts only as the villager.
        with pytest.raises(PreconditionError):
            await session.submit_night_action(conns["p4"], "", "kill", seat_of(session, "p5"))
        assert session.room.game.night_selections == {}

    @pytest.mark.asyncio
    async def test_unknown_target_seat_is_rejected(self, registry):
        session, host, conns = await started_room(registry, 5)
        set_roles(session.room.game, standard_roles())
        await session.advance_phase(host)

        with pytest.raises(PreconditionError) as exc:
            await session.submit_night_action(conns["p1"], "p1", "kill", "p4")
        assert exc.value.code == "UNKNOWN_PLAYER"
        assert session.room.game.night_selections == {}
