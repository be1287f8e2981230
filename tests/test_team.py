import random

import pytest

from edufall.config.settings import TEAM_CONFIG
from edufall.core.team import TeamManager
from edufall.services.activity_registry import ActivityKind

from conftest import CORRECT, WRONG


@pytest.fixture
def teams(scheduler, bus, activity, questions):
    config = {**TEAM_CONFIG, "questions_per_challenge": 3}
    return TeamManager(scheduler, bus, activity, questions, rng=random.Random(5), config=config)


async def two_teams(teams, extra=False):
    await teams.join_lobby("p1", "Ann")
    await teams.join_lobby("p2", "Bob")
    await teams.join_team("p1", 0)
    await teams.join_team("p2", "1")
    if extra:
        await teams.join_lobby("p3", "Cy")


class TestLobby:
    async def test_team_assignment(self, teams, sink):
        await teams.join_lobby("p1", "Ann")
        await teams.join_lobby("p2", "Bob")
        info = teams.team_info()
        assert info["unassigned"] == ["Ann", "Bob"]
        assert not teams.can_start()

        await teams.join_team("p1", 0)
        await teams.join_team("p2", 0)
        assert not teams.can_start()
        await teams.join_team("p2", 2)

        update = sink.last("p2", "team-lobby-update")
        assert update["can_start"]
        assert not update["is_host"]
        assert update["teams"][2]["members"] == ["Bob"]
        assert update["teams"][2]["color"] == "#45B7D1"

    @pytest.mark.parametrize("team_id", [4, -1, "x", None])
    async def test_invalid_team(self, teams, team_id):
        await teams.join_lobby("p1", "Ann")
        assert not await teams.join_team("p1", team_id)

    async def test_join_team_needs_lobby(self, teams):
        assert not await teams.join_team("ghost", 0)

    async def test_host_passes_on_leave(self, teams, activity):
        await two_teams(teams)
        assert await teams.leave_lobby("p1")
        assert teams.host_id == "p2"
        assert not activity.is_busy("p1")


class TestChallenge:
    async def test_start_sends_team_details(self, teams, activity, sink):
        await two_teams(teams, extra=True)
        assert not await teams.start_challenge("p2")
        assert await teams.start_challenge("p1")

        start = sink.last("p2", "team-challenge-start")
        assert start["team_name"] == "Cyan"
        assert start["starting_lives"] == 3
        assert start["total_questions"] == 3
        question = sink.last("p1", "question")
        assert question["question_number"] == 1
        assert CORRECT in question["options"]

        assert activity.current("p1").kind == ActivityKind.TEAM_CHALLENGE
        # Players without a team go back to the lobby screen
        assert not activity.is_busy("p3")
        assert sink.last("p3", "team-challenge-start") is None

    async def test_combo_scoring_and_lives(self, teams, sink):
        await two_teams(teams)
        await teams.start_challenge("p1")
        challenge = teams.get_player_challenge("p1")
        red = challenge.teams[0]

        assert await teams.submit_answer("p1", CORRECT)
        assert await teams.submit_answer("p1", CORRECT)
        assert red.total_score == 11 + 12
        assert not await teams.submit_answer("p1", WRONG)
        assert red.combo == 0
        assert red.lives == 2
        assert await teams.submit_answer("p1", CORRECT) is None

        progress = sink.last("p1", "team-progress")
        assert progress["my_team"]["score"] == 23
        assert progress["standings"][0]["team_id"] == 0

        for _ in range(3):
            await teams.submit_answer("p2", CORRECT)
        end = sink.last("p1", "team-challenge-end")
        assert end["winner"] == "Cyan"
        assert end["winning_team"] == 1
        assert [r["score"] for r in end["results"]] == [36, 23]

    async def test_last_team_standing_wins(self, teams, activity, sink, scheduler):
        config = {**TEAM_CONFIG, "questions_per_challenge": 5}
        teams.config = config
        await two_teams(teams)
        await teams.start_challenge("p1")
        challenge = teams.get_player_challenge("p1")

        for _ in range(3):
            await teams.record_answer("p2", False)

        assert sink.last("p2", "team-eliminated")["team_name"] == "Cyan"
        end = sink.last("p2", "team-challenge-end")
        assert end["winner"] == "Red"
        assert not challenge.active
        assert not activity.is_busy("p1")
        assert not await teams.record_answer("p1", True)

        await scheduler.advance(60)
        assert teams.get_challenge(challenge.id) is None

    async def test_disconnect_during_challenge(self, teams, activity):
        await two_teams(teams)
        await teams.start_challenge("p1")
        challenge = teams.get_player_challenge("p2")

        await teams.handle_disconnect("p2")

        assert not challenge.teams[1].members["p2"].active
        assert not activity.is_busy("p2")
        assert await teams.submit_answer("p2", CORRECT) is None
