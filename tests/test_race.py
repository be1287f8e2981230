import random

import pytest

from edufall.config.settings import RACE_CONFIG
from edufall.core.race import RaceManager
from edufall.services.activity_registry import ActivityKind

from conftest import CORRECT, WRONG


@pytest.fixture
def race(scheduler, bus, activity, questions):
    config = {**RACE_CONFIG, "questions_per_race": 2}
    return RaceManager(scheduler, bus, activity, questions, rng=random.Random(4), config=config)


async def fill_lobby(race, count=2):
    for pid, name in [("p1", "Ann"), ("p2", "Bob"), ("p3", "Cy"), ("p4", "Dee")][:count]:
        assert await race.join_lobby(pid, name)


class TestLobby:
    async def test_first_player_hosts(self, race, sink):
        await race.join_lobby("p1", "Ann")
        update = sink.last("p1", "race-lobby-update")
        assert update["is_host"]
        assert not update["can_start"]

        await race.join_lobby("p2", "Bob")
        assert sink.last("p1", "race-lobby-update")["can_start"]
        assert not sink.last("p2", "race-lobby-update")["is_host"]
        assert race.host_id == "p1"

    async def test_lobby_is_capped(self, race):
        await fill_lobby(race, 4)
        assert not await race.join_lobby("p5", "Eve")

    async def test_rejoin_is_noop(self, race):
        await race.join_lobby("p1", "Ann")
        assert await race.join_lobby("p1", "Ann")
        assert len(race.lobby_players()) == 1

    async def test_busy_player_cannot_join(self, race, activity):
        activity.claim("p1", ActivityKind.SESSION, "p1")
        assert not await race.join_lobby("p1", "Ann")

    async def test_host_passes_on_leave(self, race, activity, sink):
        await fill_lobby(race, 3)
        assert await race.leave_lobby("p1")
        assert race.host_id == "p2"
        assert sink.last("p2", "race-lobby-update")["is_host"]
        assert not activity.is_busy("p1")
        assert not await race.leave_lobby("p1")

    async def test_start_requirements(self, race):
        await race.join_lobby("p1", "Ann")
        assert not await race.start_race("p1")
        await race.join_lobby("p2", "Bob")
        assert not await race.start_race("p2")
        assert await race.start_race("p1")
        assert race.lobby_players() == []


class TestRace:
    async def start(self, race, scheduler, count=2):
        await fill_lobby(race, count)
        await race.start_race("p1")
        session = race.get_player_session("p1")
        await scheduler.advance(3)
        return session

    async def test_countdown_then_questions(self, race, scheduler, activity, sink):
        await fill_lobby(race)
        await race.start_race("p1")
        assert activity.current("p1").kind == ActivityKind.RACE
        assert await race.submit_answer("p1", CORRECT) is None

        await scheduler.advance(3)
        assert [m["seconds"] for m in sink.of_type("p2", "race-countdown")] == [3, 2, 1, 0]
        question = sink.last("p2", "race-question")
        assert question["question_number"] == 1
        assert question["total_questions"] == 2
        assert CORRECT in question["answers"]

    async def test_most_correct_wins(self, race, scheduler, activity, sink):
        session = await self.start(race, scheduler)

        await scheduler.advance(1)
        assert await race.submit_answer("p1", CORRECT)
        assert not await race.submit_answer("p1", WRONG)
        assert sink.last("p2", "race-progress")["standings"][0]["player_id"] == "p1"
        assert sink.last("p1", "race-winner") is None

        await scheduler.advance(5)
        await race.submit_answer("p2", CORRECT)
        await race.submit_answer("p2", CORRECT)

        winner = sink.last("p1", "race-winner")
        assert winner["winner_id"] == "p2"
        assert winner["winner"] == "Bob"
        assert [r["player_id"] for r in winner["results"]] == ["p2", "p1"]
        assert winner["results"][1]["time"] == pytest.approx(1)
        assert not activity.is_busy("p1")
        assert not session.active

        await scheduler.advance(60)
        assert race.get_session(session.id) is None

    async def test_faster_wins_tie(self, race, scheduler, sink):
        await self.start(race, scheduler)
        await scheduler.advance(2)
        for _ in range(2):
            await race.submit_answer("p2", CORRECT)
        await scheduler.advance(2)
        for _ in range(2):
            await race.submit_answer("p1", CORRECT)
        assert sink.last("p1", "race-winner")["winner_id"] == "p2"

    async def test_leaving_stops_participant(self, race, scheduler, activity, sink):
        await self.start(race, scheduler)
        assert await race.leave_race("p2")
        assert not activity.is_busy("p2")

        await race.submit_answer("p1", CORRECT)
        await race.submit_answer("p1", CORRECT)
        assert sink.last("p1", "race-winner")["winner_id"] == "p1"

    async def test_everyone_leaves_during_countdown(self, race, scheduler, sink):
        await fill_lobby(race)
        await race.start_race("p1")
        session = race.get_player_session("p1")
        await race.handle_disconnect("p1")
        await race.handle_disconnect("p2")

        await scheduler.advance(3)
        assert sink.last("p1", "race-winner") is not None
        assert not session.active
        assert sink.of_type("p1", "race-question") == []

    async def test_disconnect_from_lobby(self, race, activity):
        await fill_lobby(race)
        await race.handle_disconnect("p2")
        assert [p["player_id"] for p in race.lobby_players()] == ["p1"]
        assert not activity.is_busy("p2")
