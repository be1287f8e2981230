import pytest

from edufall.services.activity_registry import ActivityKind

from conftest import CORRECT, WRONG


@pytest.fixture
def sessions(context):
    return context.sessions


async def play_answers(sessions, scheduler, count, answer=CORRECT, delay=2.0):
    for _ in range(count):
        await scheduler.advance(delay)
        await sessions.submit_answer("p1", answer)
        await scheduler.advance(0.5)


class TestStart:
    async def test_start_publishes_question_and_options(self, sessions, context, sink):
        assert await sessions.start_game("p1", "Ann", "moderate", "math")

        assert sink.types("p1") == ["game-started", "question", "answer-options"]
        question = sink.last("p1", "question")
        assert question["question_number"] == 1
        assert question["total_questions"] == 10
        assert question["difficulty"] == "intermediate"
        assert "correct_answer" not in question
        assert CORRECT in sink.last("p1", "answer-options")["answers"]
        assert context.activity.current("p1").kind == ActivityKind.SESSION

    async def test_busy_player_cannot_start(self, sessions, context):
        context.activity.claim("p1", ActivityKind.RACE_LOBBY, "race_lobby")
        assert not await sessions.start_game("p1", "Ann")
        assert sessions.get_session("p1") is None

    async def test_question_difficulty_vocabulary_is_accepted(self, sessions):
        await sessions.start_game("p1", "Ann", "advanced")
        session = sessions.get_session("p1")
        assert session.difficulty == "hard"
        assert session.question_difficulty == "advanced"


class TestAnswers:
    async def test_correct_answer_scores_and_speeds_up(self, sessions, scheduler, sink):
        await sessions.start_game("p1", "Ann", "moderate")
        await scheduler.advance(1)

        assert await sessions.submit_answer("p1", CORRECT) is True
        update = sink.last("p1", "score-update")
        assert update["breakdown"]["total_points"] == 400
        assert update["stats"]["current_streak"] == 1
        assert sessions.gravity_scale("p1") == pytest.approx(0.15)

        # Cooldown swallows further answers
        assert await sessions.submit_answer("p1", CORRECT) is None
        await scheduler.advance(0.5)
        assert sink.last("p1", "question")["question_number"] == 2

    async def test_wrong_answer_resets_gravity(self, sessions, scheduler, sink):
        await sessions.start_game("p1", "Ann", "moderate")
        await play_answers(sessions, scheduler, 2)
        assert sessions.gravity_scale("p1") == pytest.approx(0.2)

        assert await sessions.answer_collision("p1", WRONG) is False
        wrong = sink.last("p1", "wrong-answer")
        assert wrong["correct_answer"] == CORRECT
        assert wrong["stats"]["current_streak"] == 0
        assert sessions.gravity_scale("p1") == pytest.approx(0.1)

    async def test_gravity_is_capped(self, sessions, scheduler):
        await sessions.start_game("p1", "Ann", "hard")
        await play_answers(sessions, scheduler, 6)
        assert sessions.gravity_scale("p1") == pytest.approx(0.3)

    async def test_beginner_gravity_stays_flat(self, sessions, scheduler):
        await sessions.start_game("p1", "Ann", "beginner")
        await play_answers(sessions, scheduler, 3)
        assert sessions.gravity_scale("p1") == pytest.approx(0.1)

    async def test_falling_past_counts_as_wrong(self, sessions, scheduler):
        await sessions.start_game("p1", "Ann")
        assert await sessions.fall_past_threshold("p1")
        assert not await sessions.fall_past_threshold("p1")
        assert sessions.get_session("p1").wrong_answers == 1

    async def test_no_session_means_no_answer(self, sessions):
        assert await sessions.submit_answer("ghost", CORRECT) is None
        assert sessions.gravity_scale("ghost") == pytest.approx(0.1)


class TestEnding:
    async def test_full_game_lands_and_returns_to_lobby(self, sessions, context, scheduler, sink):
        await context.persistence.load_player_data("p1", "Ann")
        await sessions.start_game("p1", "Ann", "moderate")

        await play_answers(sessions, scheduler, 9)
        assert not await sessions.landed("p1")
        await play_answers(sessions, scheduler, 1)

        session = sessions.get_session("p1")
        assert session.final_fall
        assert session.current_question is None
        assert await sessions.submit_answer("p1", CORRECT) is None

        assert await sessions.landed("p1")
        over = sink.last("p1", "game-over")
        assert over["summary"]["correct_count"] == 10
        assert over["summary"]["perfect_game"]
        assert over["leaderboard_ranks"]["all-time"] == 1
        assert {"text": "New High Score!", "is_new_record": True} in over["improvements"]
        assert over["player_stats"]["games_played"] == 1

        data = context.persistence.get_player_data("p1")
        assert data["total_games_played"] == 1
        assert data["fastest_perfect_game"] == pytest.approx(20000)
        assert "games_1" in data["unlocked_achievements"]
        assert "streak_10" in data["unlocked_achievements"]
        assert context.leaderboard.get_player_entry("speed-run", "p1").score == -20000

        assert not await sessions.landed("p1")
        await scheduler.advance(8)
        assert sink.types("p1")[-1] == "return-to-lobby"
        assert not context.activity.is_busy("p1")
        assert sessions.get_session("p1") is None

    async def test_practice_game_skips_scoring(self, sessions, context, scheduler, sink):
        await sessions.start_game("p1", "Ann", "moderate", practice=True)
        await play_answers(sessions, scheduler, 9)
        await play_answers(sessions, scheduler, 1, answer=WRONG)
        await sessions.landed("p1")

        over = sink.last("p1", "game-over")
        assert over["is_practice"]
        assert over["summary"]["grade"] == "P"
        assert over["summary"]["accuracy"] == 90
        assert context.leaderboard.get_player_rank("all-time", "p1") is None
        assert sink.last("p1", "score-update")["breakdown"] is None

    async def test_restart_shows_start_screen(self, sessions, context, sink):
        await sessions.start_game("p1", "Ann")
        assert await sessions.restart_game("p1")
        assert sink.types("p1")[-1] == "show-start"
        assert not context.activity.is_busy("p1")
        assert not await sessions.restart_game("p1")

    async def test_return_to_lobby_mid_game_forfeits(self, sessions, context, scheduler, sink):
        await sessions.start_game("p1", "Ann")
        await play_answers(sessions, scheduler, 2)
        assert await sessions.return_to_lobby("p1")
        assert context.scoring.get_session_stats("p1") is None
        assert sink.types("p1")[-1] == "return-to-lobby"

    async def test_disconnect_records_silently(self, sessions, context, scheduler, sink):
        await context.persistence.load_player_data("p1", "Ann")
        await sessions.start_game("p1", "Ann")
        await play_answers(sessions, scheduler, 3)

        summary = await sessions.handle_disconnect("p1")

        assert summary.correct_count == 3
        assert sink.last("p1", "game-over") is None
        assert context.persistence.get_player_data("p1")["total_games_played"] == 1
        assert not context.activity.is_busy("p1")
        assert sessions.active_players() == 0
        assert await sessions.handle_disconnect("p1") is None

    async def test_stale_cooldown_after_restart_is_ignored(self, sessions, scheduler, sink):
        await sessions.start_game("p1", "Ann")
        await scheduler.advance(1)
        await sessions.submit_answer("p1", CORRECT)
        await sessions.restart_game("p1")
        await sessions.start_game("p1", "Ann")
        sink.clear()

        await scheduler.advance(0.5)
        assert sink.of_type("p1", "question") == []


class TestAdaptive:
    async def test_fast_correct_answers_raise_difficulty(self, sessions, scheduler, sink):
        await sessions.start_game("p1", "Ann", "moderate", adaptive=True)
        assert sink.last("p1", "game-started")["is_adaptive"] is True

        await play_answers(sessions, scheduler, 2)
        assert sink.of_type("p1", "difficulty-changed") == []

        await play_answers(sessions, scheduler, 1)
        change = sink.last("p1", "difficulty-changed")
        assert (change["previous"], change["difficulty"]) == ("moderate", "hard")
        assert change["performance"]["accuracy"] == 1.0

        session = sessions.get_session("p1")
        assert session.difficulty == "hard"
        assert sink.last("p1", "question")["difficulty"] == "advanced"

    async def test_slow_answers_lower_difficulty(self, sessions, scheduler, sink):
        await sessions.start_game("p1", "Ann", "moderate", adaptive=True)
        await play_answers(sessions, scheduler, 3, delay=16.0)

        assert sessions.get_session("p1").question_difficulty == "beginner"
        assert sink.last("p1", "question")["difficulty"] == "beginner"

    async def test_fixed_difficulty_by_default(self, sessions, scheduler, sink):
        await sessions.start_game("p1", "Ann", "moderate")
        await play_answers(sessions, scheduler, 4)

        assert sink.of_type("p1", "difficulty-changed") == []
        assert sessions.get_session("p1").difficulty == "moderate"

    async def test_disconnect_forgets_performance(self, sessions, context, scheduler):
        await sessions.start_game("p1", "Ann", "hard", adaptive=True)
        await play_answers(sessions, scheduler, 1)
        await sessions.handle_disconnect("p1")
        assert context.adaptive.get_performance_stats("p1") is None
