import pytest

from edufall.services.adaptive_difficulty import AdaptiveDifficultyTracker


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return AdaptiveDifficultyTracker(clock=clock)


def feed(tracker, answers, response_time=2.0, player_id="p1"):
    difficulty = None
    for correct in answers:
        difficulty = tracker.record_answer(player_id, correct, response_time)
    return difficulty


class TestAdjustments:
    def test_needs_three_answers(self, tracker):
        tracker.start_player("p1", "moderate")
        assert feed(tracker, [True, True]) == "moderate"
        assert tracker.record_answer("p1", True, 2.0) == "hard"

    def test_fast_accurate_player_steps_up(self, tracker):
        tracker.start_player("p1", "beginner")
        assert feed(tracker, [True, True, True]) == "moderate"

    def test_struggling_player_steps_down(self, tracker):
        tracker.start_player("p1", "hard")
        assert feed(tracker, [False, True, False]) == "moderate"

    def test_slow_answers_step_down(self, tracker):
        tracker.start_player("p1", "moderate")
        assert feed(tracker, [True, True, True], response_time=16.0) == "beginner"

    def test_steady_player_stays(self, tracker):
        tracker.start_player("p1", "moderate")
        assert feed(tracker, [True, False, True, True], response_time=8.0) == "moderate"

    def test_cooldown_between_adjustments(self, tracker, clock):
        tracker.start_player("p1", "beginner")
        assert feed(tracker, [True, True, True]) == "moderate"

        clock.now = 10.0
        assert feed(tracker, [True]) == "moderate"
        clock.now = 15.0
        assert feed(tracker, [True]) == "hard"

    def test_difficulty_is_clamped(self, tracker):
        tracker.start_player("p1", "hard")
        assert feed(tracker, [True] * 5) == "hard"
        assert tracker.get_performance_stats("p1")["current_difficulty"] == "hard"

    def test_window_keeps_recent_answers(self, tracker, clock):
        tracker.start_player("p1", "moderate")
        feed(tracker, [False] * 10, response_time=8.0)
        clock.now = 100.0
        feed(tracker, [True] * 10, response_time=8.0)

        stats = tracker.get_performance_stats("p1")
        assert stats["window"] == 10
        assert stats["accuracy"] == 1.0
        assert stats["target_accuracy"] == 0.75


class TestPlayers:
    def test_unknown_player_defaults(self, tracker):
        assert tracker.get_current_difficulty("ghost") == "moderate"
        assert tracker.get_performance_stats("ghost") is None

    def test_first_answer_starts_tracking(self, tracker):
        tracker.record_answer("p2", True, 1.0)
        assert tracker.get_performance_stats("p2")["window"] == 1

    def test_start_accepts_question_vocabulary(self, tracker):
        assert tracker.start_player("p1", "advanced") == "hard"

    def test_remove_player(self, tracker):
        tracker.start_player("p1", "hard")
        tracker.remove_player("p1")
        assert tracker.get_current_difficulty("p1") == "moderate"
