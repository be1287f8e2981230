from datetime import datetime, timedelta, timezone

import pytest

from edufall.core.leaderboard import LeaderboardStore
from edufall.utils.dates import next_weekly_reset, week_start, week_string


class MovableClock:
    def __init__(self, moment: datetime):
        self.moment = moment

    def __call__(self):
        return self.moment


@pytest.fixture
def clock():
    # A Wednesday
    return MovableClock(datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def board(clock):
    return LeaderboardStore(clock=clock)


class TestSubmissions:
    def test_entries_sorted_descending(self, board):
        board.submit("all-time", "p1", "Ann", 300)
        board.submit("all-time", "p2", "Bob", 500)
        board.submit("all-time", "p3", "Cy", 100)

        entries = board.get_leaderboard("all-time")
        assert [e.player_id for e in entries] == ["p2", "p1", "p3"]
        assert [e.rank for e in entries] == [1, 2, 3]

    def test_only_strictly_better_scores_replace(self, board):
        assert board.submit("all-time", "p1", "Ann", 300)
        assert not board.submit("all-time", "p1", "Ann", 300)
        assert not board.submit("all-time", "p1", "Ann", 200)
        assert board.submit("all-time", "p1", "Ann", 301)

        entries = board.get_leaderboard("all-time")
        assert len(entries) == 1
        assert entries[0].score == 301

    def test_ties_keep_earlier_achiever_ahead(self, board):
        board.submit("all-time", "first", "First", 100)
        board.submit("all-time", "second", "Second", 100)
        assert board.get_player_rank("all-time", "first") == 1
        assert board.get_player_rank("all-time", "second") == 2

    def test_board_is_capped(self, clock):
        store = LeaderboardStore(clock=clock, config={
            "boards": ["all-time"], "max_entries": 3, "reset_check_interval": 60,
        })
        for i in range(5):
            store.submit("all-time", f"p{i}", f"P{i}", i * 10)

        assert [e.score for e in store.get_leaderboard("all-time")] == [40, 30, 20]
        assert not store.submit("all-time", "low", "Low", 1)
        assert store.get_player_rank("all-time", "low") is None

    def test_unknown_board(self, board):
        assert not board.submit("chess", "p1", "Ann", 10)
        assert board.get_leaderboard("chess") == []

    def test_submit_score_fans_out(self, board):
        result = board.submit_score("p1", "Ann", 900, "math", {
            "streak": 7, "accuracy": 100, "grade": "S", "perfect_game_time": 15000,
        })

        assert set(result.improvements) == {"daily", "weekly", "all-time", "math", "streak", "speed-run"}
        assert result.new_ranks["all-time"] == 1
        assert board.get_player_entry("streak", "p1").score == 7
        speed = board.get_player_entry("speed-run", "p1")
        assert speed.score == -15000
        assert speed.extra["time"] == 15000

    def test_faster_speed_run_ranks_higher(self, board):
        board.submit_score("slow", "Slow", 500, "math", {"perfect_game_time": 30000})
        board.submit_score("fast", "Fast", 400, "math", {"perfect_game_time": 12000})
        assert board.get_player_rank("speed-run", "fast") == 1

    def test_no_streak_skips_streak_board(self, board):
        result = board.submit_score("p1", "Ann", 50, "history", {"streak": 0})
        assert "streak" not in result.new_ranks
        assert "history" in result.improvements

    def test_surrounding_entries_and_summary(self, board):
        for i in range(10):
            board.submit("all-time", f"p{i}", f"P{i}", (10 - i) * 100)

        around = board.get_surrounding_entries("all-time", "p5", range=2)
        assert [e.rank for e in around] == [4, 5, 6, 7, 8]

        board.submit_score("me", "Me", 2000, "math", {"streak": 4})
        summary = board.get_leaderboard_summary("me")
        assert summary["all_time"] == {"rank": 1, "score": 2000}
        assert summary["streak"]["value"] == 4

    def test_offset_paging(self, board):
        for i in range(5):
            board.submit("daily", f"p{i}", f"P{i}", 100 - i)
        page = board.get_leaderboard("daily", limit=2, offset=2)
        assert [e.player_id for e in page] == ["p2", "p3"]
        assert page[0].rank == 3


class TestResets:
    def test_week_key_is_most_recent_sunday(self):
        wednesday = datetime(2024, 5, 15, tzinfo=timezone.utc)
        sunday = datetime(2024, 5, 12, 23, 59, tzinfo=timezone.utc)
        assert week_start(wednesday).isoformat() == "2024-05-12"
        assert week_string(sunday) == "week-of-2024-05-12"
        assert next_weekly_reset(sunday) == datetime(2024, 5, 19, tzinfo=timezone.utc)

    def test_daily_board_clears_at_midnight(self, board, clock):
        board.submit("daily", "p1", "Ann", 100)
        board.submit("all-time", "p1", "Ann", 100)

        clock.moment += timedelta(days=1)
        assert board.check_resets() == ["daily"]

        assert board.get_leaderboard("daily") == []
        assert len(board.get_leaderboard("all-time")) == 1
        assert board.reset_time("daily") == datetime(2024, 5, 17, tzinfo=timezone.utc)

    def test_weekly_board_clears_on_sunday(self, board, clock):
        board.submit("weekly", "p1", "Ann", 100)

        clock.moment = datetime(2024, 5, 19, 0, 1, tzinfo=timezone.utc)
        assert "weekly" in board.check_resets()
        assert board.get_leaderboard("weekly") == []

    def test_reads_trigger_reset(self, board, clock):
        board.submit("daily", "p1", "Ann", 100)
        clock.moment += timedelta(days=1)
        assert board.get_player_rank("daily", "p1") is None

    async def test_periodic_check_runs_on_scheduler(self, board, clock, scheduler):
        board.submit("daily", "p1", "Ann", 100)
        board.start(scheduler)
        board.start(scheduler)
        assert scheduler.pending_names() == ["leaderboard_reset_check"]

        await scheduler.advance(60)
        assert len(board.snapshot()["boards"]["daily"]) == 1

        clock.moment += timedelta(days=1)
        await scheduler.advance(60)
        assert board.snapshot()["boards"]["daily"] == []
        assert scheduler.pending() == 1

        await board.stop()
        assert scheduler.pending() == 0


class TestSnapshots:
    def test_restore_round_trip(self, board, clock):
        board.submit_score("p1", "Ann", 700, "science", {"streak": 3})
        snapshot = board.snapshot()

        restored = LeaderboardStore(clock=clock)
        restored.restore(snapshot)

        assert restored.get_player_rank("science", "p1") == 1
        assert restored.get_player_entry("all-time", "p1").score == 700

    def test_stale_daily_snapshot_resets(self, board, clock):
        board.submit("daily", "p1", "Ann", 100)
        board.submit("all-time", "p1", "Ann", 100)
        snapshot = board.snapshot()

        clock.moment += timedelta(days=1)
        restored = LeaderboardStore(clock=clock)
        restored.restore(snapshot)

        assert restored.get_leaderboard("daily") == []
        assert restored.get_player_rank("all-time", "p1") == 1

    def test_unknown_boards_are_skipped(self, board):
        board.restore({"boards": {"chess": [{"player_id": "p1", "score": 1}]}})
        assert "chess" not in board.available_boards()
