import pytest

from edufall.services.achievements import ACHIEVEMENTS, AchievementTracker


@pytest.fixture
async def tracker(persistence, bus):
    await persistence.load_player_data("p1", "Ann")
    return AchievementTracker(persistence, bus)


def unlocked_ids(sink, player_id="p1"):
    return [m["achievement"]["id"] for m in sink.of_type(player_id, "achievement-unlocked")]


class TestAchievements:
    def test_ids_are_unique(self):
        ids = [a.id for a in ACHIEVEMENTS]
        assert len(ids) == len(set(ids))

    async def test_streak_unlocks_each_tier_once(self, tracker, sink):
        for streak in range(1, 6):
            await tracker.record_correct_answer("p1", streak)
        await tracker.record_correct_answer("p1", 5)

        assert unlocked_ids(sink) == ["streak_3", "streak_5"]
        assert sink.last("p1", "achievement-unlocked")["achievement"]["tier"] == "silver"

    async def test_total_correct_progress(self, tracker, persistence, sink):
        for _ in range(9):
            await tracker.record_correct_answer("p1", 1)
        progress = persistence.get_player_data("p1")["achievement_progress"]
        assert progress["correct_10"] == 9
        assert progress["correct_50"] == 9

        unlocked = await tracker.record_correct_answer("p1", 1)
        assert [a.id for a in unlocked] == ["correct_10"]
        await tracker.record_correct_answer("p1", 1)
        assert unlocked_ids(sink).count("correct_10") == 1

    async def test_first_game(self, tracker):
        unlocked = await tracker.record_game_completed("p1")
        assert [a.id for a in unlocked] == ["games_1"]
        assert await tracker.record_game_completed("p1") == []

    async def test_accuracy_needs_enough_answers(self, tracker, persistence):
        data = persistence.get_player_data("p1")
        data["total_questions_answered"] = 5
        data["total_correct_answers"] = 5
        await tracker.record_game_completed("p1")
        assert "accuracy_80" not in data["unlocked_achievements"]

        data["total_questions_answered"] = 10
        data["total_correct_answers"] = 9
        await tracker.record_game_completed("p1")
        assert "accuracy_80" in data["unlocked_achievements"]
        assert "accuracy_95" not in data["unlocked_achievements"]

        await tracker.record_game_completed("p1", accuracy=96)
        assert "accuracy_95" in data["unlocked_achievements"]

    async def test_unknown_player(self, persistence, bus, sink):
        tracker = AchievementTracker(persistence, bus)
        assert await tracker.record_correct_answer("ghost", 10) == []
        assert await tracker.record_game_completed("ghost") == []
        assert sink.messages == []

    async def test_player_overview(self, tracker):
        await tracker.record_correct_answer("p1", 3)
        overview = tracker.get_player_achievements("p1")

        assert [a["id"] for a in overview["unlocked"]] == ["streak_3"]
        pending = {p["achievement_id"]: p for p in overview["progress"]}
        assert "streak_3" not in pending
        assert pending["correct_10"] == {"achievement_id": "correct_10", "current": 1, "required": 10}
