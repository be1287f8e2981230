"""Achievement definitions and unlock tracking."""
import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional

from .event_bus import EventBus, EventType
from .persistence import PersistenceFacade

logger = logging.getLogger(__name__)

MIN_ANSWERS_FOR_ACCURACY = 10


@dataclass(frozen=True)
class Achievement:
    id: str
    name: str
    description: str
    icon: str
    tier: str  # bronze, silver, gold, platinum
    requirement: int
    type: str  # streak, total_correct, games_completed, accuracy

    def to_dict(self) -> dict:
        return asdict(self)


ACHIEVEMENTS: List[Achievement] = [
    # Streak
    Achievement("streak_3", "Hat Trick", "Get 3 answers correct in a row", "streak", "bronze", 3, "streak"),
    Achievement("streak_5", "On Fire", "Get 5 answers correct in a row", "streak", "silver", 5, "streak"),
    Achievement("streak_10", "Unstoppable", "Get 10 answers correct in a row", "streak", "gold", 10, "streak"),

    # Total correct
    Achievement("correct_10", "Getting Started", "Answer 10 questions correctly", "check", "bronze", 10, "total_correct"),
    Achievement("correct_50", "Practiced", "Answer 50 questions correctly", "check", "silver", 50, "total_correct"),
    Achievement("correct_100", "Math Whiz", "Answer 100 questions correctly", "check", "gold", 100, "total_correct"),
    Achievement("correct_500", "Math Master", "Answer 500 questions correctly", "check", "platinum", 500, "total_correct"),

    # Games completed
    Achievement("games_1", "First Fall", "Complete your first game", "game", "bronze", 1, "games_completed"),
    Achievement("games_10", "Regular Player", "Complete 10 games", "game", "silver", 10, "games_completed"),
    Achievement("games_50", "Dedicated", "Complete 50 games", "game", "gold", 50, "games_completed"),

    # Accuracy
    Achievement("accuracy_80", "Sharp Mind", "Achieve 80% accuracy overall", "target", "silver", 80, "accuracy"),
    Achievement("accuracy_95", "Near Perfect", "Achieve 95% accuracy overall", "target", "platinum", 95, "accuracy"),
]


class AchievementTracker:
    """Progress and unlocks are stored in the player profile."""

    def __init__(self, persistence: PersistenceFacade, bus: EventBus,
                 achievements: Optional[List[Achievement]] = None):
        self.persistence = persistence
        self.bus = bus
        self.achievements: Dict[str, Achievement] = {a.id: a for a in (achievements or ACHIEVEMENTS)}

    async def record_correct_answer(self, player_id: str, streak: int) -> List[Achievement]:
        unlocked = []
        unlocked += await self._check_threshold(player_id, "streak", streak)
        unlocked += await self._increment(player_id, "total_correct", 1)
        return unlocked

    async def record_game_completed(self, player_id: str, accuracy: Optional[float] = None) -> List[Achievement]:
        """Count a finished game and check accuracy.

        ``accuracy`` is a percentage; when omitted the profile's overall
        accuracy is used. Accuracy only counts once the profile holds enough
        answers.
        """
        unlocked = await self._increment(player_id, "games_completed", 1)

        data = self.persistence.get_player_data(player_id)
        if data and data["total_questions_answered"] >= MIN_ANSWERS_FOR_ACCURACY:
            if accuracy is None:
                accuracy = data["total_correct_answers"] / data["total_questions_answered"] * 100
            unlocked += await self._check_threshold(player_id, "accuracy", accuracy)
        return unlocked

    def get_player_achievements(self, player_id: str) -> Dict[str, List[Dict]]:
        data = self.persistence.get_player_data(player_id) or {}
        unlocked_ids = set(data.get("unlocked_achievements", []))
        progress = data.get("achievement_progress", {})

        unlocked = []
        pending = []
        for achievement_id, achievement in self.achievements.items():
            if achievement_id in unlocked_ids:
                unlocked.append(achievement.to_dict())
            else:
                pending.append({
                    "achievement_id": achievement_id,
                    "current": progress.get(achievement_id, 0),
                    "required": achievement.requirement,
                })
        return {"unlocked": unlocked, "progress": pending}

    def _is_unlocked(self, player_id: str, achievement_id: str) -> bool:
        data = self.persistence.get_player_data(player_id)
        return bool(data) and achievement_id in data["unlocked_achievements"]

    async def _increment(self, player_id: str, achievement_type: str, amount: int) -> List[Achievement]:
        data = self.persistence.get_player_data(player_id)
        if not data:
            logger.warning(f"No profile for {player_id}, achievement progress skipped")
            return []

        unlocked = []
        for achievement_id, achievement in self.achievements.items():
            if achievement.type != achievement_type or self._is_unlocked(player_id, achievement_id):
                continue
            current = data["achievement_progress"].get(achievement_id, 0) + amount
            self.persistence.update_achievement_progress(player_id, achievement_id, current)
            if current >= achievement.requirement and await self._unlock(player_id, achievement):
                unlocked.append(achievement)
        return unlocked

    async def _check_threshold(self, player_id: str, achievement_type: str, value: float) -> List[Achievement]:
        unlocked = []
        for achievement in self.achievements.values():
            if achievement.type != achievement_type or value < achievement.requirement:
                continue
            if await self._unlock(player_id, achievement):
                unlocked.append(achievement)
        return unlocked

    async def _unlock(self, player_id: str, achievement: Achievement) -> bool:
        if not self.persistence.unlock_achievement(player_id, achievement.id):
            return False
        logger.info(f"Player {player_id} unlocked achievement {achievement.name}")
        await self.bus.publish(
            player_id,
            EventType.ACHIEVEMENT_UNLOCKED,
            achievement={
                "id": achievement.id,
                "name": achievement.name,
                "description": achievement.description,
                "icon": achievement.icon,
                "tier": achievement.tier,
            },
        )
        return True
