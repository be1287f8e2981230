"""Cached, durable player profiles."""
import asyncio
import copy
import logging
import math
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

from ..config.settings import PERSISTENCE_CONFIG
from ..models.database import DatabaseError
from ..models.scoring import GameScoreSummary
from ..utils.dates import utc_now, date_string, week_string, yesterday_string, timestamp_ms
from ..utils.scoring import update_running_average
from .profile_store import ProfileStore, ProfileStoreError

logger = logging.getLogger(__name__)

GRADE_ORDER = ["F", "D", "C", "B", "A", "S"]


def default_subject_stats() -> Dict:
    return {
        "games_played": 0,
        "questions_answered": 0,
        "correct_answers": 0,
        "accuracy": 0,
        "high_score": 0,
        "best_streak": 0,
        "total_score": 0,
        "average_response_time": 0,
        "category_progress": {},
    }


def default_difficulty_stats() -> Dict:
    return {
        "games_played": 0,
        "questions_answered": 0,
        "correct_answers": 0,
        "accuracy": 0,
        "average_score": 0,
        "high_score": 0,
    }


def default_player_data(username: str, now_ms: int = 0, config: Dict = PERSISTENCE_CONFIG) -> Dict:
    return {
        "username": username,
        "first_played_at": now_ms,
        "last_played_at": now_ms,
        "total_play_time": 0,  # seconds

        "total_games_played": 0,
        "total_questions_answered": 0,
        "total_correct_answers": 0,
        "total_score": 0,
        "total_xp": 0,
        "current_level": 1,

        "high_score": 0,
        "best_streak": 0,
        "best_grade": "F",
        "fastest_perfect_game": None,  # milliseconds

        "subject_stats": {s: default_subject_stats() for s in config["profile_subjects"]},
        "difficulty_stats": {d: default_difficulty_stats() for d in config["profile_difficulties"]},

        "unlocked_achievements": [],
        "achievement_progress": {},

        "preferred_difficulty": "moderate",
        "preferred_subject": "math",

        "daily_high_score": 0,
        "daily_high_score_date": "",
        "weekly_high_score": 0,
        "weekly_high_score_week": "",

        "current_daily_streak": 0,
        "longest_daily_streak": 0,
        "last_daily_play_date": None,

        "tournament_history": [],
    }


def merge_with_defaults(partial: Dict, username: str, now_ms: int = 0,
                        config: Dict = PERSISTENCE_CONFIG) -> Dict:
    """Fill missing fields from the defaults, keeping unknown keys."""
    defaults = default_player_data(username, now_ms, config)
    merged = {**defaults, **copy.deepcopy(partial)}

    subject_stats = dict(defaults["subject_stats"])
    for subject, stats in (partial.get("subject_stats") or {}).items():
        subject_stats[subject] = {**default_subject_stats(), **copy.deepcopy(stats)}
    merged["subject_stats"] = subject_stats

    difficulty_stats = dict(defaults["difficulty_stats"])
    for difficulty, stats in (partial.get("difficulty_stats") or {}).items():
        difficulty_stats[difficulty] = {**default_difficulty_stats(), **copy.deepcopy(stats)}
    merged["difficulty_stats"] = difficulty_stats

    if not merged.get("username"):
        merged["username"] = username
    return merged


def calculate_level(total_xp: float) -> int:
    return math.floor(math.sqrt(max(0, total_xp) / 100)) + 1


def is_grade_better(new_grade: str, old_grade: str) -> bool:
    if new_grade not in GRADE_ORDER:
        return False
    if old_grade not in GRADE_ORDER:
        return True
    return GRADE_ORDER.index(new_grade) > GRADE_ORDER.index(old_grade)


class PersistenceFacade:
    """Loads, caches and saves player profiles through a ``ProfileStore``.

    Store failures never reach gameplay: loads fall back to defaults and
    saves are retried with backoff, then reported as ``False``.
    """

    def __init__(
        self,
        store: ProfileStore,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
        config: Dict = PERSISTENCE_CONFIG
    ):
        self.store = store
        self.clock = clock or utc_now
        self.sleep = sleep
        self.config = config
        self._cache: Dict[str, Dict] = {}
        self._session_starts: Dict[str, datetime] = {}

    async def load_player_data(self, player_id: str, username: str) -> Dict:
        now = self.clock()
        try:
            stored = await self.store.load(player_id)
        except (ProfileStoreError, DatabaseError) as e:
            logger.warning(f"Error loading data for {username}: {e}")
            stored = None

        if isinstance(stored, dict):
            data = merge_with_defaults(stored, username, timestamp_ms(now), self.config)
            data["last_played_at"] = timestamp_ms(now)
            self._update_daily_streak(data)
            self._cache[player_id] = data
            self._session_starts[player_id] = now
            logger.info(f"Loaded profile for {username} (level {data['current_level']})")
            return data

        data = default_player_data(username, timestamp_ms(now), self.config)
        self._cache[player_id] = data
        self._session_starts[player_id] = now
        logger.info(f"Created new profile for {username}")
        await self.save_player_data(player_id)
        return data

    async def save_player_data(self, player_id: str) -> bool:
        data = self._cache.get(player_id)
        if not data:
            logger.warning(f"No data to save for player {player_id}")
            return False

        now = self.clock()
        session_start = self._session_starts.get(player_id)
        if session_start:
            data["total_play_time"] += int((now - session_start).total_seconds())
            self._session_starts[player_id] = now
        data["last_played_at"] = timestamp_ms(now)

        attempts = self.config["max_save_retries"]
        delay = self.config["retry_delay"]
        for attempt in range(1, attempts + 1):
            try:
                await self.store.save(player_id, data)
                return True
            except (ProfileStoreError, DatabaseError) as e:
                if attempt == attempts:
                    logger.error(f"Giving up saving data for {data['username']} after {attempts} attempts: {e}")
                    return False
                logger.warning(f"Save attempt {attempt} for {data['username']} failed: {e}")
                await self.sleep(delay * (2 ** (attempt - 1)))
        return False

    def get_player_data(self, player_id: str) -> Optional[Dict]:
        return self._cache.get(player_id)

    async def save_all(self) -> int:
        """Save every cached profile, returning how many were written."""
        saved = 0
        for player_id in list(self._cache):
            if await self.save_player_data(player_id):
                saved += 1
        return saved

    async def record_game_result(self, player_id: str, summary: GameScoreSummary, subject: str) -> None:
        data = self._cache.get(player_id)
        if not data:
            logger.warning(f"No cached profile for {player_id}, game result dropped")
            return

        now = self.clock()
        today = date_string(now)
        week = week_string(now)
        answered = summary.correct_count + summary.wrong_count

        data["total_games_played"] += 1
        data["total_questions_answered"] += answered
        data["total_correct_answers"] += summary.correct_count
        data["total_score"] += summary.total_score
        data["total_xp"] += summary.xp_earned
        data["current_level"] = calculate_level(data["total_xp"])

        data["high_score"] = max(data["high_score"], summary.total_score)
        data["best_streak"] = max(data["best_streak"], summary.best_streak)
        if is_grade_better(summary.grade, data["best_grade"]):
            data["best_grade"] = summary.grade
        if summary.perfect_game:
            game_time = summary.avg_response_time * answered * 1000
            fastest = data["fastest_perfect_game"]
            if not fastest or game_time < fastest:
                data["fastest_perfect_game"] = game_time

        stats = data["subject_stats"].setdefault(subject, default_subject_stats())
        stats["games_played"] += 1
        stats["questions_answered"] += answered
        stats["correct_answers"] += summary.correct_count
        stats["accuracy"] = (
            stats["correct_answers"] / stats["questions_answered"] * 100
            if stats["questions_answered"] else 0
        )
        stats["total_score"] += summary.total_score
        stats["high_score"] = max(stats["high_score"], summary.total_score)
        stats["best_streak"] = max(stats["best_streak"], summary.best_streak)
        if stats["questions_answered"]:
            previous = stats["questions_answered"] - answered
            stats["average_response_time"] = (
                stats["average_response_time"] * previous + summary.avg_response_time * answered
            ) / stats["questions_answered"]

        diff_stats = data["difficulty_stats"].setdefault(summary.difficulty, default_difficulty_stats())
        diff_stats["games_played"] += 1
        diff_stats["questions_answered"] += answered
        diff_stats["correct_answers"] += summary.correct_count
        diff_stats["accuracy"] = (
            diff_stats["correct_answers"] / diff_stats["questions_answered"] * 100
            if diff_stats["questions_answered"] else 0
        )
        diff_stats["average_score"] = update_running_average(
            diff_stats["average_score"], diff_stats["games_played"], summary.total_score
        )
        diff_stats["high_score"] = max(diff_stats["high_score"], summary.total_score)

        if data["daily_high_score_date"] != today:
            data["daily_high_score"] = summary.total_score
            data["daily_high_score_date"] = today
        elif summary.total_score > data["daily_high_score"]:
            data["daily_high_score"] = summary.total_score

        if data["weekly_high_score_week"] != week:
            data["weekly_high_score"] = summary.total_score
            data["weekly_high_score_week"] = week
        elif summary.total_score > data["weekly_high_score"]:
            data["weekly_high_score"] = summary.total_score

        self._update_daily_streak(data)
        await self.save_player_data(player_id)

    def update_category_progress(self, player_id: str, subject: str, category: str, correct: bool) -> None:
        data = self._cache.get(player_id)
        if not data:
            return
        stats = data["subject_stats"].setdefault(subject, default_subject_stats())
        progress = stats["category_progress"].setdefault(category, {
            "questions_answered": 0,
            "correct_answers": 0,
            "accuracy": 0,
            "mastered": False,
        })
        progress["questions_answered"] += 1
        if correct:
            progress["correct_answers"] += 1
        progress["accuracy"] = progress["correct_answers"] / progress["questions_answered"] * 100
        if (progress["questions_answered"] >= self.config["mastery_min_answers"]
                and progress["accuracy"] >= self.config["mastery_min_accuracy"]):
            progress["mastered"] = True

    def unlock_achievement(self, player_id: str, achievement_id: str) -> bool:
        data = self._cache.get(player_id)
        if not data:
            return False
        if achievement_id in data["unlocked_achievements"]:
            return False
        data["unlocked_achievements"].append(achievement_id)
        return True

    def update_achievement_progress(self, player_id: str, achievement_id: str, progress: float) -> None:
        data = self._cache.get(player_id)
        if data:
            data["achievement_progress"][achievement_id] = progress

    def record_tournament_result(self, player_id: str, tournament_id: str, placement: Optional[int]) -> None:
        data = self._cache.get(player_id)
        if not data:
            return
        history = data["tournament_history"]
        history.append({
            "tournament_id": tournament_id,
            "placement": placement,
            "completed_at": timestamp_ms(self.clock()),
        })
        del history[:-self.config["max_tournament_history"]]

    def grant_reward(self, player_id: str, reward) -> bool:
        """Apply a tournament reward to the cached profile."""
        data = self._cache.get(player_id)
        if not data:
            logger.warning(f"Cannot grant reward, no profile for {player_id}")
            return False
        if reward.type == "xp" and reward.amount:
            data["total_xp"] += reward.amount
            data["current_level"] = calculate_level(data["total_xp"])
        else:
            data.setdefault("rewards", []).append(reward.to_dict())
        logger.info(f"Granted {reward.type} reward to {data['username']}: {reward.description}")
        return True

    def get_player_stats_summary(self, player_id: str) -> Optional[Dict]:
        data = self._cache.get(player_id)
        if not data:
            return None
        answered = data["total_questions_answered"]
        return {
            "level": data["current_level"],
            "xp": data["total_xp"],
            "total_score": data["total_score"],
            "games_played": data["total_games_played"],
            "overall_accuracy": data["total_correct_answers"] / answered * 100 if answered else 0,
            "best_streak": data["best_streak"],
            "high_score": data["high_score"],
            "daily_streak": data["current_daily_streak"],
        }

    async def handle_player_disconnect(self, player_id: str) -> None:
        await self.save_player_data(player_id)
        self._cache.pop(player_id, None)
        self._session_starts.pop(player_id, None)

    def _update_daily_streak(self, data: Dict) -> None:
        now = self.clock()
        today = date_string(now)
        last = data.get("last_daily_play_date")

        if last == today:
            return
        if last == yesterday_string(now):
            data["current_daily_streak"] += 1
        else:
            data["current_daily_streak"] = 1
        data["longest_daily_streak"] = max(data["longest_daily_streak"], data["current_daily_streak"])
        data["last_daily_play_date"] = today
