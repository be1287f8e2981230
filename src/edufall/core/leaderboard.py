"""Ranked leaderboards with daily and weekly resets."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..config.settings import LEADERBOARD_CONFIG
from ..services.scheduler import Scheduler, TimerHandle
from ..utils.dates import (
    utc_now,
    date_string,
    week_string,
    next_daily_reset,
    next_weekly_reset,
    timestamp_ms,
)

logger = logging.getLogger(__name__)

MAIN_BOARDS = ("daily", "weekly", "all-time")


@dataclass
class LeaderboardEntry:
    player_id: str
    username: str
    score: float
    achieved_at: int
    extra: Dict = field(default_factory=dict)
    rank: int = 0

    def to_dict(self) -> dict:
        return {
            "rank": self.rank,
            "player_id": self.player_id,
            "username": self.username,
            "score": self.score,
            "achieved_at": self.achieved_at,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LeaderboardEntry":
        return cls(
            player_id=data["player_id"],
            username=data.get("username", ""),
            score=data["score"],
            achieved_at=data.get("achieved_at", 0),
            extra=dict(data.get("extra") or {}),
        )


@dataclass
class SubmitResult:
    new_ranks: Dict[str, Optional[int]] = field(default_factory=dict)
    improvements: List[str] = field(default_factory=list)


class LeaderboardStore:
    """Named boards, sorted by descending score, one entry per player.

    A new score only replaces a player's entry when it is strictly greater.
    Equal scores keep the earlier achiever ahead.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None, config: Dict = LEADERBOARD_CONFIG):
        self.clock = clock or utc_now
        self.config = config
        self.max_entries = config["max_entries"]
        self._boards: Dict[str, List[LeaderboardEntry]] = {board: [] for board in config["boards"]}
        self._reset_times: Dict[str, datetime] = {}
        self._scheduler: Optional[Scheduler] = None
        self._reset_timer: Optional[TimerHandle] = None

        now = self.clock()
        self._daily_key = date_string(now)
        self._weekly_key = week_string(now)
        self._reset_times["daily"] = next_daily_reset(now)
        self._reset_times["weekly"] = next_weekly_reset(now)
        logger.info(f"Initialized leaderboards: {', '.join(self._boards)}")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def submit(self, board: str, player_id: str, username: str, score: float,
               timestamp: Optional[int] = None, extra: Optional[Dict] = None) -> bool:
        """Submit to one board. Returns True when the player's entry improved."""
        self.check_resets()
        return self._submit_to_board(board, player_id, username, score, timestamp, extra)

    def _submit_to_board(self, board: str, player_id: str, username: str, score: float,
                         timestamp: Optional[int], extra: Optional[Dict]) -> bool:
        entries = self._boards.get(board)
        if entries is None:
            logger.warning(f"Unknown leaderboard: {board}")
            return False

        for index, existing in enumerate(entries):
            if existing.player_id == player_id:
                if score <= existing.score:
                    return False
                del entries[index]
                break

        entry = LeaderboardEntry(
            player_id=player_id,
            username=username,
            score=score,
            achieved_at=timestamp if timestamp is not None else timestamp_ms(self.clock()),
            extra=dict(extra or {}),
        )

        position = len(entries)
        for index, existing in enumerate(entries):
            if score > existing.score:
                position = index
                break
        entries.insert(position, entry)

        if len(entries) > self.max_entries:
            del entries[self.max_entries:]
        return position < self.max_entries

    def submit_score(self, player_id: str, username: str, score: float, subject: str,
                     extra: Optional[Dict] = None) -> SubmitResult:
        """Fan a game result out to every board it qualifies for."""
        self.check_resets()
        extra = dict(extra or {})
        result = SubmitResult()
        now = timestamp_ms(self.clock())

        def submit_to(board: str, value: float, data: Dict) -> None:
            if self._submit_to_board(board, player_id, username, value, now, data):
                result.improvements.append(board)
            result.new_ranks[board] = self._rank(board, player_id)

        for board in MAIN_BOARDS:
            submit_to(board, score, extra)

        if subject in self._boards and subject not in MAIN_BOARDS:
            submit_to(subject, score, extra)

        if extra.get("streak"):
            submit_to("streak", extra["streak"], extra)

        perfect_game_time = extra.get("perfect_game_time")
        if perfect_game_time:
            # Lower times are better, store negated so the board stays descending
            submit_to("speed-run", -perfect_game_time, {**extra, "time": perfect_game_time})

        logger.info(f"{username} submitted score {score}, improvements: {result.improvements}")
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_leaderboard(self, board: str, limit: int = 10, offset: int = 0) -> List[LeaderboardEntry]:
        self.check_resets()
        entries = self._boards.get(board)
        if entries is None:
            return []
        return [
            self._ranked(entry, offset + index + 1)
            for index, entry in enumerate(entries[offset:offset + limit])
        ]

    def get_player_rank(self, board: str, player_id: str) -> Optional[int]:
        self.check_resets()
        return self._rank(board, player_id)

    def get_player_entry(self, board: str, player_id: str) -> Optional[LeaderboardEntry]:
        self.check_resets()
        index = self._index(board, player_id)
        if index is None:
            return None
        return self._ranked(self._boards[board][index], index + 1)

    def get_surrounding_entries(self, board: str, player_id: str, range: int = 2) -> List[LeaderboardEntry]:
        self.check_resets()
        index = self._index(board, player_id)
        if index is None:
            return []
        entries = self._boards[board]
        start = max(0, index - range)
        end = min(len(entries), index + range + 1)
        return [self._ranked(entry, start + i + 1) for i, entry in enumerate(entries[start:end])]

    def get_leaderboard_summary(self, player_id: str) -> Dict[str, Dict]:
        self.check_resets()
        return {
            "daily": {"rank": self._rank("daily", player_id), "score": self._score("daily", player_id)},
            "weekly": {"rank": self._rank("weekly", player_id), "score": self._score("weekly", player_id)},
            "all_time": {"rank": self._rank("all-time", player_id), "score": self._score("all-time", player_id)},
            "streak": {"rank": self._rank("streak", player_id), "value": self._score("streak", player_id)},
        }

    def available_boards(self) -> List[str]:
        return list(self._boards.keys())

    def reset_time(self, board: str) -> Optional[datetime]:
        return self._reset_times.get(board)

    def _index(self, board: str, player_id: str) -> Optional[int]:
        for index, entry in enumerate(self._boards.get(board, [])):
            if entry.player_id == player_id:
                return index
        return None

    def _rank(self, board: str, player_id: str) -> Optional[int]:
        index = self._index(board, player_id)
        return None if index is None else index + 1

    def _score(self, board: str, player_id: str) -> float:
        index = self._index(board, player_id)
        return 0 if index is None else self._boards[board][index].score

    @staticmethod
    def _ranked(entry: LeaderboardEntry, rank: int) -> LeaderboardEntry:
        return LeaderboardEntry(
            player_id=entry.player_id,
            username=entry.username,
            score=entry.score,
            achieved_at=entry.achieved_at,
            extra=dict(entry.extra),
            rank=rank,
        )

    # ------------------------------------------------------------------
    # Resets
    # ------------------------------------------------------------------

    def check_resets(self) -> List[str]:
        """Clear daily/weekly boards whose period has rolled over."""
        now = self.clock()
        reset = []

        today = date_string(now)
        if today != self._daily_key:
            self._clear("daily")
            self._daily_key = today
            self._reset_times["daily"] = next_daily_reset(now)
            reset.append("daily")

        week = week_string(now)
        if week != self._weekly_key:
            self._clear("weekly")
            self._weekly_key = week
            self._reset_times["weekly"] = next_weekly_reset(now)
            reset.append("weekly")

        for board in reset:
            logger.info(f"{board.capitalize()} leaderboard reset")
        return reset

    def _clear(self, board: str) -> None:
        if board in self._boards:
            self._boards[board] = []

    def _schedule_reset_check(self) -> None:
        self._reset_timer = self._scheduler.call_later(
            self.config["reset_check_interval"],
            self._on_reset_check,
            name="leaderboard_reset_check"
        )

    def _on_reset_check(self) -> None:
        try:
            self.check_resets()
        except Exception as e:
            logger.error(f"Leaderboard reset check failed: {e}")
        if self._scheduler:
            self._schedule_reset_check()

    def start(self, scheduler: Scheduler) -> None:
        """Check for period rollovers every ``reset_check_interval`` seconds."""
        if self._scheduler:
            return
        self._scheduler = scheduler
        self._schedule_reset_check()

    async def stop(self) -> None:
        self._scheduler = None
        if self._reset_timer:
            self._reset_timer.cancel()
            self._reset_timer = None

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict:
        return {
            "daily_key": self._daily_key,
            "weekly_key": self._weekly_key,
            "boards": {
                board: [entry.to_dict() for entry in entries]
                for board, entries in self._boards.items()
            },
        }

    def restore(self, snapshot: Dict) -> None:
        """Load boards from a snapshot; stale daily/weekly data resets on the next check."""
        for board, entries in snapshot.get("boards", {}).items():
            if board not in self._boards:
                logger.warning(f"Skipping unknown leaderboard in snapshot: {board}")
                continue
            restored = [LeaderboardEntry.from_dict(data) for data in entries]
            restored.sort(key=lambda e: e.score, reverse=True)
            self._boards[board] = restored[:self.max_entries]

        self._daily_key = snapshot.get("daily_key", self._daily_key)
        self._weekly_key = snapshot.get("weekly_key", self._weekly_key)
        self.check_resets()
        logger.info("Restored leaderboards from snapshot")
