"""Score state models."""
from dataclasses import dataclass, field, asdict
from typing import List, Optional


@dataclass
class ScoreBreakdown:
    """Points awarded for one correct answer."""
    base_points: int
    difficulty_multiplier: float
    speed_bonus: float
    streak_multiplier: float
    total_points: int
    bonus_type: Optional[str] = None  # combo, speed, streak

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SessionScoreState:
    """Per-player accumulator, alive from session start to session end."""
    current_streak: int = 0
    best_streak: int = 0
    total_score: int = 0
    correct_count: int = 0
    wrong_count: int = 0
    response_times: List[float] = field(default_factory=list)
    question_start_time: Optional[float] = None
    base_points_earned: int = 0
    bonus_points_earned: int = 0
    score_history: List[ScoreBreakdown] = field(default_factory=list)

    @property
    def total_answered(self) -> int:
        return self.correct_count + self.wrong_count

    @property
    def accuracy(self) -> float:
        if self.total_answered == 0:
            return 0.0
        return self.correct_count / self.total_answered

    @property
    def avg_response_time(self) -> float:
        if not self.response_times:
            return 0.0
        return sum(self.response_times) / len(self.response_times)


@dataclass
class GameScoreSummary:
    """End-of-session rollup handed to persistence and leaderboards."""
    total_score: int = 0
    correct_count: int = 0
    wrong_count: int = 0
    best_streak: int = 0
    avg_response_time: float = 0.0
    perfect_game: bool = False
    grade: str = "F"
    xp_earned: int = 0
    difficulty: str = "moderate"
    base_points_earned: int = 0
    bonus_points_earned: int = 0

    @property
    def total_answered(self) -> int:
        return self.correct_count + self.wrong_count

    @property
    def accuracy(self) -> float:
        if self.total_answered == 0:
            return 0.0
        return self.correct_count / self.total_answered

    def to_dict(self) -> dict:
        data = asdict(self)
        data["accuracy"] = round(self.accuracy * 100)
        return data
