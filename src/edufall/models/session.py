"""Solo game session state."""
from dataclasses import dataclass
from typing import Optional

from .question import Question


@dataclass
class GameSession:
    """One player's run from the first question to landing."""
    game_id: str
    player_id: str
    username: str
    subject: str
    difficulty: str           # game difficulty: beginner, moderate, hard
    question_difficulty: str  # provider difficulty
    practice: bool = False
    adaptive: bool = False    # difficulty follows AdaptiveDifficultyTracker
    active: bool = True
    current_question: Optional[Question] = None
    question_started_at: float = 0.0
    questions_answered: int = 0
    correct_answers: int = 0
    wrong_answers: int = 0
    gravity_scale: float = 0.1
    in_cooldown: bool = False
    final_fall: bool = False
    started_at: float = 0.0

    @property
    def accepts_answers(self) -> bool:
        return (
            self.active
            and not self.in_cooldown
            and not self.final_fall
            and self.current_question is not None
        )

    def practice_summary(self) -> dict:
        answered = self.questions_answered
        return {
            "total_score": 0,
            "correct_count": self.correct_answers,
            "wrong_count": self.wrong_answers,
            "total_questions": answered,
            "accuracy": round(self.correct_answers / answered * 100) if answered else 0,
            "best_streak": 0,
            "avg_response_time": 0.0,
            "grade": "P",
            "perfect_game": False,
            "bonus_points_earned": 0,
            "difficulty": self.difficulty,
        }
