"""Question model."""
import random
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..config.settings import DIFFICULTY_MAP, QUESTION_DIFFICULTY_MAP

QUESTION_DIFFICULTIES = ("beginner", "intermediate", "advanced", "expert")
GAME_DIFFICULTIES = ("beginner", "moderate", "hard")


def to_question_difficulty(difficulty: str) -> str:
    """Accept either vocabulary and return a question difficulty."""
    if difficulty in QUESTION_DIFFICULTIES:
        return difficulty
    return DIFFICULTY_MAP.get(difficulty, "intermediate")


def to_game_difficulty(difficulty: str) -> str:
    """Accept either vocabulary and return a game (scoring) difficulty."""
    if difficulty in GAME_DIFFICULTIES:
        return difficulty
    return QUESTION_DIFFICULTY_MAP.get(difficulty, "moderate")


@dataclass(frozen=True)
class Question:
    """A generated multiple-choice question. Never persisted."""
    id: str
    subject: str
    category: str
    difficulty: str
    text: str
    correct_answer: str
    wrong_answers: Tuple[str, ...]
    subtext: Optional[str] = None
    explanation: Optional[str] = None
    tags: Tuple[str, ...] = field(default_factory=tuple)

    def answer_options(self, rng: Optional[random.Random] = None) -> List[str]:
        """All answers in random order."""
        options = [self.correct_answer, *self.wrong_answers]
        (rng or random).shuffle(options)
        return options

    def to_payload(self) -> dict:
        """Question data safe to send to players (no correct answer)."""
        return {
            "question_id": self.id,
            "question_text": self.text,
            "question_subtext": self.subtext,
            "subject": self.subject,
            "category": self.category,
            "difficulty": self.difficulty,
        }
