"""Built-in question providers."""
import logging
import random
from typing import Dict, List, Optional, Sequence, Tuple

from ..models.question import Question, QUESTION_DIFFICULTIES
from ..utils.text_processing import numbers_equal, format_number
from .question_registry import QuestionProvider

logger = logging.getLogger(__name__)

# Arithmetic settings per question difficulty
MATH_DIFFICULTY_SETTINGS = {
    "beginner": {"operations": ["+", "-"], "max_value": 10, "wrong_answer_range": 3},
    "intermediate": {"operations": ["+", "-", "*"], "max_value": 20, "wrong_answer_range": 5},
    "advanced": {"operations": ["+", "-", "*", "/"], "max_value": 50, "wrong_answer_range": 10},
    "expert": {"operations": ["+", "-", "*", "/", "%"], "max_value": 100, "wrong_answer_range": 15},
}

OPERATION_CATEGORIES = {
    "+": "addition",
    "-": "subtraction",
    "*": "multiplication",
    "/": "division",
    "%": "percentages",
}

OPERATION_SYMBOLS = {"+": "+", "-": "-", "*": "×", "/": "÷", "%": "% of"}

PERCENTAGES = [10, 20, 25, 50, 75, 100]


class MathQuestionProvider(QuestionProvider):
    """Procedural arithmetic questions."""

    subject = "math"
    CATEGORIES = [
        {"id": "addition", "name": "Addition"},
        {"id": "subtraction", "name": "Subtraction"},
        {"id": "multiplication", "name": "Multiplication"},
        {"id": "division", "name": "Division"},
        {"id": "mixed", "name": "Mixed Operations"},
        {"id": "percentages", "name": "Percentages"},
    ]

    def generate_question(self, difficulty: str, category: Optional[str] = None) -> Question:
        settings = MATH_DIFFICULTY_SETTINGS.get(difficulty, MATH_DIFFICULTY_SETTINGS["intermediate"])
        operation = self._operation_for(category, settings)
        num1, num2, answer = self._generate_numbers(operation, settings)
        wrong_answers = self._generate_wrong_answers(answer, settings["wrong_answer_range"])

        symbol = OPERATION_SYMBOLS[operation]
        return Question(
            id=self._new_id(),
            subject=self.subject,
            category=category or OPERATION_CATEGORIES[operation],
            difficulty=difficulty,
            text=f"{format_number(num1)} {symbol} {format_number(num2)} = ?",
            correct_answer=format_number(answer),
            wrong_answers=tuple(format_number(w) for w in wrong_answers),
            explanation=f"{format_number(num1)} {symbol} {format_number(num2)} = {format_number(answer)}",
            tags=("arithmetic", operation),
        )

    def validate_answer(self, question: Question, answer) -> bool:
        return numbers_equal(answer, question.correct_answer)

    def stats(self) -> Dict:
        # Procedural, effectively unlimited
        return {
            "total_questions": None,
            "per_category": {c["id"]: None for c in self.CATEGORIES},
            "per_difficulty": {d: None for d in QUESTION_DIFFICULTIES},
        }

    def _operation_for(self, category: Optional[str], settings: Dict) -> str:
        for operation, name in OPERATION_CATEGORIES.items():
            if category == name:
                return operation
        return self.rng.choice(settings["operations"])

    def _generate_numbers(self, operation: str, settings: Dict) -> Tuple[float, float, float]:
        max_value = settings["max_value"]
        rng = self.rng

        if operation == "+":
            num1 = rng.randint(1, max_value)
            num2 = rng.randint(1, max_value)
            return num1, num2, num1 + num2

        if operation == "-":
            num1 = rng.randint(1, max_value)
            num2 = rng.randint(1, num1)  # keep the result non-negative
            return num1, num2, num1 - num2

        if operation == "*":
            max_factor = min(max_value, 12)
            num1 = rng.randint(1, max_factor)
            num2 = rng.randint(1, max_factor)
            return num1, num2, num1 * num2

        if operation == "/":
            # Clean division, no remainders
            answer = rng.randint(1, min(max_value, 12))
            num2 = rng.randint(1, 10)
            return answer * num2, num2, answer

        # Percentages with whole-number results
        num1 = rng.choice(PERCENTAGES)
        step = 4 if num1 in (25, 75) else 100 // num1
        num2 = rng.randint(1, 10) * step
        return num1, num2, num1 * num2 / 100

    def _generate_wrong_answers(self, correct: float, answer_range: int) -> List[float]:
        wrong_answers: List[float] = []
        used = {correct}

        attempts = 0
        while len(wrong_answers) < 3 and attempts < 50:
            attempts += 1
            offset = self.rng.randint(-answer_range, answer_range)
            if offset == 0:
                continue
            wrong = abs(correct + offset)
            if wrong not in used:
                used.add(wrong)
                wrong_answers.append(wrong)

        # Fill remaining slots deterministically
        fill = 1
        while len(wrong_answers) < 3:
            candidate = correct + fill
            if candidate not in used:
                used.add(candidate)
                wrong_answers.append(candidate)
            fill += 1

        return wrong_answers


class FactBankProvider(QuestionProvider):
    """Questions drawn from a fixed bank of facts for one subject.

    Bank entries are dicts with ``question``, ``answer``, ``wrong`` (three
    strings), ``category`` and ``difficulty``.
    """

    def __init__(
        self,
        subject: str,
        entries: Sequence[Dict],
        categories: Optional[List[Dict[str, str]]] = None,
        rng: Optional[random.Random] = None
    ):
        super().__init__(rng)
        self.subject = subject
        self.entries = list(entries)
        self.CATEGORIES = list(categories or [])
        self._recent: List[str] = []

    def generate_question(self, difficulty: str, category: Optional[str] = None) -> Question:
        candidates = self._candidates(difficulty, category)
        if not candidates:
            raise ValueError(f"Question bank for {self.subject} is empty")

        # Avoid repeating the last few questions when the pool allows it
        fresh = [e for e in candidates if e["question"] not in self._recent]
        entry = self.rng.choice(fresh or candidates)
        self._recent = (self._recent + [entry["question"]])[-max(1, len(candidates) // 2):]

        return Question(
            id=self._new_id(),
            subject=self.subject,
            category=entry["category"],
            difficulty=entry["difficulty"],
            text=entry["question"],
            correct_answer=entry["answer"],
            wrong_answers=tuple(entry["wrong"][:3]),
            explanation=entry.get("explanation"),
            tags=(self.subject, entry["category"]),
        )

    def stats(self) -> Dict:
        per_category: Dict[str, int] = {}
        per_difficulty: Dict[str, int] = {d: 0 for d in QUESTION_DIFFICULTIES}
        for entry in self.entries:
            per_category[entry["category"]] = per_category.get(entry["category"], 0) + 1
            per_difficulty[entry["difficulty"]] = per_difficulty.get(entry["difficulty"], 0) + 1
        return {
            "total_questions": len(self.entries),
            "per_category": per_category,
            "per_difficulty": per_difficulty,
        }

    def _candidates(self, difficulty: str, category: Optional[str]) -> List[Dict]:
        pool = self.entries
        if category:
            in_category = [e for e in pool if e["category"] == category]
            if in_category:
                pool = in_category
            else:
                logger.warning(f"No {self.subject} questions in category {category}")

        # Requested tier first, then easier tiers, then anything
        order = list(QUESTION_DIFFICULTIES)
        if difficulty in order:
            index = order.index(difficulty)
            tiers = [order[index]] + list(reversed(order[:index]))
        else:
            tiers = []
        for tier in tiers:
            matches = [e for e in pool if e["difficulty"] == tier]
            if matches:
                return matches
        return list(pool)
