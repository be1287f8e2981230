"""Pluggable per-subject question providers and their registry."""
import logging
import random
from typing import Dict, List, Optional

from ..models.question import Question, to_question_difficulty
from ..utils.ids import generate_id
from ..utils.text_processing import answers_equal

logger = logging.getLogger(__name__)


class QuestionProvider:
    """Base class for subject question providers.

    Subclasses set ``subject`` and ``CATEGORIES`` and implement
    ``generate_question``. Answer validation defaults to case-insensitive,
    trimmed string equality.
    """

    subject: str = ""
    CATEGORIES: List[Dict[str, str]] = []

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def categories(self) -> List[Dict[str, str]]:
        return list(self.CATEGORIES)

    def generate_question(self, difficulty: str, category: Optional[str] = None) -> Question:
        raise NotImplementedError

    def validate_answer(self, question: Question, answer) -> bool:
        return answers_equal(answer, question.correct_answer)

    def get_hint(self, question: Question) -> str:
        answer = question.correct_answer
        return f"The answer starts with '{answer[:1]}' and has {len(answer)} characters"

    def stats(self) -> Dict:
        return {"total_questions": None, "per_category": {}, "per_difficulty": {}}

    def _new_id(self) -> str:
        return generate_id(self.subject)


class QuestionRegistry:
    """Maps subjects to their providers."""

    def __init__(self):
        self._providers: Dict[str, QuestionProvider] = {}

    def register(self, provider: QuestionProvider) -> None:
        self._providers[provider.subject] = provider
        logger.info(f"Registered question provider: {provider.subject}")

    def get_provider(self, subject: str) -> Optional[QuestionProvider]:
        return self._providers.get(subject)

    def available_subjects(self) -> List[str]:
        return list(self._providers.keys())

    def generate_question(
        self,
        subject: str,
        difficulty: str,
        category: Optional[str] = None
    ) -> Optional[Question]:
        """Generate a question, or None when the subject cannot produce one."""
        provider = self._providers.get(subject)
        if not provider:
            logger.warning(f"No provider for subject: {subject}")
            return None
        try:
            return provider.generate_question(to_question_difficulty(difficulty), category)
        except Exception as e:
            logger.error(f"Provider {subject} failed to generate a question: {e}")
            return None

    def generate_with_fallback(
        self,
        subject: str,
        difficulty: str,
        category: Optional[str] = None
    ) -> Question:
        """Generate a question, falling back to arithmetic so play never stalls."""
        question = self.generate_question(subject, difficulty, category)
        if question:
            return question

        logger.warning(f"Falling back to arithmetic question for {subject}/{difficulty}")
        question = self.generate_question("math", difficulty)
        if question:
            return question

        # Import here to avoid a cycle, the math provider imports this module
        from .question_providers import MathQuestionProvider
        return MathQuestionProvider().generate_question(to_question_difficulty(difficulty))

    def validate_answer(self, question: Question, answer) -> bool:
        provider = self._providers.get(question.subject)
        if not provider:
            logger.warning(f"Cannot validate answer, no provider for {question.subject}")
            return False
        return provider.validate_answer(question, answer)


def create_default_registry(rng: Optional[random.Random] = None) -> QuestionRegistry:
    """Registry with every built-in subject."""
    from .question_providers import MathQuestionProvider, FactBankProvider
    from .question_banks import QUESTION_BANKS, BANK_CATEGORIES

    registry = QuestionRegistry()
    registry.register(MathQuestionProvider(rng))
    for subject, entries in QUESTION_BANKS.items():
        registry.register(FactBankProvider(subject, entries, BANK_CATEGORIES.get(subject, []), rng))
    return registry
