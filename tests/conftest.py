"""Shared fixtures: virtual time, a recording UI sink and scripted questions."""
import random
from typing import Dict, List, Optional, Tuple

import pytest

from edufall.core.context import build_context
from edufall.core.tournament_policies import FixedTieBreaker
from edufall.models.question import Question
from edufall.services.activity_registry import PlayerActivityRegistry
from edufall.services.event_bus import EventBus
from edufall.services.persistence import PersistenceFacade
from edufall.services.profile_store import InMemoryProfileStore
from edufall.services.question_registry import QuestionProvider, QuestionRegistry
from edufall.services.scheduler import ManualScheduler

CORRECT = "right"
WRONG = "wrong"


class RecordingSink:
    """Collects every message the server sends, per player."""

    def __init__(self):
        self.messages: List[Tuple[str, Dict]] = []

    async def __call__(self, player_id: str, message: Dict) -> None:
        self.messages.append((player_id, message))

    def for_player(self, player_id: str) -> List[Dict]:
        return [m for pid, m in self.messages if pid == player_id]

    def of_type(self, player_id: str, message_type: str) -> List[Dict]:
        return [m for m in self.for_player(player_id) if m["type"] == message_type]

    def last(self, player_id: str, message_type: str) -> Optional[Dict]:
        found = self.of_type(player_id, message_type)
        return found[-1] if found else None

    def types(self, player_id: str) -> List[str]:
        return [m["type"] for m in self.for_player(player_id)]

    def events(self, player_id: str, message_type: str = "tournament-update") -> List[str]:
        return [m.get("event") for m in self.of_type(player_id, message_type)]

    def clear(self) -> None:
        self.messages.clear()


class ScriptedProvider(QuestionProvider):
    """Every question has the answer ``right``; ``failures`` makes the next N fail."""

    def __init__(self, subject: str = "math"):
        super().__init__(random.Random(0))
        self.subject = subject
        self.generated = 0
        self.failures = 0

    def generate_question(self, difficulty, category=None):
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("question source unavailable")
        self.generated += 1
        return Question(
            id=f"{self.subject}_{self.generated}",
            subject=self.subject,
            category=category or "scripted",
            difficulty=difficulty,
            text=f"Question {self.generated}",
            correct_answer=CORRECT,
            wrong_answers=(WRONG, "nope", "no"),
        )


async def no_sleep(seconds):
    return None


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def bus(sink):
    return EventBus(sink)


@pytest.fixture
def activity():
    return PlayerActivityRegistry()


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def questions(provider):
    registry = QuestionRegistry()
    registry.register(provider)
    return registry


@pytest.fixture
def store():
    return InMemoryProfileStore()


@pytest.fixture
def persistence(store):
    return PersistenceFacade(store, sleep=no_sleep)


@pytest.fixture
def context(sink, scheduler, store, questions):
    return build_context(
        sink,
        scheduler=scheduler,
        profile_store=store,
        questions=questions,
        rng=random.Random(7),
        tie_breaker=FixedTieBreaker(1),
        sleep=no_sleep,
        snapshot_interval=0,
    )
