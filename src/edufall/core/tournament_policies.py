"""Tie-break and stalled-match policies for head-to-head matches."""
import logging
import random
from typing import Dict, Optional

from ..models.tournament import TournamentMatch, TournamentParticipant

logger = logging.getLogger(__name__)


class TieBreaker:
    """Chooses a winner when both players finish a match level on points."""

    def choose(self, match: TournamentMatch,
               participants: Dict[str, TournamentParticipant]) -> Optional[str]:
        raise NotImplementedError


class CoinFlipTieBreaker(TieBreaker):
    """Unweighted coin flip: player one wins when ``random() > 0.5``."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def choose(self, match, participants):
        if self.rng.random() > 0.5:
            return match.participant1_id
        return match.participant2_id


class FixedTieBreaker(TieBreaker):
    """Always picks the same slot, for deterministic runs."""

    def __init__(self, slot: int = 1):
        self.slot = slot

    def choose(self, match, participants):
        return match.participant1_id if self.slot == 1 else match.participant2_id


class ResponseTimeTieBreaker(TieBreaker):
    """Faster average response time wins; a dead heat falls back to slot one."""

    def choose(self, match, participants):
        first = participants.get(match.participant1_id)
        second = participants.get(match.participant2_id)
        if not first or not second:
            return match.participant1_id or match.participant2_id
        if second.average_response_time < first.average_response_time:
            return match.participant2_id
        return match.participant1_id


class RetryThenForfeitPolicy:
    """Retry question generation with exponential backoff, then force a result.

    A match whose question cannot be generated is marked stalled. After
    ``max_retries`` failed attempts the match is finalized from the scores it
    already has.
    """

    def __init__(self, max_retries: int = 3, base_delay: float = 1.0):
        self.max_retries = max_retries
        self.base_delay = base_delay

    def should_retry(self, attempts: int) -> bool:
        return attempts < self.max_retries

    def retry_delay(self, attempts: int) -> float:
        return self.base_delay * (2 ** attempts)
