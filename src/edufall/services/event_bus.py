"""Typed outbound messages to the presentation layer."""
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List

logger = logging.getLogger(__name__)

Sink = Callable[[str, Dict[str, Any]], Awaitable[None]]
Listener = Callable[[str, Dict[str, Any]], Any]


class EventType(str, Enum):
    # Solo session
    QUESTION = "question"
    ANSWER_OPTIONS = "answer-options"
    SCORE_UPDATE = "score-update"
    WRONG_ANSWER = "wrong-answer"
    GAME_STARTED = "game-started"
    GAME_OVER = "game-over"
    RETURN_TO_LOBBY = "return-to-lobby"
    SHOW_START = "show-start"
    PLAYER_STATS = "player-stats"
    LEADERBOARD_DATA = "leaderboard-data"
    SUBJECTS_AVAILABLE = "subjects-available"
    DIFFICULTY_CHANGED = "difficulty-changed"

    # Race
    RACE_LOBBY_UPDATE = "race-lobby-update"
    RACE_COUNTDOWN = "race-countdown"
    RACE_QUESTION = "race-question"
    RACE_PROGRESS = "race-progress"
    RACE_WINNER = "race-winner"

    # Team challenge
    TEAM_LOBBY_UPDATE = "team-lobby-update"
    TEAM_CHALLENGE_START = "team-challenge-start"
    TEAM_PROGRESS = "team-progress"
    TEAM_ELIMINATED = "team-eliminated"
    TEAM_CHALLENGE_END = "team-challenge-end"

    # Tournaments and matchmaking
    TOURNAMENT_UPDATE = "tournament-update"
    TOURNAMENT_CREATED = "tournament-created"
    TOURNAMENT_LIST = "tournament-list"
    TOURNAMENT_ERROR = "tournament-error"
    QUICK_MATCH_UPDATE = "quick-match-update"
    QUICK_MATCH_QUEUED = "quick-match-queued"
    CHALLENGE_RECEIVED = "challenge-received"
    CHALLENGE_UPDATE = "challenge-update"

    # Progression
    ACHIEVEMENT_UNLOCKED = "achievement-unlocked"

    # Friends
    FRIENDS_LIST = "friends-list"
    FRIEND_REQUEST_SENT = "friend-request-sent"
    FRIEND_REQUEST_RECEIVED = "friend-request-received"
    FRIEND_REQUEST_ACCEPTED = "friend-request-accepted"
    FRIEND_REQUEST_DECLINED = "friend-request-declined"

    # Request failures outside the tournament flows
    ERROR = "error"


class EventBus:
    """Delivers typed messages to players through the engine's UI channel."""

    def __init__(self, sink: Sink):
        self._sink = sink
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def publish(self, player_id: str, event_type: EventType, /, **payload) -> None:
        message = {"type": EventType(event_type).value, **payload}

        try:
            await self._sink(player_id, message)
        except Exception as e:
            logger.error(f"Failed to deliver {message['type']} to {player_id}: {e}")

        for listener in list(self._listeners):
            try:
                result = listener(player_id, message)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Event listener failed on {message['type']}: {e}")

    async def broadcast(self, player_ids: Iterable[str], event_type: EventType, /, **payload) -> None:
        for player_id in list(player_ids):
            await self.publish(player_id, event_type, **payload)
