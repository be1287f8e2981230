"""Single source of truth for what each player is currently doing.

A player is in at most one activity at a time: a matchmaking queue, a quick
match, a tournament, a lobby, a race, a team challenge or a solo session.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class ActivityKind(str, Enum):
    QUEUE = "queue"
    QUICK_MATCH = "quick_match"
    TOURNAMENT = "tournament"
    CHALLENGE_MATCH = "challenge_match"
    RACE_LOBBY = "race_lobby"
    RACE = "race"
    TEAM_LOBBY = "team_lobby"
    TEAM_CHALLENGE = "team_challenge"
    SESSION = "session"


@dataclass(frozen=True)
class Activity:
    kind: ActivityKind
    ref: str


class PlayerActivityRegistry:
    def __init__(self):
        self._activities: Dict[str, Activity] = {}

    def claim(self, player_id: str, kind: ActivityKind, ref: str) -> bool:
        """Claim ``(kind, ref)`` for a free player."""
        current = self._activities.get(player_id)
        if current:
            if current.kind == kind and current.ref == ref:
                return True
            logger.warning(
                f"Player {player_id} is busy with {current.kind.value} {current.ref}, "
                f"cannot claim {ActivityKind(kind).value} {ref}"
            )
            return False
        self._activities[player_id] = Activity(ActivityKind(kind), ref)
        return True

    def transfer(self, player_id: str, from_kind: ActivityKind,
                 to_kind: ActivityKind, ref: str) -> bool:
        """Move a player between activities without a window where they are free."""
        current = self._activities.get(player_id)
        if not current or current.kind != from_kind:
            return False
        self._activities[player_id] = Activity(ActivityKind(to_kind), ref)
        return True

    def release(self, player_id: str, kind: Optional[ActivityKind] = None,
                ref: Optional[str] = None) -> bool:
        """Release the player's activity if it matches the given filters."""
        current = self._activities.get(player_id)
        if not current:
            return False
        if kind is not None and current.kind != kind:
            return False
        if ref is not None and current.ref != ref:
            return False
        del self._activities[player_id]
        return True

    def current(self, player_id: str) -> Optional[Activity]:
        return self._activities.get(player_id)

    def is_busy(self, player_id: str) -> bool:
        return player_id in self._activities

    def players_in(self, kind: ActivityKind, ref: Optional[str] = None) -> List[str]:
        return [
            player_id for player_id, activity in self._activities.items()
            if activity.kind == kind and (ref is None or activity.ref == ref)
        ]

    def __len__(self) -> int:
        return len(self._activities)
