"""Friends, friend requests and online presence."""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from ..utils.dates import timestamp_ms
from ..utils.ids import generate_id

logger = logging.getLogger(__name__)


@dataclass
class Friend:
    player_id: str
    username: str
    added_at: int
    last_seen: int


@dataclass
class FriendRequest:
    id: str
    from_player_id: str
    from_username: str
    to_player_id: str
    sent_at: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_player_id": self.from_player_id,
            "from_username": self.from_username,
            "to_player_id": self.to_player_id,
            "sent_at": self.sent_at,
        }


@dataclass
class SocialProfile:
    player_id: str
    username: str
    friends: Dict[str, Friend] = field(default_factory=dict)
    blocked: Set[str] = field(default_factory=set)


class SocialService:
    """Friend graph for players seen since the server started.

    Friendships are symmetric. Pending requests are indexed by recipient.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self.clock = clock or timestamp_ms
        self._profiles: Dict[str, SocialProfile] = {}
        self._pending: Dict[str, List[FriendRequest]] = {}
        self._online: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------

    def player_online(self, player_id: str, username: str) -> None:
        self._online[player_id] = username
        profile = self._profiles.get(player_id)
        if profile:
            profile.username = username
        else:
            self._profiles[player_id] = SocialProfile(player_id, username)
        logger.debug(f"{username} is online")

    def player_offline(self, player_id: str) -> None:
        self._online.pop(player_id, None)
        profile = self._profiles.get(player_id)
        if not profile:
            return
        now = self.clock()
        for friend_id in profile.friends:
            entry = self._profiles[friend_id].friends.get(player_id)
            if entry:
                entry.last_seen = now

    def is_online(self, player_id: str) -> bool:
        return player_id in self._online

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_friends(self, player_id: str) -> List[Dict]:
        profile = self._profiles.get(player_id)
        if not profile:
            return []
        return [
            {
                "player_id": friend.player_id,
                "username": friend.username,
                "added_at": friend.added_at,
                "last_seen": friend.last_seen,
                "is_online": self.is_online(friend.player_id),
            }
            for friend in profile.friends.values()
        ]

    def get_pending_requests(self, player_id: str) -> List[FriendRequest]:
        return list(self._pending.get(player_id, []))

    def online_friends_count(self, player_id: str) -> int:
        profile = self._profiles.get(player_id)
        if not profile:
            return 0
        return sum(1 for friend_id in profile.friends if self.is_online(friend_id))

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def send_friend_request(self, from_player_id: str, to_username: str) -> Optional[FriendRequest]:
        sender = self._profiles.get(from_player_id)
        target = self._find_by_username(to_username or "")
        if not sender or not target:
            logger.info(f"Friend request to unknown player {to_username}")
            return None
        if target.player_id == from_player_id:
            return None
        if target.player_id in sender.friends:
            logger.info(f"{sender.username} is already friends with {target.username}")
            return None
        if from_player_id in target.blocked:
            logger.info(f"Friend request from {sender.username} blocked by {target.username}")
            return None
        pending = self._pending.setdefault(target.player_id, [])
        if any(r.from_player_id == from_player_id for r in pending):
            return None

        request = FriendRequest(
            id=generate_id("req"),
            from_player_id=from_player_id,
            from_username=sender.username,
            to_player_id=target.player_id,
            sent_at=self.clock(),
        )
        pending.append(request)
        logger.info(f"Friend request sent from {sender.username} to {target.username}")
        return request

    def accept_friend_request(self, player_id: str, request_id: str) -> Optional[FriendRequest]:
        request = self._take_request(player_id, request_id)
        if not request:
            return None
        player = self._profiles.get(player_id)
        sender = self._profiles.get(request.from_player_id)
        if not player or not sender:
            return None

        now = self.clock()
        player.friends[sender.player_id] = Friend(sender.player_id, sender.username, now, now)
        sender.friends[player_id] = Friend(player_id, player.username, now, now)
        logger.info(f"{player.username} and {sender.username} are now friends")
        return request

    def decline_friend_request(self, player_id: str, request_id: str) -> bool:
        request = self._take_request(player_id, request_id)
        if request:
            logger.info(f"Friend request {request_id} declined")
        return request is not None

    def remove_friend(self, player_id: str, friend_id: str) -> bool:
        removed = False
        for owner, other in ((player_id, friend_id), (friend_id, player_id)):
            profile = self._profiles.get(owner)
            if profile and profile.friends.pop(other, None):
                removed = True
        if removed:
            logger.info(f"Removed friendship between {player_id} and {friend_id}")
        return removed

    def block_player(self, player_id: str, blocked_id: str) -> bool:
        profile = self._profiles.get(player_id)
        if not profile or not blocked_id or blocked_id == player_id:
            return False
        profile.blocked.add(blocked_id)
        self.remove_friend(player_id, blocked_id)
        if player_id in self._pending:
            self._pending[player_id] = [
                r for r in self._pending[player_id] if r.from_player_id != blocked_id
            ]
        logger.info(f"Player {player_id} blocked {blocked_id}")
        return True

    def _take_request(self, player_id: str, request_id: str) -> Optional[FriendRequest]:
        pending = self._pending.get(player_id, [])
        for index, request in enumerate(pending):
            if request.id == request_id:
                return pending.pop(index)
        return None

    def _find_by_username(self, username: str) -> Optional[SocialProfile]:
        wanted = username.strip().lower()
        for profile in self._profiles.values():
            if profile.username.lower() == wanted:
                return profile
        return None
