"""Dispatch of inbound UI messages to the game components."""
import asyncio
import logging
from typing import Any, Dict, Optional

from ..config.settings import ROUTER_CONFIG
from ..models.tournament import QuickMatchConfig, TournamentConfig
from ..services.event_bus import EventBus, EventType

logger = logging.getLogger(__name__)


class MessageRouter:
    """Maps ``{"type": ...}`` messages from a player's UI onto component calls.

    Every handler runs under a timeout. User-level failures are answered
    with a typed error message, never an exception.
    """

    def __init__(
        self,
        bus: EventBus,
        questions,
        sessions,
        leaderboard,
        persistence,
        achievements,
        tournaments,
        matchmaking,
        race,
        team,
        social=None,
        config: Dict = ROUTER_CONFIG
    ):
        self.bus = bus
        self.questions = questions
        self.sessions = sessions
        self.leaderboard = leaderboard
        self.persistence = persistence
        self.achievements = achievements
        self.tournaments = tournaments
        self.matchmaking = matchmaking
        self.race = race
        self.team = team
        self.social = social
        self.config = config
        self._usernames: Dict[str, str] = {}

        self.message_handlers = {
            # Solo session
            'start-game': self.handle_start_game,
            'restart-game': self.handle_restart_game,
            'return-to-lobby': self.handle_return_to_lobby,
            'submit-answer': self.handle_submit_answer,
            'answer-collision': self.handle_answer_collision,
            'fell-past-threshold': self.handle_fell_past_threshold,
            'landed': self.handle_landed,
            'get-leaderboard': self.handle_get_leaderboard,
            'get-stats': self.handle_get_stats,
            # Tournaments
            'create-tournament': self.handle_create_tournament,
            'join-tournament': self.handle_join_tournament,
            'leave-tournament': self.handle_leave_tournament,
            'get-tournaments': self.handle_get_tournaments,
            'tournament-answer': self.handle_tournament_answer,
            # Quick match
            'join-quick-match': self.handle_join_quick_match,
            'leave-quick-match': self.handle_leave_quick_match,
            'quick-match-answer': self.handle_quick_match_answer,
            # Direct challenges
            'create-challenge': self.handle_create_challenge,
            'accept-challenge': self.handle_accept_challenge,
            'decline-challenge': self.handle_decline_challenge,
            # Race
            'race-join': self.handle_race_join,
            'race-leave': self.handle_race_leave,
            'race-start': self.handle_race_start,
            'race-answer': self.handle_race_answer,
            # Team challenge
            'team-join-lobby': self.handle_team_join_lobby,
            'team-leave-lobby': self.handle_team_leave_lobby,
            'team-pick': self.handle_team_pick,
            'team-start': self.handle_team_start,
            'team-answer': self.handle_team_answer,
            # Friends
            'request-friends-list': self.handle_request_friends_list,
            'send-friend-request': self.handle_send_friend_request,
            'accept-friend-request': self.handle_accept_friend_request,
            'decline-friend-request': self.handle_decline_friend_request,
            'remove-friend': self.handle_remove_friend,
            'block-player': self.handle_block_player,
        }

    def username(self, player_id: str) -> str:
        return self._usernames.get(player_id, player_id)

    async def handle_message(self, player_id: str, message: Dict[str, Any]) -> bool:
        """Run the handler for one message. Returns True when it completed."""
        message_type = message.get("type") if isinstance(message, dict) else None
        handler = self.message_handlers.get(message_type)
        if not handler:
            logger.warning(f"Unknown message type from {player_id}: {message_type}")
            return False

        try:
            async with asyncio.timeout(self.config["handler_timeout"]):
                await handler(player_id, message)
            return True
        except asyncio.TimeoutError:
            logger.error(f"Handler for {message_type} timed out for {player_id}")
            await self.bus.publish(player_id, EventType.ERROR, message="Request timed out. Please try again.")
        except Exception as e:
            logger.error(f"Error handling {message_type} for {player_id}: {e}", exc_info=True)
            await self.bus.publish(player_id, EventType.ERROR, message="Something went wrong. Please try again.")
        return False

    async def _tournament_error(self, player_id: str, message: str) -> None:
        await self.bus.publish(player_id, EventType.TOURNAMENT_ERROR, message=message)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def handle_player_join(self, player_id: str, username: str) -> None:
        self._usernames[player_id] = username
        if self.social:
            self.social.player_online(player_id, username)
        await self.persistence.load_player_data(player_id, username)
        logger.info(f"Player {username} joined")

        await self.bus.publish(
            player_id,
            EventType.SUBJECTS_AVAILABLE,
            subjects=self.questions.available_subjects(),
        )
        await self.bus.publish(
            player_id,
            EventType.PLAYER_STATS,
            stats=self.persistence.get_player_stats_summary(player_id),
        )

    async def handle_player_leave(self, player_id: str) -> None:
        logger.info(f"Player {self.username(player_id)} left")
        steps = (
            ("session", self.sessions.handle_disconnect),
            ("tournament", self.tournaments.leave_tournament),
            ("quick match", self.matchmaking.handle_disconnect),
            ("race", self.race.handle_disconnect),
            ("team", self.team.handle_disconnect),
            ("profile", self.persistence.handle_player_disconnect),
        )
        for name, step in steps:
            try:
                await step(player_id)
            except Exception as e:
                logger.error(f"Error cleaning up {name} for {player_id}: {e}", exc_info=True)
        if self.social:
            self.social.player_offline(player_id)
        self._usernames.pop(player_id, None)

    # ------------------------------------------------------------------
    # Solo session
    # ------------------------------------------------------------------

    async def handle_start_game(self, player_id: str, message: Dict) -> None:
        started = await self.sessions.start_game(
            player_id,
            self.username(player_id),
            difficulty=message.get("difficulty", "moderate"),
            subject=message.get("subject", "math"),
            practice=bool(message.get("practice", False)),
            adaptive=bool(message.get("adaptive", False)),
        )
        if not started:
            await self.bus.publish(player_id, EventType.ERROR, message="Finish your current activity first.")

    async def handle_restart_game(self, player_id: str, message: Dict) -> None:
        await self.sessions.restart_game(player_id)

    async def handle_return_to_lobby(self, player_id: str, message: Dict) -> None:
        await self.sessions.return_to_lobby(player_id)

    async def handle_submit_answer(self, player_id: str, message: Dict) -> None:
        await self.sessions.submit_answer(player_id, message.get("answer"))

    async def handle_answer_collision(self, player_id: str, message: Dict) -> None:
        await self.sessions.answer_collision(player_id, message.get("answer"))

    async def handle_fell_past_threshold(self, player_id: str, message: Dict) -> None:
        await self.sessions.fall_past_threshold(player_id)

    async def handle_landed(self, player_id: str, message: Dict) -> None:
        await self.sessions.landed(player_id)

    async def handle_get_leaderboard(self, player_id: str, message: Dict) -> None:
        board = message.get("board", "all-time")
        limit = int(message.get("limit", 10))
        entries = self.leaderboard.get_leaderboard(board, limit)
        await self.bus.publish(
            player_id,
            EventType.LEADERBOARD_DATA,
            board=board,
            entries=[entry.to_dict() for entry in entries],
            player_rank=self.leaderboard.get_player_rank(board, player_id),
        )

    async def handle_get_stats(self, player_id: str, message: Dict) -> None:
        await self.bus.publish(
            player_id,
            EventType.PLAYER_STATS,
            stats=self.persistence.get_player_stats_summary(player_id),
            achievements=self.achievements.get_player_achievements(player_id),
            leaderboards=self.leaderboard.get_leaderboard_summary(player_id),
        )

    # ------------------------------------------------------------------
    # Tournaments
    # ------------------------------------------------------------------

    async def handle_create_tournament(self, player_id: str, message: Dict) -> None:
        try:
            config = TournamentConfig(
                name=message.get("name", ""),
                type=message.get("tournament_type", "quick-match"),
                subject=message.get("subject", "math"),
                difficulty=message.get("difficulty", "moderate"),
                visibility=message.get("visibility", "public"),
                questions_per_match=int(message.get("questions_per_match", 5)),
                min_participants=int(message.get("min_participants", 2)),
                max_participants=int(message.get("max_participants", 2)),
                description=message.get("description"),
                category=message.get("category"),
                start_delay=message.get("start_delay"),
                invite_code=message.get("invite_code"),
            )
        except (TypeError, ValueError) as e:
            logger.warning(f"Bad tournament request from {player_id}: {e}")
            await self._tournament_error(player_id, "Invalid tournament settings")
            return

        tournament = await self.tournaments.create_tournament(player_id, self.username(player_id), config)
        if not tournament:
            await self._tournament_error(player_id, "Failed to create tournament")

    async def handle_join_tournament(self, player_id: str, message: Dict) -> None:
        joined = await self.tournaments.join_tournament(
            player_id,
            self.username(player_id),
            message.get("tournament_id", ""),
            message.get("invite_code"),
        )
        if not joined:
            await self._tournament_error(player_id, "Failed to join tournament")

    async def handle_leave_tournament(self, player_id: str, message: Dict) -> None:
        await self.tournaments.leave_tournament(player_id)

    async def handle_get_tournaments(self, player_id: str, message: Dict) -> None:
        await self.bus.publish(
            player_id,
            EventType.TOURNAMENT_LIST,
            tournaments=[info.to_dict() for info in self.tournaments.get_public_tournaments()],
        )

    async def handle_tournament_answer(self, player_id: str, message: Dict) -> None:
        await self.tournaments.submit_match_answer(player_id, message.get("answer"))

    # ------------------------------------------------------------------
    # Quick match
    # ------------------------------------------------------------------

    async def handle_join_quick_match(self, player_id: str, message: Dict) -> None:
        try:
            config = QuickMatchConfig(
                subject=message.get("subject", "math"),
                difficulty=message.get("difficulty", "moderate"),
                player_count=int(message.get("player_count", 2)),
                questions_per_round=int(message.get("questions", 10)),
                category=message.get("category"),
            )
        except (TypeError, ValueError):
            await self._tournament_error(player_id, "Invalid quick match settings")
            return

        queued = await self.matchmaking.enqueue(player_id, self.username(player_id), config)
        if not queued:
            await self._tournament_error(player_id, "Could not join quick match")

    async def handle_leave_quick_match(self, player_id: str, message: Dict) -> None:
        await self.matchmaking.dequeue(player_id)

    async def handle_quick_match_answer(self, player_id: str, message: Dict) -> None:
        await self.matchmaking.submit_answer(player_id, message.get("answer"))

    # ------------------------------------------------------------------
    # Direct challenges
    # ------------------------------------------------------------------

    async def handle_create_challenge(self, player_id: str, message: Dict) -> None:
        challenged_id = message.get("challenged_id")
        if challenged_id not in self._usernames:
            await self._tournament_error(player_id, "That player is not online")
            return

        challenge = await self.tournaments.create_challenge(
            player_id,
            self.username(player_id),
            challenged_id,
            self.username(challenged_id),
            message.get("subject", "math"),
            message.get("difficulty", "moderate"),
            int(message.get("questions_per_match", 5)),
        )
        if not challenge:
            await self._tournament_error(player_id, "Failed to send challenge")

    async def handle_accept_challenge(self, player_id: str, message: Dict) -> None:
        if not await self.tournaments.accept_challenge(player_id, message.get("challenge_id", "")):
            await self._tournament_error(player_id, "Challenge is no longer available")

    async def handle_decline_challenge(self, player_id: str, message: Dict) -> None:
        await self.tournaments.decline_challenge(player_id, message.get("challenge_id", ""))

    # ------------------------------------------------------------------
    # Race
    # ------------------------------------------------------------------

    async def handle_race_join(self, player_id: str, message: Dict) -> None:
        if not await self.race.join_lobby(player_id, self.username(player_id)):
            await self.bus.publish(player_id, EventType.ERROR, message="Could not join the race lobby")

    async def handle_race_leave(self, player_id: str, message: Dict) -> None:
        await self.race.handle_disconnect(player_id)

    async def handle_race_start(self, player_id: str, message: Dict) -> None:
        if not await self.race.start_race(player_id):
            await self.bus.publish(player_id, EventType.ERROR, message="The race cannot start yet")

    async def handle_race_answer(self, player_id: str, message: Dict) -> None:
        await self.race.submit_answer(player_id, message.get("answer"))

    # ------------------------------------------------------------------
    # Team challenge
    # ------------------------------------------------------------------

    async def handle_team_join_lobby(self, player_id: str, message: Dict) -> None:
        if not await self.team.join_lobby(player_id, self.username(player_id)):
            await self.bus.publish(player_id, EventType.ERROR, message="Could not join the team lobby")

    async def handle_team_leave_lobby(self, player_id: str, message: Dict) -> None:
        await self.team.leave_lobby(player_id)

    async def handle_team_pick(self, player_id: str, message: Dict) -> None:
        await self.team.join_team(player_id, message.get("team_id"))

    async def handle_team_start(self, player_id: str, message: Dict) -> None:
        if not await self.team.start_challenge(player_id):
            await self.bus.publish(player_id, EventType.ERROR, message="The team challenge cannot start yet")

    async def handle_team_answer(self, player_id: str, message: Dict) -> Optional[bool]:
        return await self.team.submit_answer(player_id, message.get("answer"))

    # ------------------------------------------------------------------
    # Friends
    # ------------------------------------------------------------------

    async def _send_friends_list(self, player_id: str) -> None:
        friends = self.social.get_friends(player_id) if self.social else []
        requests = self.social.get_pending_requests(player_id) if self.social else []
        await self.bus.publish(
            player_id,
            EventType.FRIENDS_LIST,
            friends=friends,
            requests=[r.to_dict() for r in requests],
        )

    async def handle_request_friends_list(self, player_id: str, message: Dict) -> None:
        await self._send_friends_list(player_id)

    async def handle_send_friend_request(self, player_id: str, message: Dict) -> None:
        target_username = message.get("target_username", "")
        request = self.social.send_friend_request(player_id, target_username) if self.social else None
        await self.bus.publish(
            player_id,
            EventType.FRIEND_REQUEST_SENT,
            success=request is not None,
            target_username=target_username,
        )
        if request and request.to_player_id in self._usernames:
            await self.bus.publish(
                request.to_player_id,
                EventType.FRIEND_REQUEST_RECEIVED,
                request=request.to_dict(),
            )

    async def handle_accept_friend_request(self, player_id: str, message: Dict) -> None:
        request_id = message.get("request_id", "")
        request = self.social.accept_friend_request(player_id, request_id) if self.social else None
        await self.bus.publish(
            player_id,
            EventType.FRIEND_REQUEST_ACCEPTED,
            success=request is not None,
            request_id=request_id,
        )
        if request:
            await self._send_friends_list(player_id)
            if request.from_player_id in self._usernames:
                await self._send_friends_list(request.from_player_id)

    async def handle_decline_friend_request(self, player_id: str, message: Dict) -> None:
        request_id = message.get("request_id", "")
        if self.social:
            self.social.decline_friend_request(player_id, request_id)
        await self.bus.publish(player_id, EventType.FRIEND_REQUEST_DECLINED, request_id=request_id)

    async def handle_remove_friend(self, player_id: str, message: Dict) -> None:
        if self.social:
            self.social.remove_friend(player_id, message.get("friend_id", ""))
        await self._send_friends_list(player_id)

    async def handle_block_player(self, player_id: str, message: Dict) -> None:
        if self.social:
            self.social.block_player(player_id, message.get("blocked_id", ""))
        await self._send_friends_list(player_id)
