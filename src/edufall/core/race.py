"""Race mode: everyone answers the same questions, each at their own pace."""
import asyncio
import logging
import random
from typing import Dict, List, Optional

from ..config.settings import RACE_CONFIG
from ..models.multiplayer import RaceParticipant, RaceSession
from ..services.activity_registry import ActivityKind, PlayerActivityRegistry
from ..services.event_bus import EventBus, EventType
from ..services.question_registry import QuestionRegistry
from ..services.scheduler import Scheduler
from ..utils.ids import generate_id

logger = logging.getLogger(__name__)

LOBBY_REF = "race_lobby"


class RaceManager:
    """One shared lobby; the host turns it into a race session."""

    def __init__(
        self,
        scheduler: Scheduler,
        bus: EventBus,
        activity: PlayerActivityRegistry,
        questions: QuestionRegistry,
        rng: Optional[random.Random] = None,
        config: Dict = RACE_CONFIG
    ):
        self.scheduler = scheduler
        self.bus = bus
        self.activity = activity
        self.questions = questions
        self.rng = rng or random.Random()
        self.config = config

        self._lobby: Dict[str, str] = {}  # player_id -> username, join order
        self._host_id: Optional[str] = None
        self._sessions: Dict[str, RaceSession] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lobby
    # ------------------------------------------------------------------

    async def join_lobby(self, player_id: str, username: str) -> bool:
        async with self._lock:
            if player_id in self._lobby:
                return True
            if len(self._lobby) >= self.config["max_players"]:
                logger.warning(f"Race lobby is full, {username} cannot join")
                return False
            if not self.activity.claim(player_id, ActivityKind.RACE_LOBBY, LOBBY_REF):
                return False

            self._lobby[player_id] = username
            if not self._host_id:
                self._host_id = player_id
            logger.info(f"{username} joined race lobby ({len(self._lobby)} players)")
            await self._broadcast_lobby()
            return True

    async def leave_lobby(self, player_id: str) -> bool:
        async with self._lock:
            username = self._lobby.pop(player_id, None)
            if username is None:
                return False
            self.activity.release(player_id, ActivityKind.RACE_LOBBY, LOBBY_REF)
            if self._host_id == player_id:
                self._host_id = next(iter(self._lobby), None)
            logger.info(f"{username} left race lobby")
            await self._broadcast_lobby()
            return True

    def lobby_players(self) -> List[Dict]:
        return [
            {"player_id": pid, "username": name, "is_host": pid == self._host_id}
            for pid, name in self._lobby.items()
        ]

    @property
    def host_id(self) -> Optional[str]:
        return self._host_id

    async def _broadcast_lobby(self) -> None:
        players = self.lobby_players()
        can_start = len(self._lobby) >= self.config["min_players"]
        for player_id in self._lobby:
            await self.bus.publish(
                player_id,
                EventType.RACE_LOBBY_UPDATE,
                players=players,
                can_start=can_start,
                is_host=player_id == self._host_id,
            )

    # ------------------------------------------------------------------
    # Race
    # ------------------------------------------------------------------

    async def start_race(self, player_id: str) -> bool:
        async with self._lock:
            if player_id != self._host_id:
                logger.warning(f"Player {player_id} is not the race host")
                return False
            if len(self._lobby) < self.config["min_players"]:
                logger.warning(f"Not enough players for a race ({len(self._lobby)}/{self.config['min_players']})")
                return False

            session_id = generate_id("race")
            participants = {}
            for pid, username in self._lobby.items():
                self.activity.transfer(pid, ActivityKind.RACE_LOBBY, ActivityKind.RACE, session_id)
                participants[pid] = RaceParticipant(player_id=pid, username=username)

            session = RaceSession(
                id=session_id,
                host_id=player_id,
                participants=participants,
                questions=[
                    self.questions.generate_with_fallback(self.config["subject"], self.config["difficulty"])
                    for _ in range(self.config["questions_per_race"])
                ],
            )
            self._sessions[session_id] = session
            self._lobby.clear()
            self._host_id = None

            logger.info(f"Race {session_id} starting with {len(participants)} players")
            await self._countdown(session, self.config["countdown_seconds"])
            return True

    async def _countdown(self, session: RaceSession, seconds: int) -> None:
        await self.bus.broadcast(list(session.participants), EventType.RACE_COUNTDOWN, seconds=seconds)
        if seconds > 0:
            self.scheduler.call_later(1, self._on_countdown_tick, session.id, seconds - 1,
                                      name=f"race_countdown_{session.id}")
        else:
            await self._begin(session)

    async def _on_countdown_tick(self, session_id: str, seconds: int) -> None:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session and not session.active and session.winner_id is None:
                await self._countdown(session, seconds)

    async def _begin(self, session: RaceSession) -> None:
        session.active = True
        session.started_at = self.scheduler.now()
        for participant in session.participants.values():
            if not participant.finished:
                await self._send_question(session, participant)
        logger.info(f"Race {session.id} has begun")
        # Everyone may have left during the countdown
        await self._check_end(session)

    async def _send_question(self, session: RaceSession, participant: RaceParticipant) -> None:
        question = session.questions[participant.current_question]
        await self.bus.publish(
            participant.player_id,
            EventType.RACE_QUESTION,
            question_number=participant.current_question + 1,
            total_questions=len(session.questions),
            question=question.text,
            answers=question.answer_options(self.rng),
        )

    async def submit_answer(self, player_id: str, answer) -> Optional[bool]:
        async with self._lock:
            session = self._session_for(player_id)
            if not session or not session.active:
                return None
            participant = session.participants.get(player_id)
            if not participant or participant.finished:
                return None

            question = session.questions[participant.current_question]
            correct = self.questions.validate_answer(question, answer)
            if correct:
                participant.correct_answers += 1
            else:
                participant.wrong_answers += 1
            participant.current_question += 1

            await self.bus.broadcast(
                list(session.participants),
                EventType.RACE_PROGRESS,
                standings=session.standings(),
            )

            if participant.current_question >= len(session.questions):
                participant.finished = True
                participant.completion_time = self.scheduler.now() - session.started_at
                await self._check_end(session)
            else:
                await self._send_question(session, participant)
            return correct

    async def leave_race(self, player_id: str) -> bool:
        """Quit mid-race; the participant keeps its progress and stops."""
        async with self._lock:
            session = self._session_for(player_id)
            if not session:
                return False
            participant = session.participants.get(player_id)
            self.activity.release(player_id, ActivityKind.RACE, session.id)
            if participant and not participant.finished:
                participant.finished = True
                logger.info(f"{participant.username} left race {session.id}")
                if session.active:
                    await self._check_end(session)
            return True

    async def _check_end(self, session: RaceSession) -> None:
        if all(p.finished for p in session.participants.values()):
            await self._end(session)

    async def _end(self, session: RaceSession) -> None:
        session.active = False
        results = session.results()
        winner = results[0] if results else None
        session.winner_id = winner["player_id"] if winner else None

        await self.bus.broadcast(
            list(session.participants),
            EventType.RACE_WINNER,
            winner=winner["username"] if winner else None,
            winner_id=session.winner_id,
            results=results,
        )
        for player_id in session.participants:
            self.activity.release(player_id, ActivityKind.RACE, session.id)
        logger.info(f"Race {session.id} won by {winner['username'] if winner else 'nobody'}")

        self.scheduler.call_later(self.config["cleanup_delay"], self._on_cleanup, session.id,
                                  name=f"race_cleanup_{session.id}")

    async def _on_cleanup(self, session_id: str) -> None:
        async with self._lock:
            self._sessions.pop(session_id, None)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _session_for(self, player_id: str) -> Optional[RaceSession]:
        activity = self.activity.current(player_id)
        if not activity or activity.kind != ActivityKind.RACE:
            return None
        return self._sessions.get(activity.ref)

    def get_session(self, session_id: str) -> Optional[RaceSession]:
        return self._sessions.get(session_id)

    def get_player_session(self, player_id: str) -> Optional[RaceSession]:
        return self._session_for(player_id)

    async def handle_disconnect(self, player_id: str) -> None:
        if player_id in self._lobby:
            await self.leave_lobby(player_id)
        else:
            await self.leave_race(player_id)
