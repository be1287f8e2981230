"""Solo session question flow: question, answer, cooldown, final fall, landing."""
import asyncio
import logging
import random
from typing import Dict, Optional

from ..config.settings import SESSION_CONFIG
from ..models.question import to_game_difficulty, to_question_difficulty
from ..models.scoring import GameScoreSummary
from ..models.session import GameSession
from ..services.activity_registry import ActivityKind, PlayerActivityRegistry
from ..services.adaptive_difficulty import AdaptiveDifficultyTracker
from ..services.event_bus import EventBus, EventType
from ..services.question_registry import QuestionRegistry
from ..services.scheduler import Scheduler
from ..utils.ids import generate_id
from .leaderboard import LeaderboardStore
from .scoring_engine import ScoringEngine

logger = logging.getLogger(__name__)


class GameSessionController:
    """Drives each player's solo run.

    The physics layer reports what happened (``answer_collision``,
    ``fall_past_threshold``, ``landed``); this controller decides what it
    means and owns the gravity scale the physics layer should apply.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        bus: EventBus,
        activity: PlayerActivityRegistry,
        questions: QuestionRegistry,
        scoring: ScoringEngine,
        leaderboard: LeaderboardStore,
        persistence=None,
        achievements=None,
        adaptive: Optional[AdaptiveDifficultyTracker] = None,
        rng: Optional[random.Random] = None,
        config: Dict = SESSION_CONFIG
    ):
        self.scheduler = scheduler
        self.bus = bus
        self.activity = activity
        self.questions = questions
        self.scoring = scoring
        self.leaderboard = leaderboard
        self.persistence = persistence
        self.achievements = achievements
        self.adaptive = adaptive
        self.rng = rng or random.Random()
        self.config = config

        self._sessions: Dict[str, GameSession] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_game(
        self,
        player_id: str,
        username: str,
        difficulty: str = "moderate",
        subject: str = "math",
        practice: bool = False,
        adaptive: bool = False
    ) -> bool:
        async with self._lock:
            if not self.activity.claim(player_id, ActivityKind.SESSION, player_id):
                logger.warning(f"Cannot start game for {username}, player is busy")
                return False

            previous = self._sessions.get(player_id)
            if previous and previous.active:
                self.scoring.discard_session(player_id)

            session = GameSession(
                game_id=generate_id("g"),
                player_id=player_id,
                username=username,
                subject=subject,
                difficulty=to_game_difficulty(difficulty),
                question_difficulty=to_question_difficulty(difficulty),
                practice=practice,
                adaptive=adaptive and self.adaptive is not None,
                gravity_scale=self.config["gravity_base"],
                started_at=self.scheduler.now(),
            )
            self._sessions[player_id] = session
            if session.adaptive:
                self.adaptive.start_player(player_id, session.difficulty)

            if not practice:
                self.scoring.discard_session(player_id)
                self.scoring.start_session(player_id)

            logger.info(
                f"Starting {subject} {'practice' if practice else 'game'} "
                f"for {username} ({session.difficulty})"
            )
            await self.bus.publish(
                player_id,
                EventType.GAME_STARTED,
                subject=subject,
                difficulty=session.difficulty,
                is_practice=practice,
                is_adaptive=session.adaptive,
            )
            await self._next_question(session)
            return True

    async def restart_game(self, player_id: str) -> bool:
        """Abandon the current run and show the start screen."""
        async with self._lock:
            session = self._sessions.pop(player_id, None)
            if not session:
                return False
            self.scoring.discard_session(player_id)
            self.activity.release(player_id, ActivityKind.SESSION)
            logger.info(f"Restarting game for {session.username}")
            await self.bus.publish(player_id, EventType.SHOW_START)
            return True

    async def return_to_lobby(self, player_id: str) -> bool:
        async with self._lock:
            session = self._sessions.get(player_id)
            if not session:
                return False
            await self._return_to_lobby(session)
            return True

    async def handle_disconnect(self, player_id: str) -> Optional[GameScoreSummary]:
        """End an active game without UI and drop the session."""
        async with self._lock:
            session = self._sessions.pop(player_id, None)
            if not session:
                return None
            summary = None
            if session.active:
                summary = await self._end_game(session, disconnected=True)
            if self.adaptive:
                self.adaptive.remove_player(player_id)
            self.activity.release(player_id, ActivityKind.SESSION)
            return summary

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    async def _next_question(self, session: GameSession) -> None:
        question = self.questions.generate_with_fallback(session.subject, session.question_difficulty)
        session.current_question = question
        session.question_started_at = self.scheduler.now()
        session.in_cooldown = False
        if not session.practice:
            self.scoring.start_question(session.player_id)

        await self.bus.publish(
            session.player_id,
            EventType.QUESTION,
            question_number=session.questions_answered + 1,
            total_questions=self.config["max_questions"],
            **question.to_payload()
        )
        await self.bus.publish(
            session.player_id,
            EventType.ANSWER_OPTIONS,
            answers=question.answer_options(self.rng),
        )
        logger.debug(f"Question for {session.username}: {question.text}")

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    async def submit_answer(self, player_id: str, answer) -> Optional[bool]:
        """Validate an answer. Returns None when no answer is expected."""
        async with self._lock:
            session = self._sessions.get(player_id)
            if not session or not session.accepts_answers:
                return None
            correct = self.questions.validate_answer(session.current_question, answer)
            await self._apply_answer(session, correct)
            return correct

    async def answer_collision(self, player_id: str, answer) -> Optional[bool]:
        """The player hit the answer block labelled ``answer``."""
        return await self.submit_answer(player_id, answer)

    async def fall_past_threshold(self, player_id: str) -> bool:
        """Falling past every block counts as a wrong answer."""
        async with self._lock:
            session = self._sessions.get(player_id)
            if not session or not session.accepts_answers:
                return False
            logger.info(f"Player {session.username} fell past threshold")
            await self._apply_answer(session, False)
            return True

    async def _apply_answer(self, session: GameSession, correct: bool) -> None:
        player_id = session.player_id
        question = session.current_question
        response_time = max(0.0, self.scheduler.now() - session.question_started_at)

        session.questions_answered += 1
        session.in_cooldown = True

        if self.persistence:
            self.persistence.update_category_progress(player_id, session.subject, question.category, correct)

        if correct:
            session.correct_answers += 1
            breakdown = None
            if not session.practice:
                breakdown = self.scoring.record_correct(player_id, session.difficulty, response_time)

            if session.question_difficulty != "beginner":
                max_gravity = self.config["gravity_base"] * self.config["max_gravity_multiplier"]
                session.gravity_scale = min(session.gravity_scale + self.config["gravity_step"], max_gravity)

            stats = self.scoring.get_session_stats(player_id)
            await self.bus.publish(
                player_id,
                EventType.SCORE_UPDATE,
                breakdown=breakdown.to_dict() if breakdown else None,
                stats=stats,
                gravity_scale=session.gravity_scale,
            )
            if self.achievements and stats:
                await self.achievements.record_correct_answer(player_id, stats["current_streak"])
        else:
            session.wrong_answers += 1
            if not session.practice:
                self.scoring.record_wrong(player_id, response_time)
            session.gravity_scale = self.config["gravity_base"]
            await self.bus.publish(
                player_id,
                EventType.WRONG_ANSWER,
                stats=self.scoring.get_session_stats(player_id),
                correct_answer=question.correct_answer,
                gravity_scale=session.gravity_scale,
            )

        if session.adaptive:
            await self._adapt_difficulty(session, correct, response_time)

        self.scheduler.call_later(
            self.config["reset_delay"],
            self._on_cooldown_done,
            player_id,
            session.game_id,
            name=f"session_cooldown_{player_id}"
        )

    async def _adapt_difficulty(self, session: GameSession, correct: bool, response_time: float) -> None:
        """Later questions and scoring use the tracker's difficulty."""
        difficulty = self.adaptive.record_answer(session.player_id, correct, response_time)
        if difficulty == session.difficulty:
            return
        previous = session.difficulty
        session.difficulty = difficulty
        session.question_difficulty = to_question_difficulty(difficulty)
        await self.bus.publish(
            session.player_id,
            EventType.DIFFICULTY_CHANGED,
            difficulty=difficulty,
            previous=previous,
            performance=self.adaptive.get_performance_stats(session.player_id),
        )

    async def _on_cooldown_done(self, player_id: str, game_id: str) -> None:
        async with self._lock:
            session = self._sessions.get(player_id)
            if not session or session.game_id != game_id or not session.active:
                return
            session.in_cooldown = False
            if session.questions_answered >= self.config["max_questions"]:
                session.final_fall = True
                session.current_question = None
                logger.info(f"Starting final fall for {session.username}")
            else:
                await self._next_question(session)

    async def landed(self, player_id: str) -> bool:
        """The player touched the landing platform after the final fall."""
        async with self._lock:
            session = self._sessions.get(player_id)
            if not session or not session.active or not session.final_fall:
                return False
            logger.info(f"Player {session.username} landed")
            await self._end_game(session, disconnected=False)
            return True

    # ------------------------------------------------------------------
    # Ending
    # ------------------------------------------------------------------

    async def _end_game(self, session: GameSession, disconnected: bool) -> Optional[GameScoreSummary]:
        player_id = session.player_id
        session.active = False
        session.final_fall = False
        session.current_question = None

        summary = None
        if not session.practice:
            summary = self.scoring.end_session(player_id, session.difficulty)
            if self.persistence:
                await self.persistence.record_game_result(player_id, summary, session.subject)

            extra = {
                "streak": summary.best_streak,
                "accuracy": summary.accuracy * 100,
                "grade": summary.grade,
            }
            if summary.perfect_game:
                extra["perfect_game_time"] = summary.avg_response_time * self.config["max_questions"] * 1000
            result = self.leaderboard.submit_score(
                player_id, session.username, summary.total_score, session.subject, extra
            )
            if self.achievements:
                await self.achievements.record_game_completed(player_id)

            logger.info(
                f"Game ended for {session.username}: score {summary.total_score}, grade {summary.grade}"
            )
            if not disconnected:
                improvements = []
                if "all-time" in result.improvements:
                    improvements.append({"text": "New High Score!", "is_new_record": True})
                if "streak" in result.improvements:
                    improvements.append({"text": f"New Best Streak: {summary.best_streak}", "is_new_record": True})
                await self.bus.publish(
                    player_id,
                    EventType.GAME_OVER,
                    summary=summary.to_dict(),
                    leaderboard_ranks=result.new_ranks,
                    improvements=improvements,
                    player_stats=self.persistence.get_player_stats_summary(player_id) if self.persistence else None,
                )
        else:
            logger.info(f"Practice ended for {session.username}")
            if not disconnected:
                await self.bus.publish(
                    player_id,
                    EventType.GAME_OVER,
                    summary=session.practice_summary(),
                    is_practice=True,
                )

        if not disconnected:
            self.scheduler.call_later(
                self.config["lobby_return_delay"],
                self._on_lobby_return,
                player_id,
                session.game_id,
                name=f"lobby_return_{player_id}"
            )
        return summary

    async def _on_lobby_return(self, player_id: str, game_id: str) -> None:
        async with self._lock:
            session = self._sessions.get(player_id)
            if session and session.game_id == game_id and not session.active:
                await self._return_to_lobby(session)

    async def _return_to_lobby(self, session: GameSession) -> None:
        if session.active:
            # Leaving mid-game forfeits the run
            self.scoring.discard_session(session.player_id)
        del self._sessions[session.player_id]
        self.activity.release(session.player_id, ActivityKind.SESSION)
        logger.info(f"{session.username} returning to lobby")
        await self.bus.publish(session.player_id, EventType.RETURN_TO_LOBBY)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_session(self, player_id: str) -> Optional[GameSession]:
        return self._sessions.get(player_id)

    def gravity_scale(self, player_id: str) -> float:
        session = self._sessions.get(player_id)
        return session.gravity_scale if session else self.config["gravity_base"]

    def active_players(self) -> int:
        return sum(1 for s in self._sessions.values() if s.active)
