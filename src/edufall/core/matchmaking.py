"""Quick-match queues and the live matches they form."""
import asyncio
import logging
import random
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..config.settings import MATCHMAKING_CONFIG
from ..models.tournament import (
    QuickMatchConfig,
    QuickMatchState,
    QuickMatchStatus,
    TournamentParticipant,
)
from ..services.activity_registry import ActivityKind, PlayerActivityRegistry
from ..services.event_bus import EventBus, EventType
from ..services.question_registry import QuestionRegistry
from ..services.scheduler import Scheduler, TimerHandle
from ..utils.dates import timestamp_ms
from ..utils.ids import generate_id
from ..utils.scoring import calculate_match_points, rank_results
from .tournament_policies import RetryThenForfeitPolicy

logger = logging.getLogger(__name__)

MATCH_KINDS = (ActivityKind.QUICK_MATCH, ActivityKind.CHALLENGE_MATCH)

CompletionHook = Callable[[QuickMatchState, List[TournamentParticipant]], object]


class MatchmakingQueue:
    """FIFO queues keyed by ``subject|difficulty|player_count``.

    When a queue holds enough players the earliest joiners are drained into a
    new quick match, which then runs countdown, questions and results on the
    scheduler.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        bus: EventBus,
        activity: PlayerActivityRegistry,
        questions: QuestionRegistry,
        rng: Optional[random.Random] = None,
        stall_policy: Optional[RetryThenForfeitPolicy] = None,
        config: Dict = MATCHMAKING_CONFIG
    ):
        self.scheduler = scheduler
        self.bus = bus
        self.activity = activity
        self.questions = questions
        self.rng = rng or random.Random()
        self.stall_policy = stall_policy or RetryThenForfeitPolicy()
        self.config = config

        # key -> {player_id: username}, insertion ordered
        self._queues: Dict[str, Dict[str, str]] = {}
        self._queue_configs: Dict[str, QuickMatchConfig] = {}
        self._timeouts: Dict[str, TimerHandle] = {}
        self._matches: Dict[str, QuickMatchState] = {}
        self._question_timers: Dict[str, TimerHandle] = {}
        self._completion_hooks: Dict[str, CompletionHook] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Queueing
    # ------------------------------------------------------------------

    async def enqueue(self, player_id: str, username: str, config: QuickMatchConfig) -> bool:
        async with self._lock:
            if not self.config['min_players'] <= config.player_count <= self.config['max_players']:
                logger.warning(f"Rejected queue request with {config.player_count} players")
                return False

            key = config.key
            queue = self._queues.setdefault(key, {})
            if player_id in queue:
                logger.warning(f"Player {player_id} is already queued for {key}")
                return False
            if not self.activity.claim(player_id, ActivityKind.QUEUE, key):
                return False

            queue[player_id] = username
            self._queue_configs[key] = config
            self._timeouts[player_id] = self.scheduler.call_later(
                self.config['queue_timeout'],
                self._on_queue_timeout,
                player_id,
                key,
                name=f"queue_timeout_{player_id}"
            )
            logger.info(f"{username} joined quick match queue {key} ({len(queue)}/{config.player_count})")

            await self.bus.publish(
                player_id,
                EventType.QUICK_MATCH_QUEUED,
                queue_key=key,
                position=len(queue),
                players_needed=config.player_count,
            )

            if len(queue) >= config.player_count:
                await self._form_match(key, config)
            return True

    async def dequeue(self, player_id: str) -> bool:
        async with self._lock:
            return self._remove_from_queue(player_id)

    def _remove_from_queue(self, player_id: str) -> bool:
        key = self.queued_key(player_id)
        if not key:
            return False
        self._queues.get(key, {}).pop(player_id, None)
        handle = self._timeouts.pop(player_id, None)
        if handle:
            handle.cancel()
        self.activity.release(player_id, ActivityKind.QUEUE, key)
        logger.info(f"Player {player_id} left quick match queue {key}")
        return True

    async def _on_queue_timeout(self, player_id: str, key: str) -> None:
        async with self._lock:
            queue = self._queues.get(key)
            if not queue or player_id not in queue:
                return
            queue.pop(player_id)
            self._timeouts.pop(player_id, None)
            self.activity.release(player_id, ActivityKind.QUEUE, key)
            logger.info(f"Queue entry for {player_id} in {key} expired")
            await self.bus.publish(
                player_id,
                EventType.QUICK_MATCH_UPDATE,
                event="queue-timeout",
                queue_key=key,
            )

    # ------------------------------------------------------------------
    # Match formation
    # ------------------------------------------------------------------

    async def _form_match(self, key: str, config: QuickMatchConfig) -> None:
        queue = self._queues[key]
        drained = list(queue.items())[:config.player_count]
        match_id = generate_id("qm")

        players = []
        for player_id, username in drained:
            del queue[player_id]
            handle = self._timeouts.pop(player_id, None)
            if handle:
                handle.cancel()
            self.activity.transfer(player_id, ActivityKind.QUEUE, ActivityKind.QUICK_MATCH, match_id)
            players.append(self._new_participant(player_id, username))

        state = QuickMatchState(
            match_id=match_id,
            config=config,
            players=players,
            total_questions=config.questions_per_round,
            activity_kind=ActivityKind.QUICK_MATCH.value,
        )
        self._matches[match_id] = state
        logger.info(f"Formed quick match {match_id} from {key}: {', '.join(state.player_ids)}")
        await self._begin_countdown(state)

    async def start_direct_match(
        self,
        players: Sequence[Tuple[str, str]],
        config: QuickMatchConfig,
        activity_kind: ActivityKind = ActivityKind.CHALLENGE_MATCH,
        on_complete: Optional[CompletionHook] = None
    ) -> Optional[QuickMatchState]:
        """Start a match for known players without queueing them."""
        async with self._lock:
            match_id = generate_id("dm")
            claimed = []
            for player_id, _ in players:
                if not self.activity.claim(player_id, activity_kind, match_id):
                    for other in claimed:
                        self.activity.release(other, activity_kind, match_id)
                    logger.warning(f"Direct match aborted, {player_id} is busy")
                    return None
                claimed.append(player_id)

            state = QuickMatchState(
                match_id=match_id,
                config=config,
                players=[self._new_participant(pid, name) for pid, name in players],
                total_questions=config.questions_per_round,
                activity_kind=ActivityKind(activity_kind).value,
            )
            self._matches[match_id] = state
            if on_complete:
                self._completion_hooks[match_id] = on_complete
            logger.info(f"Started direct match {match_id}: {', '.join(state.player_ids)}")
            await self._begin_countdown(state)
            return state

    def _new_participant(self, player_id: str, username: str) -> TournamentParticipant:
        now = timestamp_ms()
        return TournamentParticipant(
            player_id=player_id,
            username=username,
            joined_at=now,
            last_active_at=now,
        )

    # ------------------------------------------------------------------
    # Match flow
    # ------------------------------------------------------------------

    async def _begin_countdown(self, state: QuickMatchState) -> None:
        state.status = QuickMatchStatus.COUNTDOWN
        state.countdown_seconds = self.config['countdown_seconds']
        await self._countdown(state)

    async def _countdown(self, state: QuickMatchState) -> None:
        if state.countdown_seconds > 0:
            await self._publish_update(state, event="countdown")
            state.countdown_seconds -= 1
            self.scheduler.call_later(1, self._on_countdown_tick, state.match_id,
                                      name=f"countdown_{state.match_id}")
            return

        state.status = QuickMatchStatus.PLAYING
        await self._start_question(state)

    async def _on_countdown_tick(self, match_id: str) -> None:
        async with self._lock:
            state = self._matches.get(match_id)
            if state and state.status == QuickMatchStatus.COUNTDOWN:
                await self._countdown(state)

    async def _start_question(self, state: QuickMatchState) -> None:
        config = state.config
        question = self.questions.generate_question(config.subject, config.difficulty, config.category)
        if not question:
            await self._handle_stall(state)
            return

        state.stall_attempts = 0
        state.current_question += 1
        state.question = question
        state.answered = set()
        state.question_started_at = self.scheduler.now()

        await self._publish_update(
            state,
            event="question",
            question=question.to_payload(),
            options=question.answer_options(self.rng),
            time_limit=self.config['question_time_limit'],
        )
        self._question_timers[state.match_id] = self.scheduler.call_later(
            self.config['question_time_limit'],
            self._on_question_timeout,
            state.match_id,
            state.current_question,
            name=f"question_{state.match_id}_{state.current_question}"
        )

    async def _handle_stall(self, state: QuickMatchState) -> None:
        policy = self.stall_policy
        if policy.should_retry(state.stall_attempts):
            delay = policy.retry_delay(state.stall_attempts)
            state.stall_attempts += 1
            logger.error(
                f"Question generation failed for match {state.match_id}, "
                f"retry {state.stall_attempts} in {delay}s"
            )
            self.scheduler.call_later(delay, self._on_retry_question, state.match_id,
                                      name=f"retry_{state.match_id}")
            return

        logger.error(f"Match {state.match_id} stalled, finishing with current scores")
        await self._show_results(state)

    async def _on_retry_question(self, match_id: str) -> None:
        async with self._lock:
            state = self._matches.get(match_id)
            if state and state.status == QuickMatchStatus.PLAYING:
                await self._start_question(state)

    async def _on_question_timeout(self, match_id: str, question_number: int) -> None:
        async with self._lock:
            state = self._matches.get(match_id)
            if not state or state.status != QuickMatchStatus.PLAYING:
                return
            if state.current_question != question_number:
                return
            await self._end_question(state)

    async def _end_question(self, state: QuickMatchState) -> None:
        self._question_timers.pop(state.match_id, None)
        for player in state.players:
            if player.player_id not in state.answered:
                player.record_miss()

        correct_answer = state.question.correct_answer if state.question else None
        state.question = None
        await self._publish_update(state, event="question-end", correct_answer=correct_answer)

        if state.current_question >= state.total_questions:
            await self._show_results(state)
        else:
            self.scheduler.call_later(self.config['question_delay'], self._on_next_question,
                                      state.match_id, name=f"next_question_{state.match_id}")

    async def _on_next_question(self, match_id: str) -> None:
        async with self._lock:
            state = self._matches.get(match_id)
            if state and state.status == QuickMatchStatus.PLAYING:
                await self._start_question(state)

    async def _show_results(self, state: QuickMatchState) -> None:
        state.status = QuickMatchStatus.RESULTS
        state.question = None
        standings = rank_results(
            state.players,
            ("current_score", "correct_answers", "-average_response_time")
        )
        state.players = standings
        logger.info(
            f"Quick match {state.match_id} finished, winner {standings[0].username if standings else None}"
        )
        await self._publish_update(
            state,
            event="results",
            winner_id=standings[0].player_id if standings else None,
        )

        hook = self._completion_hooks.pop(state.match_id, None)
        if hook:
            # Runs outside this lock
            self.scheduler.call_later(0, hook, state, standings, name=f"match_complete_{state.match_id}")

        self.scheduler.call_later(self.config['results_cleanup_delay'], self._on_cleanup,
                                  state.match_id, name=f"cleanup_{state.match_id}")

    async def _on_cleanup(self, match_id: str) -> None:
        async with self._lock:
            state = self._matches.pop(match_id, None)
            if not state:
                return
            kind = ActivityKind(state.activity_kind)
            for player_id in state.player_ids:
                self.activity.release(player_id, kind, match_id)
            logger.info(f"Cleaned up quick match {match_id}")

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    async def submit_answer(self, player_id: str, answer) -> Optional[bool]:
        """Score an answer for the player's current match question.

        Returns None when there is nothing to answer.
        """
        async with self._lock:
            state = self._match_for(player_id)
            if not state or state.status != QuickMatchStatus.PLAYING or not state.question:
                return None
            if player_id in state.answered:
                return None
            player = state.get_player(player_id)
            if not player:
                return None

            response_time = max(0.0, self.scheduler.now() - (state.question_started_at or 0.0))
            correct = self.questions.validate_answer(state.question, answer)
            points = calculate_match_points(response_time, self.config) if correct else 0

            player.record_answer(correct, points, response_time)
            player.last_active_at = timestamp_ms()
            state.answered.add(player_id)

            await self._publish_update(
                state,
                event="answer",
                player_id=player_id,
                correct=correct,
                points=points,
            )
            return correct

    async def handle_disconnect(self, player_id: str) -> None:
        async with self._lock:
            if self._remove_from_queue(player_id):
                return
            state = self._match_for(player_id)
            if state:
                player = state.get_player(player_id)
                if player:
                    player.is_connected = False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _match_for(self, player_id: str) -> Optional[QuickMatchState]:
        activity = self.activity.current(player_id)
        if not activity or activity.kind not in MATCH_KINDS:
            return None
        return self._matches.get(activity.ref)

    def get_player_match(self, player_id: str) -> Optional[QuickMatchState]:
        return self._match_for(player_id)

    def get_match(self, match_id: str) -> Optional[QuickMatchState]:
        return self._matches.get(match_id)

    def queue_size(self, key: str) -> int:
        return len(self._queues.get(key, {}))

    def queued_key(self, player_id: str) -> Optional[str]:
        activity = self.activity.current(player_id)
        if activity and activity.kind == ActivityKind.QUEUE:
            return activity.ref
        return None

    async def _publish_update(self, state: QuickMatchState, **payload) -> None:
        await self.bus.broadcast(
            state.player_ids,
            EventType.QUICK_MATCH_UPDATE,
            match=state.to_payload(),
            **payload
        )
