"""Tournament lifecycle: creation, brackets, leagues, matches and challenges."""
import asyncio
import functools
import inspect
import logging
import math
import random
from typing import Callable, Dict, Iterable, List, Optional, Set

from ..config.settings import TOURNAMENT_CONFIG, MATCHMAKING_CONFIG
from ..models.database import Database, DatabaseError
from ..models.tournament import (
    ChallengeStatus,
    DirectChallenge,
    MatchStatus,
    QuickMatchConfig,
    QuickMatchState,
    RoundStatus,
    Tournament,
    TournamentConfig,
    TournamentLobbyInfo,
    TournamentMatch,
    TournamentParticipant,
    TournamentReward,
    TournamentRound,
    TournamentStatus,
    TournamentType,
    TournamentVisibility,
    REWARD_TYPES,
)
from ..services.activity_registry import ActivityKind, PlayerActivityRegistry
from ..services.event_bus import EventBus, EventType
from ..services.question_registry import QuestionRegistry
from ..services.scheduler import Scheduler, TimerHandle
from ..utils.dates import timestamp_ms
from ..utils.ids import generate_id, generate_invite_code
from ..utils.scoring import calculate_match_points, rank_results
from .tournament_policies import CoinFlipTieBreaker, RetryThenForfeitPolicy, TieBreaker

logger = logging.getLogger(__name__)

PERSISTED_STATUSES = (TournamentStatus.WAITING.value, TournamentStatus.IN_PROGRESS.value)

RewardHook = Callable[[str, TournamentReward], object]


def validate_tournament_config(config: TournamentConfig, settings: Dict = TOURNAMENT_CONFIG) -> Optional[str]:
    """Return why a config is unusable, or None when it is valid."""
    if not config.name or len(config.name.strip()) < settings["min_name_length"]:
        return "Tournament name is too short"
    if not config.subject:
        return "A subject is required"
    if not config.difficulty:
        return "A difficulty is required"
    if config.min_participants < 2:
        return "At least 2 participants are required"
    if config.max_participants < config.min_participants:
        return "Maximum participants is below the minimum"
    if config.questions_per_match < 1:
        return "Matches need at least one question"

    if config.type == TournamentType.QUICK_MATCH:
        if config.max_participants > settings["quick_match_max"]:
            return f"Quick matches allow at most {settings['quick_match_max']} players"
    elif config.type == TournamentType.BRACKET:
        if config.max_participants not in settings["bracket_sizes"]:
            return f"Bracket size must be one of {settings['bracket_sizes']}"
    elif config.type == TournamentType.LEAGUE:
        if config.max_participants < settings["league_min"]:
            return f"Leagues need at least {settings['league_min']} players"
    elif config.type == TournamentType.CHALLENGE:
        if config.max_participants != 2:
            return "Challenges are exactly 2 players"

    if config.rewards and not config.is_official:
        return "Only official tournaments can have rewards"
    for reward in config.rewards:
        if reward.type not in REWARD_TYPES:
            return f"Unknown reward type: {reward.type}"
    return None


def round_robin_pairings(player_ids: List[str]) -> List[List[tuple]]:
    """Every pair plays once, scheduled with the circle method."""
    players: List[Optional[str]] = list(player_ids)
    if len(players) % 2:
        players.append(None)
    count = len(players)
    rounds = []
    for _ in range(count - 1):
        pairs = []
        for i in range(count // 2):
            first, second = players[i], players[count - 1 - i]
            if first and second:
                pairs.append((first, second))
        rounds.append(pairs)
        # Keep the first player fixed and rotate the rest
        players = [players[0], players[-1]] + players[1:-1]
    return rounds


class TournamentOrchestrator:
    """Owns every tournament and direct challenge.

    All state changes happen under one lock. Timer callbacks take the lock
    and re-check the tournament before acting, so a timer whose tournament
    was cancelled or whose match already moved on does nothing.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        bus: EventBus,
        activity: PlayerActivityRegistry,
        questions: QuestionRegistry,
        matchmaking=None,
        persistence=None,
        rng: Optional[random.Random] = None,
        tie_breaker: Optional[TieBreaker] = None,
        stall_policy: Optional[RetryThenForfeitPolicy] = None,
        reward_hook: Optional[RewardHook] = None,
        config: Dict = TOURNAMENT_CONFIG,
        match_config: Dict = MATCHMAKING_CONFIG
    ):
        self.scheduler = scheduler
        self.bus = bus
        self.activity = activity
        self.questions = questions
        self.matchmaking = matchmaking
        self.persistence = persistence
        self.rng = rng or random.Random()
        self.tie_breaker = tie_breaker or CoinFlipTieBreaker(self.rng)
        self.stall_policy = stall_policy or RetryThenForfeitPolicy(
            config["stall_max_retries"], config["stall_base_delay"]
        )
        self.reward_hook = reward_hook or self._default_reward_hook
        self.config = config
        self.match_config = match_config

        self._tournaments: Dict[str, Tournament] = {}
        self._challenges: Dict[str, DirectChallenge] = {}
        self._start_timers: Dict[str, TimerHandle] = {}
        self._challenge_timers: Dict[str, TimerHandle] = {}
        self._removed_ids: Set[str] = set()
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Creation and membership
    # ------------------------------------------------------------------

    async def create_tournament(
        self,
        creator_id: str,
        creator_username: str,
        config: TournamentConfig
    ) -> Optional[Tournament]:
        async with self._lock:
            error = validate_tournament_config(config, self.config)
            if error:
                logger.warning(f"Invalid tournament config from {creator_username}: {error}")
                return None
            if self.activity.is_busy(creator_id):
                logger.warning(f"Player {creator_username} is busy and cannot create a tournament")
                return None

            if config.visibility == TournamentVisibility.PRIVATE and not config.invite_code:
                config.invite_code = generate_invite_code(self.rng)

            tournament = Tournament(
                id=generate_id("t"),
                config=config,
                creator_id=creator_id,
                creator_username=creator_username,
                created_at=timestamp_ms(),
            )
            if not self.activity.claim(creator_id, ActivityKind.TOURNAMENT, tournament.id):
                return None
            self._add_participant(tournament, creator_id, creator_username)
            self._tournaments[tournament.id] = tournament
            logger.info(f"Tournament {tournament.id} '{config.name}' created by {creator_username}")

            await self.bus.publish(
                creator_id,
                EventType.TOURNAMENT_CREATED,
                tournament=self.tournament_payload(tournament),
            )
            await self._check_auto_start(tournament)
            return tournament

    async def join_tournament(
        self,
        player_id: str,
        username: str,
        tournament_id: str,
        invite_code: Optional[str] = None
    ) -> bool:
        async with self._lock:
            tournament = self._tournaments.get(tournament_id)
            if not tournament:
                logger.warning(f"Tournament not found: {tournament_id}")
                return False
            if self.activity.is_busy(player_id):
                logger.warning(f"Player {username} is busy and cannot join {tournament_id}")
                return False
            if tournament.status != TournamentStatus.WAITING:
                logger.warning(f"Tournament {tournament_id} is not accepting participants")
                return False
            if tournament.is_full:
                logger.warning(f"Tournament {tournament_id} is full")
                return False
            if tournament.config.visibility == TournamentVisibility.PRIVATE:
                if not invite_code or invite_code.strip().upper() != tournament.config.invite_code:
                    logger.warning(f"Invalid invite code for tournament {tournament_id}")
                    return False
            if not self.activity.claim(player_id, ActivityKind.TOURNAMENT, tournament_id):
                return False

            self._add_participant(tournament, player_id, username)
            try:
                await self._notify(tournament, "player-joined", player_id=player_id)
            except Exception:
                # A failed join leaves no trace
                del tournament.participants[player_id]
                self.activity.release(player_id, ActivityKind.TOURNAMENT, tournament_id)
                raise

            logger.info(
                f"{username} joined tournament {tournament_id} "
                f"({tournament.participant_count}/{tournament.config.max_participants})"
            )
            await self._check_auto_start(tournament)
            return True

    async def leave_tournament(self, player_id: str) -> bool:
        async with self._lock:
            tournament = self._tournament_for(player_id)
            if not tournament:
                return False

            if tournament.status != TournamentStatus.WAITING:
                # Keep the bracket intact
                participant = tournament.participants.get(player_id)
                if participant:
                    participant.is_connected = False
                    participant.last_active_at = timestamp_ms()
                return False

            del tournament.participants[player_id]
            self.activity.release(player_id, ActivityKind.TOURNAMENT, tournament.id)
            logger.info(f"Player {player_id} left tournament {tournament.id}")

            if not tournament.participants:
                await self._cancel(tournament, "All participants left", also_notify=[player_id])
                return True

            if tournament.participant_count < tournament.config.min_participants:
                timer = self._start_timers.pop(tournament.id, None)
                if timer:
                    timer.cancel()
                    logger.info(f"Start of tournament {tournament.id} on hold, below minimum players")
            await self._notify(tournament, "player-left", player_id=player_id)
            return True

    async def cancel_tournament(self, tournament_id: str, reason: str) -> bool:
        async with self._lock:
            tournament = self._tournaments.get(tournament_id)
            if not tournament:
                return False
            await self._cancel(tournament, reason)
            return True

    def _add_participant(self, tournament: Tournament, player_id: str, username: str) -> None:
        now = timestamp_ms()
        tournament.participants[player_id] = TournamentParticipant(
            player_id=player_id,
            username=username,
            joined_at=now,
            last_active_at=now,
        )

    async def _cancel(self, tournament: Tournament, reason: str,
                      also_notify: Optional[List[str]] = None) -> None:
        tournament.status = TournamentStatus.CANCELLED
        timer = self._start_timers.pop(tournament.id, None)
        if timer:
            timer.cancel()
        recipients = list(tournament.participants)
        for player_id in recipients:
            self.activity.release(player_id, ActivityKind.TOURNAMENT, tournament.id)
        recipients.extend(p for p in also_notify or [] if p not in recipients)
        del self._tournaments[tournament.id]
        self._removed_ids.add(tournament.id)
        logger.info(f"Tournament {tournament.id} cancelled: {reason}")
        await self.bus.broadcast(
            recipients,
            EventType.TOURNAMENT_UPDATE,
            event="cancelled",
            reason=reason,
            tournament=self.tournament_payload(tournament),
        )

    # ------------------------------------------------------------------
    # Starting
    # ------------------------------------------------------------------

    async def _check_auto_start(self, tournament: Tournament) -> None:
        if tournament.participant_count < tournament.config.min_participants:
            return
        if tournament.is_full:
            await self._start_tournament(tournament)
            return
        if tournament.config.start_delay and tournament.id not in self._start_timers:
            self._start_timers[tournament.id] = self.scheduler.call_later(
                tournament.config.start_delay,
                self._on_delayed_start,
                tournament.id,
                name=f"tournament_start_{tournament.id}"
            )

    async def _on_delayed_start(self, tournament_id: str) -> None:
        async with self._lock:
            self._start_timers.pop(tournament_id, None)
            tournament = self._tournaments.get(tournament_id)
            if not tournament or tournament.status != TournamentStatus.WAITING:
                return
            if tournament.participant_count < tournament.config.min_participants:
                logger.info(f"Tournament {tournament_id} below minimum players at start time, waiting")
                return
            await self._start_tournament(tournament)

    async def _start_tournament(self, tournament: Tournament) -> None:
        if tournament.status != TournamentStatus.WAITING:
            return
        timer = self._start_timers.pop(tournament.id, None)
        if timer:
            timer.cancel()

        tournament.status = TournamentStatus.STARTING
        tournament.started_at = timestamp_ms()
        player_ids = list(tournament.participants)

        if tournament.config.type == TournamentType.LEAGUE:
            self._setup_league(tournament, player_ids)
        elif tournament.config.type == TournamentType.BRACKET:
            self.rng.shuffle(player_ids)
            self._setup_elimination(tournament, player_ids)
        else:
            # Quick match and challenge keep join order
            self._setup_elimination(tournament, player_ids)

        tournament.status = TournamentStatus.IN_PROGRESS
        tournament.current_round = 1
        logger.info(
            f"Tournament {tournament.id} started with {len(player_ids)} players, "
            f"{len(tournament.rounds)} rounds"
        )
        await self._notify(tournament, "started")
        await self._start_round(tournament, tournament.rounds[0])

    def _new_match(self, tournament: Tournament, round_number: int, match_number: int,
                   first: Optional[str] = None, second: Optional[str] = None) -> TournamentMatch:
        return TournamentMatch(
            id=generate_id("m"),
            tournament_id=tournament.id,
            round_number=round_number,
            match_number=match_number,
            participant1_id=first,
            participant2_id=second,
            total_questions=tournament.config.questions_per_match,
        )

    def _setup_elimination(self, tournament: Tournament, player_ids: List[str]) -> None:
        first_round = TournamentRound(round_number=1)
        for i in range(0, len(player_ids), 2):
            first = player_ids[i]
            second = player_ids[i + 1] if i + 1 < len(player_ids) else None
            match = self._new_match(tournament, 1, i // 2 + 1, first, second)
            if not second:
                # Bye
                match.complete(first, timestamp_ms())
            first_round.matches.append(match)
        tournament.rounds = [first_round]

        matches_in_round = len(first_round.matches)
        round_number = 1
        while matches_in_round > 1:
            matches_in_round = math.ceil(matches_in_round / 2)
            round_number += 1
            tournament.rounds.append(TournamentRound(
                round_number=round_number,
                matches=[
                    self._new_match(tournament, round_number, m + 1)
                    for m in range(matches_in_round)
                ],
            ))

    def _setup_league(self, tournament: Tournament, player_ids: List[str]) -> None:
        tournament.rounds = []
        for index, pairs in enumerate(round_robin_pairings(player_ids)):
            round_number = index + 1
            tournament.rounds.append(TournamentRound(
                round_number=round_number,
                matches=[
                    self._new_match(tournament, round_number, m + 1, first, second)
                    for m, (first, second) in enumerate(pairs)
                ],
            ))

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------

    async def _start_round(self, tournament: Tournament, tournament_round: TournamentRound) -> None:
        tournament_round.status = RoundStatus.IN_PROGRESS
        tournament_round.started_at = timestamp_ms()

        for match in tournament_round.matches:
            if match.status == MatchStatus.PENDING and match.participant1_id and match.participant2_id:
                self.scheduler.call_later(
                    self.config["match_start_countdown"],
                    self._on_match_start,
                    tournament.id,
                    match.id,
                    name=f"match_start_{match.id}"
                )

        await self._notify(tournament, "round-started", round_number=tournament_round.round_number)
        if tournament_round.is_complete:
            await self._check_round_completion(tournament)

    async def _on_round_start(self, tournament_id: str, round_number: int) -> None:
        async with self._lock:
            tournament = self._tournaments.get(tournament_id)
            if not tournament or tournament.status != TournamentStatus.IN_PROGRESS:
                return
            if tournament.current_round != round_number:
                return
            await self._start_round(tournament, tournament.rounds[round_number - 1])

    async def _check_round_completion(self, tournament: Tournament) -> None:
        current = tournament.rounds[tournament.current_round - 1] if tournament.rounds else None
        if not current or current.status == RoundStatus.COMPLETED or not current.is_complete:
            return

        current.status = RoundStatus.COMPLETED
        current.completed_at = timestamp_ms()
        logger.info(f"Tournament {tournament.id} round {current.round_number} complete")

        if tournament.current_round >= len(tournament.rounds):
            await self._complete_tournament(tournament)
            return

        next_round = tournament.rounds[tournament.current_round]
        if tournament.config.type != TournamentType.LEAGUE:
            winners = [w for w in current.winners() if w]
            for i, match in enumerate(next_round.matches):
                match.participant1_id = winners[i * 2] if i * 2 < len(winners) else None
                match.participant2_id = winners[i * 2 + 1] if i * 2 + 1 < len(winners) else None
                lone = match.participants
                if len(lone) == 1:
                    match.complete(lone[0], timestamp_ms())

        tournament.current_round += 1
        await self._notify(tournament, "round-completed", round_number=current.round_number)
        self.scheduler.call_later(
            self.config["round_delay"],
            self._on_round_start,
            tournament.id,
            tournament.current_round,
            name=f"round_start_{tournament.id}_{tournament.current_round}"
        )

    # ------------------------------------------------------------------
    # Matches
    # ------------------------------------------------------------------

    def _time_limit(self, tournament: Tournament) -> float:
        return tournament.config.time_per_question or self.config["question_time_limit"]

    async def _on_match_start(self, tournament_id: str, match_id: str) -> None:
        async with self._lock:
            tournament = self._tournaments.get(tournament_id)
            if not tournament or tournament.status != TournamentStatus.IN_PROGRESS:
                return
            match = tournament.find_match(match_id)
            if not match or match.status != MatchStatus.PENDING:
                return
            match.status = MatchStatus.IN_PROGRESS
            match.started_at = timestamp_ms()
            logger.info(f"Match {match.id} started: {match.participant1_id} vs {match.participant2_id}")
            await self._notify_match(tournament, match, "match-started")
            await self._start_match_question(tournament, match)

    async def _start_match_question(self, tournament: Tournament, match: TournamentMatch) -> None:
        config = tournament.config
        question = self.questions.generate_question(config.subject, config.difficulty, config.category)
        if not question:
            await self._handle_stall(tournament, match)
            return

        match.status = MatchStatus.IN_PROGRESS
        match.stall_attempts = 0
        match.current_question = question
        match.answered = set()
        match.question_started_at = self.scheduler.now()
        time_limit = self._time_limit(tournament)

        await self._notify_match(
            tournament,
            match,
            "question",
            question=question.to_payload(),
            options=question.answer_options(self.rng),
            question_number=match.current_question_index + 1,
            total_questions=match.total_questions,
            time_limit=time_limit,
        )
        self.scheduler.call_later(
            time_limit,
            self._on_match_question_timeout,
            tournament.id,
            match.id,
            match.current_question_index,
            name=f"match_question_{match.id}_{match.current_question_index}"
        )

    async def _handle_stall(self, tournament: Tournament, match: TournamentMatch) -> None:
        match.status = MatchStatus.STALLED
        match.current_question = None
        policy = self.stall_policy
        if policy.should_retry(match.stall_attempts):
            delay = policy.retry_delay(match.stall_attempts)
            match.stall_attempts += 1
            logger.error(
                f"Failed to generate question for match {match.id}, "
                f"retry {match.stall_attempts}/{policy.max_retries} in {delay}s"
            )
            self.scheduler.call_later(delay, self._on_retry_match_question, tournament.id, match.id,
                                      name=f"match_retry_{match.id}")
            return

        logger.error(f"Match {match.id} stalled after {match.stall_attempts} retries, forcing a result")
        await self._finalize_match(tournament, match)

    async def _on_retry_match_question(self, tournament_id: str, match_id: str) -> None:
        async with self._lock:
            tournament = self._tournaments.get(tournament_id)
            if not tournament or tournament.status != TournamentStatus.IN_PROGRESS:
                return
            match = tournament.find_match(match_id)
            if match and match.status == MatchStatus.STALLED:
                await self._start_match_question(tournament, match)

    async def _on_match_question_timeout(self, tournament_id: str, match_id: str, question_index: int) -> None:
        async with self._lock:
            tournament = self._tournaments.get(tournament_id)
            if not tournament or tournament.status != TournamentStatus.IN_PROGRESS:
                return
            match = tournament.find_match(match_id)
            if not match or match.status != MatchStatus.IN_PROGRESS:
                return
            if match.current_question_index != question_index or not match.current_question:
                return
            await self._end_match_question(tournament, match)

    async def _end_match_question(self, tournament: Tournament, match: TournamentMatch) -> None:
        for player_id in match.participants:
            if player_id not in match.answered:
                participant = tournament.participants.get(player_id)
                if participant:
                    participant.record_miss()

        correct_answer = match.current_question.correct_answer
        match.current_question = None
        match.current_question_index += 1
        await self._notify_match(tournament, match, "question-end", correct_answer=correct_answer)

        if match.current_question_index >= match.total_questions:
            await self._finalize_match(tournament, match)
        else:
            self.scheduler.call_later(
                self.config["question_delay"],
                self._on_next_match_question,
                tournament.id,
                match.id,
                name=f"match_next_{match.id}"
            )

    async def _on_next_match_question(self, tournament_id: str, match_id: str) -> None:
        async with self._lock:
            tournament = self._tournaments.get(tournament_id)
            if not tournament or tournament.status != TournamentStatus.IN_PROGRESS:
                return
            match = tournament.find_match(match_id)
            if match and match.status == MatchStatus.IN_PROGRESS and not match.current_question:
                await self._start_match_question(tournament, match)

    async def submit_match_answer(self, player_id: str, answer) -> Optional[bool]:
        """Answer the current question of the player's tournament match.

        Returns None when the player has no open question or already answered it.
        """
        async with self._lock:
            tournament = self._tournament_for(player_id)
            if not tournament or tournament.status != TournamentStatus.IN_PROGRESS:
                return None
            match = tournament.active_match_for(player_id)
            if not match or not match.current_question or player_id in match.answered:
                return None
            participant = tournament.participants.get(player_id)
            if not participant:
                return None

            response_time = max(0.0, self.scheduler.now() - (match.question_started_at or 0.0))
            correct = self.questions.validate_answer(match.current_question, answer)
            points = calculate_match_points(response_time, self.match_config) if correct else 0

            participant.record_answer(correct, points, response_time)
            participant.last_active_at = timestamp_ms()
            match.add_score(player_id, points)
            match.answered.add(player_id)

            await self._notify_match(
                tournament,
                match,
                "answer",
                player_id=player_id,
                correct=correct,
                points=points,
            )
            return correct

    async def _finalize_match(self, tournament: Tournament, match: TournamentMatch) -> None:
        if match.is_complete:
            return

        if match.participant1_score > match.participant2_score:
            winner_id = match.participant1_id
        elif match.participant2_score > match.participant1_score:
            winner_id = match.participant2_id
        else:
            winner_id = self.tie_breaker.choose(match, tournament.participants)
            logger.info(f"Match {match.id} tied at {match.participant1_score}, tie-break picked {winner_id}")

        if not match.complete(winner_id, timestamp_ms()):
            return

        for player_id in match.participants:
            participant = tournament.participants.get(player_id)
            if participant:
                participant.matches_played += 1
        winner = tournament.participants.get(winner_id)
        if winner:
            winner.matches_won += 1
        loser = tournament.participants.get(match.loser_id())
        if loser and tournament.config.type != TournamentType.LEAGUE:
            loser.eliminated = True

        logger.info(f"Match {match.id} completed, winner {winner_id}")
        await self._notify_match(tournament, match, "match-completed", winner_id=winner_id)
        await self._check_round_completion(tournament)

    # ------------------------------------------------------------------
    # Completion and rewards
    # ------------------------------------------------------------------

    async def _complete_tournament(self, tournament: Tournament) -> None:
        tournament.status = TournamentStatus.COMPLETED
        tournament.completed_at = timestamp_ms()

        if tournament.config.type == TournamentType.LEAGUE:
            standings = rank_results(
                list(tournament.participants.values()),
                ("matches_won", "current_score", "correct_answers")
            )
            tournament.final_placements = {p.player_id: i + 1 for i, p in enumerate(standings)}
            tournament.winner_id = standings[0].player_id if standings else None
        else:
            final_match = tournament.rounds[-1].matches[0]
            tournament.winner_id = final_match.winner_id
            tournament.final_placements = {}
            if final_match.winner_id:
                tournament.final_placements[final_match.winner_id] = 1
            runner_up = final_match.loser_id()
            if runner_up:
                tournament.final_placements[runner_up] = 2

        for player_id, participant in tournament.participants.items():
            participant.final_placement = tournament.final_placements.get(player_id)
            self.activity.release(player_id, ActivityKind.TOURNAMENT, tournament.id)
            if self.persistence:
                self.persistence.record_tournament_result(
                    player_id, tournament.id, participant.final_placement
                )

        logger.info(f"Tournament {tournament.id} completed, winner {tournament.winner_id}")
        await self._distribute_rewards(tournament)
        await self._notify(tournament, "completed", winner_id=tournament.winner_id)

        self.scheduler.call_later(
            self.config["completion_grace"],
            self._on_cleanup,
            tournament.id,
            name=f"tournament_cleanup_{tournament.id}"
        )

    async def _on_cleanup(self, tournament_id: str) -> None:
        async with self._lock:
            tournament = self._tournaments.get(tournament_id)
            if tournament and tournament.status == TournamentStatus.COMPLETED:
                del self._tournaments[tournament_id]
                self._removed_ids.add(tournament_id)
                logger.info(f"Removed completed tournament {tournament_id}")

    async def distribute_rewards(self, tournament_id: str) -> int:
        async with self._lock:
            tournament = self._tournaments.get(tournament_id)
            if not tournament:
                return 0
            return await self._distribute_rewards(tournament)

    async def _distribute_rewards(self, tournament: Tournament) -> int:
        """Grant each (player, placement, reward) at most once."""
        if not tournament.config.is_official or not tournament.config.rewards:
            return 0

        granted = 0
        for index, reward in enumerate(tournament.config.rewards):
            for player_id, placement in tournament.final_placements.items():
                if placement != reward.placement:
                    continue
                key = f"{player_id}:{placement}:{index}"
                if key in tournament.rewards_granted:
                    continue
                tournament.rewards_granted.add(key)
                try:
                    result = self.reward_hook(player_id, reward)
                    if inspect.isawaitable(result):
                        await result
                    granted += 1
                except Exception as e:
                    tournament.rewards_granted.discard(key)
                    logger.error(f"Failed to grant reward to {player_id}: {e}")
        return granted

    def _default_reward_hook(self, player_id: str, reward: TournamentReward) -> None:
        if self.persistence:
            self.persistence.grant_reward(player_id, reward)
        else:
            logger.info(f"Reward for {player_id} not stored, no persistence: {reward.description}")

    # ------------------------------------------------------------------
    # Direct challenges
    # ------------------------------------------------------------------

    async def create_challenge(
        self,
        challenger_id: str,
        challenger_username: str,
        challenged_id: str,
        challenged_username: str,
        subject: str,
        difficulty: str,
        questions_per_match: int = 5
    ) -> Optional[DirectChallenge]:
        async with self._lock:
            if challenger_id == challenged_id:
                logger.warning(f"{challenger_username} tried to challenge themselves")
                return None
            if questions_per_match < 1:
                return None
            if self.activity.is_busy(challenger_id):
                logger.warning(f"Challenger {challenger_username} is not available")
                return None

            now = timestamp_ms()
            expiry = self.config["challenge_expiry"]
            challenge = DirectChallenge(
                id=generate_id("c"),
                challenger_id=challenger_id,
                challenger_username=challenger_username,
                challenged_id=challenged_id,
                challenged_username=challenged_username,
                subject=subject,
                difficulty=difficulty,
                questions_per_match=questions_per_match,
                created_at=now,
                expires_at=now + int(expiry * 1000),
            )
            self._challenges[challenge.id] = challenge
            self._challenge_timers[challenge.id] = self.scheduler.call_later(
                expiry, self._on_challenge_expired, challenge.id, name=f"challenge_expiry_{challenge.id}"
            )
            logger.info(f"{challenger_username} challenged {challenged_username} ({challenge.id})")

            await self.bus.publish(challenged_id, EventType.CHALLENGE_RECEIVED, challenge=challenge.to_dict())
            await self.bus.publish(challenger_id, EventType.CHALLENGE_UPDATE, challenge=challenge.to_dict())
            return challenge

    async def accept_challenge(self, player_id: str, challenge_id: str) -> bool:
        async with self._lock:
            challenge = self._challenges.get(challenge_id)
            if not challenge:
                return False
            if challenge.challenged_id != player_id:
                logger.warning(f"Player {player_id} cannot accept challenge {challenge_id}")
                return False
            if challenge.status != ChallengeStatus.PENDING:
                return False
            if self.activity.is_busy(player_id):
                return False
            if not self.matchmaking:
                logger.error("Cannot start challenge match without matchmaking")
                return False

            challenge.status = ChallengeStatus.ACCEPTED
            match_config = QuickMatchConfig(
                subject=challenge.subject,
                difficulty=challenge.difficulty,
                player_count=2,
                questions_per_round=challenge.questions_per_match,
            )
            state = await self.matchmaking.start_direct_match(
                [
                    (challenge.challenger_id, challenge.challenger_username),
                    (challenge.challenged_id, challenge.challenged_username),
                ],
                match_config,
                ActivityKind.CHALLENGE_MATCH,
                on_complete=functools.partial(self._on_challenge_match_complete, challenge_id),
            )
            if not state:
                challenge.status = ChallengeStatus.PENDING
                return False

            challenge.status = ChallengeStatus.IN_PROGRESS
            challenge.match_id = state.match_id
            timer = self._challenge_timers.pop(challenge_id, None)
            if timer:
                timer.cancel()
            logger.info(f"Challenge {challenge_id} accepted, match {state.match_id}")
            await self._notify_challenge(challenge)
            return True

    async def decline_challenge(self, player_id: str, challenge_id: str) -> bool:
        async with self._lock:
            challenge = self._challenges.get(challenge_id)
            if not challenge or challenge.challenged_id != player_id:
                return False
            if challenge.status != ChallengeStatus.PENDING:
                return False
            challenge.status = ChallengeStatus.DECLINED
            del self._challenges[challenge_id]
            timer = self._challenge_timers.pop(challenge_id, None)
            if timer:
                timer.cancel()
            logger.info(f"Challenge {challenge_id} declined")
            await self._notify_challenge(challenge)
            return True

    async def _on_challenge_expired(self, challenge_id: str) -> None:
        async with self._lock:
            self._challenge_timers.pop(challenge_id, None)
            challenge = self._challenges.get(challenge_id)
            if not challenge or challenge.status != ChallengeStatus.PENDING:
                return
            challenge.status = ChallengeStatus.EXPIRED
            del self._challenges[challenge_id]
            logger.info(f"Challenge {challenge_id} expired")
            await self._notify_challenge(challenge)

    async def _on_challenge_match_complete(self, challenge_id: str, state: QuickMatchState,
                                           standings: List[TournamentParticipant]) -> None:
        async with self._lock:
            challenge = self._challenges.pop(challenge_id, None)
            if not challenge:
                return
            challenge.status = ChallengeStatus.COMPLETED
            winner_id = standings[0].player_id if standings else None
            await self._notify_challenge(challenge, winner_id=winner_id)

    def get_pending_challenges(self, player_id: str) -> List[DirectChallenge]:
        return [
            c for c in self._challenges.values()
            if c.challenged_id == player_id and c.status == ChallengeStatus.PENDING
        ]

    def get_challenge(self, challenge_id: str) -> Optional[DirectChallenge]:
        return self._challenges.get(challenge_id)

    async def _notify_challenge(self, challenge: DirectChallenge, **extra) -> None:
        await self.bus.broadcast(
            [challenge.challenger_id, challenge.challenged_id],
            EventType.CHALLENGE_UPDATE,
            challenge=challenge.to_dict(),
            **extra
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_public_tournaments(self) -> List[TournamentLobbyInfo]:
        return [
            t.lobby_info() for t in self._tournaments.values()
            if t.config.visibility == TournamentVisibility.PUBLIC and t.status == TournamentStatus.WAITING
        ]

    def get_tournament(self, tournament_id: str) -> Optional[Tournament]:
        return self._tournaments.get(tournament_id)

    def get_player_tournament(self, player_id: str) -> Optional[Tournament]:
        tournament = self._tournament_for(player_id)
        if tournament:
            return tournament
        # Completed tournaments release claims but stay visible during the grace period
        for tournament in self._tournaments.values():
            if player_id in tournament.participants and tournament.status == TournamentStatus.COMPLETED:
                return tournament
        return None

    def _tournament_for(self, player_id: str) -> Optional[Tournament]:
        activity = self.activity.current(player_id)
        if not activity or activity.kind != ActivityKind.TOURNAMENT:
            return None
        return self._tournaments.get(activity.ref)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    @staticmethod
    def tournament_payload(tournament: Tournament) -> dict:
        data = tournament.to_dict()
        data.pop("rewards_granted", None)
        return data

    async def _notify(self, tournament: Tournament, event: str, **extra) -> None:
        await self.bus.broadcast(
            list(tournament.participants),
            EventType.TOURNAMENT_UPDATE,
            event=event,
            tournament=self.tournament_payload(tournament),
            **extra
        )

    async def _notify_match(self, tournament: Tournament, match: TournamentMatch, event: str, **extra) -> None:
        await self.bus.broadcast(
            match.participants,
            EventType.TOURNAMENT_UPDATE,
            event=event,
            tournament_id=tournament.id,
            match=match.to_dict(),
            **extra
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @staticmethod
    def serialize_tournament(tournament: Tournament) -> dict:
        return tournament.to_dict()

    @staticmethod
    def deserialize_tournament(data: dict) -> Tournament:
        return Tournament.from_dict(data)

    def all_tournaments_for_persistence(self) -> List[dict]:
        return [
            self.serialize_tournament(t) for t in self._tournaments.values()
            if t.status.value in PERSISTED_STATUSES
        ]

    async def load_persisted_tournaments(self, snapshots: Iterable[dict]) -> int:
        """Restore waiting and in-progress tournaments and resume their current round."""
        loaded = 0
        async with self._lock:
            for data in snapshots:
                if data.get("status") not in PERSISTED_STATUSES:
                    continue
                try:
                    tournament = self.deserialize_tournament(data)
                except (KeyError, TypeError, ValueError) as e:
                    logger.error(f"Skipping unreadable tournament snapshot: {e}")
                    continue
                if tournament.id in self._tournaments:
                    continue

                for player_id in list(tournament.participants):
                    if not self.activity.claim(player_id, ActivityKind.TOURNAMENT, tournament.id):
                        logger.warning(f"Restored tournament {tournament.id} lost player {player_id}")
                self._tournaments[tournament.id] = tournament
                loaded += 1

                if tournament.status == TournamentStatus.IN_PROGRESS and tournament.rounds:
                    current = tournament.rounds[tournament.current_round - 1]
                    for match in current.matches:
                        if match.status in (MatchStatus.IN_PROGRESS, MatchStatus.STALLED):
                            # Restart interrupted matches from the question they were on
                            match.status = MatchStatus.PENDING
                    await self._start_round(tournament, current)
        logger.info(f"Loaded {loaded} persisted tournaments")
        return loaded

    async def save_snapshots(self, database: Database) -> int:
        async with self._lock:
            snapshots = self.all_tournaments_for_persistence()
            removed = list(self._removed_ids)
            finished = [t.id for t in self._tournaments.values()
                        if t.status.value not in PERSISTED_STATUSES]
            self._removed_ids.clear()

        saved = 0
        try:
            for snapshot in snapshots:
                await database.save_tournament(snapshot)
                saved += 1
            for tournament_id in removed + finished:
                await database.delete_tournament(tournament_id)
        except DatabaseError as e:
            logger.error(f"Failed to save tournament snapshots: {e}")
            async with self._lock:
                self._removed_ids.update(removed)
        return saved
