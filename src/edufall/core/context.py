"""Wiring of every game service into one explicitly constructed context."""
import logging
import random
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from ..config.env import AppConfig
from ..config.settings import LEADERBOARD_CONFIG
from ..models.database import Database, DatabaseError
from ..services.achievements import AchievementTracker
from ..services.adaptive_difficulty import AdaptiveDifficultyTracker
from ..services.activity_registry import PlayerActivityRegistry
from ..services.event_bus import EventBus, Sink
from ..services.persistence import PersistenceFacade
from ..services.profile_store import (
    DatabaseProfileStore,
    HttpProfileStore,
    InMemoryProfileStore,
    ProfileStore,
)
from ..services.question_registry import QuestionRegistry, create_default_registry
from ..services.scheduler import AsyncioScheduler, Scheduler, TimerHandle
from ..services.social import SocialService
from .game_session import GameSessionController
from .leaderboard import LeaderboardStore
from .matchmaking import MatchmakingQueue
from .message_router import MessageRouter
from .race import RaceManager
from .scoring_engine import ScoringEngine
from .team import TeamManager
from .tournament import PERSISTED_STATUSES, TournamentOrchestrator
from .tournament_policies import TieBreaker

logger = logging.getLogger(__name__)

KEYS_ROW = "_keys"


def leaderboard_rows(snapshot: Dict) -> Dict[str, object]:
    """Split a leaderboard snapshot into one database row per board."""
    rows: Dict[str, object] = dict(snapshot["boards"])
    rows[KEYS_ROW] = {"daily_key": snapshot["daily_key"], "weekly_key": snapshot["weekly_key"]}
    return rows


def snapshot_from_rows(rows: Dict[str, object]) -> Dict:
    keys = rows.get(KEYS_ROW) or {}
    snapshot = {"boards": {board: data for board, data in rows.items() if board != KEYS_ROW}}
    if keys.get("daily_key"):
        snapshot["daily_key"] = keys["daily_key"]
    if keys.get("weekly_key"):
        snapshot["weekly_key"] = keys["weekly_key"]
    return snapshot


def create_profile_store(config: AppConfig, database: Optional[Database]) -> ProfileStore:
    if config.profile_store == "http":
        return HttpProfileStore(
            config.profile_store_url,
            token=config.profile_store_token,
            timeout=config.http_timeout,
        )
    if config.profile_store == "database" and database:
        return DatabaseProfileStore(database)
    return InMemoryProfileStore()


@dataclass
class GameContext:
    scheduler: Scheduler
    bus: EventBus
    activity: PlayerActivityRegistry
    questions: QuestionRegistry
    scoring: ScoringEngine
    leaderboard: LeaderboardStore
    profile_store: ProfileStore
    persistence: PersistenceFacade
    achievements: AchievementTracker
    matchmaking: MatchmakingQueue
    tournaments: TournamentOrchestrator
    sessions: GameSessionController
    race: RaceManager
    team: TeamManager
    router: MessageRouter
    adaptive: AdaptiveDifficultyTracker
    social: SocialService
    database: Optional[Database] = None
    snapshot_interval: int = 0
    _snapshot_timer: Optional[TimerHandle] = field(default=None, repr=False)

    async def start(self) -> None:
        """Connect storage, restore saved state and start background loops."""
        if self.database:
            await self.database.connect()
            await self._restore()

        self.leaderboard.start(self.scheduler)
        if self.database and self.snapshot_interval > 0:
            self._schedule_snapshot()
        logger.info("Game context started")

    async def _restore(self) -> None:
        try:
            rows = await self.database.load_leaderboards()
            if rows:
                self.leaderboard.restore(snapshot_from_rows(rows))
            snapshots = await self.database.load_tournaments(PERSISTED_STATUSES)
        except DatabaseError as e:
            logger.error(f"Could not restore saved state: {e}")
            return
        await self.tournaments.load_persisted_tournaments(snapshots)

    def _schedule_snapshot(self) -> None:
        self._snapshot_timer = self.scheduler.call_later(
            self.snapshot_interval, self._on_snapshot, name="state_snapshot"
        )

    async def _on_snapshot(self) -> None:
        try:
            await self.save_snapshots()
        except Exception as e:
            logger.error(f"Snapshot failed: {e}")
        if self._snapshot_timer:
            self._schedule_snapshot()

    async def save_snapshots(self) -> None:
        if not self.database:
            return
        try:
            await self.database.save_leaderboards(leaderboard_rows(self.leaderboard.snapshot()))
        except DatabaseError as e:
            logger.error(f"Failed to save leaderboards: {e}")
        await self.tournaments.save_snapshots(self.database)

    async def shutdown(self) -> None:
        """Stop timers and loops, then flush profiles and snapshots."""
        logger.info("Shutting down game context...")
        if self._snapshot_timer:
            self._snapshot_timer.cancel()
            self._snapshot_timer = None

        await self.leaderboard.stop()
        if isinstance(self.scheduler, AsyncioScheduler):
            await self.scheduler.shutdown()
        else:
            self.scheduler.cancel_all()

        saved = await self.persistence.save_all()
        logger.info(f"Saved {saved} player profiles")
        await self.save_snapshots()

        await self.profile_store.close()
        if self.database:
            await self.database.disconnect()
        logger.info("Game context stopped")


def build_context(
    sink: Sink,
    scheduler: Optional[Scheduler] = None,
    profile_store: Optional[ProfileStore] = None,
    database: Optional[Database] = None,
    rng: Optional[random.Random] = None,
    questions: Optional[QuestionRegistry] = None,
    tie_breaker: Optional[TieBreaker] = None,
    sleep: Optional[Callable] = None,
    snapshot_interval: int = LEADERBOARD_CONFIG["snapshot_interval"]
) -> GameContext:
    scheduler = scheduler or AsyncioScheduler()
    rng = rng or random.Random()
    bus = EventBus(sink)
    activity = PlayerActivityRegistry()
    questions = questions or create_default_registry(rng)
    store = profile_store or InMemoryProfileStore()

    persistence_kwargs = {"sleep": sleep} if sleep else {}
    persistence = PersistenceFacade(store, **persistence_kwargs)
    scoring = ScoringEngine(clock=scheduler.now)
    leaderboard = LeaderboardStore()
    achievements = AchievementTracker(persistence, bus)
    adaptive = AdaptiveDifficultyTracker(clock=scheduler.now)
    social = SocialService()

    matchmaking = MatchmakingQueue(scheduler, bus, activity, questions, rng=rng)
    tournaments = TournamentOrchestrator(
        scheduler, bus, activity, questions,
        matchmaking=matchmaking,
        persistence=persistence,
        rng=rng,
        tie_breaker=tie_breaker,
    )
    sessions = GameSessionController(
        scheduler, bus, activity, questions, scoring, leaderboard,
        persistence=persistence,
        achievements=achievements,
        adaptive=adaptive,
        rng=rng,
    )
    race = RaceManager(scheduler, bus, activity, questions, rng=rng)
    team = TeamManager(scheduler, bus, activity, questions, rng=rng)
    router = MessageRouter(
        bus, questions, sessions, leaderboard, persistence, achievements,
        tournaments, matchmaking, race, team,
        social=social,
    )

    return GameContext(
        scheduler=scheduler,
        bus=bus,
        activity=activity,
        questions=questions,
        scoring=scoring,
        leaderboard=leaderboard,
        profile_store=store,
        persistence=persistence,
        achievements=achievements,
        matchmaking=matchmaking,
        tournaments=tournaments,
        sessions=sessions,
        race=race,
        team=team,
        router=router,
        adaptive=adaptive,
        social=social,
        database=database,
        snapshot_interval=snapshot_interval,
    )
