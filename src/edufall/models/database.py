import json
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import Column, String, Text, DateTime, select, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from ..config.settings import DB_CONFIG

logger = logging.getLogger(__name__)

Base = declarative_base()


class DatabaseError(Exception):
    """Custom exception for database errors."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlayerProfile(Base):
    __tablename__ = 'player_profiles'

    player_id = Column(String, primary_key=True)
    username = Column(String, nullable=False, default="")
    payload = Column(Text, nullable=False)  # JSON profile document
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class TournamentSnapshot(Base):
    __tablename__ = 'tournament_snapshots'

    tournament_id = Column(String, primary_key=True)
    status = Column(String, nullable=False)
    payload = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class LeaderboardSnapshot(Base):
    __tablename__ = 'leaderboard_snapshots'

    board = Column(String, primary_key=True)
    payload = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class Database:
    def __init__(self, database_url: str = DB_CONFIG["url"], echo: bool = DB_CONFIG["echo"]):
        self.database_url = database_url
        self.echo = echo
        self.engine = None
        self.SessionLocal = None

    @property
    def connected(self) -> bool:
        return self.engine is not None

    async def connect(self):
        """Connect to the database and create tables"""
        try:
            kwargs = {"echo": self.echo}
            if self.database_url.endswith("://") or ":memory:" in self.database_url:
                # One shared connection, or every session sees an empty database
                kwargs["poolclass"] = StaticPool
            self.engine = create_async_engine(self.database_url, **kwargs)

            self.SessionLocal = sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            logger.info("Database connection established")

        except SQLAlchemyError as e:
            logger.error(f"Database connection error: {e}")
            raise DatabaseError(f"Failed to connect: {e}")

    async def disconnect(self):
        """Close database connection"""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.SessionLocal = None
            logger.info("Database connection closed")

    def _session(self) -> AsyncSession:
        if not self.SessionLocal:
            raise DatabaseError("Database is not connected")
        return self.SessionLocal()

    # Player profiles

    async def get_profile(self, player_id: str) -> Optional[Dict]:
        try:
            async with self._session() as session:
                result = await session.execute(
                    select(PlayerProfile).where(PlayerProfile.player_id == player_id)
                )
                profile = result.scalar_one_or_none()
                if profile:
                    return json.loads(profile.payload)
                return None
        except (SQLAlchemyError, ValueError) as e:
            logger.error(f"Error loading profile {player_id}: {e}")
            raise DatabaseError(f"Failed to load profile: {e}")

    async def save_profile(self, player_id: str, username: str, data: Dict) -> None:
        try:
            async with self._session() as session:
                profile = await session.get(PlayerProfile, player_id)
                payload = json.dumps(data)
                if profile:
                    profile.username = username
                    profile.payload = payload
                else:
                    session.add(PlayerProfile(player_id=player_id, username=username, payload=payload))
                await session.commit()
        except (SQLAlchemyError, TypeError) as e:
            logger.error(f"Error saving profile {player_id}: {e}")
            raise DatabaseError(f"Failed to save profile: {e}")

    # Tournaments

    async def save_tournament(self, snapshot: Dict) -> None:
        try:
            async with self._session() as session:
                record = await session.get(TournamentSnapshot, snapshot["id"])
                payload = json.dumps(snapshot)
                if record:
                    record.status = snapshot["status"]
                    record.payload = payload
                else:
                    session.add(TournamentSnapshot(
                        tournament_id=snapshot["id"],
                        status=snapshot["status"],
                        payload=payload
                    ))
                await session.commit()
        except (SQLAlchemyError, TypeError, KeyError) as e:
            logger.error(f"Error saving tournament snapshot: {e}")
            raise DatabaseError(f"Failed to save tournament: {e}")

    async def delete_tournament(self, tournament_id: str) -> None:
        try:
            async with self._session() as session:
                await session.execute(
                    delete(TournamentSnapshot).where(TournamentSnapshot.tournament_id == tournament_id)
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error deleting tournament {tournament_id}: {e}")
            raise DatabaseError(f"Failed to delete tournament: {e}")

    async def load_tournaments(self, statuses: Optional[Iterable[str]] = None) -> List[Dict]:
        try:
            async with self._session() as session:
                query = select(TournamentSnapshot)
                if statuses:
                    query = query.where(TournamentSnapshot.status.in_(list(statuses)))
                result = await session.execute(query)
                return [json.loads(row.payload) for row in result.scalars().all()]
        except (SQLAlchemyError, ValueError) as e:
            logger.error(f"Error loading tournaments: {e}")
            raise DatabaseError(f"Failed to load tournaments: {e}")

    # Leaderboards

    async def save_leaderboards(self, boards: Dict[str, object]) -> None:
        """Store one row per board name (plus the reset keys row)."""
        try:
            async with self._session() as session:
                for board, data in boards.items():
                    record = await session.get(LeaderboardSnapshot, board)
                    payload = json.dumps(data)
                    if record:
                        record.payload = payload
                    else:
                        session.add(LeaderboardSnapshot(board=board, payload=payload))
                await session.commit()
        except (SQLAlchemyError, TypeError) as e:
            logger.error(f"Error saving leaderboards: {e}")
            raise DatabaseError(f"Failed to save leaderboards: {e}")

    async def load_leaderboards(self) -> Dict[str, object]:
        try:
            async with self._session() as session:
                result = await session.execute(select(LeaderboardSnapshot))
                return {row.board: json.loads(row.payload) for row in result.scalars().all()}
        except (SQLAlchemyError, ValueError) as e:
            logger.error(f"Error loading leaderboards: {e}")
            raise DatabaseError(f"Failed to load leaderboards: {e}")
