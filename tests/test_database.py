import pytest

from edufall.models.database import Database, DatabaseError


@pytest.fixture
async def database():
    db = Database("sqlite+aiosqlite://")
    await db.connect()
    yield db
    await db.disconnect()


class TestProfiles:
    async def test_save_and_update(self, database):
        await database.save_profile("p1", "Ann", {"username": "Ann", "total_score": 10})
        await database.save_profile("p1", "Ann", {"username": "Ann", "total_score": 25})
        assert (await database.get_profile("p1"))["total_score"] == 25

    async def test_unserializable_profile(self, database):
        with pytest.raises(DatabaseError):
            await database.save_profile("p1", "Ann", {"bad": object()})


class TestTournamentSnapshots:
    async def test_filter_by_status(self, database):
        await database.save_tournament({"id": "t1", "status": "waiting"})
        await database.save_tournament({"id": "t2", "status": "completed"})
        await database.save_tournament({"id": "t1", "status": "in-progress"})

        active = await database.load_tournaments(["waiting", "in-progress"])
        assert active == [{"id": "t1", "status": "in-progress"}]
        assert len(await database.load_tournaments()) == 2

    async def test_delete(self, database):
        await database.save_tournament({"id": "t1", "status": "waiting"})
        await database.delete_tournament("t1")
        await database.delete_tournament("missing")
        assert await database.load_tournaments() == []

    async def test_snapshot_needs_id(self, database):
        with pytest.raises(DatabaseError):
            await database.save_tournament({"status": "waiting"})


class TestLeaderboards:
    async def test_rows_are_upserted(self, database):
        await database.save_leaderboards({"daily": [{"player_id": "p1", "score": 5}]})
        await database.save_leaderboards({"daily": [], "_keys": {"daily_key": "2024-05-15"}})

        rows = await database.load_leaderboards()
        assert rows == {"daily": [], "_keys": {"daily_key": "2024-05-15"}}


class TestConnection:
    async def test_operations_need_connection(self):
        database = Database("sqlite+aiosqlite://")
        assert not database.connected
        with pytest.raises(DatabaseError):
            await database.load_leaderboards()

    async def test_disconnect_is_idempotent(self, database):
        await database.disconnect()
        await database.disconnect()
        assert not database.connected
