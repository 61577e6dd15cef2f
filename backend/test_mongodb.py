import os
import uuid

import pytest

from roomboard.database import MongoRoomBackend
from roomboard.notifier import ChangeNotifier
from roomboard.services import RoomService

MONGODB_URL = os.getenv("MONGODB_URL")

pytestmark = pytest.mark.skipif(not MONGODB_URL, reason="MONGODB_URL not set")

ROSTER = [
    {"room_id": "201", "display_order": 100, "category": "general"},
    {"room_id": "202", "display_order": 110, "category": "general"},
    {"room_id": "寒椿", "display_order": 930, "category": "special"},
]


@pytest.fixture
async def setup_database():
    """Room store on a throwaway database"""
    database_name = f"room_board_test_{uuid.uuid4().hex[:8]}"
    backend = MongoRoomBackend(MONGODB_URL, database_name)
    service = RoomService(backend, ChangeNotifier(), roster=ROSTER)
    await service.start()
    yield service
    await backend.client.drop_database(database_name)
    await service.close()


class TestMongoDBConnection:
    """Test MongoDB connection and basic operations"""

    @pytest.mark.asyncio
    async def test_database_connection(self, setup_database):
        """Test that we can connect to MongoDB"""
        backend = setup_database.backend
        assert backend.client is not None
        assert backend.database is not None

        result = await backend.client.admin.command('ping')
        assert result['ok'] == 1

    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, setup_database):
        """Seeding again never duplicates or clears rooms"""
        await setup_database.update_room("201", {"notes": "keep"})
        await setup_database.backend.seed(await setup_database.list_rooms())

        rooms = await setup_database.list_rooms()
        assert [room.room_id for room in rooms] == ["201", "202", "寒椿"]
        assert rooms[0].notes == "keep"


class TestRoomService:
    """Test room store operations against MongoDB"""

    @pytest.mark.asyncio
    async def test_update_room(self, setup_database):
        """Test a partial update round trip"""
        first = await setup_database.update_room("寒椿", {"is_active": True})
        second = await setup_database.update_room("寒椿", {"notes": "late"})

        assert second.is_active is True
        assert second.notes == "late"
        assert second.updated_at > first.updated_at
        assert second.updated_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_update_missing_room(self, setup_database):
        """Unknown rooms are never created"""
        assert await setup_database.update_room("999", {"is_checkout": True}) is None
        assert len(await setup_database.list_rooms()) == 3

    @pytest.mark.asyncio
    async def test_reset_rooms(self, setup_database):
        """Test clearing every room"""
        await setup_database.update_room("201", {"is_active": True, "is_checkout": True})
        rooms = await setup_database.reset_rooms()

        assert len(rooms) == 3
        assert len({room.updated_at for room in rooms}) == 1
        assert not any(room.is_active or room.is_checkout for room in rooms)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
