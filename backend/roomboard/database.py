import asyncio
import json
import os
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import anyio
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo import ReturnDocument
from pymongo.errors import ConnectionFailure

from .config import Settings
from .models import Room

logger = logging.getLogger(__name__)

CLEARED_FIELDS: Dict[str, Any] = {"is_active": False, "is_checkout": False, "notes": ""}


class JsonRoomBackend:
    """Rooms held in memory and mirrored to a JSON file on every commit.

    With ``path=None`` nothing touches the disk.
    """

    def __init__(self, path: Optional[str] = None):
        self.path: Optional[Path] = Path(path) if path else None
        self._rooms: Dict[str, Room] = {}
        self._write_lock = asyncio.Lock()

    async def connect(self):
        if self.path is None:
            logger.info("Using in-memory room storage")
            return
        rooms = await anyio.to_thread.run_sync(self._read_file)
        self._rooms = {room.room_id: room for room in rooms}
        logger.info(f"Loaded {len(self._rooms)} rooms from {self.path}")

    def _read_file(self) -> List[Room]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return [Room(**doc) for doc in data.get("rooms", [])]
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load room data from {self.path}, starting from the roster: {e}")
            return []

    def _write_file(self, docs: List[Dict[str, Any]]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump({"rooms": docs}, fh, ensure_ascii=False, indent=2)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, self.path)

    async def _commit(self, rooms: Dict[str, Room]):
        """Write ``rooms`` to disk, then make them the visible state.

        Callers hold the write lock. Readers keep seeing the previous state
        until the write has succeeded.
        """
        if self.path is not None:
            docs = [room.model_dump(mode="json") for room in self._ordered(rooms)]
            await anyio.to_thread.run_sync(self._write_file, docs)
        self._rooms = rooms

    def _ordered(self, rooms: Optional[Dict[str, Room]] = None) -> List[Room]:
        rooms = self._rooms if rooms is None else rooms
        return sorted(rooms.values(), key=lambda room: room.display_order)

    async def seed(self, rooms: List[Room]):
        async with self._write_lock:
            missing = [room for room in rooms if room.room_id not in self._rooms]
            if not missing and self.path is not None and self.path.exists():
                return
            staged = dict(self._rooms)
            for room in missing:
                staged[room.room_id] = room
            await self._commit(staged)
        if missing:
            logger.info(f"Seeded {len(missing)} rooms")

    async def list_rooms(self) -> List[Room]:
        return [room.model_copy() for room in self._ordered()]

    async def get_room(self, room_id: str) -> Optional[Room]:
        room = self._rooms.get(room_id)
        return room.model_copy() if room else None

    async def update_room(self, room_id: str, fields: Dict[str, Any], updated_at: datetime) -> Optional[Room]:
        async with self._write_lock:
            previous = self._rooms.get(room_id)
            if previous is None:
                return None
            updated = previous.model_copy(update={**fields, "updated_at": updated_at})
            await self._commit({**self._rooms, room_id: updated})
        return updated.model_copy()

    async def reset_rooms(self, updated_at: datetime) -> List[Room]:
        async with self._write_lock:
            staged = {
                room_id: room.model_copy(update={**CLEARED_FIELDS, "updated_at": updated_at})
                for room_id, room in self._rooms.items()
            }
            await self._commit(staged)
        return await self.list_rooms()

    async def close(self):
        pass


class MongoRoomBackend:
    """Rooms stored in a MongoDB ``rooms`` collection keyed by room_id."""

    def __init__(self, mongo_url: str, database_name: str):
        self.mongo_url = mongo_url
        self.database_name = database_name
        self.client: Optional[AsyncIOMotorClient] = None
        self.database = None
        self.collection: Optional[AsyncIOMotorCollection] = None

    async def connect(self):
        """Create database connection."""
        try:
            self.client = AsyncIOMotorClient(self.mongo_url, tz_aware=True)
            self.database = self.client[self.database_name]

            await self.client.admin.command('ping')
            logger.info("Successfully connected to MongoDB")

        except ConnectionFailure as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise
        except Exception as e:
            logger.error(f"Unexpected error connecting to MongoDB: {e}")
            raise

        self.collection = self.database["rooms"]
        await self.collection.create_index("room_id", unique=True)

    def _get_collection(self) -> AsyncIOMotorCollection:
        if self.collection is None:
            raise RuntimeError("Database not initialized. Call connect() first.")
        return self.collection

    async def seed(self, rooms: List[Room]):
        collection = self._get_collection()
        inserted = 0
        for room in rooms:
            result = await collection.update_one(
                {"room_id": room.room_id},
                {"$setOnInsert": room.model_dump()},
                upsert=True,
            )
            if result.upserted_id is not None:
                inserted += 1
        if inserted:
            logger.info(f"Seeded {inserted} rooms")

    async def list_rooms(self) -> List[Room]:
        cursor = self._get_collection().find({}, {"_id": 0}).sort("display_order", 1)
        return [Room(**doc) async for doc in cursor]

    async def get_room(self, room_id: str) -> Optional[Room]:
        doc = await self._get_collection().find_one({"room_id": room_id}, {"_id": 0})
        return Room(**doc) if doc else None

    async def update_room(self, room_id: str, fields: Dict[str, Any], updated_at: datetime) -> Optional[Room]:
        doc = await self._get_collection().find_one_and_update(
            {"room_id": room_id},
            {"$set": {**fields, "updated_at": updated_at}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        return Room(**doc) if doc else None

    async def reset_rooms(self, updated_at: datetime) -> List[Room]:
        await self._get_collection().update_many({}, {"$set": {**CLEARED_FIELDS, "updated_at": updated_at}})
        return await self.list_rooms()

    async def close(self):
        """Close database connection."""
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")


def create_backend(settings: Settings):
    if settings.mongodb_url:
        return MongoRoomBackend(settings.mongodb_url, settings.mongodb_database)
    return JsonRoomBackend(settings.rooms_data_file)
