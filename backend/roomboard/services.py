import asyncio
import logging
from contextlib import AsyncExitStack
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from .models import MUTABLE_FIELDS, Room, RoomPatch, utc_now
from .notifier import ChangeNotifier
from .roster import seed_rooms

logger = logging.getLogger(__name__)

STAMP_RESOLUTION = timedelta(milliseconds=1)


def next_stamp(*previous: Optional[datetime]) -> datetime:
    """A timestamp strictly later than every given one."""
    stamp = utc_now()
    latest = max((p for p in previous if p is not None), default=None)
    if latest is not None and stamp <= latest:
        stamp = latest + STAMP_RESOLUTION
    return stamp


class RoomService:
    """Authoritative room store.

    Writes to the same room serialize on a per-room lock and are published to
    the notifier before the lock is released, so every viewer sees a room's
    commits in commit order. Writes to different rooms do not wait on each
    other. A reset holds every room lock.
    """

    def __init__(self, backend, notifier: Optional[ChangeNotifier] = None, roster: Optional[List[Dict[str, Any]]] = None):
        self.backend = backend
        self.notifier = notifier or ChangeNotifier()
        self.roster = roster
        self._locks: Dict[str, asyncio.Lock] = {}

    async def start(self):
        await self.backend.connect()
        await self.backend.seed(seed_rooms(self.roster))
        rooms = await self.backend.list_rooms()
        self._locks = {room.room_id: asyncio.Lock() for room in rooms}
        logger.info(f"Room store ready with {len(rooms)} rooms")

    async def close(self):
        self.notifier.close()
        await self.backend.close()

    async def list_rooms(self) -> List[Room]:
        """All rooms ordered by display_order."""
        rooms = await self.backend.list_rooms()
        return sorted(rooms, key=lambda room: room.display_order)

    async def get_room(self, room_id: str) -> Optional[Room]:
        return await self.backend.get_room(room_id)

    async def update_room(self, room_id: str, patch: Union[RoomPatch, Dict[str, Any]]) -> Optional[Room]:
        """Apply a partial update to one room.

        Returns None when the room does not exist. Raises ValueError when the
        patch names no mutable field or carries a null value.
        """
        fields = self._validate_patch(patch)
        lock = self._locks.get(room_id)
        if lock is None:
            return None

        async with lock:
            current = await self.backend.get_room(room_id)
            if current is None:
                return None
            changes = {key: value for key, value in fields.items() if getattr(current, key) != value}
            if not changes:
                return current

            room = await self.backend.update_room(room_id, changes, next_stamp(current.updated_at))
            if room is None:
                return None
            logger.info(f"Room {room_id} updated: {changes}")
            self.notifier.publish_room(room)
            return room

    async def reset_rooms(self) -> List[Room]:
        """Clear is_active, is_checkout and notes on every room."""
        async with AsyncExitStack() as stack:
            for room_id in sorted(self._locks):
                await stack.enter_async_context(self._locks[room_id])
            current = await self.backend.list_rooms()
            stamp = next_stamp(*(room.updated_at for room in current))
            rooms = await self.backend.reset_rooms(stamp)
            rooms = sorted(rooms, key=lambda room: room.display_order)
            logger.info(f"Reset {len(rooms)} rooms")
            self.notifier.publish_reset(rooms)
            return rooms

    @staticmethod
    def _validate_patch(patch: Union[RoomPatch, Dict[str, Any]]) -> Dict[str, Any]:
        if not isinstance(patch, RoomPatch):
            patch = RoomPatch.model_validate(patch)
        fields = patch.model_dump(exclude_unset=True)
        if not fields:
            raise ValueError(f"Update must include at least one of: {', '.join(MUTABLE_FIELDS)}")
        nulls = [key for key, value in fields.items() if value is None]
        if nulls:
            raise ValueError(f"Fields cannot be null: {', '.join(nulls)}")
        return fields
