import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from roomboard.database import JsonRoomBackend
from roomboard.models import RoomPatch
from roomboard.notifier import ChangeNotifier
from roomboard.services import RoomService, next_stamp

ROSTER = [
    {"room_id": "205", "display_order": 130, "category": "general"},
    {"room_id": "201", "display_order": 100, "category": "general"},
    {"room_id": "松虫草", "display_order": 900, "category": "special"},
    {"room_id": "202", "display_order": 110, "category": "general"},
]


@pytest.fixture
async def room_service():
    service = RoomService(JsonRoomBackend(None), ChangeNotifier(), roster=ROSTER)
    await service.start()
    yield service
    await service.close()


def drain(subscription):
    events = []
    while not subscription.queue.empty():
        events.append(subscription.queue.get_nowait())
    return events


class TestRoomStore:
    @pytest.mark.asyncio
    async def test_list_is_ordered_by_display_order(self, room_service):
        rooms = await room_service.list_rooms()
        assert [room.room_id for room in rooms] == ["201", "202", "205", "松虫草"]

    @pytest.mark.asyncio
    async def test_order_is_stable_after_updates(self, room_service):
        await room_service.update_room("松虫草", {"is_active": True})
        await room_service.update_room("201", {"notes": "late"})
        await room_service.reset_rooms()
        await room_service.update_room("205", {"is_checkout": True})
        rooms = await room_service.list_rooms()
        assert [room.room_id for room in rooms] == ["201", "202", "205", "松虫草"]

    @pytest.mark.asyncio
    async def test_get_room(self, room_service):
        room = await room_service.get_room("202")
        assert room.display_order == 110
        assert room.is_active is False
        assert await room_service.get_room("999") is None

    @pytest.mark.asyncio
    async def test_updated_at_increases_with_every_update(self, room_service):
        stamps = []
        for i in range(20):
            room = await room_service.update_room("201", {"notes": f"note {i}"})
            stamps.append(room.updated_at)
        assert all(later > earlier for earlier, later in zip(stamps, stamps[1:]))

    @pytest.mark.asyncio
    async def test_partial_update_isolation(self, room_service):
        await room_service.update_room("201", {"notes": "x"})
        room = await room_service.update_room("201", {"is_checkout": True})
        assert room.notes == "x"
        assert room.is_checkout is True
        assert room.is_active is False

    @pytest.mark.asyncio
    async def test_update_accepts_patch_model(self, room_service):
        room = await room_service.update_room("202", RoomPatch(is_active=True))
        assert room.is_active is True

    @pytest.mark.asyncio
    async def test_unknown_fields_are_ignored(self, room_service):
        room = await room_service.update_room("205", {"notes": "ok", "category": "special", "colour": "red"})
        assert room.notes == "ok"
        assert room.category == "general"

    @pytest.mark.asyncio
    async def test_clearing_active_keeps_checkout(self, room_service):
        await room_service.update_room("201", {"is_active": True, "is_checkout": True})
        room = await room_service.update_room("201", {"is_active": False})
        assert room.is_checkout is True

    @pytest.mark.asyncio
    async def test_missing_room(self, room_service):
        subscription = room_service.notifier.subscribe()
        assert await room_service.update_room("999", {"is_checkout": True}) is None
        assert await room_service.get_room("999") is None
        assert [event for event, _ in drain(subscription)] == ["connected"]

    @pytest.mark.asyncio
    async def test_invalid_updates_do_not_mutate(self, room_service):
        before = await room_service.get_room("201")
        with pytest.raises(ValueError):
            await room_service.update_room("201", {})
        with pytest.raises(ValueError):
            await room_service.update_room("201", {"bogus": True})
        with pytest.raises(ValueError):
            await room_service.update_room("201", {"notes": None})
        with pytest.raises(ValueError):
            await room_service.update_room("201", {"is_active": "sometimes"})
        with pytest.raises(ValueError):
            await room_service.update_room("201", {"notes": "x" * 501})
        assert await room_service.get_room("201") == before

    @pytest.mark.asyncio
    async def test_noop_update_is_not_restamped(self, room_service):
        subscription = room_service.notifier.subscribe()
        first = await room_service.update_room("202", {"is_active": True})
        second = await room_service.update_room("202", {"is_active": True})
        assert second.updated_at == first.updated_at
        assert [event for event, _ in drain(subscription)] == ["connected", "roomUpdate"]

    @pytest.mark.asyncio
    async def test_reset_clears_every_room(self, room_service):
        for room_id in ("201", "202", "205", "松虫草"):
            await room_service.update_room(room_id, {"is_active": True, "is_checkout": True, "notes": "n"})
        before = await room_service.list_rooms()

        rooms = await room_service.reset_rooms()
        assert len(rooms) == 4
        for room in await room_service.list_rooms():
            assert room.is_active is False
            assert room.is_checkout is False
            assert room.notes == ""
        stamps = {room.updated_at for room in rooms}
        assert len(stamps) == 1
        assert stamps.pop() > max(room.updated_at for room in before)

    @pytest.mark.asyncio
    async def test_reset_is_broadcast_once_with_roster(self, room_service):
        subscription = room_service.notifier.subscribe()
        await room_service.reset_rooms()
        events = drain(subscription)
        assert [event for event, _ in events] == ["connected", "reset"]
        assert [doc["room_id"] for doc in events[1][1]] == ["201", "202", "205", "松虫草"]


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_simultaneous_identical_updates_commit_once(self, room_service):
        first_viewer = room_service.notifier.subscribe()
        second_viewer = room_service.notifier.subscribe()

        a, b = await asyncio.gather(
            room_service.update_room("201", {"is_checkout": True}),
            room_service.update_room("201", {"is_checkout": True}),
        )
        assert a.is_checkout is True and b.is_checkout is True
        assert a.updated_at == b.updated_at

        for subscription in (first_viewer, second_viewer):
            events = drain(subscription)
            updates = [data for event, data in events if event == "roomUpdate"]
            assert len(updates) == 1
            assert updates[0]["is_checkout"] is True

    @pytest.mark.asyncio
    async def test_same_room_updates_serialize_in_order(self, room_service):
        subscription = room_service.notifier.subscribe()
        await asyncio.gather(
            room_service.update_room("205", {"notes": "x"}),
            room_service.update_room("205", {"is_checkout": True}),
            room_service.update_room("205", {"is_active": True}),
        )
        room = await room_service.get_room("205")
        assert room.notes == "x"
        assert room.is_checkout is True
        assert room.is_active is True

        updates = [data for event, data in drain(subscription) if event == "roomUpdate"]
        assert len(updates) == 3
        stamps = [datetime.fromisoformat(data["updated_at"].replace("Z", "+00:00")) for data in updates]
        assert stamps == sorted(stamps)
        assert updates[-1]["notes"] == "x" and updates[-1]["is_checkout"] is True

    @pytest.mark.asyncio
    async def test_reset_and_updates_do_not_interleave(self, room_service):
        await asyncio.gather(
            room_service.update_room("201", {"notes": "a"}),
            room_service.reset_rooms(),
            room_service.update_room("202", {"notes": "b"}),
        )
        rooms = {room.room_id: room for room in await room_service.list_rooms()}
        # Each update ran either wholly before or wholly after the reset
        assert rooms["201"].notes in ("", "a")
        assert rooms["202"].notes in ("", "b")
        assert rooms["205"].notes == ""


class TestJsonBackend:
    @pytest.mark.asyncio
    async def test_changes_survive_restart(self, tmp_path):
        path = tmp_path / "rooms.json"
        service = RoomService(JsonRoomBackend(str(path)), roster=ROSTER)
        await service.start()
        await service.update_room("202", {"is_active": True, "notes": "VIP"})
        await service.close()

        data = json.loads(path.read_text(encoding="utf-8"))
        assert len(data["rooms"]) == 4

        reopened = RoomService(JsonRoomBackend(str(path)), roster=ROSTER)
        await reopened.start()
        room = await reopened.get_room("202")
        assert room.is_active is True
        assert room.notes == "VIP"
        await reopened.close()

    @pytest.mark.asyncio
    async def test_reads_integer_flags_from_older_files(self, tmp_path):
        path = tmp_path / "rooms.json"
        path.write_text(json.dumps({"rooms": [{
            "room_id": "201", "display_order": 100, "category": "general",
            "is_active": 1, "is_checkout": 0, "notes": "", "updated_at": "2024-05-01T09:30:00.000Z",
        }]}), encoding="utf-8")
        service = RoomService(JsonRoomBackend(str(path)), roster=ROSTER)
        await service.start()
        room = await service.get_room("201")
        assert room.is_active is True
        # Missing roster rooms are seeded next to the existing ones
        assert len(await service.list_rooms()) == 4
        await service.close()

    @pytest.mark.asyncio
    async def test_readers_only_see_written_state(self, tmp_path, monkeypatch):
        backend = JsonRoomBackend(str(tmp_path / "rooms.json"))
        service = RoomService(backend, roster=ROSTER)
        await service.start()

        seen = []
        write_file = backend._write_file

        def observing_write(docs):
            seen.append(backend._rooms["201"].notes)
            write_file(docs)

        monkeypatch.setattr(backend, "_write_file", observing_write)
        await service.update_room("201", {"notes": "x"})
        assert seen == [""]
        assert (await service.get_room("201")).notes == "x"

        def failing_write(docs):
            raise OSError("disk full")

        monkeypatch.setattr(backend, "_write_file", failing_write)
        with pytest.raises(OSError):
            await service.update_room("201", {"notes": "y"})
        with pytest.raises(OSError):
            await service.reset_rooms()
        room = await service.get_room("201")
        assert room.notes == "x"
        await service.close()

    @pytest.mark.asyncio
    async def test_corrupt_file_falls_back_to_roster(self, tmp_path):
        path = tmp_path / "rooms.json"
        path.write_text("{not json", encoding="utf-8")
        service = RoomService(JsonRoomBackend(str(path)), roster=ROSTER)
        await service.start()
        assert len(await service.list_rooms()) == 4
        await service.close()


def test_next_stamp_is_strictly_later():
    future = datetime.now(timezone.utc) + timedelta(seconds=5)
    assert next_stamp(future) > future
    assert next_stamp(None) <= datetime.now(timezone.utc) + timedelta(milliseconds=1)
    assert next_stamp().microsecond % 1000 == 0
