"""
Reconciliation client: one viewer's in-memory mirror of the room board.

Local actions are applied to the mirror and rendered synchronously, then sent
to the server in a background task. Three streams feed back into the mirror:

* update confirmations and push events carry one authoritative room and are
  merged with an apply-if-newer rule on ``updated_at``;
* polled snapshots are sequence-numbered, stale responses are discarded, and
  while a local edit is fresh (the suppression window) a background snapshot
  cannot overwrite that room;
* reset events replace the mirror wholesale.

Nothing here touches a real display. Output goes to a ``BoardView``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import tzinfo
from typing import Any, Callable, Dict, List, Optional, Set

from .api_client import RoomSyncError, Unauthorized
from .config import ClientSettings
from .models import Mode, Room
from .notifier import EVENT_CONNECTED, EVENT_RESET, EVENT_ROOM_UPDATE
from .renderer import RenderPatch, initial_mode, render_board, render_room, render_summary

logger = logging.getLogger(__name__)

CONNECTED = "connected"
DISCONNECTED = "disconnected"

NOTICE_INFO = "info"
NOTICE_SUCCESS = "success"
NOTICE_ERROR = "error"


@dataclass
class Notice:
    level: str
    message: str


class BoardView:
    """Presentation sink for a BoardClient. The base class discards everything."""

    def render(self, patch: RenderPatch):
        pass

    def notify(self, notice: Notice):
        pass

    def connection_changed(self, status: str):
        pass

    def login_required(self):
        pass


class BoardClient:
    def __init__(
        self,
        api,
        view: Optional[BoardView] = None,
        settings: Optional[ClientSettings] = None,
        *,
        read_only: bool = False,
        clock: Callable[[], float] = time.monotonic,
        tz: Optional[tzinfo] = None,
    ):
        self.api = api
        self.view = view or BoardView()
        self.settings = settings or ClientSettings()
        self.read_only = read_only
        self.clock = clock
        self.tz = tz

        self.rooms: List[Room] = []
        self.mode = Mode.SELECTION
        self.connection = DISCONNECTED
        self.authorized = True

        self._last_action_at: Optional[float] = None
        self._room_action_at: Dict[str, float] = {}
        self._local_edits: Dict[str, int] = {}
        self._pull_seq = 0
        self._applied_pull_seq = 0
        self._loops: List[asyncio.Task] = []
        self._pending: Set[asyncio.Task] = set()

    # ----- lifecycle -----

    async def start(self):
        if not await self.refresh():
            logger.warning("Initial room load failed; waiting for the next poll")
        self.mode = initial_mode(self.rooms)
        self._render_board()
        if self.read_only:
            self.view.notify(Notice(NOTICE_INFO, "Signed in read-only"))
        self._loops = [
            asyncio.create_task(self._poll_loop()),
            asyncio.create_task(self._event_loop()),
        ]

    async def stop(self):
        tasks = self._loops + list(self._pending)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops = []

    async def wait_pending(self):
        """Wait for every in-flight update to settle."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ----- lookups -----

    def _index(self, room_id: str) -> Optional[int]:
        for index, room in enumerate(self.rooms):
            if room.room_id == room_id:
                return index
        return None

    def find_room(self, room_id: str) -> Optional[Room]:
        index = self._index(room_id)
        return self.rooms[index] if index is not None else None

    # ----- suppression window -----

    def is_suppressed(self, room_id: Optional[str] = None) -> bool:
        """True while the latest local edit (to room_id, or to any room) is recent."""
        started = self._last_action_at if room_id is None else self._room_action_at.get(room_id)
        if started is None:
            return False
        return self.clock() - started < self.settings.suppress_window

    def _record_action(self, room_id: str):
        now = self.clock()
        self._last_action_at = now
        self._room_action_at[room_id] = now

    # ----- local actions -----

    def _check_writable(self) -> bool:
        if self.read_only:
            self.view.notify(Notice(NOTICE_ERROR, "This session is read-only; changes are disabled."))
            return False
        return True

    def toggle_active(self, room_id: str) -> Optional[asyncio.Task]:
        if not self._check_writable():
            return None
        room = self.find_room(room_id)
        if room is None:
            logger.warning(f"Ignoring action on unknown room {room_id}")
            return None
        return self._apply_local(room_id, {"is_active": not room.is_active})

    def toggle_checkout(self, room_id: str) -> Optional[asyncio.Task]:
        if not self._check_writable():
            return None
        room = self.find_room(room_id)
        if room is None:
            logger.warning(f"Ignoring action on unknown room {room_id}")
            return None
        return self._apply_local(room_id, {"is_checkout": not room.is_checkout})

    def edit_note(self, room_id: str, note: str) -> Optional[asyncio.Task]:
        if not self._check_writable():
            return None
        room = self.find_room(room_id)
        if room is None:
            logger.warning(f"Ignoring action on unknown room {room_id}")
            return None
        if note == room.notes:
            return None
        return self._apply_local(room_id, {"notes": note})

    def select_all(self) -> List[asyncio.Task]:
        return self._set_all_active(True)

    def select_none(self) -> List[asyncio.Task]:
        return self._set_all_active(False)

    def _set_all_active(self, active: bool) -> List[asyncio.Task]:
        if not self._check_writable():
            return []
        tasks = [
            self._apply_local(room.room_id, {"is_active": active}, render=False)
            for room in list(self.rooms)
            if room.is_active != active
        ]
        self._render_board()
        return tasks

    def _apply_local(self, room_id: str, fields: Dict[str, Any], render: bool = True) -> asyncio.Task:
        index = self._index(room_id)
        previous = self.rooms[index]
        room = previous.model_copy(update=fields)
        self.rooms[index] = room
        self._record_action(room_id)
        edit = self._local_edits.get(room_id, 0) + 1
        self._local_edits[room_id] = edit
        if render:
            self._render_change(previous, room)
        return self._spawn(self._send_update(room_id, fields, edit))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _send_update(self, room_id: str, fields: Dict[str, Any], edit: int):
        try:
            room = await asyncio.wait_for(
                self.api.update_room(room_id, fields),
                timeout=self.settings.request_timeout,
            )
        except Unauthorized:
            self._escalate_login()
            return
        except (RoomSyncError, asyncio.TimeoutError) as exc:
            logger.error(f"Update of room {room_id} failed: {exc!r}")
            self.view.notify(Notice(NOTICE_ERROR, "Update failed"))
            await self.refresh()
            return

        if self._local_edits.get(room_id) != edit:
            # A newer local edit to this room is still in flight; its own confirmation will land
            return
        self.apply_room(room)

    async def reset(self) -> bool:
        if not self._check_writable():
            return False
        try:
            rooms = await asyncio.wait_for(self.api.reset(), timeout=self.settings.request_timeout)
        except Unauthorized:
            self._escalate_login()
            return False
        except (RoomSyncError, asyncio.TimeoutError) as exc:
            logger.error(f"Reset failed: {exc!r}")
            self.view.notify(Notice(NOTICE_ERROR, "Reset failed"))
            return False
        if rooms:
            self.apply_reset(rooms)
        self.view.notify(Notice(NOTICE_SUCCESS, "All rooms have been reset"))
        return True

    # ----- mode state machine -----

    def confirm_selection(self) -> bool:
        count = sum(1 for room in self.rooms if room.is_active)
        if count == 0:
            self.view.notify(Notice(NOTICE_ERROR, "Select at least one room first."))
            return False
        self.switch_to_management()
        self.view.notify(Notice(NOTICE_SUCCESS, f"{count} rooms selected"))
        return True

    def switch_to_selection(self):
        self.mode = Mode.SELECTION
        self._render_board()

    def switch_to_management(self):
        self.mode = Mode.MANAGEMENT
        self._render_board()

    def toggle_mode(self) -> bool:
        if self.mode == Mode.SELECTION:
            return self.confirm_selection()
        self.switch_to_selection()
        return True

    # ----- reconciliation -----

    def apply_room(self, room: Room) -> bool:
        """Patch one authoritative record into the mirror unless it is stale."""
        index = self._index(room.room_id)
        if index is None:
            logger.debug(f"Ignoring record for unknown room {room.room_id}")
            return False
        current = self.rooms[index]
        if room.updated_at < current.updated_at or room == current:
            return False
        self.rooms[index] = room
        self._render_change(current, room)
        return True

    def apply_reset(self, rooms: List[Room]) -> bool:
        rooms = sorted(rooms, key=lambda room: room.display_order)
        if rooms == self.rooms:
            return False
        self.rooms = rooms
        self._render_board()
        return True

    def apply_snapshot(self, rooms: List[Room], seq: int, silent: bool = False) -> bool:
        """Merge a full snapshot; returns True when the mirror changed."""
        if seq < self._applied_pull_seq:
            logger.debug(f"Discarding stale snapshot #{seq} (applied #{self._applied_pull_seq})")
            return False
        self._applied_pull_seq = seq

        current = {room.room_id: room for room in self.rooms}
        merged: List[Room] = []
        for incoming in sorted(rooms, key=lambda room: room.display_order):
            local = current.get(incoming.room_id)
            keep_local = local is not None and (
                local.updated_at > incoming.updated_at
                or (silent and self.is_suppressed(incoming.room_id))
            )
            merged.append(local if keep_local else incoming)

        if merged == self.rooms:
            return False
        self.rooms = merged
        self._render_board()
        return True

    async def refresh(self, silent: bool = False) -> bool:
        """Pull a full snapshot. Silent pulls are skipped inside the suppression window."""
        if silent and self.is_suppressed():
            logger.debug("Skipping background pull inside the suppression window")
            return False
        self._pull_seq += 1
        seq = self._pull_seq
        try:
            rooms = await asyncio.wait_for(self.api.list_rooms(), timeout=self.settings.request_timeout)
        except Unauthorized:
            self._escalate_login()
            return False
        except (RoomSyncError, asyncio.TimeoutError) as exc:
            logger.warning(f"Room pull failed: {exc!r}")
            self._set_connection(DISCONNECTED)
            if not silent:
                self.view.notify(Notice(NOTICE_ERROR, "Could not load rooms"))
            return False
        self._set_connection(CONNECTED)
        self.apply_snapshot(rooms, seq, silent=silent)
        return True

    def handle_event(self, event: str, data: Any):
        try:
            if event == EVENT_CONNECTED:
                self._set_connection(CONNECTED)
                # The push channel has no backlog, so catch up with a pull
                self._spawn(self.refresh(silent=True))
            elif event == EVENT_ROOM_UPDATE:
                self.apply_room(Room(**data))
            elif event == EVENT_RESET:
                self.apply_reset([Room(**doc) for doc in data])
            else:
                logger.debug(f"Ignoring unknown event {event}")
        except (TypeError, ValueError) as exc:
            logger.warning(f"Ignoring malformed {event} event: {exc}")

    # ----- background loops -----

    async def _poll_loop(self):
        while self.authorized:
            await asyncio.sleep(self.settings.poll_interval)
            await self.refresh(silent=True)

    async def _event_loop(self):
        while self.authorized:
            try:
                async for event, data in self.api.stream_events():
                    self.handle_event(event, data)
                logger.info("Event stream closed")
            except Unauthorized:
                self._escalate_login()
                return
            except RoomSyncError as exc:
                logger.warning(f"Event stream dropped: {exc}")
            self._set_connection(DISCONNECTED)
            await asyncio.sleep(self.settings.reconnect_delay)

    # ----- rendering -----

    def _render_board(self):
        self.view.render(render_board(self.rooms, self.mode, self.tz))

    def _render_change(self, previous: Room, room: Room):
        if self.mode == Mode.MANAGEMENT:
            if previous.is_active != room.is_active:
                # Row membership changed
                self._render_board()
                return
            if not room.is_active:
                return
        self.view.render(render_room(room, self.mode, self.tz))
        self.view.render(render_summary(self.rooms, self.mode))

    def _set_connection(self, status: str):
        if status != self.connection:
            self.connection = status
            self.view.connection_changed(status)

    def _escalate_login(self):
        if self.authorized:
            logger.warning("Session rejected; login required")
            self.authorized = False
            self.view.login_required()
