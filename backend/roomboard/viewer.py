"""
Command-line room board viewer.

Logs in, mirrors the board with a BoardClient and logs every change it
would have drawn. Useful for watching the board from a terminal and for
checking that push events reach a viewer.

Usage:
    python -m roomboard.viewer --url http://localhost:8000 --password 1126
"""

import argparse
import asyncio
import logging
import os
from typing import Optional

from .api_client import RoomsApi, RoomSyncError
from .auth import ROLE_VIEWER
from .config import ClientSettings
from .reconciler import BoardClient, BoardView, Notice
from .renderer import KIND_ROOM, RenderPatch, progress

logger = logging.getLogger("roomboard.viewer")


class LoggingView(BoardView):
    def __init__(self):
        self.client: Optional[BoardClient] = None
        self.stopped = asyncio.Event()

    def render(self, patch: RenderPatch):
        rooms = self.client.rooms if self.client else []
        counts = progress(rooms)
        if patch.kind == KIND_ROOM:
            room = self.client.find_room(patch.room_id) if self.client else None
            if room:
                logger.info(
                    f"Room {room.room_id}: active={room.is_active} out={room.is_checkout} note={room.notes!r}"
                )
        else:
            logger.info(f"Board redrawn ({patch.kind}): {counts.out}/{counts.total} out")

    def notify(self, notice: Notice):
        log = logger.error if notice.level == "error" else logger.info
        log(notice.message)

    def connection_changed(self, status: str):
        logger.info(f"Connection {status}")

    def login_required(self):
        logger.error("Session expired or rejected; log in again")
        self.stopped.set()


def build_parser() -> argparse.ArgumentParser:
    defaults = ClientSettings()
    parser = argparse.ArgumentParser(description="Watch the room board from a terminal")
    parser.add_argument("--url", default=os.getenv("ROOM_BOARD_URL", "http://localhost:8000"))
    parser.add_argument("--password", default=os.getenv("ROOM_BOARD_PASSWORD"))
    parser.add_argument("--read-only", action="store_true", help="Never send changes")
    parser.add_argument("--poll-interval", type=float, default=defaults.poll_interval)
    parser.add_argument("--suppress-window", type=float, default=defaults.suppress_window)
    parser.add_argument("--timeout", type=float, default=defaults.request_timeout)
    return parser


async def run(args) -> int:
    settings = ClientSettings(
        poll_interval=args.poll_interval,
        suppress_window=args.suppress_window,
        request_timeout=args.timeout,
    )
    api = RoomsApi(args.url, timeout=settings.request_timeout)
    view = LoggingView()
    try:
        read_only = args.read_only
        if args.password:
            try:
                login = await api.login(args.password)
            except RoomSyncError as exc:
                logger.error(f"Login failed: {exc}")
                return 1
            read_only = read_only or login.role == ROLE_VIEWER
        client = BoardClient(api, view, settings, read_only=read_only)
        view.client = client
        await client.start()
        try:
            await view.stopped.wait()
        finally:
            await client.stop()
        return 0 if client.authorized else 1
    finally:
        await api.aclose()


def main():
    logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)-8s %(message)s", datefmt="%H:%M:%S")
    args = build_parser().parse_args()
    try:
        raise SystemExit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        logger.info("Viewer stopped")


if __name__ == "__main__":
    main()
