#!/usr/bin/env python3
"""
Database initialization script for the Room Board
Seeds the room roster into the configured backend and prints it
"""

import argparse
import asyncio
import os
import sys

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from roomboard.config import Settings
from roomboard.database import create_backend
from roomboard.services import RoomService


async def initialize_database(reset: bool = False):
    """Seed the roster, optionally clearing today's state"""
    settings = Settings.from_env()
    room_service = RoomService(create_backend(settings))
    try:
        await room_service.start()
        backend = "MongoDB" if settings.mongodb_url else settings.rooms_data_file
        print(f"✅ Connected to {backend}")

        if reset:
            await room_service.reset_rooms()
            print("🧹 Cleared active, checkout and notes on every room")

        rooms = await room_service.list_rooms()
        print(f"\n📋 {len(rooms)} rooms:")
        for room in rooms:
            state = "out" if room.is_checkout else ("active" if room.is_active else "-")
            print(f"  • {room.room_id:<8} {room.category:<8} {state}")

    except Exception as e:
        print(f"❌ Database initialization failed: {e}")
        raise
    finally:
        await room_service.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the room roster")
    parser.add_argument("--reset", action="store_true", help="Clear all room state after seeding")
    args = parser.parse_args()
    print("🚀 Initializing Room Board Database...")
    asyncio.run(initialize_database(reset=args.reset))
