import os
from dataclasses import dataclass
from typing import Optional

# Default to a 30-day session (60 min * 24 hours * 30 days)
DEFAULT_TOKEN_EXPIRE_MINUTES = 60 * 24 * 30


@dataclass
class Settings:
    """Server settings, normally read from the environment."""

    rooms_data_file: Optional[str] = "data/rooms.json"
    mongodb_url: Optional[str] = None
    mongodb_database: str = "room_board"
    staff_password: str = "1126"
    viewer_password: Optional[str] = None
    jwt_secret_key: str = "change-me"
    access_token_expire_minutes: int = DEFAULT_TOKEN_EXPIRE_MINUTES
    share_secret: Optional[str] = None
    sse_keepalive_seconds: float = 15.0
    frontend_url: str = "http://localhost:3000"
    service_name: str = "room-board-backend"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            rooms_data_file=os.getenv("ROOMS_DATA_FILE", "data/rooms.json"),
            mongodb_url=os.getenv("MONGODB_URL") or None,
            mongodb_database=os.getenv("MONGODB_DATABASE", "room_board"),
            staff_password=os.getenv("STAFF_PASSWORD", "1126"),
            viewer_password=os.getenv("VIEWER_PASSWORD") or None,
            jwt_secret_key=os.getenv("JWT_SECRET_KEY", "change-me"),
            access_token_expire_minutes=int(
                os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(DEFAULT_TOKEN_EXPIRE_MINUTES))
            ),
            share_secret=os.getenv("SHARE_SECRET") or None,
            sse_keepalive_seconds=float(os.getenv("SSE_KEEPALIVE_SECONDS", "15")),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
        )


@dataclass
class ClientSettings:
    """Timing knobs for a BoardClient.

    The poll interval and suppression window are tuned values, not
    invariants; the suppression window should stay shorter than the poll
    interval so at most one background pull is skipped per local edit.
    """

    poll_interval: float = 3.0
    suppress_window: float = 2.0
    request_timeout: float = 10.0
    reconnect_delay: float = 3.0
