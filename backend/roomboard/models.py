from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, Dict, Any
from pydantic import BaseModel, Field

MAX_NOTE_LENGTH = 500
MUTABLE_FIELDS = ("is_active", "is_checkout", "notes")

RoomCategory = Literal["general", "special"]


def utc_now() -> datetime:
    """Current UTC time truncated to whole milliseconds."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


class Room(BaseModel):
    room_id: str
    display_order: int
    category: RoomCategory = "general"
    is_active: bool = False
    is_checkout: bool = False
    notes: str = ""
    updated_at: datetime = Field(default_factory=utc_now)


class RoomPatch(BaseModel):
    is_active: Optional[bool] = None
    is_checkout: Optional[bool] = None
    notes: Optional[str] = Field(default=None, max_length=MAX_NOTE_LENGTH)

    model_config = {"extra": "ignore"}


class ResetResponse(BaseModel):
    success: bool = True
    message: str
    rooms: List[Room] = Field(default_factory=list)


class LoginRequest(BaseModel):
    password: str


class LoginResponse(BaseModel):
    success: bool = True
    role: str
    access_token: str


class Session(BaseModel):
    role: str
    read_only: bool = False
    claims: Dict[str, Any] = Field(default_factory=dict)


class Mode(str, Enum):
    SELECTION = "selection"
    MANAGEMENT = "management"
