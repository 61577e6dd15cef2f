from fastapi import APIRouter, FastAPI, HTTPException, Depends, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import uvicorn
from datetime import datetime, timezone
import hmac
import os
import logging
from typing import List, Optional, Annotated

from roomboard.auth import (
    AUTH_COOKIE,
    ROLE_VIEWER,
    authenticate_password,
    create_access_token,
    get_current_session,
    get_optional_session,
    require_staff,
)
from roomboard.config import Settings
from roomboard.database import create_backend
from roomboard.models import LoginRequest, LoginResponse, ResetResponse, Room, RoomPatch, Session
from roomboard.notifier import ChangeNotifier, event_stream
from roomboard.renderer import initial_mode, render_page
from roomboard.services import RoomService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CurrentSession = Annotated[Session, Depends(get_current_session)]
OptionalSession = Annotated[Optional[Session], Depends(get_optional_session)]
StaffSession = Annotated[Session, Depends(require_staff)]


def get_room_service(request: Request) -> RoomService:
    return request.app.state.room_service


RoomStore = Annotated[RoomService, Depends(get_room_service)]

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    notifier: Optional[ChangeNotifier] = getattr(request.app.state, "notifier", None)
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": request.app.state.settings.service_name,
        "subscribers": notifier.subscriber_count if notifier else 0,
    }


@router.get("/api/health")
async def health_check_api(request: Request):
    return await health_check(request)


def _set_session_cookie(response: Response, token: str, settings: Settings):
    response.set_cookie(
        AUTH_COOKIE,
        token,
        max_age=settings.access_token_expire_minutes * 60,
        httponly=True,
        samesite="lax",
    )


@router.post("/api/login", response_model=LoginResponse)
async def login(payload: LoginRequest, request: Request, response: Response):
    settings: Settings = request.app.state.settings
    role = authenticate_password(payload.password, settings)
    if role is None:
        logger.warning("Rejected login attempt")
        raise HTTPException(status_code=401, detail="Incorrect password")
    token = create_access_token({"sub": role, "role": role}, settings)
    _set_session_cookie(response, token, settings)
    logger.info(f"Login succeeded ({role})")
    return LoginResponse(role=role, access_token=token)


@router.post("/api/logout")
async def logout(response: Response):
    response.delete_cookie(AUTH_COOKIE)
    return {"success": True}


@router.get("/api/session")
async def get_session(session: CurrentSession):
    return {"role": session.role, "read_only": session.read_only}


@router.get("/api/events")
async def stream_events(request: Request, session: CurrentSession):
    """Push channel: connected, roomUpdate and reset events."""
    settings: Settings = request.app.state.settings
    return StreamingResponse(
        event_stream(request.app.state.notifier, request, settings.sse_keepalive_seconds),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/api/rooms", response_model=List[Room])
async def list_rooms(session: CurrentSession, room_service: RoomStore):
    return await room_service.list_rooms()


@router.get("/api/rooms/{room_id}", response_model=Room)
async def get_room(room_id: str, session: CurrentSession, room_service: RoomStore):
    room = await room_service.get_room(room_id)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return room


@router.patch("/api/rooms/{room_id}", response_model=Room)
async def update_room(room_id: str, patch: RoomPatch, session: StaffSession, room_service: RoomStore):
    """Update any subset of is_active, is_checkout and notes"""
    try:
        room = await room_service.update_room(room_id, patch)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return room


@router.post("/api/reset", response_model=ResetResponse)
async def reset_rooms(session: StaffSession, room_service: RoomStore):
    """Clear active, checkout and notes on every room"""
    rooms = await room_service.reset_rooms()
    return ResetResponse(message="All rooms have been reset", rooms=rooms)


@router.get("/", response_class=HTMLResponse)
async def board_page(session: OptionalSession, room_service: RoomStore):
    if session is None:
        return HTMLResponse("<p>Login required.</p>", status_code=401)
    rooms = await room_service.list_rooms()
    return HTMLResponse(render_page(rooms, initial_mode(rooms), read_only=session.read_only))


@router.get("/app/v1/hotel-ops/share/{secret}", response_class=HTMLResponse)
async def shared_board_page(secret: str, request: Request, room_service: RoomStore):
    """Read-only board behind a shared link; also grants a viewer session."""
    settings: Settings = request.app.state.settings
    if not settings.share_secret or not hmac.compare_digest(secret, settings.share_secret):
        raise HTTPException(status_code=404, detail="Share link not found")
    rooms = await room_service.list_rooms()
    response = HTMLResponse(render_page(rooms, initial_mode(rooms), read_only=True))
    token = create_access_token({"sub": "share", "role": ROLE_VIEWER}, settings)
    _set_session_cookie(response, token, settings)
    return response


async def not_found_handler(request: Request, exc: StarletteHTTPException):
    logger.info(f"404 Error: Requested path: {request.url.path}")
    return JSONResponse(
        status_code=404,
        content={
            "error": "Resource not found",
            "detail": exc.detail,
            "path": str(request.url.path),
        },
    )


async def internal_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Room Board Backend...")
        notifier = ChangeNotifier()
        room_service = RoomService(create_backend(app.state.settings), notifier)
        await room_service.start()
        app.state.notifier = notifier
        app.state.room_service = room_service

        yield
        logger.info("Shutting down Room Board Backend...")
        await room_service.close()

    app = FastAPI(
        title="Room Board API",
        description="Shared housekeeping checkout board with live updates",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.settings = settings or Settings.from_env()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[app.state.settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    app.add_exception_handler(404, not_found_handler)
    app.add_exception_handler(500, internal_error_handler)
    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=True
    )
