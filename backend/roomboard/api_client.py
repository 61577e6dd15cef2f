import json
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple, TypeVar
from urllib.parse import quote

import httpx

from .models import LoginResponse, Room

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RoomSyncError(Exception):
    """Base class for failures talking to the room server."""


class NotFound(RoomSyncError):
    pass


class Unauthorized(RoomSyncError):
    """Session rejected; the caller must log in again rather than retry."""


class Forbidden(RoomSyncError):
    """The session is read-only."""


class ValidationFailed(RoomSyncError):
    pass


class TransientError(RoomSyncError):
    """Timeouts, dropped connections and server-side failures."""


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body)
    return str(body)


def raise_for_status(response: httpx.Response):
    status = response.status_code
    if status < 400:
        return
    detail = _error_detail(response)
    if status == 401:
        raise Unauthorized(detail)
    if status == 403:
        raise Forbidden(detail)
    if status == 404:
        raise NotFound(detail)
    if status in (400, 422):
        raise ValidationFailed(detail)
    if status >= 500:
        raise TransientError(f"Server error {status}: {detail}")
    raise RoomSyncError(f"Unexpected status {status}: {detail}")


async def parse_sse(lines: AsyncIterator[str]) -> AsyncIterator[Tuple[str, Any]]:
    """Turn a server-sent-event line stream into (event, data) pairs."""
    event = "message"
    data_lines: List[str] = []
    async for line in lines:
        if line == "":
            if data_lines:
                try:
                    yield event, json.loads("\n".join(data_lines))
                except ValueError:
                    logger.warning(f"Ignoring malformed {event} event")
            event = "message"
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data_lines.append(value)


class RoomsApi:
    """Async client for the room board HTTP API."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.token = token
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    def _headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientError(f"{method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise TransientError(f"{method} {path} failed: {exc}") from exc
        raise_for_status(response)
        return response

    async def _call(self, method: str, path: str, parse: Callable[[Any], T], **kwargs) -> T:
        """Send a request and turn its JSON body into a result with ``parse``."""
        response = await self._request(method, path, **kwargs)
        try:
            return parse(response.json())
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            # Proxy error pages and bodies of the wrong shape
            logger.warning(f"Unreadable response to {method} {path}: {exc}")
            raise TransientError(f"{method} {path} returned an unreadable body") from exc

    async def login(self, password: str) -> LoginResponse:
        login = await self._call(
            "POST", "/api/login", lambda body: LoginResponse(**body), json={"password": password}
        )
        self.token = login.access_token
        return login

    async def list_rooms(self) -> List[Room]:
        return await self._call("GET", "/api/rooms", lambda body: [Room(**doc) for doc in body])

    async def get_room(self, room_id: str) -> Room:
        return await self._call("GET", f"/api/rooms/{quote(room_id, safe='')}", lambda body: Room(**body))

    async def update_room(self, room_id: str, fields: Dict[str, Any]) -> Room:
        return await self._call(
            "PATCH", f"/api/rooms/{quote(room_id, safe='')}", lambda body: Room(**body), json=fields
        )

    async def reset(self) -> List[Room]:
        return await self._call("POST", "/api/reset", lambda body: [Room(**doc) for doc in body.get("rooms", [])])

    async def stream_events(self) -> AsyncIterator[Tuple[str, Any]]:
        """Yield (event, data) pairs from the push channel until it closes."""
        try:
            async with self._client.stream(
                "GET",
                "/api/events",
                headers=self._headers(),
                timeout=httpx.Timeout(self.timeout, read=None),
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise_for_status(response)
                async for event, data in parse_sse(response.aiter_lines()):
                    yield event, data
        except httpx.HTTPError as exc:
            raise TransientError(f"Event stream failed: {exc}") from exc
