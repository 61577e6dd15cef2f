from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import hmac

from fastapi import HTTPException, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError

from .config import Settings
from .models import Session

JWT_ALGORITHM = "HS256"
AUTH_COOKIE = "auth_token"

ROLE_STAFF = "staff"
ROLE_VIEWER = "viewer"
ROLES = (ROLE_STAFF, ROLE_VIEWER)


def create_access_token(data: Dict[str, Any], settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=JWT_ALGORITHM)


def authenticate_password(password: str, settings: Settings) -> Optional[str]:
    """Role granted by a shared password, or None."""
    if hmac.compare_digest(password.encode("utf-8"), settings.staff_password.encode("utf-8")):
        return ROLE_STAFF
    if settings.viewer_password and hmac.compare_digest(
        password.encode("utf-8"), settings.viewer_password.encode("utf-8")
    ):
        return ROLE_VIEWER
    return None


def decode_session(token: str, settings: Settings) -> Session:
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[JWT_ALGORITHM])
    except JWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc
    role = payload.get("role")
    if role not in ROLES:
        raise HTTPException(status_code=401, detail="Invalid token")
    return Session(role=role, read_only=role == ROLE_VIEWER, claims=payload)


security = HTTPBearer(auto_error=False)


def _extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials is not None:
        return credentials.credentials
    return request.cookies.get(AUTH_COOKIE)


async def get_current_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Session:
    token = _extract_token(request, credentials)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return decode_session(token, request.app.state.settings)


async def get_optional_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Session]:
    token = _extract_token(request, credentials)
    if not token:
        return None
    try:
        return decode_session(token, request.app.state.settings)
    except HTTPException:
        return None


async def require_staff(session: Session = Depends(get_current_session)) -> Session:
    if session.read_only:
        raise HTTPException(status_code=403, detail="This session is read-only.")
    return session
