"""Credential verification and stateless session tokens."""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Cookie, Depends, Header
from jose import JWTError, jwt
from pydantic import BaseModel

from config import JWT_ALG, JWT_SECRET, SESSION_COOKIE_NAME, SESSION_MAX_AGE_MINUTES
from errors import Forbidden, InactiveAccount, InvalidPassword, NoSuchUser, Unauthorized
from logger import get_logger
from users import UserStore

log = get_logger("auth")


class SessionUser(BaseModel):
    id: str
    role: str
    email: str
    name: str
    expires: datetime


def create_token(user: Dict[str, Any], max_age_minutes: int = SESSION_MAX_AGE_MINUTES) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user["_id"]),
        "role": user.get("role", "citizen"),
        "email": user["email"],
        "name": user.get("name", ""),
        "exp": now + timedelta(minutes=max_age_minutes),
        "iat": now,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def decode_token(token: str) -> SessionUser:
    """Verify signature and expiry; raises Unauthorized on any failure."""
    try:
        data = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except JWTError:
        raise Unauthorized("Invalid or expired token")
    if not data.get("sub") or not data.get("role") or "exp" not in data:
        raise Unauthorized("Invalid or expired token")
    return SessionUser(
        id=data["sub"],
        role=data["role"],
        email=data.get("email", ""),
        name=data.get("name", ""),
        expires=datetime.fromtimestamp(data["exp"], tz=timezone.utc),
    )


def authenticate(store: UserStore, email: str, password: str) -> Dict[str, Any]:
    """Check an email/password pair. Returns the user document without its hash."""
    user = store.find_by_email(email, with_password=True)
    if not user:
        raise NoSuchUser()
    if not store.verify_password(user, password):
        raise InvalidPassword()
    if not user.get("is_active", True):
        raise InactiveAccount()
    user.pop("password_hash", None)
    return user


def _extract_token(authorization: Optional[str], cookie_token: Optional[str]) -> Optional[str]:
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise Unauthorized("Invalid auth scheme")
        return token.strip()
    return cookie_token


def _session(authorization: Optional[str], cookie_token: Optional[str]) -> Optional[SessionUser]:
    token = _extract_token(authorization, cookie_token)
    if not token:
        return None
    return decode_token(token)


def optional_session(
    authorization: Optional[str] = Header(None),
    session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
) -> Optional[SessionUser]:
    """For public routes: an unusable token is treated as anonymous."""
    try:
        return _session(authorization, session_token)
    except Unauthorized as e:
        log.debug("Ignoring session on public route: %s", e.message)
        return None


def verify_token(
    authorization: Optional[str] = Header(None),
    session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
) -> SessionUser:
    session = _session(authorization, session_token)
    if session is None:
        raise Unauthorized()
    return session


def require_roles(*roles: str):
    def dependency(session: SessionUser = Depends(verify_token)) -> SessionUser:
        if session.role not in roles:
            raise Forbidden(f"Requires one of roles: {', '.join(roles)}")
        return session
    return dependency
