"""Bearer tokens: the account service signs them, this service only verifies them."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import UUID

from jose import JWTError, jwt

from .config import get_settings
from .errors import Unauthorized

ALGORITHM = "HS256"


def create_access_token(user_id: UUID, expires_delta: timedelta | None = None) -> str:
    """Sign a token for ``user_id`` the way the account service does.

    Used by tests and the smoke script; production tokens come from elsewhere.
    """

    settings = get_settings()
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {"sub": str(user_id), "exp": datetime.now(timezone.utc) + lifetime}
    return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)


def user_id_from_token(token: str | None) -> UUID:
    """Resolve the verified user id carried in a bearer token's ``sub`` claim."""

    if not token:
        raise Unauthorized("Not authenticated")
    try:
        payload = jwt.decode(token, get_settings().secret_key, algorithms=[ALGORITHM])
        return UUID(str(payload["sub"]))
    except (JWTError, KeyError, ValueError) as exc:
        raise Unauthorized("Invalid token") from exc
