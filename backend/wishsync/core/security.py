"""Bearer session tokens handed out after a successful Telegram login."""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from jose import JWTError, jwt

from wishsync.core.config import settings
from wishsync.core.logger import get_logger

logger = get_logger("security")

TOKEN_ISSUER = "wishsync"
TOKEN_TYPE = "access"
_INSECURE_KEYS = {"CHANGE_ME", "secret", "jwt_secret", "changeme", ""}


def _ensure_signing_key() -> None:
    key = settings.jwt_secret_key or ""
    if key not in _INSECURE_KEYS and len(key) >= 32:
        return
    if (settings.environment or "local").lower() != "local":
        raise RuntimeError("JWT_SECRET_KEY must be set to a secure value (32+ chars) outside local")
    # Sessions will not survive a restart in this mode.
    settings.jwt_secret_key = secrets.token_urlsafe(64)
    logger.warning("JWT_SECRET_KEY missing or insecure; using an ephemeral key for local dev")


_ensure_signing_key()


def create_access_token(subject: str, expires_delta_minutes: int | None = None) -> str:
    lifetime = timedelta(minutes=expires_delta_minutes or settings.access_token_expire_minutes)
    now = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "sub": subject,
        "iss": TOKEN_ISSUER,
        "iat": now,
        "exp": now + lifetime,
        "type": TOKEN_TYPE,
        "jti": str(uuid4()),
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Verified claims, or ``None`` for a bad signature, an expired token or a foreign token type."""
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            issuer=TOKEN_ISSUER,
        )
    except JWTError:
        return None
    if claims.get("type") != TOKEN_TYPE:
        return None
    return claims


def issue_session_token(user_id: int) -> str:
    return create_access_token(str(user_id))


def user_id_from_token(token: str | None) -> int | None:
    if not token:
        return None
    claims = decode_access_token(token)
    if not claims:
        return None
    try:
        return int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        return None
