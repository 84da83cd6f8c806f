"""
OrderFlow — JWT helpers (shared secret with the identity provider)
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import jwt, JWTError

from orderflow.core.config import get_settings

settings = get_settings()


def create_access_token(data: dict[str, Any], expires_minutes: int | None = None) -> str:
    payload = data.copy()
    expire = datetime.now(tz=timezone.utc) + timedelta(
        minutes=expires_minutes or settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    )
    payload.update({"exp": expire, "type": "access", "jti": str(uuid.uuid4())})
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict[str, Any]:
    """Decode and validate a JWT. Raises JWTError on failure."""
    claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    if not claims.get("sub"):
        raise JWTError("Token has no subject.")
    return claims


def token_belongs_to(token: str, user_id: str) -> bool:
    """True when the token is valid and was issued to ``user_id``."""
    try:
        claims = decode_token(token)
    except JWTError:
        return False
    return str(claims["sub"]) == str(user_id)
