from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from meetdesk.core.config import settings


def create_access_token(subject: str | int, role: str, expires_minutes: int = 60) -> str:
    """Issue a short-lived access token. Used by tooling and tests; login lives elsewhere."""
    expire = datetime.now(UTC) + timedelta(minutes=expires_minutes)
    to_encode = {"sub": str(subject), "role": role, "exp": expire, "type": "access"}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> tuple[str, str | None] | None:
    """Returns (user_id_str, role) or None when the token is invalid or expired."""
    try:
        payload = jwt.decode(
            token, settings.secret_key, algorithms=[settings.algorithm]
        )
    except JWTError:
        return None
    if payload.get("type") != "access":
        return None
    sub = payload.get("sub")
    if not sub:
        return None
    return str(sub), payload.get("role")
