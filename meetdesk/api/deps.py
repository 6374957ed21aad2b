from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from meetdesk.core.db import get_session
from meetdesk.core.security import decode_access_token
from meetdesk.models.user import Caller, User

__all__ = ["get_current_caller", "get_optional_caller", "get_session"]

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _load_user(session: AsyncSession, token: str) -> User | None:
    decoded = decode_access_token(token)
    if not decoded:
        return None
    user_id, _role = decoded
    try:
        uid = int(user_id)
    except ValueError:
        return None
    result = await session.execute(select(User).where(User.id == uid))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        return None
    return user


async def get_current_caller(
    session: AsyncSession = Depends(get_session),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Caller:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise _unauthorized("Missing or invalid authorization header")
    user = await _load_user(session, credentials.credentials)
    if not user:
        raise _unauthorized("Invalid or expired token")
    return Caller.from_user(user)


async def get_optional_caller(
    session: AsyncSession = Depends(get_session),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Caller | None:
    """Caller when a valid bearer token is sent, else None (anonymous student request)."""
    if not credentials or credentials.scheme.lower() != "bearer":
        return None
    user = await _load_user(session, credentials.credentials)
    return Caller.from_user(user) if user else None
