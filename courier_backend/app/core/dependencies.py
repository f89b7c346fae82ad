"""
FastAPI dependencies: caller identity and the collaborators services need.

The bearer token only identifies the caller; role and email are re-read from
the users table so that blocked, deleted or re-roled accounts take effect on
the next request.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from courier_backend.app.core.jwt import decode_access_token
from courier_backend.app.core.redis_client import get_redis
from courier_backend.app.db.session import get_db
from courier_backend.app.models.user import User
from courier_backend.app.services.geocoding import GeocodingService, geocoding_service
from courier_backend.app.services.notification_dispatcher import NotificationDispatcher

security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    Resolve the caller dict (``user_id``, ``email``, ``role``) from the token.

    Raises:
        HTTPException: 401 for a bad token or unknown user, 403 for an
            inactive account
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Could not validate credentials")

    user_id = payload.get("user_id")
    if not user_id:
        raise _unauthorized("Invalid token payload")

    user = (await db.execute(
        select(User).where(User.id == user_id, User.is_deleted == False)
    )).scalar_one_or_none()
    if user is None:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")

    return {
        "user_id": user.id,
        "sub": user.email,
        "email": user.email,
        "role": user.role.value,
    }


def get_geocoder() -> GeocodingService:
    return geocoding_service


async def get_notifier(redis_client=Depends(get_redis)) -> NotificationDispatcher:
    """Dispatcher bound to the request's Redis connection."""
    return NotificationDispatcher(redis_client)
