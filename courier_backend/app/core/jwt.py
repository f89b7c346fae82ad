"""
JWT token utilities.

Authentication itself lives outside this service; tokens issued by the auth
layer carry the caller identity (user id, email, role) that the parcel
workflows trust.
"""

from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from courier_backend.app.core.config import settings


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed access token.

    Example payload:
        {
            "sub": "jane@example.com",
            "user_id": 12,
            "role": "USER",
            "exp": 1234567890
        }
    """
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_token_for_user(user) -> str:
    """Issue a token for a persisted ``User`` row."""
    return create_access_token(
        data={"sub": user.email, "user_id": user.id, "role": user.role.value}
    )


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate an access token.

    Returns:
        Decoded payload if signature and expiry are valid, None otherwise
    """
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
