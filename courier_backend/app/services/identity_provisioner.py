"""
Identity Provisioner.

Makes sure a parcel's receiver has an account. Unknown emails get a USER
account with a hashed temporary password valid for a limited time; the
plaintext password leaves this module only inside the credentials
notification event, which the caller dispatches after committing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from courier_backend.app.core.config import settings
from courier_backend.app.core.exceptions import InsufficientPermissionsError
from courier_backend.app.core.security import generate_temp_password, get_password_hash
from courier_backend.app.models.enums import UserRole
from courier_backend.app.models.user import User
from courier_backend.app.schemas.notification import NotificationEvent
from courier_backend.app.services.audit import log_event, AuditAction
from courier_backend.app.services.notification_dispatcher import credentials_event

logger = logging.getLogger(__name__)

ADMIN_RECEIVER_MESSAGE = "Cannot send parcels to admin accounts"


@dataclass
class ProvisionedReceiver:
    user: User
    created: bool
    credentials_event: Optional[NotificationEvent] = None


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def find_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(
        select(User).where(func.lower(User.email) == normalize_email(email))
    )
    return result.scalar_one_or_none()


def ensure_not_admin(user: Optional[User]):
    """Parcels and requests may never target an admin account."""
    if user is not None and user.role == UserRole.ADMIN:
        raise InsufficientPermissionsError(ADMIN_RECEIVER_MESSAGE)


def placeholder_first_name(email: str) -> str:
    return email.split("@")[0] or "User"


async def ensure_receiver(db: AsyncSession, email: str, actor: Optional[dict] = None) -> ProvisionedReceiver:
    """
    Return the receiver account for ``email``, creating it when absent.

    The new row is flushed but not committed; a concurrent provisioning of the
    same email surfaces as IntegrityError at flush time.

    Raises:
        InsufficientPermissionsError: if the email belongs to an admin
    """
    existing = await find_user_by_email(db, email)
    if existing is not None:
        ensure_not_admin(existing)
        return ProvisionedReceiver(user=existing, created=False)

    email = normalize_email(email)
    temp_password = generate_temp_password(settings.temp_password_length)
    hashed = get_password_hash(temp_password)

    user = User(
        email=email,
        first_name=placeholder_first_name(email),
        last_name="",
        phone="",
        hashed_password=hashed,
        role=UserRole.USER,
        is_active=True,
        temp_password=hashed,
        temp_password_expiry=datetime.now(timezone.utc) + timedelta(hours=settings.temp_password_ttl_hours),
    )
    db.add(user)
    await db.flush()

    log_event(
        db,
        AuditAction.RECEIVER_PROVISIONED,
        actor=actor,
        entity_type="user",
        entity_id=user.id,
        metadata={"email": email, "expires_at": user.temp_password_expiry.isoformat()},
    )
    logger.info("Created new user account for receiver: %s", email)

    return ProvisionedReceiver(
        user=user,
        created=True,
        credentials_event=credentials_event(user, temp_password),
    )
