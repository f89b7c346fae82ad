"""
Tests for on-the-fly receiver provisioning.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from courier_backend.app.core.exceptions import InsufficientPermissionsError
from courier_backend.app.core.security import verify_password
from courier_backend.app.models.audit_log import AuditLog
from courier_backend.app.models.enums import UserRole
from courier_backend.app.models.user import User
from courier_backend.app.schemas.notification import NotificationEventType
from courier_backend.app.services.audit import AuditAction
from courier_backend.app.services.identity_provisioner import ensure_receiver, find_user_by_email


@pytest.mark.asyncio
async def test_unknown_email_gets_account_with_temp_password(db_session, admin, identity):
    before = datetime.now(timezone.utc)
    provisioned = await ensure_receiver(db_session, "  New.Receiver@Example.com ", identity(admin))
    await db_session.commit()

    user = provisioned.user
    assert provisioned.created is True
    assert user.email == "new.receiver@example.com"
    assert user.role == UserRole.USER
    assert user.first_name == "new.receiver"

    # Temporary password stored only as a hash and valid for 24 hours
    event = provisioned.credentials_event
    assert event.event_type == NotificationEventType.NEW_USER_CREDENTIALS
    assert event.recipient_email == "new.receiver@example.com"
    plaintext = event.payload["temp_password"]
    assert len(plaintext) == 12
    assert user.hashed_password != plaintext
    assert user.temp_password == user.hashed_password
    assert verify_password(plaintext, user.hashed_password)

    expected_expiry = before + timedelta(hours=24)
    assert abs((user.temp_password_expiry - expected_expiry).total_seconds()) < 60

    audit = (await db_session.execute(
        select(AuditLog).where(AuditLog.action == AuditAction.RECEIVER_PROVISIONED)
    )).scalars().all()
    assert len(audit) == 1
    assert "temp_password" not in audit[0].meta_data


@pytest.mark.asyncio
async def test_existing_receiver_is_reused(db_session, receiver):
    provisioned = await ensure_receiver(db_session, "RECEIVER@courier-mail.com")

    assert provisioned.created is False
    assert provisioned.user.id == receiver.id
    assert provisioned.credentials_event is None

    users = (await db_session.execute(select(User))).scalars().all()
    assert len(users) == 1


@pytest.mark.asyncio
async def test_second_provisioning_of_same_email_is_a_lookup(db_session):
    first = await ensure_receiver(db_session, "once@example.com")
    await db_session.commit()
    second = await ensure_receiver(db_session, "once@example.com")

    assert first.created is True
    assert second.created is False
    assert second.user.id == first.user.id
    assert second.credentials_event is None


@pytest.mark.asyncio
async def test_admin_receiver_rejected(db_session, admin):
    with pytest.raises(InsufficientPermissionsError):
        await ensure_receiver(db_session, admin.email)


@pytest.mark.asyncio
async def test_find_user_by_email_is_case_insensitive(db_session, sender):
    found = await find_user_by_email(db_session, "Sender@Courier-Mail.COM")
    assert found.id == sender.id
    assert await find_user_by_email(db_session, "missing@courier-mail.com") is None
