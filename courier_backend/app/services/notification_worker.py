"""
Notification delivery worker.

Drains the Redis notification queue and hands each event to a delivery
channel. A job is claimed by moving it onto a processing list and only
removed from there once it was delivered, re-queued or dead-lettered, so a
crashed worker leaves its job behind for ``recover``. Failed jobs go back on
the queue until they reach ``notification_max_attempts``; after that they are
parked in the dead letter queue table with sensitive payload fields redacted.
Jobs that do not parse are dead-lettered straight away.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from pydantic import ValidationError

from courier_backend.app.core.config import settings
from courier_backend.app.core.observability import configure_logging
from courier_backend.app.core.redis_client import redis_client
from courier_backend.app.db.session import AsyncSessionLocal
from courier_backend.app.models.dlq import DeadLetterQueue, DLQStatus
from courier_backend.app.schemas.notification import NotificationEvent, NotificationJob

logger = logging.getLogger(__name__)


class NotificationChannel(Protocol):
    async def deliver(self, event: NotificationEvent) -> None:
        ...


class LoggingChannel:
    """Channel that only records deliveries; used when no mailer is wired in."""

    async def deliver(self, event: NotificationEvent) -> None:
        logger.info("Delivered %s to %s", event.event_type.value, event.recipient_email)


class NotificationWorker:

    def __init__(
        self,
        redis_client,
        channel: NotificationChannel,
        session_factory,
        queue_name: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ):
        self.redis = redis_client
        self.channel = channel
        self.session_factory = session_factory
        self.queue_name = queue_name or settings.notification_queue_name
        self.processing_name = f"{self.queue_name}:processing"
        self.max_attempts = max_attempts or settings.notification_max_attempts

    async def process_next(self) -> bool:
        """
        Deliver one queued job.

        Returns:
            False if the queue was empty, True otherwise
        """
        raw = await self.redis.lmove(self.queue_name, self.processing_name, "LEFT", "RIGHT")
        if raw is None:
            return False

        try:
            job = NotificationJob.model_validate_json(raw)
        except ValidationError as exc:
            await self._dead_letter_malformed(raw, exc)
            await self._ack(raw)
            return True

        try:
            await self.channel.deliver(job.event)
        except Exception as exc:
            job.attempts += 1
            if job.attempts < self.max_attempts:
                logger.warning(
                    "Delivery of %s to %s failed (attempt %d/%d): %s",
                    job.event.event_type.value, job.event.recipient_email,
                    job.attempts, self.max_attempts, exc,
                )
                await self.redis.rpush(self.queue_name, job.model_dump_json())
            else:
                await self._dead_letter(job, exc)
        await self._ack(raw)
        return True

    async def _ack(self, raw):
        await self.redis.lrem(self.processing_name, 1, raw)

    async def recover(self) -> int:
        """
        Put jobs left on the processing list by a crashed worker back on the
        queue. Only safe while no other worker shares the processing list.

        Returns:
            Number of jobs moved back
        """
        moved = 0
        while await self.redis.lmove(self.processing_name, self.queue_name, "RIGHT", "LEFT") is not None:
            moved += 1
        if moved:
            logger.warning("Recovered %d unacknowledged notification jobs", moved)
        return moved

    async def _dead_letter(self, job: NotificationJob, exc: Exception):
        logger.error(
            "Giving up on %s notification to %s after %d attempts: %s",
            job.event.event_type.value, job.event.recipient_email, job.attempts, exc,
        )
        async with self.session_factory() as session:
            session.add(
                DeadLetterQueue(
                    task_name=f"notification:{job.event.event_type.value}",
                    error_message=str(exc) or type(exc).__name__,
                    job_id=job.id,
                    recipient_email=job.event.recipient_email,
                    payload=job.event.redacted_payload(),
                    status=DLQStatus.FAILED,
                    attempts=job.attempts,
                    failed_at=datetime.now(timezone.utc),
                )
            )
            await session.commit()

    async def _dead_letter_malformed(self, raw, exc: ValidationError):
        # The body may hold secrets, so only field locations and error types are kept
        summary = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'job'}: {error['type']}"
            for error in exc.errors()
        )
        job_id, recipient = _salvage_identifiers(raw)
        logger.error("Dropping malformed notification job %s: %s", job_id, summary)
        async with self.session_factory() as session:
            session.add(
                DeadLetterQueue(
                    task_name="notification:malformed",
                    error_message=summary or "malformed job",
                    job_id=job_id,
                    recipient_email=recipient,
                    payload=None,
                    status=DLQStatus.FAILED,
                    attempts=0,
                    failed_at=datetime.now(timezone.utc),
                )
            )
            await session.commit()

    async def run(self, poll_interval: float = 1.0):
        """Process jobs until cancelled, sleeping while the queue is empty."""
        await self.recover()
        while True:
            if not await self.process_next():
                await asyncio.sleep(poll_interval)


def _salvage_identifiers(raw):
    """Best-effort job id and recipient from a job that failed validation."""
    try:
        data = json.loads(raw)
    except ValueError:
        return "unknown", ""
    if not isinstance(data, dict):
        return "unknown", ""
    event = data.get("event")
    recipient = event.get("recipient_email") if isinstance(event, dict) else None
    return str(data.get("id") or "unknown")[:64], str(recipient or "")[:255]


async def main():
    configure_logging(settings.debug)
    worker = NotificationWorker(redis_client, LoggingChannel(), AsyncSessionLocal)
    logger.info("Notification worker listening on %s", worker.queue_name)
    await worker.run()


if __name__ == "__main__":
    asyncio.run(main())
