"""
Dead letter table for notification jobs that ran out of delivery attempts.
"""

import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum
from sqlalchemy.sql import func

from courier_backend.app.db.session import Base


class DLQStatus(str, enum.Enum):
    FAILED = "FAILED"
    REQUEUED = "REQUEUED"
    ARCHIVED = "ARCHIVED"


class DeadLetterQueue(Base):
    __tablename__ = "dead_letter_queue"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    task_name = Column(String(100), nullable=False, index=True)
    job_id = Column(String(64), nullable=False, index=True)
    recipient_email = Column(String(255), nullable=False, index=True)

    error_message = Column(Text, nullable=False)
    # Event payload with secrets already redacted
    payload = Column(JSON, nullable=True)

    status = Column(Enum(DLQStatus), default=DLQStatus.FAILED, nullable=False, index=True)
    attempts = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<DeadLetterQueue(job={self.job_id}, task={self.task_name}, status={self.status})>"
