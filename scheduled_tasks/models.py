from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON, Index
from sqlalchemy.orm import relationship
from config.database import Base
from shared_utils.timeutils import utcnow
import enum
import json
import uuid


class TaskType(str, enum.Enum):
    APPOINTMENT_CONFIRMATION = "appointment_confirmation"
    APPOINTMENT_REMINDER = "appointment_reminder"
    REPORT_SENDING = "report_sending"
    MEDICATION_REMINDER = "medication_reminder"


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AttemptOutcome(str, enum.Enum):
    COMPLETED = "completed"
    RETRY = "retry"
    FAILED = "failed"


class ScheduledTask(Base):
    __tablename__ = "scheduled_tasks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # Plain string so rows with a type no handler knows can still be stored and failed
    type = Column(String(50), nullable=False)
    status = Column(String(20), default=TaskStatus.PENDING.value, nullable=False)  # pending, processing, completed, failed
    data = Column(JSON, nullable=False)
    scheduled_for = Column(DateTime, nullable=False)  # UTC
    processed_at = Column(DateTime, nullable=True)
    result = Column(Text, nullable=True)  # JSON-encoded handler output
    error = Column(Text, nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=3, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    attempts = relationship(
        "TaskAttempt",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TaskAttempt.attempt_number",
    )

    __table_args__ = (
        Index("ix_scheduled_tasks_due", "status", "scheduled_for"),
    )

    def to_record(self) -> dict:
        """Persisted task shape shared with fixtures and other services"""
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status,
            "data": json.dumps(self.data),
            "scheduledFor": self.scheduled_for.isoformat() if self.scheduled_for else None,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
            "result": self.result,
            "error": self.error,
            "processedAt": self.processed_at.isoformat() if self.processed_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ScheduledTask(id={self.id}, type={self.type}, status={self.status})>"


class TaskAttempt(Base):
    """Append-only record of one handler invocation"""
    __tablename__ = "task_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(String(36), ForeignKey("scheduled_tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False)
    started_at = Column(DateTime, nullable=False)
    finished_at = Column(DateTime, nullable=False)
    outcome = Column(String(20), nullable=False)  # completed, retry, failed
    error = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    instance_id = Column(String(100), nullable=True)

    task = relationship("ScheduledTask", back_populates="attempts")
