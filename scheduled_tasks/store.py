"""
Task record store.

All reads and writes of scheduled_tasks and task_attempts go through here.
Methods flush but do not commit, except claim_task, so the processor can
commit a handler's side effects together with the status change.
"""
from sqlalchemy import func
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Any, Dict, List, Optional
from .models import ScheduledTask, TaskAttempt, TaskStatus, AttemptOutcome
from shared_utils.errors import ValidationError
from shared_utils.timeutils import utcnow, to_utc_naive
import logging

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "status",
    "result",
    "error",
    "retry_count",
    "processed_at",
    "scheduled_for",
}


class TaskStore:
    """SQLAlchemy-backed storage for scheduled tasks"""

    def __init__(self, db: Session):
        self.db = db

    # ---- creation ----

    def insert(
        self,
        type: str,
        data: Optional[Dict[str, Any]],
        scheduled_for,
        max_retries: int = 3,
    ) -> ScheduledTask:
        """
        Persist a new pending task.

        Raises:
            ValidationError: type, data or scheduled_for is missing, or
                max_retries is negative. Nothing is written in that case.
        """
        if not type:
            raise ValidationError("Task type is required")
        if not data or not isinstance(data, dict):
            raise ValidationError("Task data is missing or invalid")
        if scheduled_for is None:
            raise ValidationError("scheduled_for is required")
        if max_retries is None or max_retries < 0:
            raise ValidationError("max_retries must be a non-negative integer")

        try:
            scheduled_for = to_utc_naive(scheduled_for)
        except ValueError as e:
            raise ValidationError(f"Invalid scheduled_for: {e}")

        now = utcnow()
        task = ScheduledTask(
            type=str(getattr(type, "value", type)),
            status=TaskStatus.PENDING.value,
            data=dict(data),
            scheduled_for=scheduled_for,
            retry_count=0,
            max_retries=max_retries,
            created_at=now,
            updated_at=now,
        )
        self.db.add(task)
        self.db.flush()
        return task

    # ---- polling ----

    def find_due_batch(self, now: datetime, limit: int) -> List[ScheduledTask]:
        """Pending tasks whose time has come and that still have retries left"""
        return (
            self.db.query(ScheduledTask)
            .filter(
                ScheduledTask.status == TaskStatus.PENDING.value,
                ScheduledTask.scheduled_for <= now,
                ScheduledTask.retry_count < ScheduledTask.max_retries,
            )
            .order_by(ScheduledTask.scheduled_for, ScheduledTask.created_at, ScheduledTask.id)
            .limit(limit)
            .all()
        )

    def claim_task(self, task_id: str, now: Optional[datetime] = None) -> bool:
        """
        Move a task from pending to processing with a single conditional
        UPDATE and commit it. Returns False when another poller got there first.
        """
        now = now or utcnow()
        rowcount = (
            self.db.query(ScheduledTask)
            .filter(
                ScheduledTask.id == task_id,
                ScheduledTask.status == TaskStatus.PENDING.value,
                ScheduledTask.scheduled_for <= now,
                ScheduledTask.retry_count < ScheduledTask.max_retries,
            )
            .update(
                {"status": TaskStatus.PROCESSING.value, "updated_at": now},
                synchronize_session=False,
            )
        )
        self.db.commit()

        if rowcount == 0:
            logger.debug(f"[Lock] Task {task_id} already claimed by another poller")
            return False
        return True

    # ---- updates ----

    def update_status(self, task_id: str, expected_status: Optional[TaskStatus] = None, **fields) -> int:
        """
        Partial update of a task. With expected_status the row is only
        touched if it is still in that status; the affected row count is
        returned either way.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        values = {key: getattr(value, "value", value) for key, value in fields.items()}
        values["updated_at"] = utcnow()

        query = self.db.query(ScheduledTask).filter(ScheduledTask.id == task_id)
        if expected_status is not None:
            query = query.filter(ScheduledTask.status == TaskStatus(expected_status).value)
        rowcount = query.update(values, synchronize_session=False)
        self.db.flush()
        return rowcount

    def add_attempt(
        self,
        task_id: str,
        attempt_number: int,
        outcome: AttemptOutcome,
        started_at: datetime,
        finished_at: datetime,
        error: Optional[str] = None,
        instance_id: Optional[str] = None,
    ) -> TaskAttempt:
        attempt = TaskAttempt(
            task_id=task_id,
            attempt_number=attempt_number,
            outcome=outcome.value,
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=int((finished_at - started_at).total_seconds() * 1000),
            error=error,
            instance_id=instance_id,
        )
        self.db.add(attempt)
        self.db.flush()
        return attempt

    # ---- deletion ----

    def delete_by_correlation(self, key: str, value: str) -> int:
        """Delete every task whose payload has data[key] == value"""
        task_ids = [
            row.id
            for row in self.db.query(ScheduledTask.id)
            .filter(ScheduledTask.data[key].as_string() == str(value))
            .all()
        ]
        if not task_ids:
            return 0

        self.db.query(TaskAttempt).filter(TaskAttempt.task_id.in_(task_ids)).delete(synchronize_session=False)
        deleted = (
            self.db.query(ScheduledTask)
            .filter(ScheduledTask.id.in_(task_ids))
            .delete(synchronize_session=False)
        )
        self.db.flush()
        logger.info(f"Deleted {deleted} scheduled tasks with {key}={value}")
        return deleted

    def delete(self, task_id: str) -> bool:
        task = self.get(task_id)
        if task is None:
            return False
        self.db.delete(task)
        self.db.flush()
        return True

    # ---- queries ----

    def get(self, task_id: str) -> Optional[ScheduledTask]:
        return self.db.query(ScheduledTask).filter(ScheduledTask.id == task_id).first()

    def find_by_correlation(self, key: str, value: str, type: Optional[str] = None) -> List[ScheduledTask]:
        query = self.db.query(ScheduledTask).filter(ScheduledTask.data[key].as_string() == str(value))
        if type:
            query = query.filter(ScheduledTask.type == str(getattr(type, "value", type)))
        return query.order_by(ScheduledTask.created_at).all()

    def list_tasks(
        self,
        status: Optional[str] = None,
        type: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ScheduledTask]:
        query = self.db.query(ScheduledTask)
        if status:
            query = query.filter(ScheduledTask.status == status)
        if type:
            query = query.filter(ScheduledTask.type == type)
        return query.order_by(ScheduledTask.scheduled_for.desc()).offset(offset).limit(limit).all()

    def list_attempts(self, task_id: str) -> List[TaskAttempt]:
        return (
            self.db.query(TaskAttempt)
            .filter(TaskAttempt.task_id == task_id)
            .order_by(TaskAttempt.attempt_number)
            .all()
        )

    def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in TaskStatus}
        rows = (
            self.db.query(ScheduledTask.status, func.count(ScheduledTask.id))
            .group_by(ScheduledTask.status)
            .all()
        )
        for status, count in rows:
            counts[status] = count
        return counts

    def count_stale(self, cutoff: datetime) -> int:
        return (
            self.db.query(ScheduledTask)
            .filter(
                ScheduledTask.status == TaskStatus.PROCESSING.value,
                ScheduledTask.updated_at < cutoff,
            )
            .count()
        )

    # ---- maintenance ----

    def recover_stale(self, cutoff: datetime, instance_id: Optional[str] = None) -> int:
        """
        Return tasks stuck in processing since before cutoff to pending,
        counting the lost attempt; tasks at the ceiling become failed.
        """
        stuck_tasks = (
            self.db.query(ScheduledTask)
            .filter(
                ScheduledTask.status == TaskStatus.PROCESSING.value,
                ScheduledTask.updated_at < cutoff,
            )
            .all()
        )

        now = utcnow()
        for task in stuck_tasks:
            claimed_at = task.updated_at
            task.retry_count += 1
            task.error = f"Recovered from stuck 'processing' state (instance: {instance_id})"
            task.updated_at = now

            if task.retry_count >= task.max_retries:
                task.status = TaskStatus.FAILED.value
                outcome = AttemptOutcome.FAILED
                logger.error(f"[Recovery] Task {task.id} marked as failed after recovery (max retries reached)")
            else:
                task.status = TaskStatus.PENDING.value
                outcome = AttemptOutcome.RETRY
                logger.warning(f"[Recovery] Task {task.id} recovered from stuck state (attempt {task.retry_count}/{task.max_retries})")

            self.add_attempt(
                task.id,
                attempt_number=task.retry_count,
                outcome=outcome,
                started_at=claimed_at,
                finished_at=now,
                error=task.error,
                instance_id=instance_id,
            )

        self.db.flush()
        return len(stuck_tasks)

    def reset_failed(self, task_id: Optional[str] = None, note: Optional[str] = None) -> int:
        """Put failed tasks back to pending with a fresh retry budget"""
        query = self.db.query(ScheduledTask).filter(ScheduledTask.status == TaskStatus.FAILED.value)
        if task_id:
            query = query.filter(ScheduledTask.id == task_id)

        now = utcnow()
        failed_tasks = query.all()
        for task in failed_tasks:
            task.status = TaskStatus.PENDING.value
            task.retry_count = 0
            task.error = note
            task.scheduled_for = min(task.scheduled_for, now)
            task.updated_at = now

        self.db.flush()
        return len(failed_tasks)
