"""
Poll, claim, dispatch and record outcomes for scheduled tasks.

One call to process_due_tasks handles one bounded batch sequentially:

    recover stale "processing" rows
    find due tasks
    for each: claim (conditional UPDATE) -> run handler -> record outcome

Handler errors never leave this module; the caller only gets the batch
summary.
"""
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session, sessionmaker
from config.database import SessionLocal
from config import settings
from .models import ScheduledTask, TaskStatus, AttemptOutcome
from .store import TaskStore
from .handlers import dispatch_task
from shared_utils.errors import HandlerTimeout, TaskError
from shared_utils.timeutils import utcnow
import json
import logging

logger = logging.getLogger(__name__)


def compute_backoff(retry_count: int, base_seconds: int, max_seconds: int) -> int:
    """Delay before retry number retry_count (1-based): base * 2**(n-1), capped"""
    if base_seconds <= 0 or retry_count <= 0:
        return 0
    return min(base_seconds * 2 ** (retry_count - 1), max_seconds)


class TaskProcessor:
    """Processes due scheduled tasks one batch at a time"""

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        batch_size: int = settings.BATCH_SIZE,
        handler_timeout: Optional[float] = settings.HANDLER_TIMEOUT_SECONDS,
        backoff_seconds: int = settings.RETRY_BACKOFF_SECONDS,
        backoff_max_seconds: int = settings.RETRY_BACKOFF_MAX_SECONDS,
        stale_timeout_minutes: int = settings.STALE_PROCESSING_TIMEOUT_MINUTES,
        instance_id: str = settings.INSTANCE_ID,
    ):
        self.session_factory = session_factory
        self.batch_size = batch_size
        self.handler_timeout = handler_timeout
        self.backoff_seconds = backoff_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.stale_timeout_minutes = stale_timeout_minutes
        self.instance_id = instance_id

    # ===================== BATCH =====================

    def process_due_tasks(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Process one batch of due tasks.

        Returns:
            dict with processed (succeeded), errors (failed attempts),
            skipped (claimed by another poller), recovered (stale rows
            reset) and total (tasks found due)
        """
        now = now or utcnow()
        summary = {"processed": 0, "errors": 0, "skipped": 0, "recovered": 0, "total": 0}

        db: Session = self.session_factory()
        try:
            store = TaskStore(db)

            summary["recovered"] = self.recover_stale_tasks(store, now)

            due_tasks = store.find_due_batch(now, self.batch_size)
            summary["total"] = len(due_tasks)

            if not due_tasks:
                logger.debug("[Scheduler] No due tasks found")
                return summary

            logger.info(f"[Scheduler] Found {len(due_tasks)} due tasks (instance: {self.instance_id})")

            # Each claim commits and expires the loaded rows, so keep ids only
            due_task_ids = [task.id for task in due_tasks]
            for task_id in due_task_ids:
                try:
                    if not store.claim_task(task_id, now):
                        summary["skipped"] += 1
                        continue

                    task = store.get(task_id)
                    if task is None:
                        # Deleted together with its appointment or report after the claim
                        logger.warning(f"[Task {task_id}] Deleted after claim, skipping")
                        summary["skipped"] += 1
                        continue

                    if self.process_single_task(store, task, now):
                        summary["processed"] += 1
                    else:
                        summary["errors"] += 1

                except Exception as e:
                    logger.error(f"[Task {task_id}] Unexpected error: {e}", exc_info=True, extra={"task_id": task_id})
                    db.rollback()
                    summary["errors"] += 1

            logger.info(
                f"[Scheduler] Cycle complete: processed={summary['processed']}, "
                f"errors={summary['errors']}, skipped={summary['skipped']}"
            )

        except Exception as e:
            logger.error(f"[Scheduler] Error in process_due_tasks: {e}", exc_info=True)
            db.rollback()
            summary["critical_error"] = str(e)

        finally:
            db.close()

        return summary

    def recover_stale_tasks(self, store: TaskStore, now: Optional[datetime] = None) -> int:
        """Reset tasks left in processing by a crashed or hung poller"""
        now = now or utcnow()
        cutoff = now - timedelta(minutes=self.stale_timeout_minutes)
        try:
            recovered = store.recover_stale(cutoff, instance_id=self.instance_id)
            store.db.commit()
        except Exception as e:
            logger.error(f"[Recovery] Error recovering stale tasks: {e}")
            store.db.rollback()
            return 0

        if recovered:
            logger.info(f"[Recovery] Recovered {recovered} stuck tasks")
        return recovered

    # ===================== SINGLE TASK =====================

    def process_single_task(self, store: TaskStore, task: ScheduledTask, now: datetime) -> bool:
        """
        Run the handler of an already-claimed task and record the outcome.
        Returns True on success.
        """
        started_at = utcnow()
        logger.info(
            f"[Task {task.id}] Processing {task.type} (attempt {task.retry_count + 1}/{task.max_retries})",
            extra={"task_id": task.id, "task_type": task.type, "attempt": task.retry_count + 1},
        )

        try:
            self.execute_handler(task.id, started_at)
            logger.info(f"[Task {task.id}] Completed", extra={"task_id": task.id, "task_type": task.type})
            return True

        except Exception as e:
            error_msg = (str(e) or e.__class__.__name__)[:500]
            logger.error(f"[Task {task.id}] {error_msg}", extra={"task_id": task.id, "task_type": task.type})
            self.record_failure(store, task, error_msg, started_at, now)
            return False

    def execute_handler(self, task_id: str, started_at: datetime) -> Dict[str, Any]:
        """Run one attempt, bounded by handler_timeout when it is set"""
        if not self.handler_timeout:
            return self.run_attempt(task_id, started_at)

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="task-handler")
        future = executor.submit(self.run_attempt, task_id, started_at)
        try:
            return future.result(timeout=self.handler_timeout)
        except FuturesTimeout:
            raise HandlerTimeout(task_id, self.handler_timeout)
        finally:
            # A hung handler keeps its thread; its late commit is refused by record_success
            executor.shutdown(wait=False)

    def run_attempt(self, task_id: str, started_at: datetime) -> Dict[str, Any]:
        """
        Dispatch the task on its own session and commit the handler's side
        effects together with the completed status.
        """
        db: Session = self.session_factory()
        try:
            store = TaskStore(db)
            task = store.get(task_id)
            if task is None:
                raise TaskError(f"Task {task_id} disappeared before it could run")

            result = dispatch_task(db, task)
            self.record_success(store, task, result, started_at)
            db.commit()
            return result
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ===================== OUTCOMES =====================

    def record_success(self, store: TaskStore, task: ScheduledTask, result: Dict[str, Any], started_at: datetime) -> None:
        finished_at = utcnow()
        updated = store.update_status(
            task.id,
            expected_status=TaskStatus.PROCESSING,
            status=TaskStatus.COMPLETED,
            result=json.dumps(result, default=str),
            error=None,
            processed_at=finished_at,
        )
        if not updated:
            raise TaskError(f"Task {task.id} was no longer processing when its handler finished")

        store.add_attempt(
            task.id,
            attempt_number=task.retry_count + 1,
            outcome=AttemptOutcome.COMPLETED,
            started_at=started_at,
            finished_at=finished_at,
            instance_id=self.instance_id,
        )

    def record_failure(
        self,
        store: TaskStore,
        task: ScheduledTask,
        error_msg: str,
        started_at: datetime,
        now: Optional[datetime] = None,
    ) -> None:
        """Count the failed attempt and either re-queue the task or fail it for good"""
        now = now or utcnow()
        retry_count = task.retry_count + 1
        finished_at = utcnow()

        fields = {"retry_count": retry_count, "error": error_msg}
        if retry_count >= task.max_retries:
            fields["status"] = TaskStatus.FAILED
            outcome = AttemptOutcome.FAILED
        else:
            delay = compute_backoff(retry_count, self.backoff_seconds, self.backoff_max_seconds)
            fields["status"] = TaskStatus.PENDING
            if delay:
                fields["scheduled_for"] = now + timedelta(seconds=delay)
            outcome = AttemptOutcome.RETRY

        db = store.db
        try:
            updated = store.update_status(task.id, expected_status=TaskStatus.PROCESSING, **fields)
            if not updated:
                logger.warning(f"[Task {task.id}] No longer processing, failure not recorded")
                db.rollback()
                return

            store.add_attempt(
                task.id,
                attempt_number=retry_count,
                outcome=outcome,
                started_at=started_at,
                finished_at=finished_at,
                error=error_msg,
                instance_id=self.instance_id,
            )
            db.commit()
        except Exception as e:
            logger.error(f"[Task {task.id}] Error handling failure: {e}")
            db.rollback()
            return

        if outcome == AttemptOutcome.FAILED:
            logger.error(f"[Task {task.id}] Failed permanently after {retry_count} attempts: {error_msg}")
        else:
            logger.warning(f"[Task {task.id}] Failed (attempt {retry_count}/{task.max_retries}): {error_msg}")
