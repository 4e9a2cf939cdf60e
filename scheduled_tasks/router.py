from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import orm
from config.database import get_db
from config import settings
from .models import TaskStatus
from .schema import ScheduledTaskCreate, ScheduledTaskResponse, TaskAttemptResponse, BatchSummary
from .service import schedule_task
from .store import TaskStore
from .scheduler import task_scheduler
from shared_utils.errors import TransientIOError, ValidationError
from shared_utils.timeutils import utcnow
from datetime import timedelta
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


# ===================== TASKS =====================
@router.post("/scheduled-tasks/", response_model=ScheduledTaskResponse, status_code=201)
def create_scheduled_task(task: ScheduledTaskCreate, db: orm.Session = Depends(get_db)):
    """Schedule a task for later execution"""
    try:
        created = schedule_task(db, task.type, task.data, task.scheduled_for, max_retries=task.max_retries)
        return TaskStore(db).get(created["id"])
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TransientIOError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error(f"Error creating scheduled task: {e}")
        raise HTTPException(status_code=500, detail="Internal server error creating task")


@router.get("/scheduled-tasks/", response_model=List[ScheduledTaskResponse])
def list_scheduled_tasks(
    status: Optional[TaskStatus] = None,
    type: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: orm.Session = Depends(get_db)
):
    try:
        return TaskStore(db).list_tasks(
            status=status.value if status else None,
            type=type,
            limit=limit,
            offset=offset,
        )
    except Exception as e:
        logger.error(f"Error listing scheduled tasks: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/scheduled-tasks/failed/", response_model=List[ScheduledTaskResponse])
def list_failed_tasks(db: orm.Session = Depends(get_db)):
    """List all failed scheduled tasks for debugging"""
    try:
        return TaskStore(db).list_tasks(status=TaskStatus.FAILED.value, limit=500)
    except Exception as e:
        logger.error(f"Error listing failed tasks: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/scheduled-tasks/retry-all-failed")
def retry_all_failed_tasks(db: orm.Session = Depends(get_db)):
    """Reset all failed tasks to pending so they can be retried"""
    try:
        reset_count = TaskStore(db).reset_failed(note=f"Manually reset for retry (instance: {settings.INSTANCE_ID})")
        db.commit()

        logger.info(f"Reset {reset_count} failed tasks for retry")
        return {
            "message": f"Reset {reset_count} failed tasks for retry",
            "reset_count": reset_count
        }
    except Exception as e:
        db.rollback()
        logger.error(f"Error resetting failed tasks: {e}")
        raise HTTPException(status_code=500, detail="Failed to reset tasks")


@router.get("/scheduled-tasks/{task_id}", response_model=ScheduledTaskResponse)
def get_scheduled_task(task_id: str, db: orm.Session = Depends(get_db)):
    task = TaskStore(db).get(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Scheduled task not found")
    return task


@router.get("/scheduled-tasks/{task_id}/attempts", response_model=List[TaskAttemptResponse])
def list_task_attempts(task_id: str, db: orm.Session = Depends(get_db)):
    """Attempt history, oldest first"""
    store = TaskStore(db)
    if store.get(task_id) is None:
        raise HTTPException(status_code=404, detail="Scheduled task not found")
    return store.list_attempts(task_id)


@router.delete("/scheduled-tasks/{task_id}", status_code=204)
def delete_scheduled_task(task_id: str, db: orm.Session = Depends(get_db)):
    try:
        if not TaskStore(db).delete(task_id):
            raise HTTPException(status_code=404, detail="Scheduled task not found")
        db.commit()
        logger.info(f"Deleted scheduled task {task_id}")
    except HTTPException:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Error deleting scheduled task {task_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/scheduled-tasks/{task_id}/retry")
def retry_failed_task(task_id: str, db: orm.Session = Depends(get_db)):
    """Manually retry a failed task"""
    store = TaskStore(db)
    task = store.get(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Scheduled task not found")
    if task.status != TaskStatus.FAILED.value:
        raise HTTPException(status_code=400, detail=f"Task is not failed (status: {task.status})")

    try:
        store.reset_failed(task_id)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error retrying task {task_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    logger.info(f"Reset failed task {task_id} for retry")
    return {"message": f"Task {task_id} has been reset for retry"}


# ===================== SCHEDULER =====================
@router.post("/scheduler/trigger", response_model=BatchSummary)
def trigger_scheduler():
    """Process one batch of due tasks immediately"""
    summary = task_scheduler.trigger_manual_run()
    if "critical_error" in summary:
        raise HTTPException(status_code=500, detail="Failed to process due tasks")
    return summary


@router.post("/scheduler/recover-stuck")
def recover_stuck_tasks(db: orm.Session = Depends(get_db)):
    """Manually recover tasks stuck in 'processing' state"""
    recovered_count = task_scheduler.processor.recover_stale_tasks(TaskStore(db))
    return {
        "message": f"Recovered {recovered_count} stuck tasks",
        "recovered_count": recovered_count,
        "instance_id": settings.INSTANCE_ID
    }


@router.get("/health/scheduler")
def scheduler_health(db: orm.Session = Depends(get_db)):
    """Health check for the task scheduler with queue counts"""
    status = task_scheduler.get_status()
    store = TaskStore(db)

    try:
        counts = store.count_by_status()
        cutoff = utcnow() - timedelta(minutes=settings.STALE_PROCESSING_TIMEOUT_MINUTES)
        counts["stuck"] = store.count_stale(cutoff)
    except Exception as e:
        logger.error(f"Error getting health stats: {e}")
        counts = {"error": "Could not retrieve task counts"}

    return {
        "status": "healthy" if status["running"] else "unhealthy",
        "scheduler": status,
        "instance_id": settings.INSTANCE_ID,
        "polling_interval_seconds": settings.POLLING_INTERVAL_SECONDS,
        "stale_timeout_minutes": settings.STALE_PROCESSING_TIMEOUT_MINUTES,
        "tasks": counts,
    }
