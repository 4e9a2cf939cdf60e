from sqlalchemy.orm import Session
from datetime import datetime
from typing import Any, Dict, Optional, Union
from .models import TaskType
from .store import TaskStore
from config.settings import DEFAULT_MAX_RETRIES
from sqlalchemy.exc import SQLAlchemyError
from shared_utils.errors import TransientIOError, ValidationError
import logging

logger = logging.getLogger(__name__)


def schedule_task(
    db: Session,
    type: Union[TaskType, str],
    data: Optional[Dict[str, Any]],
    scheduled_for: Union[datetime, str, None],
    max_retries: Optional[int] = None,
    commit: bool = True,
) -> Dict[str, Any]:
    """
    Enqueue a task to run at or after scheduled_for.

    Args:
        type: task type; types without a handler are accepted and fail when polled
        data: payload read by the handler, must be a non-empty mapping
        scheduled_for: datetime or ISO string, aware values are converted to UTC
        max_retries: attempt ceiling, defaults to TASK_DEFAULT_MAX_RETRIES
        commit: commit immediately, or leave it to the caller's transaction

    Returns:
        {"id": task_id, "success": True}

    Raises:
        ValidationError: missing type, data or scheduled_for
        TransientIOError: the store rejected or failed the write
    """
    if max_retries is None:
        max_retries = DEFAULT_MAX_RETRIES

    store = TaskStore(db)
    try:
        task = store.insert(type, data, scheduled_for, max_retries=max_retries)
        if commit:
            db.commit()
    except ValidationError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error scheduling task: {e}")
        raise TransientIOError(f"Could not store task: {e}") from e

    logger.info(f"Scheduled task {task.id} ({task.type}) for {task.scheduled_for}")
    return {"id": task.id, "success": True}
