"""
Notification sink used by the scheduled task handlers.
"""
from sqlalchemy.orm import Session
from typing import Optional, Dict, Any
from .models import Notification
from clinic.lookups import get_user, get_patient
from config.cache import invalidate_after_commit
from shared_utils.errors import ValidationError
import logging

logger = logging.getLogger(__name__)


def create_notification(
    db: Session,
    user_id: str,
    title: str,
    message: str,
    type: str,
    category: str,
    patient_id: Optional[str] = None,
    priority: str = "normal",
    action_required: bool = False,
    action_type: Optional[str] = None,
    action_url: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Notification:
    """
    Create a notification addressed to a staff user.

    The row is flushed but not committed: the caller owns the transaction so
    a scheduled task's notification commits together with its status change.
    The user's cached lists are dropped once that transaction commits.

    Raises:
        ValidationError: user_id, title or message is empty
        NotFoundError: the user or patient does not exist
    """
    if not user_id:
        raise ValidationError("User ID is required")
    if not title or not message:
        raise ValidationError("Title and message are required")

    get_user(db, user_id)
    if patient_id:
        get_patient(db, patient_id)

    notification = Notification(
        user_id=user_id,
        patient_id=patient_id,
        title=title,
        message=message,
        type=type,
        category=category,
        priority=priority,
        action_required=action_required,
        action_type=action_type,
        action_url=action_url,
        extra_data=metadata,
    )
    db.add(notification)
    db.flush()

    invalidate_after_commit(db, f"notifications:{user_id}:*")
    logger.info(f"Notification {notification.id} created for user {user_id}: {title}")
    return notification
