from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from config.database import get_db
from config.cache import get_cache, set_cache, delete_cache_by_pattern
from .models import Notification
from typing import Optional
from shared_utils.timeutils import utcnow
import logging

router = APIRouter()

logger = logging.getLogger(__name__)


def serialize_notification(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "patient_id": notification.patient_id,
        "title": notification.title,
        "message": notification.message,
        "type": notification.type,
        "category": notification.category,
        "priority": notification.priority,
        "read": notification.read,
        "action_required": notification.action_required,
        "action_type": notification.action_type,
        "action_url": notification.action_url,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


@router.get("/notifications")
def list_notifications(
    user_id: str = Query(..., min_length=1),
    unread_only: bool = False,
    category: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """Notifications for one staff user, newest first"""
    cache_key = f"notifications:{user_id}:{unread_only}:{category}:{limit}"
    cached = get_cache(cache_key)
    if cached is not None:
        return cached

    try:
        query = db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.read.is_(False))
        if category:
            query = query.filter(Notification.category == category)

        notifications = query.order_by(Notification.created_at.desc()).limit(limit).all()
        unread_count = (
            db.query(Notification)
            .filter(Notification.user_id == user_id, Notification.read.is_(False))
            .count()
        )
    except Exception as e:
        logger.error(f"Error listing notifications for user {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    response = {
        "notifications": [serialize_notification(n) for n in notifications],
        "unread_count": unread_count,
    }
    set_cache(cache_key, response)
    return response


@router.post("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str, db: Session = Depends(get_db)):
    notification = db.query(Notification).filter(Notification.id == notification_id).first()
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")

    try:
        notification.read = True
        notification.status = "read"
        notification.updated_at = utcnow()
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error marking notification {notification_id} as read: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    delete_cache_by_pattern(f"notifications:{notification.user_id}:*")
    return serialize_notification(notification)
