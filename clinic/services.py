"""
Appointment and report operations that create or remove scheduled tasks.
"""
from sqlalchemy.orm import Session
from datetime import timedelta
from typing import Dict, Optional
from .models import Appointment, Report
from .lookups import get_appointment, get_report, clear_appointment_sent
from scheduled_tasks.models import TaskType, TaskStatus
from scheduled_tasks.service import schedule_task
from scheduled_tasks.store import TaskStore
from config.cache import delete_cache, delete_cache_by_pattern
from shared_utils.timeutils import utcnow
import json
import logging

logger = logging.getLogger(__name__)

CONFIRMATION_DELAY = timedelta(minutes=5)
REMINDER_LEAD_TIME = timedelta(hours=24)
REPORT_SENDING_DELAY = timedelta(minutes=5)

REMINDER_SKIPPED_RESULT = {
    "success": True,
    "message": "Reminder skipped: appointment moved within 24 hours",
    "skipped": True,
}


def _appointment_payload(appointment: Appointment) -> Dict[str, str]:
    return {
        "appointmentId": appointment.id,
        "patientId": appointment.patient_id,
        "doctorId": appointment.doctor_id,
    }


def schedule_appointment_followups(db: Session, appointment: Appointment, send_confirmation: bool = True) -> Dict[str, Optional[str]]:
    """
    Queue the confirmation (shortly after booking) and the reminder (a day
    before the appointment, skipped when that moment has already passed).
    """
    now = utcnow()
    scheduled = {"confirmation_task_id": None, "reminder_task_id": None}

    if send_confirmation:
        scheduled["confirmation_task_id"] = schedule_task(
            db,
            TaskType.APPOINTMENT_CONFIRMATION,
            _appointment_payload(appointment),
            now + CONFIRMATION_DELAY,
            commit=False,
        )["id"]

    reminder_date = appointment.date - REMINDER_LEAD_TIME
    if reminder_date > now:
        scheduled["reminder_task_id"] = schedule_task(
            db,
            TaskType.APPOINTMENT_REMINDER,
            _appointment_payload(appointment),
            reminder_date,
            commit=False,
        )["id"]

    db.commit()
    logger.info(f"Scheduled follow-ups for appointment {appointment.id}: {scheduled}")
    return scheduled


def reschedule_appointment_reminder(db: Session, appointment: Appointment) -> Optional[str]:
    """
    Move the reminder after the appointment date changed.

    When the new reminder time is still ahead, the latest reminder task is put
    back to pending at that time (even if it already ran) and the
    appointment's reminder_sent flag is cleared so the reminder goes out
    again. A pending reminder whose new time has already passed is completed
    as skipped. Returns the reminder task id, if any.
    """
    now = utcnow()
    reminder_date = appointment.date - REMINDER_LEAD_TIME
    store = TaskStore(db)

    # A reminder being processed right now is left to finish
    reminders = [
        task for task in store.find_by_correlation("appointmentId", appointment.id, type=TaskType.APPOINTMENT_REMINDER)
        if task.status != TaskStatus.PROCESSING.value
    ]
    pending = next((task for task in reminders if task.status == TaskStatus.PENDING.value), None)

    if reminder_date <= now:
        if pending is None:
            return None
        store.update_status(
            pending.id,
            expected_status=TaskStatus.PENDING,
            status=TaskStatus.COMPLETED,
            processed_at=now,
            result=json.dumps(REMINDER_SKIPPED_RESULT),
            error=None,
        )
        db.commit()
        logger.info(f"Reminder {pending.id} skipped: appointment {appointment.id} moved within 24 hours")
        return pending.id

    clear_appointment_sent(db, appointment, "reminder_sent")

    task = pending or (reminders[-1] if reminders else None)
    if task is not None:
        store.update_status(
            task.id,
            expected_status=TaskStatus(task.status),
            status=TaskStatus.PENDING,
            scheduled_for=reminder_date,
            retry_count=0,
            result=None,
            error=None,
            processed_at=None,
        )
        task_id = task.id
    else:
        task_id = schedule_task(
            db,
            TaskType.APPOINTMENT_REMINDER,
            _appointment_payload(appointment),
            reminder_date,
            commit=False,
        )["id"]

    db.commit()
    delete_cache(f"appointment:{appointment.id}")
    delete_cache_by_pattern("appointments:*")
    logger.info(f"Reminder {task_id} for appointment {appointment.id} moved to {reminder_date}")
    return task_id


def schedule_report_delivery(db: Session, report: Report) -> str:
    """Queue sending a finalized report to its patient"""
    task = schedule_task(
        db,
        TaskType.REPORT_SENDING,
        {"reportId": report.id, "patientId": report.patient_id, "doctorId": report.doctor_id},
        utcnow() + REPORT_SENDING_DELAY,
    )
    return task["id"]


def schedule_medication_reminder(db: Session, patient_id: str, doctor_id: str, medication_name: str, remind_at) -> str:
    task = schedule_task(
        db,
        TaskType.MEDICATION_REMINDER,
        {"patientId": patient_id, "doctorId": doctor_id, "medicationName": medication_name},
        remind_at,
    )
    return task["id"]


def delete_appointment(db: Session, appointment_id: str) -> int:
    """Delete an appointment and every task that refers to it. Returns the number of tasks removed."""
    appointment = get_appointment(db, appointment_id)
    removed = TaskStore(db).delete_by_correlation("appointmentId", appointment_id)
    db.delete(appointment)
    db.commit()

    delete_cache(f"appointment:{appointment_id}")
    delete_cache_by_pattern("appointments:*")
    logger.info(f"Deleted appointment {appointment_id} and {removed} scheduled tasks")
    return removed


def delete_report(db: Session, report_id: str) -> int:
    report = get_report(db, report_id)
    removed = TaskStore(db).delete_by_correlation("reportId", report_id)
    db.delete(report)
    db.commit()

    delete_cache(f"report:{report_id}")
    delete_cache_by_pattern("reports:*")
    logger.info(f"Deleted report {report_id} and {removed} scheduled tasks")
    return removed
