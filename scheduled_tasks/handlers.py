"""
Handlers for each scheduled task type and the registry that dispatches to them.

A handler receives an open session and its decoded payload, performs its side
effects without committing, and returns the result stored on the task. The
processor commits the side effects together with the completed status, or
rolls them back on failure, so a retried task never sees a half-applied
previous attempt. Handlers with a "sent" flag also skip work that a previous
attempt already committed. Cache entries they touch are dropped only after
the processor commits.
"""
from dataclasses import dataclass
from sqlalchemy.orm import Session
from typing import Any, Callable, Dict, Type
from pydantic import ValidationError as PydanticValidationError
from .models import ScheduledTask, TaskType
from .schema import TaskPayload, AppointmentTaskData, ReportTaskData, MedicationReminderData
from clinic.lookups import get_appointment, get_report, get_patient, mark_appointment_sent, mark_report_sent
from notifications.service import create_notification
from config.cache import invalidate_after_commit
from shared_utils.errors import UnknownTaskType, ValidationError
from shared_utils.timeutils import format_clinic_date, format_clinic_time
import json
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskHandler:
    payload_model: Type[TaskPayload]
    run: Callable[[Session, Any], Dict[str, Any]]


def _invalidate_appointment_cache(db: Session, appointment_id: str) -> None:
    invalidate_after_commit(db, f"appointment:{appointment_id}", "appointments:*")


def _invalidate_report_cache(db: Session, report_id: str) -> None:
    invalidate_after_commit(db, f"report:{report_id}", "reports:*")


def send_appointment_confirmation(db: Session, data: AppointmentTaskData) -> Dict[str, Any]:
    appointment = get_appointment(db, data.appointment_id)
    if appointment.confirmation_sent:
        logger.info(f"Confirmation for appointment {appointment.id} already sent, skipping")
        return {"success": True, "message": "Appointment confirmation already sent", "skipped": True}

    patient = appointment.patient
    create_notification(
        db,
        user_id=data.doctor_id,
        patient_id=data.patient_id,
        title="Appointment Confirmation Sent",
        message=(
            f"Confirmation for appointment with {patient.full_name} "
            f"on {format_clinic_date(appointment.date)} has been sent"
        ),
        type="appointment",
        category="appointment",
        priority="low",
    )
    mark_appointment_sent(db, appointment, "confirmation_sent")
    _invalidate_appointment_cache(db, appointment.id)

    return {"success": True, "message": "Appointment confirmation sent"}


def send_appointment_reminder(db: Session, data: AppointmentTaskData) -> Dict[str, Any]:
    appointment = get_appointment(db, data.appointment_id)
    if appointment.reminder_sent:
        logger.info(f"Reminder for appointment {appointment.id} already sent, skipping")
        return {"success": True, "message": "Appointment reminder already sent", "skipped": True}

    patient = appointment.patient
    create_notification(
        db,
        user_id=data.doctor_id,
        patient_id=data.patient_id,
        title="Appointment Reminder Sent",
        message=(
            f"Reminder for appointment with {patient.full_name} "
            f"on {format_clinic_date(appointment.date)} at {format_clinic_time(appointment.date)} has been sent"
        ),
        type="appointment",
        category="appointment",
        priority="low",
    )
    mark_appointment_sent(db, appointment, "reminder_sent")
    _invalidate_appointment_cache(db, appointment.id)

    return {"success": True, "message": "Appointment reminder sent"}


def send_report(db: Session, data: ReportTaskData) -> Dict[str, Any]:
    report = get_report(db, data.report_id)
    if report.sent_to_patient:
        logger.info(f"Report {report.id} already sent to patient, skipping")
        return {"success": True, "message": "Report already sent to patient", "skipped": True}

    patient = report.patient
    create_notification(
        db,
        user_id=data.doctor_id,
        patient_id=data.patient_id,
        title="Report Sent to Patient",
        message=f'Report "{report.title}" has been sent to {patient.full_name}',
        type="report",
        category="administrative",
        priority="normal",
        action_type="view",
        action_url=f"/reports/{report.id}",
    )
    mark_report_sent(db, report)
    _invalidate_report_cache(db, report.id)

    return {"success": True, "message": "Report sent to patient"}


def send_medication_reminder(db: Session, data: MedicationReminderData) -> Dict[str, Any]:
    patient = get_patient(db, data.patient_id)

    create_notification(
        db,
        user_id=data.doctor_id,
        patient_id=patient.id,
        title="Medication Reminder Sent",
        message=f"Reminder for {data.medication_name} has been sent to {patient.full_name}",
        type="medication",
        category="medication",
        priority="low",
    )

    return {"success": True, "message": "Medication reminder sent"}


TASK_HANDLERS: Dict[TaskType, TaskHandler] = {
    TaskType.APPOINTMENT_CONFIRMATION: TaskHandler(AppointmentTaskData, send_appointment_confirmation),
    TaskType.APPOINTMENT_REMINDER: TaskHandler(AppointmentTaskData, send_appointment_reminder),
    TaskType.REPORT_SENDING: TaskHandler(ReportTaskData, send_report),
    TaskType.MEDICATION_REMINDER: TaskHandler(MedicationReminderData, send_medication_reminder),
}


def resolve_handler(task_type: str) -> TaskHandler:
    try:
        return TASK_HANDLERS[TaskType(task_type)]
    except (ValueError, KeyError):
        raise UnknownTaskType(task_type)


def decode_payload(task: ScheduledTask, handler: TaskHandler) -> TaskPayload:
    """Turn the stored JSON into the handler's payload model"""
    body = task.data
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid task data format: {e}")

    if not body or not isinstance(body, dict):
        raise ValidationError("Task data is missing or invalid")

    try:
        return handler.payload_model.model_validate(body)
    except PydanticValidationError as e:
        missing = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        raise ValidationError(f"Missing required fields in task data: {', '.join(missing)}")


def dispatch_task(db: Session, task: ScheduledTask) -> Dict[str, Any]:
    """Run the handler registered for task.type and return its result"""
    handler = resolve_handler(task.type)
    payload = decode_payload(task, handler)
    return handler.run(db, payload)
