"""
Read accessors and "sent" bookkeeping used by the scheduled task handlers.

Lookups raise NotFoundError instead of returning None so a deleted entity
surfaces as a normal failed attempt.
"""
from sqlalchemy.orm import Session, joinedload
from .models import User, Patient, Appointment, Report
from shared_utils.errors import NotFoundError, ValidationError
from shared_utils.timeutils import utcnow

APPOINTMENT_FLAGS = {
    "confirmation_sent": "confirmation_sent_at",
    "reminder_sent": "reminder_sent_at",
}


def get_user(db: Session, user_id: str) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def get_patient(db: Session, patient_id: str) -> Patient:
    patient = db.query(Patient).filter(Patient.id == patient_id).first()
    if patient is None:
        raise NotFoundError("Patient", patient_id)
    return patient


def get_appointment(db: Session, appointment_id: str) -> Appointment:
    appointment = (
        db.query(Appointment)
        .options(joinedload(Appointment.patient))
        .filter(Appointment.id == appointment_id)
        .first()
    )
    if appointment is None:
        raise NotFoundError("Appointment", appointment_id)
    return appointment


def get_report(db: Session, report_id: str) -> Report:
    report = (
        db.query(Report)
        .options(joinedload(Report.patient))
        .filter(Report.id == report_id)
        .first()
    )
    if report is None:
        raise NotFoundError("Report", report_id)
    return report


def mark_appointment_sent(db: Session, appointment: Appointment, flag: str) -> None:
    """Set confirmation_sent or reminder_sent plus its timestamp (flushed, not committed)"""
    if flag not in APPOINTMENT_FLAGS:
        raise ValidationError(f"Unknown appointment flag: {flag}")
    now = utcnow()
    setattr(appointment, flag, True)
    setattr(appointment, APPOINTMENT_FLAGS[flag], now)
    appointment.updated_at = now
    db.flush()


def clear_appointment_sent(db: Session, appointment: Appointment, flag: str) -> None:
    """Undo mark_appointment_sent so the notification goes out again"""
    if flag not in APPOINTMENT_FLAGS:
        raise ValidationError(f"Unknown appointment flag: {flag}")
    setattr(appointment, flag, False)
    setattr(appointment, APPOINTMENT_FLAGS[flag], None)
    appointment.updated_at = utcnow()
    db.flush()


def mark_report_sent(db: Session, report: Report) -> None:
    now = utcnow()
    report.sent_to_patient = True
    report.sent_date = now
    report.status = "sent"
    report.updated_at = now
    db.flush()
