from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from config.database import Base
from shared_utils.timeutils import utcnow
import uuid


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Clinic staff member (doctor, nurse, admin) who receives notifications"""
    __tablename__ = "user"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    role = Column(String(20), default="doctor", nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User(id={self.id}, name={self.name})>"


class Patient(Base):
    __tablename__ = "patient"

    id = Column(String(36), primary_key=True, default=new_id)
    firstname = Column(String(100), nullable=False)
    lastname = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(30), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    appointments = relationship("Appointment", back_populates="patient", cascade="all, delete-orphan")
    reports = relationship("Report", back_populates="patient", cascade="all, delete-orphan")

    @property
    def full_name(self) -> str:
        return f"{self.firstname} {self.lastname}"

    def __repr__(self):
        return f"<Patient(id={self.id}, name={self.full_name})>"


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=new_id)
    patient_id = Column(String(36), ForeignKey("patient.id", ondelete="CASCADE"), nullable=False)
    doctor_id = Column(String(36), ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(200), nullable=False)
    date = Column(DateTime, nullable=False)  # UTC
    duration = Column(Integer, default=30, nullable=False)  # minutes
    status = Column(String(20), default="scheduled", nullable=False)  # scheduled, confirmed, cancelled, completed, no_show

    # Bookkeeping written by the scheduled task handlers
    confirmation_sent = Column(Boolean, default=False, nullable=False)
    confirmation_sent_at = Column(DateTime, nullable=True)
    reminder_sent = Column(Boolean, default=False, nullable=False)
    reminder_sent_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("User")


class Report(Base):
    __tablename__ = "reports"

    id = Column(String(36), primary_key=True, default=new_id)
    patient_id = Column(String(36), ForeignKey("patient.id", ondelete="CASCADE"), nullable=False)
    doctor_id = Column(String(36), ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(200), nullable=False)
    type = Column(String(50), nullable=False)  # medical_summary, lab_results, treatment_plan, progress_note
    content = Column(Text, nullable=False, default="")
    status = Column(String(20), default="draft", nullable=False)  # draft, finalized, sent, archived

    sent_to_patient = Column(Boolean, default=False, nullable=False)
    sent_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    patient = relationship("Patient", back_populates="reports")
    doctor = relationship("User")


# Registered here so the string relationships above resolve
from notifications.models import Notification  # noqa: E402,F401
