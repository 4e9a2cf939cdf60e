from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship
from config.database import Base
import uuid
from shared_utils.timeutils import utcnow


class Notification(Base):

    __tablename__ = "notifications"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    patient_id = Column(String(36), ForeignKey("patient.id", ondelete="CASCADE"), nullable=True)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(50), nullable=False)
    category = Column(String(50), nullable=False)
    priority = Column(String(20), default="normal", nullable=False)  # low, normal, high, urgent
    status = Column(String(20), default="pending", nullable=False)
    read = Column(Boolean, default=False, nullable=False)
    action_required = Column(Boolean, default=False, nullable=False)
    action_type = Column(String(50), nullable=True)
    action_url = Column(String(255), nullable=True)
    # "metadata" is reserved on declarative classes
    extra_data = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="notifications")
    patient = relationship("Patient")


# User and Patient live in clinic.models
import clinic.models  # noqa: E402,F401
