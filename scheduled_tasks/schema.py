from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime as dt_datetime
from typing import Optional, Dict, Any, List


# ===================== TASK PAYLOADS =====================
# Payload keys stay camelCase in the stored JSON; attributes are snake_case.

class TaskPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)


class AppointmentTaskData(TaskPayload):
    appointment_id: str = Field(alias="appointmentId", min_length=1)
    patient_id: str = Field(alias="patientId", min_length=1)
    doctor_id: str = Field(alias="doctorId", min_length=1)


class ReportTaskData(TaskPayload):
    report_id: str = Field(alias="reportId", min_length=1)
    patient_id: str = Field(alias="patientId", min_length=1)
    doctor_id: str = Field(alias="doctorId", min_length=1)


class MedicationReminderData(TaskPayload):
    patient_id: str = Field(alias="patientId", min_length=1)
    doctor_id: str = Field(alias="doctorId", min_length=1)
    medication_name: str = Field(alias="medicationName", min_length=1)


# ===================== API SCHEMAS =====================

class ScheduledTaskCreate(BaseModel):
    type: str
    data: Dict[str, Any]
    scheduled_for: dt_datetime
    max_retries: int = Field(default=3, ge=0)

    @field_validator('data')
    @classmethod
    def validate_data(cls, v):
        if not v:
            raise ValueError('data is required and cannot be empty')
        return v


class ScheduledTaskResponse(BaseModel):
    id: str
    type: str
    status: str
    data: Dict[str, Any]
    scheduled_for: dt_datetime
    retry_count: int = 0
    max_retries: int = 3
    result: Optional[str] = None
    error: Optional[str] = None
    processed_at: Optional[dt_datetime] = None
    created_at: Optional[dt_datetime] = None
    updated_at: Optional[dt_datetime] = None

    class Config:
        from_attributes = True


class TaskAttemptResponse(BaseModel):
    attempt_number: int
    outcome: str
    error: Optional[str] = None
    started_at: dt_datetime
    finished_at: dt_datetime
    duration_ms: Optional[int] = None
    instance_id: Optional[str] = None

    class Config:
        from_attributes = True


class BatchSummary(BaseModel):
    processed: int = 0
    errors: int = 0
    skipped: int = 0
    recovered: int = 0
    total: int = 0


class TaskListResponse(BaseModel):
    tasks: List[ScheduledTaskResponse]
    count: int
