"""
PyTest Configuration
Provides database fixtures, a TestClient and clinic entities for exercising
the scheduled task engine against SQLite.
"""
import os

# Settings are read at import time, so configure before importing the app
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ["TASK_SCHEDULER_ENABLED"] = "false"

import pytest
from datetime import timedelta
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient
from config.database import Base, build_engine, get_db
from config.cache import clear_cache
from clinic.models import User, Patient, Appointment, Report
from scheduled_tasks.processor import TaskProcessor
from scheduled_tasks.store import TaskStore
from shared_utils.timeutils import utcnow
from main import app

TEST_DATABASE_URL = os.getenv('TEST_DATABASE_URL', 'sqlite:///./test.db')

test_engine = build_engine(TEST_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database for each test and drop it afterwards.
    """
    Base.metadata.create_all(bind=test_engine)
    clear_cache()

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=test_engine)
        clear_cache()


@pytest.fixture(scope="function")
def client(db_session):
    """
    FastAPI TestClient with overridden database dependency.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def processor(db_session):
    """Processor on the test database: no backoff, handlers run inline"""
    return TaskProcessor(
        session_factory=TestingSessionLocal,
        batch_size=50,
        handler_timeout=None,
        backoff_seconds=0,
        backoff_max_seconds=0,
        stale_timeout_minutes=5,
        instance_id="test-instance",
    )


@pytest.fixture
def sample_doctor(db_session):
    doctor = User(name="Dr. Claire Martin", email="claire.martin@clinic.test", role="doctor")
    db_session.add(doctor)
    db_session.commit()
    db_session.refresh(doctor)
    return doctor


@pytest.fixture
def sample_patient(db_session):
    patient = Patient(firstname="Jean", lastname="Dupont", email="jean.dupont@example.com", phone="+33600000000")
    db_session.add(patient)
    db_session.commit()
    db_session.refresh(patient)
    return patient


@pytest.fixture
def sample_appointment(db_session, sample_patient, sample_doctor):
    appointment = Appointment(
        patient_id=sample_patient.id,
        doctor_id=sample_doctor.id,
        title="Kidney function follow-up",
        date=utcnow() + timedelta(days=3),
    )
    db_session.add(appointment)
    db_session.commit()
    db_session.refresh(appointment)
    return appointment


@pytest.fixture
def sample_report(db_session, sample_patient, sample_doctor):
    report = Report(
        patient_id=sample_patient.id,
        doctor_id=sample_doctor.id,
        title="Quarterly lab summary",
        type="lab_results",
        content="Creatinine stable.",
        status="finalized",
    )
    db_session.add(report)
    db_session.commit()
    db_session.refresh(report)
    return report


@pytest.fixture
def make_task(db_session):
    """Insert and commit a task, due one second ago unless told otherwise"""
    def _make_task(type, data, scheduled_for=None, max_retries=3):
        store = TaskStore(db_session)
        task = store.insert(
            type,
            data,
            scheduled_for if scheduled_for is not None else utcnow() - timedelta(seconds=1),
            max_retries=max_retries,
        )
        db_session.commit()
        return task.id
    return _make_task


@pytest.fixture
def appointment_payload(sample_appointment):
    return {
        "appointmentId": sample_appointment.id,
        "patientId": sample_appointment.patient_id,
        "doctorId": sample_appointment.doctor_id,
    }


# Pytest configuration
def pytest_configure(config):
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "unit: mark test as unit test")
