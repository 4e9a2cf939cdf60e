"""
Tests for polling, dispatch and outcome recording.
"""
import json
import time
import pytest
from datetime import timedelta
from conftest import TestingSessionLocal
from clinic.models import Appointment, Report
from notifications.models import Notification
from scheduled_tasks.models import ScheduledTask, TaskType
from scheduled_tasks.processor import TaskProcessor, compute_backoff
from scheduled_tasks.store import TaskStore
from shared_utils.timeutils import utcnow


def reload_task(db_session, task_id):
    db_session.expire_all()
    return db_session.query(ScheduledTask).filter(ScheduledTask.id == task_id).first()


class TestComputeBackoff:
    @pytest.mark.parametrize("retry_count, expected", [(1, 60), (2, 120), (3, 240), (7, 3600)])
    def test_doubles_and_caps(self, retry_count, expected):
        assert compute_backoff(retry_count, 60, 3600) == expected

    def test_zero_base_means_immediate_retry(self):
        assert compute_backoff(2, 0, 3600) == 0


class TestSuccessfulTasks:
    def test_appointment_reminder_completes(self, db_session, processor, make_task, appointment_payload, sample_appointment):
        task_id = make_task(TaskType.APPOINTMENT_REMINDER, appointment_payload)

        summary = processor.process_due_tasks()

        assert summary == {"processed": 1, "errors": 0, "skipped": 0, "recovered": 0, "total": 1}
        task = reload_task(db_session, task_id)
        assert task.status == "completed"
        assert task.error is None
        assert task.processed_at is not None
        assert json.loads(task.result) == {"success": True, "message": "Appointment reminder sent"}

        notification = db_session.query(Notification).one()
        assert notification.user_id == sample_appointment.doctor_id
        assert notification.patient_id == sample_appointment.patient_id
        assert notification.title == "Appointment Reminder Sent"
        assert "Jean Dupont" in notification.message

        appointment = db_session.get(Appointment, sample_appointment.id)
        assert appointment.reminder_sent is True
        assert appointment.reminder_sent_at is not None

        attempts = TaskStore(db_session).list_attempts(task_id)
        assert [(a.attempt_number, a.outcome, a.instance_id) for a in attempts] == [(1, "completed", "test-instance")]

    def test_completed_task_is_not_picked_up_again(self, db_session, processor, make_task, appointment_payload):
        make_task(TaskType.APPOINTMENT_CONFIRMATION, appointment_payload)

        assert processor.process_due_tasks()["processed"] == 1
        assert processor.process_due_tasks()["total"] == 0
        assert db_session.query(Notification).count() == 1

    def test_report_sending_marks_report_sent(self, db_session, processor, make_task, sample_report):
        task_id = make_task(TaskType.REPORT_SENDING, {
            "reportId": sample_report.id,
            "patientId": sample_report.patient_id,
            "doctorId": sample_report.doctor_id,
        })

        processor.process_due_tasks()

        assert reload_task(db_session, task_id).status == "completed"
        report = db_session.get(Report, sample_report.id)
        assert report.sent_to_patient is True
        assert report.sent_date is not None
        assert report.status == "sent"

        notification = db_session.query(Notification).one()
        assert notification.category == "administrative"
        assert notification.action_url == f"/reports/{sample_report.id}"

    def test_medication_reminder(self, db_session, processor, make_task, sample_patient, sample_doctor):
        task_id = make_task(TaskType.MEDICATION_REMINDER, {
            "patientId": sample_patient.id,
            "doctorId": sample_doctor.id,
            "medicationName": "Tacrolimus",
        })

        processor.process_due_tasks()

        assert reload_task(db_session, task_id).status == "completed"
        notification = db_session.query(Notification).one()
        assert notification.category == "medication"
        assert "Tacrolimus" in notification.message

    def test_already_sent_confirmation_is_skipped(self, db_session, processor, make_task, appointment_payload, sample_appointment):
        sample_appointment.confirmation_sent = True
        db_session.commit()
        task_id = make_task(TaskType.APPOINTMENT_CONFIRMATION, appointment_payload)

        processor.process_due_tasks()

        task = reload_task(db_session, task_id)
        assert task.status == "completed"
        assert json.loads(task.result)["skipped"] is True
        assert db_session.query(Notification).count() == 0


class TestFailingTasks:
    def test_missing_appointment_fails_after_three_polls(self, db_session, processor, make_task, sample_patient, sample_doctor):
        task_id = make_task(TaskType.APPOINTMENT_REMINDER, {
            "appointmentId": "does-not-exist",
            "patientId": sample_patient.id,
            "doctorId": sample_doctor.id,
        })

        for expected_retry, expected_status in [(1, "pending"), (2, "pending"), (3, "failed")]:
            summary = processor.process_due_tasks()
            assert summary["errors"] == 1
            task = reload_task(db_session, task_id)
            assert task.retry_count == expected_retry
            assert task.status == expected_status

        assert "Appointment with ID does-not-exist not found" in task.error
        assert processor.process_due_tasks()["total"] == 0

        outcomes = [a.outcome for a in TaskStore(db_session).list_attempts(task_id)]
        assert outcomes == ["retry", "retry", "failed"]

    def test_unknown_type_consumes_a_retry(self, db_session, processor, make_task):
        task_id = make_task("unknown_type", {"foo": "bar"})

        summary = processor.process_due_tasks()

        assert summary["errors"] == 1
        task = reload_task(db_session, task_id)
        assert task.status == "pending"
        assert task.retry_count == 1
        assert task.error == "Unknown task type: unknown_type"

    def test_missing_payload_fields(self, db_session, processor, make_task, sample_appointment):
        task_id = make_task(TaskType.APPOINTMENT_REMINDER, {"appointmentId": sample_appointment.id})

        processor.process_due_tasks()

        task = reload_task(db_session, task_id)
        assert task.retry_count == 1
        assert task.error == "Missing required fields in task data: doctorId, patientId"

    def test_one_failure_does_not_stop_the_batch(self, db_session, processor, make_task, appointment_payload):
        bad = make_task("unknown_type", {"foo": "bar"}, scheduled_for=utcnow() - timedelta(minutes=3))
        confirmation = make_task(TaskType.APPOINTMENT_CONFIRMATION, appointment_payload, scheduled_for=utcnow() - timedelta(minutes=2))
        reminder = make_task(TaskType.APPOINTMENT_REMINDER, appointment_payload, scheduled_for=utcnow() - timedelta(minutes=1))

        summary = processor.process_due_tasks()

        assert summary["total"] == 3
        assert summary["processed"] == 2
        assert summary["errors"] == 1
        assert reload_task(db_session, bad).status == "pending"
        assert reload_task(db_session, confirmation).status == "completed"
        assert reload_task(db_session, reminder).status == "completed"

    def test_handler_side_effects_roll_back_on_failure(self, db_session, processor, make_task, appointment_payload, mocker):
        mocker.patch("scheduled_tasks.handlers.mark_appointment_sent", side_effect=RuntimeError("db write failed"))
        task_id = make_task(TaskType.APPOINTMENT_REMINDER, appointment_payload)

        processor.process_due_tasks()

        task = reload_task(db_session, task_id)
        assert task.status == "pending"
        assert task.error == "db write failed"
        assert db_session.query(Notification).count() == 0

    def test_failed_retry_is_delayed_by_backoff(self, db_session, make_task):
        processor = TaskProcessor(
            session_factory=TestingSessionLocal,
            handler_timeout=None,
            backoff_seconds=60,
            backoff_max_seconds=3600,
            instance_id="test-instance",
        )
        task_id = make_task("unknown_type", {"foo": "bar"})
        now = utcnow()

        processor.process_due_tasks(now=now)

        task = reload_task(db_session, task_id)
        assert task.status == "pending"
        assert task.scheduled_for == now + timedelta(seconds=60)
        assert processor.process_due_tasks(now=now + timedelta(seconds=30))["total"] == 0
        assert processor.process_due_tasks(now=now + timedelta(seconds=61))["total"] == 1

    def test_slow_handler_times_out(self, db_session, make_task, appointment_payload, mocker):
        def slow_dispatch(db, task):
            time.sleep(0.5)
            return {"success": True}

        mocker.patch("scheduled_tasks.processor.dispatch_task", side_effect=slow_dispatch)
        processor = TaskProcessor(
            session_factory=TestingSessionLocal,
            handler_timeout=0.1,
            backoff_seconds=0,
            instance_id="test-instance",
        )
        task_id = make_task(TaskType.APPOINTMENT_REMINDER, appointment_payload)

        summary = processor.process_due_tasks()
        # Let the abandoned handler thread finish before checking the row
        time.sleep(0.8)

        assert summary["errors"] == 1
        task = reload_task(db_session, task_id)
        assert task.status == "pending"
        assert task.retry_count == 1
        assert "timed out" in task.error


class TestRecovery:
    def test_stuck_task_is_recovered_and_processed(self, db_session, processor, make_task, appointment_payload):
        task_id = make_task(TaskType.APPOINTMENT_REMINDER, appointment_payload)
        db_session.query(ScheduledTask).filter(ScheduledTask.id == task_id).update({
            "status": "processing",
            "updated_at": utcnow() - timedelta(minutes=10),
        })
        db_session.commit()

        summary = processor.process_due_tasks()

        assert summary["recovered"] == 1
        assert summary["processed"] == 1
        task = reload_task(db_session, task_id)
        assert task.status == "completed"
        assert task.retry_count == 1

    def test_critical_error_is_reported_in_summary(self, processor, mocker):
        mocker.patch.object(TaskStore, "find_due_batch", side_effect=RuntimeError("database unavailable"))

        summary = processor.process_due_tasks()

        assert summary["critical_error"] == "database unavailable"
        assert summary["processed"] == 0


class TestBatchIsolation:
    def test_task_deleted_after_claim_is_skipped(self, db_session, processor, make_task, sample_patient, sample_doctor, mocker):
        payload = {"patientId": sample_patient.id, "doctorId": sample_doctor.id, "medicationName": "Tacrolimus"}
        deleted_id = make_task(TaskType.MEDICATION_REMINDER, payload, scheduled_for=utcnow() - timedelta(minutes=5))
        kept_id = make_task(TaskType.MEDICATION_REMINDER, payload)
        claim_task = TaskStore.claim_task

        def claim_then_delete(store, task_id, now=None):
            claimed = claim_task(store, task_id, now)
            if task_id == deleted_id:
                # The appointment or report owning the task is removed meanwhile
                other = TestingSessionLocal()
                TaskStore(other).delete(task_id)
                other.commit()
                other.close()
            return claimed

        mocker.patch.object(TaskStore, "claim_task", new=claim_then_delete)

        summary = processor.process_due_tasks()

        assert "critical_error" not in summary
        assert summary["skipped"] == 1
        assert summary["processed"] == 1
        assert reload_task(db_session, deleted_id) is None
        assert reload_task(db_session, kept_id).status == "completed"

    def test_unexpected_error_is_counted_and_batch_continues(self, db_session, processor, make_task, appointment_payload, mocker):
        make_task(TaskType.APPOINTMENT_REMINDER, appointment_payload, scheduled_for=utcnow() - timedelta(minutes=5))
        make_task(TaskType.APPOINTMENT_REMINDER, appointment_payload)
        mocker.patch.object(
            TaskProcessor, "process_single_task", autospec=True, side_effect=[RuntimeError("boom"), True]
        )

        summary = processor.process_due_tasks()

        assert "critical_error" not in summary
        assert summary["errors"] == 1
        assert summary["processed"] == 1
