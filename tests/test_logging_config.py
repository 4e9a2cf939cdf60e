"""
Tests for log formatting.
"""
import json
import logging
from config.logging_config import InstanceFilter, JSONFormatter, StandardFormatter


def make_record(**extra):
    record = logging.LogRecord(
        name="scheduled_tasks.processor",
        level=logging.ERROR,
        pathname=__file__,
        lineno=10,
        msg="[Task %s] failed",
        args=("t-1",),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_includes_task_context(self):
        record = make_record(task_id="t-1", task_type="appointment_reminder", attempt=2)
        InstanceFilter("poller-a").filter(record)

        output = json.loads(JSONFormatter().format(record))

        assert output["message"] == "[Task t-1] failed"
        assert output["level"] == "ERROR"
        assert output["instance_id"] == "poller-a"
        assert output["task_id"] == "t-1"
        assert output["task_type"] == "appointment_reminder"
        assert output["attempt"] == 2

    def test_omits_missing_context(self):
        output = json.loads(JSONFormatter().format(make_record()))
        assert "task_id" not in output


class TestInstanceFilter:
    def test_keeps_explicit_instance(self):
        record = make_record(instance_id="recovery-run")
        assert InstanceFilter("poller-a").filter(record) is True
        assert record.instance_id == "recovery-run"


class TestStandardFormatter:
    def test_appends_task_context(self):
        line = StandardFormatter(fmt="%(levelname)s %(message)s").format(make_record(task_id="t-1", attempt=3))
        assert line.endswith("[Task t-1] failed [task_id=t-1 attempt=3]")

    def test_plain_message_without_context(self):
        line = StandardFormatter(fmt="%(message)s").format(make_record())
        assert line == "[Task t-1] failed"
