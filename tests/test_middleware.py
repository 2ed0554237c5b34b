"""Logging formatters and rate-limit key."""

import json
import logging

from taskflow.middleware.logging_config import JSONFormatter, ReadableFormatter
from taskflow.middleware.rate_limiter import rate_limit_key


def _record(msg="hello", **extra):
    record = logging.LogRecord("taskflow.test", logging.WARNING, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_core_fields(self):
        entry = json.loads(JSONFormatter().format(_record()))
        assert entry["level"] == "WARNING"
        assert entry["logger"] == "taskflow.test"
        assert entry["message"] == "hello"

    def test_domain_extras_copied(self):
        entry = json.loads(JSONFormatter().format(_record(task_id=7, error_code="ERR_TASK_CLOSED", other="x")))
        assert entry["task_id"] == 7
        assert entry["error_code"] == "ERR_TASK_CLOSED"
        assert "other" not in entry


class TestReadableFormatter:
    def test_duration_suffix(self):
        line = ReadableFormatter().format(_record(duration_ms=12.4))
        assert "taskflow.test: hello [12ms]" in line


class TestRateLimitKey:
    def test_prefers_user_header(self, app):
        with app.test_request_context("/", headers={"X-User-Id": "5"}):
            assert rate_limit_key() == "user:5"

    def test_falls_back_to_ip(self, app):
        with app.test_request_context("/", environ_base={"REMOTE_ADDR": "10.0.0.9"}):
            assert rate_limit_key() == "10.0.0.9"
