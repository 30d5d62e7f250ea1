import json
import logging

from flask import g

from immitracker.middleware.logging_config import (
    JSONFormatter,
    ReadableFormatter,
    RequestContextFilter,
    configure_logging,
)


def _record(msg="Merged %d template(s)", args=(3,), **extra):
    record = logging.LogRecord("immitracker.services.milestone_merge", logging.INFO, __file__, 1,
                               msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_keeps_template_fields():
    record = _record(normalized_key="biometrics_completed", merged_count=3, template_id="t-1")
    entry = json.loads(JSONFormatter().format(record))

    assert entry["message"] == "Merged 3 template(s)"
    assert entry["level"] == "INFO"
    assert entry["normalized_key"] == "biometrics_completed"
    assert entry["merged_count"] == 3
    assert entry["template_id"] == "t-1"
    assert "request_id" not in entry


def test_request_context_filter_tags_records(app):
    with app.test_request_context("/api/v1/milestone-templates"):
        g.request_id = "abc123"
        g.jwt_user_id = "user-1"
        try:
            record = _record()
            assert RequestContextFilter().filter(record) is True
        finally:
            g.pop("request_id", None)
            g.pop("jwt_user_id", None)

    assert record.request_id == "abc123"
    assert record.user_id == "user-1"
    line = ReadableFormatter().format(record)
    assert "[abc123 user=user-1]" in line


def test_filter_outside_request_leaves_record_alone():
    record = _record()
    assert RequestContextFilter().filter(record) is True
    assert getattr(record, "request_id", None) is None


def test_log_format_from_config(app):
    previous = app.config.get("LOG_FORMAT")
    app.config["LOG_FORMAT"] = "json"
    try:
        configure_logging(app)
        assert isinstance(logging.getLogger().handlers[0].formatter, JSONFormatter)
    finally:
        app.config["LOG_FORMAT"] = previous
        configure_logging(app)
