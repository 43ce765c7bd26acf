import json
import logging
import sys

from replybot.logging_config import (
    ConsoleFormatter,
    JSONFormatter,
    bind_logger,
    get_logger,
    mask_secret,
    preview,
)


def make_record(level=logging.INFO, message="Agent reply ready", context=None, exc_info=None) -> logging.LogRecord:
    record = logging.LogRecord("replybot.dispatcher", level, "dispatcher.py", 42, message, None, exc_info)
    if context is not None:
        record.context = context
    return record


class TestJSONFormatter:
    def test_info_line(self):
        line = json.loads(JSONFormatter().format(make_record(context={"conversation_id": "chat-1"})))

        assert line["service"] == "replybot"
        assert line["level"] == "INFO"
        assert line["logger"] == "replybot.dispatcher"
        assert line["message"] == "Agent reply ready"
        assert line["context"] == {"conversation_id": "chat-1"}
        assert "location" not in line
        assert "exception" not in line

    def test_warning_carries_location(self):
        line = json.loads(JSONFormatter(service="worker").format(make_record(level=logging.WARNING)))

        assert line["service"] == "worker"
        assert line["location"] == "dispatcher:42"
        assert "context" not in line

    def test_exception_and_non_ascii(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = make_record(level=logging.ERROR, message="Reply pipeline failed: 你好", exc_info=sys.exc_info())

        output = JSONFormatter().format(record)
        line = json.loads(output)

        assert "你好" in output
        assert "RuntimeError: boom" in line["exception"]


class TestConsoleFormatter:
    def test_context_is_appended(self):
        output = ConsoleFormatter().format(make_record(context={"conversation_id": "chat-1", "segments": 2}))

        assert "replybot.dispatcher: Agent reply ready" in output
        assert output.endswith("conversation_id=chat-1 segments=2")


class TestContextLogger:
    def test_bound_fields_merge_with_call_context(self, caplog):
        log = bind_logger(get_logger("dispatcher"), conversation_id="chat-1", message_id="m1")

        with caplog.at_level(logging.INFO, logger="replybot"):
            log.info("Agent reply ready", context={"message_id": "m2", "segments": 1})

        assert caplog.records[-1].context == {"conversation_id": "chat-1", "message_id": "m2", "segments": 1}

    def test_bind_extends_without_mutating(self, caplog):
        base = bind_logger(get_logger("dispatcher"), conversation_id="chat-1")
        child = base.bind(message_id="m1")

        with caplog.at_level(logging.INFO, logger="replybot"):
            base.info("first")
            child.info("second")

        assert caplog.records[-2].context == {"conversation_id": "chat-1"}
        assert caplog.records[-1].context == {"conversation_id": "chat-1", "message_id": "m1"}

    def test_get_logger_is_namespaced(self):
        assert get_logger("router").name == "replybot.router"


class TestHelpers:
    def test_preview(self):
        assert preview(None) == ""
        assert preview("line one\nline two") == "line one line two"
        assert preview("x" * 60, max_length=10) == "x" * 10 + "..."

    def test_mask_secret(self):
        assert mask_secret(None) == ""
        assert mask_secret("short") == "*****"
        assert mask_secret("sk-1234567890abcd") == "sk-1***abcd"
