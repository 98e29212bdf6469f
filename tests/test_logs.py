"""Tests for structured logging setup."""

import json
import logging

from aztoolkit.logs import JsonFormatter, TextFormatter, setup_logging


def make_record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="aztoolkit.tags",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Tags reconciled",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_extras_promoted(self) -> None:
        """Test that extra fields become top-level keys."""
        output = json.loads(JsonFormatter().format(make_record(scope="/subscriptions/x", Added=2)))

        assert output["message"] == "Tags reconciled"
        assert output["level"] == "INFO"
        assert output["logger"] == "aztoolkit.tags"
        assert output["scope"] == "/subscriptions/x"
        assert output["Added"] == 2
        assert output["timestamp"].endswith("Z")
        assert "pathname" not in output

    def test_non_serializable_values(self) -> None:
        """Test that odd values are stringified instead of failing."""
        output = json.loads(JsonFormatter().format(make_record(required={"a"})))

        assert output["required"] == "{'a'}"


class TestTextFormatter:
    """Tests for TextFormatter."""

    def test_extras_appended(self) -> None:
        line = TextFormatter().format(make_record(scope="/subscriptions/x"))

        assert "Tags reconciled" in line
        assert line.endswith("[scope=/subscriptions/x]")

    def test_no_extras(self) -> None:
        line = TextFormatter().format(make_record())

        assert line.endswith("aztoolkit.tags: Tags reconciled")


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_replaces_handlers(self) -> None:
        root = logging.getLogger()
        saved = list(root.handlers), root.level
        try:
            setup_logging("text", verbose=True)
            setup_logging("json")

            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JsonFormatter)
            assert root.level == logging.INFO
            assert logging.getLogger("azure").level == logging.WARNING
        finally:
            root.handlers[:] = saved[0]
            root.setLevel(saved[1])
