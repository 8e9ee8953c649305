"""Tests for structlog setup."""

import json

import pytest
import structlog

from querygate.logging import MAX_LOGGED_SQL, get_logger, operation_context, setup_logging


@pytest.mark.unit
class TestSetupLogging:
    def test_setup_without_errors(self):
        setup_logging()

    def test_setup_verbose(self):
        setup_logging(verbose=True)


@pytest.mark.unit
class TestGetLogger:
    def test_get_logger_without_name(self):
        setup_logging()
        assert get_logger() is not None

    def test_get_logger_with_name(self):
        setup_logging()
        assert get_logger("gateway") is not None


@pytest.mark.unit
class TestLogOutput:
    def test_log_to_stderr(self, capsys):
        setup_logging(verbose=True)
        get_logger("gateway").info("query_complete", db="sqlite")

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "query_complete" in captured.err

    def test_debug_filtered_when_not_verbose(self, capsys):
        setup_logging(verbose=False)
        get_logger().debug("cache_hit", key="schemas")

        captured = capsys.readouterr()
        assert "cache_hit" not in captured.err


def _json_lines(err: str) -> list[dict]:
    return [json.loads(line) for line in err.splitlines() if line.startswith("{")]


@pytest.mark.unit
class TestJsonOutput:
    def test_one_object_per_event(self, capsys):
        setup_logging(json_logs=True)
        get_logger("gateway").info("pool_opened", db="postgresql")

        (event,) = _json_lines(capsys.readouterr().err)
        assert event["event"] == "pool_opened"
        assert event["db"] == "postgresql"
        assert event["logger"] == "gateway"
        assert event["level"] == "info"

    def test_long_sql_shortened(self, capsys):
        setup_logging(json_logs=True)
        sql = "SELECT   a\n  FROM t WHERE x = '" + "y" * (MAX_LOGGED_SQL * 2) + "'"
        get_logger().info("query_start", sql=sql)

        (event,) = _json_lines(capsys.readouterr().err)
        assert event["sql"].startswith("SELECT a FROM t WHERE")
        assert event["sql"].endswith("...")
        assert len(event["sql"]) == MAX_LOGGED_SQL + 3


@pytest.mark.unit
class TestOperationContext:
    def test_bound_inside_block_only(self, capsys):
        setup_logging(json_logs=True)
        with operation_context("mysql", "get_indexes"):
            structlog.get_logger().info("pool_opened")
        structlog.get_logger().info("pool_closed")

        inside, outside = _json_lines(capsys.readouterr().err)
        assert (inside["db"], inside["op"]) == ("mysql", "get_indexes")
        assert "op" not in outside
        assert "db" not in outside
