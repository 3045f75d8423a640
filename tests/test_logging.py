# tests/test_logging.py
"""Tests for structured file logging and console helpers."""

import json
import logging
from pathlib import Path
from unittest.mock import patch

import pytest
import structlog

from charge_monitor import logging as cli_log
from charge_monitor.config import Config
from charge_monitor.models import SessionDetail, StopResult
from tests.conftest import make_snapshot


@pytest.fixture
def configured_log(tmp_path: Path):
    """Configure file logging into tmp_path and restore defaults afterwards."""
    config = Config()
    with patch.object(Config, "state_dir", new_callable=lambda: property(lambda self: tmp_path)):
        cli_log.configure(config)
        yield config.log_path
    for handler in logging.getLogger().handlers:
        handler.close()
    logging.getLogger().handlers.clear()
    structlog.reset_defaults()


def read_events(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text().splitlines() if line]


class TestConfigure:
    def test_writes_json_lines(self, configured_log: Path) -> None:
        structlog.get_logger().info("poll_failed", error="timed out")

        events = read_events(configured_log)
        assert len(events) == 1
        event = events[0]
        assert event["event"] == "poll_failed"
        assert event["error"] == "timed out"
        assert event["level"] == "info"
        assert event["source"] == "monitor"
        assert "ts" in event

    def test_debug_is_filtered(self, configured_log: Path) -> None:
        log = structlog.get_logger()
        log.debug("backend_response", status=200)
        log.warning("push_unavailable")

        assert [e["event"] for e in read_events(configured_log)] == ["push_unavailable"]

    def test_stdlib_records_share_format(self, configured_log: Path) -> None:
        """Third-party stdlib loggers land in the same JSON file."""
        logging.getLogger("aiohttp.client").warning("connection reset")

        event = read_events(configured_log)[0]
        assert event["event"] == "connection reset"
        assert event["level"] == "warning"
        assert event["source"] == "monitor"

    def test_configure_replaces_handlers(self, configured_log: Path) -> None:
        assert len(logging.getLogger().handlers) == 1


class TestConsoleHelpers:
    def test_info_has_level_tag(self, capsys) -> None:
        cli_log.info("hello")
        assert "[info] hello" in capsys.readouterr().out

    def test_stop_outcome_success_with_refund(self, capsys) -> None:
        cli_log.stop_outcome(StopResult(success=True, refund_amount=12.5), "₹")
        out = capsys.readouterr().out
        assert "Charging stopped successfully" in out
        assert "₹12.50" in out

    def test_stop_outcome_unverified(self, capsys) -> None:
        cli_log.stop_outcome(StopResult(success=True, stop_success=False), "₹")
        assert "may have failed" in capsys.readouterr().out

    def test_stop_outcome_failure(self, capsys) -> None:
        cli_log.stop_outcome(StopResult(success=False, error="Charger offline"), "₹")
        out = capsys.readouterr().out
        assert "[err]" in out
        assert "Charger offline" in out

    def test_session_summary(self, capsys) -> None:
        cli_log.session_summary(make_snapshot(station_name="Hub", cost=30.0), "₹")
        out = capsys.readouterr().out
        assert "Hub" in out
        assert "₹30.00" in out

    def test_session_detail(self, capsys) -> None:
        cli_log.session_detail(SessionDetail("s-1", refund_amount=5.0), "₹")
        assert "refund ₹5.00" in capsys.readouterr().out
