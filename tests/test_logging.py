"""
Tests for structured logging setup.
"""
import json
import logging

import pytest
import structlog

from moneyunify_gateway.config import Settings
from moneyunify_gateway.monitoring.logging import get_logger, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    """structlog + python-json-logger configuration."""

    @pytest.mark.unit
    def test_json_lines(self, test_settings: Settings, capsys, restore_logging) -> None:
        setup_logging(test_settings.model_copy(update={"log_json": True, "log_level": "INFO"}))

        get_logger("tests.logging").info("payment_reconciled", order_id="1001", source="sweep")

        line = capsys.readouterr().out.strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["message"] == "payment_reconciled"
        assert payload["order_id"] == "1001"
        assert payload["source"] == "sweep"
        assert payload["severity"] == "INFO"
        assert payload["app_name"] == "moneyunify-gateway-test"

    @pytest.mark.unit
    def test_level_filter(self, test_settings: Settings, capsys, restore_logging) -> None:
        setup_logging(test_settings.model_copy(update={"log_json": True, "log_level": "WARNING"}))

        log = get_logger("tests.logging.level")
        log.info("hidden_event")
        log.warning("visible_event")

        out = capsys.readouterr().out
        assert "hidden_event" not in out
        assert "visible_event" in out

    @pytest.mark.unit
    def test_console_renderer(self, test_settings: Settings, capsys, restore_logging) -> None:
        setup_logging(test_settings.model_copy(update={"log_json": False, "log_level": "INFO"}))

        get_logger("tests.logging.console").info("sweep_started", batch_size=3)

        out = capsys.readouterr().out
        assert "sweep_started" in out
        assert "batch_size=3" in out

    @pytest.mark.unit
    def test_invalid_level_rejected(self) -> None:
        with pytest.raises(ValueError):
            Settings(_env_file=None, log_level="LOUD")
