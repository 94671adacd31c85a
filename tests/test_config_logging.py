"""
Tests for configuration loading and structured logging
"""

import json
import logging
from datetime import date
from decimal import Decimal

from bank_simulator.config import SimulatorConfig, reload_config, get_config
from bank_simulator.logging_config import JSONFormatter, log_action, setup_logging


class TestSimulatorConfig:
    """Test pydantic-settings configuration"""

    def test_defaults(self):
        config = SimulatorConfig()
        assert config.api_port == 8090
        assert config.max_execution_day == 28
        assert config.decimal("sepa_fee") == Decimal("1.50")
        assert config.decimal("swift_fee") == Decimal("25.00")
        assert config.decimal("bill_payment_fee") == Decimal("0.50")

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("BANKSIM_BILL_PAYMENT_FEE", "0.75")
        monkeypatch.setenv("BANKSIM_SETTLE_ON_TARGET_DATE", "false")
        config = reload_config()
        try:
            assert get_config() is config
            assert config.decimal("bill_payment_fee") == Decimal("0.75")
            assert config.settle_on_target_date is False
        finally:
            monkeypatch.delenv("BANKSIM_BILL_PAYMENT_FEE")
            monkeypatch.delenv("BANKSIM_SETTLE_ON_TARGET_DATE")
            reload_config()


class TestStructuredLogging:
    """Test JSON log records"""

    def test_json_formatter_fields(self):
        record = logging.LogRecord("banksim.test", logging.INFO, __file__, 1, "Bill overdue", None, None)
        record.action = "bill_overdue"
        record.resource = "bill:BILL000001"
        record.simulated_date = "2024-03-12"

        entry = json.loads(JSONFormatter().format(record))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "banksim.test"
        assert entry["message"] == "Bill overdue"
        assert entry["action"] == "bill_overdue"
        assert entry["simulated_date"] == "2024-03-12"
        assert "extra" not in entry

    def test_log_action_attaches_fields(self, tmp_path):
        log_file = tmp_path / "banksim.log"
        logger = setup_logging("DEBUG", logger_name="banksim.logtest", log_file=str(log_file))

        log_action(
            logger, "warning", "Standing order skipped",
            action="skip_standing_order", resource="standing_order:SO000001",
            simulated_date=date(2024, 3, 20), extra={"reason": "insufficient funds"}
        )
        for handler in logger.handlers:
            handler.flush()

        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["level"] == "WARNING"
        assert entry["resource"] == "standing_order:SO000001"
        assert entry["simulated_date"] == "2024-03-20"
        assert entry["extra"] == {"reason": "insufficient funds"}

        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)
