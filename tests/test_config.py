"""
Tests for configuration and structured logging
"""

import json
import logging

import pytest

from token_ledger import config as config_module
from token_ledger.config import TokenLedgerConfig, get_config, reload_config
from token_ledger.errors import InsufficientBalanceError
from token_ledger.ledger import TokenLedger
from token_ledger.logging_config import JSONFormatter, setup_logging, log_action
from token_ledger.storage import InMemoryStorage, SQLiteStorage


class TestConfig:
    """Environment-driven settings"""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("TOKEN_LEDGER_DEPLOYER", raising=False)
        config = TokenLedgerConfig()

        assert config.deployer == "deployer"
        assert config.storage_backend == "memory"
        assert config.token_decimals == 6
        assert config.max_batch_size == 200
        assert config.enable_audit_logging is True

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("TOKEN_LEDGER_DEPLOYER", "issuer")
        monkeypatch.setenv("TOKEN_LEDGER_MAX_BATCH_SIZE", "10")
        monkeypatch.setenv("TOKEN_LEDGER_VERIFY_INVARIANTS", "true")

        config = TokenLedgerConfig()
        assert config.deployer == "issuer"
        assert config.max_batch_size == 10
        assert config.verify_invariants is True

    def test_reload_config(self, monkeypatch):
        original = get_config()
        monkeypatch.setenv("TOKEN_LEDGER_TOKEN_SYMBOL", "RLD")
        try:
            reloaded = reload_config()
            assert reloaded.token_symbol == "RLD"
            assert get_config() is reloaded
        finally:
            config_module.config = original

    def test_ledger_from_config(self, tmp_path):
        config = TokenLedgerConfig(
            deployer="issuer",
            storage_backend="sqlite",
            database_path=str(tmp_path / "configured.db")
        )

        ledger = TokenLedger.from_config(config)
        assert isinstance(ledger.storage, SQLiteStorage)
        assert ledger.get_minter() == "issuer"
        assert ledger.dispatcher is not None
        ledger.storage.close()


class TestStructuredLogging:
    """JSON log records carry the operation context"""

    def test_json_formatter(self):
        record = logging.LogRecord("token_ledger", logging.WARNING, __file__, 1, "burn rejected", (), None)
        record.user_id = "alice"
        record.action = "burn"
        record.error_code = 102

        entry = json.loads(JSONFormatter().format(record))
        assert entry["level"] == "WARNING"
        assert entry["message"] == "burn rejected"
        assert entry["user_id"] == "alice"
        assert entry["error_code"] == 102
        assert "resource" not in entry

    def test_setup_logging(self):
        logger = setup_logging(level="DEBUG", logger_name="token_ledger_setup_test", log_format="text")

        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

        logger = setup_logging(level="INFO", logger_name="token_ledger_setup_test")
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_log_action_respects_level(self, caplog):
        logger = logging.getLogger("token_ledger.test_log_action")
        caplog.set_level(logging.WARNING, logger="token_ledger.test_log_action")

        log_action(logger, "info", "dropped", user_id="alice")
        log_action(logger, "warning", "kept", user_id="alice", action="burn", error_code=102)

        assert [r.getMessage() for r in caplog.records] == ["kept"]
        assert caplog.records[0].error_code == 102

    def test_rejected_operation_is_logged(self, caplog):
        caplog.set_level(logging.INFO, logger="token_ledger.ledger")
        ledger = TokenLedger(InMemoryStorage(), deployer="deployer", config=TokenLedgerConfig())

        with pytest.raises(InsufficientBalanceError):
            ledger.burn("alice", 5)

        rejected = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(rejected) == 1
        assert rejected[0].action == "burn"
        assert rejected[0].user_id == "alice"
        assert rejected[0].error_code == 102
