"""
Unit tests for configuration module.

Tests configuration loading, path resolution, workflow switches and
validation.
"""

import logging
import os
from pathlib import Path
from unittest.mock import patch

from config import Config, get_config


class TestConfig:
    """Test suite for Config class."""

    def test_default_configuration(self):
        """Test that default configuration values are set correctly."""
        with patch.dict(os.environ, {}, clear=True):
            config = Config()

            assert config.log_level == "INFO"
            assert config.log_file is None
            assert config.server_name == "workorder-workflow-mcp-server"
            assert config.db_timeout_seconds == 5.0
            assert config.allow_direct_resolve is True
            assert config.qa_list_limit == 50

            assert config._repo_root.exists()
            assert config._repo_root.is_dir()

    def test_db_path_from_env_absolute(self):
        test_path = "/absolute/path/to/jobs.db"
        with patch.dict(os.environ, {"WORKORDER_DB": test_path}, clear=True):
            config = Config()
            assert str(config.db_path) == test_path

    def test_db_path_from_env_relative(self):
        """Test a relative WORKORDER_DB is resolved against the repo root."""
        with patch.dict(os.environ, {"WORKORDER_DB": "custom/jobs.db"}, clear=True):
            config = Config()
            assert config.db_path == config._repo_root / "custom" / "jobs.db"

    def test_db_path_from_workorder_root(self):
        with patch.dict(os.environ, {"WORKORDER_ROOT": "/opt/workorders"}, clear=True):
            config = Config()
            assert config.db_path == Path("/opt/workorders") / "data" / "workorders" / "jobs.db"

    def test_db_path_default(self):
        with patch.dict(os.environ, {}, clear=True):
            config = Config()
            assert config.db_path.parts[-3:] == ("data", "workorders", "jobs.db")
            assert config.get_db_path_str() == str(config.db_path)

    def test_log_level_is_upper_cased(self):
        with patch.dict(os.environ, {"WORKORDER_LOG_LEVEL": "debug"}, clear=True):
            assert Config().log_level == "DEBUG"

    def test_log_file_relative(self):
        with patch.dict(os.environ, {"WORKORDER_LOG_FILE": "logs/server.log"}, clear=True):
            config = Config()
            assert config.log_file == config._repo_root / "logs" / "server.log"

    def test_server_name_override(self):
        with patch.dict(os.environ, {"WORKORDER_SERVER_NAME": "custom"}, clear=True):
            assert Config().server_name == "custom"

    def test_get_config_returns_global_instance(self):
        assert get_config() is get_config()


class TestWorkflowSwitches:
    """Test suite for the workflow settings."""

    def test_direct_resolve_can_be_disabled(self):
        for value in ("false", "0", "no", "off"):
            with patch.dict(os.environ, {"WORKORDER_ALLOW_DIRECT_RESOLVE": value}, clear=True):
                assert Config().allow_direct_resolve is False

    def test_direct_resolve_truthy_values(self):
        for value in ("true", "1", "YES", "t"):
            with patch.dict(os.environ, {"WORKORDER_ALLOW_DIRECT_RESOLVE": value}, clear=True):
                assert Config().allow_direct_resolve is True

    def test_db_timeout(self):
        with patch.dict(os.environ, {"WORKORDER_DB_TIMEOUT_SECONDS": "0.5"}, clear=True):
            assert Config().db_timeout_seconds == 0.5

    def test_blank_db_timeout_uses_default(self):
        with patch.dict(os.environ, {"WORKORDER_DB_TIMEOUT_SECONDS": "  "}, clear=True):
            assert Config().db_timeout_seconds == 5.0

    def test_qa_list_limit(self):
        with patch.dict(os.environ, {"WORKORDER_QA_LIST_LIMIT": "20"}, clear=True):
            assert Config().qa_list_limit == 20


class TestValidate:
    """Test suite for configuration warnings."""

    def test_missing_database_warns(self, tmp_path):
        db_path = tmp_path / "missing.db"
        with patch.dict(os.environ, {"WORKORDER_DB": str(db_path)}, clear=True):
            warnings = Config().validate()
        assert any("Database file not found" in w for w in warnings)

    def test_existing_database_has_no_warning(self, tmp_path):
        db_path = tmp_path / "jobs.db"
        db_path.touch()
        with patch.dict(os.environ, {"WORKORDER_DB": str(db_path)}, clear=True):
            assert Config().validate() == []

    def test_bad_numbers_warn(self, tmp_path):
        db_path = tmp_path / "jobs.db"
        db_path.touch()
        env = {
            "WORKORDER_DB": str(db_path),
            "WORKORDER_DB_TIMEOUT_SECONDS": "0",
            "WORKORDER_QA_LIST_LIMIT": "0",
        }
        with patch.dict(os.environ, env, clear=True):
            warnings = Config().validate()
        assert len(warnings) == 2
        assert "WORKORDER_DB_TIMEOUT_SECONDS" in warnings[0]
        assert "WORKORDER_QA_LIST_LIMIT" in warnings[1]

    def test_log_directory_is_created(self, tmp_path):
        db_path = tmp_path / "jobs.db"
        db_path.touch()
        log_file = tmp_path / "logs" / "server.log"
        env = {"WORKORDER_DB": str(db_path), "WORKORDER_LOG_FILE": str(log_file)}
        with patch.dict(os.environ, env, clear=True):
            assert Config().validate() == []
        assert log_file.parent.is_dir()


class TestSetupLogging:
    """Test suite for logging setup."""

    def test_setup_logging_sets_level_and_file(self, tmp_path):
        log_file = tmp_path / "server.log"
        env = {"WORKORDER_LOG_LEVEL": "WARNING", "WORKORDER_LOG_FILE": str(log_file)}
        root_logger = logging.getLogger()
        saved_handlers = root_logger.handlers[:]
        saved_level = root_logger.level
        try:
            with patch.dict(os.environ, env, clear=True):
                Config().setup_logging()
            assert root_logger.level == logging.WARNING
            assert any(isinstance(h, logging.FileHandler) for h in root_logger.handlers)
            assert log_file.exists()
        finally:
            for handler in root_logger.handlers:
                if handler not in saved_handlers:
                    handler.close()
            root_logger.handlers[:] = saved_handlers
            root_logger.setLevel(saved_level)
