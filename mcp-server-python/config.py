"""
Configuration for the work-order workflow MCP server.

Settings come from ``WORKORDER_*`` environment variables, optionally loaded
from a ``.env`` file at the repository root:

    WORKORDER_DB                    database file (absolute or repo-relative)
    WORKORDER_ROOT                  alternative root for data/workorders/jobs.db
    WORKORDER_DB_TIMEOUT_SECONDS    SQLite busy timeout (default 5)
    WORKORDER_LOG_LEVEL             DEBUG, INFO... (default INFO)
    WORKORDER_LOG_FILE              extra log file (absolute or repo-relative)
    WORKORDER_SERVER_NAME           MCP server name
    WORKORDER_ALLOW_DIRECT_RESOLVE  allow correction_assigned -> resolved
    WORKORDER_QA_LIST_LIMIT         default page size of the QA queues
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from db.jobs_store import resolve_db_path

# mcp-server-python/config.py -> repository root
REPO_ROOT = Path(__file__).resolve().parent.parent

load_dotenv(dotenv_path=REPO_ROOT / ".env")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_TRUE_VALUES = ("true", "1", "t", "y", "yes", "on")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return cast(raw.strip())


def _repo_relative(raw: str) -> Path:
    path = Path(raw)
    return path if path.is_absolute() else REPO_ROOT / path


class Config:
    """
    Server settings, read once from the environment at construction.

    A fresh ``Config()`` re-reads the environment; the server and the tool
    handlers share the module-level instance returned by ``get_config()``.
    """

    def __init__(self):
        self._repo_root = REPO_ROOT

        self.db_path: Path = resolve_db_path()
        self.db_timeout_seconds: float = _env_number("WORKORDER_DB_TIMEOUT_SECONDS", 5.0, float)

        self.log_level: str = os.getenv("WORKORDER_LOG_LEVEL", "INFO").upper()
        log_file = os.getenv("WORKORDER_LOG_FILE")
        self.log_file: Optional[Path] = _repo_relative(log_file) if log_file else None

        self.server_name: str = os.getenv("WORKORDER_SERVER_NAME", "workorder-workflow-mcp-server")

        # QA may close a go-back that never had a correction submitted
        self.allow_direct_resolve: bool = _env_bool("WORKORDER_ALLOW_DIRECT_RESOLVE", True)
        self.qa_list_limit: int = _env_number("WORKORDER_QA_LIST_LIMIT", 50, int)

    def setup_logging(self):
        """
        Install stderr (and optional file) handlers on the root logger.

        stdout is reserved for the MCP stdio protocol, so nothing logs there.
        Calling this again replaces the previous handlers.
        """
        level = getattr(logging, self.log_level, logging.INFO)
        formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

        handlers = [logging.StreamHandler()]
        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(self.log_file))

        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        root_logger.setLevel(level)
        for handler in handlers:
            handler.setLevel(level)
            handler.setFormatter(formatter)
            root_logger.addHandler(handler)

        logging.info("Log level %s, database %s", self.log_level, self.db_path)
        if self.log_file:
            logging.info("Logging to file: %s", self.log_file)

    def get_db_path_str(self) -> str:
        return str(self.db_path)

    def validate(self) -> list[str]:
        """Return warnings for settings that will not work as given."""
        warnings = []

        if not self.db_path.exists():
            warnings.append(
                f"Database file not found: {self.db_path}. "
                "It will be created by the first create_job call."
            )
        if self.db_timeout_seconds <= 0:
            warnings.append(
                f"WORKORDER_DB_TIMEOUT_SECONDS must be positive (got {self.db_timeout_seconds})"
            )
        if self.qa_list_limit < 1:
            warnings.append(f"WORKORDER_QA_LIST_LIMIT must be at least 1 (got {self.qa_list_limit})")

        if self.log_file:
            log_dir = self.log_file.parent
            try:
                log_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                warnings.append(f"Cannot create log directory {log_dir}: {e}")
            else:
                if not os.access(log_dir, os.W_OK):
                    warnings.append(f"Log directory not writable: {log_dir}")

        return warnings


config = Config()


def get_config() -> Config:
    """Shared configuration instance."""
    return config
