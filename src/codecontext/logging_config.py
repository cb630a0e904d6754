"""
Logging configuration for codecontext.

Console output is split by level (INFO/DEBUG to stdout, WARNING and above to
stderr) and an optional rotating log file is written per process context
(``cli``, ``worker``, ...) under the XDG state directory.
"""

import logging
import logging.handlers
import sys
from typing import Optional

from codecontext.config import Settings, settings

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class _MaxLevelFilter(logging.Filter):
    """Only pass records below a given level."""

    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.max_level


def setup_logging(context: str = "app", config: Optional[Settings] = None) -> None:
    """
    Configure the root logger for a process.

    Args:
        context: Name of the running process, used for the log file name
        config: Settings to read logging options from (defaults to global)

    Raises:
        PermissionError: If the log directory cannot be created
    """
    config = config or settings
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)

    # Re-running setup (e.g. several CLI invocations in one test process)
    # must not stack handlers
    for handler in list(root.handlers):
        if getattr(handler, "_codecontext", False):
            root.removeHandler(handler)
            handler.close()

    handlers: list[logging.Handler] = []

    if config.log_console_enabled:
        if config.log_to_stdout:
            stdout_handler = logging.StreamHandler(sys.stdout)
            stdout_handler.addFilter(_MaxLevelFilter(logging.WARNING))
            handlers.append(stdout_handler)
        if config.log_to_stderr:
            stderr_handler = logging.StreamHandler(sys.stderr)
            stderr_handler.setLevel(logging.WARNING)
            handlers.append(stderr_handler)

    if config.log_file_enabled:
        log_dir = config.log_directory
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / f"{context}.log",
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
        handlers.append(file_handler)

    for handler in handlers:
        handler.setFormatter(formatter)
        handler._codecontext = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    # SQLAlchemy engine logging is controlled by database_echo
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_llm_logger(config: Optional[Settings] = None) -> logging.Logger:
    """
    Get the dedicated logger for LLM prompt/response previews.

    When LLM logging is enabled and file logging is on, records go to
    ``llm/requests.log`` and do not propagate to the root logger.
    """
    config = config or settings
    llm_logger = logging.getLogger("codecontext.llm")

    if (
        config.llm_logging_enabled
        and config.log_file_enabled
        and not llm_logger.handlers
    ):
        llm_dir = config.log_directory / "llm"
        llm_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            llm_dir / "requests.log",
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(
            logging.Formatter(
                fmt="[%(asctime)s] [%(levelname)s] %(message)s",
                datefmt=DATE_FORMAT,
            )
        )
        llm_logger.addHandler(handler)
        llm_logger.setLevel(logging.INFO)
        llm_logger.propagate = False

    return llm_logger
