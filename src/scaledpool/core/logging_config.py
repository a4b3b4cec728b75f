"""
scaledpool - Structured Logging Configuration

Every accounting module logs through ``logging.getLogger(__name__)`` and
passes its context in ``extra``::

    logger.info("Deposit token mint", extra={"event": "atoken.mint", "amount": 10})

``setup_logging`` turns those records into one JSON object per line, on
stderr and optionally in a rotating file, so reconciliation runs can be
diffed and aggregated.

Usage:
    from scaledpool.core.logging_config import setup_logging

    logger = setup_logging(name="scaledpool", level="DEBUG", log_file="runs/accounting.json")
"""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any

from pythonjsonlogger import jsonlogger

from .config import get_config

DEFAULT_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter stamping each record with where and when it was emitted.

    Fields added: ``timestamp`` (UTC, ISO 8601), ``level``, ``environment``,
    ``service`` and ``source`` (function, module, line).
    """

    def __init__(
        self,
        fmt: str = DEFAULT_FORMAT,
        timestamp: bool = True,
        environment: Optional[str] = None,
        service_name: str = "scaledpool",
    ):
        super().__init__(fmt=fmt)
        self.timestamp = timestamp
        self.environment = environment or "development"
        self.service_name = service_name

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        # Required fields named in fmt arrive as None
        if self.timestamp and not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        if not log_record.get("level"):
            log_record["level"] = record.levelname.lower()

        log_record["environment"] = self.environment
        log_record["service"] = self.service_name
        log_record["source"] = {
            "function": record.funcName,
            "module": record.module,
            "line": record.lineno,
        }


def _file_handler(
    log_file: str,
    max_bytes: int,
    backup_count: int,
) -> logging.handlers.RotatingFileHandler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        filename=path,
        maxBytes=max_bytes,
        backupCount=backup_count,
    )


def setup_logging(
    name: str = "scaledpool",
    log_file: Optional[str] = None,
    level: Optional[str] = None,
    environment: Optional[str] = None,
    enable_console: bool = True,
    max_bytes: int = 50 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure JSON logging for ``name`` and its child loggers.

    Calling it again replaces the handlers installed by the previous call.
    Unset arguments fall back to ``SCALEDPOOL_LOG_LEVEL``,
    ``SCALEDPOOL_LOG_FILE`` and ``SCALEDPOOL_ENVIRONMENT``.

    Args:
        name: Logger to configure; ``scaledpool`` covers the whole package
        log_file: Rotating JSON log file, created with its directory
        level: Level name applied to the logger and its handlers
        environment: Value of the ``environment`` field
        enable_console: Emit to stderr (stdout is left for command output)
        max_bytes: Rotation size of the log file
        backup_count: Rotated files kept

    Returns:
        The configured logger
    """
    config = get_config()
    level_no = getattr(logging, (level or config.log_level).upper())
    if log_file is None:
        log_file = config.log_file or None

    logger = logging.getLogger(name)
    logger.setLevel(level_no)
    logger.handlers = []

    formatter = CustomJsonFormatter(
        environment=environment or config.environment,
        service_name=name.split(".")[0],
    )

    handlers: list[logging.Handler] = []
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if log_file:
        try:
            handlers.append(_file_handler(log_file, max_bytes, backup_count))
        except OSError as e:
            logger.warning(
                "Could not create file handler for %s: %s",
                log_file,
                e,
                extra={"event": "logging.file_handler_failed"},
            )

    for handler in handlers:
        handler.setLevel(level_no)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_logger(
    name: str,
    log_file: Optional[str] = None,
    level: Optional[str] = None,
) -> logging.Logger:
    """Return ``name``'s logger, configuring it on first use."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        return setup_logging(name=name, log_file=log_file, level=level)
    return logger
