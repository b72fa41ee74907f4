from loguru import logger
import logging
import re
import sys
import os
from datetime import datetime

# Plex tokens travel as a query parameter or header; never let them reach a log sink
_TOKEN_PATTERN = re.compile(r"(X-Plex-Token[=:]\s*)[^&\s'\"]+", re.IGNORECASE)


def mask_secrets(message):
    return _TOKEN_PATTERN.sub(r"\1***", message)


def _mask_record(record):
    record["message"] = mask_secrets(record["message"])


class _StdlibBridge(logging.Handler):
    """Forward records from libraries using the logging module (plexapi, httpx) into Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(depth=6, exception=record.exc_info).log(level, f"[{record.name}] {record.getMessage()}")


def setup_logger(log_dir="logs", level="INFO"):
    """
    Set up Loguru logger with console and file handlers.
    """
    os.makedirs(log_dir, exist_ok=True)

    # Remove default logger handler to avoid duplicate logs
    logger.remove()
    logger.configure(patcher=_mask_record)

    # Console
    logger.add(
        sys.stdout,
        level=level,
        format="<green>[{time:HH:mm:ss}]</green> <level>{level}</level> | <cyan>{message}</cyan>"
    )

    # File (rotating)
    logger.add(
        os.path.join(log_dir, f"overlay_manager_{datetime.now().strftime('%Y-%m-%d')}.log"),
        rotation="10 MB",
        retention="10 days",
        level="DEBUG",
        encoding="utf-8",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{line} - {message}"
    )

    for name in ("plexapi", "httpx"):
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = [_StdlibBridge()]
        stdlib_logger.propagate = False
        stdlib_logger.setLevel(logging.WARNING)

    logger.info(f"Logging initialized with Loguru (console level {level}, files in {log_dir})")


def get_logger(name=None):
    """
    Get the configured Loguru logger, bound to the calling module's name.
    """
    return logger.bind(module_name=name) if name else logger
