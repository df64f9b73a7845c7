"""
Centralized logging configuration.
Every module gets its logger from here.

LOG_LEVEL and LOG_FILE may be overridden through the environment
(set LOG_FILE to an empty string to log to the console only).
"""
import logging
import logging.handlers
import os
from pathlib import Path
from typing import Any, Dict, MutableMapping, Tuple

from .constants import (
    LOG_LEVEL, LOG_FORMAT, LOG_FILE,
    LOG_MAX_SIZE_MB, LOG_BACKUP_COUNT
)


def setup_logger(name: str = None) -> logging.Logger:
    """
    Get or create a configured logger.

    Usage:
        from config.logging_config import setup_logger
        logger = setup_logger(__name__)
        logger.info("Message here")

    Args:
        name: Logger name. If None, uses 'batch_operations'.

    Returns:
        Configured logging.Logger instance.
    """
    logger = logging.getLogger(name or 'batch_operations')

    # Avoid adding handlers multiple times
    if logger.handlers:
        return logger

    level = os.getenv("LOG_LEVEL", LOG_LEVEL).upper()
    logger.setLevel(getattr(logging, level, logging.INFO))

    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console)

    log_file = os.getenv("LOG_FILE", LOG_FILE)
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=LOG_MAX_SIZE_MB * 1024 * 1024,
            backupCount=LOG_BACKUP_COUNT
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = None) -> logging.Logger:
    """
    Alias for setup_logger for convenience.

    Usage:
        from config.logging_config import get_logger
        logger = get_logger(__name__)
    """
    return setup_logger(name)


class OperationLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with the operation id: ``[Batch:<id>] ...``"""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[Batch:{self.extra['operation_id']}] {msg}", kwargs


def get_operation_logger(logger: logging.Logger, operation_id: str) -> OperationLogAdapter:
    """
    Wrap a module logger so that its records carry the operation id.

    Usage:
        log = get_operation_logger(logger, record.id)
        log.info("chunk 3/10 done")
    """
    extra: Dict[str, Any] = {"operation_id": operation_id}
    return OperationLogAdapter(logger, extra)


# Singleton logger for quick imports
# Usage: from config.logging_config import logger
logger = setup_logger('batch_operations')
