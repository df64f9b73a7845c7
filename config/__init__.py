"""
Configuration module for Voucher Batch Operations.

Constants, environment-driven settings and logging helpers.
"""
from .constants import *
from .logging_config import (
    setup_logger,
    get_logger,
    get_operation_logger,
    OperationLogAdapter,
    logger,
)

__all__ = [
    # Logging
    'setup_logger',
    'get_logger',
    'get_operation_logger',
    'OperationLogAdapter',
    'logger',
    # Constants (all exported via *)
]
