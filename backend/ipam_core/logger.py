import logging
import sys
import os
from logging.handlers import RotatingFileHandler
from datetime import datetime

from .config import get_settings

settings = get_settings()

# Create custom logger
logger = logging.getLogger("ipam_core")
logger.setLevel(settings.log_level)

# Formatter
formatter = logging.Formatter(
    "%(asctime)s | %(levelname)-8s | %(module)s:%(funcName)s:%(lineno)d | %(message)s"
)

# Console Handler
console_handler = logging.StreamHandler(sys.stdout)
console_handler.setFormatter(formatter)
console_handler.setLevel(settings.log_level)

if not logger.handlers:
    logger.addHandler(console_handler)

    # File Handler (Rotating), only when a log directory is configured
    if settings.log_dir:
        os.makedirs(settings.log_dir, exist_ok=True)
        log_file = os.path.join(settings.log_dir, f"ipam_core_{datetime.now().strftime('%Y-%m-%d')}.log")
        file_handler = RotatingFileHandler(log_file, maxBytes=10*1024*1024, backupCount=5)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(settings.log_level)
        logger.addHandler(file_handler)


def log_operation(operation: str, status: str, details: dict = None):
    """Structured logging for business operations."""
    msg = f"OP: {operation} | STATUS: {status}"
    if details:
        msg += f" | DETAILS: {details}"

    if status == "success":
        logger.info(msg)
    else:
        logger.warning(msg)


def log_database_operation(op_type: str, model: str, status: str, details: dict = None, count: int = None):
    """Structured logging for inventory operations."""
    msg = f"DB: {op_type} {model} | STATUS: {status}"
    if count is not None:
        msg += f" | COUNT: {count}"
    if details:
        msg += f" | DETAILS: {details}"
    logger.info(msg)


def log_allocation_attempt(kind: str, candidate: str, attempt: int, status: str, details: dict = None):
    """One reservation attempt against the inventory."""
    msg = f"ALLOC: {kind} {candidate} | ATTEMPT: {attempt} | STATUS: {status}"
    if details:
        msg += f" | DETAILS: {details}"
    logger.debug(msg)


def log_request(method: str, path: str, status_code: int, duration_ms: float):
    """Log HTTP request details."""
    logger.info(f"REQ: {method} {path} | STATUS: {status_code} | DURATION: {duration_ms:.2f}ms")


def log_error(error: Exception, context: str, details: dict = None):
    """Standardized error logging."""
    msg = f"ERROR in {context}: {str(error)}"
    if details:
        msg += f" | DETAILS: {details}"
    logger.error(msg, exc_info=True)
