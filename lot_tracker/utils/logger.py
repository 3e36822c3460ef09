"""
================================================================================
LOGGER - Unified Logging Configuration
================================================================================

Centralized logging infrastructure for all application contexts.

Logging Contexts:
    - 'cli' - Command-line interface operations
    - 'test' - Unit and integration tests
    - 'imported' - Library/module imports (console only, no log files)

Log Destinations:
    1. File Logs - outputs/logs/{timestamp}.{context}.log
    2. Console Output - stdout
    3. Rotating Backups - 5MB max per file, 5 backup files

Log Format:
    {timestamp} {level} [{context}]: {message}
    Example: 2025-12-16 10:30:45 WARNING [cli]: 2 transfer(s) left unmatched

Usage:
    from lot_tracker.utils.logger import set_run_context, logger

    set_run_context('cli')
    logger.info('Reconciling ledger')

Configuration:
    Logger settings respect LOG_DIR from constants.py

Last Modified: December 2025
================================================================================
"""

import sys
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler

logger = logging.getLogger("lot_tracker")
logger.setLevel(logging.INFO)

# Global run context state
_RUN_CONTEXT = 'imported'

_FORMAT = "%(asctime)s %(levelname)s [%(run_context)s]: %(message)s"


class RunContextFilter(logging.Filter):
    """
    Logging filter that adds run context to all log records
    Allows distinguishing between different execution contexts
    """

    def filter(self, record):
        record.run_context = _RUN_CONTEXT
        return True


def set_run_context(context: str):
    """
    Set the execution context for logging

    Args:
        context: String identifier ('cli', 'test', 'imported')
    """
    global _RUN_CONTEXT
    _RUN_CONTEXT = context

    # Clear existing handlers
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    # Library imports never create log files
    if context != 'imported':
        try:
            from lot_tracker.utils import constants

            constants.LOG_DIR.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
            log_file = constants.LOG_DIR / f"{timestamp}.{context}.log"

            file_handler = RotatingFileHandler(
                str(log_file),
                maxBytes=5_000_000,  # 5MB
                backupCount=5,
                encoding='utf-8'
            )
            file_handler.setLevel(logging.INFO)
            file_handler.setFormatter(logging.Formatter(_FORMAT))
            file_handler.addFilter(RunContextFilter())
            logger.addHandler(file_handler)
        except OSError as e:
            sys.stderr.write(f"File logging disabled: {e}\n")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter(_FORMAT))
    console_handler.addFilter(RunContextFilter())
    logger.addHandler(console_handler)


def setup_logging(context: str = 'imported'):
    """
    Initialize logging for the application

    Args:
        context: Execution context identifier
    """
    set_run_context(context)
    return logger


# Initialize with default context
set_run_context(_RUN_CONTEXT)
