"""
================================================================================
UTILS MODULE - Shared Utilities and Helpers
================================================================================

Shared infrastructure used across all application components.

Exported Functions:
    Logging:
        - setup_logging() - Initialize logging infrastructure
        - set_run_context(context) - Set execution context
        - logger - Main application logger

    Configuration:
        - load_config() - Load configuration from config.json
        - set_config_value() - Update one 'section.key' setting
        - get_status() - Read application status
        - update_status() - Update application status
        - mark_run_complete() - Record a finished run

    Files:
        - write_json_locked() / write_text_locked() - filelock-guarded writes

Usage:
    from lot_tracker.utils import logger, load_config
    from lot_tracker.utils.constants import TRANSFER_WINDOW_SECONDS

Last Modified: December 2025
================================================================================
"""

from .logger import setup_logging, set_run_context, logger
from .config import load_config, set_config_value, get_status, update_status, mark_run_complete
from .files import write_json_locked, write_text_locked

__all__ = [
    'setup_logging',
    'set_run_context',
    'logger',
    'load_config',
    'set_config_value',
    'get_status',
    'update_status',
    'mark_run_complete',
    'write_json_locked',
    'write_text_locked',
]
