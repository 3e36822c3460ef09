"""
Configuration Management Module

Handles loading, validating, and updating application configuration from config.json
Supports merging with defaults and a run status file
"""

import copy
import json
from pathlib import Path
from datetime import datetime
from typing import Optional
import logging

from .files import write_json_locked

logger = logging.getLogger("lot_tracker")


DEFAULT_CONFIG = {
    "accounting": {
        "base_asset": {"name": "EUR", "type": "Fiat"},
        "consumption_order": "LIFO",  # LIFO or FIFO
        "min_trade_precision": 10,
        "dust_tolerance_units": 5,
        "consolidate_unrated_income": False,
    },
    "matching": {
        "transfer_window_seconds": 86400,
    },
    "history": {
        "asset": {"name": "BTC", "type": "Crypto"},
        "fill_daily": False,
    },
    "graph": {
        "simplify": False,
        "max_collapses": 100,
    },
}


def default_config() -> dict:
    """Fresh copy of the built-in defaults."""
    return copy.deepcopy(DEFAULT_CONFIG)


def load_config(config_file: Optional[Path] = None):
    """
    Load configuration from config.json with sensible defaults

    Args:
        config_file: Override for the configured CONFIG_FILE path

    Returns:
        dict: Configuration dictionary
    """
    if config_file is None:
        from .constants import CONFIG_FILE
        config_file = CONFIG_FILE
    config_file = Path(config_file)

    defaults = default_config()

    if not config_file.exists():
        _save_config(config_file, defaults)
        return defaults

    try:
        with open(config_file, 'r') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Config file corrupted: {e}. Using defaults.")
        return defaults

    # Merge with defaults to ensure all keys exist
    merged = _deep_merge(defaults, config)

    # Save merged config back if anything was added
    if merged != config:
        _save_config(config_file, merged)

    return merged


def _deep_merge(defaults: dict, override: dict) -> dict:
    """
    Deep merge override config into defaults, preserving new defaults

    Args:
        defaults: Default configuration
        override: User-provided configuration

    Returns:
        dict: Merged configuration
    """
    result = defaults.copy()
    for key, value in override.items():
        if key in defaults and isinstance(defaults[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(defaults[key], value)
        else:
            result[key] = value
    return result


def _save_config(config_file: Path, config: dict):
    """
    Save configuration to file

    Args:
        config_file: Path to config file
        config: Configuration dictionary
    """
    try:
        write_json_locked(config_file, config)
    except OSError as e:
        logger.error(f"Failed to save config: {e}")


def set_config_value(dotted_key: str, raw_value: str, config_file: Optional[Path] = None) -> dict:
    """
    Update one setting addressed as 'section.key' and persist it.

    The raw value is parsed as JSON when possible, so `true`, `5` and
    `{"name": "USD", "type": "Fiat"}` keep their types.
    """
    parts = dotted_key.split('.')
    if len(parts) < 2:
        raise KeyError(f"Expected 'section.key', got '{dotted_key}'")

    config = load_config(config_file)
    try:
        value = json.loads(raw_value)
    except json.JSONDecodeError:
        value = raw_value

    node = config
    for part in parts[:-1]:
        if not isinstance(node.get(part), dict):
            raise KeyError(f"Unknown config section: {part}")
        node = node[part]
    if parts[-1] not in node:
        raise KeyError(f"Unknown config key: {dotted_key}")
    node[parts[-1]] = value

    if config_file is None:
        from .constants import CONFIG_FILE
        config_file = CONFIG_FILE
    _save_config(Path(config_file), config)
    return config


def get_status():
    """
    Get system status including timestamps

    Returns:
        dict: Status dictionary with last_run, last_run_success, etc.
    """
    from .constants import STATUS_FILE

    default_status = {
        'last_run': None,
        'last_run_success': False,
        'last_ledger': None,
    }

    if not STATUS_FILE.exists():
        return default_status

    try:
        with open(STATUS_FILE, 'r') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        logger.warning(f"Status file corrupted: {e}")
        return default_status


def update_status(key: str, value):
    """
    Update a specific status key

    Args:
        key: Status key to update
        value: New value
    """
    from .constants import STATUS_FILE

    status = get_status()
    status[key] = value

    try:
        write_json_locked(STATUS_FILE, status)
    except OSError as e:
        logger.error(f"Failed to update status: {e}")


def mark_run_complete(success: bool = True, ledger: Optional[str] = None):
    """Mark that a reconciliation run completed"""
    update_status('last_run', datetime.now().isoformat())
    update_status('last_run_success', success)
    if ledger is not None:
        update_status('last_ledger', ledger)
