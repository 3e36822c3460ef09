"""
Locked file writers shared by config, status and output files.
"""

import json
import logging
from pathlib import Path
from typing import Any

import filelock

from lot_tracker.decimal_utils import DecimalEncoder

logger = logging.getLogger("lot_tracker")

LOCK_TIMEOUT_SECONDS = 10


def _ensure_parent(target: Path):
    target.parent.mkdir(parents=True, exist_ok=True)


def write_text_locked(target: Path, text: str):
    """Write text to target while holding `<target>.lock`."""
    target = Path(target)
    _ensure_parent(target)
    lock = filelock.FileLock(str(target) + '.lock', timeout=LOCK_TIMEOUT_SECONDS)
    try:
        with lock:
            with open(target, 'w', encoding='utf-8') as f:
                f.write(text)
    except filelock.Timeout:
        logger.error(f"Failed to acquire lock for {target}")
        raise


def write_json_locked(target: Path, data: Any, indent: int = 4):
    """Serialize data (Decimals as strings) and write it under a file lock."""
    write_text_locked(target, json.dumps(data, indent=indent, cls=DecimalEncoder) + '\n')
