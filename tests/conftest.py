"""
================================================================================
PYTEST CONFIGURATION
================================================================================

Pytest configuration and shared fixtures for the entire test suite.

Global Fixtures:
    - isolated_paths: Points every constants path at tmp_path (autouse)
    - make_entry: LedgerEntry factory (see test_common.entry)

Test Isolation Strategy:
    constants.BASE_DIR and the derived config/output paths are monkeypatched
    per test, so nothing is ever written to the project directory.

================================================================================
"""
import os
import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path for cli.py and the package
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


def pytest_configure(config):
    """Set environment variables before any test module is imported."""
    os.environ['TEST_MODE'] = '1'
    os.environ['PYTEST_RUNNING'] = '1'


def pytest_unconfigure(config):
    for key in ('TEST_MODE', 'PYTEST_RUNNING'):
        os.environ.pop(key, None)


@pytest.fixture(autouse=True)
def isolated_paths(tmp_path, monkeypatch):
    """Redirect config, status, override and output files into tmp_path."""
    from lot_tracker.utils import constants

    monkeypatch.setattr(constants, 'BASE_DIR', tmp_path)
    monkeypatch.setattr(constants, 'OUTPUT_DIR', tmp_path / 'outputs')
    monkeypatch.setattr(constants, 'LOG_DIR', tmp_path / 'outputs' / 'logs')
    monkeypatch.setattr(constants, 'CONFIG_FILE', tmp_path / 'configs' / 'config.json')
    monkeypatch.setattr(constants, 'STATUS_FILE', tmp_path / 'configs' / 'status.json')
    monkeypatch.setattr(constants, 'OVERRIDES_FILE', tmp_path / 'configs' / 'rate_overrides.json')
    yield tmp_path

    # cli.main() attaches handlers bound to this test's log dir and stdout
    from lot_tracker.utils.logger import logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def make_entry():
    from test_common import entry
    return entry
