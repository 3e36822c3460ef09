"""
================================================================================
CONSTANTS - System-Wide Configuration Values
================================================================================

Centralized repository for the static values used by the lot tracker.
Organized by functional category.

Constant Categories:
    1. File Paths - Directory and file locations
    2. Ledger Calculation - Precision and matching defaults
    3. Graph Rendering - Colours and shapes for DOT output

Key Constants:

    Ledger Calculation:
        TRANSFER_WINDOW_SECONDS = 86400
            Maximum gap between a withdrawal and its matching deposit
            in a different wallet

        MIN_TRADE_PRECISION = 10
            Lower bound on the fraction digits kept when a lot is converted

        DUST_TOLERANCE_UNITS = 5
            Rounding dust above this many units of the conversion rounding
            step (10^-precision) is reported

File Path Constants:
    All paths are relative to BASE_DIR (current working directory)
    Supports monkeypatching for test isolation

Note:
    Values in this file are STATIC. For runtime-configurable settings,
    use config.json via lot_tracker.utils.config module.

Last Modified: December 2025
================================================================================
"""

from pathlib import Path

# ==========================================
# FILE PATHS
# ==========================================
BASE_DIR = Path.cwd()
OUTPUT_DIR = BASE_DIR / 'outputs'
LOG_DIR = OUTPUT_DIR / 'logs'
CONFIG_FILE = BASE_DIR / 'configs' / 'config.json'
STATUS_FILE = BASE_DIR / 'configs' / 'status.json'
OVERRIDES_FILE = BASE_DIR / 'configs' / 'rate_overrides.json'

# Output file names written by `cli.py run`
BALANCES_FILE_NAME = 'balances.json'
CHANGES_FILE_NAME = 'changes.json'
HISTORY_FILE_NAME = 'history.csv'
DIAGNOSTICS_FILE_NAME = 'diagnostics.json'
GRAPH_FILE_NAME = 'graph.dot'

# ==========================================
# LEDGER CALCULATION CONSTANTS
# ==========================================
BASE_ASSET_NAME = 'EUR'
BASE_ASSET_KIND = 'Fiat'
TRANSFER_WINDOW_SECONDS = 86400  # One day between withdrawal and deposit
MIN_TRADE_PRECISION = 10  # Fraction digits kept on converted lots
DUST_TOLERANCE_UNITS = 5  # Units of the conversion rounding step
HISTORY_ASSET_NAME = 'BTC'
HISTORY_ASSET_KIND = 'Crypto'

# ==========================================
# GRAPH RENDERING
# ==========================================
WALLET_COLORS = [
    '#FF6B6B', '#4ECDC4', '#45B7D1', '#FFA07A', '#98D8C8',
    '#F06292', '#AED581', '#7986CB', '#4DB6AC', '#9575CD',
]
FEE_NODE_COLOR = '#D3D3D3'
FEE_FONT_SIZE = 10
DEFAULT_FONT_SIZE = 14
MAX_COLLAPSES = 100  # Upper bound for repeated round-trip collapsing
