"""
================================================================================
CORE MODULE - Ledger Model and Lot Accounting
================================================================================

Submodules:
    models         - Asset, LedgerEntry, transactions, Ref and change records
    errors         - LotTrackerError hierarchy
    settings       - EngineSettings built from config.json
    rate_overrides - RateOverrideProvider (user rates and ignored entries)
    serialization  - JSON/CSV loading and dict conversion
    grouping       - TransactionGrouper
    lots           - LotLedger and subtract()
    reports        - balance verification, audit replay, wallet recaps
    history        - HistoryProjector
    diagnostics    - DiagnosticsReport

Usage:
    from lot_tracker.core.grouping import TransactionGrouper
    from lot_tracker.core.lots import LotLedger

Last Modified: December 2025
================================================================================
"""
