"""
================================================================================
LOT_TRACKER PACKAGE - Cost-Basis Lot Tracking and Reconciliation
================================================================================

Top-level package for the lot-tracking reconciliation engine.

Package Structure:
    lot_tracker/core/   - Models, grouping, lot ledger, history, reports
    lot_tracker/graph/  - Provenance graph, round-trip simplifier, DOT output
    lot_tracker/utils/  - Shared utilities (logging, config, constants)

Pipeline:
    ledger entries -> TransactionGrouper -> LotLedger -> balances + audit trail
    audit trail -> ProvenanceGraphBuilder -> GraphSimplifier -> DOT
    balances -> HistoryProjector -> daily holdings series

Usage:
    from lot_tracker.pipeline import reconcile
    result = reconcile(entries, overrides)

Last Modified: December 2025
================================================================================
"""

__version__ = "2025.1"
