"""
================================================================================
PIPELINE - End-to-End Reconciliation
================================================================================

Wires the components in their processing order:

    entries -> TransactionGrouper -> LotLedger -> verify_balances
            -> ReconcileResult(transactions, balances, changes, diagnostics)

build_graph() and build_history() turn a result into the two derived views.
Fatal errors (underflow, integrity, unknown variants) propagate unchanged;
recoverable conditions land in result.diagnostics.

Usage:
    entries, rejected = load_ledger_file(path, on_error='skip')
    result = reconcile(entries, overrides, settings, rejected)
    graph = build_graph(result, simplify=True)
    history = build_history(result)

Last Modified: December 2025
================================================================================
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from lot_tracker.core.diagnostics import DiagnosticsReport
from lot_tracker.core.grouping import TransactionGrouper
from lot_tracker.core.history import HistoryProjector, PortfolioHistoryItem
from lot_tracker.core.lots import LotLedger
from lot_tracker.core.models import Asset, BalanceChange, LedgerEntry, Ref, transaction_kind
from lot_tracker.core.rate_overrides import RateOverrideProvider
from lot_tracker.core.reports import assert_balances_consistent
from lot_tracker.core.settings import EngineSettings
from lot_tracker.graph.builder import ProvenanceGraph, ProvenanceGraphBuilder
from lot_tracker.graph.simplifier import GraphSimplifier

logger = logging.getLogger("lot_tracker")


@dataclass
class ReconcileResult:
    entries: List[LedgerEntry]
    transactions: List
    balances: Dict[str, Dict[Asset, List[Ref]]]
    changes: List[BalanceChange]
    diagnostics: DiagnosticsReport
    settings: EngineSettings = field(default_factory=EngineSettings)
    _entry_index: Dict[str, LedgerEntry] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        self._entry_index = {e.global_id: e for e in self.entries}

    def entry_by_id(self, global_id: str) -> Optional[LedgerEntry]:
        return self._entry_index.get(global_id)


def reconcile(entries: List[LedgerEntry], overrides: Optional[RateOverrideProvider] = None,
              settings: Optional[EngineSettings] = None,
              rejected: Optional[List[Dict]] = None) -> ReconcileResult:
    """
    Group, replay and verify one batch of ledger entries.

    Args:
        entries: Normalized ledger entries, any order
        overrides: User rates and ignored entries
        settings: Engine settings (defaults when omitted)
        rejected: Records the loader skipped, copied into the diagnostics

    Returns:
        ReconcileResult

    Raises:
        BalanceUnderflowError, LedgerIntegrityError, DustCorrectionError,
        UnknownEnumValueError
    """
    settings = settings or EngineSettings()
    overrides = overrides or RateOverrideProvider()
    entries = list(entries)

    logger.info(f"Reconciling {len(entries)} ledger entries ({settings.consumption_order.name})")

    grouper = TransactionGrouper(settings.transfer_window_seconds, overrides)
    transactions = grouper.group(entries)

    ledger = LotLedger(settings, overrides)
    changes = ledger.replay(transactions)
    balances = ledger.snapshot()
    assert_balances_consistent(transactions, balances, settings.base_asset)

    diagnostics = DiagnosticsReport(
        grouping=grouper.diagnostics,
        ledger=ledger.diagnostics,
        rejected_records=list(rejected or []),
        transaction_counts=dict(Counter(transaction_kind(tx) for tx in transactions)),
    )
    if diagnostics.has_warnings:
        logger.warning("Reconciliation finished with warnings, see diagnostics")
    else:
        logger.info(f"Reconciliation finished: {len(transactions)} transactions, {len(changes)} balance changes")

    return ReconcileResult(entries, transactions, balances, changes, diagnostics, settings)


def build_graph(result: ReconcileResult, simplify: Optional[bool] = None) -> ProvenanceGraph:
    """Provenance graph of a result; collapses round trips when simplify (default from settings)."""
    settings = result.settings
    graph = ProvenanceGraphBuilder(settings.base_asset).build(result.changes)
    if simplify is None:
        simplify = settings.simplify_graph
    if simplify:
        outcomes = GraphSimplifier(settings.max_collapses).collapse_all(graph)
        result.diagnostics.simplifications.extend(o.to_dict() for o in outcomes)
        applied = sum(1 for o in outcomes if o.applied)
        logger.info(f"Graph simplification: {applied} of {len(outcomes)} anchor(s) collapsed")
    return graph


def build_history(result: ReconcileResult, asset: Optional[Asset] = None) -> List[PortfolioHistoryItem]:
    projector = HistoryProjector(result.entry_by_id, asset or result.settings.history_asset)
    return projector.project(result.balances)
