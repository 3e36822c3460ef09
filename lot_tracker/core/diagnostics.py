"""
Diagnostics report returned alongside every reconciliation result.

Collects the recoverable conditions of a run: matching failures from the
grouper, dust warnings and applied user rates from the ledger, rejected input
records from the loader and, when requested, graph simplification outcomes.
"""

from dataclasses import dataclass, field
from typing import Dict, List

from lot_tracker.core.grouping import GroupingDiagnostics
from lot_tracker.core.lots import LedgerDiagnostics


@dataclass
class DiagnosticsReport:
    grouping: GroupingDiagnostics = field(default_factory=GroupingDiagnostics)
    ledger: LedgerDiagnostics = field(default_factory=LedgerDiagnostics)
    rejected_records: List[Dict] = field(default_factory=list)
    simplifications: List[Dict] = field(default_factory=list)
    transaction_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def has_warnings(self) -> bool:
        return bool(
            self.grouping.matching_failures
            or self.grouping.missing_ignored_overrides
            or self.ledger.dust_warnings
            or self.rejected_records
        )

    def to_dict(self) -> dict:
        return {
            'transaction_counts': dict(self.transaction_counts),
            'grouping': self.grouping.to_dict(),
            'ledger': self.ledger.to_dict(),
            'rejected_records': [
                {'index': r['index'], 'errors': list(r['errors'])} for r in self.rejected_records
            ],
            'simplifications': list(self.simplifications),
            'has_warnings': self.has_warnings,
        }
