"""
================================================================================
GROUPING - Re-pair Single-Sided Ledger Rows into Transactions
================================================================================

Exchanges export one row per balance movement. This module pairs those rows
back into logical transactions before the lot ledger replays them.

Pairing Rules:
    Trades:
        Key (wallet, groupId). The first Trade row is buffered; a second row
        with the opposite sign completes Trade(spend=negative, receive=positive).
        A second row with the same sign cannot be paired: the buffered row is
        flushed as Single and the new row takes its place.
        Zero-amount Trade rows are dropped.

    Transfers:
        Crypto Deposit/Withdrawal rows keyed by "<asset> <|amount| to 8 digits>".
        A buffered row of the opposite type and sign matches when:
            - the new row is the incoming (positive) side, or
            - wallets differ and the rows are less than the window apart, or
            - wallets are the same and the timestamps are identical.
        A same-key row that does not match flushes the buffered row as Single
        and replaces it.

    Everything else becomes Single immediately. Rows still buffered at the
    end of the stream are flushed as Single and counted in the diagnostics.

Output:
    Transactions sorted by transaction date (earliest leg), stable on the
    order in which they were formed.

Last Modified: December 2025
================================================================================
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from lot_tracker.decimal_utils import format_amount_key
from lot_tracker.core.errors import LedgerIntegrityError
from lot_tracker.core.models import (
    AssetKind,
    LedgerEntry,
    LedgerEntryType,
    SingleTransaction,
    TradeTransaction,
    TransferTransaction,
)
from lot_tracker.core.rate_overrides import RateOverrideProvider
from lot_tracker.utils.constants import TRANSFER_WINDOW_SECONDS

logger = logging.getLogger("lot_tracker")

TRANSFER_TYPES = (LedgerEntryType.DEPOSIT, LedgerEntryType.WITHDRAWAL)


@dataclass
class GroupingDiagnostics:
    """Recoverable matching failures found while grouping."""
    ignored_entries: List[str] = field(default_factory=list)
    missing_ignored_overrides: List[str] = field(default_factory=list)
    unmatched_transfers: List[str] = field(default_factory=list)
    unmatched_trades: List[str] = field(default_factory=list)
    replaced_transfers: List[str] = field(default_factory=list)
    same_sign_trade_legs: List[str] = field(default_factory=list)
    dropped_zero_trades: List[str] = field(default_factory=list)

    @property
    def matching_failures(self) -> int:
        return (len(self.unmatched_transfers) + len(self.unmatched_trades)
                + len(self.replaced_transfers) + len(self.same_sign_trade_legs))

    def to_dict(self) -> dict:
        return {
            'ignored_entries': list(self.ignored_entries),
            'missing_ignored_overrides': list(self.missing_ignored_overrides),
            'unmatched_transfers': list(self.unmatched_transfers),
            'unmatched_trades': list(self.unmatched_trades),
            'replaced_transfers': list(self.replaced_transfers),
            'same_sign_trade_legs': list(self.same_sign_trade_legs),
            'dropped_zero_trades': list(self.dropped_zero_trades),
            'matching_failures': self.matching_failures,
        }


def transfer_key(entry: LedgerEntry) -> str:
    return f"{entry.asset.name} {format_amount_key(entry.amount)}"


class TransactionGrouper:
    """Single pass pairing of ledger rows into Single/Trade/Transfer."""

    def __init__(self, transfer_window_seconds: int = TRANSFER_WINDOW_SECONDS,
                 overrides: Optional[RateOverrideProvider] = None):
        self.transfer_window_seconds = transfer_window_seconds
        self.overrides = overrides or RateOverrideProvider()
        self.diagnostics = GroupingDiagnostics()

    def _is_transfer_leg(self, entry: LedgerEntry) -> bool:
        return entry.kind in TRANSFER_TYPES and entry.asset.kind is AssetKind.CRYPTO

    def _transfer_matches(self, pending: LedgerEntry, entry: LedgerEntry) -> bool:
        if pending.kind is entry.kind:
            return False
        if (pending.amount > 0) == (entry.amount > 0):
            return False
        if entry.amount > 0:
            return True
        gap = abs((entry.date - pending.date).total_seconds())
        if pending.wallet != entry.wallet:
            return gap < self.transfer_window_seconds
        return gap == 0

    def group(self, entries: Iterable[LedgerEntry]) -> List:
        """
        Pair entries into transactions.

        Returns:
            List of transactions sorted ascending by date. Diagnostics for the
            run are left on self.diagnostics.

        Raises:
            LedgerIntegrityError: two entries share a global id
        """
        self.diagnostics = diag = GroupingDiagnostics()
        entries = list(entries)

        seen = set()
        for entry in entries:
            if entry.global_id in seen:
                raise LedgerIntegrityError(f"Duplicate ledger entry {entry.global_id}")
            seen.add(entry.global_id)

        diag.missing_ignored_overrides = [gid for gid in self.overrides.ignored_ids() if gid not in seen]

        # Stable: equal dates keep input order
        ordered = sorted(entries, key=lambda e: e.date)

        emitted: List[Tuple[int, object]] = []
        pending_transfers: Dict[str, LedgerEntry] = {}
        pending_trades: Dict[Tuple[str, str], LedgerEntry] = {}

        def emit(tx):
            emitted.append((len(emitted), tx))

        for entry in ordered:
            if self.overrides.is_ignored(entry.global_id):
                diag.ignored_entries.append(entry.global_id)
                continue

            if self._is_transfer_leg(entry) and entry.amount != 0:
                key = transfer_key(entry)
                pending = pending_transfers.get(key)
                if pending is not None and self._transfer_matches(pending, entry):
                    del pending_transfers[key]
                    source, destination = (pending, entry) if pending.amount < 0 else (entry, pending)
                    emit(TransferTransaction(source, destination))
                    continue
                if pending is not None:
                    diag.replaced_transfers.append(pending.global_id)
                    emit(SingleTransaction(pending))
                pending_transfers[key] = entry
                continue

            if entry.kind is LedgerEntryType.TRADE:
                if entry.amount == 0:
                    diag.dropped_zero_trades.append(entry.global_id)
                    continue
                key = (entry.wallet, entry.group_id)
                pending = pending_trades.pop(key, None)
                if pending is None:
                    pending_trades[key] = entry
                elif (pending.amount < 0) != (entry.amount < 0):
                    spend, receive = (pending, entry) if pending.amount < 0 else (entry, pending)
                    emit(TradeTransaction(spend, receive))
                else:
                    diag.same_sign_trade_legs.append(pending.global_id)
                    emit(SingleTransaction(pending))
                    pending_trades[key] = entry
                continue

            emit(SingleTransaction(entry))

        for entry in pending_transfers.values():
            diag.unmatched_transfers.append(entry.global_id)
            emit(SingleTransaction(entry))
        for entry in pending_trades.values():
            diag.unmatched_trades.append(entry.global_id)
            emit(SingleTransaction(entry))

        if diag.ignored_entries:
            logger.info(f"Ignored {len(diag.ignored_entries)} entries marked in rate overrides")
        if diag.missing_ignored_overrides:
            logger.warning(
                f"{len(diag.missing_ignored_overrides)} ignore override(s) match no ledger entry: "
                f"{', '.join(diag.missing_ignored_overrides)}"
            )
        if diag.unmatched_transfers or diag.unmatched_trades:
            logger.warning(
                f"Unmatched legs flushed as singles: {len(diag.unmatched_transfers)} transfer(s), "
                f"{len(diag.unmatched_trades)} trade(s)"
            )
        if diag.replaced_transfers or diag.same_sign_trade_legs:
            logger.warning(
                f"Matching failures: {len(diag.replaced_transfers)} replaced transfer leg(s), "
                f"{len(diag.same_sign_trade_legs)} same-sign trade leg(s)"
            )

        emitted.sort(key=lambda item: (item[1].date, item[0]))
        return [tx for _, tx in emitted]
