"""
Balance verification, audit replay and per-wallet summaries.

verify_balances() recomputes, for every (wallet, asset), the signed sum the
transactions applied and compares it with the lots the ledger holds.
replay_changes() rebuilds a balance map from the BalanceChange list alone.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from lot_tracker.decimal_utils import decimal_to_str
from lot_tracker.core.errors import LedgerIntegrityError, UnknownEnumValueError
from lot_tracker.core.lots import lots_total
from lot_tracker.core.models import (
    Asset,
    BalanceChange,
    ConvertChange,
    CreateChange,
    JoinChange,
    LedgerEntry,
    MoveChange,
    Ref,
    RemoveChange,
    SingleTransaction,
    SplitChange,
    TradeTransaction,
    TransferTransaction,
)

logger = logging.getLogger("lot_tracker")


# ============================================================================
# VERIFICATION
# ============================================================================

def expected_sums(transactions: Iterable, base_asset: Asset) -> Dict[Tuple[str, Asset], Decimal]:
    """Signed amount applied to each non-base (wallet, asset) by the transactions."""
    sums: Dict[Tuple[str, Asset], Decimal] = {}

    def add(wallet, asset, amount):
        if asset == base_asset:
            return
        sums[(wallet, asset)] = sums.get((wallet, asset), Decimal(0)) + amount

    for tx in transactions:
        if isinstance(tx, SingleTransaction):
            add(tx.entry.wallet, tx.entry.asset, tx.entry.amount)
        elif isinstance(tx, TransferTransaction):
            add(tx.source.wallet, tx.source.asset, -tx.destination.amount)
            add(tx.destination.wallet, tx.destination.asset, tx.destination.amount)
        elif isinstance(tx, TradeTransaction):
            add(tx.spend.wallet, tx.spend.asset, tx.spend.amount)
            add(tx.receive.wallet, tx.receive.asset, tx.receive.amount)
        else:
            raise UnknownEnumValueError(f"Unknown transaction variant: {type(tx).__name__}")
    return sums


def verify_balances(transactions: Iterable, balances: Mapping, base_asset: Asset) -> List[dict]:
    """
    Compare lot totals with the transaction sums.

    Returns:
        List of mismatches {'wallet', 'asset', 'expected', 'actual'}; empty when consistent
    """
    expected = expected_sums(transactions, base_asset)
    actual: Dict[Tuple[str, Asset], Decimal] = {}
    for wallet, assets in balances.items():
        for asset, refs in assets.items():
            actual[(wallet, asset)] = lots_total(refs)

    mismatches = []
    for key in sorted(set(expected) | set(actual), key=lambda k: (k[0], k[1].name)):
        exp = expected.get(key, Decimal(0))
        act = actual.get(key, Decimal(0))
        if exp != act:
            mismatches.append({
                'wallet': key[0],
                'asset': key[1].name,
                'expected': decimal_to_str(exp),
                'actual': decimal_to_str(act),
            })
    return mismatches


def assert_balances_consistent(transactions, balances, base_asset: Asset):
    mismatches = verify_balances(transactions, balances, base_asset)
    if mismatches:
        first = mismatches[0]
        raise LedgerIntegrityError(
            f"{len(mismatches)} balance mismatch(es); first {first['wallet']}/{first['asset']}: "
            f"expected {first['expected']}, holds {first['actual']}"
        )


# ============================================================================
# AUDIT REPLAY
# ============================================================================

def _index_of(lots, ref_id: str) -> int:
    for i, r in enumerate(lots):
        if r.ref_id == ref_id:
            return i
    raise LedgerIntegrityError(f"Lot {ref_id} not present during replay")


def replay_changes(changes: Iterable[BalanceChange], base_asset: Asset) -> Dict[str, Dict[Asset, List[Ref]]]:
    """
    Rebuild the balance map from the audit trail only.

    The result equals the ledger's snapshot() for the same run.
    """
    balances: Dict[str, Dict[Asset, deque]] = {}

    def lots(wallet, asset):
        return balances.setdefault(wallet, {}).setdefault(asset, deque())

    def take(wallet, ref):
        collection = lots(wallet, ref.asset)
        del collection[_index_of(collection, ref.ref_id)]

    for bc in changes:
        for change in bc.changes:
            if isinstance(change, CreateChange):
                lots(change.wallet, change.ref.asset).append(change.ref)
            elif isinstance(change, RemoveChange):
                take(change.wallet, change.ref)
            elif isinstance(change, MoveChange):
                take(change.from_wallet, change.ref)
                lots(change.to_wallet, change.ref.asset).append(change.ref)
            elif isinstance(change, SplitChange):
                collection = lots(change.wallet, change.original_ref.asset)
                i = _index_of(collection, change.original_ref.ref_id)
                del collection[i]
                for offset, piece in enumerate(change.resulting_refs):
                    collection.insert(i + offset, piece)
            elif isinstance(change, JoinChange):
                collection = lots(change.wallet, change.resulting_ref.asset)
                i = min(_index_of(collection, r.ref_id) for r in change.original_refs)
                for r in change.original_refs:
                    take(change.wallet, r)
                collection.insert(i, change.resulting_ref)
            elif isinstance(change, ConvertChange):
                for r in change.from_refs:
                    take(change.wallet, r)
                if change.to_ref.asset != base_asset:
                    lots(change.wallet, change.to_ref.asset).append(change.to_ref)
            else:
                raise UnknownEnumValueError(f"Unknown change variant: {type(change).__name__}")

    return compact_balances(balances)


def compact_balances(balances: Mapping) -> Dict[str, Dict[Asset, List[Ref]]]:
    """Copy without empty lot collections or wallets, for comparisons."""
    out = {}
    for wallet, assets in balances.items():
        kept = {asset: list(refs) for asset, refs in assets.items() if refs}
        if kept:
            out[wallet] = kept
    return out


# ============================================================================
# WALLET RECAP
# ============================================================================

@dataclass(frozen=True)
class WalletRecap:
    wallet: str
    lot_count: int
    totals: Dict[str, Decimal] = field(default_factory=dict)


def wallet_recap(balances: Mapping, sort_asset: Optional[Asset] = None) -> List[WalletRecap]:
    """Lot count and per-asset totals for each wallet, largest holding of sort_asset first."""
    recaps = []
    for wallet, assets in balances.items():
        totals = {}
        count = 0
        for asset, refs in assets.items():
            refs = list(refs)
            if not refs:
                continue
            count += len(refs)
            totals[asset.name] = lots_total(refs)
        recaps.append(WalletRecap(wallet, count, totals))

    key_name = sort_asset.name if sort_asset else None
    recaps.sort(key=lambda r: r.wallet)
    if key_name:
        recaps.sort(key=lambda r: r.totals.get(key_name, Decimal(0)), reverse=True)
    return recaps


def wallet_recap_frame(recaps: List[WalletRecap]) -> pd.DataFrame:
    rows = []
    for recap in recaps:
        row = {'wallet': recap.wallet, 'lots': recap.lot_count}
        row.update({name: decimal_to_str(total) for name, total in sorted(recap.totals.items())})
        rows.append(row)
    return pd.DataFrame(rows)


def unmatched_legs_frame(entries: Iterable[LedgerEntry], global_ids: Iterable[str]) -> pd.DataFrame:
    """Ledger rows (by global id) that the grouper could not pair."""
    wanted = set(global_ids)
    rows = [{
        'global_id': e.global_id,
        'wallet': e.wallet,
        'date': e.date.isoformat(),
        'type': e.kind.label,
        'amount': decimal_to_str(e.amount),
        'asset': e.asset.name,
    } for e in entries if e.global_id in wanted]
    return pd.DataFrame(rows, columns=['global_id', 'wallet', 'date', 'type', 'amount', 'asset'])
