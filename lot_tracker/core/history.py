"""
================================================================================
HISTORY - Daily Holdings Series from Final Balances
================================================================================

Reverse-replays the lots of one asset to reconstruct how holdings grew.

Algorithm:
    1. Collect every lot of the tracked asset across wallets, sort by date.
    2. Compute present totals:
           total - sum of lot amounts
           bonus - part of total whose lineage starts at an Interest/Bonus entry
           spent - sum of rate * amount over lots with a known rate
    3. Walk backward over UTC calendar days that have lots. Each snapshot
       holds the totals at the end of that day; the day's lots are then
       peeled off before moving to the previous day.
    4. Return snapshots oldest first.

Output:
    [PortfolioHistoryItem(date, total, bonus, spent), ...]
    history_to_frame() turns the series into a pandas DataFrame, optionally
    forward-filled to one row per calendar day.

Last Modified: December 2025
================================================================================
"""

from dataclasses import dataclass
from datetime import date, timezone
from decimal import Decimal
from typing import Callable, List, Mapping, Optional

import pandas as pd

from lot_tracker.decimal_utils import decimal_to_str
from lot_tracker.core.models import INCOME_TYPES, Asset, LedgerEntry, Ref


@dataclass(frozen=True)
class PortfolioHistoryItem:
    date: date
    total: Decimal
    bonus: Decimal
    spent: Decimal

    def to_dict(self) -> dict:
        return {
            'date': self.date.isoformat(),
            'total': decimal_to_str(self.total),
            'bonus': decimal_to_str(self.bonus),
            'spent': decimal_to_str(self.spent),
        }


def _utc_day(ref: Ref) -> date:
    return ref.date.astimezone(timezone.utc).date()


class HistoryProjector:
    """Builds the daily series for one asset from a final balance map."""

    def __init__(self, get_ledger_by_id: Callable[[str], Optional[LedgerEntry]], asset: Asset):
        self.get_ledger_by_id = get_ledger_by_id
        self.asset = asset

    def _is_bonus(self, ref: Ref) -> bool:
        entry = self.get_ledger_by_id(ref.head)
        return entry is not None and entry.kind in INCOME_TYPES

    def project(self, balances: Mapping) -> List[PortfolioHistoryItem]:
        refs: List[Ref] = []
        for wallet in sorted(balances):
            refs.extend(balances[wallet].get(self.asset, ()))
        refs.sort(key=lambda r: r.date)

        total = sum((r.amount for r in refs), Decimal(0))
        bonus = sum((r.amount for r in refs if self._is_bonus(r)), Decimal(0))
        spent = sum((r.cost for r in refs if r.rate is not None), Decimal(0))

        items = []
        while refs:
            day = _utc_day(refs[-1])
            items.append(PortfolioHistoryItem(day, total, bonus, spent))
            while refs and _utc_day(refs[-1]) >= day:
                ref = refs.pop()
                total -= ref.amount
                if ref.rate is not None:
                    spent -= ref.cost
                if self._is_bonus(ref):
                    bonus -= ref.amount

        items.reverse()
        return items


def history_to_frame(items: List[PortfolioHistoryItem], fill_daily: bool = False) -> pd.DataFrame:
    """
    DataFrame indexed by date with total/bonus/spent columns (Decimal values).

    With fill_daily the index covers every calendar day between the first and
    last snapshot, carrying the previous snapshot forward.
    """
    columns = ['total', 'bonus', 'spent']
    if not items:
        return pd.DataFrame(columns=columns, index=pd.DatetimeIndex([], name='date'))

    df = pd.DataFrame(
        [{'date': pd.Timestamp(i.date), 'total': i.total, 'bonus': i.bonus, 'spent': i.spent} for i in items]
    ).set_index('date')
    if fill_daily:
        full = pd.date_range(df.index.min(), df.index.max(), freq='D', name='date')
        df = df.reindex(full).ffill()
    return df[columns]
