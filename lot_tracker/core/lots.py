"""
================================================================================
LOTS - Lot Ledger and the Subtract Primitive
================================================================================

Replays grouped transactions in date order over per-(wallet, asset) lot
collections and records one BalanceChange per transaction.

Lot Collections:
    balances[wallet][asset] is a deque of Ref ordered by acquisition.
    LIFO consumes from the right end, FIFO from the left end.
    The base asset is never tracked.

Per Transaction:
    Single   amount > 0  -> Create (rate from overrides, if any)
             amount < 0  -> subtract -> [Split] + Remove per consumed piece
             amount == 0 or base asset -> no changes
    Transfer             -> subtract from source wallet -> [Split] + Move per piece
                            (destination lot keeps id, amount, date and rate;
                            lineage gains the incoming entry id)
    Trade    spend base  -> Create at rate = spent / received
             otherwise   -> subtract -> [Split] + Convert per resulting lot
                            amount = round(lot / rate_of_trade, precision)
                            rate   = lot.rate * rate_of_trade
                            dust (received - sum) absorbed so the resulting
                            lots sum exactly to the received amount
                            (dust above dust_tolerance_units x 10^-precision
                            is reported as a DustWarning)

Subtract:
    Removes lots from the consumption end until the request is met. An
    overshooting last lot is split in two: the leftover goes back to the
    consumption end, the consumed piece is returned. Removed lots come back
    oldest first. Requests above the available total raise
    BalanceUnderflowError before anything is touched.

Last Modified: December 2025
================================================================================
"""

import logging
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, localcontext
from typing import Deque, Dict, Iterable, List, Optional, Tuple

from lot_tracker.decimal_utils import (
    decimal_to_str,
    round_decimal,
    significant_fractional_digits,
    working_precision,
)
from lot_tracker.core.errors import (
    BalanceUnderflowError,
    DustCorrectionError,
    LedgerIntegrityError,
    UnknownEnumValueError,
)
from lot_tracker.core.models import (
    INCOME_TYPES,
    Asset,
    BalanceChange,
    ConsumptionOrder,
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
from lot_tracker.core.rate_overrides import RateOverrideProvider
from lot_tracker.core.settings import EngineSettings

logger = logging.getLogger("lot_tracker")

Balances = Dict[str, Dict[Asset, Deque[Ref]]]


class RefIdSequence:
    """Deterministic lot ids: '<lineage head>#<n>' with one counter per run."""

    def __init__(self):
        self._next = 0

    def next_id(self, head: str) -> str:
        self._next += 1
        return f"{head}#{self._next}"


@dataclass(frozen=True)
class SubtractResult:
    removed: Tuple[Ref, ...]
    split: Optional[SplitChange] = None

    @property
    def total(self) -> Decimal:
        return sum((r.amount for r in self.removed), Decimal(0))


def lots_total(lots: Iterable[Ref]) -> Decimal:
    return sum((r.amount for r in lots), Decimal(0))


def subtract(lots: Deque[Ref], amount: Decimal, order: ConsumptionOrder = ConsumptionOrder.LIFO,
             ids: Optional[RefIdSequence] = None, wallet: str = '') -> SubtractResult:
    """
    Remove `amount` worth of lots from the consumption end of `lots`.

    Args:
        lots: Lot collection, mutated in place
        amount: Positive quantity to remove
        order: LIFO (right end) or FIFO (left end)
        ids: Id source for the two pieces of a split lot
        wallet: Recorded on the SplitChange

    Returns:
        SubtractResult with the removed lots oldest first and the split, if any

    Raises:
        BalanceUnderflowError: amount exceeds the collection total
    """
    if order not in (ConsumptionOrder.LIFO, ConsumptionOrder.FIFO):
        raise UnknownEnumValueError(f"Unknown consumption order: {order!r}")
    if amount <= 0:
        raise ValueError(f"subtract amount must be positive, got {amount}")

    ids = ids or RefIdSequence()
    original_total = lots_total(lots)
    if amount > original_total:
        raise BalanceUnderflowError(amount, original_total)

    lifo = order is ConsumptionOrder.LIFO
    pop = lots.pop if lifo else lots.popleft
    push_back = lots.append if lifo else lots.appendleft

    taken: List[Ref] = []
    removed_total = Decimal(0)
    while removed_total < amount:
        lot = pop()
        taken.append(lot)
        removed_total += lot.amount

    split = None
    if removed_total > amount:
        last = taken.pop()
        leftover_amount = removed_total - amount
        leftover = replace(last, ref_id=ids.next_id(last.head), amount=leftover_amount, parents=(last,))
        consumed = replace(last, ref_id=ids.next_id(last.head), amount=last.amount - leftover_amount,
                           parents=(last,))
        push_back(leftover)
        taken.append(consumed)
        split = SplitChange(last, (leftover, consumed), wallet)

    # taken is in consumption order; LIFO pops newest first
    removed = tuple(reversed(taken)) if lifo else tuple(taken)

    if lots_total(lots) + lots_total(removed) != original_total:
        raise LedgerIntegrityError(
            f"subtract lost value: {lots_total(lots)} + {lots_total(removed)} != {original_total}"
        )
    return SubtractResult(removed, split)


@dataclass(frozen=True)
class DustWarning:
    """Rounding remainder above tolerance on a conversion."""
    receive_id: str
    dust: Decimal
    tolerance: Decimal

    def to_dict(self) -> dict:
        return {
            'receive_id': self.receive_id,
            'dust': decimal_to_str(self.dust),
            'tolerance': decimal_to_str(self.tolerance),
        }


@dataclass
class LedgerDiagnostics:
    dust_warnings: List[DustWarning] = field(default_factory=list)
    user_rates_applied: List[str] = field(default_factory=list)
    joins: int = 0

    def to_dict(self) -> dict:
        return {
            'dust_warnings': [w.to_dict() for w in self.dust_warnings],
            'user_rates_applied': list(self.user_rates_applied),
            'joins': self.joins,
        }


class LotLedger:
    """
    Forward replay of transactions over lot collections.

    Usage:
        ledger = LotLedger(settings, overrides)
        changes = ledger.replay(transactions)
        ledger.balances  # {wallet: {Asset: deque[Ref]}}
    """

    def __init__(self, settings: Optional[EngineSettings] = None,
                 overrides: Optional[RateOverrideProvider] = None):
        self.settings = settings or EngineSettings()
        self.overrides = overrides or RateOverrideProvider()
        self.balances: Balances = {}
        self.changes: List[BalanceChange] = []
        self.diagnostics = LedgerDiagnostics()
        self._ids = RefIdSequence()
        self._last_date: Optional[datetime] = None
        self._income_ids = set()

    @property
    def base_asset(self) -> Asset:
        return self.settings.base_asset

    @property
    def order(self) -> ConsumptionOrder:
        return self.settings.consumption_order

    def lots(self, wallet: str, asset: Asset) -> Deque[Ref]:
        return self.balances.setdefault(wallet, {}).setdefault(asset, deque())

    def snapshot(self) -> Dict[str, Dict[Asset, List[Ref]]]:
        """Copy of the balances with lists instead of deques."""
        return {w: {a: list(refs) for a, refs in assets.items()} for w, assets in self.balances.items()}

    def replay(self, transactions: Iterable) -> List[BalanceChange]:
        for tx in transactions:
            self.apply(tx)
        return list(self.changes)

    def apply(self, tx) -> BalanceChange:
        """
        Process one transaction and append its BalanceChange.

        Raises:
            LedgerIntegrityError: transaction older than the previous one
            BalanceUnderflowError: a spend or transfer exceeds the holdings
            UnknownEnumValueError: not a Single/Trade/Transfer
        """
        if isinstance(tx, SingleTransaction):
            handler = self._apply_single
        elif isinstance(tx, TransferTransaction):
            handler = self._apply_transfer
        elif isinstance(tx, TradeTransaction):
            handler = self._apply_trade
        else:
            raise UnknownEnumValueError(f"Unknown transaction variant: {type(tx).__name__}")

        if self._last_date is not None and tx.date < self._last_date:
            raise LedgerIntegrityError(
                f"Transaction at {tx.date.isoformat()} arrives after {self._last_date.isoformat()}"
            )
        self._last_date = tx.date

        change = BalanceChange(tx, tuple(handler(tx)))
        self.changes.append(change)
        return change

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _subtract(self, wallet: str, asset: Asset, amount: Decimal) -> SubtractResult:
        try:
            return subtract(self.lots(wallet, asset), amount, self.order, self._ids, wallet)
        except BalanceUnderflowError as e:
            raise e.with_location(wallet, asset.name)

    def _new_ref(self, lineage, asset: Asset, amount: Decimal, date, rate=None, parents=()) -> Ref:
        lineage = tuple(lineage)
        return Ref(self._ids.next_id(lineage[0]), asset, lineage, amount, date, rate, tuple(parents))

    # ------------------------------------------------------------------
    # Single
    # ------------------------------------------------------------------

    def _apply_single(self, tx: SingleTransaction) -> List:
        entry = tx.entry
        if entry.amount == 0 or entry.asset == self.base_asset:
            return []

        if entry.amount > 0:
            rate = self.overrides.rate_for(entry.global_id)
            if rate is not None:
                self.diagnostics.user_rates_applied.append(entry.global_id)
                logger.info(f"Using user-provided rate {rate} for {entry.global_id}")
            ref = self._new_ref([entry.global_id], entry.asset, entry.amount, entry.date, rate)
            changes = [CreateChange(ref, entry.wallet)]
            if entry.kind in INCOME_TYPES:
                self._income_ids.add(entry.global_id)
            lots = self.lots(entry.wallet, entry.asset)
            if (self.settings.consolidate_unrated_income and rate is None
                    and entry.kind in INCOME_TYPES and lots):
                top = lots[-1] if self.order is ConsumptionOrder.LIFO else lots[0]
                if self._is_unrated_income(top):
                    changes.append(self._join_income(lots, top, ref, entry.wallet))
                    return changes
            lots.append(ref)
            return changes

        result = self._subtract(entry.wallet, entry.asset, -entry.amount)
        changes = [result.split] if result.split else []
        changes.extend(RemoveChange(r, entry.wallet) for r in result.removed)
        return changes

    def _is_unrated_income(self, ref: Ref) -> bool:
        # Moved or converted lots carry non-income ids in their lineage
        return ref.rate is None and all(gid in self._income_ids for gid in ref.lineage)

    def _join_income(self, lots: Deque[Ref], top: Ref, new: Ref, wallet: str) -> JoinChange:
        """Merge a fresh unrated income lot into the unrated income lot at the consumption end."""
        if self.order is ConsumptionOrder.LIFO:
            lots.pop()
        else:
            lots.popleft()
        merged = self._new_ref(top.lineage + new.lineage, top.asset, top.amount + new.amount,
                               top.date, None, (top, new))
        if self.order is ConsumptionOrder.LIFO:
            lots.append(merged)
        else:
            lots.appendleft(merged)
        self.diagnostics.joins += 1
        return JoinChange((top, new), merged, wallet)

    # ------------------------------------------------------------------
    # Transfer
    # ------------------------------------------------------------------

    def _apply_transfer(self, tx: TransferTransaction) -> List:
        source, destination = tx.source, tx.destination
        if source.asset == self.base_asset:
            return []

        result = self._subtract(source.wallet, source.asset, destination.amount)
        changes = [result.split] if result.split else []
        target = self.lots(destination.wallet, destination.asset)
        for lot in result.removed:
            moved = replace(lot, asset=destination.asset, lineage=lot.lineage + (destination.global_id,),
                            parents=(lot,))
            target.append(moved)
            changes.append(MoveChange(moved, source.wallet, destination.wallet))
        return changes

    # ------------------------------------------------------------------
    # Trade
    # ------------------------------------------------------------------

    def _apply_trade(self, tx: TradeTransaction) -> List:
        spend, receive = tx.spend, tx.receive
        rate_of_trade = -spend.amount / receive.amount

        if spend.asset == self.base_asset:
            if receive.asset == self.base_asset:
                return []
            ref = self._new_ref([spend.global_id, receive.global_id], receive.asset, receive.amount,
                                receive.date, rate_of_trade)
            self.lots(receive.wallet, receive.asset).append(ref)
            return [CreateChange(ref, receive.wallet)]

        result = self._subtract(spend.wallet, spend.asset, -spend.amount)
        changes = [result.split] if result.split else []

        converted = self._convert(result.removed, spend, receive, rate_of_trade)
        if receive.asset != self.base_asset:
            self.lots(receive.wallet, receive.asset).extend(to_ref for _, to_ref in converted)
        changes.extend(ConvertChange(sources, to_ref, receive.wallet) for sources, to_ref in converted)
        return changes

    def _convert(self, consumed: Tuple[Ref, ...], spend: LedgerEntry, receive: LedgerEntry,
                 rate_of_trade: Decimal) -> List[Tuple[Tuple[Ref, ...], Ref]]:
        """
        Map consumed lots onto the received asset.

        Returns:
            [(source lots, resulting lot)] whose amounts sum to receive.amount.
            Sources whose converted amount rounded to nothing are attached
            to the first resulting lot.
        """
        precision = max(self.settings.min_trade_precision, significant_fractional_digits(receive.amount))
        # Amounts with many integer digits need more than the default 28 digits
        with localcontext() as ctx:
            ctx.prec = working_precision(receive.amount, precision)
            return self._convert_at(consumed, spend, receive, rate_of_trade, precision)

    def _convert_at(self, consumed: Tuple[Ref, ...], spend: LedgerEntry, receive: LedgerEntry,
                    rate_of_trade: Decimal, precision: int) -> List[Tuple[Tuple[Ref, ...], Ref]]:
        results: List[Ref] = []
        sources: Dict[str, Tuple[Ref, ...]] = {}
        orphans: List[Ref] = []
        for lot in consumed:
            amount = round_decimal(lot.amount / rate_of_trade, precision)
            if amount <= 0:
                orphans.append(lot)
                continue
            rate = None if lot.rate is None else lot.rate * rate_of_trade
            ref = self._new_ref(lot.lineage + (spend.global_id, receive.global_id), receive.asset,
                                amount, receive.date, rate, (lot,))
            results.append(ref)
            sources[ref.ref_id] = (lot,)

        dust = receive.amount - lots_total(results)
        tolerance = self.settings.dust_tolerance_units * Decimal(1).scaleb(-precision)
        if abs(dust) > tolerance:
            self.diagnostics.dust_warnings.append(DustWarning(receive.global_id, dust, tolerance))
            logger.warning(
                f"Conversion dust {dust} {receive.asset.name} on {receive.global_id} exceeds tolerance {tolerance}"
            )

        if dust > 0:
            if not results:
                raise DustCorrectionError(
                    f"No resulting lot to absorb dust {dust} on {receive.global_id}"
                )
            results[0] = replace(results[0], amount=results[0].amount + dust)
        elif dust < 0:
            pool = deque(results)
            removal = subtract(pool, -dust, self.order, self._ids, receive.wallet)
            if removal.split:
                # The consumed piece is dropped; the leftover replaces its original
                original = removal.split.original_ref
                leftover = removal.split.resulting_refs[0]
                pool = deque(replace(leftover, parents=original.parents) if r.ref_id == leftover.ref_id else r
                             for r in pool)
                sources[leftover.ref_id] = sources.pop(original.ref_id)
            for ref in removal.removed:
                orphans.extend(sources.pop(ref.ref_id, ()))
            # subtract puts the leftover back where its original was
            results = list(pool)

        if lots_total(results) != receive.amount:
            raise LedgerIntegrityError(
                f"Converted lots sum to {lots_total(results)}, expected {receive.amount} on {receive.global_id}"
            )

        pairs = [(sources[r.ref_id], r) for r in results]
        if orphans:
            if not pairs:
                raise DustCorrectionError(f"Consumed lots left without a resulting lot on {receive.global_id}")
            first_sources, first_ref = pairs[0]
            pairs[0] = (first_sources + tuple(orphans), first_ref)
        return pairs
