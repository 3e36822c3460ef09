"""
================================================================================
LOT LEDGER TESTS
================================================================================

Covers the subtract primitive and the LotLedger replay:
    - LIFO/FIFO consumption, splits and underflow
    - Create/Remove/Move/Convert records per transaction kind
    - Conversion dust correction
    - Income consolidation (Join)
    - Sum invariant over every prefix, idempotence and audit replay

================================================================================
"""

from collections import deque
from decimal import Decimal

import pytest

from lot_tracker.core.errors import (
    BalanceUnderflowError,
    LedgerIntegrityError,
    UnknownEnumValueError,
)
from lot_tracker.core.grouping import TransactionGrouper
from lot_tracker.core.lots import LotLedger, RefIdSequence, lots_total, subtract
from lot_tracker.core.models import (
    ConsumptionOrder,
    ConvertChange,
    CreateChange,
    JoinChange,
    MoveChange,
    Ref,
    RemoveChange,
    SingleTransaction,
    SplitChange,
    TradeTransaction,
    TransferTransaction,
)
from lot_tracker.core.rate_overrides import RateOverride, RateOverrideProvider
from lot_tracker.core.reports import compact_balances, replay_changes, verify_balances
from lot_tracker.core.serialization import changes_to_json
from lot_tracker.core.settings import EngineSettings
from test_common import BTC, ETH, EUR, ShadowSums, at, entry


def lot(ref_id, amount, rate=None, t=0):
    return Ref(ref_id, BTC, (ref_id,), Decimal(amount), at(t), None if rate is None else Decimal(rate))


def run(entries, settings=None, overrides=None):
    transactions = TransactionGrouper(overrides=overrides).group(entries)
    ledger = LotLedger(settings, overrides)
    changes = ledger.replay(transactions)
    return ledger, changes, transactions


def scenario_a():
    return [
        entry('W', '1', 'Deposit', '1000', EUR, t=0),
        entry('W', '2', 'Trade', '-1000', EUR, t=100, group='t1'),
        entry('W', '3', 'Trade', '0.05', BTC, t=100, group='t1'),
    ]


def scenario_b():
    return scenario_a() + [
        entry('W', '4', 'Trade', '-0.02', BTC, t=200, group='t2'),
        entry('W', '5', 'Trade', '500', EUR, t=200, group='t2'),
    ]


def scenario_c():
    return scenario_b() + [
        entry('W', '6', 'Withdrawal', '-0.03', BTC, t=300),
        entry('C', '7', 'Deposit', '0.03', BTC, t=300),
    ]


class TestSubtract:
    """subtract() on a bare lot collection."""

    def test_lifo_takes_newest_and_splits(self):
        lots = deque([lot('a', '1'), lot('b', '2'), lot('c', '3')])
        result = subtract(lots, Decimal('4'), ConsumptionOrder.LIFO, RefIdSequence(), 'W')

        assert [r.amount for r in lots] == [Decimal('1'), Decimal('1')]
        assert [r.head for r in result.removed] == ['b', 'c']
        assert result.removed[0].amount == Decimal('1')
        assert result.total == Decimal('4')
        assert isinstance(result.split, SplitChange)
        assert result.split.original_ref.ref_id == 'b'
        leftover, consumed = result.split.resulting_refs
        assert lots[-1] == leftover
        assert result.removed[0] == consumed

    def test_fifo_takes_oldest_and_splits(self):
        lots = deque([lot('a', '1'), lot('b', '2'), lot('c', '3')])
        result = subtract(lots, Decimal('2.5'), ConsumptionOrder.FIFO, RefIdSequence(), 'W')

        assert [r.amount for r in lots] == [Decimal('0.5'), Decimal('3')]
        assert [r.head for r in result.removed] == ['a', 'b']
        assert [r.amount for r in result.removed] == [Decimal('1'), Decimal('1.5')]

    def test_exact_amount_has_no_split(self):
        lots = deque([lot('a', '1'), lot('b', '2')])
        result = subtract(lots, Decimal('2'))
        assert result.split is None
        assert [r.ref_id for r in result.removed] == ['b']
        assert list(lots) == [lot('a', '1')]

    def test_split_pieces_get_fresh_ids(self):
        lots = deque([lot('a', '1')])
        result = subtract(lots, Decimal('0.25'), ids=RefIdSequence())
        leftover, consumed = result.split.resulting_refs
        assert len({'a', leftover.ref_id, consumed.ref_id}) == 3
        assert leftover.amount + consumed.amount == Decimal('1')
        assert leftover.parents == (lot('a', '1'),)

    def test_conservation(self):
        lots = deque([lot('a', '0.3'), lot('b', '0.7'), lot('c', '0.11')])
        before = lots_total(lots)
        result = subtract(lots, Decimal('0.77'))
        assert lots_total(lots) + result.total == before
        assert all(r.amount > 0 for r in list(lots) + list(result.removed))

    def test_underflow_leaves_collection_untouched(self):
        lots = deque([lot('a', '0.03')])
        with pytest.raises(BalanceUnderflowError) as exc:
            subtract(lots, Decimal('0.10'))
        assert exc.value.requested == Decimal('0.10')
        assert exc.value.available == Decimal('0.03')
        assert list(lots) == [lot('a', '0.03')]

    def test_non_positive_amount(self):
        with pytest.raises(ValueError):
            subtract(deque([lot('a', '1')]), Decimal('0'))

    def test_unknown_order(self):
        with pytest.raises(UnknownEnumValueError):
            subtract(deque([lot('a', '1')]), Decimal('1'), 'LIFO')


class TestScenarios:
    """End-to-end balances for the reference scenarios."""

    def test_scenario_a_trade_creates_rate(self):
        ledger, changes, _ = run(scenario_a())
        lots = ledger.snapshot()['W'][BTC]
        assert len(lots) == 1
        assert lots[0].amount == Decimal('0.05')
        assert lots[0].rate == Decimal('20000')
        assert lots[0].lineage == ('W-2', 'W-3')
        # The EUR deposit is a Single with no lot changes
        assert changes[0].changes == ()
        assert isinstance(changes[1].changes[0], CreateChange)

    def test_scenario_b_partial_consumption(self):
        ledger, changes, _ = run(scenario_b())
        lots = ledger.snapshot()['W'][BTC]
        assert [(r.amount, r.rate) for r in lots] == [(Decimal('0.03'), Decimal('20000'))]

        trade = changes[-1]
        assert isinstance(trade.transaction, TradeTransaction)
        split, convert = trade.changes
        assert isinstance(split, SplitChange)
        assert isinstance(convert, ConvertChange)
        assert convert.to_ref.asset == EUR
        assert convert.to_ref.amount == Decimal('500')
        assert convert.from_refs == (split.resulting_refs[1],)

    def test_scenario_c_transfer_moves_lot_intact(self):
        ledger, changes, transactions = run(scenario_c())
        assert isinstance(transactions[-1], TransferTransaction)

        balances = ledger.snapshot()
        assert balances['W'][BTC] == []
        moved = balances['C'][BTC]
        assert len(moved) == 1
        assert moved[0].amount == Decimal('0.03')
        assert moved[0].rate == Decimal('20000')
        assert moved[0].lineage[-1] == 'C-7'
        assert moved[0].lineage[:2] == ('W-2', 'W-3')

        move = changes[-1].changes
        assert len(move) == 1 and isinstance(move[0], MoveChange)
        assert (move[0].from_wallet, move[0].to_wallet) == ('W', 'C')

    def test_scenario_d_underflow_is_fatal(self):
        entries = scenario_b() + [entry('W', '8', 'Fee', '-0.10', BTC, t=400)]
        with pytest.raises(BalanceUnderflowError) as exc:
            run(entries)
        assert exc.value.wallet == 'W'
        assert exc.value.asset == 'BTC'
        assert exc.value.available == Decimal('0.03')


class TestLedgerTransactions:
    """Per-kind behaviour of LotLedger.apply."""

    def test_withdrawal_removes_lots(self):
        ledger, changes, _ = run([
            entry('W', '1', 'Deposit', '1'),
            entry('W', '2', 'Withdrawal', '-0.4', t=10),
        ])
        split, remove = changes[-1].changes
        assert isinstance(split, SplitChange)
        assert isinstance(remove, RemoveChange)
        assert remove.ref.amount == Decimal('0.4')
        assert lots_total(ledger.lots('W', BTC)) == Decimal('0.6')

    def test_base_asset_and_zero_amounts_are_ignored(self):
        ledger, changes, _ = run([
            entry('W', '1', 'Deposit', '100', EUR),
            entry('W', '2', 'Interest', '0'),
        ])
        assert all(bc.changes == () for bc in changes)
        assert compact_balances(ledger.balances) == {}

    def test_user_rate_applied_on_create(self):
        overrides = RateOverrideProvider({'W-1': RateOverride(rate=Decimal('30000'))})
        ledger, _, _ = run([entry('W', '1', 'Deposit', '0.1')], overrides=overrides)
        assert ledger.lots('W', BTC)[0].rate == Decimal('30000')
        assert ledger.diagnostics.user_rates_applied == ['W-1']

    def test_crypto_to_crypto_conversion(self):
        ledger, changes, _ = run(scenario_a() + [
            entry('W', '4', 'Trade', '-0.05', BTC, t=200, group='t2'),
            entry('W', '5', 'Trade', '2', ETH, t=200, group='t2'),
        ])
        eth = ledger.lots('W', ETH)
        assert len(eth) == 1
        assert eth[0].amount == Decimal('2')
        # 20000 EUR/BTC * 0.025 BTC/ETH
        assert eth[0].rate == Decimal('500')
        assert eth[0].lineage == ('W-2', 'W-3', 'W-4', 'W-5')
        assert lots_total(ledger.lots('W', BTC)) == 0

    def test_transfer_of_several_lots(self):
        ledger, changes, _ = run([
            entry('A', '1', 'Deposit', '0.1', t=0),
            entry('A', '2', 'Interest', '0.2', t=10),
            entry('A', '3', 'Withdrawal', '-0.25', t=20),
            entry('B', '4', 'Deposit', '0.25', t=30),
        ])
        moves = [c for c in changes[-1].changes if isinstance(c, MoveChange)]
        assert [m.ref.amount for m in moves] == [Decimal('0.05'), Decimal('0.2')]
        assert lots_total(ledger.lots('A', BTC)) == Decimal('0.05')
        assert lots_total(ledger.lots('B', BTC)) == Decimal('0.25')

    def test_fifo_consumes_oldest(self):
        entries = [
            entry('W', '1', 'Deposit', '0.1', t=0),
            entry('W', '2', 'Deposit', '0.2', t=10),
            entry('W', '3', 'Fee', '-0.1', t=20),
        ]
        lifo, _, _ = run(entries)
        fifo, _, _ = run(entries, EngineSettings(consumption_order=ConsumptionOrder.FIFO))
        assert [r.head for r in lifo.lots('W', BTC)] == ['W-1', 'W-2']
        assert [r.amount for r in lifo.lots('W', BTC)] == [Decimal('0.1'), Decimal('0.1')]
        assert [r.head for r in fifo.lots('W', BTC)] == ['W-2']

    def test_out_of_order_transaction(self):
        ledger = LotLedger()
        ledger.apply(SingleTransaction(entry('W', '1', 'Deposit', '1', t=100)))
        with pytest.raises(LedgerIntegrityError):
            ledger.apply(SingleTransaction(entry('W', '2', 'Deposit', '1', t=0)))

    def test_unknown_transaction_variant(self):
        with pytest.raises(UnknownEnumValueError):
            LotLedger().apply(object())


class TestDustCorrection:
    """Converted lots always sum exactly to the received amount."""

    def three_lots(self, receive):
        return [
            entry('W', '1', 'Deposit', '0.1', t=0),
            entry('W', '2', 'Deposit', '0.1', t=1),
            entry('W', '3', 'Deposit', '0.1', t=2),
            entry('W', '4', 'Trade', '-0.3', BTC, t=10, group='x'),
            entry('W', '5', 'Trade', receive, ETH, t=10, group='x'),
        ]

    def test_positive_dust_goes_to_first_result(self):
        ledger, changes, _ = run(self.three_lots('1'))
        eth = list(ledger.lots('W', ETH))
        assert lots_total(eth) == Decimal('1')
        assert eth[0].amount == Decimal('0.3333333334')
        assert eth[1].amount == Decimal('0.3333333333')
        assert ledger.diagnostics.dust_warnings == []

    def test_negative_dust_is_taken_back(self):
        ledger, changes, _ = run(self.three_lots('2'))
        eth = list(ledger.lots('W', ETH))
        assert lots_total(eth) == Decimal('2')
        assert len(eth) == 3
        converts = [c for c in changes[-1].changes if isinstance(c, ConvertChange)]
        assert len(converts) == 3
        assert sum(len(c.from_refs) for c in converts) == 3

    def test_dust_above_tolerance_is_reported(self):
        settings = EngineSettings(dust_tolerance_units=0)
        ledger, _, _ = run(self.three_lots('1'), settings)
        assert len(ledger.diagnostics.dust_warnings) == 1
        warning = ledger.diagnostics.dust_warnings[0]
        assert warning.receive_id == 'W-5'
        assert warning.dust == Decimal('1E-10')

    def test_tolerance_scales_with_rounding_step(self):
        entries = [entry('W', str(i), 'Deposit', '0.1', t=i) for i in range(1, 13)]
        entries += [
            entry('W', '13', 'Trade', '-1.2', BTC, t=20, group='x'),
            entry('W', '14', 'Trade', '1', ETH, t=20, group='x'),
        ]
        ledger, _, _ = run(entries, EngineSettings(dust_tolerance_units=1))
        assert lots_total(ledger.lots('W', ETH)) == Decimal('1')
        assert len(ledger.diagnostics.dust_warnings) == 1
        warning = ledger.diagnostics.dust_warnings[0]
        assert warning.dust == Decimal('4E-10')
        assert warning.tolerance == Decimal('1E-10')

    def test_amounts_wider_than_context(self):
        entries = [
            entry('W', '1', 'Deposit', '1', t=0),
            entry('W', '2', 'Trade', '-1', BTC, t=10, group='x'),
            entry('W', '3', 'Trade', '123456789012345678901', EUR, t=10, group='x'),
        ]
        ledger, changes, _ = run(entries)
        assert lots_total(ledger.lots('W', EUR)) == Decimal('123456789012345678901')
        converts = [c for c in changes[-1].changes if isinstance(c, ConvertChange)]
        assert sum(c.to_ref.amount for c in converts) == Decimal('123456789012345678901')


class TestIncomeConsolidation:
    """Unrated income lots merge when consolidation is enabled."""

    def entries(self):
        return [
            entry('W', '1', 'Interest', '0.001', t=0),
            entry('W', '2', 'Interest', '0.002', t=10),
            entry('W', '3', 'Bonus', '0.003', t=20),
        ]

    def test_disabled_by_default(self):
        ledger, _, _ = run(self.entries())
        assert len(ledger.lots('W', BTC)) == 3

    def test_join_merges_into_one_lot(self):
        settings = EngineSettings(consolidate_unrated_income=True)
        ledger, changes, _ = run(self.entries(), settings)
        lots = ledger.lots('W', BTC)
        assert len(lots) == 1
        assert lots[0].amount == Decimal('0.006')
        assert lots[0].lineage == ('W-1', 'W-2', 'W-3')
        assert lots[0].date == at(0)
        assert ledger.diagnostics.joins == 2

        create, join = changes[1].changes
        assert isinstance(create, CreateChange)
        assert isinstance(join, JoinChange)
        assert join.resulting_ref.amount == sum(r.amount for r in join.original_refs)

    def test_rated_lot_blocks_join(self):
        settings = EngineSettings(consolidate_unrated_income=True)
        overrides = RateOverrideProvider({'W-1': RateOverride(rate=Decimal('1'))})
        ledger, _, _ = run(self.entries(), settings, overrides)
        assert [r.head for r in ledger.lots('W', BTC)] == ['W-1', 'W-2']


class TestInvariants:
    """Properties that hold for any valid input."""

    def mixed(self):
        return scenario_c() + [
            entry('C', '8', 'Interest', '0.0007', t=400),
            entry('C', '9', 'Trade', '-0.01', BTC, t=500, group='t3'),
            entry('C', '10', 'Trade', '0.3', ETH, t=500, group='t3'),
            entry('C', '11', 'Fee', '-0.0001', ETH, t=600),
            entry('C', '12', 'Withdrawal', '-0.1', ETH, t=700),
            entry('W', '13', 'Deposit', '0.1', ETH, t=800),
            entry('W', '14', 'Trade', '-0.05', ETH, t=900, group='t4'),
            entry('W', '15', 'Trade', '60', EUR, t=900, group='t4'),
        ]

    def test_sums_hold_for_every_prefix(self):
        transactions = TransactionGrouper().group(self.mixed())
        ledger = LotLedger()
        for i, tx in enumerate(transactions):
            ledger.apply(tx)
            assert verify_balances(transactions[:i + 1], ledger.balances, EUR) == []

    def test_final_sums_match_raw_rows(self):
        entries = self.mixed()
        ledger, _, _ = run(entries)
        actual = {(w, a): lots_total(refs) for w, assets in compact_balances(ledger.balances).items()
                  for a, refs in assets.items()}
        assert actual == ShadowSums().add_entries(entries).non_zero()

    def test_no_lot_is_ever_non_positive(self):
        _, changes, _ = run(self.mixed())
        for bc in changes:
            for change in bc.changes:
                for ref in _refs_of(change):
                    assert ref.amount > 0

    def test_idempotent(self):
        _, first, _ = run(self.mixed())
        _, second, _ = run(self.mixed())
        assert changes_to_json(first) == changes_to_json(second)

    def test_audit_replay_matches_balances(self):
        for settings in (EngineSettings(),
                         EngineSettings(consumption_order=ConsumptionOrder.FIFO),
                         EngineSettings(consolidate_unrated_income=True)):
            ledger, changes, _ = run(self.mixed(), settings)
            assert replay_changes(changes, EUR) == compact_balances(ledger.snapshot())


def _refs_of(change):
    if isinstance(change, (CreateChange, RemoveChange, MoveChange)):
        return [change.ref]
    if isinstance(change, SplitChange):
        return [change.original_ref, *change.resulting_refs]
    if isinstance(change, JoinChange):
        return [*change.original_refs, change.resulting_ref]
    if isinstance(change, ConvertChange):
        return [*change.from_refs, change.to_ref]
    raise AssertionError(change)
