"""
Tests for the wire format: entry loading (JSON and CSV), validation modes,
rate override files and the JSON form of balances and the audit trail.
"""

import json
from decimal import Decimal

import pandas as pd
import pytest

from lot_tracker.core.errors import InvalidEntryError, LedgerIntegrityError, UnknownEnumValueError
from lot_tracker.core.grouping import TransactionGrouper
from lot_tracker.core.lots import LotLedger
from lot_tracker.core.models import AssetKind, LedgerEntryType
from lot_tracker.core.rate_overrides import RateOverrideProvider
from lot_tracker.core.serialization import (
    balances_from_dict,
    balances_to_dict,
    changes_from_json,
    changes_to_json,
    entries_to_frame,
    entry_from_dict,
    entry_to_dict,
    load_ledger_file,
    parse_entries,
    validate_entry_record,
)
from test_common import BTC, EUR, T0


def record(**overrides):
    base = {
        'wallet': 'Kraken',
        'id': '1',
        'groupId': 'g1',
        'date': T0,
        'type': 'Deposit',
        'amount': '0.5',
        'asset': {'name': 'BTC', 'type': 'Crypto'},
    }
    base.update(overrides)
    return base


class TestEntryRecords:
    """Single wire record conversion."""

    def test_entry_from_dict(self):
        entry = entry_from_dict(record())
        assert entry.global_id == 'Kraken-1'
        assert entry.kind is LedgerEntryType.DEPOSIT
        assert entry.amount == Decimal('0.5')
        assert entry.asset == BTC
        assert entry.timestamp == T0

    def test_enums_by_index_and_case(self):
        entry = entry_from_dict(record(type=2, asset={'name': 'EUR', 'type': '0'}))
        assert entry.kind is LedgerEntryType.TRADE
        assert entry.asset == EUR
        assert entry_from_dict(record(type='wItHdRaWaL')).kind is LedgerEntryType.WITHDRAWAL

    def test_unknown_enum_raises(self):
        with pytest.raises(UnknownEnumValueError):
            entry_from_dict(record(type='Airdrop'))
        with pytest.raises(UnknownEnumValueError):
            entry_from_dict(record(asset={'name': 'BTC', 'type': 7}))

    def test_entry_to_dict_round_trip(self):
        entry = entry_from_dict(record(amount='-0.00000001'))
        data = entry_to_dict(entry)
        assert data['amount'] == '-0.00000001'
        assert data['type'] == 'Deposit'
        assert entry_from_dict(data) == entry

    def test_validation_messages(self):
        errors = validate_entry_record({'wallet': '', 'id': '1', 'amount': 'x', 'date': 1.5})
        assert any('Missing required fields' in e for e in errors)
        assert any('wallet is empty' in e for e in errors)
        assert any('not a decimal amount' in e for e in errors)
        assert any('unix timestamp' in e for e in errors)

    def test_spreadsheet_style_timestamp_accepted(self):
        assert entry_from_dict(record(date=f'{T0}.0')).timestamp == T0


class TestParseEntries:
    """Batch validation with raise/skip modes."""

    def test_raise_mode_reports_index(self):
        records = [record(), record(id='2', amount='')]
        with pytest.raises(InvalidEntryError) as exc:
            parse_entries(records)
        assert exc.value.index == 1

    def test_skip_mode_collects_rejects(self):
        records = [record(), record(id='2', amount='abc'), record(id='3')]
        entries, rejected = parse_entries(records, on_error='skip')
        assert [e.local_id for e in entries] == ['1', '3']
        assert len(rejected) == 1
        assert rejected[0]['index'] == 1
        assert rejected[0]['errors']

    def test_unknown_enum_raises_even_when_skipping(self):
        with pytest.raises(UnknownEnumValueError):
            parse_entries([record(type='Mystery')], on_error='skip')

    def test_duplicate_global_id(self):
        with pytest.raises(LedgerIntegrityError):
            parse_entries([record(), record()], on_error='skip')

    def test_bad_mode(self):
        with pytest.raises(ValueError):
            parse_entries([], on_error='ignore')


class TestLedgerFiles:
    """JSON and CSV ledger files."""

    def test_json_file(self, tmp_path):
        path = tmp_path / 'ledger.json'
        path.write_text(json.dumps([record(), record(id='2', amount='-0.1', type='Fee')]))
        entries, rejected = load_ledger_file(path)
        assert len(entries) == 2
        assert rejected == []

    def test_json_file_must_be_array(self, tmp_path):
        path = tmp_path / 'ledger.json'
        path.write_text(json.dumps(record()))
        with pytest.raises(ValueError):
            load_ledger_file(path)

    def test_json_numbers_keep_full_precision(self, tmp_path):
        path = tmp_path / 'ledger.json'
        path.write_text(
            '[{"wallet": "Kraken", "id": "1", "groupId": "g1", "date": 1609459200.0, "type": "Deposit",'
            ' "amount": 0.123456789012345678, "asset": {"name": "BTC", "type": "Crypto"}}]'
        )
        entries, rejected = load_ledger_file(path)
        assert rejected == []
        assert entries[0].amount == Decimal('0.123456789012345678')
        assert entries[0].timestamp == 1609459200

    def test_csv_file_via_frame(self, tmp_path, make_entry):
        entries = [
            make_entry('Kraken', '1', 'Deposit', '0.5'),
            make_entry('Kraken', '2', 'Trade', '-100', EUR, t=60, group='t1'),
            make_entry('Kraken', '3', 'Trade', '0.005', BTC, t=60, group='t1'),
        ]
        path = tmp_path / 'ledger.csv'
        entries_to_frame(entries).to_csv(path, index=False)

        loaded, rejected = load_ledger_file(path)
        assert loaded == entries
        assert rejected == []

    def test_csv_missing_columns(self, tmp_path):
        path = tmp_path / 'ledger.csv'
        pd.DataFrame([{'wallet': 'a', 'id': '1'}]).to_csv(path, index=False)
        with pytest.raises(ValueError, match='missing columns'):
            load_ledger_file(path)

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / 'ledger.xlsx'
        path.write_text('')
        with pytest.raises(ValueError):
            load_ledger_file(path)


class TestRateOverrides:
    """Override files."""

    def test_from_file(self, tmp_path):
        path = tmp_path / 'overrides.json'
        path.write_text(json.dumps({
            'Kraken-1': {'rate': '20000', 'comment': 'OTC'},
            'Kraken-2': {'ignored': True},
        }))
        provider = RateOverrideProvider.from_file(path)
        assert provider.rate_for('Kraken-1') == Decimal('20000')
        assert provider.is_ignored('Kraken-2')
        assert not provider.is_ignored('Kraken-1')
        assert provider.rate_for('missing') is None
        assert provider.ignored_ids() == ['Kraken-2']
        assert provider.to_dict()['Kraken-1'] == {'rate': '20000', 'comment': 'OTC'}

    def test_invalid_rate(self):
        with pytest.raises(ValueError):
            RateOverrideProvider.from_dict({'Kraken-1': {'rate': 'cheap'}})

    def test_numeric_rate_keeps_full_precision(self, tmp_path):
        path = tmp_path / 'overrides.json'
        path.write_text('{"Kraken-1": {"rate": 20000.123456789012345678}}')
        provider = RateOverrideProvider.from_file(path)
        assert provider.rate_for('Kraken-1') == Decimal('20000.123456789012345678')


class TestAuditTrailJson:
    """Balances and BalanceChange lists survive a JSON round trip."""

    def _run(self, make_entry):
        entries = [
            make_entry('Kraken', '1', 'Trade', '-1000', EUR, t=0, group='t1'),
            make_entry('Kraken', '2', 'Trade', '0.05', BTC, t=0, group='t1'),
            make_entry('Kraken', '3', 'Withdrawal', '-0.02', t=100),
            make_entry('Ledger', '4', 'Deposit', '0.02', t=100),
            make_entry('Kraken', '5', 'Trade', '-0.01', BTC, t=200, group='t2'),
            make_entry('Kraken', '6', 'Trade', '250', EUR, t=200, group='t2'),
            make_entry('Ledger', '7', 'Fee', '-0.001', t=300),
        ]
        transactions = TransactionGrouper().group(entries)
        ledger = LotLedger()
        changes = ledger.replay(transactions)
        return ledger, changes

    def test_changes_round_trip(self, make_entry):
        _, changes = self._run(make_entry)
        text = changes_to_json(changes)
        assert changes_from_json(text) == changes
        # Every discriminator is a single key
        for bc in json.loads(text):
            assert len(bc['transaction']) == 1
            assert all(len(c) == 1 for c in bc['changes'])

    def test_balances_round_trip(self, make_entry):
        ledger, _ = self._run(make_entry)
        snapshot = ledger.snapshot()
        data = balances_to_dict(snapshot)
        assert list(data) == sorted(data)
        restored = balances_from_dict(json.loads(json.dumps(data)))
        assert restored['Ledger'][BTC] == snapshot['Ledger'][BTC]
        assert restored['Kraken'][BTC] == snapshot['Kraken'][BTC]

    def test_decimals_written_as_plain_strings(self, make_entry):
        ledger, _ = self._run(make_entry)
        text = json.dumps(balances_to_dict(ledger.snapshot()))
        assert 'E-' not in text and 'E+' not in text
        assert AssetKind.CRYPTO.label in text
