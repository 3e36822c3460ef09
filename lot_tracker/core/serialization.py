"""
================================================================================
SERIALIZATION - Wire Format for Entries, Lots and the Audit Trail
================================================================================

Converts between the JSON wire format and the in-memory models.

Wire Conventions:
    - Dates are integer unix timestamps (UTC)
    - Decimals are written as plain strings ("20000", never "2E+4")
    - Enums are written by name ("Deposit", "Crypto"); names (any case) and
      integer indexes are accepted on input
    - Variants use single-key discriminators:
        {"single": {...}} | {"trade": {...}} | {"transfer": {...}}
        {"create": {...}} | {"remove": {...}} | {"move": {...}}
        {"split": {...}}  | {"join": {...}}   | {"convert": {...}}

Ledger Files:
    .json - array of entry objects
    .csv  - columns wallet,id,groupId,date,type,amount,asset_name,asset_type
            (read with pandas, every column as string)

Validation:
    parse_entries() validates a batch. With on_error='raise' the first bad
    record raises InvalidEntryError; with on_error='skip' bad records are
    collected as {'index', 'record', 'errors'} and left out. Unknown enum
    values and duplicate global ids always raise.

Last Modified: December 2025
================================================================================
"""

import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from lot_tracker.decimal_utils import decimal_to_str, parse_decimal
from lot_tracker.core.errors import (
    InvalidEntryError,
    LedgerIntegrityError,
    UnknownEnumValueError,
)
from lot_tracker.core.models import (
    Asset,
    AssetKind,
    BalanceChange,
    ConvertChange,
    CreateChange,
    JoinChange,
    LedgerEntry,
    LedgerEntryType,
    MoveChange,
    Ref,
    RemoveChange,
    SingleTransaction,
    SplitChange,
    TradeTransaction,
    TransferTransaction,
    utc_from_timestamp,
)

logger = logging.getLogger("lot_tracker")

REQUIRED_FIELDS = ('wallet', 'id', 'groupId', 'date', 'type', 'amount', 'asset')
CSV_COLUMNS = ['wallet', 'id', 'groupId', 'date', 'type', 'amount', 'asset_name', 'asset_type']


# ============================================================================
# ASSETS AND ENTRIES
# ============================================================================

def asset_to_dict(asset: Asset) -> dict:
    return {'name': asset.name, 'type': asset.kind.label}


def asset_from_dict(data: Mapping) -> Asset:
    return Asset(str(data['name']), AssetKind.parse(data['type']))


def _parse_timestamp(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"date must be a unix timestamp, got {value!r}")
    if isinstance(value, int):
        return value
    # "1700000000.0" from spreadsheets is accepted, "1700000000.5" is not
    try:
        number = parse_decimal(value)
    except ValueError:
        raise ValueError(f"date must be a unix timestamp, got {value!r}")
    if number != number.to_integral_value():
        raise ValueError(f"date must be a whole unix timestamp, got {value!r}")
    return int(number)


def entry_to_dict(entry: LedgerEntry) -> dict:
    return {
        'wallet': entry.wallet,
        'id': entry.local_id,
        'groupId': entry.group_id,
        'date': entry.timestamp,
        'type': entry.kind.label,
        'amount': decimal_to_str(entry.amount),
        'asset': asset_to_dict(entry.asset),
    }


def validate_entry_record(record: Mapping) -> List[str]:
    """
    Structural checks for one wire record.

    Returns:
        List of error messages (empty when the record is well formed).
        Enum values are not checked here; they are checked on conversion.
    """
    errors = []
    if not isinstance(record, Mapping):
        return [f"record must be an object, got {type(record).__name__}"]

    missing = [f for f in REQUIRED_FIELDS if f not in record]
    if missing:
        errors.append(f"Missing required fields: {missing}")

    for name in ('wallet', 'id'):
        if name in record and str(record[name]).strip() == '':
            errors.append(f"{name} is empty")

    if 'amount' in record:
        try:
            parse_decimal(record['amount'])
        except ValueError as e:
            errors.append(str(e))

    if 'date' in record:
        try:
            _parse_timestamp(record['date'])
        except ValueError as e:
            errors.append(str(e))

    asset = record.get('asset')
    if 'asset' in record and (not isinstance(asset, Mapping) or 'name' not in asset or 'type' not in asset):
        errors.append("asset must be an object with name and type")

    return errors


def entry_from_dict(record: Mapping) -> LedgerEntry:
    """
    Convert one wire record to a LedgerEntry.

    Raises:
        UnknownEnumValueError: unknown entry or asset type
        ValueError: malformed amount or date, or missing fields
    """
    errors = validate_entry_record(record)
    if errors:
        raise ValueError('; '.join(errors))
    return LedgerEntry(
        wallet=str(record['wallet']),
        local_id=str(record['id']),
        group_id=str(record['groupId']),
        date=utc_from_timestamp(_parse_timestamp(record['date'])),
        kind=LedgerEntryType.parse(record['type']),
        amount=parse_decimal(record['amount']),
        asset=asset_from_dict(record['asset']),
    )


def parse_entries(records: Iterable[Mapping], on_error: str = 'raise') -> Tuple[List[LedgerEntry], List[Dict]]:
    """
    Validate and convert a batch of wire records.

    Args:
        records: Iterable of entry dicts
        on_error: 'raise' (first malformed record aborts) or 'skip'

    Returns:
        (entries, rejected) where rejected holds {'index', 'record', 'errors'}
    """
    if on_error not in ('raise', 'skip'):
        raise ValueError(f"on_error must be 'raise' or 'skip', got {on_error!r}")

    entries = []
    rejected = []
    seen = {}
    for i, record in enumerate(records):
        try:
            entry = entry_from_dict(record)
        except ValueError as e:
            if on_error == 'raise':
                raise InvalidEntryError(i, [str(e)])
            rejected.append({'index': i, 'record': record, 'errors': str(e).split('; ')})
            continue

        if entry.global_id in seen:
            raise LedgerIntegrityError(
                f"Duplicate ledger entry {entry.global_id} at index {i} (first seen at {seen[entry.global_id]})"
            )
        seen[entry.global_id] = i
        entries.append(entry)

    for rej in rejected:
        logger.warning(f"Invalid ledger entry at index {rej['index']}: {'; '.join(rej['errors'])}")

    return entries, rejected


def _csv_row_to_record(row: Mapping) -> dict:
    return {
        'wallet': row['wallet'],
        'id': row['id'],
        'groupId': row['groupId'],
        'date': row['date'],
        'type': row['type'],
        'amount': row['amount'],
        'asset': {'name': row['asset_name'], 'type': row['asset_type']},
    }


def load_ledger_records(path: Path) -> List[dict]:
    """Read raw wire records from a .json or .csv ledger file."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == '.json':
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f, parse_float=Decimal)
        if not isinstance(data, list):
            raise ValueError(f"{path} must contain a JSON array of ledger entries")
        return data
    if suffix == '.csv':
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
        missing = [c for c in CSV_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"{path} is missing columns: {missing}")
        return [_csv_row_to_record(row) for row in df.to_dict(orient='records')]
    raise ValueError(f"Unsupported ledger file type: {path.suffix}")


def load_ledger_file(path: Path, on_error: str = 'raise') -> Tuple[List[LedgerEntry], List[Dict]]:
    """Load and validate a ledger file. See parse_entries for on_error."""
    records = load_ledger_records(path)
    entries, rejected = parse_entries(records, on_error=on_error)
    logger.info(f"Loaded {len(entries)} ledger entries from {path} ({len(rejected)} rejected)")
    return entries, rejected


def entries_to_frame(entries: Iterable[LedgerEntry]) -> pd.DataFrame:
    """Flat CSV-shaped DataFrame of entries (inverse of the CSV loader)."""
    rows = []
    for e in entries:
        d = entry_to_dict(e)
        asset = d.pop('asset')
        d['asset_name'] = asset['name']
        d['asset_type'] = asset['type']
        rows.append(d)
    return pd.DataFrame(rows, columns=CSV_COLUMNS)


# ============================================================================
# LOTS
# ============================================================================

def ref_to_dict(ref: Ref) -> dict:
    out = {
        'id': ref.ref_id,
        'asset': asset_to_dict(ref.asset),
        'lineage': list(ref.lineage),
        'amount': decimal_to_str(ref.amount),
        'date': int(ref.date.timestamp()),
    }
    if ref.rate is not None:
        out['rate'] = decimal_to_str(ref.rate)
    return out


def ref_from_dict(data: Mapping) -> Ref:
    rate = data.get('rate')
    return Ref(
        ref_id=str(data['id']),
        asset=asset_from_dict(data['asset']),
        lineage=tuple(data['lineage']),
        amount=parse_decimal(data['amount']),
        date=utc_from_timestamp(data['date']),
        rate=None if rate is None else parse_decimal(rate),
    )


def balances_to_dict(balances) -> dict:
    """{wallet: {asset name: [ref, ...]}} with wallets and assets sorted."""
    out = {}
    for wallet in sorted(balances):
        assets = balances[wallet]
        out[wallet] = {
            asset.name: [ref_to_dict(r) for r in refs]
            for asset, refs in sorted(assets.items(), key=lambda kv: (kv[0].name, kv[0].kind.value))
        }
    return out


def balances_from_dict(data: Mapping) -> Dict[str, Dict[Asset, List[Ref]]]:
    out = {}
    for wallet, assets in data.items():
        out[wallet] = {}
        for _, refs in assets.items():
            parsed = [ref_from_dict(r) for r in refs]
            if parsed:
                out[wallet][parsed[0].asset] = parsed
    return out


# ============================================================================
# TRANSACTIONS AND CHANGES
# ============================================================================

def transaction_to_dict(tx) -> dict:
    if isinstance(tx, SingleTransaction):
        return {'single': {'entry': entry_to_dict(tx.entry)}}
    if isinstance(tx, TradeTransaction):
        return {'trade': {'spend': entry_to_dict(tx.spend), 'receive': entry_to_dict(tx.receive)}}
    if isinstance(tx, TransferTransaction):
        return {'transfer': {'from': entry_to_dict(tx.source), 'to': entry_to_dict(tx.destination)}}
    raise UnknownEnumValueError(f"Unknown transaction variant: {type(tx).__name__}")


def transaction_from_dict(data: Mapping):
    if 'single' in data:
        return SingleTransaction(entry_from_dict(data['single']['entry']))
    if 'trade' in data:
        body = data['trade']
        return TradeTransaction(entry_from_dict(body['spend']), entry_from_dict(body['receive']))
    if 'transfer' in data:
        body = data['transfer']
        return TransferTransaction(entry_from_dict(body['from']), entry_from_dict(body['to']))
    raise UnknownEnumValueError(f"Unknown transaction variant: {sorted(data)}")


def change_to_dict(change) -> dict:
    if isinstance(change, CreateChange):
        return {'create': {'ref': ref_to_dict(change.ref), 'wallet': change.wallet}}
    if isinstance(change, RemoveChange):
        return {'remove': {'ref': ref_to_dict(change.ref), 'wallet': change.wallet}}
    if isinstance(change, MoveChange):
        return {'move': {
            'ref': ref_to_dict(change.ref),
            'fromWallet': change.from_wallet,
            'toWallet': change.to_wallet,
        }}
    if isinstance(change, SplitChange):
        return {'split': {
            'originalRef': ref_to_dict(change.original_ref),
            'resultingRefs': [ref_to_dict(r) for r in change.resulting_refs],
            'wallet': change.wallet,
        }}
    if isinstance(change, JoinChange):
        return {'join': {
            'originalRefs': [ref_to_dict(r) for r in change.original_refs],
            'resultingRef': ref_to_dict(change.resulting_ref),
            'wallet': change.wallet,
        }}
    if isinstance(change, ConvertChange):
        return {'convert': {
            'fromRefs': [ref_to_dict(r) for r in change.from_refs],
            'toRef': ref_to_dict(change.to_ref),
            'wallet': change.wallet,
        }}
    raise UnknownEnumValueError(f"Unknown change variant: {type(change).__name__}")


def change_from_dict(data: Mapping):
    if 'create' in data:
        body = data['create']
        return CreateChange(ref_from_dict(body['ref']), body['wallet'])
    if 'remove' in data:
        body = data['remove']
        return RemoveChange(ref_from_dict(body['ref']), body['wallet'])
    if 'move' in data:
        body = data['move']
        return MoveChange(ref_from_dict(body['ref']), body['fromWallet'], body['toWallet'])
    if 'split' in data:
        body = data['split']
        return SplitChange(
            ref_from_dict(body['originalRef']),
            tuple(ref_from_dict(r) for r in body['resultingRefs']),
            body['wallet'],
        )
    if 'join' in data:
        body = data['join']
        return JoinChange(
            tuple(ref_from_dict(r) for r in body['originalRefs']),
            ref_from_dict(body['resultingRef']),
            body['wallet'],
        )
    if 'convert' in data:
        body = data['convert']
        return ConvertChange(
            tuple(ref_from_dict(r) for r in body['fromRefs']),
            ref_from_dict(body['toRef']),
            body['wallet'],
        )
    raise UnknownEnumValueError(f"Unknown change variant: {sorted(data)}")


def balance_change_to_dict(bc: BalanceChange) -> dict:
    return {
        'transaction': transaction_to_dict(bc.transaction),
        'changes': [change_to_dict(c) for c in bc.changes],
    }


def balance_change_from_dict(data: Mapping) -> BalanceChange:
    return BalanceChange(
        transaction=transaction_from_dict(data['transaction']),
        changes=tuple(change_from_dict(c) for c in data.get('changes', [])),
    )


def changes_to_json(changes: Iterable[BalanceChange], indent: Optional[int] = 2) -> str:
    return json.dumps([balance_change_to_dict(bc) for bc in changes], indent=indent)


def changes_from_json(text: str) -> List[BalanceChange]:
    return [balance_change_from_dict(d) for d in json.loads(text)]


def load_changes_file(path: Path) -> List[BalanceChange]:
    with open(path, 'r', encoding='utf-8') as f:
        return changes_from_json(f.read())
