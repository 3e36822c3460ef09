"""
================================================================================
MODELS - Ledger Entries, Transactions, Lots and Audit Records
================================================================================

Immutable value types shared by every stage of the pipeline.

Types:
    Asset               - (name, kind) pair; equality by both fields
    LedgerEntry         - one normalized, signed ledger row
    SingleTransaction   - an entry that could not be (or need not be) paired
    TradeTransaction    - spend (negative) and receive (positive) leg, one wallet
    TransferTransaction - outgoing and incoming leg, possibly two wallets
    Ref                 - a lot: positive amount with lineage and optional rate
    RefChange variants  - Create, Remove, Move, Split, Join, Convert
    BalanceChange       - one audit record per processed transaction

Closed variant sets:
    Transaction and RefChange are Unions; dispatching code runs an isinstance
    chain over the members and raises UnknownEnumValueError for anything else.

Last Modified: December 2025
================================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple, Union

from lot_tracker.core.errors import InvalidLotError, TransactionShapeError, UnknownEnumValueError


class _ParseableEnum(Enum):
    """Enum accepting its name (any case) or its integer index."""

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise UnknownEnumValueError(f"Unknown {cls.__name__}: {value!r}")
        if isinstance(value, int):
            for member in cls:
                if member.value == value:
                    return member
        if isinstance(value, str):
            text = value.strip()
            if text.isdigit():
                return cls.parse(int(text))
            for member in cls:
                if member.name.lower() == text.lower():
                    return member
        raise UnknownEnumValueError(f"Unknown {cls.__name__}: {value!r}")


class AssetKind(_ParseableEnum):
    FIAT = 0
    CRYPTO = 1

    @property
    def label(self) -> str:
        return self.name.capitalize()


class LedgerEntryType(_ParseableEnum):
    DEPOSIT = 0
    WITHDRAWAL = 1
    TRADE = 2
    INTEREST = 3
    BONUS = 4
    FEE = 5
    TRANSFER = 6

    @property
    def label(self) -> str:
        return self.name.capitalize()


INCOME_TYPES = (LedgerEntryType.INTEREST, LedgerEntryType.BONUS)


class ConsumptionOrder(_ParseableEnum):
    LIFO = 0
    FIFO = 1


@dataclass(frozen=True)
class Asset:
    name: str
    kind: AssetKind

    @property
    def is_fiat(self) -> bool:
        return self.kind is AssetKind.FIAT

    def __str__(self):
        return self.name


def utc_from_timestamp(ts: int) -> datetime:
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


@dataclass(frozen=True)
class LedgerEntry:
    wallet: str
    local_id: str
    group_id: str
    date: datetime
    kind: LedgerEntryType
    amount: Decimal
    asset: Asset

    @property
    def global_id(self) -> str:
        return f"{self.wallet}-{self.local_id}"

    @property
    def timestamp(self) -> int:
        return int(self.date.timestamp())


# ============================================================================
# TRANSACTIONS
# ============================================================================

@dataclass(frozen=True)
class SingleTransaction:
    entry: LedgerEntry

    @property
    def date(self) -> datetime:
        return self.entry.date

    @property
    def entries(self) -> Tuple[LedgerEntry, ...]:
        return (self.entry,)


@dataclass(frozen=True)
class TradeTransaction:
    spend: LedgerEntry
    receive: LedgerEntry

    def __post_init__(self):
        if not (self.spend.amount < 0 < self.receive.amount):
            raise TransactionShapeError(
                f"Trade legs need spend < 0 < receive, got {self.spend.amount} / {self.receive.amount}"
            )
        if self.spend.wallet != self.receive.wallet:
            raise TransactionShapeError(
                f"Trade legs in different wallets: {self.spend.wallet} / {self.receive.wallet}"
            )

    @property
    def date(self) -> datetime:
        return min(self.spend.date, self.receive.date)

    @property
    def entries(self) -> Tuple[LedgerEntry, ...]:
        return (self.spend, self.receive)


@dataclass(frozen=True)
class TransferTransaction:
    source: LedgerEntry
    destination: LedgerEntry

    def __post_init__(self):
        if not (self.source.amount < 0 < self.destination.amount):
            raise TransactionShapeError(
                f"Transfer legs need from < 0 < to, got {self.source.amount} / {self.destination.amount}"
            )

    @property
    def date(self) -> datetime:
        return min(self.source.date, self.destination.date)

    @property
    def entries(self) -> Tuple[LedgerEntry, ...]:
        return (self.source, self.destination)


Transaction = Union[SingleTransaction, TradeTransaction, TransferTransaction]


def transaction_kind(tx: Transaction) -> str:
    """Label used for graph nodes and sink edges."""
    if isinstance(tx, SingleTransaction):
        return tx.entry.kind.label
    if isinstance(tx, TradeTransaction):
        return 'Trade'
    if isinstance(tx, TransferTransaction):
        return 'Transfer'
    raise UnknownEnumValueError(f"Unknown transaction variant: {type(tx).__name__}")


# ============================================================================
# LOTS
# ============================================================================

@dataclass(frozen=True)
class Ref:
    """
    A lot of a non-base asset.

    ref_id stays the same while a lot moves between wallets; split pieces,
    conversions and new acquisitions get fresh ids. parents is display
    lineage only and takes no part in equality.
    """
    ref_id: str
    asset: Asset
    lineage: Tuple[str, ...]
    amount: Decimal
    date: datetime
    rate: Optional[Decimal] = None
    parents: Tuple['Ref', ...] = field(default=(), compare=False, repr=False)

    def __post_init__(self):
        if not self.lineage:
            raise InvalidLotError(f"Lot {self.ref_id} has an empty lineage")
        if not self.amount > 0:
            raise InvalidLotError(f"Lot {self.ref_id} has non-positive amount {self.amount}")

    @property
    def head(self) -> str:
        """Id of the ledger entry the lot originates from."""
        return self.lineage[0]

    @property
    def cost(self) -> Optional[Decimal]:
        if self.rate is None:
            return None
        return self.rate * self.amount


# ============================================================================
# AUDIT RECORDS
# ============================================================================

@dataclass(frozen=True)
class CreateChange:
    ref: Ref
    wallet: str


@dataclass(frozen=True)
class RemoveChange:
    ref: Ref
    wallet: str


@dataclass(frozen=True)
class MoveChange:
    ref: Ref
    from_wallet: str
    to_wallet: str


@dataclass(frozen=True)
class SplitChange:
    original_ref: Ref
    resulting_refs: Tuple[Ref, ...]
    wallet: str


@dataclass(frozen=True)
class JoinChange:
    original_refs: Tuple[Ref, ...]
    resulting_ref: Ref
    wallet: str


@dataclass(frozen=True)
class ConvertChange:
    from_refs: Tuple[Ref, ...]
    to_ref: Ref
    wallet: str


RefChange = Union[CreateChange, RemoveChange, MoveChange, SplitChange, JoinChange, ConvertChange]


@dataclass(frozen=True)
class BalanceChange:
    transaction: Transaction
    changes: Tuple[RefChange, ...] = ()
