"""
Exception hierarchy for the reconciliation engine.

Every fatal condition aborts the run; nothing partial is returned.
Recoverable conditions (unmatched transfers, dust, failed simplification)
are not exceptions; they are collected in DiagnosticsReport.
"""

from decimal import Decimal


# ============================================================================
# Exception Hierarchy
# ============================================================================

class LotTrackerError(Exception):
    """Base class for all engine errors."""
    pass


class UnknownEnumValueError(LotTrackerError):
    """An entry type, asset kind or consumption order that is not recognised."""
    pass


class TransactionShapeError(LotTrackerError):
    """A trade or transfer whose legs have the wrong signs or wallets."""
    pass


class InvalidLotError(LotTrackerError):
    """A lot with a non-positive amount or an empty lineage."""
    pass


class LedgerIntegrityError(LotTrackerError):
    """Duplicate entry ids, or balances that disagree with the transactions."""
    pass


class DustCorrectionError(LotTrackerError):
    """Positive rounding dust with no resulting lot to absorb it."""
    pass


class FrontierCorruptionError(LotTrackerError):
    """The simplifier's search stack and visited set went out of step."""
    pass


class BalanceUnderflowError(LotTrackerError):
    """More was requested from a lot collection than it holds."""

    def __init__(self, requested: Decimal, available: Decimal, wallet: str = None, asset: str = None):
        self.requested = requested
        self.available = available
        self.wallet = wallet
        self.asset = asset
        where = f" in {wallet}/{asset}" if wallet is not None else ""
        super().__init__(
            f"Insufficient balance{where}: requested {requested}, available {available}"
        )

    def with_location(self, wallet: str, asset: str) -> 'BalanceUnderflowError':
        """Same error annotated with the collection it came from."""
        return BalanceUnderflowError(self.requested, self.available, wallet, asset)


class InvalidEntryError(LotTrackerError):
    """A ledger record that is missing fields or carries malformed values."""

    def __init__(self, index: int, errors):
        self.index = index
        self.errors = list(errors)
        super().__init__(f"Invalid ledger entry at index {index}: {'; '.join(self.errors)}")
