"""
Typed engine settings built from the config.json sections.

Everything the engine would otherwise read from module globals (base asset,
consumption order, matching window, precision) is carried here and passed in
explicitly.
"""

from dataclasses import dataclass, field
from typing import Optional

from lot_tracker.core.models import Asset, AssetKind, ConsumptionOrder
from lot_tracker.utils import constants


def _asset_from_config(value, default: Asset) -> Asset:
    if not value:
        return default
    return Asset(value['name'], AssetKind.parse(value.get('type', default.kind.name)))


@dataclass(frozen=True)
class EngineSettings:
    base_asset: Asset = field(
        default_factory=lambda: Asset(constants.BASE_ASSET_NAME, AssetKind.parse(constants.BASE_ASSET_KIND))
    )
    consumption_order: ConsumptionOrder = ConsumptionOrder.LIFO
    min_trade_precision: int = constants.MIN_TRADE_PRECISION
    dust_tolerance_units: int = constants.DUST_TOLERANCE_UNITS
    consolidate_unrated_income: bool = False
    transfer_window_seconds: int = constants.TRANSFER_WINDOW_SECONDS
    history_asset: Asset = field(
        default_factory=lambda: Asset(constants.HISTORY_ASSET_NAME, AssetKind.parse(constants.HISTORY_ASSET_KIND))
    )
    history_fill_daily: bool = False
    simplify_graph: bool = False
    max_collapses: int = constants.MAX_COLLAPSES

    @classmethod
    def from_config(cls, config: Optional[dict] = None) -> 'EngineSettings':
        """
        Build settings from a load_config() dictionary.

        Missing sections fall back to defaults; an unknown consumption order
        or asset type raises UnknownEnumValueError.
        """
        config = config or {}
        accounting = config.get('accounting', {})
        matching = config.get('matching', {})
        history = config.get('history', {})
        graph = config.get('graph', {})
        defaults = cls()

        return cls(
            base_asset=_asset_from_config(accounting.get('base_asset'), defaults.base_asset),
            consumption_order=ConsumptionOrder.parse(
                accounting.get('consumption_order', defaults.consumption_order.name)
            ),
            min_trade_precision=int(accounting.get('min_trade_precision', defaults.min_trade_precision)),
            dust_tolerance_units=int(accounting.get('dust_tolerance_units', defaults.dust_tolerance_units)),
            consolidate_unrated_income=bool(accounting.get('consolidate_unrated_income', False)),
            transfer_window_seconds=int(matching.get('transfer_window_seconds', defaults.transfer_window_seconds)),
            history_asset=_asset_from_config(history.get('asset'), defaults.history_asset),
            history_fill_daily=bool(history.get('fill_daily', False)),
            simplify_graph=bool(graph.get('simplify', False)),
            max_collapses=int(graph.get('max_collapses', defaults.max_collapses)),
        )
