"""
User-asserted acquisition rates and ignore flags, keyed by entry global id.

File format (JSON):
    {"<wallet>-<id>": {"rate": "20000", "ignored": false, "comment": "OTC buy"}}

The grouper consults `ignored`; the lot ledger consults `rate` when it
creates a lot from a positive single entry.
"""

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional

from lot_tracker.decimal_utils import parse_decimal, decimal_to_str

logger = logging.getLogger("lot_tracker")


@dataclass(frozen=True)
class RateOverride:
    rate: Optional[Decimal] = None
    ignored: bool = False
    comment: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping) -> 'RateOverride':
        rate = data.get('rate')
        return cls(
            rate=None if rate in (None, '') else parse_decimal(rate),
            ignored=bool(data.get('ignored', False)),
            comment=data.get('comment'),
        )

    def to_dict(self) -> dict:
        out = {}
        if self.rate is not None:
            out['rate'] = decimal_to_str(self.rate)
        if self.ignored:
            out['ignored'] = True
        if self.comment:
            out['comment'] = self.comment
        return out


class RateOverrideProvider:
    """Read-only lookup of RateOverride by global id."""

    def __init__(self, overrides: Optional[Mapping[str, RateOverride]] = None):
        self._overrides: Dict[str, RateOverride] = dict(overrides or {})

    @classmethod
    def from_dict(cls, data: Mapping[str, Mapping]) -> 'RateOverrideProvider':
        overrides = {}
        for global_id, raw in data.items():
            try:
                overrides[global_id] = RateOverride.from_dict(raw)
            except (ValueError, AttributeError) as e:
                raise ValueError(f"Invalid rate override for {global_id}: {e}")
        return cls(overrides)

    @classmethod
    def from_file(cls, path: Path) -> 'RateOverrideProvider':
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f, parse_float=Decimal)
        provider = cls.from_dict(data)
        logger.info(f"Loaded {len(provider)} rate override(s) from {path}")
        return provider

    def get(self, global_id: str) -> Optional[RateOverride]:
        return self._overrides.get(global_id)

    def rate_for(self, global_id: str) -> Optional[Decimal]:
        override = self._overrides.get(global_id)
        return override.rate if override else None

    def is_ignored(self, global_id: str) -> bool:
        override = self._overrides.get(global_id)
        return bool(override and override.ignored)

    def ignored_ids(self):
        return sorted(gid for gid, o in self._overrides.items() if o.ignored)

    def to_dict(self) -> dict:
        return {gid: o.to_dict() for gid, o in sorted(self._overrides.items())}

    def __contains__(self, global_id) -> bool:
        return global_id in self._overrides

    def __iter__(self) -> Iterator[str]:
        return iter(self._overrides)

    def __len__(self) -> int:
        return len(self._overrides)
