"""
Parts Pricing Guard

Keeps part prices inside conservative per-family bands, whatever their
source. Prices from the dynamic pricing model and the static baseline go
through the same guard, so no downstream cost can skip the bands.

Usage:
    registry = PartBandRegistry()
    registry.load_bands("prompts/part-price-bands.json")

    guard = PartsPricingGuard(policy, registry)
    guard.guard_price("bumper", 5000)   # -> 1200
    guard.guard_price("spoiler", None)  # -> baseline, floored
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..config import EstimationPolicy
from ..utils import as_float, round_half_up
from . import UNKNOWN
from .models import DamageObservation

# Candidate names containing this are paint, not parts
PAINT_MARKER = "paint"


@dataclass(frozen=True)
class PriceBand:
    """Inclusive USD range for one part family."""
    min_price: int
    max_price: int

    def clamp(self, price: int) -> int:
        return min(self.max_price, max(self.min_price, price))


# Conservative OEM-equivalent retail ranges (USD)
DEFAULT_PART_BANDS: Dict[str, PriceBand] = {
    "bumper": PriceBand(250, 1200),
    "fender": PriceBand(150, 600),
    "door": PriceBand(250, 900),
    "hood": PriceBand(250, 900),
    "quarter-panel": PriceBand(300, 1200),
    "headlight": PriceBand(120, 800),
    "taillight": PriceBand(80, 600),
    "grille": PriceBand(120, 500),
    "mirror": PriceBand(60, 300),
    "windshield": PriceBand(180, 600),
    "wheel": PriceBand(120, 900),
    "trunk": PriceBand(250, 900),
    # Trim and small hardware
    "door handle": PriceBand(40, 180),
    "handle": PriceBand(40, 180),
    "bracket": PriceBand(30, 200),
    "clip": PriceBand(2, 15),
    "emblem": PriceBand(10, 60),
}


def normalize_part_name(name: Any) -> str:
    return str(name).strip().lower()


class PartBandRegistry:
    """
    Registry of part-family price bands.

    Starts with ``DEFAULT_PART_BANDS``; ``load_bands`` replaces them with
    the contents of a JSON document shaped like::

        {"version": "1.0", "bands": {"bumper": {"min": 250, "max": 1200}}}
    """

    def __init__(self, bands: Optional[Mapping[str, PriceBand]] = None) -> None:
        source = DEFAULT_PART_BANDS if bands is None else bands
        self._bands: Dict[str, PriceBand] = {
            normalize_part_name(name): band for name, band in source.items()
        }
        self._version: Optional[str] = None

    @property
    def version(self) -> Optional[str]:
        """Version of the loaded band document, None for built-in defaults."""
        return self._version

    def load_bands(self, path: str | Path) -> Dict[str, PriceBand]:
        """
        Load bands from a JSON file, replacing the current set.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            json.JSONDecodeError: If the file contains invalid JSON.
            ValueError: If a band is missing bounds or has min > max.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Part band file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        raw_bands = data.get("bands") if isinstance(data, dict) else None
        if not isinstance(raw_bands, dict):
            raise ValueError(f"Part band file has no 'bands' object: {path}")

        bands: Dict[str, PriceBand] = {}
        for name, entry in raw_bands.items():
            bands[normalize_part_name(name)] = self._parse_band(name, entry)

        self._bands = bands
        self._version = str(data.get("version", "")) or None
        return dict(self._bands)

    @staticmethod
    def _parse_band(name: str, entry: Any) -> PriceBand:
        if not isinstance(entry, dict) or "min" not in entry or "max" not in entry:
            raise ValueError(f"Band for '{name}' needs 'min' and 'max'")
        low, high = int(entry["min"]), int(entry["max"])
        if low < 1 or low > high:
            raise ValueError(f"Band for '{name}' is invalid: {low}-{high}")
        return PriceBand(low, high)

    def get_band(self, name: str) -> Optional[PriceBand]:
        return self._bands.get(normalize_part_name(name))

    def names(self) -> List[str]:
        return list(self._bands.keys())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_part_name(name) in self._bands

    def __len__(self) -> int:
        return len(self._bands)


class PartsPricingGuard:
    """
    Sanitizes proposed part prices.

    Registered families are clamped into their band. Unregistered names
    only get the global floor. A missing, zero or non-numeric proposal
    is replaced by the baseline price first. Never raises.
    """

    def __init__(
        self,
        policy: EstimationPolicy,
        registry: Optional[PartBandRegistry] = None,
    ) -> None:
        self._policy = policy
        self._registry = registry or PartBandRegistry()

    @property
    def registry(self) -> PartBandRegistry:
        return self._registry

    def _proposal(self, proposed: Any) -> float:
        number = as_float(proposed)
        if number is None or math.isinf(number) or number == 0:
            return self._policy.parts_baseline_price
        return number

    def guard_price(self, name: Any, proposed: Any = None) -> int:
        """Return a positive integer price for ``name``."""
        value = max(1, round_half_up(self._proposal(proposed)))
        band = self._registry.get_band(normalize_part_name(name))
        if band is None:
            return max(round_half_up(self._policy.parts_floor_price), value)
        return band.clamp(value)

    def sanitize_price_map(self, raw: Any) -> Dict[str, int]:
        """Guard every entry of an untrusted ``{part name: price}`` mapping."""
        if not isinstance(raw, dict):
            return {}
        prices: Dict[str, int] = {}
        for name, price in raw.items():
            key = normalize_part_name(name)
            if not key:
                continue
            prices[key] = self.guard_price(key, price)
        return prices

    def unit_price(self, name: str, price_map: Optional[Mapping[str, int]] = None) -> int:
        """Price for one unit, preferring the (re-guarded) dynamic map."""
        key = normalize_part_name(name)
        proposed = (price_map or {}).get(key)
        return self.guard_price(key, proposed)


def candidate_part_names(observation: DamageObservation) -> List[str]:
    """
    Normalized part names to charge for one observation.

    Uses ``likely_parts``; when that is empty, a severe (>= 4) item on a
    known part falls back to the part itself. Paint entries are dropped.
    """
    raw = list(observation.likely_parts)
    if not raw and observation.severity >= 4 and observation.part != UNKNOWN:
        raw = [observation.part]

    names = []
    for item in raw:
        name = normalize_part_name(item)
        if not name or PAINT_MARKER in name:
            continue
        names.append(name)
    return names


def unique_candidate_parts(observations: Iterable[DamageObservation]) -> List[str]:
    """Distinct candidate part names across observations, in first-seen order."""
    seen: Dict[str, None] = {}
    for observation in observations:
        for name in candidate_part_names(observation):
            seen.setdefault(name, None)
    return list(seen)
