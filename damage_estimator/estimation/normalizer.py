"""
Damage Observation Normalizer

Repairs the untrusted JSON a vision model returns into canonical
``DamageObservation`` records. Every function here is total: any input
produces a valid result and nothing raises for malformed data.

Repair rules:
- severity: integer 1-5, otherwise 2
- confidence: clamped to [0, 1], otherwise 0.5
- zone / part / damage_type: must be a known value, otherwise "unknown"
- likely_parts: a list, elements stringified and nulls dropped; anything else becomes []
- bbox_rel / polygon_rel: kept only when the whole shape is valid
- est_labor_hours / needs_paint: filled from the heuristics when missing
"""

import math
from typing import Any, Dict, List, Optional, Sequence

from ..utils import as_float
from . import (
    DAMAGE_TYPES,
    DEFAULT_CONFIDENCE,
    DEFAULT_SEVERITY,
    PARTS,
    UNKNOWN,
    ZONES,
)
from .heuristics import default_labor_hours, default_needs_paint
from .models import BBox, DamageObservation, DetectorSeed, Polygon, Vehicle

POLYGON_MIN_VERTICES = 3
POLYGON_MAX_VERTICES = 12


def _as_number(value: Any) -> Optional[float]:
    """Float for numbers and numeric strings (huge ints become +/-inf), else None."""
    return as_float(value, parse_strings=True)


def _is_unit_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return 0.0 <= value <= 1.0


def coerce_severity(value: Any) -> int:
    number = _as_number(value)
    if number is None or math.isinf(number) or number < 1 or number > 5:
        return DEFAULT_SEVERITY
    # Round half up so 2.5 -> 3
    return int(math.floor(number + 0.5))


def coerce_confidence(value: Any, default: float = DEFAULT_CONFIDENCE) -> float:
    number = _as_number(value)
    if number is None:
        return default
    return max(0.0, min(1.0, number))


def coerce_choice(value: Any, allowed: Sequence[str]) -> str:
    """Match a label against the allowed values, tolerating case and separators."""
    if not isinstance(value, str):
        return UNKNOWN
    label = value.strip().lower().replace("_", "-").replace(" ", "-")
    return label if label in allowed else UNKNOWN


def coerce_likely_parts(value: Any) -> tuple:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(item) for item in value if item is not None)


def parse_bbox(value: Any) -> Optional[BBox]:
    """Accept exactly four numbers, each within [0, 1]."""
    if not isinstance(value, (list, tuple)) or len(value) != 4:
        return None
    if not all(_is_unit_number(n) for n in value):
        return None
    return (float(value[0]), float(value[1]), float(value[2]), float(value[3]))


def parse_polygon(value: Any) -> Optional[Polygon]:
    """Accept 3-12 vertices, each an (x, y) pair within [0, 1]."""
    if not isinstance(value, (list, tuple)):
        return None
    if not POLYGON_MIN_VERTICES <= len(value) <= POLYGON_MAX_VERTICES:
        return None
    vertices = []
    for point in value:
        if not isinstance(point, (list, tuple)) or len(point) != 2:
            return None
        if not (_is_unit_number(point[0]) and _is_unit_number(point[1])):
            return None
        vertices.append((float(point[0]), float(point[1])))
    return tuple(vertices)


def normalize_observation(record: Any) -> DamageObservation:
    """Repair a single raw damage item. Non-dict input yields all defaults."""
    data: Dict[str, Any] = record if isinstance(record, dict) else {}

    severity = coerce_severity(data.get("severity"))
    part = coerce_choice(data.get("part"), PARTS)
    damage_type = coerce_choice(data.get("damage_type"), DAMAGE_TYPES)

    hours = _as_number(data.get("est_labor_hours"))
    if hours is None or hours < 0 or math.isinf(hours):
        hours = default_labor_hours(part, severity)

    needs_paint = data.get("needs_paint")
    if not isinstance(needs_paint, bool):
        needs_paint = default_needs_paint(damage_type, severity, part)

    return DamageObservation(
        zone=coerce_choice(data.get("zone"), ZONES),
        part=part,
        damage_type=damage_type,
        severity=severity,
        confidence=coerce_confidence(data.get("confidence")),
        estimated_labor_hours=hours,
        needs_paint=needs_paint,
        likely_parts=coerce_likely_parts(data.get("likely_parts")),
        bbox=parse_bbox(data.get("bbox_rel")),
        polygon=parse_polygon(data.get("polygon_rel")),
    )


def parse_detector_seeds(value: Any) -> List[DetectorSeed]:
    """
    Keep only well-formed detector boxes.

    A seed needs a numeric ``confidence`` and a valid box under
    ``bbox_rel`` (or ``box``). Anything else is silently dropped.
    """
    if not isinstance(value, (list, tuple)):
        return []
    seeds: List[DetectorSeed] = []
    for item in value:
        if not isinstance(item, dict):
            continue
        confidence = as_float(item.get("confidence"))
        if confidence is None:
            continue
        box = parse_bbox(item.get("bbox_rel", item.get("box")))
        if box is None:
            continue
        seeds.append(DetectorSeed(bbox=box, confidence=max(0.0, min(1.0, confidence))))
    return seeds


def observations_from_seeds(seeds: Sequence[DetectorSeed]) -> List[DamageObservation]:
    """Turn detector boxes into placeholder observations of unknown damage."""
    hours = default_labor_hours(UNKNOWN, DEFAULT_SEVERITY)
    return [
        DamageObservation(
            zone=UNKNOWN,
            part=UNKNOWN,
            damage_type=UNKNOWN,
            severity=DEFAULT_SEVERITY,
            confidence=seed.confidence,
            estimated_labor_hours=hours,
            needs_paint=False,
            likely_parts=(),
            bbox=seed.bbox,
        )
        for seed in seeds
    ]


def normalize_observations(
    records: Any,
    seeds: Optional[Sequence[DetectorSeed]] = None,
) -> List[DamageObservation]:
    """
    Repair a batch of raw damage items.

    Args:
        records: The model's ``damage_items`` value (anything).
        seeds: Detector boxes used only when ``records`` holds no items.

    Returns:
        Canonical observations, one per input record, or one per seed
        when the model returned nothing.
    """
    items = records if isinstance(records, (list, tuple)) else []
    observations = [normalize_observation(record) for record in items]
    if observations:
        return observations
    return observations_from_seeds(seeds or [])


def parse_vehicle(value: Any, default_confidence: float = 0.0) -> Vehicle:
    data = value if isinstance(value, dict) else {}

    def _text(key: str) -> Optional[str]:
        raw = data.get(key)
        return raw if isinstance(raw, str) else None

    confidence = as_float(data.get("confidence"))
    if confidence is None or math.isinf(confidence):
        confidence = default_confidence
    return Vehicle(
        make=_text("make"),
        model=_text("model"),
        color=_text("color"),
        confidence=float(confidence),
    )
