"""
Bodyshop heuristics.

Defaults used when the vision model omits labor hours or paint need, and
the paintless-dent-repair rule for minor dents on side panels.
"""

from dataclasses import dataclass

from . import SIDE_PANELS, UNPAINTED_PARTS
from .models import DamageObservation

# Base repair hours per part at severity 3
BASE_LABOR_HOURS = {
    "bumper": 1.2,
    "door": 1.5,
    "fender": 1.2,
    "hood": 1.4,
    "quarter-panel": 2.0,
    "headlight": 0.6,
    "taillight": 0.6,
    "grille": 0.8,
    "mirror": 0.5,
    "windshield": 1.2,
    "wheel": 0.7,
    "trunk": 1.4,
}
DEFAULT_BASE_LABOR_HOURS = 1.0

SEVERITY_MULTIPLIERS = {1: 0.5, 2: 0.8, 3: 1.0, 4: 1.4, 5: 1.8}

# Paintless dent repair: ~40% faster, never below half an hour
PDR_HOURS_FACTOR = 0.6
PDR_MIN_HOURS = 0.5


@dataclass(frozen=True)
class MinorDentAdjustment:
    """Effective hours and paint need for one observation."""
    hours: float
    needs_paint: bool
    paintless: bool = False


def _severity_multiplier(severity: int) -> float:
    if severity <= 1:
        return SEVERITY_MULTIPLIERS[1]
    if severity >= 5:
        return SEVERITY_MULTIPLIERS[5]
    return SEVERITY_MULTIPLIERS[severity]


def default_labor_hours(part: str, severity: int) -> float:
    """Rough repair hours for a part, scaled by severity."""
    base = BASE_LABOR_HOURS.get(part, DEFAULT_BASE_LABOR_HOURS)
    return round(base * _severity_multiplier(severity), 2)


def default_needs_paint(damage_type: str, severity: int, part: str) -> bool:
    """Glass, lights and mirrors are never painted; finish damage always is."""
    if part in UNPAINTED_PARTS:
        return False
    if "scratch" in damage_type or "paint" in damage_type:
        return True
    return severity >= 2


def is_light_blend(observation: DamageObservation) -> bool:
    """Scratch or chip work at severity <= 2 only needs a blend, not a full panel."""
    damage_type = observation.damage_type
    return ("scratch" in damage_type or "paint" in damage_type) and observation.severity <= 2


def apply_minor_dent_reduction(observation: DamageObservation) -> MinorDentAdjustment:
    """
    Resolve effective labor hours and paint need for an observation.

    Minor dents (severity <= 2) on doors, fenders and quarter panels are
    treated as paintless dent repair: hours cut by 40% (floor 0.5h) and no
    paint. Everything else keeps its own values, falling back to the
    default heuristics where they are missing.
    """
    hours = observation.estimated_labor_hours
    if hours is None:
        hours = default_labor_hours(observation.part, observation.severity)

    if (
        observation.part in SIDE_PANELS
        and observation.damage_type == "dent"
        and observation.severity <= 2
    ):
        adjusted = max(PDR_MIN_HOURS, round(hours * PDR_HOURS_FACTOR, 2))
        return MinorDentAdjustment(hours=adjusted, needs_paint=False, paintless=True)

    needs_paint = observation.needs_paint
    if needs_paint is None:
        needs_paint = default_needs_paint(
            observation.damage_type, observation.severity, observation.part
        )
    return MinorDentAdjustment(hours=hours, needs_paint=needs_paint)
