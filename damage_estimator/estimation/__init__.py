"""
Damage Estimation Package

Deterministic estimation and routing rules applied to the damage items a
vision model returns for a vehicle photo.

Modules:
- models: Observation, estimate and decision dataclasses
- normalizer: Repairs untrusted model output into canonical observations
- heuristics: Default labor hours, paint need and the minor-dent rule
- pricing: Part-family price bands and the pricing guard
- rollup: Labor/paint/parts/contingency cost rollup into a cost band
- routing: Threshold routing into AUTO-APPROVE / INVESTIGATE / SPECIALIST
- service: Facade wiring the steps above into one call
"""

UNKNOWN = "unknown"

# Body regions
ZONES = (
    "front",
    "front-left",
    "left",
    "rear-left",
    "rear",
    "rear-right",
    "right",
    "front-right",
    "roof",
    UNKNOWN,
)

# Vehicle parts
PARTS = (
    "bumper",
    "fender",
    "door",
    "hood",
    "trunk",
    "quarter-panel",
    "headlight",
    "taillight",
    "grille",
    "mirror",
    "windshield",
    "wheel",
    UNKNOWN,
)

# Damage types
DAMAGE_TYPES = (
    "dent",
    "scratch",
    "crack",
    "paint-chips",
    "broken",
    "bent",
    "missing",
    "glass-crack",
    UNKNOWN,
)

# Parts that are never painted
UNPAINTED_PARTS = frozenset({"windshield", "headlight", "taillight", "mirror"})

# Panels eligible for paintless dent repair
SIDE_PANELS = frozenset({"door", "fender", "quarter-panel"})

DEFAULT_SEVERITY = 2
DEFAULT_CONFIDENCE = 0.5

from .models import (
    CostLine,
    DamageObservation,
    DecisionLabel,
    DetectorSeed,
    Estimate,
    EstimateBreakdown,
    PartsDetailRow,
    RoutingDecision,
    Vehicle,
)
from .heuristics import (
    MinorDentAdjustment,
    apply_minor_dent_reduction,
    default_labor_hours,
    default_needs_paint,
)
from .normalizer import (
    normalize_observation,
    normalize_observations,
    observations_from_seeds,
    parse_detector_seeds,
    parse_vehicle,
)
from .pricing import (
    DEFAULT_PART_BANDS,
    PartBandRegistry,
    PartsPricingGuard,
    PriceBand,
    candidate_part_names,
    unique_candidate_parts,
)
from .rollup import CostRollupEngine
from .routing import RoutingEngine, aggregate_confidence
from .service import AnalysisResult, DamageEstimationService

__all__ = [
    # Constants
    "UNKNOWN",
    "ZONES",
    "PARTS",
    "DAMAGE_TYPES",
    "UNPAINTED_PARTS",
    "SIDE_PANELS",
    "DEFAULT_SEVERITY",
    "DEFAULT_CONFIDENCE",
    # Models
    "CostLine",
    "DamageObservation",
    "DecisionLabel",
    "DetectorSeed",
    "Estimate",
    "EstimateBreakdown",
    "PartsDetailRow",
    "RoutingDecision",
    "Vehicle",
    # Heuristics
    "MinorDentAdjustment",
    "apply_minor_dent_reduction",
    "default_labor_hours",
    "default_needs_paint",
    # Normalizer
    "normalize_observation",
    "normalize_observations",
    "observations_from_seeds",
    "parse_detector_seeds",
    "parse_vehicle",
    # Pricing
    "DEFAULT_PART_BANDS",
    "PartBandRegistry",
    "PartsPricingGuard",
    "PriceBand",
    "candidate_part_names",
    "unique_candidate_parts",
    # Engines
    "CostRollupEngine",
    "RoutingEngine",
    "aggregate_confidence",
    "AnalysisResult",
    "DamageEstimationService",
]
