"""
Data model for damage estimation.

All records are immutable and computed fresh per request. ``to_dict()``
renders each one in the JSON shape the API returns.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

BBox = Tuple[float, float, float, float]
Polygon = Tuple[Tuple[float, float], ...]


class DecisionLabel(str, Enum):
    """Claim routing dispositions."""
    AUTO_APPROVE = "AUTO-APPROVE"
    INVESTIGATE = "INVESTIGATE"
    SPECIALIST = "SPECIALIST"


@dataclass(frozen=True)
class DamageObservation:
    """
    One detected instance of vehicle damage.

    ``estimated_labor_hours`` and ``needs_paint`` may be None on records
    built by hand; the normalizer always fills them.
    """

    zone: str = "unknown"
    part: str = "unknown"
    damage_type: str = "unknown"
    severity: int = 2  # 1 = cosmetic, 5 = structural
    confidence: float = 0.5  # 0-1
    estimated_labor_hours: Optional[float] = None
    needs_paint: Optional[bool] = None
    likely_parts: Tuple[str, ...] = ()
    bbox: Optional[BBox] = None  # [x, y, w, h] in 0-1 image space
    polygon: Optional[Polygon] = None  # 3-12 (x, y) vertices in 0-1 image space

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "zone": self.zone,
            "part": self.part,
            "damage_type": self.damage_type,
            "severity": self.severity,
            "confidence": self.confidence,
            "est_labor_hours": self.estimated_labor_hours,
            "needs_paint": self.needs_paint,
            "likely_parts": list(self.likely_parts),
        }
        if self.bbox is not None:
            data["bbox_rel"] = list(self.bbox)
        if self.polygon is not None:
            data["polygon_rel"] = [list(pt) for pt in self.polygon]
        return data


@dataclass(frozen=True)
class DetectorSeed:
    """A bounding box from the object detector."""
    bbox: BBox
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {"bbox_rel": list(self.bbox), "confidence": self.confidence}


@dataclass(frozen=True)
class Vehicle:
    """Optional vehicle metadata reported by the vision model."""
    make: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "make": self.make,
            "model": self.model,
            "color": self.color,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class CostLine:
    """Per-observation cost contribution (before labor correction)."""
    zone: str
    part: str
    labor_hours: float
    paint_cost: int
    parts_cost: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zone": self.zone,
            "part": self.part,
            "est_labor_hours": self.labor_hours,
            "paint_cost": self.paint_cost,
            "parts_cost": self.parts_cost,
        }


@dataclass(frozen=True)
class PartsDetailRow:
    """Aggregated parts usage for one normalized part name."""
    name: str
    quantity: int
    unit_price: int

    @property
    def line_total(self) -> int:
        return self.quantity * self.unit_price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "qty": self.quantity,
            "unit_price": self.unit_price,
            "line_total": self.line_total,
        }


@dataclass(frozen=True)
class EstimateBreakdown:
    """Structured numbers behind an estimate's cost band."""

    labor: int
    labor_pre_correction: int
    labor_correction_factor: float
    paint: int
    paint_units: int
    blend_discount: float
    parts: int
    contingency: int
    contingency_pct: float
    subtotal: int
    variance_pct: float
    dynamic_parts_used: bool
    lines: Tuple[CostLine, ...] = ()
    parts_detail: Tuple[PartsDetailRow, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "labor": self.labor,
            "labor_pre_correction": self.labor_pre_correction,
            "labor_correction_factor": self.labor_correction_factor,
            "paint": self.paint,
            "paint_units": self.paint_units,
            "blend_discount": self.blend_discount,
            "parts": self.parts,
            "contingency": self.contingency,
            "contingency_pct": self.contingency_pct,
            "subtotal": self.subtotal,
            "variance_pct": self.variance_pct,
            "dynamic_parts_used": self.dynamic_parts_used,
            "lines": [line.to_dict() for line in self.lines],
            "parts_detail": [row.to_dict() for row in self.parts_detail],
        }


@dataclass(frozen=True)
class Estimate:
    """Final cost band with its explanation."""

    cost_low: int
    cost_high: int
    breakdown: EstimateBreakdown
    assumptions: Tuple[str, ...] = ()
    currency: str = "USD"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currency": self.currency,
            "cost_low": self.cost_low,
            "cost_high": self.cost_high,
            "assumptions": list(self.assumptions),
            "breakdown": self.breakdown.to_dict(),
        }


@dataclass(frozen=True)
class RoutingDecision:
    """One of AUTO-APPROVE / INVESTIGATE / SPECIALIST with its reasons."""

    label: DecisionLabel
    reasons: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def auto_approve(cls, *reasons: str) -> "RoutingDecision":
        return cls(DecisionLabel.AUTO_APPROVE, tuple(reasons))

    @classmethod
    def investigate(cls, *reasons: str) -> "RoutingDecision":
        return cls(DecisionLabel.INVESTIGATE, tuple(reasons))

    @classmethod
    def specialist(cls, *reasons: str) -> "RoutingDecision":
        return cls(DecisionLabel.SPECIALIST, tuple(reasons))

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label.value, "reasons": list(self.reasons)}
