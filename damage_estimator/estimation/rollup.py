"""
Cost Rollup Engine

Turns normalized damage observations into a low/high USD cost band.

Steps:
1. Labor: effective hours per observation (minor-dent rule first), summed,
   priced at the labor rate, then multiplied by the labor correction.
2. Paint: one panel charge per observation needing paint, light blends
   discounted.
3. Parts: guarded unit price per candidate part; the parts total is the
   exact sum of the parts detail rows.
4. Contingency: base % when anything is severity >= 3, plus a front-heavy
   (or else rear-heavy) % for severity >= 4 items, capped, applied to
   labor + parts.
5. Variance: severe band when any item is severity >= 4 or contingency
   applies, base band otherwise.
"""

from typing import Dict, List, Mapping, Optional, Sequence

from ..config import EstimationPolicy
from ..utils import format_number, round_half_up
from .heuristics import apply_minor_dent_reduction, is_light_blend
from .models import (
    CostLine,
    DamageObservation,
    Estimate,
    EstimateBreakdown,
    PartsDetailRow,
)
from .pricing import PartsPricingGuard, candidate_part_names


class CostRollupEngine:
    """
    Deterministic cost rollup for one set of observations.

    Stateless apart from its policy and pricing guard, so one instance can
    serve concurrent requests.

    Example:
        engine = CostRollupEngine(EstimationPolicy())
        estimate = engine.estimate(observations, price_map={"bumper": 580})
    """

    def __init__(
        self,
        policy: EstimationPolicy,
        pricing_guard: Optional[PartsPricingGuard] = None,
    ) -> None:
        self._policy = policy
        self._guard = pricing_guard or PartsPricingGuard(policy)

    @property
    def policy(self) -> EstimationPolicy:
        return self._policy

    def estimate(
        self,
        observations: Sequence[DamageObservation],
        price_map: Optional[Mapping[str, int]] = None,
    ) -> Estimate:
        """
        Compute the estimate for a list of observations.

        Args:
            observations: Normalized observations (may be empty).
            price_map: Dynamic ``{part name: unit price}`` map, already
                sanitized by the pricing guard. Empty means baseline pricing.

        Returns:
            The Estimate with its full breakdown and assumptions.
        """
        policy = self._policy
        prices = dict(price_map or {})

        total_hours = 0.0
        lines: List[CostLine] = []
        part_counts: Dict[str, int] = {}
        has_severe_front = False
        has_severe_rear = False
        has_moderate = False

        for obs in observations:
            adjustment = apply_minor_dent_reduction(obs)
            total_hours += adjustment.hours

            paint_cost = 0
            if adjustment.needs_paint:
                factor = policy.blend_discount_factor if is_light_blend(obs) else 1.0
                paint_cost = round_half_up(policy.paint_cost_per_panel * factor)

            parts_cost = 0
            for name in candidate_part_names(obs):
                parts_cost += self._guard.unit_price(name, prices)
                part_counts[name] = part_counts.get(name, 0) + 1

            has_moderate = has_moderate or obs.severity >= 3
            if obs.severity >= 4:
                if obs.zone.startswith("front"):
                    has_severe_front = True
                if obs.zone.startswith("rear"):
                    has_severe_rear = True

            lines.append(CostLine(
                zone=obs.zone,
                part=obs.part,
                labor_hours=round(adjustment.hours, 2),
                paint_cost=paint_cost,
                parts_cost=parts_cost,
            ))

        labor_pre_correction = round_half_up(total_hours * policy.labor_rate_per_hour)
        labor = round_half_up(labor_pre_correction * policy.labor_correction_factor)
        paint = sum(line.paint_cost for line in lines)

        parts_detail = self._parts_detail(part_counts, prices)
        parts = sum(row.line_total for row in parts_detail)

        contingency_pct = self._contingency_pct(has_moderate, has_severe_front, has_severe_rear)
        contingency = round_half_up((labor + parts) * contingency_pct)

        subtotal = labor + paint + parts + contingency

        any_severe = any(obs.severity >= 4 for obs in observations)
        if any_severe or contingency > 0:
            variance = policy.variance_severe_pct
        else:
            variance = policy.variance_base_pct

        breakdown = EstimateBreakdown(
            labor=labor,
            labor_pre_correction=labor_pre_correction,
            labor_correction_factor=policy.labor_correction_factor,
            paint=paint,
            paint_units=sum(1 for line in lines if line.paint_cost > 0),
            blend_discount=policy.blend_discount_factor,
            parts=parts,
            contingency=contingency,
            contingency_pct=contingency_pct,
            subtotal=subtotal,
            variance_pct=variance,
            dynamic_parts_used=bool(prices),
            lines=tuple(lines),
            parts_detail=tuple(parts_detail),
        )

        return Estimate(
            cost_low=round_half_up(subtotal * (1 - variance)),
            cost_high=round_half_up(subtotal * (1 + variance)),
            breakdown=breakdown,
            assumptions=tuple(self._assumptions(bool(prices), contingency_pct, variance)),
        )

    def _parts_detail(
        self, part_counts: Mapping[str, int], prices: Mapping[str, int]
    ) -> List[PartsDetailRow]:
        rows = [
            PartsDetailRow(name=name, quantity=qty, unit_price=self._guard.unit_price(name, prices))
            for name, qty in part_counts.items()
        ]
        # Most expensive first; name keeps ties stable
        rows.sort(key=lambda row: (-row.line_total, row.name))
        return rows

    def _contingency_pct(self, has_moderate: bool, severe_front: bool, severe_rear: bool) -> float:
        policy = self._policy
        pct = 0.0
        if has_moderate:
            pct += policy.contingency_base_pct
        # Front and rear bonuses are exclusive; front wins
        if severe_front:
            pct += policy.contingency_front_heavy_pct
        elif severe_rear:
            pct += policy.contingency_rear_heavy_pct
        return min(pct, policy.contingency_max_pct)

    def _assumptions(self, dynamic_pricing: bool, contingency_pct: float, variance: float) -> List[str]:
        policy = self._policy
        if dynamic_pricing:
            pricing = "dynamic (vehicle/part informed, sanity-banded)"
        else:
            pricing = "baseline midpoint (sanity-banded)"
        return [
            f"Labor rate: ${format_number(policy.labor_rate_per_hour)}/hr",
            f"Labor correction: ×{policy.labor_correction_factor:.2f} (R&I/setup/omissions)",
            f"Paint & materials: ${format_number(policy.paint_cost_per_panel)} per panel "
            f"(light blends ×{format_number(policy.blend_discount_factor)})",
            f"Parts pricing: {pricing}",
            f"Hidden damage contingency: {contingency_pct * 100:.0f}% on labor+parts",
            f"Variance band: ±{round_half_up(variance * 100)}%",
            "Visual-only estimate; subject to teardown",
        ]
