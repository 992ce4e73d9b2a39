"""
Routing Decision Engine

Ordered threshold rules over severity, cost and confidence:

1. AUTO-APPROVE when max severity, cost high and aggregate confidence all
   clear the auto thresholds.
2. SPECIALIST when severity or cost high reaches a specialist threshold.
3. INVESTIGATE otherwise.

The first matching rule wins, so AUTO-APPROVE is always checked first.
"""

from typing import Sequence

from ..config import EstimationPolicy
from ..utils import format_number, round_half_up
from . import DEFAULT_CONFIDENCE
from .models import DamageObservation, Estimate, RoutingDecision

# Each severity step above 1 adds this much weight to an item's confidence
SEVERITY_WEIGHT_STEP = 0.2


def aggregate_confidence(observations: Sequence[DamageObservation]) -> float:
    """
    Severity-weighted mean confidence.

    Returns ``DEFAULT_CONFIDENCE`` (0.5) for an empty list.
    """
    numerator = 0.0
    denominator = 0.0
    for obs in observations:
        weight = 1 + SEVERITY_WEIGHT_STEP * (obs.severity - 1)
        numerator += obs.confidence * weight
        denominator += weight
    if not denominator:
        return DEFAULT_CONFIDENCE
    return numerator / denominator


class RoutingEngine:
    """Applies the routing thresholds of an ``EstimationPolicy``."""

    def __init__(self, policy: EstimationPolicy) -> None:
        self._policy = policy

    def decide(
        self,
        observations: Sequence[DamageObservation],
        estimate: Estimate,
    ) -> RoutingDecision:
        """
        Route a claim.

        Args:
            observations: The normalized observations the estimate came from.
            estimate: The computed estimate (only ``cost_high`` is used).

        Returns:
            Exactly one RoutingDecision with its reasons.
        """
        policy = self._policy
        max_severity = max((obs.severity for obs in observations), default=0)
        confidence = aggregate_confidence(observations)
        cost_high = estimate.cost_high

        if (
            max_severity <= policy.auto_max_severity
            and cost_high <= policy.auto_max_cost
            and confidence >= policy.auto_min_confidence
        ):
            return RoutingDecision.auto_approve(
                f"severity ≤ {format_number(policy.auto_max_severity)}",
                f"cost_high ≤ ${format_number(policy.auto_max_cost)}",
                f"agg_conf ≥ {round_half_up(policy.auto_min_confidence * 100)}%",
            )

        severity_hit = max_severity >= policy.specialist_min_severity
        cost_hit = cost_high >= policy.specialist_min_cost
        if severity_hit or cost_hit:
            reasons = []
            if severity_hit:
                reasons.append(f"severity ≥ {format_number(policy.specialist_min_severity)}")
            if cost_hit:
                reasons.append(f"cost_high ≥ ${format_number(policy.specialist_min_cost)}")
            return RoutingDecision.specialist(*reasons)

        return RoutingDecision.investigate(
            f"agg_conf {round_half_up(confidence * 100)}%",
            f"max_severity {max_severity}",
            f"cost_high ${cost_high}",
        )
