"""
Damage Estimation Service

Facade over the estimation core: normalize the model's damage items,
fill gaps, price parts, roll up the cost band and route the claim.

Usage:
    service = DamageEstimationService(EstimationPolicy.from_env())
    result = service.evaluate(model_json.get("damage_items"), seeds=seeds)
    payload = service.build_payload(result, model="gpt-4o-mini", ...)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .. import SCHEMA_VERSION
from ..config import EstimationPolicy
from ..utils import setup_logging
from .models import DamageObservation, DetectorSeed, Estimate, RoutingDecision, Vehicle
from .normalizer import normalize_observations
from .pricing import PartBandRegistry, PartsPricingGuard, unique_candidate_parts
from .rollup import CostRollupEngine
from .routing import RoutingEngine

logger = setup_logging()

DAMAGE_SUMMARY_MAX_CHARS = 400


@dataclass(frozen=True)
class AnalysisResult:
    """Observations with the estimate and decision computed from them."""
    observations: Tuple[DamageObservation, ...]
    estimate: Estimate
    decision: RoutingDecision
    used_seed_fallback: bool = False
    price_map: Dict[str, int] = field(default_factory=dict)


class DamageEstimationService:
    """
    Runs the estimation core for one policy version.

    Holds no per-request state; build one per policy and share it.
    """

    def __init__(
        self,
        policy: EstimationPolicy,
        registry: Optional[PartBandRegistry] = None,
    ) -> None:
        self.policy = policy
        self.pricing_guard = PartsPricingGuard(policy, registry)
        self.rollup = CostRollupEngine(policy, self.pricing_guard)
        self.router = RoutingEngine(policy)

    def normalize(
        self,
        raw_items: Any,
        seeds: Optional[Sequence[DetectorSeed]] = None,
    ) -> list[DamageObservation]:
        return normalize_observations(raw_items, seeds)

    def parts_to_price(self, observations: Sequence[DamageObservation]) -> list[str]:
        """Unique part names the dynamic pricing model should be asked about."""
        return unique_candidate_parts(observations)

    @staticmethod
    def used_seed_fallback(raw_items: Any, observations: Sequence[DamageObservation]) -> bool:
        """True when ``observations`` came from detector seeds, not model items."""
        return bool(observations) and not (isinstance(raw_items, (list, tuple)) and raw_items)

    def evaluate(
        self,
        raw_items: Any,
        seeds: Optional[Sequence[DetectorSeed]] = None,
        raw_price_map: Any = None,
    ) -> AnalysisResult:
        """
        Normalize, estimate and route in one call.

        Args:
            raw_items: The model's ``damage_items`` value, untrusted.
            seeds: Detector boxes, used only when ``raw_items`` is empty.
            raw_price_map: Untrusted dynamic part prices; guarded here.
        """
        observations = self.normalize(raw_items, seeds)
        price_map = self.pricing_guard.sanitize_price_map(raw_price_map)
        return self.evaluate_observations(
            observations, price_map, used_seed_fallback=self.used_seed_fallback(raw_items, observations)
        )

    def evaluate_observations(
        self,
        observations: Sequence[DamageObservation],
        price_map: Optional[Mapping[str, int]] = None,
        used_seed_fallback: bool = False,
    ) -> AnalysisResult:
        """Estimate and route observations that are already normalized."""
        if used_seed_fallback:
            logger.info("Model returned no damage items; using %d detector seed(s)", len(observations))
        prices = dict(price_map or {})
        estimate = self.rollup.estimate(observations, prices)
        decision = self.router.decide(observations, estimate)
        logger.debug(
            "Estimated %d item(s): $%d-$%d -> %s",
            len(observations), estimate.cost_low, estimate.cost_high, decision.label.value,
        )
        return AnalysisResult(
            observations=tuple(observations),
            estimate=estimate,
            decision=decision,
            used_seed_fallback=used_seed_fallback,
            price_map=prices,
        )

    @staticmethod
    def damage_summary(observations: Sequence[DamageObservation], narrative: str = "") -> str:
        """One-line summary for copy/paste, capped at 400 characters."""
        if observations:
            summary = "; ".join(
                f"{obs.zone} {obs.part} - {obs.damage_type}, sev {obs.severity}"
                for obs in observations
            )
        else:
            summary = narrative
        return summary[:DAMAGE_SUMMARY_MAX_CHARS]

    def build_payload(
        self,
        result: AnalysisResult,
        *,
        model: str,
        run_id: str,
        image_sha256: str,
        vehicle: Vehicle,
        narrative: str = "",
        normalization_notes: str = "",
    ) -> Dict[str, Any]:
        """Render the analyze response body."""
        return {
            "schema_version": SCHEMA_VERSION,
            "model": model,
            "run_id": run_id,
            "image_sha256": image_sha256,
            "vehicle": vehicle.to_dict(),
            "damage_items": [obs.to_dict() for obs in result.observations],
            "narrative": narrative,
            "normalization_notes": normalization_notes,
            "estimate": result.estimate.to_dict(),
            "decision": result.decision.to_dict(),
            "damage_summary": self.damage_summary(result.observations, narrative),
        }
