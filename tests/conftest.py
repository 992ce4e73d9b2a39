"""Shared fixtures for the damage estimator test suites."""
import pytest

from damage_estimator.config import EstimationPolicy
from damage_estimator.estimation import DamageObservation


@pytest.fixture
def default_policy():
    """Policy with all default values."""
    return EstimationPolicy()


@pytest.fixture
def severe_front_bumper():
    """Broken front bumper at severity 5, as the model would report it."""
    return {
        "zone": "front",
        "part": "bumper",
        "damage_type": "broken",
        "severity": 5,
        "confidence": 0.9,
        "likely_parts": ["bumper"],
    }


@pytest.fixture
def minor_scratch():
    """Light scratch on a rear door; cheap and confident."""
    return DamageObservation(
        zone="rear-left",
        part="door",
        damage_type="scratch",
        severity=1,
        confidence=0.95,
        estimated_labor_hours=0.5,
        needs_paint=True,
    )
