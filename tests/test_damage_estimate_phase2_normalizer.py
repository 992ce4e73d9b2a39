"""
Tests for Phase 2: Damage Observation Normalizer
Feature: damage-estimate

Tests cover:
- Severity and confidence repair
- Enum label matching (zone, part, damage type)
- Bounding box and polygon validation
- Labor hours and paint defaults
- Detector seed parsing and fallback observations
- Vehicle metadata decoding
"""
import json
import math

import pytest

from damage_estimator.estimation import (
    DamageObservation,
    DetectorSeed,
    normalize_observation,
    normalize_observations,
    observations_from_seeds,
    parse_detector_seeds,
    parse_vehicle,
)
from damage_estimator.estimation.normalizer import (
    coerce_choice,
    coerce_confidence,
    coerce_likely_parts,
    coerce_severity,
    parse_bbox,
    parse_polygon,
)
from damage_estimator.estimation import PARTS, ZONES

# An integer literal too large for a float, as json.loads returns it
HUGE_INT = json.loads("1" + "0" * 400)


# ============================================================================
# Severity & Confidence
# ============================================================================

class TestSeverity:
    """Severity must end up an integer in 1..5, otherwise 2."""

    @pytest.mark.parametrize("raw", [0, 6, -1, 5.6, 100, None, "high", [], {}, True, float("nan"), float("inf")])
    def test_out_of_range_or_invalid_becomes_two(self, raw):
        assert coerce_severity(raw) == 2

    @pytest.mark.parametrize("raw,expected", [(1, 1), (3, 3), (5, 5), (2.5, 3), (4.4, 4), ("4", 4)])
    def test_valid_values(self, raw, expected):
        assert coerce_severity(raw) == expected

    def test_huge_integer_becomes_two(self):
        assert coerce_severity(HUGE_INT) == 2
        assert coerce_severity(-HUGE_INT) == 2
        assert normalize_observation({"severity": HUGE_INT}).severity == 2


class TestConfidence:
    """Confidence must lie in [0, 1]; non-numeric becomes 0.5."""

    @pytest.mark.parametrize("raw,expected", [(1.7, 1.0), (-0.3, 0.0), (0.42, 0.42), (0, 0.0), (1, 1.0)])
    def test_clamped(self, raw, expected):
        assert coerce_confidence(raw) == expected

    @pytest.mark.parametrize("raw", [None, "sure", [0.9], False, float("nan")])
    def test_non_numeric_defaults(self, raw):
        assert coerce_confidence(raw) == 0.5

    def test_infinite_is_clamped(self):
        assert coerce_confidence(float("inf")) == 1.0
        assert coerce_confidence(float("-inf")) == 0.0

    def test_huge_integer_is_clamped(self):
        assert coerce_confidence(HUGE_INT) == 1.0
        assert coerce_confidence(-HUGE_INT) == 0.0
        assert normalize_observation({"confidence": HUGE_INT}).confidence == 1.0

    def test_huge_hours_use_heuristic(self):
        obs = normalize_observation({"part": "door", "severity": 2, "est_labor_hours": HUGE_INT})
        assert obs.estimated_labor_hours == normalize_observation({"part": "door", "severity": 2}).estimated_labor_hours


# ============================================================================
# Labels
# ============================================================================

class TestLabels:
    """Zone, part and damage type must be a known value or "unknown"."""

    def test_known_value_kept(self):
        assert coerce_choice("front-left", ZONES) == "front-left"

    def test_case_and_separator_tolerated(self):
        assert coerce_choice("Quarter_Panel", PARTS) == "quarter-panel"
        assert coerce_choice("FRONT LEFT", ZONES) == "front-left"

    @pytest.mark.parametrize("raw", ["spoiler", "", None, 3, ["door"]])
    def test_unknown_values(self, raw):
        assert coerce_choice(raw, PARTS) == "unknown"

    def test_likely_parts_requires_list(self):
        assert coerce_likely_parts("bumper") == ()
        assert coerce_likely_parts(None) == ()
        assert coerce_likely_parts(["bumper", 3, None]) == ("bumper", "3")


# ============================================================================
# Geometry
# ============================================================================

class TestGeometry:
    """Invalid shapes are dropped whole, never partially accepted."""

    def test_valid_bbox(self):
        assert parse_bbox([0.1, 0.2, 0.3, 0.4]) == (0.1, 0.2, 0.3, 0.4)

    @pytest.mark.parametrize("raw", [
        [0.1, 0.2, 0.3],
        [0.1, 0.2, 0.3, 0.4, 0.5],
        [0.1, 0.2, 1.3, 0.4],
        [0.1, -0.2, 0.3, 0.4],
        [0.1, "0.2", 0.3, 0.4],
        [True, 0.2, 0.3, 0.4],
        "0.1,0.2,0.3,0.4",
        None,
    ])
    def test_invalid_bbox(self, raw):
        assert parse_bbox(raw) is None

    def test_valid_polygon(self):
        polygon = parse_polygon([[0.1, 0.1], [0.5, 0.1], [0.3, 0.6]])
        assert polygon == ((0.1, 0.1), (0.5, 0.1), (0.3, 0.6))

    def test_polygon_vertex_count_limits(self):
        assert parse_polygon([[0.1, 0.1], [0.2, 0.2]]) is None
        assert parse_polygon([[0.1, 0.1]] * 12) is not None
        assert parse_polygon([[0.1, 0.1]] * 13) is None

    def test_polygon_with_one_bad_vertex_dropped(self):
        assert parse_polygon([[0.1, 0.1], [0.5, 1.1], [0.3, 0.6]]) is None
        assert parse_polygon([[0.1, 0.1], [0.5], [0.3, 0.6]]) is None

    def test_invalid_geometry_keeps_rest_of_observation(self):
        obs = normalize_observation({
            "part": "door",
            "severity": 3,
            "bbox_rel": [0.1, 0.2, 2.0, 0.4],
            "polygon_rel": [[0.1, 0.1], [0.2, 0.2], [0.3, 0.3]],
        })
        assert obs.part == "door"
        assert obs.severity == 3
        assert obs.bbox is None
        assert obs.polygon is not None
        assert "bbox_rel" not in obs.to_dict()


# ============================================================================
# Whole Observations
# ============================================================================

class TestNormalizeObservation:
    """Tests for repairing a single record."""

    @pytest.mark.parametrize("record", [None, "door", 42, [], {}])
    def test_anything_yields_complete_observation(self, record):
        obs = normalize_observation(record)
        assert isinstance(obs, DamageObservation)
        assert obs.zone == "unknown"
        assert obs.part == "unknown"
        assert obs.damage_type == "unknown"
        assert obs.severity == 2
        assert obs.confidence == 0.5
        assert obs.estimated_labor_hours == 0.8
        assert obs.needs_paint is True
        assert obs.likely_parts == ()

    def test_well_formed_record_kept(self):
        obs = normalize_observation({
            "zone": "front",
            "part": "bumper",
            "damage_type": "crack",
            "severity": 4,
            "confidence": 0.8,
            "est_labor_hours": 3.5,
            "needs_paint": False,
            "likely_parts": ["bumper", "clip"],
            "bbox_rel": [0.2, 0.5, 0.4, 0.3],
        })
        assert obs.zone == "front"
        assert obs.damage_type == "crack"
        assert obs.estimated_labor_hours == 3.5
        assert obs.needs_paint is False
        assert obs.likely_parts == ("bumper", "clip")
        assert obs.bbox == (0.2, 0.5, 0.4, 0.3)

    @pytest.mark.parametrize("hours", [None, -1, "lots", float("inf"), float("nan")])
    def test_bad_hours_use_heuristic(self, hours):
        obs = normalize_observation({"part": "hood", "severity": 3, "est_labor_hours": hours})
        assert obs.estimated_labor_hours == 1.4

    def test_zero_hours_kept(self):
        obs = normalize_observation({"part": "hood", "est_labor_hours": 0})
        assert obs.estimated_labor_hours == 0

    def test_non_bool_needs_paint_uses_heuristic(self):
        glass = normalize_observation({"part": "windshield", "damage_type": "glass-crack", "severity": 4, "needs_paint": "yes"})
        assert glass.needs_paint is False
        scratch = normalize_observation({"part": "door", "damage_type": "scratch", "severity": 1, "needs_paint": 1})
        assert scratch.needs_paint is True

    def test_batch_never_aborts(self):
        observations = normalize_observations([
            {"part": "door", "severity": 3},
            "garbage",
            None,
            {"severity": 99, "confidence": "high"},
        ])
        assert len(observations) == 4
        assert [o.severity for o in observations] == [3, 2, 2, 2]

    def test_non_list_batch_is_empty(self):
        assert normalize_observations({"part": "door"}) == []
        assert normalize_observations(None) == []


# ============================================================================
# Detector Seeds
# ============================================================================

class TestDetectorSeeds:
    """Tests for detector boxes and the seed fallback."""

    def test_parse_seeds_filters_invalid(self):
        seeds = parse_detector_seeds([
            {"bbox_rel": [0.1, 0.1, 0.2, 0.2], "confidence": 0.8},
            {"box": [0.5, 0.5, 0.1, 0.1], "confidence": 1.4},
            {"bbox_rel": [0.1, 0.1, 0.2], "confidence": 0.8},
            {"bbox_rel": [0.1, 0.1, 0.2, 0.2], "confidence": "high"},
            {"bbox_rel": [0.1, 0.1, 0.2, 0.2], "confidence": math.nan},
            "not a seed",
        ])
        assert seeds == [
            DetectorSeed(bbox=(0.1, 0.1, 0.2, 0.2), confidence=0.8),
            DetectorSeed(bbox=(0.5, 0.5, 0.1, 0.1), confidence=1.0),
        ]

    def test_parse_seeds_non_list(self):
        assert parse_detector_seeds({"bbox_rel": [0.1, 0.1, 0.2, 0.2]}) == []

    def test_huge_seed_confidence_clamped(self):
        seeds = parse_detector_seeds([{"box": [0.1, 0.1, 0.2, 0.2], "confidence": HUGE_INT}])
        assert seeds == [DetectorSeed(bbox=(0.1, 0.1, 0.2, 0.2), confidence=1.0)]

    def test_seed_observations(self):
        observations = observations_from_seeds([DetectorSeed(bbox=(0.1, 0.2, 0.3, 0.4), confidence=0.7)])
        assert len(observations) == 1
        obs = observations[0]
        assert (obs.zone, obs.part, obs.damage_type) == ("unknown", "unknown", "unknown")
        assert obs.severity == 2
        assert obs.confidence == 0.7
        assert obs.estimated_labor_hours == 0.8
        assert obs.needs_paint is False
        assert obs.likely_parts == ()
        assert obs.bbox == (0.1, 0.2, 0.3, 0.4)

    def test_seeds_used_only_when_primary_empty(self):
        seeds = [DetectorSeed(bbox=(0.1, 0.2, 0.3, 0.4), confidence=0.7)]
        assert len(normalize_observations([], seeds)) == 1
        assert len(normalize_observations(None, seeds)) == 1

        observations = normalize_observations([{"part": "door"}], seeds)
        assert len(observations) == 1
        assert observations[0].part == "door"

    def test_no_seeds_no_observations(self):
        assert normalize_observations([], None) == []


# ============================================================================
# Vehicle
# ============================================================================

class TestVehicle:
    """Vehicle metadata is strings or null; confidence defaults apply."""

    def test_full_vehicle(self):
        vehicle = parse_vehicle({"make": "Toyota", "model": "Corolla", "color": "blue", "confidence": 0.8})
        assert vehicle.to_dict() == {"make": "Toyota", "model": "Corolla", "color": "blue", "confidence": 0.8}

    def test_bad_fields_become_null(self):
        vehicle = parse_vehicle({"make": 7, "model": None, "confidence": "high"})
        assert vehicle.make is None
        assert vehicle.model is None
        assert vehicle.color is None
        assert vehicle.confidence == 0.0

    def test_default_confidence_override(self):
        assert parse_vehicle(None, default_confidence=0.6).confidence == 0.6
        assert parse_vehicle({"confidence": float("nan")}, default_confidence=0.6).confidence == 0.6

    def test_huge_confidence_uses_default(self):
        assert parse_vehicle({"make": "Kia", "confidence": HUGE_INT}, default_confidence=0.6).confidence == 0.6
