"""
Tests for Phase 1: Infrastructure & Configuration
Feature: damage-estimate

Tests cover:
- EstimationPolicy defaults and environment overrides
- Fallback to defaults for unparseable values
- Collaborator settings (OpenAI, detector, rate limits)
- validate_settings problem reporting
- Logging setup
"""
import logging

import pytest

from damage_estimator import SCHEMA_VERSION
from damage_estimator.config import (
    DetectorSettings,
    EstimationPolicy,
    OpenAISettings,
    PricingSettings,
    RateLimitSettings,
    Settings,
    load_settings,
    validate_settings,
)
from damage_estimator.utils import (
    HANDLER_NAME,
    as_float,
    format_number,
    round_half_up,
    setup_logging,
    sha256_bytes,
    sha256_text,
)


POLICY_ENV_VARS = [
    "LABOR_RATE", "LABOR_CORRECTION", "PAINT_MAT_COST", "BLEND_DISCOUNT",
    "PARTS_BASE", "CONTINGENCY_BASE", "CONTINGENCY_FRONT_HEAVY",
    "CONTINGENCY_REAR_HEAVY", "CONTINGENCY_MAX", "VARIANCE_BASE",
    "VARIANCE_SEVERE", "AUTO_MAX_COST", "AUTO_MAX_SEVERITY", "AUTO_MIN_CONF",
    "SPECIALIST_MIN_COST", "SPECIALIST_MIN_SEVERITY", "PARTS_FLOOR",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every estimator env var so defaults apply."""
    for var in POLICY_ENV_VARS + [
        "PARTS_DYNAMIC", "PART_BANDS_PATH", "OPENAI_API_KEY", "OPENAI_BASE_URL",
        "MODEL_VISION", "MODEL_VEHICLE", "ROBOFLOW_API_KEY", "ROBOFLOW_MODEL",
        "ROBOFLOW_VERSION", "ROBOFLOW_URL", "MAX_UPLOAD_MB",
        "DETECT_RL_MAX", "ANALYZE_RL_MAX",
    ]:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


# ============================================================================
# EstimationPolicy
# ============================================================================

class TestEstimationPolicy:
    """Tests for the numeric estimation policy."""

    def test_defaults(self):
        policy = EstimationPolicy()
        assert policy.labor_rate_per_hour == 125
        assert policy.labor_correction_factor == 1.4
        assert policy.paint_cost_per_panel == 300
        assert policy.blend_discount_factor == 0.6
        assert policy.parts_baseline_price == 500
        assert policy.contingency_base_pct == 0.10
        assert policy.contingency_front_heavy_pct == 0.10
        assert policy.contingency_rear_heavy_pct == 0.05
        assert policy.contingency_max_pct == 0.30
        assert policy.variance_base_pct == 0.15
        assert policy.variance_severe_pct == 0.25
        assert policy.auto_max_cost == 1500
        assert policy.auto_max_severity == 2
        assert policy.auto_min_confidence == 0.75
        assert policy.specialist_min_cost == 5000
        assert policy.specialist_min_severity == 4
        assert policy.parts_floor_price == 50

    def test_from_env_without_vars_matches_defaults(self, clean_env):
        assert EstimationPolicy.from_env() == EstimationPolicy()

    def test_from_env_overrides(self, clean_env):
        clean_env.setenv("LABOR_RATE", "150")
        clean_env.setenv("AUTO_MAX_SEVERITY", "3")
        clean_env.setenv("AUTO_MIN_CONF", "0.6")
        clean_env.setenv("SPECIALIST_MIN_COST", "8000")

        policy = EstimationPolicy.from_env()

        assert policy.labor_rate_per_hour == 150
        assert policy.auto_max_severity == 3
        assert isinstance(policy.auto_max_severity, int)
        assert policy.auto_min_confidence == 0.6
        assert policy.specialist_min_cost == 8000

    @pytest.mark.parametrize("raw", ["abc", "", "nan", "inf"])
    def test_unparseable_values_fall_back(self, clean_env, raw):
        clean_env.setenv("LABOR_RATE", raw)
        assert EstimationPolicy.from_env().labor_rate_per_hour == 125

    def test_policy_is_immutable(self):
        policy = EstimationPolicy()
        with pytest.raises(Exception):
            policy.labor_rate_per_hour = 10


# ============================================================================
# Collaborator Settings
# ============================================================================

class TestCollaboratorSettings:
    """Tests for pricing, OpenAI, detector and rate limit settings."""

    def test_pricing_dynamic_only_when_one(self, clean_env):
        assert PricingSettings.from_env().dynamic_enabled is False
        clean_env.setenv("PARTS_DYNAMIC", "1")
        assert PricingSettings.from_env().dynamic_enabled is True
        clean_env.setenv("PARTS_DYNAMIC", "yes")
        assert PricingSettings.from_env().dynamic_enabled is False

    def test_pricing_bands_path(self, clean_env):
        assert PricingSettings.from_env().bands_path is None
        clean_env.setenv("PART_BANDS_PATH", "prompts/part-price-bands.json")
        assert PricingSettings.from_env().bands_path == "prompts/part-price-bands.json"

    def test_openai_defaults(self, clean_env):
        settings = OpenAISettings.from_env()
        assert settings.api_key == ""
        assert settings.base_url == "https://api.openai.com/v1"
        assert settings.vision_model == "gpt-4o-mini"
        assert settings.vehicle_model == "gpt-4o-mini"

    def test_openai_base_url_trailing_slash_removed(self, clean_env):
        clean_env.setenv("OPENAI_BASE_URL", "https://proxy.example.com/v1/")
        assert OpenAISettings.from_env().base_url == "https://proxy.example.com/v1"

    def test_detector_disabled_until_fully_configured(self, clean_env):
        clean_env.setenv("ROBOFLOW_API_KEY", "rf-key")
        settings = DetectorSettings.from_env()
        assert settings.enabled is False
        assert settings.missing == ["ROBOFLOW_MODEL", "ROBOFLOW_VERSION"]

        clean_env.setenv("ROBOFLOW_MODEL", "car-damage")
        clean_env.setenv("ROBOFLOW_VERSION", "3")
        settings = DetectorSettings.from_env()
        assert settings.enabled is True
        assert settings.missing == []

    def test_rate_limit_defaults(self, clean_env):
        limits = RateLimitSettings.from_env()
        assert limits.detect_window_seconds == 60
        assert limits.detect_max_requests == 20
        assert limits.analyze_window_seconds == 60
        assert limits.analyze_max_requests == 10

    def test_load_settings_aggregates(self, clean_env):
        clean_env.setenv("OPENAI_API_KEY", "sk-test")
        clean_env.setenv("MAX_UPLOAD_MB", "5")
        settings = load_settings()
        assert settings.openai.api_key == "sk-test"
        assert settings.max_upload_mb == 5
        assert settings.policy == EstimationPolicy()


# ============================================================================
# validate_settings
# ============================================================================

class TestValidateSettings:
    """Tests for configuration problem reporting."""

    def test_valid_settings_have_no_problems(self):
        settings = Settings(openai=OpenAISettings(api_key="sk-test"))
        assert validate_settings(settings) == []

    def test_missing_api_key_reported(self):
        problems = validate_settings(Settings())
        assert "OPENAI_API_KEY is not set" in problems

    def test_inverted_thresholds_reported(self):
        policy = EstimationPolicy(auto_max_severity=4, auto_max_cost=6000)
        settings = Settings(policy=policy, openai=OpenAISettings(api_key="sk-test"))
        problems = validate_settings(settings)
        assert any("AUTO_MAX_SEVERITY" in p for p in problems)
        assert any("AUTO_MAX_COST" in p for p in problems)

    def test_non_positive_labor_rate_reported(self):
        settings = Settings(
            policy=EstimationPolicy(labor_rate_per_hour=0),
            openai=OpenAISettings(api_key="sk-test"),
        )
        assert "LABOR_RATE must be positive" in validate_settings(settings)


# ============================================================================
# Utilities
# ============================================================================

class TestUtils:
    """Tests for logging and helper functions."""

    def test_setup_logging_returns_shared_logger(self):
        first = setup_logging()
        second = setup_logging()
        assert first is second
        assert first.name == "damage_estimator"
        own = [h for h in first.handlers if h.get_name() == HANDLER_NAME]
        assert len(own) == 1
        assert isinstance(own[0], logging.StreamHandler)

    def test_setup_logging_installs_handler_next_to_foreign_ones(self):
        logger = logging.getLogger("damage_estimator")
        for handler in [h for h in logger.handlers if h.get_name() == HANDLER_NAME]:
            logger.removeHandler(handler)
        foreign = logging.NullHandler()
        logger.addHandler(foreign)
        try:
            setup_logging()
            names = [h.get_name() for h in logger.handlers]
            assert names.count(HANDLER_NAME) == 1
            assert foreign in logger.handlers
        finally:
            logger.removeHandler(foreign)

    def test_setup_logging_level(self):
        logger = setup_logging("debug")
        assert logger.level == logging.DEBUG
        setup_logging("INFO")

    @pytest.mark.parametrize("value,expected", [
        (1692.5, 1693),
        (1015.5, 1016),
        (2.5, 3),
        (2.4999, 2),
        (0, 0),
    ])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected

    def test_sha256_helpers(self):
        assert sha256_bytes(b"abc") == sha256_text("abc")
        assert len(sha256_text("https://example.com/car.jpg")) == 64

    def test_schema_version(self):
        assert SCHEMA_VERSION == "1.6.0"

    def test_as_float(self):
        assert as_float(3) == 3.0
        assert as_float(True) is None
        assert as_float(float("nan")) is None
        assert as_float("4") is None
        assert as_float(" 4 ", parse_strings=True) == 4.0
        assert as_float(10 ** 400) == float("inf")
        assert as_float(-(10 ** 400)) == float("-inf")

    def test_format_number(self):
        assert format_number(1500.0) == "1500"
        assert format_number(1_250_000) == "1250000"
        assert format_number(1499.995) == "1499.995"
        assert format_number(0.6) == "0.6"
