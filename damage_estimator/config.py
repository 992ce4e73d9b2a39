"""
Configuration for the damage estimator.

Every knob is read from the environment (optionally via a ``.env`` file)
into plain dataclasses. The estimation core never reads the environment
itself; callers build an ``EstimationPolicy`` once and pass it in.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv


def _env_str(name: str, default: str = "") -> str:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip()


def _env_float(name: str, default: float) -> float:
    """Read a float env var, falling back to the default when unset or unparseable."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if not math.isfinite(value):
        return default
    return value


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EstimationPolicy:
    """
    Numeric policy for the cost rollup and routing engines.

    Rates are in USD; percentages are fractions (0.10 == 10%).
    """

    labor_rate_per_hour: float = 125.0
    labor_correction_factor: float = 1.4
    paint_cost_per_panel: float = 300.0
    blend_discount_factor: float = 0.6
    parts_baseline_price: float = 500.0
    contingency_base_pct: float = 0.10
    contingency_front_heavy_pct: float = 0.10
    contingency_rear_heavy_pct: float = 0.05
    contingency_max_pct: float = 0.30
    variance_base_pct: float = 0.15
    variance_severe_pct: float = 0.25
    auto_max_cost: float = 1500.0
    auto_max_severity: int = 2
    auto_min_confidence: float = 0.75
    specialist_min_cost: float = 5000.0
    specialist_min_severity: int = 4
    # Floor applied to parts with no registered band
    parts_floor_price: float = 50.0

    @classmethod
    def from_env(cls) -> "EstimationPolicy":
        """Load policy values from environment variables."""
        return cls(
            labor_rate_per_hour=_env_float("LABOR_RATE", 125.0),
            labor_correction_factor=_env_float("LABOR_CORRECTION", 1.4),
            paint_cost_per_panel=_env_float("PAINT_MAT_COST", 300.0),
            blend_discount_factor=_env_float("BLEND_DISCOUNT", 0.6),
            parts_baseline_price=_env_float("PARTS_BASE", 500.0),
            contingency_base_pct=_env_float("CONTINGENCY_BASE", 0.10),
            contingency_front_heavy_pct=_env_float("CONTINGENCY_FRONT_HEAVY", 0.10),
            contingency_rear_heavy_pct=_env_float("CONTINGENCY_REAR_HEAVY", 0.05),
            contingency_max_pct=_env_float("CONTINGENCY_MAX", 0.30),
            variance_base_pct=_env_float("VARIANCE_BASE", 0.15),
            variance_severe_pct=_env_float("VARIANCE_SEVERE", 0.25),
            auto_max_cost=_env_float("AUTO_MAX_COST", 1500.0),
            auto_max_severity=_env_int("AUTO_MAX_SEVERITY", 2),
            auto_min_confidence=_env_float("AUTO_MIN_CONF", 0.75),
            specialist_min_cost=_env_float("SPECIALIST_MIN_COST", 5000.0),
            specialist_min_severity=_env_int("SPECIALIST_MIN_SEVERITY", 4),
            parts_floor_price=_env_float("PARTS_FLOOR", 50.0),
        )


@dataclass
class PricingSettings:
    """Where part prices come from."""

    dynamic_enabled: bool = False
    bands_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> "PricingSettings":
        return cls(
            dynamic_enabled=_env_float("PARTS_DYNAMIC", 0) == 1,
            bands_path=_env_str("PART_BANDS_PATH") or None,
        )


@dataclass
class OpenAISettings:
    """OpenAI chat completions settings used for vision and pricing calls."""

    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    vision_model: str = "gpt-4o-mini"
    vehicle_model: str = "gpt-4o-mini"
    timeout_seconds: float = 60.0
    max_retries: int = 3

    @classmethod
    def from_env(cls) -> "OpenAISettings":
        return cls(
            api_key=_env_str("OPENAI_API_KEY"),
            base_url=_env_str("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
            vision_model=_env_str("MODEL_VISION", "gpt-4o-mini") or "gpt-4o-mini",
            vehicle_model=_env_str("MODEL_VEHICLE", "gpt-4o-mini") or "gpt-4o-mini",
            timeout_seconds=_env_float("OPENAI_TIMEOUT_SECONDS", 60.0),
            max_retries=_env_int("OPENAI_MAX_RETRIES", 3),
        )


@dataclass
class DetectorSettings:
    """Hosted object-detector (Roboflow) settings. All optional."""

    api_key: str = ""
    model: str = ""
    version: str = ""
    confidence: str = ""
    overlap: str = ""
    base_url: str = "https://detect.roboflow.com"
    timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "DetectorSettings":
        return cls(
            api_key=_env_str("ROBOFLOW_API_KEY"),
            model=_env_str("ROBOFLOW_MODEL"),
            version=_env_str("ROBOFLOW_VERSION"),
            confidence=_env_str("ROBOFLOW_CONF"),
            overlap=_env_str("ROBOFLOW_OVERLAP"),
            base_url=_env_str("ROBOFLOW_URL", "https://detect.roboflow.com").rstrip("/"),
            timeout_seconds=_env_float("ROBOFLOW_TIMEOUT_SECONDS", 10.0),
        )

    @property
    def missing(self) -> List[str]:
        """Names of the env vars that must be set before detection runs."""
        missing = []
        if not self.api_key:
            missing.append("ROBOFLOW_API_KEY")
        if not self.model:
            missing.append("ROBOFLOW_MODEL")
        if not self.version:
            missing.append("ROBOFLOW_VERSION")
        return missing

    @property
    def enabled(self) -> bool:
        return not self.missing


@dataclass
class RateLimitSettings:
    """Per-client fixed-window limits for the two API operations."""

    detect_window_seconds: float = 60.0
    detect_max_requests: int = 20
    analyze_window_seconds: float = 60.0
    analyze_max_requests: int = 10

    @classmethod
    def from_env(cls) -> "RateLimitSettings":
        return cls(
            detect_window_seconds=_env_float("DETECT_RL_WINDOW_SECONDS", 60.0),
            detect_max_requests=_env_int("DETECT_RL_MAX", 20),
            analyze_window_seconds=_env_float("ANALYZE_RL_WINDOW_SECONDS", 60.0),
            analyze_max_requests=_env_int("ANALYZE_RL_MAX", 10),
        )


@dataclass
class Settings:
    """Top-level application settings."""

    policy: EstimationPolicy = field(default_factory=EstimationPolicy)
    pricing: PricingSettings = field(default_factory=PricingSettings)
    openai: OpenAISettings = field(default_factory=OpenAISettings)
    detector: DetectorSettings = field(default_factory=DetectorSettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    max_upload_mb: float = 20.0
    log_level: str = "INFO"


def load_settings() -> Settings:
    """Load all settings from the environment (and ``.env`` if present)."""
    load_dotenv()
    return Settings(
        policy=EstimationPolicy.from_env(),
        pricing=PricingSettings.from_env(),
        openai=OpenAISettings.from_env(),
        detector=DetectorSettings.from_env(),
        rate_limit=RateLimitSettings.from_env(),
        max_upload_mb=_env_float("MAX_UPLOAD_MB", 20.0),
        log_level=_env_str("LOG_LEVEL", "INFO") or "INFO",
    )


def validate_settings(settings: Settings) -> List[str]:
    """
    Check settings for problems that would make requests fail or mislead.

    Returns:
        A list of human-readable problems; empty when the settings are usable.
    """
    problems: List[str] = []
    if not settings.openai.api_key:
        problems.append("OPENAI_API_KEY is not set")

    policy = settings.policy
    if policy.labor_rate_per_hour <= 0:
        problems.append("LABOR_RATE must be positive")
    if policy.parts_baseline_price <= 0:
        problems.append("PARTS_BASE must be positive")
    if not 0 <= policy.blend_discount_factor <= 1:
        problems.append("BLEND_DISCOUNT must be between 0 and 1")
    if policy.variance_base_pct > policy.variance_severe_pct:
        problems.append("VARIANCE_BASE should not exceed VARIANCE_SEVERE")
    if policy.auto_max_severity >= policy.specialist_min_severity:
        problems.append("AUTO_MAX_SEVERITY should be below SPECIALIST_MIN_SEVERITY")
    if policy.auto_max_cost >= policy.specialist_min_cost:
        problems.append("AUTO_MAX_COST should be below SPECIALIST_MIN_COST")
    if not 0 <= policy.auto_min_confidence <= 1:
        problems.append("AUTO_MIN_CONF must be between 0 and 1")
    return problems
