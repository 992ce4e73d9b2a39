"""
Vision model calls for damage analysis.

Builds the prompts for the three model calls (quality gate, damage
analysis, dynamic parts pricing) and decodes their JSON replies. The
decoded damage items are still untrusted; the estimation normalizer
repairs them.
"""

from __future__ import annotations

import base64
import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .config import OpenAISettings
from .estimation.models import DetectorSeed, Vehicle
from .estimation.normalizer import parse_vehicle
from .openai_client import OpenAIClientError, chat_completion
from .utils import as_float, setup_logging

logger = setup_logging()

# Detector boxes passed to the model as alignment hints
MAX_PROMPT_SEEDS = 12

ANALYZE_SYSTEM_PROMPT = """
Return ONLY valid JSON matching EXACTLY this shape (no prose, no markdown):

{
  "vehicle": { "make": string | null, "model": string | null, "color": string | null, "confidence": number },
  "damage_items": Array<{
    "zone": "front"|"front-left"|"left"|"rear-left"|"rear"|"rear-right"|"right"|"front-right"|"roof"|"unknown",
    "part": "bumper"|"fender"|"door"|"hood"|"trunk"|"quarter-panel"|"headlight"|"taillight"|"grille"|"mirror"|"windshield"|"wheel"|"unknown",
    "damage_type": "dent"|"scratch"|"crack"|"paint-chips"|"broken"|"bent"|"missing"|"glass-crack"|"unknown",
    "severity": 1|2|3|4|5,
    "confidence": number,
    "est_labor_hours": number,
    "needs_paint": boolean,
    "likely_parts": string[],
    "bbox_rel"?: [number, number, number, number],
    "polygon_rel"?: Array<[number, number]>
  }>,
  "narrative": string,
  "normalization_notes": string
}

Rules:
- Confidence in [0,1]. Severity 1..5 (1=very minor, 5=severe/structural). Be conservative.
- est_labor_hours realistic per item; likely_parts may be empty.
- Geometry normalized [0..1]. Prefer polygon_rel for irregular scratches; else bbox_rel.
- If YOLO_SEEDS are provided, ALIGN your geometry/labels to those regions when applicable; avoid inventing far-away areas.
- No extra keys. JSON only.
""".strip()

QUALITY_GATE_SYSTEM_PROMPT = """
Return ONLY JSON with this shape:

{
  "is_vehicle": boolean,
  "quality_ok": boolean,
  "issues": string[],
  "vehicle": { "make": string|null, "model": string|null, "color": string|null, "confidence": number }
}

Rules:
- "issues" can include: "not_vehicle", "blurry", "low_light", "heavy_occlusion", "cropped", "too_small".
- If unsure about make/model/color, set null but always provide numeric "confidence" [0..1].
- Be conservative; JSON only.
""".strip()

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


class ModelOutputError(Exception):
    """Raised when the model reply is not a JSON object."""
    pass


@dataclass
class QualityGateResult:
    """Is the image a usable vehicle photo?"""
    is_vehicle: bool = True
    quality_ok: bool = True
    issues: List[str] = field(default_factory=list)
    vehicle: Vehicle = field(default_factory=lambda: Vehicle(confidence=0.6))


@dataclass
class DamageAnalysis:
    """Decoded (but not yet normalized) damage analysis reply."""
    raw_items: Any
    vehicle: Vehicle
    narrative: str = ""
    normalization_notes: str = ""


def image_data_url(data: bytes, content_type: Optional[str] = None) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{content_type or 'image/jpeg'};base64,{encoded}"


def parse_model_json(content: str) -> Dict[str, Any]:
    """
    Decode a model reply into a JSON object.

    Tolerates surrounding whitespace and a markdown code fence.

    Raises:
        ModelOutputError: If the reply is not a JSON object.
    """
    text = (content or "").strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise ModelOutputError("Model returned invalid JSON") from exc
    if not isinstance(parsed, dict):
        raise ModelOutputError("Model returned JSON that is not an object")
    return parsed


def _text_field(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    return value if isinstance(value, str) else ""


def run_quality_gate(settings: OpenAISettings, image_url: str) -> QualityGateResult:
    """Ask the fast classifier whether the image is a usable car photo."""
    messages = [
        {"role": "system", "content": QUALITY_GATE_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": "Classify whether this is a usable car image for damage assessment."},
                {"type": "image_url", "image_url": {"url": image_url}},
            ],
        },
    ]
    result = chat_completion(settings, messages, model=settings.vehicle_model)
    try:
        parsed = parse_model_json(result["content"])
    except ModelOutputError:
        logger.warning("Quality gate reply was not JSON; assuming usable vehicle image")
        return QualityGateResult()

    issues = parsed.get("issues")
    return QualityGateResult(
        is_vehicle=parsed["is_vehicle"] if isinstance(parsed.get("is_vehicle"), bool) else True,
        quality_ok=parsed["quality_ok"] if isinstance(parsed.get("quality_ok"), bool) else True,
        issues=[str(i) for i in issues] if isinstance(issues, list) else [],
        vehicle=parse_vehicle(parsed.get("vehicle"), default_confidence=0.6),
    )


def analyze_damage(
    settings: OpenAISettings,
    image_url: str,
    seeds: Sequence[DetectorSeed] = (),
) -> DamageAnalysis:
    """
    Ask the vision model for structured damage items.

    Raises:
        OpenAIClientError: If the model call fails after retries.
        ModelOutputError: If the reply is not a JSON object.
    """
    seed_hints = [seed.to_dict() for seed in list(seeds)[:MAX_PROMPT_SEEDS]]
    messages = [
        {"role": "system", "content": ANALYZE_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": "Analyze this car image and fill the schema. Be concise and conservative."},
                {"type": "text", "text": f"YOLO_SEEDS: {json.dumps(seed_hints)}"},
                {"type": "image_url", "image_url": {"url": image_url}},
            ],
        },
    ]
    result = chat_completion(settings, messages, model=settings.vision_model, max_tokens=2000)
    parsed = parse_model_json(result["content"])

    return DamageAnalysis(
        raw_items=parsed.get("damage_items"),
        vehicle=parse_vehicle(parsed.get("vehicle")),
        narrative=_text_field(parsed, "narrative"),
        normalization_notes=_text_field(parsed, "normalization_notes"),
    )


def price_parts(
    settings: OpenAISettings,
    parts: Sequence[str],
    vehicle: Vehicle,
    baseline_price: float,
) -> Dict[str, Any]:
    """
    Ask the model for typical retail prices of the given parts.

    Best effort: any failure returns an empty map so the estimate falls
    back to baseline pricing. Values are NOT sanitized here; run them
    through ``PartsPricingGuard.sanitize_price_map``.
    """
    if not parts:
        return {}

    system = (
        "Return ONLY compact JSON mapping part names to typical US retail "
        "OEM-equivalent part prices (USD, integers).\n"
        "Keys must exactly match the input 'parts' values (lowercase). "
        f"If unsure, use {baseline_price:g}.\n"
        'Example: {"bumper": 580, "fender": 320}'
    )
    vehicle_label = f"{vehicle.make or 'unknown'} {vehicle.model or 'unknown'}"
    messages = [
        {"role": "system", "content": system},
        {"role": "user", "content": f"vehicle: {vehicle_label}; parts: {json.dumps(list(parts))}"},
    ]

    try:
        result = chat_completion(settings, messages, model=settings.vision_model, max_tokens=400)
        parsed = parse_model_json(result["content"])
    except (OpenAIClientError, ModelOutputError) as exc:
        logger.warning("Dynamic parts pricing failed, using baseline: %s", exc)
        return {}

    prices: Dict[str, Any] = {}
    for name, value in parsed.items():
        number = as_float(value)
        if number is None or math.isinf(number):
            prices[str(name).lower()] = baseline_price
        else:
            prices[str(name).lower()] = value
    return prices
