"""
Object-detector client (Roboflow hosted inference).

Returns normalized damage boxes used as alignment hints for the vision
model and as fallback observations. Detection is optional: missing
configuration or any failure yields zero boxes plus a debug record,
never an exception.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from .config import DetectorSettings
from .estimation.models import DetectorSeed
from .utils import as_float, setup_logging

logger = setup_logging()

DEFAULT_PREDICTION_CONFIDENCE = 0.5


class DetectorClientError(Exception):
    pass


@dataclass
class DetectionResult:
    """Boxes plus a debug record for the client UI."""
    boxes: List[DetectorSeed] = field(default_factory=list)
    debug: Dict[str, Any] = field(default_factory=lambda: {"enabled": True})


def _num(obj: Dict[str, Any], key: str) -> Optional[float]:
    value = as_float(obj.get(key))
    if value is None or math.isinf(value):
        return None
    return value


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def extract_predictions(parsed: Any) -> tuple[List[Any], str]:
    """Find the prediction list across response variants.

    Returns:
        (predictions, parse_path) where parse_path names where they were found.
    """
    if not isinstance(parsed, dict):
        return [], "none"
    if isinstance(parsed.get("predictions"), list):
        return parsed["predictions"], "predictions"
    result = parsed.get("result")
    if isinstance(result, dict) and isinstance(result.get("predictions"), list):
        return result["predictions"], "result.predictions"
    if isinstance(parsed.get("outputs"), list):
        return parsed["outputs"], "outputs"
    return [], "none"


def boxes_from_response(parsed: Any) -> tuple[List[DetectorSeed], Dict[str, Any]]:
    """
    Convert a detector response into normalized [x, y, w, h] boxes.

    Pixel centre/size predictions are divided by the image dimensions
    (per prediction, else top-level ``image``); min/max predictions are
    taken as already normalized. Other shapes are skipped.
    """
    info: Dict[str, Any] = {}
    image = parsed.get("image") if isinstance(parsed, dict) else None
    image = image if isinstance(image, dict) else {}
    global_w = _num(image, "width")
    global_h = _num(image, "height")
    info["image_dims"] = {"width": global_w, "height": global_h}

    predictions, path = extract_predictions(parsed)
    info["parse_path"] = path
    records = [p for p in predictions if isinstance(p, dict)]
    info["parsed_count"] = len(records)

    boxes: List[DetectorSeed] = []
    for pred in records:
        conf = _num(pred, "confidence")
        if conf is None:
            conf = _num(pred, "conf")
        if conf is None:
            conf = DEFAULT_PREDICTION_CONFIDENCE
        conf = _clamp01(conf)

        px_w = _num(pred, "image_width") or global_w
        px_h = _num(pred, "image_height") or global_h
        cx, cy = _num(pred, "x"), _num(pred, "y")
        w, h = _num(pred, "width"), _num(pred, "height")

        if None not in (cx, cy, w, h) and px_w and px_h and px_w > 0 and px_h > 0:
            box = (
                _clamp01((cx - w / 2) / px_w),
                _clamp01((cy - h / 2) / px_h),
                _clamp01(w / px_w),
                _clamp01(h / px_h),
            )
            boxes.append(DetectorSeed(bbox=box, confidence=conf))
            continue

        x_min, x_max = _num(pred, "x_min"), _num(pred, "x_max")
        y_min, y_max = _num(pred, "y_min"), _num(pred, "y_max")
        if None not in (x_min, x_max, y_min, y_max):
            box = (
                _clamp01(x_min),
                _clamp01(y_min),
                _clamp01(x_max - x_min),
                _clamp01(y_max - y_min),
            )
            boxes.append(DetectorSeed(bbox=box, confidence=conf))

    return boxes, info


def _post_detection(
    url: str,
    params: Dict[str, str],
    data: Optional[str],
    headers: Dict[str, str],
    timeout: float,
    debug: Dict[str, Any],
) -> Any:
    """
    POST one detection request and decode its JSON body.

    Raises:
        DetectorClientError: On network failure, HTTP error or a non-JSON body.
    """
    try:
        resp = requests.post(url, params=params, data=data, headers=headers, timeout=timeout)
    except requests.RequestException as exc:
        raise DetectorClientError(str(exc) or "detector_call_failed") from exc

    debug["status"] = resp.status_code
    debug["ok"] = resp.ok
    debug["body_snippet"] = resp.text[:240]
    if not resp.ok:
        raise DetectorClientError(f"detector_http_{resp.status_code}")

    try:
        return resp.json()
    except ValueError as exc:
        raise DetectorClientError("json_parse_failed") from exc


def detect_damage_boxes(settings: DetectorSettings, image_url: str) -> DetectionResult:
    """
    Run hosted detection on an http(s) URL or a base64 data URL.

    Never raises; failures are reported in ``result.debug``.
    """
    result = DetectionResult()
    if not settings.enabled:
        result.debug["missing_env"] = settings.missing
        return result

    params = {"api_key": settings.api_key}
    if settings.confidence:
        params["confidence"] = settings.confidence
    if settings.overlap:
        params["overlap"] = settings.overlap
    result.debug["params"] = {
        "confidence": settings.confidence or "(default)",
        "overlap": settings.overlap or "(default)",
    }

    url = f"{settings.base_url}/{settings.model}/{settings.version}"
    data: Optional[str] = None
    headers: Dict[str, str] = {}
    if image_url.startswith("data:"):
        # Base64 uploads go in the body without the data: header
        comma = image_url.find(",")
        data = image_url[comma + 1:] if comma >= 0 else image_url
        headers["Content-Type"] = "application/x-www-form-urlencoded"
        result.debug["sent_mode"] = "base64_body"
    else:
        params["image"] = image_url
        result.debug["sent_mode"] = "image_query"

    try:
        parsed = _post_detection(url, params, data, headers, settings.timeout_seconds, result.debug)
    except DetectorClientError as exc:
        logger.warning("Detector call failed: %s", exc)
        result.debug["error"] = str(exc)
        return result

    boxes, info = boxes_from_response(parsed)
    result.boxes = boxes
    result.debug.update(info)
    logger.debug("Detector returned %d box(es)", len(boxes))
    return result
