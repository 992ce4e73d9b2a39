"""
Damage Estimate API

FastAPI router exposing the two operations:

    POST /api/detect   - detector boxes plus a quick usability check
    POST /api/analyze  - structured damage, cost band and routing decision

Both accept a multipart ``file`` or an ``imageUrl`` form field. Errors
are returned as ``{"error": ..., "error_code": ...}``.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from fastapi import APIRouter, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import Settings, load_settings
from .detector_client import detect_damage_boxes
from .estimation import (
    DamageEstimationService,
    PartBandRegistry,
    parse_detector_seeds,
)
from .openai_client import RATE_LIMIT_WAIT_SECONDS, OpenAIClientError
from .ratelimit import RateLimiter, client_ip
from .utils import setup_logging, sha256_bytes, sha256_text
from .vision import ModelOutputError, analyze_damage, image_data_url, price_parts, run_quality_gate

logger = setup_logging()

NO_DETECTIONS_ISSUE = "no_yolo_detections"


# Pydantic models for API responses
class ErrorBody(BaseModel):
    error: str
    error_code: str


class DetectResponse(BaseModel):
    model: str
    run_id: str
    image_sha256: str
    yolo_boxes: List[Dict[str, Any]]
    vehicle: Dict[str, Any]
    is_vehicle: bool
    has_damage: bool
    quality_ok: bool
    issues: List[str]
    yolo_debug: Dict[str, Any]


ERROR_RESPONSES = {
    400: {"model": ErrorBody},
    413: {"model": ErrorBody},
    429: {"model": ErrorBody},
    500: {"model": ErrorBody},
    502: {"model": ErrorBody},
    504: {"model": ErrorBody},
}


class ApiError(Exception):
    """A failure that maps to a stable error code and HTTP status."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.headers = headers


def error_response(error: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content=ErrorBody(error=error.message, error_code=error.error_code).model_dump(),
        headers=error.headers,
    )


def _from_client_error(exc: OpenAIClientError) -> ApiError:
    if exc.is_rate_limited:
        return ApiError(
            "Upstream model is rate limited",
            "E_RATE_LIMIT",
            429,
            {"Retry-After": str(RATE_LIMIT_WAIT_SECONDS)},
        )
    if exc.is_timeout:
        return ApiError("Upstream model timed out", "E_TIMEOUT", 504)
    return ApiError(str(exc), "E_SERVER", 500)


def build_service(settings: Settings) -> DamageEstimationService:
    """Estimation service for the configured policy and band registry."""
    registry = PartBandRegistry()
    if settings.pricing.bands_path:
        registry.load_bands(settings.pricing.bands_path)
        logger.info(
            "Loaded %d part bands (version %s) from %s",
            len(registry), registry.version, settings.pricing.bands_path,
        )
    return DamageEstimationService(settings.policy, registry)


async def resolve_image(
    file: Optional[UploadFile],
    image_url: Optional[str],
    max_upload_mb: float,
) -> Tuple[str, str]:
    """
    Turn the request's image into a model-ready URL and its audit hash.

    Returns:
        (image_url, sha256) where uploads become base64 data URLs.

    Raises:
        ApiError: E_TOO_LARGE, E_BAD_URL or E_NO_IMAGE.
    """
    if file is not None:
        data = await file.read()
        if data:
            if len(data) > max_upload_mb * 1024 * 1024:
                raise ApiError(
                    f"Image exceeds {max_upload_mb:g} MB limit", "E_TOO_LARGE", 413
                )
            return image_data_url(data, file.content_type), sha256_bytes(data)

    url = (image_url or "").strip()
    if url:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ApiError("imageUrl must be an http(s) URL", "E_BAD_URL", 400)
        return url, sha256_text(url)

    raise ApiError("No image provided", "E_NO_IMAGE", 400)


def parse_seed_field(raw: Optional[str]):
    """Decode the optional ``yolo`` form field; malformed input yields no seeds."""
    if not raw:
        return []
    try:
        decoded = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring malformed yolo field")
        return []
    return parse_detector_seeds(decoded)


def create_router(settings: Optional[Settings] = None) -> APIRouter:
    """
    Build the damage estimate router.

    Rate limiters and the estimation service belong to the returned
    router; each call starts with fresh counters.
    """
    settings = settings or load_settings()
    service = build_service(settings)
    limits = settings.rate_limit
    detect_limiter = RateLimiter(limits.detect_window_seconds, limits.detect_max_requests)
    analyze_limiter = RateLimiter(limits.analyze_window_seconds, limits.analyze_max_requests)

    router = APIRouter(prefix="/api", tags=["Damage Estimate"])

    def _check_rate(limiter: RateLimiter, request: Request) -> None:
        allowed, retry_after = limiter.check(client_ip(request))
        if not allowed:
            raise ApiError(
                "Rate limit exceeded", "E_RATE_LIMIT", 429, {"Retry-After": str(retry_after)}
            )

    def _require_model_key() -> None:
        if not settings.openai.api_key:
            raise ApiError("Server missing OPENAI_API_KEY", "E_CONFIG", 500)

    @router.post("/detect", response_model=DetectResponse, responses=ERROR_RESPONSES)
    async def detect(
        request: Request,
        file: Optional[UploadFile] = File(None),
        imageUrl: Optional[str] = Form(None),
    ):
        """Detector boxes and quality gate for one image."""
        started = time.monotonic()
        try:
            _check_rate(detect_limiter, request)
            _require_model_key()
            image, image_sha = await resolve_image(file, imageUrl, settings.max_upload_mb)

            detection, gate = await asyncio.gather(
                asyncio.to_thread(detect_damage_boxes, settings.detector, image),
                asyncio.to_thread(run_quality_gate, settings.openai, image),
            )

            issues = list(gate.issues)
            if not detection.boxes:
                issues.append(NO_DETECTIONS_ISSUE)

            logger.info(
                "Detect finished in %.2fs: %d box(es)", time.monotonic() - started, len(detection.boxes)
            )
            return {
                "model": settings.openai.vehicle_model,
                "run_id": uuid.uuid4().hex,
                "image_sha256": image_sha,
                "yolo_boxes": [seed.to_dict() for seed in detection.boxes],
                "vehicle": gate.vehicle.to_dict(),
                "is_vehicle": gate.is_vehicle,
                "has_damage": len(detection.boxes) > 0,
                "quality_ok": gate.quality_ok,
                "issues": issues,
                "yolo_debug": detection.debug,
            }
        except ApiError as exc:
            return error_response(exc)
        except OpenAIClientError as exc:
            logger.error("Detect model call failed: %s", exc)
            return error_response(_from_client_error(exc))
        except Exception as exc:
            logger.error("Detect failed: %s", exc, exc_info=True)
            return error_response(ApiError("Internal error", "E_SERVER", 500))

    @router.post("/analyze", responses=ERROR_RESPONSES)
    async def analyze(
        request: Request,
        file: Optional[UploadFile] = File(None),
        imageUrl: Optional[str] = Form(None),
        yolo: Optional[str] = Form(None),
    ):
        """Full damage analysis with cost estimate and routing decision."""
        started = time.monotonic()
        try:
            _check_rate(analyze_limiter, request)
            _require_model_key()
            image, image_sha = await resolve_image(file, imageUrl, settings.max_upload_mb)
            seeds = parse_seed_field(yolo)

            try:
                analysis = await asyncio.to_thread(analyze_damage, settings.openai, image, seeds)
            except ModelOutputError as exc:
                logger.error("Vision model returned unusable output: %s", exc)
                raise ApiError("Model returned invalid JSON", "E_MODEL_JSON", 502) from exc

            observations = service.normalize(analysis.raw_items, seeds)
            raw_prices: Dict[str, Any] = {}
            if settings.pricing.dynamic_enabled:
                parts = service.parts_to_price(observations)
                if parts:
                    raw_prices = await asyncio.to_thread(
                        price_parts,
                        settings.openai,
                        parts,
                        analysis.vehicle,
                        settings.policy.parts_baseline_price,
                    )

            result = service.evaluate_observations(
                observations,
                service.pricing_guard.sanitize_price_map(raw_prices),
                used_seed_fallback=service.used_seed_fallback(analysis.raw_items, observations),
            )
            payload = service.build_payload(
                result,
                model=settings.openai.vision_model,
                run_id=uuid.uuid4().hex,
                image_sha256=image_sha,
                vehicle=analysis.vehicle,
                narrative=analysis.narrative,
                normalization_notes=analysis.normalization_notes,
            )
            logger.info(
                "Analyze finished in %.2fs: %s", time.monotonic() - started, result.decision.label.value
            )
            return payload
        except ApiError as exc:
            return error_response(exc)
        except OpenAIClientError as exc:
            logger.error("Analyze model call failed: %s", exc)
            return error_response(_from_client_error(exc))
        except Exception as exc:
            logger.error("Analyze failed: %s", exc, exc_info=True)
            return error_response(ApiError("Internal error", "E_SERVER", 500))

    return router
