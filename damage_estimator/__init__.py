"""
Vehicle Damage Estimator

Photo-based collision estimate service. An image is classified by a
vision-language model (optionally seeded by an object detector), the
model's damage items are repaired into canonical observations, rolled up
into a cost band and routed to AUTO-APPROVE / INVESTIGATE / SPECIALIST.

Subpackages:
- estimation: normalizer, heuristics, pricing guard, cost rollup, routing

Modules:
- config: Settings dataclasses loaded from the environment
- openai_client: Chat completions client with retry/backoff
- detector_client: Hosted object-detector client (fallback seeds)
- vision: Prompt construction and model-output decoding
- ratelimit: Per-client request limiter
- api: FastAPI router for /api/detect and /api/analyze
"""

__version__ = "1.6.0"

SCHEMA_VERSION = "1.6.0"
