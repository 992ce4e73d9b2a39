from __future__ import annotations

import json
import time
from typing import Any, Dict, List, Optional

import requests

from .config import OpenAISettings
from .utils import setup_logging

logger = setup_logging()

# Seconds to wait after a 429 before retrying
RATE_LIMIT_WAIT_SECONDS = 20


class OpenAIClientError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def is_timeout(self) -> bool:
        return self.status_code == 504


def _call_openai_endpoint(
    url: str,
    headers: Dict[str, str],
    body: Dict[str, Any],
    timeout: float,
) -> Dict[str, Any]:
    """Make a single chat completions call."""
    try:
        resp = requests.post(url, headers=headers, json=body, timeout=timeout)
    except requests.Timeout as exc:
        raise OpenAIClientError(f"OpenAI request timed out after {timeout}s", 504) from exc
    except requests.RequestException as exc:
        raise OpenAIClientError(f"OpenAI request failed: {exc}") from exc

    if resp.status_code >= 400:
        raise OpenAIClientError(
            f"OpenAI API error {resp.status_code}: {resp.text}", resp.status_code
        )

    try:
        data = resp.json()
    except ValueError as exc:
        raise OpenAIClientError(
            f"OpenAI returned a non-JSON body (HTTP {resp.status_code}): {resp.text[:200]}"
        ) from exc

    try:
        choice = data["choices"][0]
        content = choice["message"]["content"]
    except Exception as exc:
        raise OpenAIClientError(
            f"Unexpected OpenAI response: {json.dumps(data)}"
        ) from exc

    usage = data.get("usage", {})
    return {"content": content or "", "usage": usage}


def chat_completion(
    settings: OpenAISettings,
    messages: List[Dict[str, Any]],
    model: str | None = None,
    temperature: float = 0.0,
    max_tokens: int = 1200,
    json_mode: bool = True,
    max_retries: int | None = None,
    retry_backoff: float = 1.5,
) -> Dict[str, Any]:
    """Call OpenAI chat completions with retry and exponential backoff.

    POST {base_url}/chat/completions

    Args:
        settings: OpenAI configuration settings
        messages: Chat messages; content may be a list of text/image_url parts
        model: Model to use instead of settings.vision_model
        temperature: Sampling temperature (0.0 = deterministic)
        max_tokens: Maximum tokens in response
        json_mode: Request a JSON object response
        max_retries: Attempts before giving up (default settings.max_retries)
        retry_backoff: Exponential backoff multiplier

    Returns:
        ``{"content": str, "usage": dict}``
    """
    if not settings.api_key:
        raise OpenAIClientError(
            "OpenAI settings are incomplete. Please set OPENAI_API_KEY."
        )

    url = f"{settings.base_url}/chat/completions"
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {settings.api_key}",
    }
    body: Dict[str, Any] = {
        "model": model or settings.vision_model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if json_mode:
        body["response_format"] = {"type": "json_object"}

    attempts = max(1, max_retries if max_retries is not None else settings.max_retries)
    last_err: OpenAIClientError | None = None

    for attempt in range(1, attempts + 1):
        try:
            started = time.monotonic()
            result = _call_openai_endpoint(url, headers, body, settings.timeout_seconds)
            logger.debug(
                "OpenAI %s call took %.2fs", body["model"], time.monotonic() - started
            )
            return result
        except OpenAIClientError as exc:
            last_err = exc
            logger.warning(
                "OpenAI chat_completion attempt %d/%d failed: %s", attempt, attempts, exc
            )
            # Client errors other than rate limiting will not improve on retry
            if exc.status_code and 400 <= exc.status_code < 500 and not exc.is_rate_limited:
                raise
            if attempt < attempts:
                if exc.is_rate_limited:
                    wait_time = RATE_LIMIT_WAIT_SECONDS
                else:
                    wait_time = retry_backoff ** attempt
                time.sleep(wait_time)

    raise OpenAIClientError(
        f"OpenAI chat_completion failed after {attempts} attempts: {last_err}",
        last_err.status_code if last_err else None,
    )
