from __future__ import annotations

import logging
import math
import os
import time
from typing import Any, Dict, Optional

import requests

from cosmos.llm_parsing import fallback_result, parse_completion
from cosmos.llm_prompts import build_prediction_prompt
from cosmos.schemas import PredictionResult

log = logging.getLogger(__name__)

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "").strip()
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-3-5-sonnet-20241022").strip()
ANTHROPIC_ENDPOINT = os.getenv("ANTHROPIC_ENDPOINT", "https://api.anthropic.com/v1/messages").strip()
ANTHROPIC_VERSION = os.getenv("ANTHROPIC_VERSION", "2023-06-01").strip()

try:
    TEMPERATURE = float(os.getenv("TEMPERATURE", "0.6"))
except ValueError:
    TEMPERATURE = 0.6
try:
    LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "3000"))
except ValueError:
    LLM_MAX_TOKENS = 3000
try:
    LLM_TIMEOUT_SECS = float(os.getenv("LLM_TIMEOUT_SECS", "30"))
except ValueError:
    LLM_TIMEOUT_SECS = 30.0
try:
    LLM_MAX_RETRIES = max(0, int(os.getenv("LLM_MAX_RETRIES", "2")))
except ValueError:
    LLM_MAX_RETRIES = 2
try:
    LLM_RETRY_BACKOFF_SECS = float(os.getenv("LLM_RETRY_BACKOFF_SECS", "0.5"))
except ValueError:
    LLM_RETRY_BACKOFF_SECS = 0.5

# production: missing key is a configuration error (503)
# development: missing key serves the fallback scenarios
PREDICT_MODE = os.getenv("PREDICT_MODE", "production").strip().lower()
_MODES = {"production", "development"}
if PREDICT_MODE not in _MODES:
    log.warning("Unknown PREDICT_MODE=%r; using 'production'", PREDICT_MODE)
    PREDICT_MODE = "production"

if not ANTHROPIC_API_KEY:
    log.warning("ANTHROPIC_API_KEY is not configured (mode=%s)", PREDICT_MODE)

_TRANSIENT_STATUS = {500, 502, 503, 504, 529}
_AUTH_ERROR_TYPES = {"authentication_error", "permission_error"}
_RATE_LIMIT_ERROR_TYPES = {"rate_limit_error"}


class LLMError(Exception):
    """Base class for upstream failures the caller has to tell apart."""


class LLMCredentialError(LLMError):
    """Upstream credential missing or rejected."""


class LLMRateLimitError(LLMError):
    """Upstream provider is throttling us."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class _TransientError(Exception):
    pass


def status() -> Dict[str, Any]:
    return {
        "provider": "anthropic",
        "model": ANTHROPIC_MODEL,
        "has_token": bool(ANTHROPIC_API_KEY),
        "mode": PREDICT_MODE,
        "timeout_secs": LLM_TIMEOUT_SECS,
        "max_retries": LLM_MAX_RETRIES,
    }


def _error_type(resp: Any) -> str:
    try:
        data = resp.json()
    except ValueError:
        return ""
    if not isinstance(data, dict):
        return ""
    err = data.get("error")
    if isinstance(err, dict):
        return str(err.get("type") or "")
    return ""


def _retry_after_header(resp: Any) -> Optional[float]:
    headers = getattr(resp, "headers", None) or {}
    raw = headers.get("retry-after") or headers.get("Retry-After")
    if not raw:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return value


def _classify_response(resp: Any) -> None:
    """Raise for a non-200 response: typed for auth/rate-limit, transient or ValueError otherwise."""
    code = resp.status_code
    if code == 200:
        return
    err_type = _error_type(resp)
    if code in (401, 403) or err_type in _AUTH_ERROR_TYPES:
        raise LLMCredentialError(f"upstream rejected credentials (HTTP {code})")
    if code == 429 or err_type in _RATE_LIMIT_ERROR_TYPES:
        raise LLMRateLimitError(f"upstream rate limited (HTTP {code})", _retry_after_header(resp))
    if code in _TRANSIENT_STATUS or err_type == "overloaded_error":
        raise _TransientError(f"HTTP {code}")
    try:
        msg = resp.text[:400]
    except Exception:
        msg = ""
    raise ValueError(f"upstream HTTP {code}: {msg}")


def _post_messages(body: Dict[str, Any]) -> Dict[str, Any]:
    """POST to the Messages API with the configured timeout and retry budget.

    Only transport failures, 5xx and overloaded responses are retried.
    """
    headers = {
        "x-api-key": ANTHROPIC_API_KEY,
        "anthropic-version": ANTHROPIC_VERSION,
        "content-type": "application/json",
    }
    attempts = LLM_MAX_RETRIES + 1
    last_error: Optional[Exception] = None
    for attempt in range(1, attempts + 1):
        try:
            resp = requests.post(ANTHROPIC_ENDPOINT, headers=headers, json=body, timeout=LLM_TIMEOUT_SECS)
            _classify_response(resp)
            data = resp.json()
            if not isinstance(data, dict):
                raise ValueError("upstream body is not a JSON object")
            return data
        except (requests.ConnectionError, requests.Timeout, _TransientError) as e:
            last_error = e
            log.warning("llm transient failure attempt=%d/%d err=%r", attempt, attempts, e)
            if attempt < attempts and LLM_RETRY_BACKOFF_SECS > 0:
                time.sleep(LLM_RETRY_BACKOFF_SECS * attempt)
    raise ValueError(f"upstream unavailable after {attempts} attempts: {last_error!r}")


def _completion_text(data: Dict[str, Any]) -> Optional[str]:
    content = data.get("content")
    if not isinstance(content, list) or not content:
        return None
    first = content[0]
    if not isinstance(first, dict) or first.get("type") != "text":
        return None
    text = first.get("text")
    return text if isinstance(text, str) else None


def generate_predictions(question: str) -> PredictionResult:
    """Return three scenarios for an already-sanitized question.

    Behaviors:
    - Missing key: LLMCredentialError in production mode, fallback in development mode.
    - Upstream auth/rate-limit rejections raise LLMCredentialError / LLMRateLimitError.
    - Anything else that goes wrong (transport, bad JSON, wrong shape) yields the fallback.
    """
    if not ANTHROPIC_API_KEY:
        if PREDICT_MODE == "development":
            log.warning("ANTHROPIC_API_KEY missing; serving fallback scenarios (development mode)")
            return fallback_result(question)
        raise LLMCredentialError("ANTHROPIC_API_KEY is not configured")

    body = {
        "model": ANTHROPIC_MODEL,
        "max_tokens": LLM_MAX_TOKENS,
        "temperature": TEMPERATURE,
        "messages": [{"role": "user", "content": build_prediction_prompt(question)}],
    }

    started = time.time()
    try:
        data = _post_messages(body)
    except LLMError:
        raise
    except (requests.RequestException, ValueError) as e:
        log.warning("llm generation failed; serving fallback err=%s", e)
        return fallback_result(question)
    log.info("llm response received model=%s dur_ms=%d", ANTHROPIC_MODEL, int((time.time() - started) * 1000))

    text = _completion_text(data)
    if not text:
        log.warning("llm response had no text content; serving fallback")
        return fallback_result(question)

    result = parse_completion(question, text)
    if result is None:
        log.warning("llm response unusable; serving fallback")
        return fallback_result(question)
    return result
