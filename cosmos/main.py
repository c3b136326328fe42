import json
import logging
import os
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cosmos import llm_client, ratelimit
from cosmos.validators import validate_question

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

log = logging.getLogger(__name__)

MSG_RATE_LIMITED = "Te veel verzoeken. Probeer het over {seconds} seconden opnieuw."
MSG_UPSTREAM_RATE_LIMITED = "De voorspellingsdienst is momenteel overbelast. Probeer het later opnieuw."
MSG_MISCONFIGURED = "De voorspellingsdienst is niet correct geconfigureerd."
MSG_INVALID_PAYLOAD = "Ongeldig verzoek"
MSG_INTERNAL = "Er is iets misgegaan bij het genereren van voorspellingen."

app = FastAPI(title="Cosmos Predictions API")

allow_origins = [o.strip() for o in os.getenv("ALLOW_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Remaining", "Retry-After"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = str(uuid.uuid4())
    start = time.time()
    request.state.request_id = rid
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log.info(
            "rid=%s method=%s path=%s status=%s dur_ms=%d",
            rid,
            request.method,
            request.url.path,
            getattr(response, "status_code", "?"),
            dur_ms,
        )


_MALFORMED = object()


def _error(status_code: int, code: str, message: str, headers: Optional[Dict[str, str]] = None, **extra: Any) -> JSONResponse:
    content: Dict[str, Any] = {"error": message, "code": code}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _rate_limit_headers(remaining: int, retry_after: Optional[int] = None) -> Dict[str, str]:
    headers = {"X-RateLimit-Remaining": str(remaining)}
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)
    return headers


async def _question_from_body(request: Request) -> Any:
    """The 'question' field of a JSON object body, or _MALFORMED."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _MALFORMED
    if not isinstance(payload, dict):
        return _MALFORMED
    return payload.get("question")


async def _handle_predict(request: Request, source: str) -> JSONResponse:
    client_key = ratelimit.client_identifier(request.headers)
    if not ratelimit.is_allowed(client_key):
        wait_seconds = ratelimit.retry_after(client_key)
        log.info("predict: rate limited client=%s retry_after=%d", client_key, wait_seconds)
        return _error(
            429,
            "RateLimited",
            MSG_RATE_LIMITED.format(seconds=wait_seconds),
            headers=_rate_limit_headers(0, wait_seconds),
            retryAfter=wait_seconds,
        )
    remaining = ratelimit.remaining(client_key)
    rl_headers = _rate_limit_headers(remaining)

    if source == "body":
        raw = await _question_from_body(request)
        if raw is _MALFORMED:
            return _error(400, "InvalidPayload", MSG_INVALID_PAYLOAD, headers=rl_headers)
    else:
        raw = request.query_params.get("q")

    check = validate_question(raw)
    if not check.ok:
        log.info("predict: rejected question client=%s reason=%s", client_key, check.error.value)
        return _error(400, check.error.value, check.message, headers=rl_headers)

    try:
        result = await run_in_threadpool(llm_client.generate_predictions, check.sanitized)
    except llm_client.LLMCredentialError as e:
        log.error("predict: credential error: %s", e)
        return _error(503, "ServiceMisconfigured", MSG_MISCONFIGURED, headers=rl_headers)
    except llm_client.LLMRateLimitError as e:
        log.warning("predict: upstream rate limited: %s", e)
        headers = dict(rl_headers)
        extra: Dict[str, Any] = {}
        if e.retry_after is not None:
            extra["retryAfter"] = int(e.retry_after)
            headers["Retry-After"] = str(int(e.retry_after))
        return _error(429, "UpstreamRateLimited", MSG_UPSTREAM_RATE_LIMITED, headers=headers, **extra)

    return JSONResponse(result.to_payload(), headers=rl_headers)


async def _guarded(request: Request, source: str) -> JSONResponse:
    try:
        return await _handle_predict(request, source)
    except Exception:
        # Details stay in the log; the client gets a generic message
        log.exception("predict: unexpected failure rid=%s", getattr(request.state, "request_id", None))
        return _error(500, "InternalError", MSG_INTERNAL)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/llm/status")
def llm_status_endpoint() -> Dict[str, Any]:
    return llm_client.status()


@app.post("/predict")
async def predict_post(request: Request) -> JSONResponse:
    """Body form: {"question": "..."}."""
    return await _guarded(request, "body")


@app.get("/predict")
async def predict_get(request: Request) -> JSONResponse:
    """Query form: /predict?q=..."""
    return await _guarded(request, "query")
