import json as jsonlib

import pytest
import requests

from cosmos import llm_client
from cosmos.llm_parsing import fallback_result

QUESTION = "Zal ik dit jaar een nieuwe baan vinden?"


def _scenarios(*tags):
    return {
        "scenarios": [
            {
                "title": f"Live {tag}",
                "scenario": tag,
                "description": "Live beschrijving",
                "probability": 33,
                "confidence": 80,
                "timeline": "1-2 jaar",
                "keyFactors": ["netwerk", "ervaring", "timing"],
                "actionSteps": ["cv bijwerken", "solliciteren", "oefenen"],
            }
            for tag in tags
        ]
    }


VALID = _scenarios("optimistic", "realistic", "pessimistic")


class FakeResp:
    def __init__(self, status, payload=None, headers=None, text=None):
        self.status_code = status
        self._payload = payload
        self.headers = headers or {}
        self.text = text if text is not None else jsonlib.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def _completion(text):
    return FakeResp(200, {"content": [{"type": "text", "text": text}]})


def _install(monkeypatch, *responses):
    """Queue fake responses (or exceptions) for successive requests.post calls."""
    queue = list(responses)
    calls = []

    def fake_post(url, headers=None, json=None, timeout=None, **kwargs):
        calls.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    monkeypatch.setattr(llm_client.requests, "post", fake_post)
    return calls


def _same_as_fallback(result):
    expected = fallback_result(QUESTION).to_payload()
    got = result.to_payload()
    return [s["title"] for s in got["scenarios"]] == [s["title"] for s in expected["scenarios"]]


def test_success_builds_result_from_live_response(monkeypatch):
    calls = _install(monkeypatch, _completion("```json\n" + jsonlib.dumps(VALID) + "\n```"))
    result = llm_client.generate_predictions(QUESTION)
    assert [s.title for s in result.scenarios] == ["Live optimistic", "Live realistic", "Live pessimistic"]
    assert {s.scenario for s in result.scenarios} == {"optimistic", "realistic", "pessimistic"}
    assert result.question == QUESTION

    assert len(calls) == 1
    call = calls[0]
    assert call["url"] == llm_client.ANTHROPIC_ENDPOINT
    assert call["timeout"] == llm_client.LLM_TIMEOUT_SECS
    assert call["headers"]["x-api-key"] == "test-key"
    body = call["json"]
    assert body["model"] == llm_client.ANTHROPIC_MODEL
    assert body["max_tokens"] == llm_client.LLM_MAX_TOKENS
    assert 0.6 <= body["temperature"] <= 0.7
    assert body["messages"][0]["role"] == "user"
    assert QUESTION in body["messages"][0]["content"]


def test_missing_key_in_production_raises(monkeypatch):
    monkeypatch.setattr(llm_client, "ANTHROPIC_API_KEY", "")
    calls = _install(monkeypatch)
    with pytest.raises(llm_client.LLMCredentialError):
        llm_client.generate_predictions(QUESTION)
    assert calls == []


def test_missing_key_in_development_serves_fallback(monkeypatch):
    monkeypatch.setattr(llm_client, "ANTHROPIC_API_KEY", "")
    monkeypatch.setattr(llm_client, "PREDICT_MODE", "development")
    calls = _install(monkeypatch)
    result = llm_client.generate_predictions(QUESTION)
    assert _same_as_fallback(result)
    assert calls == []


@pytest.mark.parametrize(
    "resp",
    [
        FakeResp(401, {"type": "error", "error": {"type": "authentication_error", "message": "invalid x-api-key"}}),
        FakeResp(403, {"type": "error", "error": {"type": "permission_error", "message": "nope"}}),
    ],
)
def test_credential_rejection_raises_without_retry(monkeypatch, resp):
    calls = _install(monkeypatch, resp)
    with pytest.raises(llm_client.LLMCredentialError):
        llm_client.generate_predictions(QUESTION)
    assert len(calls) == 1


def test_upstream_rate_limit_raises_with_retry_after(monkeypatch):
    resp = FakeResp(
        429,
        {"type": "error", "error": {"type": "rate_limit_error", "message": "slow down"}},
        headers={"retry-after": "12"},
    )
    calls = _install(monkeypatch, resp)
    with pytest.raises(llm_client.LLMRateLimitError) as exc:
        llm_client.generate_predictions(QUESTION)
    assert exc.value.retry_after == 12.0
    assert len(calls) == 1


@pytest.mark.parametrize("header", ["inf", "nan", "-5", "soon"])
def test_unusable_retry_after_header_is_dropped(monkeypatch, header):
    resp = FakeResp(
        429,
        {"type": "error", "error": {"type": "rate_limit_error", "message": "slow down"}},
        headers={"retry-after": header},
    )
    _install(monkeypatch, resp)
    with pytest.raises(llm_client.LLMRateLimitError) as exc:
        llm_client.generate_predictions(QUESTION)
    assert exc.value.retry_after is None


def test_transient_failures_are_retried_then_succeed(monkeypatch):
    calls = _install(
        monkeypatch,
        requests.ConnectionError("reset"),
        FakeResp(529, {"type": "error", "error": {"type": "overloaded_error", "message": "busy"}}),
        _completion(jsonlib.dumps(VALID)),
    )
    result = llm_client.generate_predictions(QUESTION)
    assert result.scenarios[0].title == "Live optimistic"
    assert len(calls) == 3


def test_retry_budget_exhausted_serves_fallback(monkeypatch):
    monkeypatch.setattr(llm_client, "LLM_MAX_RETRIES", 2)
    calls = _install(
        monkeypatch,
        requests.Timeout("slow"),
        requests.Timeout("slow"),
        requests.Timeout("slow"),
    )
    result = llm_client.generate_predictions(QUESTION)
    assert _same_as_fallback(result)
    assert len(calls) == 3


@pytest.mark.parametrize(
    "resp",
    [
        _completion("Ik kan hier helaas geen JSON van maken."),
        _completion(jsonlib.dumps(_scenarios("optimistic", "realistic"))),
        _completion(jsonlib.dumps(_scenarios("optimistic", "optimistic", "pessimistic"))),
        FakeResp(200, {"content": [{"type": "tool_use", "id": "x"}]}),
        FakeResp(200, {"content": []}),
        FakeResp(200, None, text="<html>bad gateway</html>"),
        FakeResp(400, {"type": "error", "error": {"type": "invalid_request_error", "message": "bad"}}),
    ],
)
def test_unusable_responses_serve_fallback(monkeypatch, resp):
    _install(monkeypatch, resp)
    assert _same_as_fallback(llm_client.generate_predictions(QUESTION))


def test_status_never_exposes_the_key():
    info = llm_client.status()
    assert info["provider"] == "anthropic"
    assert info["has_token"] is True
    assert info["mode"] == "production"
    assert "test-key" not in jsonlib.dumps(info)
