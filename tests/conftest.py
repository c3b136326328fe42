import pytest

from cosmos import llm_client, ratelimit


@pytest.fixture(autouse=True)
def _isolated_state(monkeypatch):
    # Fresh limiter and a known upstream config for every test; never hit the network
    ratelimit._reset()
    monkeypatch.setattr(ratelimit, "MAX_REQUESTS", 5)
    monkeypatch.setattr(ratelimit, "WINDOW_SECONDS", 60.0)
    monkeypatch.setattr(llm_client, "ANTHROPIC_API_KEY", "test-key")
    monkeypatch.setattr(llm_client, "PREDICT_MODE", "production")
    monkeypatch.setattr(llm_client, "LLM_RETRY_BACKOFF_SECS", 0.0)
    yield
    ratelimit._reset()
