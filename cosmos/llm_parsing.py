from __future__ import annotations

import json
import logging
import re
from typing import Any, List, Optional

from pydantic import ValidationError

from cosmos.schemas import PredictionResult, PredictionScenario, ScenarioSet

log = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def strip_code_fences(text: str) -> str:
    """Return the body of the first ```json fence, or the text with stray fences removed."""
    t = (text or "").strip()
    m = _FENCE_RE.search(t)
    if m:
        return m.group(1).strip()
    return t.replace("```json", "").replace("```", "").strip()


def _balanced_json_slice(s: str) -> Optional[str]:
    in_str = False
    esc = False
    depth = 0
    start_idx = -1
    for i, ch in enumerate(s):
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == "{":
            if depth == 0:
                start_idx = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                return s[start_idx : i + 1]
    return None


def json_from_text(text: str) -> Any:
    """Parse the model's text completion as JSON; raise ValueError on failure.

    Strategy:
    - Strip Markdown code fences and try the remainder as-is.
    - Fall back to the first balanced {...} object, for replies wrapped in prose.
    - Last try: drop trailing commas and normalize smart quotes.
    """
    body = strip_code_fences(text)
    if not body:
        raise ValueError("empty completion")
    try:
        return json.loads(body)
    except json.JSONDecodeError:
        pass
    candidate = _balanced_json_slice(body)
    if candidate is None:
        raise ValueError("no JSON object found in completion")
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        repaired = _TRAILING_COMMA_RE.sub(r"\1", candidate)
        repaired = repaired.replace("“", '"').replace("”", '"')
        try:
            return json.loads(repaired)
        except json.JSONDecodeError as exc:
            raise ValueError(f"invalid JSON in completion: {exc.msg}") from exc


def decode_scenarios(data: Any) -> List[PredictionScenario]:
    """Decode parsed JSON into exactly three distinct-tag scenarios or raise ValueError."""
    if not isinstance(data, dict):
        raise ValueError("completion is not a JSON object")
    try:
        return list(ScenarioSet.model_validate(data).scenarios)
    except ValidationError as ve:
        issues = []
        for e in ve.errors():
            loc = ".".join(str(p) for p in e.get("loc", ())) or "(root)"
            issues.append(f"{loc}: {e.get('msg', 'invalid')}")
        raise ValueError("; ".join(issues[:5])) from ve


def parse_completion(question: str, text: str) -> Optional[PredictionResult]:
    """Build a PredictionResult from raw completion text; None if unusable."""
    try:
        data = json_from_text(text)
    except ValueError as e:
        log.warning("llm_parsing: failed to extract JSON: %s", e)
        return None
    try:
        scenarios = decode_scenarios(data)
    except ValueError as e:
        log.warning("llm_parsing: invalid scenario structure: %s", e)
        return None
    return PredictionResult(question=question, scenarios=scenarios)


_FALLBACK_SCENARIOS = (
    {
        "title": "Optimistische uitkomst",
        "scenario": "optimistic",
        "description": "In dit scenario verloopt alles volgens plan en bereik je je doelen sneller dan verwacht.",
        "probability": 25,
        "confidence": 70,
        "timeline": "3-6 maanden",
        "keyFactors": ["Gunstige omstandigheden", "Goede timing", "Sterke motivatie"],
        "actionSteps": ["Focus op je sterke punten", "Neem initiatief", "Blijf positief"],
    },
    {
        "title": "Realistische uitkomst",
        "scenario": "realistic",
        "description": "Dit is het meest waarschijnlijke scenario met normale ups en downs onderweg naar je doel.",
        "probability": 50,
        "confidence": 85,
        "timeline": "6-12 maanden",
        "keyFactors": ["Normale marktomstandigheden", "Gemiddelde vooruitgang", "Standaard uitdagingen"],
        "actionSteps": ["Maak een concrete planning", "Blijf consistent", "Zoek ondersteuning"],
    },
    {
        "title": "Uitdagende uitkomst",
        "scenario": "pessimistic",
        "description": (
            "In dit scenario kom je meer obstakels tegen dan verwacht, "
            "maar met doorzettingsvermogen kun je alsnog slagen."
        ),
        "probability": 25,
        "confidence": 75,
        "timeline": "12-18 maanden",
        "keyFactors": ["Onvoorziene obstakels", "Langere leercurve", "Extra geduld vereist"],
        "actionSteps": ["Bereid je voor op uitdagingen", "Zoek alternatieven", "Houd vol"],
    },
)


def fallback_result(question: str) -> PredictionResult:
    """Fixed Dutch scenarios served whenever live generation can't produce a valid set."""
    scenarios = [PredictionScenario.model_validate(s) for s in _FALLBACK_SCENARIOS]
    return PredictionResult(question=question, scenarios=scenarios)
