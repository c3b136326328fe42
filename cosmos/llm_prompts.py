from __future__ import annotations

import json
from typing import Any, Dict

_EXAMPLE_SCENARIO: Dict[str, Any] = {
    "title": "Korte titel",
    "scenario": "optimistic",
    "description": "Uitgebreide beschrijving van dit scenario",
    "probability": 30,
    "confidence": 75,
    "timeline": "6-12 maanden",
    "keyFactors": ["Factor 1", "Factor 2", "Factor 3"],
    "actionSteps": ["Stap 1", "Stap 2", "Stap 3"],
}


def _response_shape_hint() -> str:
    return json.dumps({"scenarios": [_EXAMPLE_SCENARIO]}, ensure_ascii=False, indent=2)


def build_prediction_prompt(question: str) -> str:
    """Prompt for three tagged scenarios; the question is embedded verbatim."""
    return (
        "Analyseer deze vraag en genereer 3 toekomstscenario's:\n\n"
        f'"{question}"\n\n'
        "Geef exact 3 scenario's:\n"
        '1. OPTIMISTISCH (beste uitkomst), scenario "optimistic"\n'
        '2. REALISTISCH (waarschijnlijke uitkomst), scenario "realistic"\n'
        '3. PESSIMISTISCH (moeilijke uitkomst), scenario "pessimistic"\n\n'
        "Elk scenario bevat: title, scenario, description, probability (0-100), "
        "confidence (0-100), timeline, 3-5 keyFactors en 3-5 actionSteps.\n"
        "Gebruik elke scenario-waarde precies één keer.\n\n"
        "Antwoord met ALLEEN één JSON-object met deze structuur, zonder tekst "
        "ervoor of erna en zonder codeblokken:\n"
        f"{_response_shape_hint()}\n"
    )
