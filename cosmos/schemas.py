from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_validator,
    model_validator,
)

ScenarioTag = Literal["optimistic", "realistic", "pessimistic"]
SCENARIO_TAGS = ("optimistic", "realistic", "pessimistic")


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-05-01T10:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class PredictionScenario(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    title: StrictStr
    scenario: ScenarioTag
    description: StrictStr
    probability: Union[StrictInt, StrictFloat]
    confidence: Union[StrictInt, StrictFloat]
    timeline: StrictStr
    key_factors: List[StrictStr] = Field(alias="keyFactors")
    action_steps: List[StrictStr] = Field(alias="actionSteps")

    @field_validator("probability", "confidence")
    @classmethod
    def _percentage(cls, v: Union[int, float]) -> Union[int, float]:
        if not 0 <= v <= 100:
            raise ValueError("must be a percentage between 0 and 100")
        return v


class ScenarioSet(BaseModel):
    """Decoded model output: exactly one scenario per tag."""

    scenarios: List[PredictionScenario] = Field(min_length=3, max_length=3)

    @model_validator(mode="after")
    def _one_of_each_tag(self) -> "ScenarioSet":
        tags = {s.scenario for s in self.scenarios}
        if tags != set(SCENARIO_TAGS):
            raise ValueError(f"scenario tags must be exactly {list(SCENARIO_TAGS)}")
        return self


class PredictionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    question: str
    scenarios: List[PredictionScenario] = Field(min_length=3, max_length=3)
    generated_at: str = Field(default_factory=utc_timestamp, alias="generatedAt")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)
