from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class StepOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"


class ArtifactRecord(BaseModel):
    path: str
    content_hash: str
    bytes: int
    kind: str


class StepRecord(BaseModel):
    index: int = Field(ge=0)
    outcome: StepOutcome
    artifact: ArtifactRecord
    opportunity: str = ""
