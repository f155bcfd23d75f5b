from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ...constants import MAX_SCORE, MIN_SCORE


class RequirementCheck(BaseModel):
    requirement: str
    score: Literal[0, 1]

    model_config = ConfigDict(extra="ignore")


class JobScoringResult(BaseModel):
    """Validated model output for one job."""

    score: int = Field(ge=MIN_SCORE, le=MAX_SCORE)
    description: str
    requirement_checks: Optional[List[RequirementCheck]] = Field(default=None, alias="requirementChecks")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class PartialRequirementCheck(BaseModel):
    requirement: Optional[str] = None
    score: Optional[int] = None

    model_config = ConfigDict(extra="ignore")


class PartialJobScore(BaseModel):
    """Snapshot of a score object while it is still streaming in."""

    score: Optional[int] = None
    description: Optional[str] = None
    requirement_checks: Optional[List[PartialRequirementCheck]] = Field(
        default=None, alias="requirementChecks"
    )

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class StreamEvent(BaseModel):
    """One item yielded to a streaming consumer: partial snapshots, then one final result."""

    kind: Literal["partial", "final"]
    partial: Optional[PartialJobScore] = None
    result: Optional[JobScoringResult] = None
