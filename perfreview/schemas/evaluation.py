from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from perfreview.core.config import settings

Rating = float


class CompetencyRatingIn(BaseModel):
    competency_id: str
    rating: Rating | None = Field(default=None, ge=settings.RATING_MIN, le=settings.RATING_MAX)
    comments: str | None = None
    behaviors: list[str] = Field(default_factory=list)
    examples: str | None = None
    improvement_areas: str | None = None


class SaveDraftPayload(BaseModel):
    """Full field snapshot of a draft. Every save carries all fields (last write wins)."""

    kind: Literal["draft"] = "draft"
    overall_rating: Rating | None = Field(default=None, ge=settings.RATING_MIN, le=settings.RATING_MAX)
    overall_comments: str | None = None
    strengths: str | None = None
    improvements: str | None = None
    career_goals: str | None = None
    development_plan: str | None = None
    competency_ratings: list[CompetencyRatingIn] = Field(default_factory=list)


class SubmittedCompetencyRatingIn(CompetencyRatingIn):
    rating: Rating = Field(ge=settings.RATING_MIN, le=settings.RATING_MAX)


class SubmitEvaluationPayload(SaveDraftPayload):
    kind: Literal["submit"] = "submit"
    overall_rating: Rating = Field(ge=settings.RATING_MIN, le=settings.RATING_MAX)
    overall_comments: str = Field(min_length=1)
    competency_ratings: list[SubmittedCompetencyRatingIn] = Field(min_length=1)


class ReviewPayload(BaseModel):
    approved: bool
    manager_comments: str | None = None


class CompetencyRatingOut(BaseModel):
    competency_id: str
    rating: Rating | None
    comments: str | None
    behaviors: list[str]
    examples: str | None
    improvement_areas: str | None


class RubricCompetencyOut(BaseModel):
    id: str
    name: str
    description: str
    category: str
    behaviors: list[str]
    order: int
    is_active: bool


class EvaluationOut(BaseModel):
    id: str
    cycle_id: str
    evaluator_id: str
    evaluatee_id: str
    type: str
    status: str
    submitted_at: datetime | None
    created_at: datetime
    updated_at: datetime


class EvaluationDetailOut(EvaluationOut):
    """Everything the evaluation form needs to build its steps."""

    cycle_status: str
    overall_rating: Rating | None
    overall_comments: str | None
    strengths: str | None
    improvements: str | None
    career_goals: str | None
    development_plan: str | None
    manager_comments: str | None
    competency_ratings: list[CompetencyRatingOut]
    competencies: list[RubricCompetencyOut]
