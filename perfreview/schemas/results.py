from datetime import date

from pydantic import BaseModel


class CompetencyResultOut(BaseModel):
    competency_id: str
    name: str | None = None
    category: str | None = None
    average_rating: float | None
    by_type: dict[str, float]
    sample_count: int


class OverallResultOut(BaseModel):
    weighted_average: float | None
    self_vs_others_gap: float | None
    average_by_type: dict[str, float]
    weights_applied: dict[str, float]
    overall_rating_average: float | None
    overall_rating_by_type: dict[str, float]


class AggregatedResultOut(BaseModel):
    per_competency: list[CompetencyResultOut]
    overall: OverallResultOut
    contributing_evaluations: dict[str, int]
    evaluation_count: int


class EvaluateeInfo(BaseModel):
    id: str
    full_name: str
    email: str


class CycleInfo(BaseModel):
    id: str
    name: str
    type: str
    status: str
    start_date: date
    end_date: date


class EvaluationResultsOut(AggregatedResultOut):
    evaluatee: EvaluateeInfo
    cycle: CycleInfo
