from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

CycleType = Literal["SELF", "PEER", "MANAGER", "SKIP_LEVEL", "UPWARD", "360"]
EvaluationType = Literal["SELF", "PEER", "MANAGER", "UPWARD", "SKIP_LEVEL"]


class EvaluationCycleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    type: CycleType
    start_date: date
    end_date: date
    auto_generate: bool = False
    # overrides the components implied by `type`
    components: list[EvaluationType] | None = Field(default=None, min_length=1)
    with_default_phases: bool = False


class EvaluationCycleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    start_date: date | None = None
    end_date: date | None = None
    components: list[EvaluationType] | None = Field(default=None, min_length=1)


class PhaseOut(BaseModel):
    id: str
    type: str
    name: str
    description: str | None
    order: int
    start_date: date
    end_date: date


class EvaluationCycleOut(BaseModel):
    id: str
    organization_id: str
    name: str
    type: str
    status: str
    start_date: date
    end_date: date
    components: list[str]
    phases: list[PhaseOut]
    created_by_user_id: str | None
    created_at: datetime
    updated_at: datetime
    generated_evaluations: int | None = None


class EvaluationCycleWithStatsOut(EvaluationCycleOut):
    evaluation_count: int = 0
    evaluations_by_status: dict[str, int] = {}


class GenerationOut(BaseModel):
    cycle_id: str
    generated_evaluations: int


class PeerNominationCreate(BaseModel):
    evaluatee_id: str
    peer_ids: list[str] = Field(min_length=1, max_length=50)


class PeerNominationOut(BaseModel):
    cycle_id: str
    evaluatee_id: str
    peer_ids: list[str]
