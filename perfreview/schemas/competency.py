from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

CompetencyCategory = Literal["CORE", "TECHNICAL", "LEADERSHIP", "COMMUNICATION", "FUNCTIONAL"]


class CompetencyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=2000)
    category: CompetencyCategory
    behaviors: list[str] = Field(default_factory=list)
    order: int = Field(default=0, ge=0)


class CompetencyUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, min_length=1, max_length=2000)
    category: CompetencyCategory | None = None
    behaviors: list[str] | None = None
    order: int | None = Field(default=None, ge=0)
    is_active: bool | None = None


class CompetencyOut(BaseModel):
    id: str
    organization_id: str
    name: str
    description: str
    category: str
    behaviors: list[str]
    order: int
    is_active: bool
    rating_count: int = 0
    created_at: datetime
    updated_at: datetime


class CompetencyInitOut(BaseModel):
    message: str
    competencies: list[CompetencyOut]
