# leadenrich/schemas/scoring_config.py
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from leadenrich.models.enums import CategoryType


class CriterionInput(BaseModel):
    value: str = Field(min_length=1, max_length=200)
    label: Optional[str] = Field(default=None, max_length=200)
    points: int = Field(default=0, ge=0, le=100)


class CategoryInput(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    type: CategoryType
    points: int = Field(default=0, ge=0, le=100)
    criteria: List[CriterionInput] = Field(default_factory=list)


class ScoringConfigInput(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    created_by: Optional[str] = Field(default=None, max_length=100)
    categories: List[CategoryInput] = Field(default_factory=list)


class ScoringConfigUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    categories: Optional[List[CategoryInput]] = None


class CriterionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    value: str
    label: Optional[str] = None
    points: int


class CategoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    type: CategoryType
    points: int
    criteria: List[CriterionRead]


class ScoringConfigRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    is_active: bool
    version: int
    categories: List[CategoryRead]
