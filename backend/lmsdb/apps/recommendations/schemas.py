# backend/lmsdb/apps/recommendations/schemas.py

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class Recommendation(BaseModel):
    title: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)


class RecommendationsResponse(BaseModel):
    recommendations: List[Recommendation] = Field(default_factory=list)
