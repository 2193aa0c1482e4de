from __future__ import annotations

from pydantic import BaseModel, Field


class SiteRead(BaseModel):
    id: str
    name: str
    is_core: bool = False

    class Config:
        from_attributes = True


class BranchCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=255)


class BranchUpdate(BaseModel):
    name: str = Field(..., min_length=3, max_length=255)
