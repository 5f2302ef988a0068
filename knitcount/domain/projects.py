from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class Project(BaseModel):
    id: UUID
    user_id: UUID
    name: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ProjectResponse(BaseModel):
    data: Project


@dataclass(frozen=True)
class ProjectContext:
    """Verified caller identity bound to the project it is acting on."""

    user_id: UUID
    project_id: UUID
