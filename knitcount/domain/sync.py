from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class CounterEvent(BaseModel):
    """Committed counter state published on a project channel."""

    project_id: UUID
    counter_id: UUID
    current_value: int
    action: str
    sequence: int = Field(..., ge=1)
    linked_from: Optional[UUID] = None
    origin: Optional[str] = None
    committed_at: datetime = Field(default_factory=datetime.utcnow)
