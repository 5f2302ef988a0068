from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from .pagination import PaginationMeta


class HistoryAction(str, Enum):
    """Kind of transition recorded in the ledger."""

    CREATED = "created"
    INCREMENT = "increment"
    DECREMENT = "decrement"
    RESET = "reset"
    SET = "set"
    UNDO = "undo"


class CounterHistory(BaseModel):
    id: UUID
    counter_id: UUID
    sequence: int
    old_value: int
    new_value: int
    action: HistoryAction
    user_note: Optional[str] = None
    link_id: Optional[UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class CounterHistoryListResponse(BaseModel):
    data: list[CounterHistory]
    count: int
    pagination: PaginationMeta
