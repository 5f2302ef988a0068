from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class LinkType(str, Enum):
    """Intent of a link, used to default its action."""

    RESET_ON_TARGET = "reset_on_target"
    CONDITIONAL = "conditional"
    ADVANCE_TOGETHER = "advance_together"


class TriggerOperator(str, Enum):
    EQUALS = "equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    MULTIPLE_OF = "multiple_of"


class LinkActionType(str, Enum):
    RESET = "reset"
    SET = "set"
    INCREMENT = "increment"
    DECREMENT = "decrement"


class TriggerCondition(BaseModel):
    """Comparison evaluated against the source counter's new value."""

    operator: TriggerOperator
    value: int


class LinkAction(BaseModel):
    """Effect applied to the target counter when the trigger is satisfied."""

    type: LinkActionType
    value: Optional[int] = None


class CounterLinkCreate(BaseModel):
    source_counter_id: UUID
    target_counter_id: UUID
    link_type: LinkType = LinkType.CONDITIONAL
    trigger_condition: TriggerCondition
    action: Optional[LinkAction] = None
    is_active: bool = True


class CounterLinkUpdate(BaseModel):
    link_type: Optional[LinkType] = None
    trigger_condition: Optional[TriggerCondition] = None
    action: Optional[LinkAction] = None
    is_active: Optional[bool] = None


class CounterLink(BaseModel):
    id: UUID
    project_id: UUID
    source_counter_id: UUID
    target_counter_id: UUID
    link_type: LinkType
    trigger_condition: TriggerCondition
    action: LinkAction
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class CounterLinkResponse(BaseModel):
    data: CounterLink


class CounterLinkListResponse(BaseModel):
    data: list[CounterLink]
    count: int = Field(ge=0)
