from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from .history import CounterHistory


class CounterType(str, Enum):
    """What a counter tracks on the knitting project."""

    ROW = "row"
    STITCH = "stitch"
    REPEAT = "repeat"
    CUSTOM = "custom"


class ValueMode(str, Enum):
    """How a value mutation computes the counter's next value."""

    INCREMENT = "increment"
    DECREMENT = "decrement"
    RESET = "reset"
    SET = "set"
    UNDO = "undo"


class SimplePattern(BaseModel):
    """Each click moves the counter by ``increment_by``."""

    type: Literal["simple"] = "simple"
    description: Optional[str] = Field(default=None, max_length=255)


class FixedCustomPattern(BaseModel):
    """Each click moves the counter by a fixed step overriding ``increment_by``."""

    type: Literal["custom_fixed"] = "custom_fixed"
    increment: int = Field(..., ge=1)
    description: Optional[str] = Field(default=None, max_length=255)


class EveryNPattern(BaseModel):
    """Only every Nth click moves the counter, e.g. garter ridges every 2 rows."""

    type: Literal["every_n"] = "every_n"
    n: int = Field(..., ge=1)
    increment: int = Field(default=1, ge=1)
    rule: Optional[str] = Field(default=None, max_length=64)
    description: Optional[str] = Field(default=None, max_length=255)


class CustomRulePattern(BaseModel):
    """User-defined repeating step sequence, cycled one entry per click."""

    type: Literal["custom"] = "custom"
    steps: list[Annotated[int, Field(ge=0)]] = Field(..., min_length=1, max_length=64)
    rule: Optional[str] = Field(default=None, max_length=64)
    description: Optional[str] = Field(default=None, max_length=255)


IncrementPattern = Annotated[
    Union[SimplePattern, FixedCustomPattern, EveryNPattern, CustomRulePattern],
    Field(discriminator="type"),
]


class CounterBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    type: CounterType = CounterType.ROW
    target_value: Optional[int] = None
    increment_by: int = Field(default=1, ge=1)
    min_value: Optional[int] = 0
    max_value: Optional[int] = None
    increment_pattern: Optional[IncrementPattern] = None
    display_color: str = Field(default="#3B82F6", pattern=r"^#[0-9A-Fa-f]{6}$")
    is_visible: bool = True
    notes: Optional[str] = Field(default=None, max_length=4000)
    parent_counter_id: Optional[UUID] = None


class CounterCreate(CounterBase):
    current_value: int = 0
    sort_order: Optional[int] = Field(default=None, ge=0)


class CounterUpdate(BaseModel):
    """Metadata edits. Value changes go through the value endpoints instead."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    type: Optional[CounterType] = None
    target_value: Optional[int] = None
    increment_by: Optional[int] = Field(default=None, ge=1)
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    increment_pattern: Optional[IncrementPattern] = None
    display_color: Optional[str] = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    notes: Optional[str] = Field(default=None, max_length=4000)
    parent_counter_id: Optional[UUID] = None


class Counter(CounterBase):
    id: UUID
    project_id: UUID
    current_value: int
    is_active: bool = True
    sort_order: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class CounterValueRequest(BaseModel):
    """Body accepted by the increment/decrement/reset/set endpoints."""

    amount: Optional[int] = Field(
        default=None,
        description="Explicit step for increment/decrement, target for reset/set",
    )
    note: Optional[str] = Field(default=None, max_length=500)
    origin: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Client identifier echoed on the broadcast so the sender can recognise it",
    )


class CounterReorderRequest(BaseModel):
    counter_ids: list[UUID] = Field(..., min_length=1)


class CounterVisibilityRequest(BaseModel):
    is_visible: bool


class CounterActiveRequest(BaseModel):
    is_active: bool


class SkipReason(str, Enum):
    """Why a cascade edge was evaluated as satisfied but not applied."""

    CYCLE_GUARD = "cycle_guard"
    MAX_DEPTH = "max_depth"
    BOUNDS_EXCEEDED = "bounds_exceeded"
    TARGET_INACTIVE = "target_inactive"


class SkippedCascade(BaseModel):
    link_id: UUID
    source_counter_id: UUID
    target_counter_id: UUID
    reason: SkipReason
    depth: int
    detail: Optional[str] = None


class CounterResponse(BaseModel):
    data: Counter


class CounterListResponse(BaseModel):
    data: list[Counter]
    count: int


class CounterSnapshot(BaseModel):
    """Authoritative project state used by clients to resynchronise."""

    project_id: UUID
    sequence: int
    counters: list[Counter]


class CounterMutationResponse(BaseModel):
    """Outcome of a root update including its whole cascade."""

    data: Counter
    changed: list[Counter]
    history: list[CounterHistory]
    skipped: list[SkippedCascade] = Field(default_factory=list)
