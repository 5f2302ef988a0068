"""Counter Store: counter records, bounds and value mutations."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import BoundsExceeded, NotFound, ValidationError
from ..domain.counters import Counter, CounterCreate, CounterUpdate, ValueMode
from ..domain.history import CounterHistory, HistoryAction
from ..models.counter import CounterModel
from ..repositories.counters import CountersRepository
from .history import HistoryLedger
from .increment_patterns import compute_step, parse_pattern

logger = structlog.get_logger(__name__)

_MODE_ACTIONS = {
    ValueMode.INCREMENT: HistoryAction.INCREMENT,
    ValueMode.DECREMENT: HistoryAction.DECREMENT,
    ValueMode.RESET: HistoryAction.RESET,
    ValueMode.SET: HistoryAction.SET,
    ValueMode.UNDO: HistoryAction.UNDO,
}

# columns a metadata edit may change but never clear
_REQUIRED_FIELDS = ("name", "type", "increment_by", "display_color")


def within_bounds(value: int, min_value: int | None, max_value: int | None) -> bool:
    if min_value is not None and value < min_value:
        return False
    if max_value is not None and value > max_value:
        return False
    return True


def check_bounds_consistent(min_value: int | None, max_value: int | None) -> None:
    if min_value is not None and max_value is not None and min_value > max_value:
        raise ValidationError("min_value cannot be greater than max_value")


@dataclass
class ValueChange:
    """One committed (or attempted) value transition of a counter."""

    counter: CounterModel
    old_value: int
    new_value: int
    action: HistoryAction
    history: CounterHistory | None
    linked_from: UUID | None = None

    @property
    def counter_id(self) -> UUID:
        return self.counter.id

    @property
    def moved(self) -> bool:
        return self.old_value != self.new_value


class CounterStore:
    """Validates and applies counter mutations inside the current unit of work.

    The store flushes but never commits; the engine decides when the whole
    root update (value, history and cascade) is committed.
    """

    def __init__(self, counters: CountersRepository, ledger: HistoryLedger) -> None:
        self._counters = counters
        self._ledger = ledger

    async def get_model(
        self, counter_id: UUID, project_id: UUID | None = None, *, for_update: bool = False
    ) -> CounterModel:
        model = await self._counters.get_model(
            counter_id, project_id=project_id, for_update=for_update
        )
        if model is None:
            raise NotFound("Counter not found")
        return model

    async def get_counter(self, project_id: UUID, counter_id: UUID) -> Counter:
        return Counter.model_validate(await self.get_model(counter_id, project_id))

    async def list_counters(self, project_id: UUID) -> list[Counter]:
        return await self._counters.list_for_project(project_id)

    async def list_children(self, project_id: UUID, counter_id: UUID) -> list[Counter]:
        await self.get_model(counter_id, project_id)
        return await self._counters.list_children(counter_id)

    async def create_counter(
        self, project_id: UUID, spec: CounterCreate | dict[str, Any]
    ) -> tuple[CounterModel, CounterHistory]:
        if not isinstance(spec, CounterCreate):
            try:
                spec = CounterCreate.model_validate(spec)
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid counter: {exc.errors()[0]['msg']}") from exc

        check_bounds_consistent(spec.min_value, spec.max_value)
        if not within_bounds(spec.current_value, spec.min_value, spec.max_value):
            raise ValidationError("Initial value must be within min_value and max_value")
        if spec.parent_counter_id is not None:
            await self._require_parent(project_id, spec.parent_counter_id)

        values = spec.model_dump(mode="json", exclude={"sort_order", "increment_pattern"})
        values["parent_counter_id"] = spec.parent_counter_id
        values["increment_pattern"] = (
            spec.increment_pattern.model_dump(mode="json", exclude_none=True)
            if spec.increment_pattern is not None
            else None
        )
        values["sort_order"] = (
            spec.sort_order
            if spec.sort_order is not None
            else await self._counters.next_sort_order(project_id)
        )
        model = await self._counters.add(project_id, values)
        entry = await self._ledger.append(model.id, 0, model.current_value, HistoryAction.CREATED)
        logger.info(
            "counter.created",
            counter_id=str(model.id),
            project_id=str(project_id),
            initial_value=model.current_value,
        )
        return model, entry

    async def update_value(
        self,
        counter: CounterModel,
        mode: ValueMode,
        amount: int | None = None,
        note: str | None = None,
        *,
        action: HistoryAction | None = None,
        link_id: UUID | None = None,
    ) -> ValueChange:
        """Apply one value mutation, appending a ledger entry when the value moves.

        Raises :class:`BoundsExceeded` without touching the counter when the
        candidate value falls outside ``[min_value, max_value]``.
        """

        if not counter.is_active:
            raise ValidationError("Counter is inactive")

        old_value = counter.current_value
        tally = counter.pattern_tally
        if mode in (ValueMode.INCREMENT, ValueMode.DECREMENT):
            direction = 1 if mode is ValueMode.INCREMENT else -1
            if amount is not None:
                if amount < 0:
                    raise ValidationError("Step amount must not be negative")
                candidate = old_value + direction * amount
            else:
                outcome = compute_step(
                    parse_pattern(counter.increment_pattern),
                    increment_by=counter.increment_by,
                    tally=tally,
                    direction=direction,
                )
                candidate = old_value + outcome.delta
                tally = outcome.tally
        elif mode is ValueMode.RESET:
            candidate = amount if amount is not None else (counter.min_value or 0)
            tally = 0
        else:
            if amount is None:
                raise ValidationError(f"A value is required for {mode.value}")
            candidate = amount

        if not within_bounds(candidate, counter.min_value, counter.max_value):
            raise BoundsExceeded(
                counter_id=counter.id,
                candidate=candidate,
                min_value=counter.min_value,
                max_value=counter.max_value,
            )

        history_action = action or _MODE_ACTIONS[mode]
        counter.pattern_tally = tally
        entry: CounterHistory | None = None
        # an undo is always documented, even when the value already matches
        if candidate != old_value or mode is ValueMode.UNDO:
            counter.current_value = candidate
            counter.updated_at = datetime.utcnow()
            entry = await self._ledger.append(
                counter.id, old_value, candidate, history_action, note, link_id=link_id
            )
        await self._counters.flush()
        return ValueChange(
            counter=counter,
            old_value=old_value,
            new_value=candidate,
            action=history_action,
            history=entry,
        )

    async def update_counter(
        self, project_id: UUID, counter_id: UUID, changes: CounterUpdate
    ) -> CounterModel:
        model = await self.get_model(counter_id, project_id, for_update=True)
        updates = changes.model_dump(exclude_unset=True)
        cleared = [
            field for field in _REQUIRED_FIELDS if field in updates and updates[field] is None
        ]
        if cleared:
            raise ValidationError(f"{cleared[0]} cannot be null")

        min_value = updates.get("min_value", model.min_value)
        max_value = updates.get("max_value", model.max_value)
        check_bounds_consistent(min_value, max_value)
        if not within_bounds(model.current_value, min_value, max_value):
            raise ValidationError("Current value would fall outside the new bounds")

        if "parent_counter_id" in updates and updates["parent_counter_id"] is not None:
            if updates["parent_counter_id"] == counter_id:
                raise ValidationError("A counter cannot be its own parent")
            await self._require_parent(project_id, updates["parent_counter_id"])

        if "increment_pattern" in updates:
            pattern = changes.increment_pattern
            updates["increment_pattern"] = (
                pattern.model_dump(mode="json", exclude_none=True) if pattern is not None else None
            )
            model.pattern_tally = 0
        if "type" in updates:
            updates["type"] = updates["type"].value

        for key, value in updates.items():
            setattr(model, key, value)
        model.updated_at = datetime.utcnow()
        await self._counters.flush()
        return model

    async def reorder(self, project_id: UUID, ordered_ids: list[UUID]) -> None:
        known = await self._counters.ids_for_project(project_id)
        missing = [counter_id for counter_id in ordered_ids if counter_id not in known]
        if missing:
            raise NotFound(f"Counter not found: {missing[0]}")
        if len(set(ordered_ids)) != len(ordered_ids):
            raise ValidationError("Counter ids must be unique")
        await self._counters.set_sort_orders(project_id, ordered_ids)

    async def set_visibility(self, project_id: UUID, counter_id: UUID, visible: bool) -> CounterModel:
        model = await self.get_model(counter_id, project_id)
        model.is_visible = visible
        model.updated_at = datetime.utcnow()
        return model

    async def set_active(self, project_id: UUID, counter_id: UUID, active: bool) -> CounterModel:
        model = await self.get_model(counter_id, project_id)
        model.is_active = active
        model.updated_at = datetime.utcnow()
        return model

    async def delete_counter(self, model: CounterModel) -> None:
        await self._counters.clear_parent(model.id)
        await self._counters.delete(model)
        logger.info("counter.deleted", counter_id=str(model.id), project_id=str(model.project_id))

    async def _require_parent(self, project_id: UUID, parent_id: UUID) -> None:
        parent = await self._counters.get_model(parent_id, project_id=project_id)
        if parent is None:
            raise ValidationError("Parent counter must belong to the same project")
