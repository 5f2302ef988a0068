"""In-memory stand-ins for the SQL repositories, for store-level property tests."""

from datetime import datetime
from uuid import uuid4

from knitcount.domain.history import CounterHistory
from knitcount.models.counter import CounterModel


class InMemoryHistory:
    def __init__(self):
        self.entries = []

    async def append(self, *, counter_id, old_value, new_value, action, user_note=None, link_id=None):
        entry = CounterHistory(
            id=uuid4(),
            counter_id=counter_id,
            sequence=len(self.entries) + 1,
            old_value=old_value,
            new_value=new_value,
            action=action,
            user_note=user_note,
            link_id=link_id,
            created_at=datetime.utcnow(),
        )
        self.entries.append(entry)
        return entry

    async def list_for_counter(self, counter_id, *, limit, offset=0, before_sequence=None):
        rows = [
            entry
            for entry in reversed(self.entries)
            if entry.counter_id == counter_id
            and (before_sequence is None or entry.sequence < before_sequence)
        ]
        return rows[offset : offset + limit]


class InMemoryCounters:
    def __init__(self, models=()):
        self.models = {model.id: model for model in models}

    async def get_model(self, counter_id, *, project_id=None, for_update=False):
        return self.models.get(counter_id)

    async def flush(self):
        return None


def transient_counter(name="Rows", **fields):
    values = dict(
        id=uuid4(),
        project_id=uuid4(),
        name=name,
        type="row",
        current_value=0,
        min_value=0,
        max_value=None,
        increment_by=1,
        increment_pattern=None,
        pattern_tally=0,
        is_active=True,
    )
    values.update(fields)
    return CounterModel(**values)
