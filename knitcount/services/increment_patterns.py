"""Step strategies for the counter increment pattern variants.

Each variant of :data:`~knitcount.domain.counters.IncrementPattern` maps to one
strategy function. A strategy receives the invocation direction (``+1`` for an
increment click, ``-1`` for a decrement click) and the counter-local tally and
returns the signed delta plus the tally after the invocation. Decrement is the
exact inverse of increment, so increment followed by decrement always restores
both the value and the tally.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import ValidationError
from ..domain.counters import (
    CustomRulePattern,
    EveryNPattern,
    FixedCustomPattern,
    IncrementPattern,
    SimplePattern,
)

_pattern_adapter: TypeAdapter[IncrementPattern] = TypeAdapter(IncrementPattern)


@dataclass(frozen=True)
class StepOutcome:
    delta: int
    tally: int

    @property
    def moves(self) -> bool:
        return self.delta != 0


def parse_pattern(raw: Any) -> IncrementPattern | None:
    """Validate a stored or submitted pattern payload."""

    if raw is None:
        return None
    if isinstance(raw, (SimplePattern, FixedCustomPattern, EveryNPattern, CustomRulePattern)):
        return raw
    try:
        return _pattern_adapter.validate_python(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Malformed increment pattern: {exc.errors()[0]['msg']}") from exc


def _simple(pattern: SimplePattern | None, increment_by: int, tally: int, direction: int) -> StepOutcome:
    return StepOutcome(delta=direction * increment_by, tally=tally)


def _fixed_custom(
    pattern: FixedCustomPattern, increment_by: int, tally: int, direction: int
) -> StepOutcome:
    return StepOutcome(delta=direction * pattern.increment, tally=tally)


def _every_n(pattern: EveryNPattern, increment_by: int, tally: int, direction: int) -> StepOutcome:
    if direction > 0:
        tally += 1
        delta = pattern.increment if tally % pattern.n == 0 else 0
        return StepOutcome(delta=delta, tally=tally)
    delta = -pattern.increment if tally % pattern.n == 0 else 0
    return StepOutcome(delta=delta, tally=tally - 1)


def _custom_rule(
    pattern: CustomRulePattern, increment_by: int, tally: int, direction: int
) -> StepOutcome:
    steps = pattern.steps
    if direction > 0:
        return StepOutcome(delta=steps[tally % len(steps)], tally=tally + 1)
    tally -= 1
    return StepOutcome(delta=-steps[tally % len(steps)], tally=tally)


_STRATEGIES: dict[str, Callable[[Any, int, int, int], StepOutcome]] = {
    "simple": _simple,
    "custom_fixed": _fixed_custom,
    "every_n": _every_n,
    "custom": _custom_rule,
}


def compute_step(
    pattern: IncrementPattern | None,
    *,
    increment_by: int,
    tally: int,
    direction: int,
) -> StepOutcome:
    """Return the signed change one click produces under ``pattern``."""

    if direction not in (1, -1):
        raise ValueError("direction must be +1 or -1")
    kind = "simple" if pattern is None else pattern.type
    return _STRATEGIES[kind](pattern, increment_by, tally, direction)
