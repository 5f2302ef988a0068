"""Link Graph Engine: counter-to-counter links and cascade execution."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from uuid import UUID

import structlog

from ..core.errors import BoundsExceeded, CycleGuardTripped, NotFound, ValidationError
from ..domain.counters import SkippedCascade, SkipReason, ValueMode
from ..domain.history import CounterHistory, HistoryAction
from ..domain.links import (
    CounterLink,
    CounterLinkCreate,
    CounterLinkUpdate,
    LinkAction,
    LinkActionType,
    LinkType,
    TriggerCondition,
    TriggerOperator,
)
from ..repositories.links import CounterLinksRepository
from ..telemetry.metrics import CASCADE_SKIPS, CASCADE_STEPS
from .counters import CounterStore, ValueChange

logger = structlog.get_logger(__name__)

_ACTION_MODES = {
    LinkActionType.RESET: (ValueMode.RESET, HistoryAction.RESET),
    LinkActionType.SET: (ValueMode.SET, HistoryAction.SET),
    LinkActionType.INCREMENT: (ValueMode.INCREMENT, HistoryAction.INCREMENT),
    LinkActionType.DECREMENT: (ValueMode.DECREMENT, HistoryAction.DECREMENT),
}


def evaluate_condition(condition: TriggerCondition, value: int) -> bool:
    """Return True when ``value`` satisfies the link's trigger condition."""

    if condition.operator is TriggerOperator.EQUALS:
        return value == condition.value
    if condition.operator is TriggerOperator.GREATER_THAN:
        return value > condition.value
    if condition.operator is TriggerOperator.LESS_THAN:
        return value < condition.value
    if condition.operator is TriggerOperator.MULTIPLE_OF:
        return condition.value > 0 and value % condition.value == 0
    return False


class LinkGraph:
    """Adjacency arena of active links keyed by source counter id.

    Built once per root update so the whole cascade sees one consistent set
    of links.
    """

    def __init__(self, links: Iterable[CounterLink]) -> None:
        self._outgoing: dict[UUID, list[CounterLink]] = defaultdict(list)
        for link in links:
            if link.is_active:
                self._outgoing[link.source_counter_id].append(link)

    def outgoing(self, counter_id: UUID) -> list[CounterLink]:
        return self._outgoing.get(counter_id, [])

    def reachable_from(self, roots: Iterable[UUID]) -> set[UUID]:
        """Counters a cascade starting at ``roots`` could touch, roots included."""

        seen: set[UUID] = set()
        stack = list(roots)
        while stack:
            counter_id = stack.pop()
            if counter_id in seen:
                continue
            seen.add(counter_id)
            stack.extend(link.target_counter_id for link in self.outgoing(counter_id))
        return seen

    def __len__(self) -> int:
        return sum(len(links) for links in self._outgoing.values())


@dataclass
class CascadeResult:
    """Everything one root update changed, in commit order."""

    root: ValueChange
    changes: list[ValueChange] = field(default_factory=list)
    skipped: list[SkippedCascade] = field(default_factory=list)
    cycle_events: list[CycleGuardTripped] = field(default_factory=list)

    @property
    def history(self) -> list[CounterHistory]:
        return [change.history for change in self.changes if change.history is not None]

    @property
    def moved(self) -> list[ValueChange]:
        return [change for change in self.changes if change.moved]


class LinkGraphEngine:
    """Registers links and runs cascades through the Counter Store."""

    def __init__(
        self,
        links: CounterLinksRepository,
        store: CounterStore,
        *,
        max_depth: int = 32,
    ) -> None:
        self._links = links
        self._store = store
        self._max_depth = max_depth

    async def register_link(self, project_id: UUID, spec: CounterLinkCreate) -> CounterLink:
        if spec.source_counter_id == spec.target_counter_id:
            raise ValidationError("Source and target counters cannot be the same")
        await self._require_in_project(project_id, spec.source_counter_id, "Source")
        target = await self._require_in_project(project_id, spec.target_counter_id, "Target")
        if await self._links.find_pair(spec.source_counter_id, spec.target_counter_id):
            raise ValidationError("A link between these counters already exists")

        action = _resolve_action(spec.link_type, spec.action, target.min_value)
        link = await self._links.add(
            project_id,
            {
                "source_counter_id": spec.source_counter_id,
                "target_counter_id": spec.target_counter_id,
                "link_type": spec.link_type.value,
                "trigger_condition": spec.trigger_condition.model_dump(mode="json"),
                "action": action.model_dump(mode="json"),
                "is_active": spec.is_active,
            },
        )
        logger.info(
            "counter.link.registered",
            link_id=str(link.id),
            source_id=str(link.source_counter_id),
            target_id=str(link.target_counter_id),
            link_type=link.link_type.value,
        )
        return link

    async def update_link(
        self, project_id: UUID, link_id: UUID, changes: CounterLinkUpdate
    ) -> CounterLink:
        model = await self._require_link(project_id, link_id)
        updates = changes.model_dump(exclude_unset=True)
        values: dict[str, object] = {}
        if updates.get("trigger_condition") is not None:
            values["trigger_condition"] = changes.trigger_condition.model_dump(mode="json")
        if updates.get("is_active") is not None:
            values["is_active"] = changes.is_active
        link_type = changes.link_type or LinkType(model.link_type)
        if updates.get("link_type") is not None:
            values["link_type"] = link_type.value
        if "action" in updates:
            target = await self._store.get_model(model.target_counter_id, project_id)
            values["action"] = _resolve_action(
                link_type, changes.action, target.min_value
            ).model_dump(mode="json")
        return await self._links.save(model, values)

    async def toggle_link(self, project_id: UUID, link_id: UUID) -> CounterLink:
        model = await self._require_link(project_id, link_id)
        return await self._links.save(model, {"is_active": not model.is_active})

    async def delete_link(self, project_id: UUID, link_id: UUID) -> None:
        model = await self._require_link(project_id, link_id)
        await self._links.delete(model)
        logger.info("counter.link.deleted", link_id=str(link_id))

    async def list_for_project(self, project_id: UUID) -> list[CounterLink]:
        return await self._links.list_for_project(project_id)

    async def list_for_counter(self, project_id: UUID, counter_id: UUID) -> list[CounterLink]:
        await self._store.get_model(counter_id, project_id)
        return await self._links.list_for_counter(counter_id)

    async def active_links_touching(self, counter_id: UUID) -> list[CounterLink]:
        return [link for link in await self._links.list_for_counter(counter_id) if link.is_active]

    async def detach_counter(self, counter_id: UUID) -> int:
        return await self._links.delete_for_counter(counter_id)

    async def load_graph(self, project_id: UUID) -> LinkGraph:
        return LinkGraph(await self._links.list_for_project(project_id, active_only=True))

    async def run_cascade(self, root: ValueChange, graph: LinkGraph) -> CascadeResult:
        """Execute the cascade rooted at an already-applied mutation.

        The visited set starts with the root counter, so no counter changes
        more than once per root update; edges into visited counters are
        recorded as cycle guard events and skipped.
        """

        result = CascadeResult(root=root, changes=[root])
        if root.moved:
            await self.on_counter_committed(root, graph, result, {root.counter_id}, depth=0)
        return result

    async def on_counter_committed(
        self,
        change: ValueChange,
        graph: LinkGraph,
        result: CascadeResult,
        visited: set[UUID],
        depth: int,
    ) -> None:
        for link in graph.outgoing(change.counter_id):
            if not evaluate_condition(link.trigger_condition, change.new_value):
                continue
            target_id = link.target_counter_id
            hop = depth + 1

            if target_id in visited:
                event = CycleGuardTripped(
                    link_id=link.id, source_id=change.counter_id, target_id=target_id, depth=hop
                )
                result.cycle_events.append(event)
                self._skip(result, link, SkipReason.CYCLE_GUARD, hop, event.message)
                continue
            if hop > self._max_depth:
                self._skip(
                    result, link, SkipReason.MAX_DEPTH, hop, f"Cascade depth limit {self._max_depth}"
                )
                continue

            target = await self._store.get_model(target_id, for_update=True)
            if not target.is_active:
                self._skip(result, link, SkipReason.TARGET_INACTIVE, hop, "Target counter is inactive")
                continue

            mode, action = _ACTION_MODES[link.action.type]
            amount = link.action.value
            if mode in (ValueMode.INCREMENT, ValueMode.DECREMENT) and amount is None:
                amount = 1
            try:
                child = await self._store.update_value(
                    target,
                    mode,
                    amount,
                    note=f"Auto-updated by linked counter: {change.counter_id}",
                    action=action,
                    link_id=link.id,
                )
            except BoundsExceeded as exc:
                self._skip(result, link, SkipReason.BOUNDS_EXCEEDED, hop, exc.message)
                continue

            visited.add(target_id)
            child.linked_from = change.counter_id
            result.changes.append(child)
            CASCADE_STEPS.inc()
            logger.info(
                "counter.cascade.applied",
                link_id=str(link.id),
                source_id=str(change.counter_id),
                target_id=str(target_id),
                old_value=child.old_value,
                new_value=child.new_value,
                depth=hop,
            )
            if child.moved:
                await self.on_counter_committed(child, graph, result, visited, hop)

    def _skip(
        self,
        result: CascadeResult,
        link: CounterLink,
        reason: SkipReason,
        depth: int,
        detail: str,
    ) -> None:
        result.skipped.append(
            SkippedCascade(
                link_id=link.id,
                source_counter_id=link.source_counter_id,
                target_counter_id=link.target_counter_id,
                reason=reason,
                depth=depth,
                detail=detail,
            )
        )
        CASCADE_SKIPS.labels(reason=reason.value).inc()
        logger.warning(
            "counter.cascade.skipped",
            link_id=str(link.id),
            source_id=str(link.source_counter_id),
            target_id=str(link.target_counter_id),
            reason=reason.value,
            depth=depth,
        )

    async def _require_in_project(self, project_id: UUID, counter_id: UUID, label: str):
        try:
            return await self._store.get_model(counter_id, project_id)
        except NotFound as exc:
            raise ValidationError(f"{label} counter must belong to this project") from exc

    async def _require_link(self, project_id: UUID, link_id: UUID):
        model = await self._links.get_model(link_id, project_id)
        if model is None:
            raise NotFound("Counter link not found")
        return model


def _resolve_action(
    link_type: LinkType, action: LinkAction | None, target_min: int | None
) -> LinkAction:
    """Fill in the link type's default action and the values it needs."""

    if action is None:
        if link_type is LinkType.RESET_ON_TARGET:
            action = LinkAction(type=LinkActionType.RESET)
        elif link_type is LinkType.ADVANCE_TOGETHER:
            action = LinkAction(type=LinkActionType.INCREMENT, value=1)
        else:
            raise ValidationError("Conditional links require an action")

    if action.type is LinkActionType.SET and action.value is None:
        raise ValidationError("A set action requires a value")
    if action.type is LinkActionType.RESET and action.value is None:
        action = LinkAction(type=LinkActionType.RESET, value=target_min or 0)
    if action.type in (LinkActionType.INCREMENT, LinkActionType.DECREMENT):
        if action.value is None:
            action = LinkAction(type=action.type, value=1)
        elif action.value < 0:
            raise ValidationError("Increment and decrement amounts must not be negative")
    return action
