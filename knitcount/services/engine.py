"""Unit-of-work orchestration for the counter engine.

Every root mutation runs as one transaction covering the counter update, its
history entry and the full cascade. Locks for every counter the cascade could
reach are held from before the transaction starts until the resulting events
have been published, so subscribers observe counters in commit order and never
see a partial cascade.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings, get_settings
from ..core.errors import BoundsExceeded, Unauthorized, ValidationError
from ..domain.counters import (
    Counter,
    CounterCreate,
    CounterMutationResponse,
    CounterSnapshot,
    CounterUpdate,
    SkippedCascade,
    ValueMode,
)
from ..domain.history import CounterHistory
from ..domain.links import CounterLink, CounterLinkCreate, CounterLinkUpdate
from ..domain.pagination import PaginationMeta, PaginationParams
from ..domain.projects import Project, ProjectContext, ProjectCreate
from ..domain.sync import CounterEvent
from ..models.counter import CounterModel
from ..repositories.counters import SqlAlchemyCountersRepository
from ..repositories.history import SqlAlchemyCounterHistoryRepository
from ..repositories.links import SqlAlchemyCounterLinksRepository
from ..repositories.projects import SqlAlchemyProjectsRepository
from ..telemetry import engine_span
from ..telemetry.metrics import BOUNDS_REJECTIONS, COUNTER_MUTATIONS
from .counter_events import CounterEventBroker
from .counters import CounterStore, ValueChange
from .history import HistoryLedger
from .links import CascadeResult, LinkGraphEngine
from .locks import CounterLockRegistry

logger = structlog.get_logger(__name__)


class _UnitOfWork:
    """Repositories and services bound to one session."""

    def __init__(self, session: AsyncSession, max_depth: int) -> None:
        self.session = session
        self.projects = SqlAlchemyProjectsRepository(session)
        self.counters = SqlAlchemyCountersRepository(session)
        self.ledger = HistoryLedger(SqlAlchemyCounterHistoryRepository(session))
        self.store = CounterStore(self.counters, self.ledger)
        self.links = LinkGraphEngine(
            SqlAlchemyCounterLinksRepository(session), self.store, max_depth=max_depth
        )


@dataclass
class MutationOutcome:
    """Committed result of a root update and its cascade."""

    counter: Counter
    changed: list[Counter]
    history: list[CounterHistory]
    skipped: list[SkippedCascade] = field(default_factory=list)
    events: list[CounterEvent] = field(default_factory=list)

    def to_response(self) -> CounterMutationResponse:
        return CounterMutationResponse(
            data=self.counter,
            changed=self.changed,
            history=self.history,
            skipped=self.skipped,
        )


RootMutation = Callable[[_UnitOfWork, CounterModel], Awaitable[ValueChange]]


class CounterEngine:
    """Service API used by the HTTP layer, the WebSocket layer and tests."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broker: CounterEventBroker,
        locks: CounterLockRegistry | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._session_factory = session_factory
        self._broker = broker
        self._locks = locks or CounterLockRegistry()
        self._max_depth = settings.cascade_max_depth
        self._history_page_size = settings.history_page_size
        broker.bind_authorizer(self.is_project_owner)

    @property
    def broker(self) -> CounterEventBroker:
        return self._broker

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncIterator[_UnitOfWork]:
        async with self._session_factory() as session:
            try:
                yield _UnitOfWork(session, self._max_depth)
            except Exception:
                await session.rollback()
                raise

    async def _require_project(self, uow: _UnitOfWork, ctx: ProjectContext) -> Project:
        project = await uow.projects.get_owned(ctx.project_id, ctx.user_id)
        if project is None:
            # foreign and missing projects look the same to the caller
            raise Unauthorized("Project not found or not owned by caller")
        return project

    # projects

    async def create_project(self, user_id: UUID, payload: ProjectCreate) -> Project:
        async with self._unit_of_work() as uow:
            project = await uow.projects.create(user_id, payload)
            await uow.session.commit()
        logger.info("project.created", project_id=str(project.id), user_id=str(user_id))
        return project

    async def get_project(self, ctx: ProjectContext) -> Project:
        async with self._unit_of_work() as uow:
            return await self._require_project(uow, ctx)

    async def is_project_owner(self, project_id: UUID, user_id: UUID) -> bool:
        async with self._unit_of_work() as uow:
            return await uow.projects.get_owned(project_id, user_id) is not None

    # counter reads

    async def list_counters(self, ctx: ProjectContext) -> list[Counter]:
        async with self._unit_of_work() as uow:
            await self._require_project(uow, ctx)
            return await uow.store.list_counters(ctx.project_id)

    async def get_counter(self, ctx: ProjectContext, counter_id: UUID) -> Counter:
        async with self._unit_of_work() as uow:
            await self._require_project(uow, ctx)
            return await uow.store.get_counter(ctx.project_id, counter_id)

    async def list_children(self, ctx: ProjectContext, counter_id: UUID) -> list[Counter]:
        async with self._unit_of_work() as uow:
            await self._require_project(uow, ctx)
            return await uow.store.list_children(ctx.project_id, counter_id)

    async def snapshot(self, ctx: ProjectContext) -> CounterSnapshot:
        """Authoritative counter state tagged with the channel's current sequence."""

        async with self._unit_of_work() as uow:
            await self._require_project(uow, ctx)
            sequence = self._broker.current_sequence(ctx.project_id)
            counters = await uow.store.list_counters(ctx.project_id)
        return CounterSnapshot(project_id=ctx.project_id, sequence=sequence, counters=counters)

    # counter writes

    async def create_counter(
        self, ctx: ProjectContext, spec: CounterCreate, *, origin: str | None = None
    ) -> tuple[Counter, CounterHistory]:
        async with self._unit_of_work() as uow:
            await self._require_project(uow, ctx)
            model, entry = await uow.store.create_counter(ctx.project_id, spec)
            await uow.session.commit()
            counter = Counter.model_validate(model)
        self._broker.publish(
            ctx.project_id, counter.id, counter.current_value, entry.action.value, origin=origin
        )
        return counter, entry

    async def update_value(
        self,
        ctx: ProjectContext,
        counter_id: UUID,
        mode: ValueMode,
        amount: int | None = None,
        note: str | None = None,
        *,
        origin: str | None = None,
    ) -> MutationOutcome:
        if mode is ValueMode.UNDO:
            raise ValidationError("Use undo() to revert to a history entry")

        async def apply(uow: _UnitOfWork, counter: CounterModel) -> ValueChange:
            return await uow.store.update_value(counter, mode, amount, note)

        return await self._run_root_update(ctx, counter_id, apply, op=mode.value, origin=origin)

    async def increment(self, ctx: ProjectContext, counter_id: UUID, **kwargs) -> MutationOutcome:
        return await self.update_value(ctx, counter_id, ValueMode.INCREMENT, **kwargs)

    async def decrement(self, ctx: ProjectContext, counter_id: UUID, **kwargs) -> MutationOutcome:
        return await self.update_value(ctx, counter_id, ValueMode.DECREMENT, **kwargs)

    async def undo(
        self,
        ctx: ProjectContext,
        counter_id: UUID,
        history_id: UUID,
        *,
        origin: str | None = None,
    ) -> MutationOutcome:
        async def apply(uow: _UnitOfWork, counter: CounterModel) -> ValueChange:
            return await uow.ledger.undo(history_id, counter, uow.store)

        return await self._run_root_update(ctx, counter_id, apply, op="undo", origin=origin)

    async def update_counter(
        self, ctx: ProjectContext, counter_id: UUID, changes: CounterUpdate
    ) -> Counter:
        async with self._locks.hold([counter_id]):
            async with self._unit_of_work() as uow:
                await self._require_project(uow, ctx)
                model = await uow.store.update_counter(ctx.project_id, counter_id, changes)
                await uow.session.commit()
                return Counter.model_validate(model)

    async def reorder(self, ctx: ProjectContext, ordered_ids: list[UUID]) -> list[Counter]:
        async with self._unit_of_work() as uow:
            await self._require_project(uow, ctx)
            await uow.store.reorder(ctx.project_id, ordered_ids)
            await uow.session.commit()
            return await uow.store.list_counters(ctx.project_id)

    async def set_visibility(self, ctx: ProjectContext, counter_id: UUID, visible: bool) -> Counter:
        async with self._unit_of_work() as uow:
            await self._require_project(uow, ctx)
            model = await uow.store.set_visibility(ctx.project_id, counter_id, visible)
            await uow.session.commit()
            return Counter.model_validate(model)

    async def set_active(self, ctx: ProjectContext, counter_id: UUID, active: bool) -> Counter:
        async with self._locks.hold([counter_id]):
            async with self._unit_of_work() as uow:
                await self._require_project(uow, ctx)
                model = await uow.store.set_active(ctx.project_id, counter_id, active)
                await uow.session.commit()
                return Counter.model_validate(model)

    async def delete_counter(
        self, ctx: ProjectContext, counter_id: UUID, *, detach_links: bool = False
    ) -> None:
        async with self._locks.hold([counter_id]):
            async with self._unit_of_work() as uow:
                await self._require_project(uow, ctx)
                model = await uow.store.get_model(counter_id, ctx.project_id, for_update=True)
                active = await uow.links.active_links_touching(counter_id)
                if active and not detach_links:
                    raise ValidationError(
                        f"Counter is referenced by {len(active)} active link(s); detach them first"
                    )
                # only inactive links remain unless the caller asked to detach
                detached = await uow.links.detach_counter(counter_id)
                last_value = model.current_value
                await uow.store.delete_counter(model)
                await uow.session.commit()
            self._broker.publish(ctx.project_id, counter_id, last_value, "deleted")
        self._locks.forget(counter_id)
        logger.info("counter.delete.committed", counter_id=str(counter_id), detached_links=detached)

    # history

    async def history_page(
        self, ctx: ProjectContext, counter_id: UUID, params: PaginationParams
    ) -> tuple[list[CounterHistory], PaginationMeta]:
        async with self._unit_of_work() as uow:
            await self._require_project(uow, ctx)
            await uow.store.get_model(counter_id, ctx.project_id)
            return await uow.ledger.page(counter_id, params)

    async def iter_history(
        self, ctx: ProjectContext, counter_id: UUID, page_size: int | None = None
    ) -> AsyncIterator[CounterHistory]:
        """Yield a counter's whole history newest-first, one page per query."""

        async with self._unit_of_work() as uow:
            await self._require_project(uow, ctx)
            await uow.store.get_model(counter_id, ctx.project_id)
            async for entry in uow.ledger.list_for(counter_id, page_size or self._history_page_size):
                yield entry

    # links

    async def register_link(self, ctx: ProjectContext, spec: CounterLinkCreate) -> CounterLink:
        async with self._unit_of_work() as uow:
            await self._require_project(uow, ctx)
            link = await uow.links.register_link(ctx.project_id, spec)
            await uow.session.commit()
            return link

    async def update_link(
        self, ctx: ProjectContext, link_id: UUID, changes: CounterLinkUpdate
    ) -> CounterLink:
        async with self._unit_of_work() as uow:
            await self._require_project(uow, ctx)
            link = await uow.links.update_link(ctx.project_id, link_id, changes)
            await uow.session.commit()
            return link

    async def toggle_link(self, ctx: ProjectContext, link_id: UUID) -> CounterLink:
        async with self._unit_of_work() as uow:
            await self._require_project(uow, ctx)
            link = await uow.links.toggle_link(ctx.project_id, link_id)
            await uow.session.commit()
            return link

    async def delete_link(self, ctx: ProjectContext, link_id: UUID) -> None:
        async with self._unit_of_work() as uow:
            await self._require_project(uow, ctx)
            await uow.links.delete_link(ctx.project_id, link_id)
            await uow.session.commit()

    async def list_links(self, ctx: ProjectContext) -> list[CounterLink]:
        async with self._unit_of_work() as uow:
            await self._require_project(uow, ctx)
            return await uow.links.list_for_project(ctx.project_id)

    async def list_counter_links(self, ctx: ProjectContext, counter_id: UUID) -> list[CounterLink]:
        async with self._unit_of_work() as uow:
            await self._require_project(uow, ctx)
            return await uow.links.list_for_counter(ctx.project_id, counter_id)

    # root update machinery

    async def _run_root_update(
        self,
        ctx: ProjectContext,
        counter_id: UUID,
        apply: RootMutation,
        *,
        op: str,
        origin: str | None,
    ) -> MutationOutcome:
        with engine_span("counter.root_update", counter_id=counter_id, op=op) as span:
            async with self._unit_of_work() as uow:
                await self._require_project(uow, ctx)
                await uow.store.get_model(counter_id, ctx.project_id)
                graph = await uow.links.load_graph(ctx.project_id)
            lock_ids = graph.reachable_from([counter_id])

            while True:
                async with self._locks.hold(lock_ids):
                    async with self._unit_of_work() as uow:
                        graph = await uow.links.load_graph(ctx.project_id)
                        closure = graph.reachable_from([counter_id])
                        if not closure <= lock_ids:
                            # links changed since the locks were chosen
                            await uow.session.rollback()
                            lock_ids |= closure
                            continue

                        await self._require_project(uow, ctx)
                        await uow.counters.lock(closure)
                        counter = await uow.store.get_model(
                            counter_id, ctx.project_id, for_update=True
                        )
                        try:
                            root = await apply(uow, counter)
                        except BoundsExceeded as exc:
                            BOUNDS_REJECTIONS.inc()
                            logger.info(
                                "counter.value.rejected",
                                counter_id=str(counter_id),
                                candidate=exc.candidate,
                                op=op,
                            )
                            raise
                        result = await uow.links.run_cascade(root, graph)
                        await uow.session.commit()
                        events = self._publish(ctx.project_id, result, origin)
                        span.set_attribute("knitcount.cascade_changes", len(result.changes) - 1)
                        return self._outcome(result, events)

    def _publish(
        self, project_id: UUID, result: CascadeResult, origin: str | None
    ) -> list[CounterEvent]:
        events = []
        for change in result.moved:
            COUNTER_MUTATIONS.labels(action=change.action.value).inc()
            logger.info(
                "counter.value.committed",
                counter_id=str(change.counter_id),
                old_value=change.old_value,
                new_value=change.new_value,
                action=change.action.value,
                linked_from=str(change.linked_from) if change.linked_from else None,
            )
            events.append(
                self._broker.publish(
                    project_id,
                    change.counter_id,
                    change.new_value,
                    change.action.value,
                    linked_from=change.linked_from,
                    origin=origin,
                )
            )
        return events

    @staticmethod
    def _outcome(result: CascadeResult, events: list[CounterEvent]) -> MutationOutcome:
        return MutationOutcome(
            counter=Counter.model_validate(result.root.counter),
            changed=[Counter.model_validate(change.counter) for change in result.moved],
            history=result.history,
            skipped=result.skipped,
            events=events,
        )
