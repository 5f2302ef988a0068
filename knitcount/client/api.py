"""httpx client applying the optimistic update contract around the HTTP API."""

from __future__ import annotations

from typing import Any
from uuid import UUID

import httpx
import structlog

from ..domain.counters import Counter, CounterMutationResponse, CounterSnapshot
from ..domain.sync import CounterEvent
from .optimistic import OptimisticCounterState

logger = structlog.get_logger(__name__)

# rejections the user can act on; anything else is re-raised after rollback
_RECOVERABLE_STATUSES = {409, 422}


class CounterSyncClient:
    """Talks to one project's counters on behalf of one device."""

    def __init__(
        self,
        base_url: str,
        token: str,
        project_id: UUID,
        *,
        state: OptimisticCounterState | None = None,
        api_prefix: str = "/v1",
        http: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.project_id = project_id
        self.state = state or OptimisticCounterState()
        self._prefix = f"{api_prefix}/projects/{project_id}"
        self._counters: dict[UUID, Counter] = {}
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(timeout))
        self._http.headers["Authorization"] = f"Bearer {token}"

    async def __aenter__(self) -> CounterSyncClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def resync(self) -> CounterSnapshot:
        """Fetch the authoritative snapshot and drop every pending local change."""

        response = await self._http.get(f"{self._prefix}/counters/snapshot")
        response.raise_for_status()
        snapshot = CounterSnapshot.model_validate(response.json())
        self._counters = {counter.id: counter for counter in snapshot.counters}
        self.state.reconcile(snapshot)
        logger.debug(
            "client.resync",
            project_id=str(self.project_id),
            sequence=snapshot.sequence,
            counters=len(snapshot.counters),
        )
        return snapshot

    async def handle_event(self, payload: dict[str, Any]) -> None:
        """Merge one frame from the project event stream."""

        if payload.get("event") == "snapshot":
            snapshot = CounterSnapshot.model_validate(payload["data"])
            self._counters = {counter.id: counter for counter in snapshot.counters}
            self.state.reconcile(snapshot)
            return
        self.state.receive(CounterEvent.model_validate(payload.get("data", payload)))
        if self.state.needs_resync:
            await self.resync()

    async def increment(
        self, counter_id: UUID, amount: int | None = None, note: str | None = None
    ) -> CounterMutationResponse | None:
        predicted = self._predict_step(counter_id, amount, direction=1)
        return await self._mutate(counter_id, "increment", predicted, amount, note)

    async def decrement(
        self, counter_id: UUID, amount: int | None = None, note: str | None = None
    ) -> CounterMutationResponse | None:
        predicted = self._predict_step(counter_id, amount, direction=-1)
        return await self._mutate(counter_id, "decrement", predicted, amount, note)

    async def reset(
        self, counter_id: UUID, value: int | None = None, note: str | None = None
    ) -> CounterMutationResponse | None:
        counter = self._counters.get(counter_id)
        predicted = value if value is not None else ((counter.min_value or 0) if counter else None)
        return await self._mutate(counter_id, "reset", predicted, value, note)

    async def set_value(
        self, counter_id: UUID, value: int, note: str | None = None
    ) -> CounterMutationResponse | None:
        return await self._mutate(counter_id, "set", value, value, note)

    async def undo(self, counter_id: UUID, history_id: UUID) -> CounterMutationResponse | None:
        return await self._send(
            counter_id,
            f"{self._prefix}/counters/{counter_id}/history/{history_id}/undo",
            None,
            {"origin": self.state.client_id},
        )

    async def _mutate(
        self,
        counter_id: UUID,
        op: str,
        predicted: int | None,
        amount: int | None,
        note: str | None,
    ) -> CounterMutationResponse | None:
        body: dict[str, Any] = {"origin": self.state.client_id}
        if amount is not None:
            body["amount"] = amount
        if note is not None:
            body["note"] = note
        return await self._send(
            counter_id, f"{self._prefix}/counters/{counter_id}/{op}", predicted, body
        )

    async def _send(
        self,
        counter_id: UUID,
        url: str,
        predicted: int | None,
        body: dict[str, Any],
    ) -> CounterMutationResponse | None:
        pending = None
        if predicted is not None and counter_id in self.state.counter_ids():
            pending = self.state.apply_local(counter_id, predicted)
        try:
            response = await self._http.post(url, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = _error_detail(exc.response)
            if pending is not None:
                self.state.reject(pending.token, detail)
            if exc.response.status_code in _RECOVERABLE_STATUSES:
                logger.info(
                    "client.mutation.rejected",
                    counter_id=str(counter_id),
                    status=exc.response.status_code,
                    detail=detail,
                )
                return None
            raise
        except httpx.HTTPError as exc:
            if pending is not None:
                self.state.reject(pending.token, str(exc) or "Network error")
            raise

        result = CounterMutationResponse.model_validate(response.json())
        self._counters[result.data.id] = result.data
        if pending is not None:
            self.state.confirm(pending.token, result.data.current_value)
        elif counter_id in self.state.counter_ids() and not self.state.is_pending(counter_id):
            self.state.track(counter_id, result.data.current_value)
        for counter in result.changed:
            self._counters[counter.id] = counter
            # linked counters moved by the cascade; local edits in flight win
            if counter.id != counter_id and not self.state.is_pending(counter.id):
                self.state.track(counter.id, counter.current_value)
        return result

    def _predict_step(self, counter_id: UUID, amount: int | None, *, direction: int) -> int | None:
        """Best local guess of the next value; None when only the server can tell."""

        if counter_id not in self.state.counter_ids():
            return None
        current = self.state.value(counter_id)
        if amount is not None:
            return current + direction * amount
        counter = self._counters.get(counter_id)
        if counter is None:
            return None
        pattern = counter.increment_pattern
        if pattern is None or pattern.type == "simple":
            return current + direction * counter.increment_by
        if pattern.type == "custom_fixed":
            return current + direction * pattern.increment
        # tally-driven patterns depend on server-side state
        return None


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(payload, dict) and payload.get("detail"):
        return str(payload["detail"])
    return f"HTTP {response.status_code}"
