"""Shared watcher plumbing: operation results and the per-watcher poll scheduler."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from triageq.observability.logging import get_logger

logger = get_logger(__name__)

Tick = Callable[[str], Awaitable[Any]]


@dataclass(frozen=True)
class OperationResult:
    success: bool
    error: str | None = None
    watcher_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, watcher_id: str | None = None, **details: Any) -> OperationResult:
        return cls(success=True, watcher_id=watcher_id, details=details)

    @classmethod
    def fail(cls, error: str, watcher_id: str | None = None, **details: Any) -> OperationResult:
        return cls(success=False, error=error, watcher_id=watcher_id, details=details)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.error is not None:
            data["error"] = self.error
        if self.watcher_id is not None:
            data["watcher_id"] = self.watcher_id
        data.update(self.details)
        return data


class PollScheduler:
    """
    One cancellable repeating timer per watcher id.

    Each tick runs as its own task, so cancelling a timer stops future ticks
    without interrupting a poll that is already in progress. Callers pass the
    watcher id, never a config object; the tick re-reads current state.
    """

    def __init__(self) -> None:
        self._timers: dict[str, asyncio.Task] = {}
        self._inflight: set[asyncio.Task] = set()

    def arm(self, watcher_id: str, interval_seconds: float, tick: Tick) -> None:
        self.cancel(watcher_id)
        self._timers[watcher_id] = asyncio.create_task(
            self._loop(watcher_id, interval_seconds, tick), name=f"poll:{watcher_id}"
        )

    async def _loop(self, watcher_id: str, interval_seconds: float, tick: Tick) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.fire_now(watcher_id, tick)

    def fire_now(self, watcher_id: str, tick: Tick) -> asyncio.Task:
        task = asyncio.create_task(self._run_tick(watcher_id, tick), name=f"check:{watcher_id}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    @staticmethod
    async def _run_tick(watcher_id: str, tick: Tick) -> None:
        try:
            await tick(watcher_id)
        except Exception as e:
            # the tick owns its error accounting; this only keeps the loop alive
            logger.error("Poll for %s raised: %s", watcher_id, e)

    def cancel(self, watcher_id: str) -> bool:
        task = self._timers.pop(watcher_id, None)
        if task is None:
            return False
        task.cancel()
        return True

    def is_armed(self, watcher_id: str) -> bool:
        task = self._timers.get(watcher_id)
        return task is not None and not task.done()

    async def shutdown(self) -> None:
        """Cancel every timer and let in-progress polls finish."""
        for watcher_id in list(self._timers):
            self.cancel(watcher_id)
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
