"""Per-session periodic tasks: the broadcast ticker and the escalation monitor.

Each open session gets two asyncio tasks. They never share session objects;
every iteration calls back into the engine or monitor, which reads a fresh
snapshot from the store. A loop ends on its own when its callback reports the
session closed, and ``cancel`` stops both deterministically.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)


class _Outcome(Protocol):
    stop: bool


SessionCallback = Callable[[int], Awaitable[Any]]


@dataclass
class _SessionTimers:
    ticker: asyncio.Task
    monitor: asyncio.Task

    def tasks(self) -> tuple[asyncio.Task, asyncio.Task]:
        return self.ticker, self.monitor


class CheckinScheduler:
    """Starts, tracks and cancels the two loops of every open session."""

    def __init__(
        self,
        tick: SessionCallback,
        evaluate: SessionCallback,
        monitor_period_seconds: float,
        on_stopped: Callable[[int], None] | None = None,
    ) -> None:
        self._tick = tick
        self._evaluate = evaluate
        self._monitor_period = monitor_period_seconds
        self._on_stopped = on_stopped
        self._timers: dict[int, _SessionTimers] = {}

    def schedule(self, session_id: int, interval_seconds: float) -> None:
        """Start both loops. The first tick runs immediately. Idempotent."""
        if session_id in self._timers:
            return
        loop = asyncio.get_running_loop()
        self._timers[session_id] = _SessionTimers(
            ticker=loop.create_task(self._run_ticker(session_id, interval_seconds), name=f"checkin-ticker-{session_id}"),
            monitor=loop.create_task(self._run_monitor(session_id), name=f"checkin-monitor-{session_id}"),
        )
        logger.info(
            "Timers started: session=%s interval=%ss monitor=%ss",
            session_id,
            interval_seconds,
            self._monitor_period,
        )

    def is_scheduled(self, session_id: int) -> bool:
        return session_id in self._timers

    @property
    def scheduled_sessions(self) -> list[int]:
        return list(self._timers)

    async def cancel(self, session_id: int) -> None:
        """Cancel both loops and wait until they have finished."""
        timers = self._timers.pop(session_id, None)
        if timers is None:
            return
        current = asyncio.current_task()
        pending = [t for t in timers.tasks() if t is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Timers cancelled: session=%s", session_id)

    async def shutdown(self) -> None:
        for session_id in list(self._timers):
            await self.cancel(session_id)

    async def _run_ticker(self, session_id: int, interval_seconds: float) -> None:
        while True:
            outcome = await self._call(self._tick, session_id, "tick")
            if outcome is not None and outcome.stop:
                break
            await asyncio.sleep(interval_seconds)
        self._finished(session_id)

    async def _run_monitor(self, session_id: int) -> None:
        while True:
            await asyncio.sleep(self._monitor_period)
            outcome = await self._call(self._evaluate, session_id, "monitor")
            if outcome is not None and outcome.stop:
                break
        self._finished(session_id)

    async def _call(self, callback: SessionCallback, session_id: int, label: str) -> _Outcome | None:
        # A failing iteration is logged and the loop carries on
        try:
            return await callback(session_id)
        except Exception:
            logger.exception("Unhandled error in %s for session %s", label, session_id)
            return None

    def _finished(self, session_id: int) -> None:
        """A loop saw its session close: stop the sibling loop and release resources."""
        timers = self._timers.pop(session_id, None)
        if timers is None:
            return
        current = asyncio.current_task()
        for task in timers.tasks():
            if task is not current:
                task.cancel()
        logger.info("Timers finished: session=%s", session_id)
        if self._on_stopped is not None:
            try:
                self._on_stopped(session_id)
            except Exception:
                logger.exception("Release after stop failed for session %s", session_id)
