"""Location provider backed by fixes pushed from the owner's device.

The server cannot read a GPS itself. Devices report positions over HTTP or
the WebSocket channel; when the engine needs a current position and the last
fix is too old, a ``location.request`` event is pushed to the device and the
next report is awaited. Callers bound the wait with a timeout.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from raksha.core.clock import Clock, utcnow
from raksha.core.errors import LocationUnavailable
from raksha.core.ws_manager import ConnectionManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionFix:
    """A single geolocation reading."""

    latitude: float
    longitude: float
    accuracy_m: float | None
    captured_at: datetime


class LocationProvider(Protocol):
    async def get_current_position(self, owner_id: int) -> PositionFix: ...

    def forget(self, owner_id: int) -> None: ...


class DeviceLocationProvider:
    """Serves the freshest device fix, asking the device for a new one if needed.

    Fixes older than ``max_age_seconds`` are dropped when a new report comes
    in or when they are looked up, so owners that went quiet do not stay in
    memory.
    """

    def __init__(self, events: ConnectionManager, max_age_seconds: float, clock: Clock = utcnow) -> None:
        self._events = events
        self._max_age_seconds = max_age_seconds
        self._clock = clock
        # owner_id -> (fix, server receive time)
        self._latest: dict[int, tuple[PositionFix, datetime]] = {}
        self._waiters: dict[int, list[asyncio.Future]] = {}

    def report(self, owner_id: int, fix: PositionFix) -> None:
        """Store a device fix and wake anyone waiting for this owner."""
        now = self._clock()
        self._evict_stale(now)
        self._latest[owner_id] = (fix, now)
        for waiter in self._waiters.get(owner_id, []):
            if not waiter.done():
                waiter.set_result(fix)

    def latest(self, owner_id: int) -> PositionFix | None:
        entry = self._latest.get(owner_id)
        return entry[0] if entry else None

    def forget(self, owner_id: int) -> None:
        """Drop the cached fix once the owner has no open check-in."""
        self._latest.pop(owner_id, None)

    def _is_fresh(self, received_at: datetime, now: datetime) -> bool:
        return (now - received_at).total_seconds() <= self._max_age_seconds

    def _evict_stale(self, now: datetime) -> None:
        stale = [owner_id for owner_id, (_, received_at) in self._latest.items() if not self._is_fresh(received_at, now)]
        for owner_id in stale:
            del self._latest[owner_id]

    async def get_current_position(self, owner_id: int) -> PositionFix:
        entry = self._latest.get(owner_id)
        if entry is not None:
            fix, received_at = entry
            if self._is_fresh(received_at, self._clock()):
                return fix
            del self._latest[owner_id]

        if not self._events.is_connected(owner_id):
            raise LocationUnavailable(f"No fresh fix and no connected device for owner {owner_id}")

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(owner_id, []).append(waiter)
        try:
            reached = await self._events.send_to_user(owner_id, "location.request", {"owner_id": owner_id})
            if not reached:
                raise LocationUnavailable(f"Device for owner {owner_id} did not take the location request")
            return await waiter
        finally:
            waiters = self._waiters.get(owner_id, [])
            if waiter in waiters:
                waiters.remove(waiter)
            if not waiters:
                self._waiters.pop(owner_id, None)
