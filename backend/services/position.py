"""
Current-position tracking.

Works with a continuous watcher pushing fixes through `update` and with a
single-shot source polled through `poll`; whichever fix arrives last wins.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from domain.models import LatLon

logger = logging.getLogger(__name__)

PositionSource = Callable[[], Awaitable[Optional[LatLon]]]


@dataclass(frozen=True)
class PositionFix:
    lat: float
    lon: float
    received_at: float


class PositionTracker:
    def __init__(self, max_age_sec: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.max_age_sec = max_age_sec
        self._clock = clock
        self._fix: Optional[PositionFix] = None

    def update(self, lat: float, lon: float) -> PositionFix:
        if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
            raise ValueError(f"Invalid position {lat},{lon}")
        self._fix = PositionFix(lat=float(lat), lon=float(lon), received_at=self._clock())
        return self._fix

    def clear(self) -> None:
        self._fix = None

    def current(self) -> Optional[LatLon]:
        fix = self._fix
        if fix is None:
            return None
        if self.max_age_sec is not None and self._clock() - fix.received_at > self.max_age_sec:
            return None
        return (fix.lat, fix.lon)

    async def poll(self, source: PositionSource, timeout: float = 10.0) -> Optional[LatLon]:
        """Ask a single-shot source for a fix. An unavailable fix keeps the last known one."""
        try:
            coords = await asyncio.wait_for(source(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Position source timed out after %.1fs", timeout)
            return self.current()
        if coords is None:
            logger.info("Position source reported no fix")
            return self.current()
        self.update(*coords)
        return self.current()
