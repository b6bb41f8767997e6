from __future__ import annotations

import logging
import math

import psutil

from database.models import HealthSnapshot
from utils.time import Clock, utc_now

LOGGER = logging.getLogger(__name__)


class HealthMonitor:
    """Process-level health numbers for the periodic server_health snapshot."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self.clock = clock
        self.started_at = clock()
        self.error_count = 0
        self._process = psutil.Process()
        # Prime the counter; the first cpu_percent() call always returns 0.0.
        self._process.cpu_percent(interval=None)

    def record_error(self) -> None:
        self.error_count += 1

    def uptime_seconds(self) -> int:
        return int((self.clock() - self.started_at).total_seconds())

    def memory_mb(self) -> int:
        return round(self._process.memory_info().rss / (1024 * 1024))

    def cpu_percent(self) -> float:
        return round(self._process.cpu_percent(interval=None), 1)

    def snapshot(
        self,
        guild_id: str,
        member_count: int,
        online_count: int,
        latency_seconds: float | None = None,
    ) -> HealthSnapshot:
        latency = None
        if latency_seconds is not None and math.isfinite(latency_seconds):
            latency = round(latency_seconds * 1000)
        return HealthSnapshot(
            guild_id=guild_id,
            member_count=member_count,
            online_count=online_count,
            bot_latency=latency,
            memory_usage=self.memory_mb(),
            cpu_usage=self.cpu_percent(),
            uptime=self.uptime_seconds(),
            error_count=self.error_count,
        )
