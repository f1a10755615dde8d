"""
citebot/services/metrics_buffer.py
----------------------------------
Bounded in-process queue of metric entries, flushed in batches to a sink.

A flush happens when the queue reaches `max_size` entries or when the oldest
pending entry is older than `max_age_seconds`. Both triggers are checked on
every `record()`; `periodic_flush()` applies the age trigger on a timer
while traffic is idle and flushes what is left on exit. A failed flush puts the batch back at the front
of the queue; past `capacity` the oldest entries are dropped.

Each pipeline owns its buffer, so tests build one around a list sink.

Usage
-----
    from citebot.services.metrics_buffer import MetricsBuffer, SupabaseMetricSink

    buffer = MetricsBuffer(SupabaseMetricSink())
    buffer.record_chat(intent="search_verse", confidence=0.82, ...)
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Callable, Deque, Dict, List, Optional, Sequence

from citebot.models.domain._time import utcnow

logger = logging.getLogger(__name__)

MetricSink = Callable[[Sequence["MetricEntry"]], None]


@dataclass
class MetricEntry:
    name: str
    value: float
    tags: Dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)


def confidence_bucket(confidence: float) -> str:
    if confidence >= 0.7:
        return "high"
    if confidence >= 0.4:
        return "medium"
    return "low"


class MetricsBuffer:
    def __init__(
        self,
        sink: MetricSink,
        max_size: int = 50,
        max_age_seconds: float = 30.0,
        capacity: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1 or capacity < max_size:
            raise ValueError("capacity must be >= max_size >= 1")
        self.sink = sink
        self.max_size = max_size
        self.max_age_seconds = max_age_seconds
        self.capacity = capacity
        self.clock = clock
        self._queue: Deque[MetricEntry] = deque(maxlen=capacity)
        self._oldest_at: Optional[float] = None
        self._lock = threading.Lock()
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._queue)

    # ── Recording ─────────────────────────────────────────────────────────────

    def record(self, entry: MetricEntry) -> None:
        with self._lock:
            self._push(entry)
        self.flush_if_due()

    def record_chat(
        self,
        *,
        intent: str,
        confidence: float,
        sources_found: int,
        sources_used: int,
        response_time_ms: int,
        turn_count: int,
    ) -> None:
        self.record(MetricEntry(
            name="chat_interaction",
            value=float(response_time_ms),
            tags={
                "intent": intent,
                "confidence_bucket": confidence_bucket(confidence),
                "sources_found": str(sources_found),
                "sources_used": str(sources_used),
                "turn": str(turn_count),
            },
        ))

    def _push(self, entry: MetricEntry) -> None:
        if len(self._queue) == self.capacity:
            self.dropped += 1
        self._queue.append(entry)
        if self._oldest_at is None:
            self._oldest_at = self.clock()

    # ── Flushing ──────────────────────────────────────────────────────────────

    def is_due(self) -> bool:
        if not self._queue:
            return False
        if len(self._queue) >= self.max_size:
            return True
        return self._oldest_at is not None and self.clock() - self._oldest_at >= self.max_age_seconds

    def flush_if_due(self) -> int:
        if not self.is_due():
            return 0
        return self.flush()

    def flush(self) -> int:
        """Send every pending entry to the sink. Returns the number sent."""
        with self._lock:
            batch: List[MetricEntry] = list(self._queue)
            self._queue.clear()
            self._oldest_at = None
        if not batch:
            return 0

        try:
            self.sink(batch)
        except Exception:
            logger.exception("Metrics flush failed, re-queueing %d entries", len(batch))
            with self._lock:
                pending = list(self._queue)
                self._queue.clear()
                overflow = max(0, len(batch) + len(pending) - self.capacity)
                self.dropped += overflow
                for entry in (batch + pending)[overflow:]:
                    self._queue.append(entry)
                self._oldest_at = self.clock()
            return 0

        logger.debug("Flushed %d metric entries", len(batch))
        return len(batch)


async def _flush_every(buffer: MetricsBuffer, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        await asyncio.to_thread(buffer.flush_if_due)


@asynccontextmanager
async def periodic_flush(buffer: MetricsBuffer, interval: Optional[float] = None) -> AsyncIterator[MetricsBuffer]:
    """
    Check the age trigger every `interval` seconds (default: the buffer's
    max age) while the block runs, then flush everything pending.
    """
    task = asyncio.create_task(_flush_every(buffer, interval or buffer.max_age_seconds))
    try:
        yield buffer
    finally:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        sent = await asyncio.to_thread(buffer.flush)
        if sent:
            logger.info("Flushed %d pending metric entries on shutdown", sent)


class SupabaseMetricSink:
    """Writes batches to the `system_metrics` table."""

    def __init__(self, client=None, table: str = "system_metrics"):
        self._client = client
        self.table = table

    @property
    def client(self):
        if self._client is None:
            from citebot.supabase.supabase_client import get_supabase
            self._client = get_supabase()
        return self._client

    def __call__(self, batch: Sequence[MetricEntry]) -> None:
        self.client.table(self.table).insert([
            {
                "name": m.name,
                "value": m.value,
                "tags": m.tags,
                "created_at": m.timestamp.isoformat(),
            }
            for m in batch
        ]).execute()


class LoggingMetricSink:
    """Sink for local runs without a database."""

    def __call__(self, batch: Sequence[MetricEntry]) -> None:
        for m in batch:
            logger.info("metric %s=%s %s", m.name, m.value, m.tags)
