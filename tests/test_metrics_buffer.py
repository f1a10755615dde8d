import asyncio

import pytest

from citebot.services.metrics_buffer import MetricEntry, MetricsBuffer, confidence_bucket, periodic_flush
from conftest import ListSink


class Ticker:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class FlakySink(ListSink):
    def __init__(self, failures):
        super().__init__()
        self.failures = failures

    def __call__(self, batch):
        if self.failures:
            self.failures -= 1
            raise ConnectionError("sink down")
        super().__call__(batch)


def _entry(i):
    return MetricEntry(name="chat_interaction", value=float(i))


def test_flush_on_size():
    sink = ListSink()
    buffer = MetricsBuffer(sink, max_size=3, max_age_seconds=60, clock=Ticker())

    buffer.record(_entry(1))
    buffer.record(_entry(2))
    assert sink.batches == []

    buffer.record(_entry(3))
    assert [[m.value for m in b] for b in sink.batches] == [[1.0, 2.0, 3.0]]
    assert len(buffer) == 0


def test_flush_on_age():
    sink, clock = ListSink(), Ticker()
    buffer = MetricsBuffer(sink, max_size=50, max_age_seconds=30, clock=clock)

    buffer.record(_entry(1))
    clock.now = 29.0
    assert buffer.flush_if_due() == 0

    clock.now = 30.0
    assert buffer.flush_if_due() == 1
    assert len(sink.batches) == 1


def test_failed_flush_requeues():
    sink = FlakySink(failures=1)
    buffer = MetricsBuffer(sink, max_size=2, max_age_seconds=60, clock=Ticker())

    buffer.record(_entry(1))
    buffer.record(_entry(2))
    assert len(buffer) == 2
    assert sink.batches == []

    assert buffer.flush() == 2
    assert [m.value for m in sink.batches[0]] == [1.0, 2.0]


def test_capacity_drops_oldest():
    sink = FlakySink(failures=100)
    buffer = MetricsBuffer(sink, max_size=2, max_age_seconds=60, capacity=3, clock=Ticker())

    for i in range(5):
        buffer.record(_entry(i))

    assert len(buffer) == 3
    assert buffer.dropped == 2


def test_record_chat_tags():
    sink = ListSink()
    buffer = MetricsBuffer(sink, max_size=1)

    buffer.record_chat(
        intent="search_verse", confidence=0.55, sources_found=5,
        sources_used=0, response_time_ms=1200, turn_count=3,
    )

    entry = sink.batches[0][0]
    assert entry.value == 1200.0
    assert entry.tags["confidence_bucket"] == "medium"
    assert entry.tags["sources_used"] == "0"


def test_confidence_buckets():
    assert confidence_bucket(0.7) == "high"
    assert confidence_bucket(0.4) == "medium"
    assert confidence_bucket(0.39) == "low"


def test_invalid_sizes():
    with pytest.raises(ValueError):
        MetricsBuffer(ListSink(), max_size=10, capacity=5)


def test_idle_buffer_is_flushed_by_the_timer():
    sink = ListSink()
    clock = Ticker()
    buffer = MetricsBuffer(sink, max_size=50, max_age_seconds=30, clock=clock)
    buffer.record(_entry(1))

    async def idle():
        async with periodic_flush(buffer, interval=0.01):
            await asyncio.sleep(0.05)
            assert sink.batches == []
            clock.now = 3600.0
            await asyncio.sleep(0.1)
            assert [[m.value for m in b] for b in sink.batches] == [[1.0]]

    asyncio.run(idle())
    assert len(buffer) == 0


def test_pending_entries_are_flushed_on_exit():
    sink = ListSink()
    buffer = MetricsBuffer(sink, max_size=50, max_age_seconds=30, clock=Ticker())

    async def short_lived():
        async with periodic_flush(buffer, interval=10):
            buffer.record(_entry(7))

    asyncio.run(short_lived())

    assert [[m.value for m in b] for b in sink.batches] == [[7.0]]
