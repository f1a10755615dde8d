from datetime import datetime, timezone
from typing import List

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from citebot.config import PipelineConfig
from citebot.models.domain.chunks import SourceChunk
from citebot.services.generation_service import AnswerGenerator
from citebot.services.metrics_buffer import MetricsBuffer
from citebot.services.quota_service import QuotaService
from citebot.services.retrieval_service import SelectionEngine
from citebot.services.session_service import SessionService
from citebot.storage.in_memory import (
    InMemoryCorpusStore,
    InMemoryEscalationStore,
    InMemoryQuotaStore,
    InMemorySessionStore,
)
from citebot.workflows.chat_workflow import TurnPipeline

ANSWER = "**[Sourate Al-Baqara, verset 153]**\n« Cherchez secours dans l'endurance et la prière. »"


def make_chunk(i: int, content: str, source: str = "coran", reference: str = "") -> SourceChunk:
    return SourceChunk(
        id=f"c{i}",
        content=content,
        source=source,
        reference=reference or f"Référence {i}",
    )


def sample_corpus() -> List[SourceChunk]:
    return [
        make_chunk(1, "Cherchez secours dans la patience et la prière.", "coran", "Sourate Al-Baqara, verset 153"),
        make_chunk(2, "La patience est une lumière.", "hadith", "Sahih Muslim 223"),
        make_chunk(3, "La gratitude préserve les bienfaits.", "imam", "Ihya Ulum al-Din, livre 32"),
        make_chunk(4, "Le jeûne est un bouclier.", "hadith", "Sahih al-Bukhari 1894"),
        make_chunk(5, "Dis : Il est Allah, Unique.", "coran", "Sourate Al-Ikhlas, verset 1"),
    ]


class ListSink:
    def __init__(self):
        self.batches = []

    def __call__(self, batch):
        self.batches.append(list(batch))


class TurnWriteFailsStore(InMemorySessionStore):
    def record_assistant_turn(self, message, last_sources, at):
        raise ConnectionError("database down")


class FixedClock:
    def __init__(self, moment: datetime):
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def quota_store():
    return InMemoryQuotaStore()


@pytest.fixture
def escalation_store():
    return InMemoryEscalationStore()


@pytest.fixture
def metrics_sink():
    return ListSink()


def build_pipeline(
    chunks,
    session_store,
    quota_store,
    llm=None,
    metrics_sink=None,
) -> TurnPipeline:
    return TurnPipeline(
        quota=QuotaService(quota_store),
        sessions=SessionService(session_store),
        corpus=InMemoryCorpusStore(chunks),
        engine=SelectionEngine(),
        generator=AnswerGenerator(llm or FakeListChatModel(responses=[ANSWER]), timeout=5.0),
        metrics=MetricsBuffer(metrics_sink or ListSink(), max_size=1),
        config=PipelineConfig(storage="memory"),
    )


@pytest.fixture
def pipeline(session_store, quota_store, metrics_sink):
    return build_pipeline(sample_corpus(), session_store, quota_store, metrics_sink=metrics_sink)


@pytest.fixture
def utc_noon():
    return FixedClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))
