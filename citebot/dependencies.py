"""
citebot/dependencies.py
-----------------------
Process-wide wiring of stores, services and the turn pipeline.

Routers receive these through FastAPI `Depends`, so tests can swap any of
them with `app.dependency_overrides`.

CITEBOT_STORAGE=memory runs everything against in-process stores (empty
corpus); the default is Supabase.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from langchain_openai import ChatOpenAI

from citebot.agents.router_agent import IntentClassifier
from citebot.config import PipelineConfig
from citebot.services.escalation_service import EscalationService
from citebot.services.generation_service import AnswerGenerator
from citebot.services.metrics_buffer import LoggingMetricSink, MetricsBuffer, SupabaseMetricSink
from citebot.services.quota_service import QuotaService
from citebot.services.ranker import LLMRanker
from citebot.services.retrieval_service import SelectionConfig, SelectionEngine
from citebot.services.session_service import SessionService
from citebot.storage.base import CorpusStore, EscalationStore, QuotaStore, SessionStore
from citebot.workflows.chat_workflow import TurnPipeline

logger = logging.getLogger(__name__)


@dataclass
class Stores:
    backend: str
    corpus: CorpusStore
    sessions: SessionStore
    quotas: QuotaStore
    escalations: EscalationStore


@lru_cache(maxsize=1)
def get_config() -> PipelineConfig:
    return PipelineConfig.from_env()


@lru_cache(maxsize=1)
def get_stores() -> Stores:
    cfg = get_config()
    if cfg.storage == "memory":
        from citebot.storage.in_memory import (
            InMemoryCorpusStore,
            InMemoryEscalationStore,
            InMemoryQuotaStore,
            InMemorySessionStore,
        )
        logger.info("Using in-memory stores")
        return Stores(
            backend="memory",
            corpus=InMemoryCorpusStore(),
            sessions=InMemorySessionStore(),
            quotas=InMemoryQuotaStore(),
            escalations=InMemoryEscalationStore(),
        )

    from citebot.storage.supabase_store import (
        SupabaseCorpusStore,
        SupabaseEscalationStore,
        SupabaseQuotaStore,
        SupabaseSessionStore,
    )
    from citebot.supabase.supabase_client import get_supabase

    sb = get_supabase()
    return Stores(
        backend="supabase",
        corpus=SupabaseCorpusStore(sb),
        sessions=SupabaseSessionStore(sb),
        quotas=SupabaseQuotaStore(sb),
        escalations=SupabaseEscalationStore(sb),
    )


@lru_cache(maxsize=1)
def get_metrics() -> MetricsBuffer:
    sink = LoggingMetricSink() if get_config().storage == "memory" else SupabaseMetricSink()
    return MetricsBuffer(sink)


def get_session_service() -> SessionService:
    return SessionService(get_stores().sessions)


def get_quota_service() -> QuotaService:
    return QuotaService(get_stores().quotas)


def get_escalation_service() -> EscalationService:
    return EscalationService(
        get_session_service(),
        get_stores().escalations,
        webhook_url=get_config().escalation_webhook_url,
    )


@lru_cache(maxsize=1)
def get_pipeline() -> TurnPipeline:
    cfg = get_config()
    stores = get_stores()
    api_key = os.environ.get("OPENAI_API_KEY")

    rerank_llm = ChatOpenAI(model=cfg.rerank_model, temperature=0, api_key=api_key)
    answer_llm = ChatOpenAI(
        model=cfg.llm_model,
        temperature=cfg.generation_temperature,
        max_tokens=cfg.generation_max_tokens,
        streaming=True,
        api_key=api_key,
    )
    return TurnPipeline(
        quota=QuotaService(stores.quotas),
        sessions=SessionService(stores.sessions),
        corpus=stores.corpus,
        engine=SelectionEngine(
            ranker=LLMRanker(rerank_llm, timeout=cfg.rerank_timeout),
            config=SelectionConfig(clarify_keyword_matches=cfg.clarify_keyword_matches),
        ),
        generator=AnswerGenerator(answer_llm, timeout=cfg.generation_timeout),
        classifier=IntentClassifier(rerank_llm, refine_with_llm=cfg.intent_llm_refinement),
        metrics=get_metrics(),
        config=cfg,
    )
