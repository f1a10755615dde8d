"""
citebot/workflows/chat_workflow.py
----------------------------------
One chat turn, end to end: quota → session → classify → retrieve → answer.

The pre-generation part is a LangGraph:

    classify ──(fixed reply)──────────────────────────→ END
        │
        └─→ load_corpus ──(empty corpus)─→ no_documents → END
                 │
                 └─→ retrieve ──(one broad keyword)─→ clarify → END
                          └────────────────────────────────────→ END (generate)

Generation and persistence happen outside the graph, because the answer is
streamed to the caller as it is produced.

Usage
-----
    from citebot.workflows.chat_workflow import TurnPipeline

    pipeline = TurnPipeline(quota=..., sessions=..., corpus=..., engine=..., generator=...)
    async for event in pipeline.handle_turn("Que dit le Coran sur la patience ?", identifier="1.2.3.4"):
        print(event.type, event.content)
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, TypedDict

from langgraph.graph import END, StateGraph

from citebot.agents.router_agent import IntentClassifier, predefined_response
from citebot.config import PipelineConfig
from citebot.errors import InvalidTurnInput, SessionUnavailableError
from citebot.models.api.chat import (
    ChatResult,
    ResponseMetadata,
    StreamEvent,
    citation_payload,
    to_source_reference,
)
from citebot.models.domain.chunks import SourceChunk
from citebot.models.domain.context_summary import ContextSummary
from citebot.models.domain.intent import IntentClassification
from citebot.models.domain.session import Session
from citebot.prompts.retrieval_prompts import BROAD_QUESTION_REPLY, NO_DOCUMENTS_REPLY
from citebot.services.confidence_service import (
    calculate_confidence,
    evaluate_escalation,
    reconcile_sources,
)
from citebot.services.generation_service import AnswerGenerator
from citebot.services.metrics_buffer import LoggingMetricSink, MetricsBuffer
from citebot.services.quota_service import QuotaService
from citebot.services.response_streamer import ResponseStreamer
from citebot.services.retrieval_service import SelectionEngine, SelectionResult
from citebot.services.session_service import SessionService
from citebot.storage.base import CorpusStore

logger = logging.getLogger(__name__)

MAX_MESSAGE_CHARS = 4000
HUMAN_HANDOFF = "human_handoff"
SERVER_ERROR = "Erreur serveur"


# ── State ────────────────────────────────────────────────────────────────────

class TurnState(TypedDict, total=False):
    message: str
    previously_cited: List[str]
    classification: IntentClassification
    corpus: List[SourceChunk]
    selection: SelectionResult
    reply: str              # fixed reply; no generation
    grounded: bool


def validate_turn(message: Any, session_id: Optional[str], identifier: Optional[str]) -> str:
    """Reject bad input before any I/O. Returns the stripped message."""
    if not isinstance(message, str) or not message.strip():
        raise InvalidTurnInput("Message requis")
    if len(message) > MAX_MESSAGE_CHARS:
        raise InvalidTurnInput(f"Message trop long (maximum {MAX_MESSAGE_CHARS} caractères)")
    if session_id is not None:
        try:
            uuid.UUID(str(session_id))
        except ValueError as e:
            raise InvalidTurnInput(f"Identifiant de session invalide: {session_id!r}") from e
    if not (identifier or session_id):
        raise InvalidTurnInput("Identifiant requis")
    return message.strip()


async def _single(text: str) -> AsyncIterator[str]:
    yield text


class TurnPipeline:
    def __init__(
        self,
        quota: QuotaService,
        sessions: SessionService,
        corpus: CorpusStore,
        engine: SelectionEngine,
        generator: AnswerGenerator,
        classifier: Optional[IntentClassifier] = None,
        metrics: Optional[MetricsBuffer] = None,
        config: Optional[PipelineConfig] = None,
    ):
        self.quota = quota
        self.sessions = sessions
        self.corpus = corpus
        self.engine = engine
        self.generator = generator
        self.classifier = classifier if classifier is not None else IntentClassifier()
        self.metrics = metrics if metrics is not None else MetricsBuffer(LoggingMetricSink())
        self.config = config if config is not None else PipelineConfig()
        self.graph = self._build_graph()

    # ── Graph nodes ───────────────────────────────────────────────────────────

    async def classify(self, state: TurnState) -> TurnState:
        classification = await self.classifier.aclassify(state["message"])
        reply = predefined_response(classification)
        if reply is not None:
            return {**state, "classification": classification, "reply": reply, "grounded": False}
        return {**state, "classification": classification}

    async def load_corpus(self, state: TurnState) -> TurnState:
        corpus = await asyncio.to_thread(self.corpus.list_chunks)
        return {**state, "corpus": corpus}

    def no_documents(self, state: TurnState) -> TurnState:
        logger.warning("Corpus is empty; answering without generation")
        return {**state, "reply": NO_DOCUMENTS_REPLY, "grounded": True}

    async def retrieve(self, state: TurnState) -> TurnState:
        selection = await self.engine.select(
            state["message"],
            state["corpus"],
            limit=self.config.answer_sources,
            previously_cited=state.get("previously_cited", []),
        )
        return {**state, "selection": selection, "grounded": True}

    def clarify(self, state: TurnState) -> TurnState:
        selection = state["selection"]
        reply = BROAD_QUESTION_REPLY.format(
            count=selection.keyword_match_count,
            keyword=selection.extracted_keywords[0],
        )
        return {**state, "reply": reply, "grounded": False}

    # ── Routing ───────────────────────────────────────────────────────────────

    @staticmethod
    def route_after_classify(state: TurnState) -> str:
        return END if state.get("reply") else "load_corpus"

    @staticmethod
    def route_after_corpus(state: TurnState) -> str:
        return "retrieve" if state.get("corpus") else "no_documents"

    def route_after_retrieve(self, state: TurnState) -> str:
        if state["selection"].needs_clarification(self.config.clarify_keyword_matches):
            return "clarify"
        return END

    def _build_graph(self):
        graph = StateGraph(TurnState)

        graph.add_node("classify", self.classify)
        graph.add_node("load_corpus", self.load_corpus)
        graph.add_node("no_documents", self.no_documents)
        graph.add_node("retrieve", self.retrieve)
        graph.add_node("clarify", self.clarify)

        graph.set_entry_point("classify")

        graph.add_conditional_edges("classify", self.route_after_classify)
        graph.add_conditional_edges("load_corpus", self.route_after_corpus)
        graph.add_conditional_edges("retrieve", self.route_after_retrieve)
        graph.add_edge("no_documents", END)
        graph.add_edge("clarify", END)

        return graph.compile()

    # ── Turn ──────────────────────────────────────────────────────────────────

    def handle_turn(
        self,
        message: str,
        session_id: Optional[str] = None,
        identifier: Optional[str] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Validate synchronously (InvalidTurnInput), then return the event stream.

        The stream ends with exactly one terminal event: `completed`,
        `quota_exceeded` or `error`.
        """
        text = validate_turn(message, session_id, identifier)
        return self._run(text, session_id, identifier or session_id)

    async def _run(
        self,
        message: str,
        session_id: Optional[str],
        identifier: str,
    ) -> AsyncIterator[StreamEvent]:
        started = time.monotonic()

        quota = await asyncio.to_thread(self.quota.check_and_consume, identifier)
        if not quota.allowed:
            yield StreamEvent.quota_exceeded(quota)
            return

        try:
            session = await asyncio.to_thread(self.sessions.get_or_create, session_id)
        except SessionUnavailableError as e:
            logger.warning("Turn for %s aborted at session load: %s", identifier, e)
            yield StreamEvent.failed(str(e), retryable=True)
            return

        summary = SessionService.get_context_summary(session)
        previously_cited = list(dict.fromkeys(summary.previous_sources + session.last_sources))

        try:
            state = await self.graph.ainvoke({"message": message, "previously_cited": previously_cited})
        except Exception:
            logger.exception(
                "Turn for %s failed before generation (session=%s, %dms)",
                identifier, session.id, int((time.monotonic() - started) * 1000),
            )
            yield StreamEvent.failed(SERVER_ERROR, retryable=True)
            return

        classification: IntentClassification = state["classification"]
        try:
            await asyncio.to_thread(
                self.sessions.add_user_turn,
                session,
                message,
                classification.intent.value,
                classification.entities.topics,
            )
        except SessionUnavailableError as e:
            logger.warning("Turn for %s aborted at user turn write: %s", identifier, e)
            yield StreamEvent.failed(str(e), retryable=True)
            return

        selection: Optional[SelectionResult] = state.get("selection")
        if state.get("reply"):
            chunks: Sequence[SourceChunk] = []
            increments = _single(state["reply"])
        else:
            chunks = selection.chunks
            increments = self.generator.stream(message, chunks, summary.formatted_history)

        async def finalize(text: str) -> ChatResult:
            return await self._finalize(
                text=text,
                session=session,
                summary=summary,
                classification=classification,
                chunks=chunks,
                selection=selection,
                grounded=state.get("grounded", False),
                total_searched=len(state.get("corpus") or []),
                started=started,
            )

        streamer = ResponseStreamer(label=f"session {session.id}")
        async with aclosing(streamer.stream(increments, finalize)) as events:
            async for event in events:
                yield event

    async def _finalize(
        self,
        *,
        text: str,
        session: Session,
        summary: ContextSummary,
        classification: IntentClassification,
        chunks: Sequence[SourceChunk],
        selection: Optional[SelectionResult],
        grounded: bool,
        total_searched: int,
        started: float,
    ) -> ChatResult:
        citations = [to_source_reference(c, rank) for rank, c in enumerate(chunks)]
        sources_used, citations = reconcile_sources(text, citations)

        if grounded:
            confidence = calculate_confidence(len(chunks), sources_used, classification.confidence)
        else:
            confidence = classification.confidence

        await asyncio.to_thread(
            self.sessions.add_assistant_turn,
            session,
            text,
            classification.intent.value,
            confidence,
            citation_payload(citations),
        )

        decision = evaluate_escalation(confidence, session.turn_count, classification, grounded)
        actions = [HUMAN_HANDOFF] if decision.escalate else []
        if decision.escalate:
            logger.info(
                "Suggesting hand-off for session %s (reason=%s, confidence=%.2f, turns=%d)",
                session.id, decision.reason, confidence, session.turn_count,
            )

        elapsed_ms = int((time.monotonic() - started) * 1000)
        await asyncio.to_thread(
            self.metrics.record_chat,
            intent=classification.intent.value,
            confidence=confidence,
            sources_found=len(chunks),
            sources_used=sources_used,
            response_time_ms=elapsed_ms,
            turn_count=session.turn_count,
        )

        return ChatResult(
            text=text,
            citations=citations,
            intent=classification.intent.value,
            confidence=confidence,
            session_id=session.id,
            escalate=decision.escalate,
            actions=actions,
            metadata=ResponseMetadata(
                processing_time_ms=elapsed_ms,
                sources_searched=total_searched,
                sources_selected=len(chunks),
                sources_used=sources_used,
                keywords=selection.extracted_keywords if selection else [],
                reranked=selection.reranked if selection else False,
                model=self.config.llm_model if chunks else None,
            ),
        )

    # ── Dashboard read ────────────────────────────────────────────────────────

    def get_session_snapshot(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self.sessions.get_snapshot(session_id)
