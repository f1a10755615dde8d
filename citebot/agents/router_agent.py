"""
citebot/agents/router_agent.py
------------------------------
Rule-based intent classifier with routing decisions.

Scoring
-------
  Every regex in INTENT_PATTERNS that matches the normalized message adds 1.0
  to its intent. Every token found in KEYWORD_WEIGHTS adds its weight to the
  keyword's intent. The strictly highest score wins; on a tie the intent
  declared first in INTENT_PATTERNS keeps the lead.

  confidence = min(max_score / 3, 1), rounded to two decimals

Routing
-------
  greeting                                    → greeting_response
  search_verse / search_hadith / question_*   → rag_search
  explanation_request                         → clarify_question
  escalate                                    → escalate_human
  out_of_scope                                → out_of_scope_response
  unknown                                     → clarify_question if confidence < 0.3,
                                                otherwise rag_search

Usage
-----
    from citebot.agents.router_agent import classify_intent, should_escalate

    result = classify_intent("Que dit le Coran sur la patience ?")
    result.intent, result.confidence, result.routing.flow
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from langchain_core.output_parsers import StrOutputParser

from citebot.agents.intent_tables import (
    CLARIFY_REPLY,
    DEFAULT_QUESTION_INTENT,
    DEFAULT_QUESTION_SCORE,
    ESCALATION_REPLY,
    EXPLANATION_REPLY,
    GREETING_REPLY,
    INTENT_PATTERNS,
    KEYWORD_WEIGHTS,
    MAX_TOPICS,
    OUT_OF_SCOPE_REPLY,
    QUESTION_SHAPE,
    SOURCE_MENTIONS,
    SUB_INTENT_PATTERNS,
    SUB_UNIT_REFERENCE,
    TOPIC_KEYWORDS,
    UNIT_REFERENCE,
)
from citebot.models.domain.intent import (
    ExtractedEntities,
    IntentClassification,
    IntentType,
    RoutingDecision,
    RoutingFlow,
)
from citebot.processing.text import normalize, tokenize
from citebot.prompts.router_prompts import INTENT_REFINEMENT_PROMPT

logger = logging.getLogger(__name__)

CONFIDENCE_DIVISOR = 3.0
LOW_CONFIDENCE = 0.3
LLM_REFINEMENT_BELOW = 0.5
LLM_CONFIDENCE = 0.7


# ── Classification ───────────────────────────────────────────────────────────

def classify_intent(message: str) -> IntentClassification:
    """Classify a user message. Pure and deterministic."""
    text = normalize(message)

    scores: Dict[IntentType, float] = {intent: 0.0 for intent in INTENT_PATTERNS}
    matched: List[str] = []

    for intent, patterns in INTENT_PATTERNS.items():
        for pattern in patterns:
            if pattern.search(text):
                scores[intent] += 1.0
                matched.append(pattern.pattern)

    for word in tokenize(text):
        hit = KEYWORD_WEIGHTS.get(word)
        if hit:
            intent, weight = hit
            scores[intent] += weight

    best = IntentType.UNKNOWN
    best_score = 0.0
    for intent, score in scores.items():
        if score > best_score:
            best, best_score = intent, score

    if best_score == 0 and QUESTION_SHAPE.search(text):
        best, best_score = DEFAULT_QUESTION_INTENT, DEFAULT_QUESTION_SCORE

    confidence = round(min(best_score / CONFIDENCE_DIVISOR, 1.0), 2)
    entities = extract_entities(text)

    return IntentClassification(
        intent=best,
        confidence=confidence,
        matched_patterns=matched,
        sub_intent=_sub_intent(best, text),
        entities=entities,
        routing=determine_routing(best, confidence, entities),
    )


def extract_entities(text: str) -> ExtractedEntities:
    """Topics, mentioned sources and explicit references. `text` must be normalized."""
    topics = [kw for kw in TOPIC_KEYWORDS if kw in text][:MAX_TOPICS]
    sources = [name for pattern, name in SOURCE_MENTIONS if pattern.search(text)]

    references: List[str] = []
    for pattern, template in (UNIT_REFERENCE, SUB_UNIT_REFERENCE):
        m = pattern.search(text)
        if m:
            references.append(template.format(m.group(1)))

    return ExtractedEntities(
        topics=topics,
        sources_mentioned=sources,
        specific_references=references,
    )


def _sub_intent(intent: IntentType, text: str) -> Optional[str]:
    for pattern, label in SUB_INTENT_PATTERNS.get(intent, []):
        if pattern.search(text):
            return label
    return None


# ── Routing ──────────────────────────────────────────────────────────────────

def determine_routing(
    intent: IntentType,
    confidence: float,
    entities: ExtractedEntities,
) -> RoutingDecision:
    if intent == IntentType.GREETING:
        return RoutingDecision(
            flow=RoutingFlow.GREETING_RESPONSE,
            priority="low",
            suggested_action="Reply with a greeting",
        )
    if intent in (IntentType.SEARCH_VERSE, IntentType.SEARCH_HADITH, IntentType.QUESTION_RELIGIOUS):
        return RoutingDecision(
            flow=RoutingFlow.RAG_SEARCH,
            priority="high" if entities.topics else "medium",
            suggested_action="Search the sources and cite",
        )
    if intent == IntentType.EXPLANATION_REQUEST:
        return RoutingDecision(
            flow=RoutingFlow.CLARIFY_QUESTION,
            priority="medium",
            suggested_action="Remind the user that no interpretation is given",
        )
    if intent == IntentType.ESCALATE:
        return RoutingDecision(
            flow=RoutingFlow.ESCALATE_HUMAN,
            priority="high",
            suggested_action="Offer contact with a specialist",
        )
    if intent == IntentType.OUT_OF_SCOPE:
        return RoutingDecision(
            flow=RoutingFlow.OUT_OF_SCOPE_RESPONSE,
            priority="low",
            suggested_action="Explain the scope of the assistant",
        )
    if confidence < LOW_CONFIDENCE:
        return RoutingDecision(
            flow=RoutingFlow.CLARIFY_QUESTION,
            priority="medium",
            suggested_action="Ask the user to rephrase",
        )
    return RoutingDecision(
        flow=RoutingFlow.RAG_SEARCH,
        priority="medium",
        suggested_action="Attempt a search in the sources",
    )


def should_escalate(classification: IntentClassification) -> bool:
    """Classifier-side escalation signal."""
    return (
        classification.intent == IntentType.ESCALATE
        or classification.intent == IntentType.EXPLANATION_REQUEST
        or classification.routing.flow == RoutingFlow.ESCALATE_HUMAN
        or (classification.intent == IntentType.UNKNOWN and classification.confidence < LOW_CONFIDENCE)
    )


def predefined_response(classification: IntentClassification) -> Optional[str]:
    """Fixed reply for flows that never reach retrieval, else None."""
    flow = classification.routing.flow
    if flow == RoutingFlow.GREETING_RESPONSE:
        return GREETING_REPLY
    if flow == RoutingFlow.OUT_OF_SCOPE_RESPONSE:
        return OUT_OF_SCOPE_REPLY
    if flow == RoutingFlow.ESCALATE_HUMAN:
        return ESCALATION_REPLY
    if flow == RoutingFlow.CLARIFY_QUESTION:
        if classification.intent == IntentType.EXPLANATION_REQUEST:
            return EXPLANATION_REPLY
        return CLARIFY_REPLY
    return None


# ── Optional LLM refinement ──────────────────────────────────────────────────

class IntentClassifier:
    """
    Rule-based classifier with an optional LLM second opinion.

    The LLM is only consulted when the rule-based confidence is below 0.5;
    any failure keeps the rule-based result.
    """

    def __init__(self, llm: Any = None, refine_with_llm: bool = False):
        self.llm = llm
        self.refine_with_llm = refine_with_llm and llm is not None

    def classify(self, message: str) -> IntentClassification:
        return classify_intent(message)

    async def aclassify(self, message: str) -> IntentClassification:
        result = classify_intent(message)
        if not self.refine_with_llm or result.confidence >= LLM_REFINEMENT_BELOW:
            return result

        chain = INTENT_REFINEMENT_PROMPT | self.llm | StrOutputParser()
        try:
            raw = await chain.ainvoke({"input": message})
            label = str(json.loads(raw.strip()).get("intent", "")).lower()
            intent = IntentType(label)
        except Exception as e:
            logger.warning("LLM intent refinement failed, keeping rule result: %s", e)
            return result

        logger.info(
            "LLM refined intent %r -> %r for input: %r",
            result.intent.value, intent.value, message[:80],
        )
        return result.model_copy(update={
            "intent": intent,
            "confidence": LLM_CONFIDENCE,
            "sub_intent": _sub_intent(intent, normalize(message)),
            "routing": determine_routing(intent, LLM_CONFIDENCE, result.entities),
        })
