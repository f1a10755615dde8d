"""
citebot/services/confidence_service.py
--------------------------------------
Answer confidence and the escalation decision for a finished turn.

  confidence = 0.3 + 0.5 * min(relevant / found, 1) + 0.2 * intent_confidence
               (0.1 when nothing was found)

The final answer text decides whether sources were used: an answer that says
the sources do not cover the topic carries no citations, whatever was
retrieved.

Usage
-----
    from citebot.services.confidence_service import calculate_confidence, evaluate_escalation

    confidence = calculate_confidence(found, used, classification.confidence)
    decision = evaluate_escalation(confidence, turn_count, classification, grounded=True)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, TypeVar

from citebot.agents.router_agent import should_escalate
from citebot.models.domain.intent import IntentClassification
from citebot.processing.text import normalize
from citebot.prompts.retrieval_prompts import NO_SOURCE_ANSWER

logger = logging.getLogger(__name__)

CONFIDENCE_FLOOR = 0.1
BASE_WEIGHT = 0.3
SOURCE_WEIGHT = 0.5
INTENT_WEIGHT = 0.2

CONFIDENCE_THRESHOLD = 0.4
MAX_TURNS_BEFORE_ESCALATE = 10

# Matched against the normalized answer text (lower-case, accent-free).
NO_SOURCE_PHRASES = (
    normalize(NO_SOURCE_ANSWER),
    "ne contiennent pas de passage",
    "aucune source ne",
    "je n'ai pas trouve de passage",
)

T = TypeVar("T")


def calculate_confidence(
    sources_found: int,
    sources_relevant: int,
    intent_confidence: float,
) -> float:
    if sources_found == 0:
        return CONFIDENCE_FLOOR
    ratio = min(sources_relevant / max(sources_found, 1), 1.0)
    return round(BASE_WEIGHT + ratio * SOURCE_WEIGHT + intent_confidence * INTENT_WEIGHT, 2)


def says_no_source(text: str) -> bool:
    normalized = normalize(text)
    return any(phrase in normalized for phrase in NO_SOURCE_PHRASES)


def reconcile_sources(text: str, sources: Sequence[T]) -> Tuple[int, List[T]]:
    """(sources_used, citations) as implied by the final answer text."""
    if says_no_source(text):
        return 0, []
    return len(sources), list(sources)


# ── Escalation ───────────────────────────────────────────────────────────────

@dataclass
class EscalationDecision:
    escalate: bool
    reason: Optional[str] = None


def evaluate_escalation(
    confidence: float,
    turn_count: int,
    classification: IntentClassification,
    grounded: bool = True,
) -> EscalationDecision:
    """
    Decide whether the turn should be handed to a human.

    `turn_count` is the count after this turn completed. The low-confidence
    trigger only applies to answers grounded in retrieved passages; fixed
    replies carry the classifier's confidence, which says nothing about
    answer quality.
    """
    if turn_count >= MAX_TURNS_BEFORE_ESCALATE:
        return EscalationDecision(True, "turn_limit")
    if should_escalate(classification):
        return EscalationDecision(True, "classifier")
    if grounded and confidence < CONFIDENCE_THRESHOLD:
        return EscalationDecision(True, "low_confidence")
    return EscalationDecision(False)
