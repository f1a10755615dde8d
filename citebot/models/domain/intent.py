"""Domain models for rule-based intent classification."""
from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class IntentType(str, Enum):
    # Declaration order is the tie-break order used by the classifier.
    GREETING = "greeting"
    SEARCH_VERSE = "search_verse"
    SEARCH_HADITH = "search_hadith"
    QUESTION_RELIGIOUS = "question_religious"
    EXPLANATION_REQUEST = "explanation_request"
    ESCALATE = "escalate"
    OUT_OF_SCOPE = "out_of_scope"
    UNKNOWN = "unknown"


class RoutingFlow(str, Enum):
    RAG_SEARCH = "rag_search"
    GREETING_RESPONSE = "greeting_response"
    CLARIFY_QUESTION = "clarify_question"
    ESCALATE_HUMAN = "escalate_human"
    OUT_OF_SCOPE_RESPONSE = "out_of_scope_response"


class ExtractedEntities(BaseModel):
    topics: List[str] = Field(default_factory=list)
    sources_mentioned: List[str] = Field(default_factory=list)
    specific_references: List[str] = Field(default_factory=list)


class RoutingDecision(BaseModel):
    flow: RoutingFlow
    priority: str           # "low" | "medium" | "high"
    suggested_action: str


class IntentClassification(BaseModel):
    intent: IntentType
    confidence: float
    matched_patterns: List[str] = Field(default_factory=list)
    sub_intent: Optional[str] = None
    entities: ExtractedEntities = Field(default_factory=ExtractedEntities)
    routing: RoutingDecision
