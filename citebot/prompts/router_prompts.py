"""
citebot/prompts/router_prompts.py
---------------------------------
Prompt for the optional LLM refinement of low-confidence intent classifications.
"""
from __future__ import annotations

from langchain_core.prompts import ChatPromptTemplate

# ── Intent refinement ───────────────────────────────────────────────────────

INTENT_REFINEMENT_PROMPT = ChatPromptTemplate.from_messages([
    (
        "system",
        "You classify messages sent to a chatbot that quotes authentic Islamic "
        "sources (Quran, hadiths, works of the classical imams). Messages are "
        "usually in French.\n\n"
        "Categories:\n"
        "- greeting: a salutation\n"
        "- search_verse: looking for a Quran verse\n"
        "- search_hadith: looking for a hadith\n"
        "- question_religious: general religious question\n"
        "- explanation_request: asks for an explanation or interpretation\n"
        "- escalate: wants to talk to a human\n"
        "- out_of_scope: not a religious question\n"
        "- unknown: cannot determine\n\n"
        "Respond with ONLY valid JSON in this exact format:\n"
        '{{"intent": "<category>"}}',
    ),
    ("human", "{input}"),
])
