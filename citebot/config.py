"""
citebot/config.py
-----------------
Tunable pipeline parameters, loaded from the environment.

Import
------
    from citebot.config import PipelineConfig

    cfg = PipelineConfig.from_env()
"""
from __future__ import annotations

import os
from dataclasses import dataclass

import dotenv

dotenv.load_dotenv()


@dataclass
class PipelineConfig:
    # LLM
    llm_model: str = "gpt-4o-mini"
    rerank_model: str = "gpt-4o-mini"
    generation_temperature: float = 0.3
    generation_max_tokens: int = 2000
    rerank_timeout: float = 15.0        # seconds, whole re-rank call
    generation_timeout: float = 30.0    # seconds, between two stream increments
    intent_llm_refinement: bool = False

    # Retrieval
    answer_sources: int = 5             # passages handed to generation
    clarify_keyword_matches: int = 10   # single keyword with more matches -> clarify

    # Storage backend: "supabase" | "memory"
    storage: str = "supabase"

    # Human hand-off notification
    escalation_webhook_url: str = ""

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        env = os.environ
        return cls(
            llm_model=env.get("CITEBOT_LLM_MODEL", cls.llm_model),
            rerank_model=env.get("CITEBOT_RERANK_MODEL", env.get("CITEBOT_LLM_MODEL", cls.rerank_model)),
            rerank_timeout=float(env.get("CITEBOT_RERANK_TIMEOUT", cls.rerank_timeout)),
            generation_timeout=float(env.get("CITEBOT_GENERATION_TIMEOUT", cls.generation_timeout)),
            intent_llm_refinement=env.get("CITEBOT_INTENT_LLM", "0") == "1",
            answer_sources=int(env.get("CITEBOT_ANSWER_SOURCES", cls.answer_sources)),
            storage=env.get("CITEBOT_STORAGE", cls.storage),
            escalation_webhook_url=env.get("ESCALATION_WEBHOOK_URL", ""),
        )
