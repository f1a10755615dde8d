"""
citebot/services/ranker.py
--------------------------
Narrow a capped candidate pool down to the passages used for the answer.

Two implementations of the Ranker capability:

  LLMRanker      — asks a chat model for the indices of the most relevant
                   passages and parses the "[n]" tokens out of its reply
  LexicalRanker  — keeps the first `limit` candidates (lexical order)

LLMRanker raises RankerError on any failure or timeout; the selection engine
catches it and falls back to LexicalRanker. Neither ranker has side effects,
so a rank call is safe to retry.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, List, Protocol, Sequence

from langchain_core.output_parsers import StrOutputParser

from citebot.errors import RankerError
from citebot.models.domain.chunks import SourceChunk
from citebot.prompts.retrieval_prompts import SELECTION_PROMPT

logger = logging.getLogger(__name__)

EXCERPT_CHARS = 250
_INDEX_RE = re.compile(r"\[(\d+)\]")


class Ranker(Protocol):
    async def rank(
        self,
        question: str,
        candidates: Sequence[SourceChunk],
        limit: int,
    ) -> List[SourceChunk]:
        ...


class LexicalRanker:
    """Deterministic fallback: the pool is already in lexical order."""

    async def rank(
        self,
        question: str,
        candidates: Sequence[SourceChunk],
        limit: int,
    ) -> List[SourceChunk]:
        return list(candidates[:limit])


def render_candidates(candidates: Sequence[SourceChunk], excerpt_chars: int = EXCERPT_CHARS) -> str:
    return "\n\n".join(
        f"[{i}] {c.reference}: {c.content[:excerpt_chars]}"
        for i, c in enumerate(candidates)
    )


def parse_indices(reply: str, pool_size: int) -> List[int]:
    """All "[n]" tokens in order, out-of-range and repeated indices dropped."""
    seen = set()
    indices: List[int] = []
    for m in _INDEX_RE.finditer(reply):
        idx = int(m.group(1))
        if 0 <= idx < pool_size and idx not in seen:
            seen.add(idx)
            indices.append(idx)
    return indices


class LLMRanker:
    """
    Chat-model selection over a numbered passage list.

    Usage
    -----
        ranker = LLMRanker(ChatOpenAI(model="gpt-4o-mini", temperature=0), timeout=15)
        chosen = await ranker.rank(question, pool, limit=5)
    """

    def __init__(self, llm: Any, timeout: float = 15.0, excerpt_chars: int = EXCERPT_CHARS):
        self.llm = llm
        self.timeout = timeout
        self.excerpt_chars = excerpt_chars

    async def rank(
        self,
        question: str,
        candidates: Sequence[SourceChunk],
        limit: int,
    ) -> List[SourceChunk]:
        if not candidates:
            return []

        chain = SELECTION_PROMPT | self.llm | StrOutputParser()
        try:
            reply = await asyncio.wait_for(
                chain.ainvoke({
                    "question": question,
                    "passages": render_candidates(candidates, self.excerpt_chars),
                    "limit": limit,
                }),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise RankerError(f"Re-rank timed out after {self.timeout:.0f}s") from e
        except Exception as e:
            raise RankerError(f"Re-rank failed: {e}") from e

        indices = parse_indices(reply, len(candidates))
        logger.debug("Re-rank picked %d/%d indices from reply %r", len(indices), len(candidates), reply[:120])
        return [candidates[i] for i in indices][:limit]
