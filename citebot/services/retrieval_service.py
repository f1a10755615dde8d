"""
citebot/services/retrieval_service.py
-------------------------------------
Turns a question into a short, ranked, source-diversified list of passages.

Selection strategy
------------------
  1. Extract keywords (normalized, stop words and short tokens dropped)
  2. Score every passage by keyword occurrence count over content + reference
  3. Diversify: bounded slice per category (coran 20, hadith 10, imam 15)
  4. Backfill with a random corpus sample when fewer than 20 candidates remain
  5. Push passages already cited in this conversation to the back
  6. De-duplicate by id and cap the pool at 45
  7. Re-rank the pool with the injected Ranker
  8. Fall back to the first `limit` pool entries if the ranker fails or
     returns nothing usable

The engine never raises for a ranker problem; callers always get a pool.

Import
------
    from citebot.services.retrieval_service import SelectionEngine

    engine = SelectionEngine(ranker=LLMRanker(llm))
    result = await engine.select(question, corpus, limit=5, previously_cited=[...])
"""
from __future__ import annotations

import logging
import random
import re
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from citebot.models.domain.chunks import SourceCategory, SourceChunk
from citebot.processing.text import extract_keywords, strip_diacritics
from citebot.services.ranker import LexicalRanker, Ranker

logger = logging.getLogger(__name__)


@dataclass
class SelectionConfig:
    category_caps: Dict[str, int] = field(default_factory=lambda: {
        SourceCategory.CORAN.value: 20,
        SourceCategory.HADITH.value: 10,
        SourceCategory.IMAM.value: 15,
    })
    backfill_floor: int = 20
    backfill_sample: int = 25
    pool_cap: int = 45
    clarify_keyword_matches: int = 10


@dataclass
class SelectionResult:
    chunks: List[SourceChunk]
    search_time_ms: int
    total_searched: int
    keyword_match_count: int
    extracted_keywords: List[str]
    reranked: bool = False

    def needs_clarification(self, threshold: int = 10) -> bool:
        """One broad keyword that matches too much of the corpus."""
        return len(self.extracted_keywords) == 1 and self.keyword_match_count > threshold


def score_by_keywords(corpus: Sequence[SourceChunk], keywords: Sequence[str]) -> List[SourceChunk]:
    """Occurrence-count scoring; zero-score passages dropped, best first."""
    if not keywords:
        return []

    patterns = [re.compile(re.escape(k)) for k in keywords]
    scored: List[SourceChunk] = []
    for chunk in corpus:
        haystack = strip_diacritics(f"{chunk.content} {chunk.reference}".lower())
        score = sum(len(p.findall(haystack)) for p in patterns)
        if score > 0:
            scored.append(chunk.model_copy(update={"score": float(score)}))

    # sorted() is stable, so equal scores keep corpus order
    return sorted(scored, key=lambda c: c.score, reverse=True)


class SelectionEngine:
    def __init__(
        self,
        ranker: Optional[Ranker] = None,
        config: Optional[SelectionConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.ranker = ranker if ranker is not None else LexicalRanker()
        self.fallback = LexicalRanker()
        self.config = config if config is not None else SelectionConfig()
        self.rng = rng or random.Random()

    # ── Candidate pool ────────────────────────────────────────────────────────

    def _diversify(self, scored: Sequence[SourceChunk]) -> List[SourceChunk]:
        pool: List[SourceChunk] = []
        for category, cap in self.config.category_caps.items():
            pool.extend([c for c in scored if c.source == category][:cap])
        return pool

    def _backfill(self, pool: List[SourceChunk], corpus: Sequence[SourceChunk]) -> List[SourceChunk]:
        if len(pool) >= self.config.backfill_floor or not corpus:
            return pool
        sample = self.rng.sample(list(corpus), min(self.config.backfill_sample, len(corpus)))
        return pool + sample

    @staticmethod
    def _deprioritize(pool: List[SourceChunk], previously_cited: Sequence[str]) -> List[SourceChunk]:
        if not previously_cited:
            return pool
        cited = set(previously_cited)
        return sorted(pool, key=lambda c: c.reference in cited)

    def _dedupe_and_cap(self, pool: Sequence[SourceChunk]) -> List[SourceChunk]:
        seen = set()
        unique: List[SourceChunk] = []
        for chunk in pool:
            if chunk.id in seen:
                continue
            seen.add(chunk.id)
            unique.append(chunk)
        return unique[: self.config.pool_cap]

    def build_pool(
        self,
        question: str,
        corpus: Sequence[SourceChunk],
        previously_cited: Sequence[str] = (),
    ) -> tuple[List[SourceChunk], List[str], int]:
        """Stages 1–6. Returns (pool, keywords, raw keyword match count)."""
        keywords = extract_keywords(question)
        scored = score_by_keywords(corpus, keywords)
        pool = self._diversify(scored)
        pool = self._backfill(pool, corpus)
        pool = self._deprioritize(pool, previously_cited)
        return self._dedupe_and_cap(pool), keywords, len(scored)

    # ── Selection ─────────────────────────────────────────────────────────────

    async def select(
        self,
        question: str,
        corpus: Sequence[SourceChunk],
        limit: int = 5,
        previously_cited: Sequence[str] = (),
    ) -> SelectionResult:
        started = time.monotonic()
        pool, keywords, match_count = self.build_pool(question, corpus, previously_cited)

        chosen: List[SourceChunk] = []
        reranked = False
        if len(pool) > limit:
            try:
                chosen = await self.ranker.rank(question, pool, limit)
                reranked = bool(chosen)
            except Exception as e:
                logger.warning(
                    "Re-rank failed after %dms, using lexical order (pool=%d): %s",
                    int((time.monotonic() - started) * 1000), len(pool), e,
                )
        if not chosen:
            chosen = await self.fallback.rank(question, pool, limit)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Selected %d/%d passages (keywords=%s, matches=%d, corpus=%d) in %dms",
            len(chosen), len(pool), keywords, match_count, len(corpus), elapsed_ms,
        )
        return SelectionResult(
            chunks=chosen[:limit],
            search_time_ms=elapsed_ms,
            total_searched=len(corpus),
            keyword_match_count=match_count,
            extracted_keywords=keywords,
            reranked=reranked,
        )
