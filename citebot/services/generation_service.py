"""
citebot/services/generation_service.py
--------------------------------------
Streams a grounded, citation-only answer from the chat model.

Each increment must arrive within `timeout` seconds of the previous one;
otherwise the stream fails with GenerationError. Closing the returned
iterator early closes the upstream model stream.

Usage
-----
    from citebot.services.generation_service import AnswerGenerator

    gen = AnswerGenerator(ChatOpenAI(model="gpt-4o-mini", temperature=0.3, streaming=True))
    async for piece in gen.stream(question, chunks, history="..."):
        ...
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Sequence

from langchain_core.output_parsers import StrOutputParser

from citebot.errors import GenerationError
from citebot.models.domain.chunks import SourceChunk
from citebot.prompts.retrieval_prompts import ANSWER_PROMPT

logger = logging.getLogger(__name__)

CATEGORY_LABELS = {"coran": "CORAN", "hadith": "HADITH", "imam": "IMAM"}


def format_sources(chunks: Sequence[SourceChunk]) -> str:
    return "\n\n".join(
        f"[Source {i}] ({CATEGORY_LABELS.get(c.source, c.source.upper())}) {c.reference}\n{c.content}"
        for i, c in enumerate(chunks, 1)
    )


def format_history(history: str) -> str:
    if not history:
        return ""
    return f"## HISTORIQUE DE LA CONVERSATION\n{history}\n\n"


class AnswerGenerator:
    def __init__(self, llm: Any, timeout: float = 30.0):
        self.llm = llm
        self.timeout = timeout

    async def stream(
        self,
        question: str,
        chunks: Sequence[SourceChunk],
        history: str = "",
    ) -> AsyncIterator[str]:
        chain = ANSWER_PROMPT | self.llm | StrOutputParser()
        upstream = chain.astream({
            "sources": format_sources(chunks),
            "history_section": format_history(history),
            "question": question,
        })
        try:
            while True:
                try:
                    piece = await asyncio.wait_for(upstream.__anext__(), timeout=self.timeout)
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError as e:
                    raise GenerationError(f"No output from the model for {self.timeout:.0f}s") from e
                except Exception as e:
                    raise GenerationError(f"Generation failed: {e}") from e
                if piece:
                    yield piece
        finally:
            await upstream.aclose()
