"""
citebot/services/response_streamer.py
-------------------------------------
Forwards answer increments to the caller and finalizes the turn.

Event order
-----------
  delta*  completed      — stream finished, `finalize(text)` persisted the turn
  delta*  error          — upstream failed; nothing is persisted

If the consumer stops early (client disconnect, task cancelled) the partial
answer is discarded: `finalize` is never called and the upstream iterator is
closed.

Usage
-----
    from citebot.services.response_streamer import ResponseStreamer

    async for event in ResponseStreamer().stream(generator.stream(...), finalize):
        yield event.to_sse()
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator, Awaitable, Callable, List

from citebot.errors import SessionUnavailableError
from citebot.models.api.chat import ChatResult, StreamEvent

logger = logging.getLogger(__name__)

GENERATION_FAILED = "Erreur de génération"
SESSION_UNAVAILABLE = "Session indisponible, veuillez réessayer"

Finalizer = Callable[[str], Awaitable[ChatResult]]


async def _close(increments: AsyncIterator[str]) -> None:
    aclose = getattr(increments, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception:
        logger.exception("Closing the upstream stream failed")


class ResponseStreamer:
    def __init__(self, label: str = ""):
        self.label = label

    async def stream(
        self,
        increments: AsyncIterator[str],
        finalize: Finalizer,
    ) -> AsyncIterator[StreamEvent]:
        started = time.monotonic()
        parts: List[str] = []
        finished = False
        try:
            try:
                async for piece in increments:
                    parts.append(piece)
                    yield StreamEvent.delta(piece)
            except (GeneratorExit, asyncio.CancelledError):
                raise
            except Exception as e:
                logger.warning(
                    "Stream failed for %s after %dms and %d increments: %s",
                    self.label, int((time.monotonic() - started) * 1000), len(parts), e,
                )
                yield StreamEvent.failed(GENERATION_FAILED, retryable=True)
                finished = True
                return

            try:
                result = await finalize("".join(parts))
            except SessionUnavailableError as e:
                logger.warning("Could not persist turn for %s: %s", self.label, e)
                yield StreamEvent.failed(SESSION_UNAVAILABLE, retryable=True)
                finished = True
                return

            finished = True
            yield StreamEvent.completed(result)
        finally:
            if not finished:
                logger.info(
                    "Stream for %s stopped by the consumer; discarded %d partial chars",
                    self.label, sum(len(p) for p in parts),
                )
            await _close(increments)
