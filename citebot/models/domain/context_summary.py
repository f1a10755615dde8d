"""Derived conversation context handed to retrieval and prompting."""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class ContextSummary(BaseModel):
    """
    Non-persisted view over the last K messages of a session.

    previous_sources lists references already cited in the window, used by the
    selection engine to push repeat citations to the back of the pool.
    """

    topics: List[str] = Field(default_factory=list)
    formatted_history: str = ""
    turn_count: int = 0
    previous_sources: List[str] = Field(default_factory=list)
