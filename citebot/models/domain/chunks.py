from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class SourceCategory(str, Enum):
    CORAN = "coran"
    HADITH = "hadith"
    IMAM = "imam"


class SourceChunk(BaseModel):
    # Read-only passage owned by the corpus store.
    id: str
    content: str
    source: str          # SourceCategory value
    reference: str       # e.g. "Sourate Al-Baqara, verset 255"
    score: Optional[float] = None
