import re
import unicodedata
from typing import List

# ---- config ----
MIN_KEYWORD_LENGTH = 3   # tokens of length <= 2 are dropped
# ---------------

STOP_WORDS = frozenset({
    "le", "la", "les", "un", "une", "des", "de", "du", "et", "ou", "que", "qui", "quoi",
    "est", "sont", "a", "ont", "dans", "sur", "pour", "par", "avec", "sans", "ce", "cette",
    "mon", "ma", "mes", "ton", "ta", "tes", "son", "sa", "ses", "notre", "votre", "leur",
    "dit", "dire", "fait", "faire", "peut", "doit", "faut", "comment", "pourquoi", "quand",
    "quel", "quelle", "quels", "quelles", "tout", "tous", "toute", "toutes", "selon",
    # domain words that match nearly every passage
    "islam", "coran", "hadith", "hadiths", "prophete", "allah", "dieu", "sources",
})

_PUNCT_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")


def strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize(text: str) -> str:
    """Lower-case and strip diacritics. Punctuation is kept."""
    return strip_diacritics((text or "").lower()).strip()


def tokenize(text: str) -> List[str]:
    """Normalize, replace punctuation with spaces and split on whitespace."""
    cleaned = _PUNCT_RE.sub(" ", normalize(text))
    return [tok for tok in _WS_RE.split(cleaned) if tok]


def extract_keywords(question: str) -> List[str]:
    """
    Search keywords for a question.

    Drops short tokens and stop words, de-duplicates preserving first-seen order.
    """
    seen = set()
    keywords: List[str] = []
    for tok in tokenize(question):
        if len(tok) < MIN_KEYWORD_LENGTH or tok in STOP_WORDS or tok in seen:
            continue
        seen.add(tok)
        keywords.append(tok)
    return keywords


def truncate(text: str, limit: int, suffix: str = "...") -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + suffix
