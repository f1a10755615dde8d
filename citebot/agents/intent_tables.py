"""
citebot/agents/intent_tables.py
-------------------------------
Pattern and keyword tables for the rule-based intent classifier.

Everything here is matched against normalized text (lower-case, diacritics
stripped), so patterns and keywords are written without accents.

INTENT_PATTERNS declaration order is the classifier's tie-break order: when
two intents reach the same top score, the one declared first wins.
"""
from __future__ import annotations

import re
from typing import Dict, List, Pattern, Tuple

from citebot.models.domain.intent import IntentType


def _compile(*sources: str) -> List[Pattern[str]]:
    return [re.compile(s) for s in sources]


INTENT_PATTERNS: Dict[IntentType, List[Pattern[str]]] = {
    IntentType.GREETING: _compile(
        r"^(salam|salut|bonjour|bonsoir|hello|hi|assalam)",
        r"^(salem|paix|benediction)",
        r"^(wa alaykoum|wa alaykum)",
    ),
    IntentType.SEARCH_VERSE: _compile(
        r"verset|sourate|ayat|aya|coran",
        r"recite|reciter|lire",
        r"al-baqara|al-fatiha|al-ikhlas|yassin|yasin",
        r"quelle sourate|quel verset",
    ),
    IntentType.SEARCH_HADITH: _compile(
        r"hadith|hadiths|prophete.*dit|rapporte",
        r"bukhari|muslim|tirmidhi|nawawi",
        r"sunnah|sunna",
        r"tradition prophetique",
    ),
    IntentType.QUESTION_RELIGIOUS: _compile(
        r"que dit|qu'est-ce que|comment|pourquoi|quel|quelle",
        r"islam|musulman|religion|foi|croyance",
        r"priere|salat|zakat|ramadan|jeune|hajj|pelerinage",
        r"halal|haram|licite|illicite|interdit|permis",
        r"patience|sincerite|repentir|pardon|misericorde",
        r"bon comportement|parents|famille|voisin",
        r"coeur|ame|spiritualite|purification",
        r"ablution|wudu|tayammum|ghusl",
        r"mariage|divorce|heritage|testament",
    ),
    IntentType.EXPLANATION_REQUEST: _compile(
        r"explique|expliquer|signifie|signification|veut dire",
        r"interprete|interpretation|comprendre|sens",
        r"ton avis|penses-tu|crois-tu",
        r"que veux-tu dire|c'est quoi",
    ),
    IntentType.ESCALATE: _compile(
        r"parler.*humain|contact.*personne|imam|savant|mufti",
        r"besoin.*aide|urgence|urgent",
        r"pas.*compris|comprends.*pas",
        r"contacter|appeler|joindre",
        r"specialiste|expert|autorite",
    ),
    IntentType.OUT_OF_SCOPE: _compile(
        r"meteo|sport|politique|actualite|news",
        r"film|musique|jeu|divertissement",
        r"code|programmation|tech",
        r"recette|cuisine|voyage",
        r"argent|investissement|crypto",
    ),
    IntentType.UNKNOWN: [],
}

# single normalized word -> (intent, weight)
KEYWORD_WEIGHTS: Dict[str, Tuple[IntentType, float]] = {
    "patience": (IntentType.QUESTION_RELIGIOUS, 0.8),
    "sincerite": (IntentType.QUESTION_RELIGIOUS, 0.8),
    "priere": (IntentType.QUESTION_RELIGIOUS, 0.9),
    "salat": (IntentType.QUESTION_RELIGIOUS, 0.9),
    "jeune": (IntentType.QUESTION_RELIGIOUS, 0.9),
    "ramadan": (IntentType.QUESTION_RELIGIOUS, 0.9),
    "zakat": (IntentType.QUESTION_RELIGIOUS, 0.9),
    "parents": (IntentType.QUESTION_RELIGIOUS, 0.7),
    "colere": (IntentType.QUESTION_RELIGIOUS, 0.7),
    "repentir": (IntentType.QUESTION_RELIGIOUS, 0.8),
    "pardon": (IntentType.QUESTION_RELIGIOUS, 0.7),
    "halal": (IntentType.QUESTION_RELIGIOUS, 0.9),
    "haram": (IntentType.QUESTION_RELIGIOUS, 0.9),
    "mariage": (IntentType.QUESTION_RELIGIOUS, 0.7),
    "mort": (IntentType.QUESTION_RELIGIOUS, 0.7),
    "paradis": (IntentType.QUESTION_RELIGIOUS, 0.8),
    "enfer": (IntentType.QUESTION_RELIGIOUS, 0.8),
    "ame": (IntentType.QUESTION_RELIGIOUS, 0.7),
    "coeur": (IntentType.QUESTION_RELIGIOUS, 0.6),

    "verset": (IntentType.SEARCH_VERSE, 0.9),
    "sourate": (IntentType.SEARCH_VERSE, 0.9),
    "coran": (IntentType.SEARCH_VERSE, 0.7),
    "ayat": (IntentType.SEARCH_VERSE, 0.9),

    "hadith": (IntentType.SEARCH_HADITH, 0.9),
    "hadiths": (IntentType.SEARCH_HADITH, 0.9),
    "prophete": (IntentType.SEARCH_HADITH, 0.6),
    "sunnah": (IntentType.SEARCH_HADITH, 0.8),

    "humain": (IntentType.ESCALATE, 0.8),
    "imam": (IntentType.ESCALATE, 0.7),
    "mufti": (IntentType.ESCALATE, 0.8),
    "savant": (IntentType.ESCALATE, 0.7),
    "urgence": (IntentType.ESCALATE, 0.9),
    "urgent": (IntentType.ESCALATE, 0.9),
}

# no pattern matched but the text looks like a question
QUESTION_SHAPE: Pattern[str] = re.compile(r"\?|\bque |qu'|comment|pourquoi")
DEFAULT_QUESTION_INTENT = IntentType.QUESTION_RELIGIOUS
DEFAULT_QUESTION_SCORE = 0.5

# Topic vocabulary for entity extraction and session topics (substring match).
TOPIC_KEYWORDS: List[str] = [
    "patience", "sincerite", "priere", "salat", "jeune", "ramadan",
    "zakat", "hajj", "parents", "famille", "colere", "repentir",
    "pardon", "misericorde", "coeur", "ame", "foi", "iman",
    "halal", "haram", "mariage", "mort", "paradis", "enfer",
    "ablution", "purification", "voisin", "charite",
]
MAX_TOPICS = 5

# (pattern, canonical source name)
SOURCE_MENTIONS: List[Tuple[Pattern[str], str]] = [
    (re.compile(r"coran|quran"), "coran"),
    (re.compile(r"hadith|sunnah"), "hadith"),
    (re.compile(r"nawawi|riyad"), "Riyad as-Salihin"),
    (re.compile(r"ghazali|ihya"), "Ihya Ulum al-Din"),
    (re.compile(r"bukhari|adab"), "Al-Adab al-Mufrad"),
    (re.compile(r"qayrawani|risala"), "La Risala"),
]

# "unit N" and "sub-unit N" references
UNIT_REFERENCE: Tuple[Pattern[str], str] = (re.compile(r"sourate\s+([\w-]+)"), "Sourate {}")
SUB_UNIT_REFERENCE: Tuple[Pattern[str], str] = (re.compile(r"verset\s+(\d+)"), "Verset {}")

SUB_INTENT_PATTERNS: Dict[IntentType, List[Tuple[Pattern[str], str]]] = {
    IntentType.QUESTION_RELIGIOUS: [
        (re.compile(r"priere|salat|namaz"), "prayer_related"),
        (re.compile(r"jeune|ramadan|siyam"), "fasting_related"),
        (re.compile(r"zakat|aumone|charite"), "charity_related"),
        (re.compile(r"hajj|pelerinage|omra"), "pilgrimage_related"),
        (re.compile(r"parents|famille|enfants"), "family_related"),
        (re.compile(r"mariage|divorce|couple"), "marriage_related"),
        (re.compile(r"mort|funerailles|tombe"), "death_related"),
        (re.compile(r"halal|haram|interdit"), "permissibility_related"),
        (re.compile(r"coeur|ame|spiritualite"), "spiritual_related"),
    ],
    IntentType.SEARCH_VERSE: [
        (re.compile(r"fatiha"), "surah_fatiha"),
        (re.compile(r"baqara"), "surah_baqara"),
        (re.compile(r"yassin|yasin"), "surah_yassin"),
        (re.compile(r"ikhlas"), "surah_ikhlas"),
    ],
}

# ── Fixed replies ────────────────────────────────────────────────────────────

GREETING_REPLY = (
    "Wa alaykoum assalam wa rahmatullahi wa barakatuh !\n\n"
    "Je suis SIA (Sources Islamiques Authentiques). Je peux vous aider à trouver "
    "des passages du Coran, des Hadiths et des ouvrages des grands Imams.\n\n"
    "Quelle est votre question ?"
)

OUT_OF_SCOPE_REPLY = (
    "Je suis SIA, spécialisé uniquement dans les sources islamiques authentiques "
    "(Coran, Hadiths, ouvrages des Imams).\n\n"
    "Je ne suis pas en mesure de répondre à des questions hors de ce périmètre.\n\n"
    "Puis-je vous aider avec une question sur l'Islam ?"
)

EXPLANATION_REPLY = (
    "Je ne suis pas habilité à interpréter les textes sacrés. Mon rôle est uniquement "
    "de transmettre fidèlement les sources authentiques.\n\n"
    "Pour une interprétation, je vous recommande de consulter un imam ou un savant qualifié.\n\n"
    "Souhaitez-vous que je recherche des passages sur un sujet particulier ?"
)

ESCALATION_REPLY = (
    "Je comprends que vous souhaitez échanger avec une personne qualifiée. "
    "Vous pouvez demander à être mis en relation avec un spécialiste : "
    "laissez vos coordonnées et la raison de votre demande."
)

CLARIFY_REPLY = (
    "Je n'ai pas bien compris votre demande. Pourriez-vous la reformuler, "
    "par exemple en précisant le sujet (prière, jeûne, patience, ...) ?"
)
