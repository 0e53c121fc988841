from __future__ import annotations

import re
from typing import List, Tuple

from ..domain.enums import QueryType


WATERING_KEYWORDS = [
    "water",
    "watering",
    "irrigate",
    "irrigation",
    "moisture",
    "dry",
    "motor",
    "pump",
]
PH_KEYWORDS = ["ph", "acidic", "acidity", "alkaline", "alkalinity", "lime", "sulfur"]
FERTILIZER_KEYWORDS = ["fertilizer", "fertiliser", "fertilize", "urea", "manure", "compost", "npk"]
NUTRIENT_KEYWORDS = [
    "nitrogen",
    "phosphorus",
    "potassium",
    "nutrient",
    "nutrients",
    "deficiency",
]
DISEASE_KEYWORDS = [
    "disease",
    "blight",
    "fungus",
    "fungal",
    "mold",
    "mildew",
    "rot",
    "wilt",
    "spots",
    "yellowing",
]
PEST_KEYWORDS = ["pest", "pests", "insect", "insects", "aphid", "aphids", "worm", "worms", "caterpillar"]
WEATHER_KEYWORDS = ["weather", "rain", "forecast", "heat", "frost", "temperature", "humidity"]

# Checked in order; the first list with a hit decides.
QUERY_TYPE_RULES: List[Tuple[QueryType, List[str]]] = [
    (QueryType.PEST, PEST_KEYWORDS),
    (QueryType.DISEASE, DISEASE_KEYWORDS),
    (QueryType.PH, PH_KEYWORDS),
    (QueryType.FERTILIZER, FERTILIZER_KEYWORDS),
    (QueryType.NUTRIENTS, NUTRIENT_KEYWORDS),
    (QueryType.WATERING, WATERING_KEYWORDS),
    (QueryType.WEATHER, WEATHER_KEYWORDS),
]

_WORD_RE = re.compile(r"[a-z]+")


def _contains_any(words: set, keywords: List[str]) -> bool:
    return any(word in words for word in keywords)


def guess_query_type(prompt: str) -> QueryType:
    """Cheap keyword hint used before the model classifier runs."""
    text = (prompt or "").strip().lower()
    if not text:
        return QueryType.GENERAL
    words = set(_WORD_RE.findall(text))
    for query_type, keywords in QUERY_TYPE_RULES:
        if _contains_any(words, keywords):
            return query_type
    return QueryType.GENERAL
