"""Lexical helpers for chat messages: tokenizing, synonym expansion and
the per-message search plan."""

import re
from typing import Dict, List, Optional, Set

from .models import SearchPlan


SYNONYMS: Dict[str, List[str]] = {
    "jewelry": ["jewellery", "accessories", "ornaments"],
    "necklace": ["chain", "pendant"],
    "earring": ["earrings", "studs"],
    "bracelet": ["bangle", "wristband"],
    "ring": ["band", "wedding ring"],
    "watch": ["timepiece", "wristwatch"],
    "bag": ["purse", "handbag", "tote"],
    "shoe": ["shoes", "footwear", "sneaker", "boot"],
    "dress": ["gown", "frock", "outfit"],
    "shirt": ["blouse", "top", "tee"],
}

# Checked in order; the first hit wins
PRODUCT_NOUNS = [
    "necklace", "earring", "bracelet", "ring", "watch",
    "bag", "purse", "shoe", "dress", "shirt", "jewelry",
]

# NOTE: bare "have" also fires on "I have a question"; kept as-is until product confirms
STOCK_PHRASES = ["in stock", "available", "stock", "inventory", "have"]

EXPLORATORY_PHRASES = [
    "what do you have", "what products", "show me", "browse",
    "categories", "types", "options", "selection",
]

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def tokenize(text: str) -> List[str]:
    """Lower-case, split on non-alphanumeric runs, drop tokens of 2 chars or less."""
    if not text or not isinstance(text, str):
        return []
    return [t for t in _NON_ALNUM.split(text.lower()) if len(t) > 2]


def get_synonyms(token: str) -> List[str]:
    return SYNONYMS.get(token, [])


def expand(message: str) -> Set[str]:
    expanded: Set[str] = set()
    for token in tokenize(message):
        expanded.add(token)
        expanded.update(get_synonyms(token))
    return expanded


def _contains_any(message: str, phrases: List[str]) -> bool:
    t = (message or "").lower()
    return any(p in t for p in phrases)


def is_stock_query(message: str) -> bool:
    return _contains_any(message, STOCK_PHRASES)


def is_exploratory_question(message: str) -> bool:
    return _contains_any(message, EXPLORATORY_PHRASES)


def extract_anchor(message: str) -> Optional[str]:
    tokens = tokenize(message)
    for noun in PRODUCT_NOUNS:
        if any(noun in tok for tok in tokens):
            return noun
    return None


def build_search_plan(message: str) -> SearchPlan:
    return SearchPlan(
        terms=expand(message),
        anchor=extract_anchor(message),
        in_stock=is_stock_query(message),
    )
