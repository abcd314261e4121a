"""Message understanding: intent classification and product detail extraction.

Both go to the text-generation provider first and fall back to local
keyword heuristics, so neither ever raises to the caller.
"""

import json
import logging
import re
from typing import Any, List, Optional

from .llm_client import EXTRACTION_PROMPT, INTENT_PROMPT, TextGenerationClient
from .models import ExtractedProductDetails, Intent


logger = logging.getLogger(__name__)


PRODUCT_SEARCH_CUES = ["buy", "want", "have", "search"]
ORDER_STATUS_CUES = ["order", "status"]
RECOMMENDATION_CUES = ["recommend", "suggest"]

LEAD_IN_PHRASES = [
    "want to buy ",
    "want to get ",
    "looking for ",
    "searching for ",
    "search for ",
    "buy ",
    "get ",
]

_LEADING_ARTICLE = re.compile(r"^(?:to|for|a|an|the)\s+", re.IGNORECASE)
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

MAX_WHOLE_MESSAGE_WORDS = 8

STOPWORDS = {
    "the", "and", "for", "with", "from", "that", "this", "have", "has", "are",
    "was", "were", "can", "will", "you", "your", "our", "their", "his", "her",
    "its", "but", "not", "all", "any", "out", "get", "got", "buy", "want",
    "show", "see", "in", "on", "to", "of", "a", "an", "is", "at", "by", "as",
    "it", "or", "be", "do", "does", "did", "me", "we", "us", "i", "my", "mine",
    "yours", "ours", "they", "them", "he", "she", "who", "what", "which",
    "where", "when", "how", "why", "so", "if", "then", "than", "just", "about",
    "up", "down", "over", "under", "again", "more", "most", "some", "such",
    "no", "nor", "too", "very", "also", "only", "own", "same", "s", "t",
    "don", "should", "now",
}


def classify_heuristic(message: str) -> Intent:
    """Rule-based intent used when the provider is unavailable."""
    t = (message or "").lower()
    if any(k in t for k in PRODUCT_SEARCH_CUES):
        return Intent.PRODUCT_SEARCH
    if any(k in t for k in ORDER_STATUS_CUES):
        return Intent.ORDER_STATUS
    if any(k in t for k in RECOMMENDATION_CUES):
        return Intent.RECOMMENDATION
    return Intent.GENERAL_QUESTION


def extract_attributes(message: str) -> List[str]:
    """Stopword-filtered tokens of a message, used as candidate attributes."""
    return [
        w for w in _NON_ALNUM.split((message or "").lower())
        if len(w) > 2 and w not in STOPWORDS
    ]


def guess_product_name(message: str) -> str:
    """Take whatever follows the rightmost buying phrase ("looking for ...")."""
    text = message or ""
    lower = text.lower()
    best_index = -1
    best_len = 0
    for phrase in LEAD_IN_PHRASES:
        idx = lower.find(phrase)
        if idx > best_index:
            best_index = idx
            best_len = len(phrase)

    name = ""
    if best_index != -1:
        name = text[best_index + best_len:].strip()
    name = _LEADING_ARTICLE.sub("", name).strip()
    if not name and len(text.split()) <= MAX_WHOLE_MESSAGE_WORDS:
        name = text.strip()
    return name


def _strip_code_fences(text: str) -> str:
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("` \n")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    return cleaned.strip()


def parse_extraction(text: str) -> ExtractedProductDetails:
    """Parse the provider's JSON answer; anything malformed yields empty details."""
    try:
        data: Any = json.loads(_strip_code_fences(text))
    except ValueError:
        return ExtractedProductDetails()
    if not isinstance(data, dict):
        return ExtractedProductDetails()
    name = data.get("productName")
    attrs = data.get("attributes")
    return ExtractedProductDetails(
        product_name=name.strip() if isinstance(name, str) else "",
        attributes=[a.strip() for a in attrs if isinstance(a, str) and a.strip()] if isinstance(attrs, list) else [],
    )


class IntentClassifier:
    def __init__(self, provider: Optional[TextGenerationClient]):
        self.provider = provider

    async def classify(self, message: str) -> Intent:
        if self.provider is None:
            return classify_heuristic(message)
        try:
            raw = await self.provider.generate_text(INTENT_PROMPT.format(message=message))
        except Exception as e:
            logger.warning("Intent detection fell back to keywords: %s", e)
            return classify_heuristic(message)
        return Intent.parse(raw)


class AttributeExtractor:
    def __init__(self, provider: Optional[TextGenerationClient]):
        self.provider = provider

    async def extract(self, message: str) -> ExtractedProductDetails:
        if self.provider is None:
            return ExtractedProductDetails()
        try:
            raw = await self.provider.generate_text(EXTRACTION_PROMPT.format(message=message))
        except Exception as e:
            logger.warning("Product extraction failed: %s", e)
            return ExtractedProductDetails()
        details = parse_extraction(raw)
        if not details.product_name and not details.attributes:
            logger.info("Product extraction returned nothing usable: %r", raw[:200])
        return details

