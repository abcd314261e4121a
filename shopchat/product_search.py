import logging
from collections import Counter
from typing import Iterable, List, Literal, Optional, Protocol

from pydantic import BaseModel, Field

from .intents import STOPWORDS, extract_attributes
from .models import Product, TagFacet
from .synonyms import expand


logger = logging.getLogger(__name__)


SearchField = Literal["title", "description", "category", "brand"]

PHRASE_FIELDS: List[SearchField] = ["title", "description", "category", "brand"]
TOKEN_FIELDS: List[SearchField] = ["title", "description"]


class ProductStoreError(Exception):
    """The product store backend failed to answer a query."""


class SubstringPredicate(BaseModel):
    """Case-insensitive "field contains value"."""
    field: SearchField
    value: str


class ProductQuery(BaseModel):
    workspace_id: str
    # OR'd together; an empty list matches nothing
    any_of: List[SubstringPredicate] = Field(default_factory=list)
    in_stock_only: bool = False
    active_only: bool = True
    chat_enabled_only: bool = False
    limit: int = 3


class ProductStore(Protocol):
    def find_products(self, query: ProductQuery) -> List[Product]:
        ...

    def top_tag_facets(self, workspace_id: str, tokens: Iterable[str] = (), limit: int = 5) -> List[TagFacet]:
        ...


def count_tag_facets(products: Iterable[Product], tokens: Iterable[str] = (), limit: int = 5) -> List[TagFacet]:
    """Most common lower-cased tags among products, optionally narrowed by tokens.

    With tokens, a product counts when one of its tags equals a token or a
    token appears in its title or description.
    """
    wanted = {t.lower() for t in tokens if t}
    counts: Counter = Counter()
    for p in products:
        if wanted:
            tags = {t.lower() for t in p.tags}
            text = f"{p.title}\n{p.description}".lower()
            if not (tags & wanted or any(t in text for t in wanted)):
                continue
        for tag in p.tags:
            key = (tag or "").strip().lower()
            if key:
                counts[key] += 1
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [TagFacet(tag=tag, count=count) for tag, count in ranked[:limit]]


def _predicates(values: Iterable[str], fields: List[SearchField]) -> List[SubstringPredicate]:
    out: List[SubstringPredicate] = []
    for value in values:
        for f in fields:
            out.append(SubstringPredicate(field=f, value=value))
    return out


class ProductMatcher:
    """Workspace-scoped product lookup for chat.

    The first pass ORs the raw term over title/description/category/brand
    with every expanded and attribute token over title/description. When
    that finds nothing, a broader pass matches the raw term alone against
    title and description, ignoring the stock requirement.
    """

    def __init__(self, store: ProductStore, limit: int = 3, chat_enabled_only: bool = False):
        self.store = store
        self.limit = limit
        self.chat_enabled_only = chat_enabled_only

    def search_tokens(self, term: str, keywords: Optional[Iterable[str]] = None) -> List[str]:
        tokens = set(expand(term))
        tokens.update(k.strip().lower() for k in (keywords or ()) if k and k.strip())
        tokens.update(extract_attributes(term))
        return sorted(t for t in tokens if t not in STOPWORDS)

    def search(
        self,
        term: str,
        workspace_id: str,
        require_in_stock: bool = False,
        keywords: Optional[Iterable[str]] = None,
    ) -> List[Product]:
        term = (term or "").strip()
        if not term:
            return []

        tokens = self.search_tokens(term, keywords)
        query = ProductQuery(
            workspace_id=workspace_id,
            any_of=_predicates([term], PHRASE_FIELDS) + _predicates(tokens, TOKEN_FIELDS),
            in_stock_only=require_in_stock,
            chat_enabled_only=self.chat_enabled_only,
            limit=self.limit,
        )
        products = self.store.find_products(query)
        logger.debug("Primary search for %r (tokens=%s) found %d", term, tokens, len(products))
        if products:
            return products

        fallback = self.keyword_search(term, workspace_id)
        logger.debug("Fallback keyword search for %r found %d", term, len(fallback))
        return fallback

    def keyword_search(self, text: str, workspace_id: str) -> List[Product]:
        """Raw text against title and description only, no expansion, no stock filter."""
        text = (text or "").strip()
        if not text:
            return []
        query = ProductQuery(
            workspace_id=workspace_id,
            any_of=_predicates([text], TOKEN_FIELDS),
            chat_enabled_only=self.chat_enabled_only,
            limit=self.limit,
        )
        return self.store.find_products(query)

    def facets(self, workspace_id: str, tokens: Iterable[str] = (), limit: int = 5) -> List[TagFacet]:
        return self.store.top_tag_facets(workspace_id, tokens, limit)
