import json
import logging
import os
from functools import lru_cache
from typing import Iterable, List

from .models import Product, TagFacet
from .product_search import ProductQuery, SubstringPredicate, count_tag_facets


logger = logging.getLogger(__name__)


def _matches(product: Product, predicate: SubstringPredicate) -> bool:
    haystack = getattr(product, predicate.field) or ""
    return predicate.value.lower() in haystack.lower()


def _with_sorted_variants(product: Product) -> Product:
    return product.model_copy(update={"variants": sorted(product.variants, key=lambda v: v.price)})


class CatalogProductStore:
    """In-memory product store, filled from a JSON catalog file or a list.

    Applies the same query semantics as the SQL store, evaluated in Python.
    """

    def __init__(self, products: Iterable[Product] = ()):
        self.products: List[Product] = list(products)

    def find_products(self, query: ProductQuery) -> List[Product]:
        if not query.any_of:
            return []
        out: List[Product] = []
        for p in self.products:
            if p.store.workspace_id != query.workspace_id:
                continue
            if query.active_only and p.status != "ACTIVE":
                continue
            if query.chat_enabled_only and not p.whatsapp_enabled:
                continue
            if query.in_stock_only and not p.has_stock():
                continue
            if not any(_matches(p, pred) for pred in query.any_of):
                continue
            out.append(_with_sorted_variants(p))
            if len(out) >= query.limit:
                break
        return out

    def top_tag_facets(self, workspace_id: str, tokens: Iterable[str] = (), limit: int = 5) -> List[TagFacet]:
        scoped = [p for p in self.products if p.store.workspace_id == workspace_id and p.status == "ACTIVE"]
        return count_tag_facets(scoped, tokens, limit)


@lru_cache(maxsize=4)
def load_catalog(path: str) -> List[Product]:
    """Load and cache products from a JSON catalog file.
    Returns an empty list if the file is missing.
    """
    if not os.path.exists(path):
        logger.warning("Catalog file %s not found; starting with an empty catalog", path)
        return []
    with open(path, "r", encoding="utf-8") as f:
        items = json.load(f)
    return [Product.model_validate(item) for item in items]


def catalog_store_from_file(path: str) -> CatalogProductStore:
    return CatalogProductStore(load_catalog(path))
