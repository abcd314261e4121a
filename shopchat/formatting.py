from typing import List, Optional, Tuple

from .models import FormattedProduct, FormattedVariant, Product, TagFacet


GENERIC_HELP_TEXT = "I'm here to help with shopping and orders. Try asking about products or order status."
ORDER_STATUS_TEXT = "To check your order status, please provide your order number or contact our support team."
RECOMMENDATION_TEXT = "I'd be happy to help you find the perfect product! What are you looking for?"
SUGGESTION_BUTTONS = ["See more", "Refine search"]
LOW_STOCK_THRESHOLD = 5


def pluralize(label: str, count: int) -> str:
    # "dress" becomes "dresss"
    if label.endswith("s") or count == 1:
        return label
    return label + "s"


def _display_price(product: Product) -> Optional[float]:
    price = product.variants[0].price if product.variants else product.price
    return price or None


def _money(value: float) -> str:
    return f"${value:.2f}"


def format_product(product: Product) -> FormattedProduct:
    return FormattedProduct(
        id=product.id,
        title=product.title,
        description=product.description,
        price=_display_price(product),
        image=product.images[0] if product.images else None,
        variants=[
            FormattedVariant(id=v.id, name=v.name, price=v.price, stock=v.stock, sku=v.sku)
            for v in product.variants
        ],
        url=f"/products/{product.id}",
    )


def format_product_lines(products: List[Product], label: str) -> str:
    """Header plus one block per product with its variants and stock notes."""
    lines: List[str] = [f"Found {len(products)} product(s) matching \"{label}\":", ""]
    for p in products:
        line = f"🛍️ {p.title}"
        price = _display_price(p)
        if price:
            line += f" - {_money(price)}"
        lines.append(line)
        if p.variants:
            lines.append("Options:")
            for v in p.variants:
                vline = f"  • {v.name} - {_money(v.price)}"
                if v.stock <= 0:
                    vline += " (Out of stock)"
                elif v.stock < LOW_STOCK_THRESHOLD:
                    vline += f" (Only {v.stock} left)"
                lines.append(vline)
    return "\n".join(lines)


def format_results(products: List[Product], label: str, in_stock: bool) -> Tuple[str, List[FormattedProduct]]:
    count = len(products)
    formatted = [format_product(p) for p in products]
    if count == 0:
        if in_stock:
            return f"We don't have {pluralize(label, count)} in stock right now.", formatted
        return f"No products found matching \"{label}\"", formatted
    if in_stock:
        return f"We currently have {count} {pluralize(label, count)} in stock.", formatted
    return format_product_lines(products, label), formatted


def format_suggestions(products: List[Product]) -> Tuple[str, List[FormattedProduct], List[str]]:
    formatted = [format_product(p) for p in products]
    bullets = [
        f"• {fp.title}" + (f" - {_money(fp.price)}" if fp.price else "")
        for fp in formatted
    ]
    text = "I found these products:\n" + "\n".join(bullets) + "\n\nHow can I help with these?"
    return text, formatted, list(SUGGESTION_BUTTONS)


def format_facets(facets: List[TagFacet]) -> Tuple[str, List[str]]:
    lines = ["Here are some of the categories we carry:"]
    lines.extend(f"• {f.tag} ({f.count})" for f in facets)
    return "\n".join(lines), [f.tag for f in facets]
