from shopchat.formatting import (
    GENERIC_HELP_TEXT,
    SUGGESTION_BUTTONS,
    format_facets,
    format_product,
    format_product_lines,
    format_results,
    format_suggestions,
    pluralize,
)
from shopchat.models import Product, StoreRef, TagFacet


def by_id(catalog, product_id):
    return next(p for p in catalog if p.id == product_id)


def test_pluralize_is_naive():
    assert pluralize("necklace", 2) == "necklaces"
    assert pluralize("necklace", 0) == "necklaces"
    assert pluralize("necklace", 1) == "necklace"
    assert pluralize("earrings", 3) == "earrings"
    assert pluralize("dress", 2) == "dresss"


def test_stock_answers():
    assert format_results([], "dress", True)[0] == "We don't have dresss in stock right now."
    assert format_results([], "lamp", False)[0] == 'No products found matching "lamp"'


def test_stock_answer_counts_products(catalog):
    products = [by_id(catalog, "prod-necklace-blue"), by_id(catalog, "prod-necklace-gold")]
    text, formatted = format_results(products, "necklace", True)
    assert text == "We currently have 2 necklaces in stock."
    assert [fp.id for fp in formatted] == ["prod-necklace-blue", "prod-necklace-gold"]


def test_product_lines_show_variants_and_low_stock(catalog):
    text = format_product_lines([by_id(catalog, "prod-necklace-blue")], "necklace")
    assert text.split("\n") == [
        'Found 1 product(s) matching "necklace":',
        "",
        "🛍️ Blue Sapphire Necklace - $129.00",
        "Options:",
        "  • 45 cm - $129.00",
        "  • 50 cm - $139.00 (Only 2 left)",
    ]


def test_out_of_stock_variant_is_marked(catalog):
    text = format_product_lines([by_id(catalog, "prod-dress-linen")], "dress")
    assert "  • Medium - $74.00 (Out of stock)" in text
    assert "  • Large - $79.00" in text


def test_format_product_fields(catalog):
    fp = format_product(by_id(catalog, "prod-earrings-pearl"))
    assert fp.price == 49.0
    assert fp.image is None
    assert fp.url == "/products/prod-earrings-pearl"
    assert fp.variants[0].stock == 0


def test_zero_price_is_omitted():
    product = Product(id="p0", title="Gift Card", price=0, store=StoreRef(id="s", name="S", workspace_id="w"))
    assert format_product(product).price is None
    assert format_product_lines([product], "gift")[-1] == "🛍️ Gift Card"


def test_suggestions_and_facets(catalog):
    text, formatted, buttons = format_suggestions([by_id(catalog, "prod-tote-canvas")])
    assert text == "I found these products:\n• Canvas Tote Bag - $35.00\n\nHow can I help with these?"
    assert buttons == SUGGESTION_BUTTONS
    assert formatted[0].id == "prod-tote-canvas"

    text, buttons = format_facets([TagFacet(tag="jewelry", count=3), TagFacet(tag="bags", count=1)])
    assert text == "Here are some of the categories we carry:\n• jewelry (3)\n• bags (1)"
    assert buttons == ["jewelry", "bags"]
    assert GENERIC_HELP_TEXT.startswith("I'm here to help")
