import asyncio

import pytest

from shopchat.formatting import GENERIC_HELP_TEXT, ORDER_STATUS_TEXT, RECOMMENDATION_TEXT
from shopchat.intents import AttributeExtractor, IntentClassifier
from shopchat.models import Product, StoreRef, Variant
from shopchat.product_loader import CatalogProductStore
from shopchat.product_search import ProductMatcher
from shopchat.router import (
    CLASSIFY_ERROR_TEXT,
    INTERNAL_ERROR_TEXT,
    INVALID_MESSAGE_TEXT,
    MISSING_CONTEXT_TEXT,
    SEARCH_ERROR_TEXT,
    ConversationRouter,
)

from conftest import FailingProvider, FailingStore, ScriptedProvider


WS = "demo-workspace"


def make_router(store, provider=None):
    return ConversationRouter(IntentClassifier(provider), AttributeExtractor(provider), ProductMatcher(store))


def route(router, message, workspace_id=WS, session_id="s1", chatbot_id="demo-chatbot"):
    return asyncio.run(router.route(message, session_id, chatbot_id, workspace_id))


class ExplodingClassifier:
    async def classify(self, message):
        raise RuntimeError("boom")


class ExplodingExtractor:
    async def extract(self, message):
        raise RuntimeError("boom")


def test_buying_message_lists_matching_products(store):
    turn = route(make_router(store), "I want to buy a blue necklace")
    assert turn.reply.type == "product_results"
    assert turn.reply.text.startswith('Found 2 product(s) matching "necklace":')
    assert "🛍️ Blue Sapphire Necklace - $129.00" in turn.reply.text
    assert [p.id for p in turn.reply.products] == ["prod-necklace-blue", "prod-necklace-gold"]
    assert turn.context.last_product == "necklace"
    assert turn.context.last_intent == "product_search"


def test_stock_question_answers_with_count(store):
    turn = route(make_router(store), "do you have necklaces in stock")
    assert turn.reply.text == "We currently have 2 necklaces in stock."
    assert turn.context.last_intent == "stock_query"


def test_greeting_gets_generic_help(store):
    turn = route(make_router(store), "hello")
    assert turn.reply.text == GENERIC_HELP_TEXT
    assert turn.reply.type == "text"
    assert turn.context.last_intent == "general"


def test_failing_provider_falls_back_to_keywords(store):
    turn = route(make_router(store, FailingProvider()), "I want to buy a blue necklace")
    assert turn.reply.type == "product_results"
    assert turn.context.last_product == "necklace"


def test_provider_extraction_drives_search(store):
    provider = ScriptedProvider(
        intent="product_search",
        extraction='{"productName": "linen dress", "attributes": ["linen"]}',
    )
    turn = route(make_router(store, provider), "Got anything for my wife? She likes linen")
    assert turn.reply.text.startswith('Found 1 product(s) matching "dress":')
    assert [p.id for p in turn.reply.products] == ["prod-dress-linen"]


def test_search_is_scoped_to_the_workspace(store):
    turn = route(make_router(store), "I want to buy a blue necklace", workspace_id="other-workspace")
    assert [p.id for p in turn.reply.products] == ["prod-other-necklace"]


def test_no_match_reply(store):
    turn = route(make_router(store), "I want to buy a lamp")
    assert turn.reply.text == 'No products found matching "lamp"'
    assert turn.reply.products == []


@pytest.mark.parametrize("intent,text", [
    ("order_status", ORDER_STATUS_TEXT),
    ("recommendation", RECOMMENDATION_TEXT),
])
def test_canned_replies(store, intent, text):
    turn = route(make_router(store, ScriptedProvider(intent=intent)), "hi there")
    assert turn.reply.text == text
    assert turn.context.last_intent == intent


def test_unknown_intent_is_handled_as_general(store):
    turn = route(make_router(store, ScriptedProvider(intent="banana")), "tote")
    assert turn.reply.text.startswith("I found these products:")
    assert turn.reply.buttons == ["See more", "Refine search"]
    assert turn.context.last_intent == "general"


def test_exploratory_question_gets_categories(store):
    turn = route(make_router(store, ScriptedProvider(intent="general_question")), "what do you have")
    assert turn.reply.text.startswith("Here are some of the categories we carry:")
    assert turn.reply.buttons[:2] == ["jewelry", "necklace"]


@pytest.mark.parametrize("message", [None, "", "   ", 42])
def test_invalid_message(store, message):
    turn = route(make_router(store), message)
    assert turn.reply.text == INVALID_MESSAGE_TEXT
    assert turn.reply.type == "error"


def test_missing_session(store):
    turn = route(make_router(store), "hello", session_id="")
    assert turn.reply.text == MISSING_CONTEXT_TEXT


def test_classifier_crash_is_reported(store):
    router = ConversationRouter(ExplodingClassifier(), AttributeExtractor(None), ProductMatcher(store))
    assert route(router, "hello").reply.text == CLASSIFY_ERROR_TEXT


def test_handler_crash_is_reported(store):
    router = ConversationRouter(IntentClassifier(None), ExplodingExtractor(), ProductMatcher(store))
    turn = route(router, "I want to buy a necklace")
    assert turn.reply.text == INTERNAL_ERROR_TEXT
    assert turn.reply.type == "error"


def test_store_failure_during_search():
    turn = route(make_router(FailingStore()), "I want to buy a necklace")
    assert turn.reply.text == SEARCH_ERROR_TEXT
    assert turn.reply.type == "error"


def test_store_failure_during_general_lookup():
    turn = route(make_router(FailingStore()), "hello")
    assert turn.reply.text == SEARCH_ERROR_TEXT


@pytest.mark.parametrize("provider", [None, FailingProvider(), ScriptedProvider(intent="other", extraction="```")])
@pytest.mark.parametrize("message", [
    "?", "!!!", "a", "buy", "have have have", "ñandú 🎉", "SELECT * FROM products;",
    "x" * 2000, "order 12345", "recommend", "100% off?", "\n\t",
])
def test_every_message_gets_a_reply(catalog, provider, message):
    turn = route(make_router(CatalogProductStore(catalog), provider), message)
    assert turn.reply.text
    assert turn.reply.type in ("text", "product_results", "error")


def test_single_matching_product_scenario():
    product = Product(
        id="p-blue",
        title="Blue Necklace",
        variants=[Variant(id="v-blue", name="Standard", price=25.0, stock=4)],
        store=StoreRef(id="s1", name="Shop", workspace_id="w1"),
    )
    router = make_router(CatalogProductStore([product]))
    turn = asyncio.run(router.route("I want to buy a blue necklace", "s1", "c1", "w1"))
    assert turn.reply.type == "product_results"
    assert turn.reply.text.startswith("Found 1 product(s) matching")
    assert "  • Standard - $25.00 (Only 4 left)" in turn.reply.text


@pytest.mark.parametrize("session_id,chatbot_id,workspace_id", [
    (123, "demo-chatbot", WS),
    ("s1", None, WS),
    ("s1", "demo-chatbot", ["demo-workspace"]),
])
def test_non_string_ids_are_treated_as_missing(store, session_id, chatbot_id, workspace_id):
    turn = asyncio.run(make_router(store).route("hello", session_id, chatbot_id, workspace_id))
    assert turn.reply.text == MISSING_CONTEXT_TEXT
    assert turn.reply.type == "error"


def test_stock_reply_reflects_fallback_results(store):
    # The in-stock pass finds nothing; the raw-term pass finds the out-of-stock earrings
    provider = ScriptedProvider(
        intent="product_search",
        extraction='{"productName": "earrings", "attributes": []}',
    )
    turn = route(make_router(store, provider), "do you have earrings in stock")
    assert [p.id for p in turn.reply.products] == ["prod-earrings-pearl"]
    assert turn.reply.text == "We currently have 1 earring in stock."
    assert "don't have" not in turn.reply.text
    assert turn.context.last_intent == "stock_query"
