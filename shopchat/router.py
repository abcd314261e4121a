"""Per-message conversation routing.

Every call goes Received -> Classified -> Handled -> Replied and always
produces a Reply, even when the provider or the product store fails.
The router is stateless; the caller carries ConversationContext between
turns and persists the conversation log.
"""

import logging
from typing import List, Optional

from .formatting import (
    GENERIC_HELP_TEXT,
    ORDER_STATUS_TEXT,
    RECOMMENDATION_TEXT,
    format_facets,
    format_results,
    format_suggestions,
)
from .intents import AttributeExtractor, IntentClassifier, extract_attributes, guess_product_name
from .models import ConversationContext, FormattedProduct, Intent, ReplyType, Reply, RoutedTurn
from .product_search import ProductMatcher
from .synonyms import build_search_plan, is_exploratory_question


logger = logging.getLogger(__name__)


INVALID_MESSAGE_TEXT = "Please provide a valid message"
MISSING_CONTEXT_TEXT = "Missing conversation details"
CLASSIFY_ERROR_TEXT = "Error processing your request"
SEARCH_ERROR_TEXT = "Error searching for products"
INTERNAL_ERROR_TEXT = "Sorry, I encountered an error"
DEFAULT_REPLY_TEXT = "I received your message"


def safe_reply(
    text: Optional[str],
    type: ReplyType = "text",
    products: Optional[List[FormattedProduct]] = None,
    buttons: Optional[List[str]] = None,
) -> Reply:
    return Reply(text=text or DEFAULT_REPLY_TEXT, type=type, products=products, buttons=buttons)


class ConversationRouter:
    def __init__(self, classifier: IntentClassifier, extractor: AttributeExtractor, matcher: ProductMatcher):
        self.classifier = classifier
        self.extractor = extractor
        self.matcher = matcher

    async def route(self, message, session_id: str, chatbot_id: str, workspace_id: str) -> RoutedTurn:
        # Ids that are not strings count as missing
        ids = [x if isinstance(x, str) else "" for x in (session_id, chatbot_id, workspace_id)]
        context = ConversationContext(session_id=ids[0], chatbot_id=ids[1], workspace_id=ids[2])
        try:
            if not isinstance(message, str) or not message.strip():
                return RoutedTurn(reply=safe_reply(INVALID_MESSAGE_TEXT, "error"), context=context)
            if not all(ids):
                return RoutedTurn(reply=safe_reply(MISSING_CONTEXT_TEXT, "error"), context=context)

            try:
                intent = await self.classifier.classify(message)
            except Exception:
                logger.exception("Intent classification failed")
                return RoutedTurn(reply=safe_reply(CLASSIFY_ERROR_TEXT, "error"), context=context)
            logger.info("Message %r detected as intent %s", message[:80], intent.value)

            try:
                if intent is Intent.PRODUCT_SEARCH:
                    return await self.handle_product_search(message, context)
                if intent is Intent.ORDER_STATUS:
                    return self._canned(ORDER_STATUS_TEXT, intent, context)
                if intent is Intent.RECOMMENDATION:
                    return self._canned(RECOMMENDATION_TEXT, intent, context)
                # GENERAL_QUESTION, OTHER
                return self.handle_general(message, context)
            except Exception:
                logger.exception("Handler for intent %s failed", intent.value)
                return RoutedTurn(reply=safe_reply(INTERNAL_ERROR_TEXT, "error"), context=context)
        except Exception:
            logger.exception("Routing failed")
            return RoutedTurn(reply=safe_reply(INTERNAL_ERROR_TEXT, "error"), context=context)

    def _canned(self, text: str, intent: Intent, context: ConversationContext) -> RoutedTurn:
        return RoutedTurn(
            reply=safe_reply(text),
            context=context.model_copy(update={"last_intent": intent.value}),
        )

    async def handle_product_search(self, message: str, context: ConversationContext) -> RoutedTurn:
        details = await self.extractor.extract(message)
        product_name = details.product_name.strip()
        attributes = details.attributes
        if not product_name:
            product_name = guess_product_name(message)

        plan = build_search_plan(" ".join(p for p in [product_name, *attributes, message] if p))
        label = (plan.anchor or product_name or message).strip()
        keywords = set(plan.terms)
        if plan.anchor:
            keywords.add(plan.anchor)

        try:
            products = self.matcher.search(
                product_name or message,
                context.workspace_id,
                require_in_stock=plan.in_stock,
                keywords=keywords,
            )
        except Exception:
            logger.exception("Product search failed for %r", label)
            return RoutedTurn(reply=safe_reply(SEARCH_ERROR_TEXT, "error"), context=context)

        text, formatted = format_results(products, label, plan.in_stock)
        return RoutedTurn(
            reply=safe_reply(text, "product_results", formatted),
            context=context.model_copy(update={
                "last_product": label,
                "last_intent": "stock_query" if plan.in_stock else "product_search",
            }),
        )

    def handle_general(self, message: str, context: ConversationContext) -> RoutedTurn:
        updated = context.model_copy(update={"last_intent": "general"})
        try:
            products = self.matcher.keyword_search(message, context.workspace_id)
            if products:
                text, formatted, buttons = format_suggestions(products)
                return RoutedTurn(reply=safe_reply(text, "text", formatted, buttons), context=updated)

            if is_exploratory_question(message):
                tokens = extract_attributes(message)
                facets = self.matcher.facets(context.workspace_id, tokens)
                if not facets and tokens:
                    facets = self.matcher.facets(context.workspace_id)
                if facets:
                    text, buttons = format_facets(facets)
                    return RoutedTurn(reply=safe_reply(text, "text", buttons=buttons), context=updated)
        except Exception:
            logger.exception("General product lookup failed")
            return RoutedTurn(reply=safe_reply(SEARCH_ERROR_TEXT, "error"), context=context)

        return RoutedTurn(reply=safe_reply(GENERIC_HELP_TEXT), context=updated)
