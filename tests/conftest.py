from pathlib import Path

import pytest

from shopchat.config import DEMO_CHATBOT_ID, DEMO_WORKSPACE_ID
from shopchat.conversation_log import InMemoryConversationLog
from shopchat.models import Chatbot
from shopchat.product_loader import CatalogProductStore, load_catalog


CATALOG_PATH = Path(__file__).parent.parent / "data" / "demo_catalog.json"


class ScriptedProvider:
    """Answers intent prompts with `intent` and extraction prompts with `extraction`."""

    def __init__(self, intent="product_search", extraction='{"productName": "", "attributes": []}'):
        self.intent = intent
        self.extraction = extraction
        self.prompts = []

    async def generate_text(self, prompt, **kwargs):
        self.prompts.append(prompt)
        if prompt.startswith("Classify"):
            return self.intent
        return self.extraction


class FailingProvider:
    async def generate_text(self, prompt, **kwargs):
        raise RuntimeError("provider unavailable")


class FailingStore:
    def find_products(self, query):
        raise RuntimeError("database is down")

    def top_tag_facets(self, workspace_id, tokens=(), limit=5):
        raise RuntimeError("database is down")


@pytest.fixture
def catalog():
    return load_catalog(str(CATALOG_PATH))


@pytest.fixture
def store(catalog):
    return CatalogProductStore(catalog)


@pytest.fixture
def conversation_log():
    log = InMemoryConversationLog()
    log.add_chatbot(Chatbot(id=DEMO_CHATBOT_ID, workspace_id=DEMO_WORKSPACE_ID, name="Demo"))
    log.add_chatbot(Chatbot(id="other-chatbot", workspace_id="other-workspace", name="Other"))
    return log
