from datetime import datetime
from enum import Enum
from typing import List, Optional, Literal, Set

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


ProductStatus = Literal["ACTIVE", "INACTIVE", "DRAFT", "ARCHIVED"]
ConversationStatus = Literal["ACTIVE", "CLOSED", "ARCHIVED"]
ReplyType = Literal["text", "product_results", "error"]

CONVERSATION_STATUSES = ("ACTIVE", "CLOSED", "ARCHIVED")


class CamelModel(BaseModel):
    # snake_case in Python, camelCase on the wire
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Intent(str, Enum):
    PRODUCT_SEARCH = "product_search"
    ORDER_STATUS = "order_status"
    RECOMMENDATION = "recommendation"
    GENERAL_QUESTION = "general_question"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "Intent":
        """Map free provider output onto the enumeration; anything unknown is OTHER."""
        value = (raw or "").strip().lower()
        for member in cls:
            if member.value == value:
                return member
        return cls.OTHER


class Variant(CamelModel):
    id: str
    name: str
    price: float
    stock: int = 0
    sku: Optional[str] = None


class StoreRef(CamelModel):
    id: str
    name: str
    domain: Optional[str] = None
    workspace_id: str


class Product(CamelModel):
    id: str
    title: str
    description: str = ""
    category: Optional[str] = None
    brand: Optional[str] = None
    status: ProductStatus = "ACTIVE"
    whatsapp_enabled: bool = False
    price: Optional[float] = None
    images: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    # Kept sorted by price ascending by every product store
    variants: List[Variant] = Field(default_factory=list)
    store: StoreRef

    def has_stock(self) -> bool:
        return any(v.stock > 0 for v in self.variants)


class SearchPlan(CamelModel):
    terms: Set[str] = Field(default_factory=set)
    anchor: Optional[str] = None
    in_stock: bool = False


class ExtractedProductDetails(CamelModel):
    product_name: str = ""
    attributes: List[str] = Field(default_factory=list)


class FormattedVariant(CamelModel):
    id: str
    name: str
    price: float
    stock: int
    sku: Optional[str] = None


class FormattedProduct(CamelModel):
    id: str
    title: str
    description: str
    price: Optional[float] = None
    image: Optional[str] = None
    variants: List[FormattedVariant] = Field(default_factory=list)
    url: str


class Reply(CamelModel):
    text: str
    type: ReplyType = "text"
    products: Optional[List[FormattedProduct]] = None
    buttons: Optional[List[str]] = None


class ConversationContext(CamelModel):
    chatbot_id: str
    session_id: str
    workspace_id: str
    last_product: Optional[str] = None
    last_intent: Optional[str] = None


class RoutedTurn(CamelModel):
    reply: Reply
    context: ConversationContext


class TagFacet(CamelModel):
    tag: str
    count: int


class Chatbot(CamelModel):
    id: str
    workspace_id: str
    name: str
    active: bool = True


class ConversationMessage(CamelModel):
    id: str
    conversation_id: str
    workspace_id: str
    from_bot: bool
    content: str
    phone: Optional[str] = None
    timestamp: datetime


class Conversation(CamelModel):
    id: str
    chatbot_id: str
    session_id: str
    workspace_id: str
    status: ConversationStatus = "ACTIVE"
    created_at: datetime
    last_active_at: datetime
    messages: List[ConversationMessage] = Field(default_factory=list)
    message_count: int = 0

