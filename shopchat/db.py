"""Relational backends: product store and conversation log on SQLAlchemy."""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    contains_eager,
    mapped_column,
    relationship,
    selectinload,
    sessionmaker,
)
from sqlalchemy.pool import StaticPool

from .conversation_log import utcnow
from .models import Chatbot, Conversation, ConversationMessage, Product, StoreRef, TagFacet, Variant
from .product_search import ProductQuery, ProductStoreError, count_tag_facets


logger = logging.getLogger(__name__)

FACET_SCAN_LIMIT = 200


class Base(DeclarativeBase):
    pass


class StoreRow(Base):
    __tablename__ = "stores"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    workspace_id: Mapped[str] = mapped_column(String(64), index=True)


class ProductRow(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    store_id: Mapped[str] = mapped_column(ForeignKey("stores.id"), index=True)
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    brand: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="ACTIVE", index=True)
    whatsapp_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    images: Mapped[list] = mapped_column(JSON, default=list)
    tags: Mapped[list] = mapped_column(JSON, default=list)

    store: Mapped[StoreRow] = relationship()
    variants: Mapped[List["VariantRow"]] = relationship(
        back_populates="product",
        order_by="VariantRow.price",
        cascade="all, delete-orphan",
    )


class VariantRow(Base):
    __tablename__ = "product_variants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id"), index=True)
    name: Mapped[str] = mapped_column(String(255))
    price: Mapped[float] = mapped_column(Float)
    stock: Mapped[int] = mapped_column(Integer, default=0)
    sku: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    product: Mapped[ProductRow] = relationship(back_populates="variants")


class ChatbotRow(Base):
    __tablename__ = "chatbots"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    workspace_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(255))
    active: Mapped[bool] = mapped_column(Boolean, default=True)


class ConversationRow(Base):
    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chatbot_id: Mapped[str] = mapped_column(String(64), index=True)
    session_id: Mapped[str] = mapped_column(String(255), index=True)
    workspace_id: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(String(16), default="ACTIVE")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_active_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    messages: Mapped[List["MessageRow"]] = relationship(
        back_populates="conversation",
        order_by=lambda: [MessageRow.timestamp, MessageRow.id],
        cascade="all, delete-orphan",
    )


class MessageRow(Base):
    __tablename__ = "conversation_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(ForeignKey("conversations.id"), index=True)
    workspace_id: Mapped[str] = mapped_column(String(64), index=True)
    from_bot: Mapped[bool] = mapped_column(Boolean, default=False)
    content: Mapped[str] = mapped_column(Text)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    conversation: Mapped[ConversationRow] = relationship(back_populates="messages")


def make_engine(url: str) -> Engine:
    if url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection so every session sees the same in-memory database
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(url, pool_pre_ping=True)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _product_from_row(row: ProductRow) -> Product:
    return Product(
        id=row.id,
        title=row.title,
        description=row.description or "",
        category=row.category,
        brand=row.brand,
        status=row.status,
        whatsapp_enabled=bool(row.whatsapp_enabled),
        price=row.price,
        images=list(row.images or []),
        tags=list(row.tags or []),
        variants=[
            Variant(id=v.id, name=v.name, price=v.price, stock=v.stock or 0, sku=v.sku)
            for v in row.variants
        ],
        store=StoreRef(
            id=row.store.id,
            name=row.store.name,
            domain=row.store.domain,
            workspace_id=row.store.workspace_id,
        ),
    )


class SqlProductStore:
    _COLUMNS = {
        "title": ProductRow.title,
        "description": ProductRow.description,
        "category": ProductRow.category,
        "brand": ProductRow.brand,
    }

    def __init__(self, engine: Engine):
        self.engine = engine
        self.Session = sessionmaker(bind=engine, expire_on_commit=False)

    def add_products(self, products: Iterable[Product]) -> int:
        count = 0
        try:
            with self.Session.begin() as session:
                for p in products:
                    session.merge(StoreRow(
                        id=p.store.id,
                        name=p.store.name,
                        domain=p.store.domain,
                        workspace_id=p.store.workspace_id,
                    ))
                    session.merge(ProductRow(
                        id=p.id,
                        store_id=p.store.id,
                        title=p.title,
                        description=p.description,
                        category=p.category,
                        brand=p.brand,
                        status=p.status,
                        whatsapp_enabled=p.whatsapp_enabled,
                        price=p.price,
                        images=list(p.images),
                        tags=list(p.tags),
                        variants=[
                            VariantRow(id=v.id, name=v.name, price=v.price, stock=v.stock, sku=v.sku)
                            for v in p.variants
                        ],
                    ))
                    count += 1
        except SQLAlchemyError as e:
            raise ProductStoreError(f"Failed to save products: {e}") from e
        return count

    def find_products(self, query: ProductQuery) -> List[Product]:
        if not query.any_of:
            return []
        conditions = [
            self._COLUMNS[p.field].ilike(f"%{_escape_like(p.value)}%", escape="\\")
            for p in query.any_of
        ]
        stmt = (
            select(ProductRow)
            .join(ProductRow.store)
            .where(StoreRow.workspace_id == query.workspace_id)
            .where(or_(*conditions))
            .options(contains_eager(ProductRow.store), selectinload(ProductRow.variants))
            .limit(query.limit)
        )
        if query.active_only:
            stmt = stmt.where(ProductRow.status == "ACTIVE")
        if query.chat_enabled_only:
            stmt = stmt.where(ProductRow.whatsapp_enabled.is_(True))
        if query.in_stock_only:
            stmt = stmt.where(ProductRow.variants.any(VariantRow.stock > 0))
        try:
            with self.Session() as session:
                rows = session.scalars(stmt).unique().all()
                return [_product_from_row(r) for r in rows]
        except SQLAlchemyError as e:
            raise ProductStoreError(f"Product query failed: {e}") from e

    def top_tag_facets(self, workspace_id: str, tokens: Iterable[str] = (), limit: int = 5) -> List[TagFacet]:
        stmt = (
            select(ProductRow)
            .join(ProductRow.store)
            .where(StoreRow.workspace_id == workspace_id, ProductRow.status == "ACTIVE")
            .options(contains_eager(ProductRow.store), selectinload(ProductRow.variants))
            .limit(FACET_SCAN_LIMIT)
        )
        try:
            with self.Session() as session:
                products = [_product_from_row(r) for r in session.scalars(stmt).unique().all()]
        except SQLAlchemyError as e:
            raise ProductStoreError(f"Facet query failed: {e}") from e
        return count_tag_facets(products, tokens, limit)


def _message_from_row(row: MessageRow) -> ConversationMessage:
    return ConversationMessage(
        id=str(row.id),
        conversation_id=str(row.conversation_id),
        workspace_id=row.workspace_id,
        from_bot=row.from_bot,
        content=row.content,
        phone=row.phone,
        timestamp=row.timestamp,
    )


def _conversation_from_row(row: ConversationRow, messages: List[MessageRow], message_count: int) -> Conversation:
    return Conversation(
        id=str(row.id),
        chatbot_id=row.chatbot_id,
        session_id=row.session_id,
        workspace_id=row.workspace_id,
        status=row.status,
        created_at=row.created_at,
        last_active_at=row.last_active_at,
        messages=[_message_from_row(m) for m in messages],
        message_count=message_count,
    )


def _to_int_id(conversation_id: str) -> int:
    try:
        return int(conversation_id)
    except (TypeError, ValueError):
        # Never a valid primary key
        return -1


class SqlConversationLog:
    def __init__(self, engine: Engine):
        self.engine = engine
        self.Session = sessionmaker(bind=engine, expire_on_commit=False)

    def add_chatbot(self, chatbot: Chatbot) -> Chatbot:
        with self.Session.begin() as session:
            session.merge(ChatbotRow(
                id=chatbot.id,
                workspace_id=chatbot.workspace_id,
                name=chatbot.name,
                active=chatbot.active,
            ))
        return chatbot

    def get_chatbot(self, chatbot_id: str) -> Optional[Chatbot]:
        with self.Session() as session:
            row = session.get(ChatbotRow, chatbot_id)
            if row is None:
                return None
            return Chatbot(id=row.id, workspace_id=row.workspace_id, name=row.name, active=row.active)

    def find_or_create_conversation(self, chatbot_id: str, session_id: str, workspace_id: str) -> Conversation:
        with self.Session.begin() as session:
            row = session.scalars(
                select(ConversationRow).where(
                    ConversationRow.chatbot_id == chatbot_id,
                    ConversationRow.session_id == session_id,
                    ConversationRow.workspace_id == workspace_id,
                ).limit(1)
            ).first()
            if row is None:
                now = utcnow()
                row = ConversationRow(
                    chatbot_id=chatbot_id,
                    session_id=session_id,
                    workspace_id=workspace_id,
                    status="ACTIVE",
                    created_at=now,
                    last_active_at=now,
                )
                session.add(row)
                session.flush()
            count = session.scalar(
                select(func.count(MessageRow.id)).where(MessageRow.conversation_id == row.id)
            ) or 0
            return _conversation_from_row(row, [], count)

    def append_message(
        self,
        conversation_id: str,
        workspace_id: str,
        from_bot: bool,
        content: str,
        phone: Optional[str] = None,
    ) -> ConversationMessage:
        with self.Session.begin() as session:
            conv = session.get(ConversationRow, _to_int_id(conversation_id))
            if conv is None:
                raise KeyError(f"Conversation {conversation_id} not found")
            msg = MessageRow(
                conversation_id=conv.id,
                workspace_id=workspace_id,
                from_bot=from_bot,
                content=content,
                phone=phone,
                timestamp=utcnow(),
            )
            session.add(msg)
            conv.last_active_at = msg.timestamp
            session.flush()
            return _message_from_row(msg)

    def list_conversations(
        self,
        workspace_id: str,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Conversation], int]:
        stmt = select(ConversationRow).where(ConversationRow.workspace_id == workspace_id)
        if status and status != "all":
            stmt = stmt.where(ConversationRow.status == status)
        if search:
            pattern = f"%{_escape_like(search)}%"
            stmt = stmt.where(or_(
                ConversationRow.session_id.ilike(pattern, escape="\\"),
                ConversationRow.messages.any(MessageRow.content.ilike(pattern, escape="\\")),
            ))
        with self.Session() as session:
            total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
            rows = session.scalars(
                stmt.order_by(ConversationRow.last_active_at.desc(), ConversationRow.id.desc())
                .offset(offset)
                .limit(limit)
            ).all()
            out: List[Conversation] = []
            for row in rows:
                latest = session.scalars(
                    select(MessageRow)
                    .where(MessageRow.conversation_id == row.id)
                    .order_by(MessageRow.timestamp.desc(), MessageRow.id.desc())
                    .limit(1)
                ).all()
                count = session.scalar(
                    select(func.count(MessageRow.id)).where(MessageRow.conversation_id == row.id)
                ) or 0
                out.append(_conversation_from_row(row, list(latest), count))
            return out, total

    def get_conversation(self, conversation_id: str, workspace_id: str) -> Optional[Conversation]:
        with self.Session() as session:
            row = session.get(ConversationRow, _to_int_id(conversation_id))
            if row is None or row.workspace_id != workspace_id:
                return None
            return _conversation_from_row(row, list(row.messages), len(row.messages))

    def export_conversations(self, workspace_id: str) -> List[Conversation]:
        stmt = (
            select(ConversationRow)
            .where(ConversationRow.workspace_id == workspace_id)
            .options(selectinload(ConversationRow.messages))
            .order_by(ConversationRow.created_at.desc(), ConversationRow.id.desc())
        )
        with self.Session() as session:
            return [
                _conversation_from_row(row, list(row.messages), len(row.messages))
                for row in session.scalars(stmt).all()
            ]

    def update_status(self, conversation_id: str, workspace_id: str, status: str) -> Optional[Conversation]:
        with self.Session.begin() as session:
            row = session.get(ConversationRow, _to_int_id(conversation_id))
            if row is None or row.workspace_id != workspace_id:
                return None
            row.status = status
        return self.get_conversation(conversation_id, workspace_id)
