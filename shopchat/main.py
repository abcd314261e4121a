import csv
import io
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .config import DEMO_CHATBOT_ID, DEMO_WORKSPACE_ID, Settings, get_settings
from .conversation_log import ConversationLog, InMemoryConversationLog, utcnow
from .intents import AttributeExtractor, IntentClassifier
from .llm_client import TextGenerationClient
from .middleware import RateLimitMiddleware, RequestLoggingMiddleware
from .models import CONVERSATION_STATUSES, Chatbot
from .product_loader import catalog_store_from_file
from .product_search import ProductMatcher, ProductStore
from .router import ConversationRouter


logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
EXPORT_CSV_COLUMNS = ["ConversationId", "ChatbotName", "SessionId", "Status", "CreatedAt", "MessageCount"]


def _error(message: str, code: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": message, "code": code}, status_code=status_code)


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _workspace_id(request: Request, body: Optional[Dict[str, Any]] = None) -> Optional[str]:
    return (
        (body or {}).get("workspaceId")
        or request.query_params.get("workspaceId")
        or request.headers.get("x-workspace-id")
    )


def _default_backends(settings: Settings):
    if settings.database_url:
        from .db import SqlConversationLog, SqlProductStore, init_db, make_engine

        engine = make_engine(settings.database_url)
        init_db(engine)
        return SqlProductStore(engine), SqlConversationLog(engine)

    log = InMemoryConversationLog()
    log.add_chatbot(Chatbot(id=DEMO_CHATBOT_ID, workspace_id=DEMO_WORKSPACE_ID, name="Demo shop assistant"))
    return catalog_store_from_file(settings.catalog_path), log


def create_app(
    settings: Optional[Settings] = None,
    product_store: Optional[ProductStore] = None,
    conversation_log: Optional[ConversationLog] = None,
    provider: Optional[TextGenerationClient] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    if product_store is None or conversation_log is None:
        default_store, default_log = _default_backends(settings)
        product_store = product_store or default_store
        conversation_log = conversation_log or default_log
    provider = provider or TextGenerationClient(settings)

    matcher = ProductMatcher(
        product_store,
        limit=settings.search_result_limit,
        chat_enabled_only=settings.chat_enabled_only,
    )
    router = ConversationRouter(IntentClassifier(provider), AttributeExtractor(provider), matcher)

    app = FastAPI(title="shopchat")
    app.state.settings = settings
    app.state.router = router
    app.state.matcher = matcher
    app.state.conversation_log = conversation_log

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.rate_limit_max,
        window_seconds=settings.rate_limit_window,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    def health():
        return {"status": "ok", "service": "shopchat"}

    @app.post("/api/chat")
    @app.post("/api/chat/{chatbot_id}/converse")
    async def converse(request: Request, chatbot_id: Optional[str] = None):
        body = await _json_body(request)
        chatbot_id = chatbot_id or body.get("chatbotId")
        message = body.get("message")
        session_id = body.get("sessionId")
        workspace_id = _workspace_id(request, body)

        if not all(isinstance(v, str) and v.strip() for v in (message, session_id, chatbot_id, workspace_id)):
            return _error("Missing required fields", "MISSING_FIELDS", 400)
        phone = body.get("phone")
        if phone is not None and not isinstance(phone, str):
            phone = str(phone)

        log: ConversationLog = request.app.state.conversation_log
        try:
            chatbot = log.get_chatbot(chatbot_id)
            if chatbot is None or chatbot.workspace_id != workspace_id:
                return _error("Chatbot not found", "CHATBOT_NOT_FOUND", 404)

            turn = await request.app.state.router.route(message, session_id, chatbot_id, workspace_id)
            reply = turn.reply.model_dump(by_alias=True, exclude_none=True)

            conversation = log.find_or_create_conversation(chatbot_id, session_id, workspace_id)
            log.append_message(conversation.id, workspace_id, False, message, phone)
            log.append_message(conversation.id, workspace_id, True, reply["text"], "bot")
        except Exception:
            logger.exception("Chat turn failed for chatbot %s session %s", chatbot_id, session_id)
            return _error("Internal server error", "SERVER_ERROR", 500)

        return {
            "success": True,
            "data": {
                "reply": reply,
                "context": turn.context.model_dump(by_alias=True),
                "conversationId": conversation.id,
                "sessionId": session_id,
                "chatbotId": chatbot_id,
                "timestamp": utcnow().isoformat(),
            },
        }

    @app.get("/api/conversations")
    def list_conversations(
        request: Request,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ):
        workspace_id = _workspace_id(request)
        if not workspace_id:
            return _error("Missing required fields", "MISSING_FIELDS", 400)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)
        items, total = request.app.state.conversation_log.list_conversations(
            workspace_id, status=status, search=search, limit=limit, offset=offset
        )
        return {
            "success": True,
            "data": [c.model_dump(by_alias=True, mode="json") for c in items],
            "total": total,
            "limit": limit,
            "offset": offset,
        }

    @app.get("/api/conversations/export")
    def export_conversations(request: Request, format: str = "json"):
        workspace_id = _workspace_id(request)
        if not workspace_id:
            return _error("Missing required fields", "MISSING_FIELDS", 400)
        log: ConversationLog = request.app.state.conversation_log
        conversations = log.export_conversations(workspace_id)
        names: Dict[str, str] = {}
        for conv in conversations:
            if conv.chatbot_id not in names:
                chatbot = log.get_chatbot(conv.chatbot_id)
                names[conv.chatbot_id] = chatbot.name if chatbot else ""

        if format == "csv":
            out = io.StringIO()
            writer = csv.writer(out, lineterminator="\n")
            writer.writerow(EXPORT_CSV_COLUMNS)
            for conv in conversations:
                writer.writerow([
                    conv.id,
                    names[conv.chatbot_id],
                    conv.session_id,
                    conv.status,
                    conv.created_at.isoformat(),
                    conv.message_count,
                ])
            return Response(
                out.getvalue(),
                media_type="text/csv",
                headers={"Content-Disposition": "attachment; filename=conversations.csv"},
            )

        data = []
        for conv in conversations:
            item = conv.model_dump(by_alias=True, mode="json")
            item["chatbotName"] = names[conv.chatbot_id]
            data.append(item)
        return {"success": True, "data": data}

    @app.get("/api/conversations/{conversation_id}")
    def get_conversation(request: Request, conversation_id: str):
        workspace_id = _workspace_id(request)
        if not workspace_id:
            return _error("Missing required fields", "MISSING_FIELDS", 400)
        conv = request.app.state.conversation_log.get_conversation(conversation_id, workspace_id)
        if conv is None:
            return _error("Conversation not found", "CONVERSATION_NOT_FOUND", 404)
        return {"success": True, "data": conv.model_dump(by_alias=True, mode="json")}

    @app.patch("/api/conversations/{conversation_id}")
    async def update_conversation_status(request: Request, conversation_id: str):
        body = await _json_body(request)
        workspace_id = _workspace_id(request, body)
        if not workspace_id:
            return _error("Missing required fields", "MISSING_FIELDS", 400)
        status = body.get("status")
        if status not in CONVERSATION_STATUSES:
            return _error(f"Status must be one of {', '.join(CONVERSATION_STATUSES)}", "INVALID_STATUS", 400)
        conv = request.app.state.conversation_log.update_status(conversation_id, workspace_id, status)
        if conv is None:
            return _error("Conversation not found", "CONVERSATION_NOT_FOUND", 404)
        return {"success": True, "data": conv.model_dump(by_alias=True, mode="json")}

    @app.post("/api/conversations/{conversation_id}/messages", status_code=201)
    async def add_message(request: Request, conversation_id: str):
        body = await _json_body(request)
        workspace_id = _workspace_id(request, body)
        content = body.get("content")
        phone = body.get("phone")
        if not isinstance(workspace_id, str) or not workspace_id or not isinstance(content, str) or not content.strip():
            return _error("Missing required fields", "MISSING_FIELDS", 400)
        log: ConversationLog = request.app.state.conversation_log
        if log.get_conversation(conversation_id, workspace_id) is None:
            return _error("Conversation not found", "CONVERSATION_NOT_FOUND", 404)
        msg = log.append_message(
            conversation_id,
            workspace_id,
            bool(body.get("fromBot", False)),
            content,
            phone if isinstance(phone, str) else None,
        )
        return {"success": True, "data": msg.model_dump(by_alias=True, mode="json")}

    @app.get("/api/facets")
    def facets(request: Request, tokens: Optional[str] = None, limit: int = 5):
        workspace_id = _workspace_id(request)
        if not workspace_id:
            return _error("Missing required fields", "MISSING_FIELDS", 400)
        wanted = [t.strip() for t in (tokens or "").split(",") if t.strip()]
        try:
            items = request.app.state.matcher.facets(workspace_id, wanted, max(1, min(limit, 50)))
        except Exception:
            logger.exception("Facet lookup failed for workspace %s", workspace_id)
            return _error("Internal server error", "SERVER_ERROR", 500)
        return {"success": True, "data": [f.model_dump() for f in items]}

    return app

