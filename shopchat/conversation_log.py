import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Tuple

from .models import Chatbot, Conversation, ConversationMessage


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationLog(Protocol):
    def add_chatbot(self, chatbot: Chatbot) -> Chatbot:
        ...

    def get_chatbot(self, chatbot_id: str) -> Optional[Chatbot]:
        ...

    def find_or_create_conversation(self, chatbot_id: str, session_id: str, workspace_id: str) -> Conversation:
        ...

    def append_message(
        self,
        conversation_id: str,
        workspace_id: str,
        from_bot: bool,
        content: str,
        phone: Optional[str] = None,
    ) -> ConversationMessage:
        ...

    def list_conversations(
        self,
        workspace_id: str,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Conversation], int]:
        ...

    def get_conversation(self, conversation_id: str, workspace_id: str) -> Optional[Conversation]:
        ...

    def export_conversations(self, workspace_id: str) -> List[Conversation]:
        ...

    def update_status(self, conversation_id: str, workspace_id: str, status: str) -> Optional[Conversation]:
        ...


class InMemoryConversationLog:
    """Process-local conversation log, used for demos and tests."""

    def __init__(self):
        self._chatbots: Dict[str, Chatbot] = {}
        self._conversations: Dict[str, Conversation] = {}
        self._lock = threading.RLock()

    def add_chatbot(self, chatbot: Chatbot) -> Chatbot:
        with self._lock:
            self._chatbots[chatbot.id] = chatbot
        return chatbot

    def get_chatbot(self, chatbot_id: str) -> Optional[Chatbot]:
        with self._lock:
            return self._chatbots.get(chatbot_id)

    def find_or_create_conversation(self, chatbot_id: str, session_id: str, workspace_id: str) -> Conversation:
        with self._lock:
            for conv in self._conversations.values():
                if (conv.chatbot_id, conv.session_id, conv.workspace_id) == (chatbot_id, session_id, workspace_id):
                    return conv.model_copy(update={"messages": []})
            now = utcnow()
            conv = Conversation(
                id=uuid.uuid4().hex,
                chatbot_id=chatbot_id,
                session_id=session_id,
                workspace_id=workspace_id,
                created_at=now,
                last_active_at=now,
            )
            self._conversations[conv.id] = conv
            return conv.model_copy(update={"messages": []})

    def append_message(
        self,
        conversation_id: str,
        workspace_id: str,
        from_bot: bool,
        content: str,
        phone: Optional[str] = None,
    ) -> ConversationMessage:
        with self._lock:
            conv = self._conversations.get(conversation_id)
            if conv is None:
                raise KeyError(f"Conversation {conversation_id} not found")
            msg = ConversationMessage(
                id=uuid.uuid4().hex,
                conversation_id=conversation_id,
                workspace_id=workspace_id,
                from_bot=from_bot,
                content=content,
                phone=phone,
                timestamp=utcnow(),
            )
            conv.messages.append(msg)
            conv.message_count = len(conv.messages)
            conv.last_active_at = msg.timestamp
            return msg

    def list_conversations(
        self,
        workspace_id: str,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Conversation], int]:
        needle = (search or "").lower()
        with self._lock:
            hits: List[Conversation] = []
            for conv in self._conversations.values():
                if conv.workspace_id != workspace_id:
                    continue
                if status and status != "all" and conv.status != status:
                    continue
                if needle and needle not in conv.session_id.lower() and not any(
                    needle in m.content.lower() for m in conv.messages
                ):
                    continue
                hits.append(conv)
            hits.sort(key=lambda c: c.last_active_at, reverse=True)
            page = hits[offset:offset + limit]
            # Summaries carry only the latest message
            return [c.model_copy(update={"messages": c.messages[-1:]}) for c in page], len(hits)

    def get_conversation(self, conversation_id: str, workspace_id: str) -> Optional[Conversation]:
        with self._lock:
            conv = self._conversations.get(conversation_id)
            if conv is None or conv.workspace_id != workspace_id:
                return None
            return conv.model_copy(update={"messages": list(conv.messages)})

    def export_conversations(self, workspace_id: str) -> List[Conversation]:
        """Every conversation of the workspace with all its messages, newest first."""
        with self._lock:
            # Reversed insertion order so equal timestamps still come out newest first
            scoped = [c for c in self._conversations.values() if c.workspace_id == workspace_id][::-1]
            scoped.sort(key=lambda c: c.created_at, reverse=True)
            return [c.model_copy(update={"messages": list(c.messages)}) for c in scoped]

    def update_status(self, conversation_id: str, workspace_id: str, status: str) -> Optional[Conversation]:
        with self._lock:
            conv = self._conversations.get(conversation_id)
            if conv is None or conv.workspace_id != workspace_id:
                return None
            conv.status = status
            return self.get_conversation(conversation_id, workspace_id)
