import threading

from shopchat.conversation_log import InMemoryConversationLog
from shopchat.models import Chatbot


WS = "demo-workspace"


def test_concurrent_writers_and_readers():
    log = InMemoryConversationLog()
    errors = []

    def writer(n):
        try:
            log.add_chatbot(Chatbot(id=f"bot-{n}", workspace_id=WS, name=f"Bot {n}"))
            for i in range(50):
                conv = log.find_or_create_conversation(f"bot-{n}", f"s-{i % 5}", WS)
                log.append_message(conv.id, WS, bool(i % 2), f"message {i}")
        except Exception as e:
            errors.append(e)

    def reader():
        try:
            for _ in range(50):
                items, _total = log.list_conversations(WS, search="message", limit=100)
                for conv in items:
                    log.get_conversation(conv.id, WS)
                log.export_conversations(WS)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    threads += [threading.Thread(target=reader) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    items, total = log.list_conversations(WS, limit=100)
    assert total == 20
    assert all(c.message_count == 10 for c in items)


def test_export_is_newest_first_and_scoped():
    log = InMemoryConversationLog()
    first = log.find_or_create_conversation("bot", "s1", WS)
    log.append_message(first.id, WS, False, "hello")
    second = log.find_or_create_conversation("bot", "s2", WS)
    log.find_or_create_conversation("bot", "s3", "other-workspace")

    exported = log.export_conversations(WS)
    assert [c.id for c in exported] == [second.id, first.id]
    assert [m.content for m in exported[1].messages] == ["hello"]
    assert log.update_status(first.id, "other-workspace", "CLOSED") is None
