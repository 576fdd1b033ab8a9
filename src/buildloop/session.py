# session.py
# Persistent-session wrapper around Agent.
#
# Loads recent stored messages into the agent, creates the assistant row up
# front (so the host has an id to stream against), runs the request, then
# writes the final assistant content back. Storage is a protocol; the only
# implementation shipped here keeps everything in memory.

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import count
from typing import Any, Protocol

from buildloop.agent import Agent
from buildloop.events import EventSink, MessagePersisted
from buildloop.history import normalize_stored_messages

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 50
SUMMARY_EVERY = 10
SUMMARY_WINDOW = 20


@dataclass
class StoredMessage:
    id: str
    session_id: str
    role: str
    content: Any
    token_count: int | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SessionEvent:
    name: str
    payload: dict[str, Any]
    session_id: str
    actor: str


class MessageStore(Protocol):
    def recent(self, session_id: str, limit: int) -> list[StoredMessage]: ...

    def create(self, session_id: str, role: str, content: Any) -> StoredMessage: ...

    def update_content(self, message_id: str, content: Any, token_count: int | None = None) -> None: ...

    def count(self, session_id: str) -> int: ...

    def log_event(self, name: str, payload: dict[str, Any], *, session_id: str, actor: str) -> None: ...

    def set_summary(self, session_id: str, summary: str) -> None: ...


class InMemoryMessageStore:
    """Dict-backed MessageStore for tests and single-process use."""

    def __init__(self) -> None:
        self.messages: dict[str, StoredMessage] = {}
        self.events: list[SessionEvent] = []
        self.summaries: dict[str, str] = {}
        self._ids = count(1)

    def recent(self, session_id: str, limit: int) -> list[StoredMessage]:
        rows = [m for m in self.messages.values() if m.session_id == session_id]
        return rows[-limit:]

    def create(self, session_id: str, role: str, content: Any) -> StoredMessage:
        message = StoredMessage(id=str(next(self._ids)), session_id=session_id, role=role, content=content)
        self.messages[message.id] = message
        return message

    def update_content(self, message_id: str, content: Any, token_count: int | None = None) -> None:
        message = self.messages[message_id]
        message.content = content
        message.token_count = token_count

    def count(self, session_id: str) -> int:
        return sum(1 for m in self.messages.values() if m.session_id == session_id)

    def log_event(self, name: str, payload: dict[str, Any], *, session_id: str, actor: str) -> None:
        self.events.append(SessionEvent(name=name, payload=payload, session_id=session_id, actor=actor))

    def set_summary(self, session_id: str, summary: str) -> None:
        self.summaries[session_id] = summary


def _topic(content: Any) -> str:
    if isinstance(content, dict) and content.get("text"):
        return str(content["text"])[:50]
    if isinstance(content, str):
        return content[:50]
    return ""


class SessionAgent:
    """
    Runs requests for one stored session.

    Example:
        store = InMemoryMessageStore()
        session = SessionAgent(Agent(settings), store, session_id="s-1")
        session.process_request("Add a dark mode toggle")
    """

    def __init__(self, agent: Agent, store: MessageStore, session_id: str) -> None:
        self._agent = agent
        self._store = store
        self._session_id = session_id

    @property
    def agent(self) -> Agent:
        return self._agent

    def process_request(self, prompt: str, on_event: EventSink | None = None) -> str:
        store, sid = self._store, self._session_id
        store.log_event("request.started", {"prompt": prompt}, session_id=sid, actor="user")

        rows = store.recent(sid, HISTORY_WINDOW)
        self._agent.load_conversation_history(
            normalize_stored_messages({"role": r.role, "content": r.content} for r in rows)
        )

        user_row = store.create(sid, "user", {"text": prompt})
        assistant_row = store.create(sid, "assistant", {"text": ""})
        if on_event:
            on_event(MessagePersisted(message_id=assistant_row.id))

        try:
            response = self._agent.process_request(prompt, on_event)
        except Exception as exc:
            store.log_event("request.failed", {"error": str(exc)}, session_id=sid, actor="system")
            raise

        history = self._agent.history
        last = history[-1] if history else None
        if last is not None and last.role == "assistant":
            content = [b.model_dump() for b in last.content]
        else:
            content = {"text": response}
        # rough estimate, the provider's count is not kept per message
        token_count = -(-len(response) // 4)
        store.update_content(assistant_row.id, content, token_count)

        store.log_event(
            "request.completed",
            {"user_message_id": user_row.id, "assistant_message_id": assistant_row.id, "token_count": token_count},
            session_id=sid,
            actor="assistant",
        )
        self._update_summary()
        return response

    def _update_summary(self) -> None:
        if self._store.count(self._session_id) % SUMMARY_EVERY:
            return
        rows = self._store.recent(self._session_id, SUMMARY_WINDOW)
        topics = [t for t in (_topic(r.content) for r in rows if r.role == "user") if t]
        self._store.set_summary(self._session_id, f"Recent topics: {', '.join(topics)}")
        logger.debug("Rolling summary updated for session %s", self._session_id)
