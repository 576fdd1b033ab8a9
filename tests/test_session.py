import pytest

from buildloop.agent import Agent
from buildloop.events import EventRecorder, MessagePersisted
from buildloop.session import InMemoryMessageStore, SessionAgent
from scripted import ScriptedModel, text_turn


def _session(settings, responses, store=None):
    model = ScriptedModel(responses)
    store = store or InMemoryMessageStore()
    return SessionAgent(Agent(settings, model_client=model), store, "s-1"), store, model


def test_request_persists_messages_and_events(settings):
    session, store, _ = _session(settings, [text_turn("Hello!")])
    events = EventRecorder()

    result = session.process_request("hi", on_event=events)

    assert result == "Hello!"
    rows = store.recent("s-1", 10)
    assert [r.role for r in rows] == ["user", "assistant"]
    assert rows[0].content == {"text": "hi"}
    assert rows[1].content == [{"type": "text", "text": "Hello!"}]
    assert rows[1].token_count == 2
    assert [e.name for e in store.events] == ["request.started", "request.completed"]
    assert events.events[0] == MessagePersisted(message_id=rows[1].id)


def test_second_request_sees_stored_history(settings):
    store = InMemoryMessageStore()
    first, _, _ = _session(settings, [text_turn("first answer")], store)
    first.process_request("one")

    second, _, model = _session(settings, [text_turn("second answer")], store)
    second.process_request("two")

    sent = model.calls[0]["history"]
    assert [m.text() for m in sent] == ["one", "first answer", "two"]


def test_failure_is_logged_and_reraised(settings):
    session, store, _ = _session(settings, [RuntimeError("model down")])

    with pytest.raises(RuntimeError, match="model down"):
        session.process_request("hi")

    assert store.events[-1].name == "request.failed"
    assert store.events[-1].payload == {"error": "model down"}


def test_rolling_summary_every_ten_messages(settings):
    store = InMemoryMessageStore()
    for i in range(4):
        store.create("s-1", "user", {"text": f"topic {i}"})
        store.create("s-1", "assistant", [{"type": "text", "text": "ok"}])
    session, _, _ = _session(settings, [text_turn("fine")], store)

    session.process_request("topic 4")

    assert store.summaries["s-1"] == "Recent topics: topic 0, topic 1, topic 2, topic 3, topic 4"
