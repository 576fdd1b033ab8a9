import pytest

from buildloop.events import EventRecorder, PhaseChanged, ReasoningDelta, TextDelta, ThinkingComplete
from buildloop.models import Phase, Usage
from buildloop.streaming import TRANSITIONS, LoopState, TurnStream

# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

def test_every_state_has_a_transition_entry():
    assert set(TRANSITIONS) == set(LoopState)
    assert TRANSITIONS[LoopState.DONE] == frozenset()


def test_illegal_transition_raises(settings):
    stream = TurnStream(settings)
    stream.on_text("hi")
    stream.finish_turn(has_tools=False)
    assert stream.state is LoopState.DONE

    with pytest.raises(RuntimeError, match="done -> executing_tools"):
        stream.start_tools()


def test_tools_done_requires_executing_state(settings):
    stream = TurnStream(settings)
    with pytest.raises(RuntimeError, match="awaiting_model -> summarizing"):
        stream.tools_done()


# ---------------------------------------------------------------------------
# Thinking
# ---------------------------------------------------------------------------

def test_first_text_enters_thinking_and_buffers(settings):
    events = EventRecorder()
    stream = TurnStream(settings, events)

    stream.on_text("Let me ")
    stream.on_text("look.")

    assert stream.state is LoopState.THINKING
    assert events.events == [PhaseChanged(phase=Phase.THINKING)]


def test_thinking_without_tools_flushes_as_one_delta(settings):
    events = EventRecorder()
    stream = TurnStream(settings, events)
    stream.on_text("Just ")
    stream.on_text("an answer.")

    stream.finish_turn(has_tools=False)

    assert events.events[1:] == [TextDelta(text="Just an answer.")]
    assert stream.state is LoopState.DONE


def test_thinking_with_tools_streams_reasoning_chunks(settings):
    settings = settings.model_copy(update={"reasoning_chunk_size": 5})
    events = EventRecorder()
    stream = TurnStream(settings, events)
    stream.on_text("I will create it.")

    stream.finish_turn(has_tools=True)

    assert isinstance(events.events[1], ThinkingComplete)
    assert events.events[2] == PhaseChanged(phase=Phase.REASONING)
    assert [e.text for e in events.events[3:]] == ["I wil", "l cre", "ate i", "t."]
    assert all(isinstance(e, ReasoningDelta) for e in events.events[3:])
    assert stream.state is LoopState.REASONING


# ---------------------------------------------------------------------------
# Summaries and completion
# ---------------------------------------------------------------------------

def test_summary_turn_is_buffered_then_built(settings):
    events = EventRecorder()
    stream = TurnStream(settings, events)
    stream.finish_turn(has_tools=True)
    stream.start_tools()
    stream.tools_done()

    stream.on_text("All ")
    stream.on_text("done.")
    assert events.phases() == [Phase.CODE_WRITING]

    stream.finish_turn(has_tools=False)

    assert events.phases() == [Phase.CODE_WRITING, Phase.BUILDING]
    assert events.text() == "All done."
    assert stream.state is LoopState.DONE


def test_empty_summary_skips_building(settings):
    events = EventRecorder()
    stream = TurnStream(settings, events)
    stream.finish_turn(has_tools=True)
    stream.start_tools()
    stream.tools_done()

    stream.finish_turn(has_tools=False)

    assert Phase.BUILDING not in events.phases()
    assert stream.state is LoopState.DONE


def test_summary_turn_with_more_tools_goes_back_to_executing(settings):
    stream = TurnStream(settings)
    stream.finish_turn(has_tools=True)
    stream.start_tools()
    stream.tools_done()
    stream.on_text("narration")

    stream.finish_turn(has_tools=True)
    stream.start_tools()

    assert stream.state is LoopState.EXECUTING_TOOLS


def test_complete_emits_completed_then_usage(settings):
    events = EventRecorder()
    stream = TurnStream(settings, events)

    stream.complete(Usage(input_tokens=3, output_tokens=4))

    assert events.events[0] == PhaseChanged(phase=Phase.COMPLETED)
    assert (events.events[1].input_tokens, events.events[1].output_tokens) == (3, 4)


def test_sink_errors_propagate(settings):
    def broken(event):
        raise ValueError("observer exploded")

    stream = TurnStream(settings, broken)
    with pytest.raises(ValueError, match="observer exploded"):
        stream.on_text("hi")
