from unittest.mock import MagicMock, patch

from rich.panel import Panel
from rich.text import Text

from buildloop import display, run
from buildloop.events import FileOperation, PhaseChanged, TextDelta, ToolFinished
from buildloop.models import Phase


@patch("buildloop.run.display")
@patch("buildloop.run.Agent")
@patch("buildloop.run.AgentSettings")
def test_main_wires_settings_agent_and_observer(settings_cls, agent_cls, mock_display, tmp_path):
    agent = agent_cls.return_value
    agent.process_request.return_value = "All done."

    code = run.main(["build a page", "--dry-run", "--workspace", str(tmp_path), "--max-turns", "4"])

    assert code == 0
    settings_cls.from_env.assert_called_once_with(dry_run=True, workspace=tmp_path, max_turns=4)
    agent.process_request.assert_called_once()
    assert agent.process_request.call_args.args == ("build a page",)
    mock_display.final_result.assert_called_once_with("All done.")
    agent.save_transcript.assert_called_once()


@patch("buildloop.run.display")
@patch("buildloop.run.Agent")
@patch("buildloop.run.AgentSettings")
def test_main_reports_failures(settings_cls, agent_cls, mock_display):
    agent_cls.return_value.process_request.side_effect = RuntimeError("model unreachable")

    code = run.main(["hi"])

    assert code == 1
    mock_display.request_failed.assert_called_once_with("model unreachable")
    mock_display.final_result.assert_not_called()


def test_console_observer_renders_events():
    with patch.object(display, "console", MagicMock()) as console:
        observer = display.ConsoleObserver()
        observer(PhaseChanged(phase=Phase.CODE_WRITING))
        observer(TextDelta(text="hello"))
        observer(FileOperation(state="creating", path="src/App.tsx"))
        observer(ToolFinished(name="either-view", tool_use_id="t1", is_error=True))

    printed = " ".join(str(arg) for call in console.print.call_args_list for arg in call.args)
    assert "Writing code" in printed
    assert "hello" in printed
    assert "src/App.tsx" in printed
    assert "either-view failed" in printed


def test_prompts_and_errors_are_shown_literally():
    with patch.object(display, "console", MagicMock()) as console:
        display.prompt_received("make [bold]this[/bold] work")
        display.request_failed("bad key [red]")
        display.file_operation("creating", "src/[id].tsx")

    panels = [arg for call in console.print.call_args_list for arg in call.args if isinstance(arg, Panel)]
    bodies = [panel.renderable for panel in panels]
    assert all(isinstance(body, Text) for body in bodies)
    assert [body.plain for body in bodies] == ["make [bold]this[/bold] work", "bad key [red]"]

    rendered = Text.from_markup(console.print.call_args_list[-1].args[0]).plain
    assert "src/[id].tsx" in rendered
