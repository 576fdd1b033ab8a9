# run.py
# Entry point. Config and wiring only, no logic lives here.
#
# Swap the model with BUILDLOOP_MODEL for any OpenRouter-supported model.
# https://openrouter.ai/models

import argparse
import logging
import sys
from pathlib import Path

from buildloop import display
from buildloop.agent import Agent
from buildloop.config import AgentSettings
from buildloop.file_tools import default_executors
from buildloop.models import BuildloopError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="buildloop", description="Run one request through the coding agent.")
    parser.add_argument("prompt", help="What the agent should build or change.")
    parser.add_argument("--dry-run", action="store_true", help="Describe tool calls instead of running them.")
    parser.add_argument("--workspace", type=Path, help="Project directory the tools may touch.")
    parser.add_argument("--max-turns", type=int, help="Upper bound on model round-trips.")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    overrides = {}
    if args.dry_run:
        overrides["dry_run"] = True
    if args.workspace is not None:
        overrides["workspace"] = args.workspace
    if args.max_turns is not None:
        overrides["max_turns"] = args.max_turns

    try:
        settings = AgentSettings.from_env(**overrides)
    except BuildloopError as exc:
        display.request_failed(str(exc))
        return 2

    display.configure_logging(settings.log_level)
    display.banner(settings.model, str(settings.workspace), settings.dry_run)

    agent = Agent(settings, default_executors())
    display.prompt_received(args.prompt)

    try:
        result = agent.process_request(args.prompt, on_event=display.ConsoleObserver())
    except Exception as exc:
        logger.exception("Request failed")
        display.request_failed(str(exc))
        return 1
    finally:
        agent.save_transcript()

    display.final_result(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
