# llm.py
# Model client: one streamed chat-completions round-trip per call.
#
# Talks to any OpenAI-compatible endpoint (OpenRouter by default) through the
# openai SDK, and translates between the chat wire format and the content
# blocks the loop works with. API errors propagate to the caller untouched.

import json
import logging
from collections.abc import Callable, Sequence
from typing import Any, Protocol

from openai import OpenAI

from buildloop.config import AgentSettings, WebSearchConfig
from buildloop.models import (
    ContentBlock,
    Message,
    ModelResponse,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)

logger = logging.getLogger(__name__)

# Sent for assistant turns with neither text nor tool calls.
EMPTY_TURN_PLACEHOLDER = "..."

STOP_REASONS = {
    "tool_calls": "tool_use",
    "function_call": "tool_use",
    "stop": "end_turn",
    "length": "max_tokens",
}


class ModelClient(Protocol):
    def send_message(
        self,
        history: Sequence[Message],
        system_prompt: str,
        tools: Sequence[dict[str, Any]],
        on_delta: Callable[[str], None] | None = None,
        web_search: WebSearchConfig | None = None,
    ) -> ModelResponse: ...


# ---------------------------------------------------------------------------
# Wire-format conversion
# ---------------------------------------------------------------------------


def to_chat_tools(definitions: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": d["name"],
                "description": d.get("description", ""),
                "parameters": d.get("input_schema", {"type": "object", "properties": {}}),
            },
        }
        for d in definitions
    ]


def to_chat_messages(history: Sequence[Message], system_prompt: str) -> list[dict[str, Any]]:
    """
    Flatten block-structured history into chat messages.

    Tool results become role "tool" messages ahead of any user text in the
    same message. Thinking and server-side blocks are not replayed.
    """
    messages: list[dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    for msg in history:
        texts = [b.text for b in msg.content if isinstance(b, TextBlock)]

        if msg.role == "user":
            for block in msg.content:
                if isinstance(block, ToolResultBlock):
                    messages.append({"role": "tool", "tool_call_id": block.tool_use_id, "content": block.content})
            if texts:
                messages.append({"role": "user", "content": "\n".join(texts)})
            continue

        tool_calls = [
            {
                "id": b.id,
                "type": "function",
                "function": {"name": b.name, "arguments": json.dumps(b.input)},
            }
            for b in msg.content
            if isinstance(b, ToolUseBlock)
        ]
        entry: dict[str, Any] = {"role": "assistant", "content": "\n".join(texts) if texts else None}
        if tool_calls:
            entry["tool_calls"] = tool_calls
        elif not texts:
            entry["content"] = EMPTY_TURN_PLACEHOLDER
        messages.append(entry)

    return messages


def web_search_options(config: WebSearchConfig | None) -> dict[str, Any] | None:
    """OpenRouter's web plugin. Domain filters have no equivalent there and are dropped."""
    if config is None or not config.enabled:
        return None
    plugin: dict[str, Any] = {"id": "web"}
    if config.max_uses:
        plugin["max_results"] = config.max_uses
    return {"plugins": [plugin]}


def _parse_arguments(raw: str, name: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Could not parse arguments for tool %s; passing them through raw", name)
        return {"_raw_arguments": raw}
    return parsed if isinstance(parsed, dict) else {"value": parsed}


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class OpenAIModelClient:
    """
    Streaming chat-completions client.

    Example:
        client = OpenAIModelClient.from_settings(AgentSettings.from_env())
        response = client.send_message(history, system_prompt, runner.definitions())
    """

    def __init__(
        self,
        model: str,
        *,
        client: OpenAI | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.2,
    ) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._client = client or OpenAI(base_url=base_url, api_key=api_key)

    @classmethod
    def from_settings(cls, settings: AgentSettings) -> "OpenAIModelClient":
        return cls(
            settings.model,
            base_url=settings.api_base_url,
            api_key=settings.api_key,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
        )

    def send_message(
        self,
        history: Sequence[Message],
        system_prompt: str,
        tools: Sequence[dict[str, Any]],
        on_delta: Callable[[str], None] | None = None,
        web_search: WebSearchConfig | None = None,
    ) -> ModelResponse:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": to_chat_messages(history, system_prompt),
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            kwargs["tools"] = to_chat_tools(tools)
        extra = web_search_options(web_search)
        if extra:
            kwargs["extra_body"] = extra

        logger.debug("Calling %s with %d messages", self._model, len(kwargs["messages"]))
        stream = self._client.chat.completions.create(**kwargs)

        text = ""
        reasoning = ""
        calls: dict[int, dict[str, str]] = {}
        finish_reason: str | None = None
        usage = Usage()

        for chunk in stream:
            if getattr(chunk, "usage", None):
                usage = Usage(
                    input_tokens=chunk.usage.prompt_tokens or 0,
                    output_tokens=chunk.usage.completion_tokens or 0,
                )
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta

            if delta is not None:
                thought = getattr(delta, "reasoning", None)
                if thought:
                    reasoning += thought
                if delta.content:
                    text += delta.content
                    if on_delta:
                        on_delta(delta.content)
                for tc in delta.tool_calls or []:
                    slot = calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                    if tc.id:
                        slot["id"] = tc.id
                    if tc.function:
                        if tc.function.name:
                            slot["name"] = tc.function.name
                        if tc.function.arguments:
                            slot["arguments"] += tc.function.arguments

            if choice.finish_reason:
                finish_reason = choice.finish_reason

        content: list[ContentBlock] = []
        if reasoning:
            content.append(ThinkingBlock(thinking=reasoning))
        if text:
            content.append(TextBlock(text=text))
        for index in sorted(calls):
            slot = calls[index]
            content.append(
                ToolUseBlock(
                    id=slot["id"] or f"call_{index}",
                    name=slot["name"],
                    input=_parse_arguments(slot["arguments"], slot["name"]),
                )
            )

        return ModelResponse(
            content=content,
            usage=usage,
            stop_reason=STOP_REASONS.get(finish_reason, finish_reason),
        )
