from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from redline.errors import RedlineConfigError
from redline.providers.base import (
    CancelToken,
    ChatProvider,
    ChatRequest,
    Completed,
    ProviderEvent,
    StatusEvent,
    TextDelta,
    ToolCallEvent,
    ToolHandler,
    ToolResultEvent,
    cancellable,
)
from redline.providers.shared import tool_status, with_retry
from redline.tools import ToolCall, openai_tool_schemas

logger = logging.getLogger("redline.providers.openai")


@dataclass(slots=True)
class _PendingToolCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


@dataclass(slots=True)
class _RoundState:
    text: str = ""
    tool_calls: dict[int, _PendingToolCall] = field(default_factory=dict)

    def reset(self) -> None:
        self.text = ""
        self.tool_calls = {}


def _parse_arguments(raw: str) -> dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Discarding malformed tool arguments: %r", raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAIProvider(ChatProvider):
    """Streaming chat provider over the OpenAI Chat Completions API."""

    name = "openai"
    display_name = "OpenAI"

    def __init__(self) -> None:
        try:
            from openai import AsyncOpenAI
        except ImportError as e:
            raise RedlineConfigError(
                "The 'openai' package is required for provider='openai'. "
                "Install it with: pip install openai"
            ) from e
        self._client_cls: Any = AsyncOpenAI
        self._clients: dict[tuple[str, float], Any] = {}

    def _client(self, request: ChatRequest) -> Any:
        key = (request.credential, request.timeout_s)
        client = self._clients.get(key)
        if client is None:
            client = self._client_cls(api_key=request.credential, timeout=request.timeout_s)
            self._clients[key] = client
        return client

    async def _round(
        self,
        client: Any,
        request: ChatRequest,
        messages: list[dict[str, Any]],
        state: _RoundState,
        cancel: CancelToken,
    ) -> AsyncIterator[ProviderEvent]:
        state.reset()
        stream: Any = await client.chat.completions.create(
            model=request.model,
            messages=messages,
            tools=openai_tool_schemas(),
            tool_choice="auto",
            max_completion_tokens=request.max_tokens,
            stream=True,
        )
        try:
            async for chunk in cancellable(stream, cancel):
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                delta = choices[0].delta
                text = getattr(delta, "content", None)
                if text:
                    state.text += text
                    yield TextDelta(text)
                    yield StatusEvent("Writing response...")
                for tc in getattr(delta, "tool_calls", None) or []:
                    pending = state.tool_calls.setdefault(int(tc.index or 0), _PendingToolCall())
                    if tc.id:
                        pending.id = tc.id
                    fn = getattr(tc, "function", None)
                    if fn is not None:
                        if fn.name:
                            pending.name = fn.name
                        if fn.arguments:
                            pending.arguments += fn.arguments
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                await close()

    async def stream(
        self,
        request: ChatRequest,
        *,
        cancel: CancelToken,
        handle_tool: ToolHandler,
    ) -> AsyncIterator[ProviderEvent]:
        client = self._client(request)
        max_rounds = max(1, int(request.max_tool_rounds))
        messages: list[dict[str, Any]] = []
        if request.system_prompt.strip():
            messages.append({"role": "system", "content": request.system_prompt})
        messages.extend({"role": m.role, "content": m.content} for m in request.messages)

        yield StatusEvent("Connecting to OpenAI...")
        rounds = 0
        while True:
            rounds += 1
            cancel.raise_if_cancelled()
            yield StatusEvent("Thinking..." if rounds == 1 else "Planning next step...")

            state = _RoundState()
            async for event in with_retry(
                lambda: self._round(client, request, messages, state, cancel),
                cancel,
                label="OpenAI",
            ):
                yield event

            pending = [state.tool_calls[i] for i in sorted(state.tool_calls)]
            if not pending:
                yield StatusEvent("Done.")
                yield Completed(rounds=rounds)
                return

            for i, p in enumerate(pending):
                if not p.id:
                    p.id = f"call_{rounds}_{i}"

            yield StatusEvent("Processing step result...")
            messages.append(
                {
                    "role": "assistant",
                    "content": state.text or None,
                    "tool_calls": [
                        {
                            "id": p.id,
                            "type": "function",
                            "function": {"name": p.name, "arguments": p.arguments or "{}"},
                        }
                        for p in pending
                    ],
                }
            )

            for p in pending:
                call = ToolCall(id=p.id, name=p.name, input=_parse_arguments(p.arguments))
                yield StatusEvent(tool_status(call.name, call.input))
                yield ToolCallEvent(call)
                result = await handle_tool(call)
                yield ToolResultEvent(result)
                yield StatusEvent(f"Finished {call.name}.")
                messages.append({"role": "tool", "tool_call_id": call.id, "content": result.output})

            if rounds >= max_rounds:
                logger.info("OpenAI turn stopped after %d tool rounds", rounds)
                yield StatusEvent("Tool round limit reached.")
                yield Completed(rounds=rounds, hit_round_limit=True)
                return
