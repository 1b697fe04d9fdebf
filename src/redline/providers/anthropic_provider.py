from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from redline.errors import RedlineConfigError, RedlineProviderError
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
    until_cancelled,
)
from redline.providers.shared import as_plain_dict, tool_status, with_retry
from redline.tools import ToolCall, anthropic_tool_schemas

logger = logging.getLogger("redline.providers.anthropic")


@dataclass(slots=True)
class _RoundState:
    message: Any = None


def _content_param(block: Any) -> dict[str, Any] | None:
    """Convert a response content block into a request content block."""
    btype = getattr(block, "type", None)
    if btype == "text":
        text = getattr(block, "text", "")
        return {"type": "text", "text": text} if text else None
    if btype == "tool_use":
        return {
            "type": "tool_use",
            "id": block.id,
            "name": block.name,
            "input": as_plain_dict(block.input),
        }
    return None


class AnthropicProvider(ChatProvider):
    """Streaming chat provider over the Anthropic Messages API."""

    name = "anthropic"
    display_name = "Claude"

    def __init__(self) -> None:
        try:
            from anthropic import AsyncAnthropic  # type: ignore[import-untyped]
        except ImportError as e:
            raise RedlineConfigError(
                "The 'anthropic' package is required for provider='anthropic'. "
                "Install it with: pip install anthropic"
            ) from e
        self._client_cls: Any = AsyncAnthropic
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
        state.message = None
        kwargs: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "messages": messages,
            "tools": anthropic_tool_schemas(),
        }
        if request.system_prompt.strip():
            kwargs["system"] = request.system_prompt

        async with client.messages.stream(**kwargs) as stream:
            async for event in cancellable(stream, cancel):
                etype = getattr(event, "type", None)
                if etype == "content_block_delta":
                    delta = event.delta
                    if getattr(delta, "type", None) == "text_delta" and delta.text:
                        yield TextDelta(delta.text)
                        yield StatusEvent("Writing response...")
                    elif getattr(delta, "type", None) == "thinking_delta":
                        yield StatusEvent("Analyzing request...")
                elif etype == "content_block_start":
                    block_type = getattr(event.content_block, "type", None)
                    if block_type == "thinking":
                        yield StatusEvent("Analyzing request...")
            state.message = await until_cancelled(stream.get_final_message(), cancel)

    async def stream(
        self,
        request: ChatRequest,
        *,
        cancel: CancelToken,
        handle_tool: ToolHandler,
    ) -> AsyncIterator[ProviderEvent]:
        client = self._client(request)
        max_rounds = max(1, int(request.max_tool_rounds))
        messages: list[dict[str, Any]] = [
            {"role": m.role, "content": m.content} for m in request.messages
        ]

        yield StatusEvent("Connecting to Claude...")
        rounds = 0
        while True:
            rounds += 1
            cancel.raise_if_cancelled()
            yield StatusEvent("Thinking..." if rounds == 1 else "Planning next step...")

            state = _RoundState()
            async for event in with_retry(
                lambda: self._round(client, request, messages, state, cancel),
                cancel,
                label="Anthropic",
            ):
                yield event

            final = state.message
            if final is None:
                raise RedlineProviderError("Anthropic stream ended without a final message.")

            blocks = list(getattr(final, "content", None) or [])
            tool_uses = [b for b in blocks if getattr(b, "type", None) == "tool_use"]
            if not tool_uses:
                yield StatusEvent("Done.")
                yield Completed(rounds=rounds)
                return

            yield StatusEvent("Processing step result...")
            assistant_content = [p for p in map(_content_param, blocks) if p is not None]
            messages.append({"role": "assistant", "content": assistant_content})

            tool_results: list[dict[str, Any]] = []
            for block in tool_uses:
                call = ToolCall(id=block.id, name=block.name, input=as_plain_dict(block.input))
                yield StatusEvent(tool_status(call.name, call.input))
                yield ToolCallEvent(call)
                result = await handle_tool(call)
                yield ToolResultEvent(result)
                yield StatusEvent(f"Finished {call.name}.")
                tool_results.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": call.id,
                        "content": result.output,
                        "is_error": not result.ok,
                    }
                )
            messages.append({"role": "user", "content": tool_results})

            if rounds >= max_rounds:
                logger.info("Anthropic turn stopped after %d tool rounds", rounds)
                yield StatusEvent("Tool round limit reached.")
                yield Completed(rounds=rounds, hit_round_limit=True)
                return
