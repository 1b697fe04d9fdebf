"""Tests for the Anthropic streaming provider against a scripted fake client."""

from __future__ import annotations

import asyncio
import copy
import sys
from types import SimpleNamespace

import pytest

from redline.errors import RedlineConfigError
from redline.providers.base import (
    CancelToken,
    ChatRequest,
    Completed,
    ProviderMessage,
    TextDelta,
    ToolCallEvent,
    ToolResultEvent,
)
from redline.tools import ToolExecutionResult

anthropic = pytest.importorskip("anthropic", reason="anthropic SDK not installed")


def _text_event(text: str) -> SimpleNamespace:
    return SimpleNamespace(
        type="content_block_delta", delta=SimpleNamespace(type="text_delta", text=text)
    )


def _text_block(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="text", text=text)


def _tool_block(block_id: str, name: str, inp: dict) -> SimpleNamespace:
    return SimpleNamespace(type="tool_use", id=block_id, name=name, input=inp)


class _FakeStream:
    def __init__(self, events: list, final: SimpleNamespace) -> None:
        self._events = events
        self._final = final

    async def __aenter__(self) -> _FakeStream:
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for event in self._events:
            yield event

    async def get_final_message(self) -> SimpleNamespace:
        return self._final


class _FakeClient:
    def __init__(self, rounds: list[tuple[list, list]]) -> None:
        self.rounds = list(rounds)
        self.calls: list[dict] = []
        self.messages = SimpleNamespace(stream=self._stream)

    def _stream(self, **kwargs):
        self.calls.append(copy.deepcopy(kwargs))
        events, blocks = self.rounds.pop(0)
        return _FakeStream(events, SimpleNamespace(content=blocks))


def _provider(client: _FakeClient):
    from redline.providers.anthropic_provider import AnthropicProvider

    provider = AnthropicProvider()
    provider._client_cls = lambda **_kw: client
    return provider


def _request(**kw) -> ChatRequest:
    kw.setdefault("model", "claude-test")
    kw.setdefault("credential", "sk-ant")
    kw.setdefault("messages", [ProviderMessage("user", "edit a.txt")])
    kw.setdefault("system_prompt", "be careful")
    return ChatRequest(**kw)


async def _ok_tool(call):
    return ToolExecutionResult(tool_call_id=call.id, name=call.name, ok=True, output="file body")


def _run(provider, request, handler=_ok_tool) -> list:
    async def go():
        return [
            e
            async for e in provider.stream(request, cancel=CancelToken(), handle_tool=handler)
        ]

    return asyncio.run(go())


def test_tool_round_trip() -> None:
    client = _FakeClient(
        [
            (
                [_text_event("Reading.")],
                [_text_block("Reading."), _tool_block("tu1", "read_file", {"path": "a.txt"})],
            ),
            ([_text_event("All done.")], [_text_block("All done.")]),
        ]
    )
    events = _run(_provider(client), _request())

    texts = [e.text for e in events if isinstance(e, TextDelta)]
    assert texts == ["Reading.", "All done."]
    calls = [e.call for e in events if isinstance(e, ToolCallEvent)]
    assert [(c.id, c.name, c.input) for c in calls] == [("tu1", "read_file", {"path": "a.txt"})]
    assert sum(isinstance(e, ToolResultEvent) for e in events) == 1
    assert events[-1] == Completed(rounds=2)

    first, second = client.calls
    assert first["system"] == "be careful"
    assert [t["name"] for t in first["tools"]] == ["read_file", "write_file", "delete_file"]
    assistant, tool_msg = second["messages"][-2:]
    assert assistant["role"] == "assistant"
    assert assistant["content"][1]["type"] == "tool_use"
    assert tool_msg == {
        "role": "user",
        "content": [
            {
                "type": "tool_result",
                "tool_use_id": "tu1",
                "content": "file body",
                "is_error": False,
            }
        ],
    }


def test_round_limit_ends_turn() -> None:
    client = _FakeClient(
        [([], [_tool_block("tu1", "read_file", {"path": "a.txt"})])],
    )
    events = _run(_provider(client), _request(max_tool_rounds=1))
    assert events[-1] == Completed(rounds=1, hit_round_limit=True)
    assert len(client.calls) == 1


def test_client_is_cached_per_credential() -> None:
    from redline.providers.anthropic_provider import AnthropicProvider

    made: list[dict] = []
    provider = AnthropicProvider()
    provider._client_cls = lambda **kw: made.append(kw) or object()
    a = provider._client(_request())
    b = provider._client(_request())
    c = provider._client(_request(credential="other"))
    assert a is b
    assert a is not c
    assert made[0]["api_key"] == "sk-ant"


def test_errors_when_package_missing(monkeypatch) -> None:
    monkeypatch.setitem(sys.modules, "anthropic", None)
    from redline.providers.anthropic_provider import AnthropicProvider

    with pytest.raises(RedlineConfigError, match="'anthropic' package is required"):
        AnthropicProvider()
