from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Literal, TypeVar

from redline.errors import TurnCancelled
from redline.tools import ToolCall, ToolExecutionResult

T = TypeVar("T")

DEFAULT_MAX_TOOL_ROUNDS = 8
DEFAULT_MAX_TOKENS = 8192
DEFAULT_STREAM_TIMEOUT_S = 90.0


@dataclass(frozen=True, slots=True)
class ProviderMessage:
    role: Literal["user", "assistant"]
    content: str


@dataclass(frozen=True, slots=True)
class ChatRequest:
    model: str
    credential: str
    messages: list[ProviderMessage]
    system_prompt: str = ""
    max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS
    max_tokens: int = DEFAULT_MAX_TOKENS
    timeout_s: float = DEFAULT_STREAM_TIMEOUT_S


@dataclass(frozen=True, slots=True)
class TextDelta:
    text: str


@dataclass(frozen=True, slots=True)
class StatusEvent:
    status: str


@dataclass(frozen=True, slots=True)
class ToolCallEvent:
    call: ToolCall


@dataclass(frozen=True, slots=True)
class ToolResultEvent:
    result: ToolExecutionResult


@dataclass(frozen=True, slots=True)
class Completed:
    rounds: int
    hit_round_limit: bool = False


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    message: str


ProviderEvent = TextDelta | StatusEvent | ToolCallEvent | ToolResultEvent | Completed | ErrorEvent

ToolHandler = Callable[[ToolCall], Awaitable[ToolExecutionResult]]


@dataclass(slots=True)
class CancelToken:
    """Cooperative cancellation flag shared by a turn and its provider stream."""

    _event: asyncio.Event = field(default_factory=asyncio.Event)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelled("turn canceled")

    async def wait(self) -> None:
        await self._event.wait()


async def until_cancelled(aw: Awaitable[T], cancel: CancelToken) -> T:
    """Await `aw`, abandoning it with `TurnCancelled` as soon as `cancel` fires.

    The wrapped awaitable never outlives this call: it is cancelled when the
    token fires and also when the caller itself is cancelled.
    """

    cancel.raise_if_cancelled()
    task = asyncio.ensure_future(aw)
    stopper = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopper.cancel()
        if not task.done():
            task.cancel()
    if task not in done:
        raise TurnCancelled("turn canceled")
    return task.result()


async def cancellable(source: AsyncIterable[T], cancel: CancelToken) -> AsyncIterator[T]:
    """Iterate `source`, checking `cancel` at every network read."""

    it = aiter(source)
    while True:
        try:
            item = await until_cancelled(anext(it), cancel)
        except StopAsyncIteration:
            return
        yield item


class ChatProvider(ABC):
    """Streams one agent turn, round-tripping tool calls through `handle_tool`.

    Implementations yield events in provider order and call `handle_tool`
    sequentially, one call at a time, between generation rounds. At most
    `request.max_tool_rounds` generation rounds are issued per turn.
    """

    name: str = ""
    display_name: str = ""

    @abstractmethod
    def stream(
        self,
        request: ChatRequest,
        *,
        cancel: CancelToken,
        handle_tool: ToolHandler,
    ) -> AsyncIterator[ProviderEvent]:
        """Yield the turn's events, ending with `Completed`."""
