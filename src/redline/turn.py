"""Turn controller: drives one agent turn end to end.

A `ChatSession` owns the conversation, the turn-scoped change ledger and the
tool coordinator. `send` validates synchronously, then streams provider
events, executing tool calls serially in the order the provider emits them,
and finalizes the turn as completed, failed, or canceled.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from redline.config import RedlineConfig, default_config
from redline.coordinator import ToolCallRecord, ToolCoordinator, TurnContext
from redline.credentials import resolve_api_key
from redline.errors import (
    RedlineProviderError,
    RedlineTurnInProgressError,
    RedlineValidationError,
    TurnCancelled,
)
from redline.files import FileStore, LocalFileStore, OpenFileRegistry
from redline.hunks import render_change_set
from redline.ledger import ChangeLedger, ChangeRecord
from redline.providers import build_provider
from redline.providers.base import (
    CancelToken,
    ChatProvider,
    ChatRequest,
    Completed,
    ErrorEvent,
    ProviderMessage,
    StatusEvent,
    TextDelta,
    ToolResultEvent,
)
from redline.providers.shared import render_system_prompt
from redline.tools import ToolCall, ToolExecutionResult

logger = logging.getLogger("redline.turn")

PREPARING_STATUS = "Preparing request..."
FAILED_STATUS = "Failed."
CANCELED_STATUS = "Canceled."
ERROR_MARKER = "[error]"


class TurnState(enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    TOOL_CALL_PENDING = "tool_call_pending"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def active(self) -> bool:
        return self in (TurnState.STREAMING, TurnState.TOOL_CALL_PENDING, TurnState.FINALIZING)


@dataclass(slots=True)
class ChatMessage:
    role: Literal["user", "assistant"]
    content: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    change_count: int = 0
    can_view_diff: bool = False
    failed: bool = False


@dataclass(frozen=True, slots=True)
class TurnResult:
    state: TurnState
    message: ChatMessage | None
    changes: tuple[ChangeRecord, ...] = ()
    tool_results: tuple[ToolExecutionResult, ...] = ()
    error: str | None = None


DeltaCallback = Callable[[str], None]
StatusCallback = Callable[[str], None]
ToolResultCallback = Callable[[ToolExecutionResult], None]


class ChatSession:
    """One conversation against one project directory.

    Only one turn may be in flight at a time. The ledger persists after a turn
    ends so its diff stays viewable, and is cleared when the next turn starts,
    on `clear()`, or when another project is opened.
    """

    def __init__(
        self,
        provider: ChatProvider,
        store: FileStore,
        *,
        config: RedlineConfig | None = None,
        credential: str | None = None,
        project_path: str = "",
        open_files: OpenFileRegistry | None = None,
        system_template: str | None = None,
    ) -> None:
        self._provider = provider
        self._store = store
        self._config = config or default_config()
        self._credential = credential
        self._project_path = project_path
        self._open_files = open_files
        self._system_template = system_template
        self._coordinator = ToolCoordinator(
            store,
            open_files=open_files,
            read_preview_chars=self._config.turn.read_preview_chars,
        )

        self._ledger = ChangeLedger()
        self._messages: list[ChatMessage] = []
        self._state = TurnState.IDLE
        self._status: str | None = None
        self._last_error: str | None = None
        self._last_prompt: str | None = None
        self._change_set: tuple[ChangeRecord, ...] = ()
        self._cancel: CancelToken | None = None

    @classmethod
    def from_config(
        cls,
        root: Path,
        config: RedlineConfig,
        *,
        provider: ChatProvider | None = None,
        open_files: OpenFileRegistry | None = None,
    ) -> ChatSession:
        """Build a session over a local project directory."""
        store = LocalFileStore(
            blocked_segments=config.files.blocked_segments,
            allowed_extensions=config.files.allowed_extensions,
        )
        return cls(
            provider or build_provider(config.llm.provider),
            store,
            config=config,
            credential=resolve_api_key(config.llm.api_key_env, root=root),
            project_path=str(root),
            open_files=open_files,
        )

    # -- read-only surface ---------------------------------------------------

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def streaming(self) -> bool:
        return self._state.active

    @property
    def status(self) -> str | None:
        return self._status

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def last_prompt(self) -> str | None:
        return self._last_prompt

    @property
    def project_path(self) -> str:
        return self._project_path

    @property
    def change_set(self) -> tuple[ChangeRecord, ...]:
        return self._change_set

    @property
    def change_set_count(self) -> int:
        return len(self._change_set)

    def diff_text(self) -> str:
        return render_change_set(self._change_set, context_lines=self._config.diff.context_lines)

    # -- actions -------------------------------------------------------------

    def set_credential(self, credential: str | None) -> None:
        self._credential = credential

    def abort(self) -> None:
        if self._cancel is not None:
            self._cancel.cancel()

    def clear(self) -> None:
        self.abort()
        self._messages = []
        self._ledger.clear()
        self._change_set = ()
        self._last_error = None

    def open_project(self, path: str) -> None:
        """Switch projects; turn-scoped state never carries over."""
        self.abort()
        self._project_path = path
        self._ledger.clear()
        self._change_set = ()
        self._last_error = None

    async def retry(
        self,
        *,
        on_delta: DeltaCallback | None = None,
        on_status: StatusCallback | None = None,
        on_tool_result: ToolResultCallback | None = None,
    ) -> TurnResult:
        if not self._last_prompt:
            raise RedlineValidationError("There is no previous prompt to retry.")
        return await self.send(
            self._last_prompt,
            on_delta=on_delta,
            on_status=on_status,
            on_tool_result=on_tool_result,
        )

    async def send(
        self,
        text: str,
        *,
        on_delta: DeltaCallback | None = None,
        on_status: StatusCallback | None = None,
        on_tool_result: ToolResultCallback | None = None,
    ) -> TurnResult:
        """Run one turn. Validation failures raise before any state changes."""

        if not text.strip():
            raise RedlineValidationError("Prompt must not be empty.")
        if self.streaming:
            raise RedlineTurnInProgressError("A turn is already in progress.")
        if not (self._credential or "").strip():
            raise RedlineValidationError(
                f"{self._provider.display_name} API key is required to send chat messages."
            )

        cancel = CancelToken()
        self._cancel = cancel
        self._last_prompt = text
        self._last_error = None
        self._change_set = ()
        self._state = TurnState.STREAMING
        self._status = None
        self._set_status(PREPARING_STATUS, on_status)

        ctx = TurnContext.start(
            self._ledger, project_path=self._project_path, open_files=self._open_files
        )
        history = [
            ProviderMessage(m.role, m.content) for m in self._messages if m.content.strip()
        ]
        history.append(ProviderMessage("user", text))

        user = ChatMessage(role="user", content=text)
        assistant = ChatMessage(role="assistant")
        self._messages.extend([user, assistant])
        tool_results: list[ToolExecutionResult] = []

        async def handle_tool(call: ToolCall) -> ToolExecutionResult:
            cancel.raise_if_cancelled()
            self._state = TurnState.TOOL_CALL_PENDING
            try:
                outcome = await self._coordinator.run(call, ctx)
            finally:
                self._state = TurnState.STREAMING
            assistant.tool_calls.append(outcome.record)
            assistant.change_count = len(ctx.ledger)
            tool_results.append(outcome.result)
            return outcome.result

        logger.info(
            "turn start: provider=%s model=%s history=%d",
            self._provider.name,
            self._config.llm.model,
            len(history),
        )
        try:
            request = ChatRequest(
                model=self._config.llm.model,
                credential=self._credential or "",
                messages=history,
                system_prompt=await self._system_prompt(),
                max_tool_rounds=self._config.turn.max_tool_rounds,
                max_tokens=self._config.llm.max_tokens,
                timeout_s=self._config.turn.stream_timeout_s,
            )
            completed: Completed | None = None
            events = self._provider.stream(request, cancel=cancel, handle_tool=handle_tool)
            async with contextlib.aclosing(events) as stream:
                async for event in stream:
                    cancel.raise_if_cancelled()
                    if isinstance(event, TextDelta):
                        assistant.content += event.text
                        if on_delta is not None:
                            on_delta(event.text)
                    elif isinstance(event, StatusEvent):
                        self._set_status(event.status, on_status)
                    elif isinstance(event, ToolResultEvent):
                        if on_tool_result is not None:
                            on_tool_result(event.result)
                    elif isinstance(event, ErrorEvent):
                        raise RedlineProviderError(event.message)
                    elif isinstance(event, Completed):
                        completed = event
            cancel.raise_if_cancelled()
            if completed is None:
                raise RedlineProviderError("Provider stream ended without completing the turn.")
        except (TurnCancelled, asyncio.CancelledError) as exc:
            result = self._finish_canceled(user, assistant, tool_results, on_status)
            if isinstance(exc, asyncio.CancelledError):
                raise
            return result
        except Exception as exc:  # noqa: BLE001 - surfaced as the turn's error
            return self._finish_failed(assistant, tool_results, exc, on_status)
        finally:
            if self._cancel is cancel:
                self._cancel = None

        return self._finish_completed(assistant, tool_results, completed)

    # -- internals -----------------------------------------------------------

    def _set_status(self, status: str | None, callback: StatusCallback | None) -> None:
        if not status or status == self._status:
            return
        self._status = status
        if callback is not None:
            callback(status)

    async def _system_prompt(self) -> str:
        file_paths: list[str] = []
        if self._project_path:
            try:
                file_paths = await self._store.list_files(self._project_path)
            except Exception as exc:  # noqa: BLE001 - the file list is advisory
                logger.warning("Could not list project files for the system prompt: %s", exc)
        buffers: list[tuple[str, str]] = []
        if self._open_files is not None:
            for path in self._open_files.paths():
                buffers.append((path, self._open_files.get(path) or ""))
        return render_system_prompt(
            project_path=self._project_path,
            file_paths=file_paths,
            open_files=buffers,
            template=self._system_template,
        )

    def _snapshot(self, assistant: ChatMessage) -> tuple[ChangeRecord, ...]:
        snapshot = self._ledger.snapshot()
        self._change_set = snapshot
        assistant.change_count = len(snapshot)
        assistant.can_view_diff = bool(snapshot)
        return snapshot

    def _finish_completed(
        self,
        assistant: ChatMessage,
        tool_results: list[ToolExecutionResult],
        completed: Completed,
    ) -> TurnResult:
        self._state = TurnState.FINALIZING
        snapshot = self._snapshot(assistant)
        self._state = TurnState.COMPLETED
        self._status = None
        logger.info(
            "turn completed: rounds=%d tool_calls=%d changes=%d%s",
            completed.rounds,
            len(tool_results),
            len(snapshot),
            " (round limit)" if completed.hit_round_limit else "",
        )
        return TurnResult(
            state=TurnState.COMPLETED,
            message=assistant,
            changes=snapshot,
            tool_results=tuple(tool_results),
        )

    def _finish_canceled(
        self,
        user: ChatMessage,
        assistant: ChatMessage,
        tool_results: list[ToolExecutionResult],
        on_status: StatusCallback | None,
    ) -> TurnResult:
        snapshot = self._snapshot(assistant)
        kept: ChatMessage | None = assistant
        if not assistant.content.strip() and not assistant.tool_calls:
            # Nothing observable happened: leave history as it was before send().
            self._remove(assistant)
            self._remove(user)
            kept = None
        self._state = TurnState.CANCELED
        self._set_status(CANCELED_STATUS, on_status)
        logger.info("turn canceled: changes=%d", len(snapshot))
        return TurnResult(
            state=TurnState.CANCELED,
            message=kept,
            changes=snapshot,
            tool_results=tuple(tool_results),
        )

    def _finish_failed(
        self,
        assistant: ChatMessage,
        tool_results: list[ToolExecutionResult],
        exc: BaseException,
        on_status: StatusCallback | None,
    ) -> TurnResult:
        message = (str(exc) or type(exc).__name__).strip()
        snapshot = self._snapshot(assistant)
        marker = f"{ERROR_MARKER} {message}"
        assistant.content = f"{assistant.content}\n\n{marker}" if assistant.content else marker
        assistant.failed = True
        self._last_error = message
        self._state = TurnState.FAILED
        self._set_status(FAILED_STATUS, on_status)
        logger.info("turn failed: %s", message)
        logger.debug("turn failure detail", exc_info=exc)
        return TurnResult(
            state=TurnState.FAILED,
            message=assistant,
            changes=snapshot,
            tool_results=tuple(tool_results),
            error=message,
        )

    def _remove(self, message: ChatMessage) -> None:
        # clear() may have replaced the list while the turn was winding down.
        if message in self._messages:
            self._messages.remove(message)
