"""Tool execution for one agent turn.

`ToolCoordinator.execute` applies the read-before-write policy, performs the
file I/O through a `FileStore`, mirrors writes into open buffers, and feeds
net changes to the turn's `ChangeLedger`. It never raises: every failure is
reported back to the model as an `ok=False` result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from redline.files import FileStore, OpenFileRegistry
from redline.ledger import ChangeLedger
from redline.paths import normalize_tool_path
from redline.tools import (
    DeleteFileInput,
    ReadFileInput,
    ToolCall,
    ToolExecutionResult,
    WriteFileInput,
    as_supported_tool_name,
    parse_tool_input,
)

logger = logging.getLogger("redline.coordinator")

DEFAULT_READ_PREVIEW_CHARS = 4000
CACHED_PREVIEW_CHARS = 600

NO_PROJECT_MESSAGE = "No active project is open."
READ_CACHE_HIT_MESSAGE = (
    "File already read earlier in this turn. "
    "Reuse the previously returned contents and proceed with targeted edits."
)


def truncate_output(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}\n\n... [truncated {len(text) - limit} chars]"


def write_refusal_message(path: str) -> str:
    return (
        f'Refusing to overwrite existing file "{path}" before it is read. '
        "Call read_file for this path first, then write_file with minimal targeted edits."
    )


@dataclass(frozen=True, slots=True)
class ToolCallRecord:
    """What a tool call did, as shown alongside the assistant message."""

    id: str
    name: str
    path: str
    ok: bool
    output: str
    preview: str | None = None


@dataclass(slots=True)
class TurnContext:
    """Turn-scoped state shared by every tool call of one turn."""

    ledger: ChangeLedger
    project_path: str
    inspected: set[str] = field(default_factory=set)
    read_cache: dict[str, str] = field(default_factory=dict)

    @classmethod
    def start(
        cls,
        ledger: ChangeLedger,
        *,
        project_path: str,
        open_files: OpenFileRegistry | None = None,
    ) -> TurnContext:
        """Reset the ledger and seed the inspected set from open buffers."""
        ledger.clear()
        inspected: set[str] = set()
        if open_files is not None:
            inspected = {p for p in map(normalize_tool_path, open_files.paths()) if p}
        return cls(ledger=ledger, project_path=project_path, inspected=inspected)


@dataclass(frozen=True, slots=True)
class ToolOutcome:
    result: ToolExecutionResult
    record: ToolCallRecord


class ToolCoordinator:
    def __init__(
        self,
        store: FileStore,
        *,
        open_files: OpenFileRegistry | None = None,
        read_preview_chars: int = DEFAULT_READ_PREVIEW_CHARS,
    ) -> None:
        self._store = store
        self._open_files = open_files
        self._read_preview_chars = read_preview_chars

    async def execute(self, call: ToolCall, ctx: TurnContext) -> ToolExecutionResult:
        return (await self.run(call, ctx)).result

    async def run(self, call: ToolCall, ctx: TurnContext) -> ToolOutcome:
        raw_path = call.input.get("path") if isinstance(call.input, dict) else None
        display_path = raw_path.strip() if isinstance(raw_path, str) else ""
        content = call.input.get("content") if isinstance(call.input, dict) else None
        write_preview = content if call.name == "write_file" and isinstance(content, str) else None

        def fail(message: str, preview: str | None = write_preview) -> ToolOutcome:
            logger.debug("tool %s (%s) failed: %s", call.name, display_path, message)
            return self._outcome(call, display_path, False, message, message, preview)

        if as_supported_tool_name(call.name) is None:
            return fail(f"Unsupported tool call: {call.name}")

        parsed = parse_tool_input(call.name, call.input)
        if parsed is None:
            return fail(f"Invalid {call.name} tool input.")

        if not ctx.project_path.strip():
            return fail(NO_PROJECT_MESSAGE)

        try:
            if isinstance(parsed, ReadFileInput):
                return await self._read(call, parsed, ctx)
            if isinstance(parsed, WriteFileInput):
                return await self._write(call, parsed, ctx)
            if isinstance(parsed, DeleteFileInput):
                return await self._delete(call, parsed, ctx)
        except Exception as exc:  # noqa: BLE001 - reported to the model, never raised
            return fail((str(exc) or repr(exc)).strip())

        return fail(f"Unsupported tool call: {call.name}")

    def _outcome(
        self,
        call: ToolCall,
        path: str,
        ok: bool,
        output: str,
        summary: str,
        preview: str | None,
    ) -> ToolOutcome:
        return ToolOutcome(
            result=ToolExecutionResult(tool_call_id=call.id, name=call.name, ok=ok, output=output),
            record=ToolCallRecord(
                id=call.id, name=call.name, path=path, ok=ok, output=summary, preview=preview
            ),
        )

    async def _read(self, call: ToolCall, inp: ReadFileInput, ctx: TurnContext) -> ToolOutcome:
        key = normalize_tool_path(inp.path)
        cached = ctx.read_cache.get(key)
        if cached is not None:
            logger.debug("read_file %s served from turn cache", key)
            return self._outcome(
                call,
                inp.path,
                True,
                READ_CACHE_HIT_MESSAGE,
                f"Read {inp.path} from cache ({len(cached)} chars)",
                (
                    f"{cached[:CACHED_PREVIEW_CHARS]}\n\n... [cached preview truncated]"
                    if len(cached) > CACHED_PREVIEW_CHARS
                    else cached
                ),
            )

        content = await self._store.read(ctx.project_path, key)
        if content is None:
            return self._outcome(
                call, inp.path, False, f"File not found: {inp.path}", "File not found", None
            )

        ctx.read_cache[key] = content
        ctx.inspected.add(key)
        logger.debug("read_file %s (%d chars)", key, len(content))
        truncated = truncate_output(content, self._read_preview_chars)
        return self._outcome(
            call,
            inp.path,
            True,
            truncated,
            f"Read {inp.path} ({len(content)} chars)",
            truncate_output(content, DEFAULT_READ_PREVIEW_CHARS),
        )

    async def _write(self, call: ToolCall, inp: WriteFileInput, ctx: TurnContext) -> ToolOutcome:
        key = normalize_tool_path(inp.path)
        before = await self._store.read(ctx.project_path, key)
        if before is not None and key not in ctx.inspected:
            message = write_refusal_message(inp.path)
            logger.debug("write_file %s refused: not inspected this turn", key)
            return self._outcome(call, inp.path, False, message, message, inp.content)

        await self._store.write(ctx.project_path, key, inp.content)
        ctx.inspected.add(key)
        # A later read must see the new content rather than the cached copy.
        ctx.read_cache.pop(key, None)
        if self._open_files is not None:
            self._open_files.replace(key, inp.content)
        ctx.ledger.record(key, before, inp.content)
        logger.debug("write_file %s (%d chars)", key, len(inp.content))

        output = f"Wrote {inp.path}"
        return self._outcome(call, inp.path, True, output, output, inp.content)

    async def _delete(self, call: ToolCall, inp: DeleteFileInput, ctx: TurnContext) -> ToolOutcome:
        key = normalize_tool_path(inp.path)
        before = await self._store.read(ctx.project_path, key)
        await self._store.delete(ctx.project_path, key)
        ctx.read_cache.pop(key, None)
        if self._open_files is not None:
            self._open_files.close(key)
        ctx.ledger.record(key, before, None)
        logger.debug("delete_file %s", key)

        output = f"Deleted {inp.path}"
        return self._outcome(call, inp.path, True, output, output, None)
