"""Shared utilities for LLM streaming providers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from importlib import resources
from pathlib import Path
from typing import Any

from redline.errors import TurnCancelled
from redline.providers.base import CancelToken, ProviderEvent, StatusEvent, until_cancelled

logger = logging.getLogger("redline.providers")

_MAX_API_RETRIES = 4
_BASE_BACKOFF_S = 1.0


def _is_retryable(exc: BaseException) -> bool:
    """Return True for transient API errors worth retrying."""
    # Both SDKs name their transient errors the same way; 5xx APIStatusError too.
    cls_name = type(exc).__name__
    if cls_name in ("RateLimitError", "APITimeoutError", "APIConnectionError", "OverloadedError"):
        return True
    if cls_name in ("APIStatusError", "InternalServerError"):
        status = getattr(exc, "status_code", 0)
        return int(status) >= 500
    if isinstance(exc, (TimeoutError, ConnectionError, OSError)):
        return True
    return False


async def with_retry(
    make_round: Callable[[], AsyncIterator[ProviderEvent]],
    cancel: CancelToken,
    *,
    label: str,
) -> AsyncIterator[ProviderEvent]:
    """Run one generation round, retrying transient failures with exponential backoff.

    A round is only retried while it has produced nothing but status events;
    once text or tool activity has been yielded the error propagates.
    """

    for attempt in range(_MAX_API_RETRIES):
        produced = False
        try:
            async for event in make_round():
                if not isinstance(event, StatusEvent):
                    produced = True
                yield event
            return
        except TurnCancelled:
            raise
        except Exception as exc:
            if produced or not _is_retryable(exc) or attempt >= _MAX_API_RETRIES - 1:
                raise
            delay = _BASE_BACKOFF_S * (2**attempt)
            logger.warning(
                "%s API error (attempt %d/%d), retrying in %.1fs: %s",
                label,
                attempt + 1,
                _MAX_API_RETRIES,
                delay,
                exc,
            )
            await until_cancelled(asyncio.sleep(delay), cancel)


def tool_status(name: str, tool_input: object) -> str:
    path = tool_input.get("path") if isinstance(tool_input, dict) else None
    path = path.strip() if isinstance(path, str) else ""
    return f"Running {name} on {path}..." if path else f"Running {name}..."


def render_template(text: str, mapping: Mapping[str, str]) -> str:
    """Very small template renderer: replaces `{{name}}` placeholders."""

    rendered = text
    for key, value in mapping.items():
        rendered = rendered.replace(f"{{{{{key}}}}}", value)
    return rendered


def load_prompt(default_name: str, override_path: str | None = None) -> str:
    """Load a prompt template from the packaged defaults or a user-specified path."""
    if override_path:
        return Path(override_path).read_text(encoding="utf-8")
    p = resources.files("redline") / "prompts" / default_name
    return p.read_text(encoding="utf-8")


def render_system_prompt(
    *,
    project_path: str,
    file_paths: Sequence[str],
    open_files: Sequence[tuple[str, str]],
    template: str | None = None,
) -> str:
    file_list = "\n".join(file_paths) if file_paths else "(none)"
    buffers = (
        "\n\n".join(f"# {path}\n{content}" for path, content in open_files)
        if open_files
        else "(none)"
    )
    mapping = {
        "project_path": project_path or "(not set)",
        "file_list": file_list,
        "open_files": buffers,
    }
    text = template if template is not None else load_prompt("system.md")
    return render_template(text, mapping).strip() + "\n"


def as_plain_dict(value: Any) -> dict[str, Any]:
    """Best-effort conversion of SDK tool input objects into a plain dict."""
    if isinstance(value, dict):
        return dict(value)
    dump = getattr(value, "model_dump", None)
    if callable(dump):
        dumped = dump()
        if isinstance(dumped, dict):
            return dumped
    return {}
