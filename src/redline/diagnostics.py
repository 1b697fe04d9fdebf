"""Error formatting and actionable hints for Redline CLI output.

Keep this module small and dependency-light: it is imported by the CLI layer
and only depends on the error hierarchy.
"""

from __future__ import annotations

from redline.errors import (
    RedlineConfigError,
    RedlinePathError,
    RedlineProviderError,
    RedlineTurnInProgressError,
    RedlineValidationError,
)


def format_hint(exc: BaseException) -> str | None:
    """Return an actionable hint for a known error, or None."""
    msg = str(exc)

    if isinstance(exc, RedlineConfigError):
        if "redline.toml" in msg and "find" in msg.lower():
            return "pass --root, or create a redline.toml with `version = 1` in your project"
        if "package is required" in msg:
            return "install the provider SDK, e.g. `pip install anthropic openai`"
        if "Unsupported llm.provider" in msg:
            return "set llm.provider to 'anthropic' or 'openai'"
        return None

    if isinstance(exc, RedlineTurnInProgressError):
        return "wait for the current turn to finish or abort it first"

    if isinstance(exc, RedlineValidationError):
        if "API key" in msg:
            return "export the key in your shell or add it to <project_root>/.env"
        if "empty" in msg.lower():
            return "pass a non-empty prompt"
        return None

    if isinstance(exc, RedlinePathError):
        return "use a path relative to the project root without '..' or hidden segments"

    if isinstance(exc, RedlineProviderError):
        return "retry the turn; the provider may be overloaded"

    return None


def format_error_with_hint(exc: BaseException) -> str:
    """Format error message + optional hint for stderr output."""
    msg = (str(exc) or repr(exc)).strip()
    result = f"error: {msg}"
    hint = format_hint(exc)
    if hint:
        result += f"\nhint: {hint}"
    return result


def format_change_summary(stats: list[tuple[str, str, int, int]]) -> str:
    """Render `(path, kind, added, removed)` rows as a short summary block."""
    if not stats:
        return "No file changes."
    lines = [f"{len(stats)} file(s) changed:"]
    for path, kind, added, removed in stats:
        lines.append(f"  {kind:<8} {path} (+{added} -{removed})")
    return "\n".join(lines)
