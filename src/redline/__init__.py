from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version


def _package_version() -> str:
    try:
        return version("redline")
    except PackageNotFoundError:
        # Running from a source checkout, or otherwise not installed.
        return "0.0.0"


__version__ = _package_version()

from redline.aligner import DiffOp, align, align_text  # noqa: E402
from redline.coordinator import ToolCoordinator, TurnContext  # noqa: E402
from redline.errors import (  # noqa: E402
    RedlineConfigError,
    RedlineError,
    RedlinePathError,
    RedlineProviderError,
    RedlineTurnInProgressError,
    RedlineValidationError,
    TurnCancelled,
)
from redline.hunks import build_hunks, render_change_set, render_file_diff  # noqa: E402
from redline.ledger import ChangeLedger, ChangeRecord  # noqa: E402
from redline.tools import ToolCall, ToolExecutionResult  # noqa: E402
from redline.turn import ChatSession, TurnResult, TurnState  # noqa: E402

__all__ = [
    "ChangeLedger",
    "ChangeRecord",
    "ChatSession",
    "DiffOp",
    "RedlineConfigError",
    "RedlineError",
    "RedlinePathError",
    "RedlineProviderError",
    "RedlineTurnInProgressError",
    "RedlineValidationError",
    "ToolCall",
    "ToolCoordinator",
    "ToolExecutionResult",
    "TurnCancelled",
    "TurnContext",
    "TurnResult",
    "TurnState",
    "__version__",
    "align",
    "align_text",
    "build_hunks",
    "render_change_set",
    "render_file_diff",
]
