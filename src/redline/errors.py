"""Redline exception hierarchy.

No imports from the rest of the package: every layer, the CLI and the tests
import from here.
"""


class RedlineError(Exception):
    """Base exception for all Redline errors."""


class RedlineConfigError(RedlineError):
    """Raised for invalid user configuration or a missing provider SDK."""


class RedlineValidationError(RedlineError):
    """Raised synchronously when a turn cannot be submitted (empty prompt, no credential)."""


class RedlineTurnInProgressError(RedlineValidationError):
    """Raised when `send` is called while another turn is still streaming."""


class RedlinePathError(RedlineError):
    """Raised when a tool path is empty, absolute, blocked, or escapes the project root."""


class RedlineProviderError(RedlineError):
    """Raised when the LLM provider reports a failure or returns an unusable response."""


class TurnCancelled(RedlineError):
    """Raised when a turn's cancellation token has been signaled."""
