"""Loading and validation of `redline.toml`.

Everything here is synchronous and side-effect free apart from reading the
config file; values come back as frozen dataclasses.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from redline.errors import RedlineConfigError
from redline.paths import DEFAULT_BLOCKED_SEGMENTS
from redline.providers import canonical_provider
from redline.providers.base import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_MAX_TOOL_ROUNDS,
    DEFAULT_STREAM_TIMEOUT_S,
)

CONFIG_FILENAME = "redline.toml"

DEFAULT_MODELS: dict[str, str] = {
    "anthropic": "claude-sonnet-4-6",
    "openai": "gpt-5.2-codex",
}

DEFAULT_API_KEY_ENVS: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


@dataclass(frozen=True)
class LLMConfig:
    provider: str = "anthropic"
    model: str = DEFAULT_MODELS["anthropic"]
    api_key_env: str = DEFAULT_API_KEY_ENVS["anthropic"]
    max_tokens: int = DEFAULT_MAX_TOKENS


@dataclass(frozen=True)
class TurnConfig:
    max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS
    read_preview_chars: int = 4000
    stream_timeout_s: float = DEFAULT_STREAM_TIMEOUT_S


@dataclass(frozen=True)
class DiffConfig:
    context_lines: int = 3


@dataclass(frozen=True)
class FilesConfig:
    blocked_segments: list[str] = field(default_factory=lambda: list(DEFAULT_BLOCKED_SEGMENTS))
    allowed_extensions: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RedlineConfig:
    version: int = 1
    llm: LLMConfig = field(default_factory=LLMConfig)
    turn: TurnConfig = field(default_factory=TurnConfig)
    diff: DiffConfig = field(default_factory=DiffConfig)
    files: FilesConfig = field(default_factory=FilesConfig)


def default_config() -> RedlineConfig:
    return RedlineConfig()


def normalize_model(provider: str, model: str | None) -> str:
    """Fall back to the provider default for empty or cross-provider model names."""

    trimmed = (model or "").strip()
    if not trimmed:
        return DEFAULT_MODELS[provider]
    lowered = trimmed.lower()
    if provider == "openai":
        if lowered == "chatgpt" or "claude" in lowered:
            return DEFAULT_MODELS[provider]
        return trimmed
    if "chatgpt" in lowered or lowered.startswith("gpt-") or "openai" in lowered:
        return DEFAULT_MODELS[provider]
    return trimmed


def find_project_root(start: Path) -> Path:
    """Walk upward from `start` (file or directory) looking for `redline.toml`."""

    cur = start
    try:
        if cur.is_file():
            cur = cur.parent
    except OSError:
        cur = cur.parent

    cur = cur.resolve()
    while True:
        if (cur / CONFIG_FILENAME).is_file():
            return cur
        if cur.parent == cur:
            break
        cur = cur.parent

    raise RedlineConfigError(
        f"Could not find {CONFIG_FILENAME} by walking upward from start path."
    )


def _as_table(value: Any, *, name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise RedlineConfigError(f"Expected [{name}] to be a table.")
    return value


def _as_str_list(value: Any, *, name: str) -> list[str]:
    if not isinstance(value, list) or any(not isinstance(x, str) for x in value):
        raise RedlineConfigError(f"Expected {name} to be a list of strings.")
    return list(value)


def _as_int(value: Any, *, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise RedlineConfigError(f"Expected {name} to be an integer.")
    return value


def _as_float(value: Any, *, name: str) -> float:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise RedlineConfigError(f"Expected {name} to be a number.")
    return float(value)


def _as_str(value: Any, *, name: str) -> str:
    if not isinstance(value, str):
        raise RedlineConfigError(f"Expected {name} to be a string.")
    return value


def parse_config(data: dict[str, Any]) -> RedlineConfig:
    """Validate an already-decoded `redline.toml` document."""

    version = data.get("version", None)
    if version is None:
        raise RedlineConfigError(f"Missing required `version = 1` in {CONFIG_FILENAME}.")
    version_i = _as_int(version, name="version")
    if version_i != 1:
        raise RedlineConfigError(f"Unsupported config version: {version_i} (expected 1).")

    llm_tbl = _as_table(data.get("llm"), name="llm")
    turn_tbl = _as_table(data.get("turn"), name="turn")
    diff_tbl = _as_table(data.get("diff"), name="diff")
    files_tbl = _as_table(data.get("files"), name="files")

    provider = canonical_provider(_as_str(llm_tbl.get("provider", "anthropic"), name="llm.provider"))

    if "model" in llm_tbl:
        model = normalize_model(provider, _as_str(llm_tbl["model"], name="llm.model"))
    else:
        model = DEFAULT_MODELS[provider]

    if "api_key_env" in llm_tbl:
        api_key_env = _as_str(llm_tbl["api_key_env"], name="llm.api_key_env")
    else:
        api_key_env = DEFAULT_API_KEY_ENVS[provider]

    if "max_tokens" in llm_tbl:
        max_tokens = _as_int(llm_tbl["max_tokens"], name="llm.max_tokens")
    else:
        max_tokens = DEFAULT_MAX_TOKENS

    defaults = TurnConfig()
    if "max_tool_rounds" in turn_tbl:
        max_tool_rounds = _as_int(turn_tbl["max_tool_rounds"], name="turn.max_tool_rounds")
    else:
        max_tool_rounds = defaults.max_tool_rounds

    if "read_preview_chars" in turn_tbl:
        read_preview_chars = _as_int(
            turn_tbl["read_preview_chars"], name="turn.read_preview_chars"
        )
    else:
        read_preview_chars = defaults.read_preview_chars

    if "stream_timeout_s" in turn_tbl:
        stream_timeout_s = _as_float(turn_tbl["stream_timeout_s"], name="turn.stream_timeout_s")
    else:
        stream_timeout_s = defaults.stream_timeout_s

    if "context_lines" in diff_tbl:
        context_lines = _as_int(diff_tbl["context_lines"], name="diff.context_lines")
    else:
        context_lines = DiffConfig().context_lines

    if "blocked_segments" in files_tbl:
        blocked_segments = _as_str_list(files_tbl["blocked_segments"], name="files.blocked_segments")
    else:
        blocked_segments = list(DEFAULT_BLOCKED_SEGMENTS)

    if "allowed_extensions" in files_tbl:
        allowed_extensions = _as_str_list(
            files_tbl["allowed_extensions"], name="files.allowed_extensions"
        )
    else:
        allowed_extensions = []

    # Validation
    if not api_key_env.strip():
        raise RedlineConfigError("Invalid config: llm.api_key_env must not be empty.")
    if max_tokens < 1:
        raise RedlineConfigError("Invalid config: llm.max_tokens must be >= 1.")
    if max_tool_rounds < 1:
        raise RedlineConfigError("Invalid config: turn.max_tool_rounds must be >= 1.")
    if read_preview_chars < 1:
        raise RedlineConfigError("Invalid config: turn.read_preview_chars must be >= 1.")
    if stream_timeout_s <= 0:
        raise RedlineConfigError("Invalid config: turn.stream_timeout_s must be > 0.")
    if context_lines < 0:
        raise RedlineConfigError("Invalid config: diff.context_lines must be >= 0.")

    return RedlineConfig(
        version=version_i,
        llm=LLMConfig(
            provider=provider, model=model, api_key_env=api_key_env, max_tokens=max_tokens
        ),
        turn=TurnConfig(
            max_tool_rounds=max_tool_rounds,
            read_preview_chars=read_preview_chars,
            stream_timeout_s=stream_timeout_s,
        ),
        diff=DiffConfig(context_lines=context_lines),
        files=FilesConfig(
            blocked_segments=blocked_segments, allowed_extensions=allowed_extensions
        ),
    )


def load_config(
    *,
    root: Path | None = None,
    config_path: Path | None = None,
    allow_missing: bool = False,
) -> RedlineConfig:
    """Load and validate `redline.toml`.

    If neither `root` nor `config_path` are provided, the project root is
    discovered by walking upward from the current working directory. With
    `allow_missing`, an absent file yields `default_config()`.
    """

    if config_path is None:
        if root is None:
            try:
                root = find_project_root(Path.cwd())
            except RedlineConfigError:
                if allow_missing:
                    return default_config()
                raise
        config_path = root / CONFIG_FILENAME

    try:
        raw = config_path.read_bytes()
    except FileNotFoundError as e:
        if allow_missing:
            return default_config()
        raise RedlineConfigError(f"Missing {CONFIG_FILENAME} at: {config_path}") from e
    except OSError as e:
        raise RedlineConfigError(f"Failed reading config file: {config_path}") from e

    try:
        data = tomllib.loads(raw.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise RedlineConfigError(f"Config is not valid UTF-8: {config_path}") from e
    except tomllib.TOMLDecodeError as e:
        raise RedlineConfigError(f"Invalid TOML in {config_path}: {e}") from e

    return parse_config(data)
