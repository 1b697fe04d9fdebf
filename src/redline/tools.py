"""Tool-call data model, input parsing, and provider tool schemas."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

ToolName = Literal["read_file", "write_file", "delete_file"]

SUPPORTED_TOOLS: tuple[ToolName, ...] = ("read_file", "write_file", "delete_file")


@dataclass(frozen=True, slots=True)
class ToolCall:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolExecutionResult:
    tool_call_id: str
    name: str
    ok: bool
    output: str


@dataclass(frozen=True, slots=True)
class ReadFileInput:
    path: str


@dataclass(frozen=True, slots=True)
class WriteFileInput:
    path: str
    content: str


@dataclass(frozen=True, slots=True)
class DeleteFileInput:
    path: str


ToolInput = ReadFileInput | WriteFileInput | DeleteFileInput


def as_supported_tool_name(name: object) -> ToolName | None:
    if name in SUPPORTED_TOOLS:
        return name  # type: ignore[return-value]
    return None


def parse_tool_input(name: object, raw: object) -> ToolInput | None:
    """Validate raw tool arguments; returns None when they are unusable."""

    tool = as_supported_tool_name(name)
    if tool is None or not isinstance(raw, dict):
        return None

    path = raw.get("path")
    path = path.strip() if isinstance(path, str) else ""
    if not path:
        return None

    if tool == "read_file":
        return ReadFileInput(path=path)
    if tool == "delete_file":
        return DeleteFileInput(path=path)

    content = raw.get("content")
    if not isinstance(content, str):
        return None
    return WriteFileInput(path=path, content=content)


_READ_DESCRIPTION = "Read a file from the project before editing it."
_WRITE_DESCRIPTION = "Create or overwrite a file in the project. Path is relative to project root."
_DELETE_DESCRIPTION = "Delete a file from the project."

_INPUT_SCHEMAS: dict[ToolName, dict[str, Any]] = {
    "read_file": {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Relative file path to read, e.g. src/app.css",
            },
        },
        "required": ["path"],
    },
    "write_file": {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Relative file path, e.g. src/components/Table.tsx",
            },
            "content": {
                "type": "string",
                "description": "Full file content",
            },
        },
        "required": ["path", "content"],
    },
    "delete_file": {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Relative file path to delete",
            },
        },
        "required": ["path"],
    },
}

_DESCRIPTIONS: dict[ToolName, str] = {
    "read_file": _READ_DESCRIPTION,
    "write_file": _WRITE_DESCRIPTION,
    "delete_file": _DELETE_DESCRIPTION,
}


def anthropic_tool_schemas() -> list[dict[str, Any]]:
    return [
        {"name": name, "description": _DESCRIPTIONS[name], "input_schema": _INPUT_SCHEMAS[name]}
        for name in SUPPORTED_TOOLS
    ]


def openai_tool_schemas() -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": name,
                "description": _DESCRIPTIONS[name],
                "parameters": _INPUT_SCHEMAS[name],
            },
        }
        for name in SUPPORTED_TOOLS
    ]
