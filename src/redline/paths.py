"""Pure helpers for normalizing tool paths and keeping them inside a project root."""

from __future__ import annotations

import re
from collections.abc import Collection
from pathlib import Path, PurePosixPath

from redline.errors import RedlinePathError

DEFAULT_BLOCKED_SEGMENTS: tuple[str, ...] = ("node_modules",)

_LEADING_CUR_DIR = re.compile(r"^(?:\./+)+")
_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:")


def normalize_tool_path(path: str) -> str:
    """Canonical spelling used for comparisons.

    Forward slashes only, with no leading `./` and no empty or `.` segments, so
    `src/./a.ts`, `src//a.ts` and `src/a.ts` all map to one key. `..` is kept
    for `relative_parts` to reject.
    """
    cleaned = _LEADING_CUR_DIR.sub("", path.strip().replace("\\", "/"))
    if not cleaned:
        return ""
    canonical = PurePosixPath(cleaned).as_posix()
    return "" if canonical == "." else canonical


def is_blocked_segment(segment: str, blocked: Collection[str]) -> bool:
    return segment in blocked or segment.startswith(".")


def relative_parts(
    path: str, *, blocked_segments: Collection[str] = DEFAULT_BLOCKED_SEGMENTS
) -> tuple[str, ...]:
    """Validate a project-relative tool path and split it into segments."""

    normalized = normalize_tool_path(path)
    if not normalized:
        raise RedlinePathError("path must not be empty")
    if normalized.startswith("/") or _WINDOWS_DRIVE.match(normalized):
        raise RedlinePathError(f"absolute paths are not allowed: {path}")

    parts: list[str] = []
    for segment in PurePosixPath(normalized).parts:
        if segment == ".":
            continue
        if segment == "..":
            raise RedlinePathError(f"path traversal attempt: {path}")
        if is_blocked_segment(segment, blocked_segments):
            raise RedlinePathError(f"blocked path segment in {path}")
        parts.append(segment)

    if not parts:
        raise RedlinePathError("path must not be empty")
    return tuple(parts)


def resolve_in_project(
    root: Path,
    path: str,
    *,
    blocked_segments: Collection[str] = DEFAULT_BLOCKED_SEGMENTS,
) -> Path:
    """Map a tool path onto the filesystem, refusing anything that lands outside `root`.

    Symlinks are followed as far as the path exists, so a link pointing out of
    the project is caught even when the final file has not been created yet.
    """

    parts = relative_parts(path, blocked_segments=blocked_segments)
    try:
        root_real = root.resolve(strict=True)
    except OSError as e:
        raise RedlinePathError(f"failed to resolve project root {root}") from e

    candidate = root.joinpath(*parts)
    anchor = candidate.resolve()
    if anchor != root_real and not anchor.is_relative_to(root_real):
        raise RedlinePathError(f"path traversal attempt: {path}")
    return candidate


def check_extension(path: Path, allowed: Collection[str]) -> None:
    """Enforce a write allow-list of extensions (no dot, case-insensitive); empty allows all."""

    if not allowed:
        return
    ext = path.suffix[1:].lower()
    if not ext:
        raise RedlinePathError("file extension is required")
    if ext not in {a.lower().lstrip(".") for a in allowed}:
        raise RedlinePathError(f"disallowed file extension: .{ext}")


def to_project_relative(root: Path, path: Path) -> str:
    return path.relative_to(root).as_posix()
