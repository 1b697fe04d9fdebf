from __future__ import annotations

import os
from pathlib import Path

import pytest

from redline.errors import RedlinePathError
from redline.paths import (
    check_extension,
    normalize_tool_path,
    relative_parts,
    resolve_in_project,
    to_project_relative,
)


def test_normalize_tool_path() -> None:
    assert normalize_tool_path("./src/a.ts") == "src/a.ts"
    assert normalize_tool_path("src\\a.ts") == "src/a.ts"
    assert normalize_tool_path(".//.//src/a.ts") == "src/a.ts"
    assert normalize_tool_path("  src/a.ts ") == "src/a.ts"
    assert normalize_tool_path(".env") == ".env"


@pytest.mark.parametrize("spelling", ["src/./a.ts", "src//a.ts", "./src/a.ts/", "src\\.\\a.ts"])
def test_equivalent_spellings_share_one_key(spelling: str) -> None:
    assert normalize_tool_path(spelling) == "src/a.ts"


def test_normalize_keeps_parent_segments_and_empties() -> None:
    assert normalize_tool_path("a/../b") == "a/../b"
    assert normalize_tool_path("./") == ""
    assert normalize_tool_path("") == ""


def test_relative_parts_accepts_nested_paths() -> None:
    assert relative_parts("src/./lib/a.py") == ("src", "lib", "a.py")


@pytest.mark.parametrize(
    "bad",
    ["", "   ", "/etc/passwd", "C:/x.txt", "../x", "a/../../x", ".env", "node_modules/x.js"],
)
def test_relative_parts_rejects(bad: str) -> None:
    with pytest.raises(RedlinePathError):
        relative_parts(bad)


def test_custom_blocked_segments() -> None:
    with pytest.raises(RedlinePathError, match="blocked"):
        relative_parts("dist/out.js", blocked_segments=["dist"])
    assert relative_parts("node_modules/x.js", blocked_segments=[]) == ("node_modules", "x.js")


def test_resolve_in_project_returns_path_under_root(tmp_path: Path) -> None:
    resolved = resolve_in_project(tmp_path, "src/new/file.txt")
    assert resolved == tmp_path / "src" / "new" / "file.txt"


def test_resolve_in_project_rejects_symlink_escape(tmp_path: Path) -> None:
    outside = tmp_path / "outside"
    outside.mkdir()
    root = tmp_path / "root"
    root.mkdir()
    try:
        os.symlink(outside, root / "link", target_is_directory=True)
    except (OSError, NotImplementedError):
        pytest.skip("symlinks not supported")
    with pytest.raises(RedlinePathError, match="traversal"):
        resolve_in_project(root, "link/evil.txt")


def test_resolve_in_project_missing_root(tmp_path: Path) -> None:
    with pytest.raises(RedlinePathError, match="project root"):
        resolve_in_project(tmp_path / "missing", "a.txt")


def test_check_extension() -> None:
    check_extension(Path("a.anything"), [])
    check_extension(Path("a.TS"), ["ts", ".tsx"])
    with pytest.raises(RedlinePathError, match="disallowed"):
        check_extension(Path("a.py"), ["ts"])
    with pytest.raises(RedlinePathError, match="required"):
        check_extension(Path("Makefile"), ["ts"])


def test_to_project_relative(tmp_path: Path) -> None:
    assert to_project_relative(tmp_path, tmp_path / "a" / "b.txt") == "a/b.txt"
