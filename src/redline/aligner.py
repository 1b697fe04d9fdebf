"""Line-level edit scripts via longest-common-subsequence alignment."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

OpType = Literal["equal", "add", "remove"]


@dataclass(frozen=True, slots=True)
class DiffOp:
    type: OpType
    line: str


def to_lines(text: str | None) -> list[str]:
    """Split file text into lines; `None` and the empty string give no lines."""

    if not isinstance(text, str):
        return []
    normalized = text.replace("\r\n", "\n")
    if not normalized:
        return []
    lines = normalized.split("\n")
    if normalized.endswith("\n"):
        lines.pop()
    return lines


def align(before: Sequence[str], after: Sequence[str]) -> list[DiffOp]:
    """Return a minimal edit script turning `before` into `after`.

    `table[i][j]` holds the LCS length of `before[i:]` and `after[j:]`. The
    backtrack advances `before` first when both neighbours tie, so removals
    are emitted ahead of additions within a changed run.
    """

    n = len(before)
    m = len(after)
    table = [[0] * (m + 1) for _ in range(n + 1)]
    for i in range(n - 1, -1, -1):
        row = table[i]
        below = table[i + 1]
        for j in range(m - 1, -1, -1):
            if before[i] == after[j]:
                row[j] = below[j + 1] + 1
            else:
                row[j] = max(below[j], row[j + 1])

    ops: list[DiffOp] = []
    i = 0
    j = 0
    while i < n and j < m:
        if before[i] == after[j]:
            ops.append(DiffOp("equal", before[i]))
            i += 1
            j += 1
        elif table[i + 1][j] >= table[i][j + 1]:
            ops.append(DiffOp("remove", before[i]))
            i += 1
        else:
            ops.append(DiffOp("add", after[j]))
            j += 1

    ops.extend(DiffOp("remove", line) for line in before[i:])
    ops.extend(DiffOp("add", line) for line in after[j:])
    return ops


def align_text(before: str | None, after: str | None) -> list[DiffOp]:
    return align(to_lines(before), to_lines(after))


def replay(ops: Sequence[DiffOp]) -> list[str]:
    """Apply an edit script to its source side, yielding the target lines."""
    return [op.line for op in ops if op.type != "remove"]


def has_changes(ops: Sequence[DiffOp]) -> bool:
    return any(op.type != "equal" for op in ops)
