"""Unified-diff rendering: hunk grouping, file headers, and change-set text."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from redline.aligner import DiffOp, align_text
from redline.ledger import ChangeKind, ChangeRecord

DEFAULT_CONTEXT_LINES = 3
NO_CHANGES_TEXT = "No file changes in the last LLM turn."

_CHANGE_LABELS: dict[ChangeKind, str] = {
    "create": "created",
    "modify": "modified",
    "delete": "deleted",
}

_OP_PREFIX = {"equal": " ", "add": "+", "remove": "-"}


@dataclass(frozen=True, slots=True)
class Hunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    ops: tuple[DiffOp, ...]

    @property
    def header(self) -> str:
        return f"@@ -{self.old_start},{self.old_count} +{self.new_start},{self.new_count} @@"

    def render(self) -> str:
        body = [f"{_OP_PREFIX[op.type]}{op.line}" for op in self.ops]
        return "\n".join([self.header, *body])


def _prefix_counts(ops: Sequence[DiffOp]) -> tuple[list[int], list[int]]:
    prefix_old = [0]
    prefix_new = [0]
    for op in ops:
        prefix_old.append(prefix_old[-1] + (0 if op.type == "add" else 1))
        prefix_new.append(prefix_new[-1] + (0 if op.type == "remove" else 1))
    return prefix_old, prefix_new


def _hunk_end(ops: Sequence[DiffOp], first_change: int, context_lines: int) -> int:
    """Return the exclusive end index of the hunk whose first change is `first_change`.

    Changes separated by at most `2 * context_lines` unchanged lines share a
    hunk; the hunk stops `context_lines` after its last change.
    """

    total = len(ops)
    last_change = first_change
    scan = first_change + 1
    while scan < total:
        if ops[scan].type != "equal":
            last_change = scan
            scan += 1
            continue
        run_end = scan
        while run_end < total and ops[run_end].type == "equal":
            run_end += 1
        if run_end >= total or (run_end - scan) > 2 * context_lines:
            break
        scan = run_end
    return min(total, last_change + 1 + context_lines)


def build_hunks(ops: Sequence[DiffOp], context_lines: int = DEFAULT_CONTEXT_LINES) -> list[Hunk]:
    if context_lines < 0:
        raise ValueError("context_lines must be >= 0")
    if not ops:
        return []

    prefix_old, prefix_new = _prefix_counts(ops)
    hunks: list[Hunk] = []
    cursor = 0
    total = len(ops)
    while cursor < total:
        while cursor < total and ops[cursor].type == "equal":
            cursor += 1
        if cursor >= total:
            break

        start = max(0, cursor - context_lines)
        end = _hunk_end(ops, cursor, context_lines)
        hunk_ops = tuple(ops[start:end])
        old_count = sum(1 for op in hunk_ops if op.type != "add")
        new_count = sum(1 for op in hunk_ops if op.type != "remove")
        # An empty side keeps the raw prefix (e.g. `-0,0` for a created file).
        old_start = prefix_old[start] + (1 if old_count else 0)
        new_start = prefix_new[start] + (1 if new_count else 0)
        hunks.append(Hunk(old_start, old_count, new_start, new_count, hunk_ops))
        cursor = end

    return hunks


def file_headers(path: str, before: str | None, after: str | None) -> tuple[str, str]:
    old_path = "/dev/null" if before is None else f"a/{path}"
    new_path = "/dev/null" if after is None else f"b/{path}"
    return f"--- {old_path}", f"+++ {new_path}"


def render_file_diff(
    path: str,
    before: str | None,
    after: str | None,
    *,
    context_lines: int = DEFAULT_CONTEXT_LINES,
) -> str:
    """Render `---`/`+++` headers plus hunks, or "" when the texts match line-for-line."""

    hunks = build_hunks(align_text(before, after), context_lines)
    if not hunks:
        return ""
    return "\n".join([*file_headers(path, before, after), *(h.render() for h in hunks)])


def change_label(kind: ChangeKind) -> str:
    return _CHANGE_LABELS[kind]


def render_change_set(
    records: Iterable[ChangeRecord], *, context_lines: int = DEFAULT_CONTEXT_LINES
) -> str:
    blocks: list[str] = []
    for record in records:
        header = f"── {record.path} ({change_label(record.kind)}) ──"
        body = render_file_diff(
            record.path, record.before, record.after, context_lines=context_lines
        )
        blocks.append(f"{header}\n{body}" if body else header)
    if not blocks:
        return NO_CHANGES_TEXT
    return "\n\n".join(blocks)


def diff_stat(record: ChangeRecord) -> tuple[int, int]:
    """Return `(added, removed)` line counts for a change record."""
    added = 0
    removed = 0
    for op in align_text(record.before, record.after):
        if op.type == "add":
            added += 1
        elif op.type == "remove":
            removed += 1
    return added, removed
