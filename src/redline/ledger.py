"""Per-turn change ledger: one net before/after record per path."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

logger = logging.getLogger("redline.ledger")

ChangeKind = Literal["create", "modify", "delete"]


def derive_kind(before: str | None, after: str | None) -> ChangeKind:
    if after is None:
        return "delete"
    if before is None:
        return "create"
    return "modify"


def is_noop(before: str | None, after: str | None) -> bool:
    if before is None and after is None:
        return True
    return before is not None and after is not None and before == after


@dataclass(frozen=True, slots=True)
class ChangeRecord:
    """`before is None` means the path did not exist before the turn; `after is None`
    means it does not exist after it."""

    path: str
    kind: ChangeKind
    before: str | None
    after: str | None


class ChangeLedger:
    """Ordered reducer over `path -> ChangeRecord`.

    Insertion order is diff rendering order. Repeated writes to a path keep the
    first observed `before` and the latest `after`; a path whose net effect is
    nothing is dropped.
    """

    def __init__(self) -> None:
        self._records: dict[str, ChangeRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, path: object) -> bool:
        return path in self._records

    def get(self, path: str) -> ChangeRecord | None:
        return self._records.get(path)

    def record(self, path: str, before: str | None, after: str | None) -> ChangeRecord | None:
        """Merge one observation; returns the resulting record, or None if the path collapsed."""

        existing = self._records.get(path)
        if existing is not None:
            before = existing.before

        if is_noop(before, after):
            if self._records.pop(path, None) is not None:
                logger.debug("ledger: %s back to its pre-turn state, dropped", path)
            return None

        # Reassigning an existing key keeps its original position.
        merged = ChangeRecord(path, derive_kind(before, after), before, after)
        self._records[path] = merged
        logger.debug("ledger: %s %s", merged.kind, path)
        return merged

    def snapshot(self) -> tuple[ChangeRecord, ...]:
        return tuple(self._records.values())

    def clear(self) -> None:
        self._records.clear()
