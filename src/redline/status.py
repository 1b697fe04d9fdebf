from __future__ import annotations

import sys
import time
from dataclasses import dataclass, field
from shutil import get_terminal_size


@dataclass(slots=True)
class StatusLine:
    """Single rewritten stderr line showing the current turn status."""

    label: str = "redline"
    enabled: bool = True
    stream: object = sys.stderr
    min_interval_s: float = 0.05
    _last_render: float = field(default=0.0, init=False, repr=False)
    _current: str = field(default="", init=False, repr=False)
    _width: int = field(default=0, init=False, repr=False)
    _finished: bool = field(default=False, init=False, repr=False)

    @property
    def current(self) -> str:
        return self._current

    def update(self, status: str | None) -> None:
        if self._finished or not status or status == self._current:
            return
        self._current = status
        self._render()

    def finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        if self._width:
            # Blank out the status so streamed text is not left interleaved with it.
            self._write("\r" + " " * self._width + "\r")

    def _write(self, s: str) -> None:
        if not self.enabled:
            return
        try:
            self.stream.write(s)  # type: ignore[attr-defined]
            self.stream.flush()  # type: ignore[attr-defined]
        except Exception:
            # Status is best-effort; never fail the CLI because of rendering.
            self.enabled = False

    def _render(self) -> None:
        if not self.enabled:
            return
        now = time.time()
        if (now - self._last_render) < float(self.min_interval_s):
            return
        self._last_render = now

        cols = get_terminal_size(fallback=(80, 20)).columns
        msg = f"[{self.label}] {self._current}"[: max(0, cols - 1)]
        pad = max(0, self._width - len(msg))
        self._width = max(self._width, len(msg))
        self._write("\r" + msg + " " * pad)
