# src/dagsched/reporting/reporter.py
from __future__ import annotations

import math
import sys
import threading
from typing import Callable, Optional

from dagsched.domain.models import NodeView, ResourceSet, StateCounts, format_quantity
from dagsched.domain.states import GraphNodeState
from dagsched.engine.scheduler import TaskManager
from dagsched.logging import get_logger

from .terminal import ConsoleTerminal, Terminal

_LOG = get_logger(__name__)

PrintFn = Callable[[str], None]

CURSOR_UP_LINES = "\x1b[{n}F"
CLEAR_TO_END = "\x1b[J"

# Detail rows are listed in this order; plain INELIGIBLE tasks are not listed.
_ORDER = ("RUNNING", "ELIGIBLE", "FAILED", "BLOCKED", "DONE")
_NAME_WIDTH_MAX = 40


def _print_to_stdout(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def _label(view: NodeView) -> str:
    return "BLOCKED" if view.blocked else view.state.value


def _format_elapsed(seconds: Optional[float]) -> str:
    if seconds is None:
        return "-"
    total = int(seconds)
    mins, secs = divmod(total, 60)
    hours, mins = divmod(mins, 60)
    return f"{hours:02d}:{mins:02d}:{secs:02d}"


def _clip(line: str, width: int) -> str:
    if width <= 0 or len(line) <= width:
        return line
    return line[:width]


class TopLikeStatusReporter:
    """
    Periodically draws a terminal-sized summary of a TaskManager, like `top`.

    Frame layout:
    - summary line with per-state counts (always shown)
    - resource usage, a blank line, a column header and a rule
    - one row per listed task

    When the rows do not fit the terminal height the tail is replaced with a
    single "... with N more lines not shown" line.

    The reporter only reads snapshots from the manager; it never changes
    scheduling state.
    """

    def __init__(
        self,
        task_manager: TaskManager,
        print_fn: Optional[PrintFn] = None,
        terminal: Optional[Terminal] = None,
        refresh_interval_ms: int = 1000,
    ) -> None:
        if refresh_interval_ms <= 0:
            raise ValueError("refresh_interval_ms must be > 0")
        self._manager = task_manager
        self._print = print_fn if print_fn is not None else _print_to_stdout
        self._terminal: Terminal = terminal if terminal is not None else ConsoleTerminal()
        self._interval_s = refresh_interval_ms / 1000.0

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._write_lock = threading.Lock()
        self._closed = False
        self._last_frame_lines = 0

    # -------------------------
    # Lifecycle
    # -------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._closed

    def start(self) -> None:
        """
        Draws the first frame, then keeps refreshing on a background thread.
        Call once per reporter.
        """
        if self._thread is not None:
            raise RuntimeError("TopLikeStatusReporter.start() may only be called once")

        self.refresh()
        self._thread = threading.Thread(target=self._run_loop, name="dagsched-reporter", daemon=True)
        self._thread.start()

    def shutdown(self, *, timeout_s: float = 5.0) -> None:
        """
        Stops the background loop, draws a final frame and returns.
        No frames are written by the loop after this returns.
        """
        if self._thread is None or self._closed:
            self._closed = True
            return

        self._stop.set()
        self._thread.join(timeout=timeout_s)
        if self._thread.is_alive():
            _LOG.warning("Status reporter thread did not stop within %.1fs", timeout_s)

        if not self._write_lock.acquire(timeout=timeout_s):
            self._closed = True
            _LOG.warning("Status reporter output is blocked; skipping the final frame")
            return
        try:
            self._write_frame(self._print)
            self._closed = True
        finally:
            self._write_lock.release()

    def _run_loop(self) -> None:
        while not self._stop.wait(timeout=self._interval_s):
            with self._write_lock:
                if self._closed:
                    return
                try:
                    self._write_frame(self._print)
                except Exception:
                    _LOG.exception("Status refresh failed (continuing).")

    # -------------------------
    # Rendering
    # -------------------------

    def refresh(self, print_fn: Optional[PrintFn] = None) -> None:
        """Draws one frame now, through `print_fn` if given."""
        with self._write_lock:
            self._write_frame(print_fn if print_fn is not None else self._print)

    def render(self) -> list[str]:
        """
        Builds the lines of one frame, sized to the terminal, without any
        escape sequences.
        """
        views = self._manager.snapshot()
        reserved, total = self._manager.resources.snapshot()
        dims = self._terminal.dimensions()

        summary = self._summary_line(StateCounts.from_views(views))
        body = self._body_lines(views, reserved, total)

        rows = max(dims.height - 1, 0)
        if rows == 0:
            # only the summary fits
            body = []
        elif len(body) > rows:
            shown = rows - 1
            hidden = len(body) - shown
            body = body[:shown] + [f"... with {hidden} more lines not shown"]

        return [_clip(line, dims.width) for line in [summary, *body]]

    def _write_frame(self, print_fn: PrintFn) -> None:
        lines = self.render()
        # In-place redraw only applies to the reporter's own sink; one-off
        # sinks get plain frames and leave its cursor bookkeeping alone.
        own_sink = print_fn is self._print
        prefix = ""
        if own_sink and self._terminal.supports_ansi() and self._last_frame_lines:
            prefix = CURSOR_UP_LINES.format(n=self._last_frame_lines) + CLEAR_TO_END
        print_fn(prefix + "\n".join(lines) + "\n")
        if own_sink:
            self._last_frame_lines = len(lines)

    @staticmethod
    def _summary_line(counts: StateCounts) -> str:
        return (
            f"{counts.running} Running, {counts.eligible} Eligible, {counts.ineligible} Ineligible, "
            f"{counts.blocked} Blocked, {counts.done} Done, {counts.failed} Failed"
        )

    @staticmethod
    def _resource_line(reserved: ResourceSet, total: ResourceSet) -> str:
        parts = []
        for name, used, cap, binary in (
            ("cores", reserved.cores, total.cores, False),
            ("memory", reserved.memory, total.memory, True),
            ("disk", reserved.disk, total.disk, True),
        ):
            if math.isinf(cap):
                continue
            parts.append(f"{name} {format_quantity(used, binary=binary)}/{format_quantity(cap, binary=binary)}")
        return "Resources: " + (", ".join(parts) if parts else "unlimited")

    def _body_lines(self, views: tuple[NodeView, ...], reserved: ResourceSet, total: ResourceSet) -> list[str]:
        listed = [
            v for v in views if v.blocked or v.state is not GraphNodeState.INELIGIBLE
        ]
        listed.sort(key=lambda v: (_ORDER.index(_label(v)), v.seq))

        name_width = min(max([4, *(len(v.name) for v in listed)]), _NAME_WIDTH_MAX)
        header = (
            f"{'STATE':<9} {'NAME':<{name_width}} {'CORES':>6} {'MEMORY':>8} {'DISK':>8} {'ELAPSED':>9}  INFO"
        )
        lines = [self._resource_line(reserved, total), "", header, "-" * len(header)]
        for v in listed:
            name = v.name if len(v.name) <= name_width else v.name[: name_width - 1] + "~"
            row = (
                f"{_label(v):<9} {name:<{name_width}} "
                f"{format_quantity(v.resources.cores, binary=False):>6} "
                f"{format_quantity(v.resources.memory):>8} "
                f"{format_quantity(v.resources.disk):>8} "
                f"{_format_elapsed(v.elapsed_s):>9}  {v.error or ''}"
            )
            lines.append(row.rstrip())
        return lines
