# src/dagsched/reporting/terminal.py
from __future__ import annotations

import os
import shutil
import sys
from dataclasses import dataclass
from typing import Optional, Protocol, TextIO


@dataclass(frozen=True)
class Dimensions:
    width: int
    height: int


class Terminal(Protocol):
    """Where the status display is drawn."""

    def dimensions(self) -> Dimensions: ...

    def supports_ansi(self) -> bool: ...


class ConsoleTerminal:
    """
    The process's console. Size is re-read on every call so resizes are
    picked up between refreshes.
    """

    def __init__(self, stream: Optional[TextIO] = None, fallback: Dimensions = Dimensions(80, 24)) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._fallback = fallback

    def dimensions(self) -> Dimensions:
        size = shutil.get_terminal_size((self._fallback.width, self._fallback.height))
        return Dimensions(width=size.columns, height=size.lines)

    def supports_ansi(self) -> bool:
        if os.getenv("TERM", "").lower() in {"", "dumb"}:
            return False
        isatty = getattr(self._stream, "isatty", None)
        return bool(isatty and isatty())


@dataclass(frozen=True)
class FixedTerminal:
    """A terminal with fixed dimensions, for tests and non-interactive output."""

    width: int = 80
    height: int = 24
    ansi: bool = False

    def dimensions(self) -> Dimensions:
        return Dimensions(width=self.width, height=self.height)

    def supports_ansi(self) -> bool:
        return self.ansi
