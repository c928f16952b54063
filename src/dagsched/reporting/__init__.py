# src/dagsched/reporting/__init__.py
"""
Live status display for dagsched.

- terminal: terminal size / capability abstraction
- reporter: top-like periodic status reporter
"""

from .reporter import TopLikeStatusReporter
from .terminal import ConsoleTerminal, Dimensions, FixedTerminal, Terminal

__all__ = ["TopLikeStatusReporter", "Terminal", "ConsoleTerminal", "FixedTerminal", "Dimensions"]
