"""VeryBasic Extension: TRON-style line trace.

Writes ``[label]`` (or ``[#line]`` for unlabelled lines) to stderr before each
program line runs.
"""

from __future__ import annotations

import sys

from extensions import ExtensionAPI, LineContext


VERYBASIC_EXTENSION_NAME = "trace"


def _before_line(interpreter, line: LineContext) -> None:
    marker = f"[{line.label}]" if line.label is not None else f"[#{line.index + 1}]"
    sys.stderr.write(marker)


def _newline_at_end(interpreter) -> None:
    sys.stderr.write("\n")


def verybasic_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="trace", version="0.1.0")
    ext.on_event("before_line", _before_line)
    ext.on_event("program_end", _newline_at_end)
