from __future__ import annotations
import re
from typing import List, Optional, Union

from lexer import BasicSyntaxError, Lexer, TokenKind, TokenValue


class _EndOfProgram:
    def __repr__(self) -> str:
        return "END_OF_PROGRAM"


END_OF_PROGRAM = _EndOfProgram()

_LINE_BREAKS = re.compile(r"[\r\n]+")


class ProgramStore:
    """The stored lines of a program and the cursor that walks them."""

    def __init__(self, source: str, *, lexer: Optional[Lexer] = None) -> None:
        lines = _LINE_BREAKS.split(source)
        if lines and lines[-1] == "":
            lines.pop()
        self.lines: List[str] = lines
        self.cursor = 0
        # Private lexer: scanning for labels must not disturb the one the
        # interpreter is executing with.
        self._lexer = Lexer(reserved=lexer.reserved) if lexer is not None else Lexer()

    def __len__(self) -> int:
        return len(self.lines)

    def next_line(self) -> Union[str, _EndOfProgram]:
        if self.cursor >= len(self.lines):
            return END_OF_PROGRAM
        line = self.lines[self.cursor]
        self.cursor += 1
        return line

    def current_position(self) -> int:
        return self.cursor

    def resume(self, position: int) -> None:
        self.cursor = position

    def label_at(self, index: int) -> Optional[int]:
        if index < 0 or index >= len(self.lines):
            return None
        first = self._lexer.feed(self.lines[index]).peek()
        if first.kind is TokenKind.INTEGER:
            return first.value  # type: ignore[return-value]
        return None

    def goto_label(self, label: int) -> None:
        for index in range(len(self.lines)):
            if self.label_at(index) == label:
                self.cursor = index
                return
        raise BasicSyntaxError(f"LINE NUMBER {label} NOT FOUND")

    def collect_data(self) -> List[TokenValue]:
        items: List[TokenValue] = []
        for line in self.lines:
            if self._keyword(line) is TokenKind.DATA:
                items.extend(self._lexer.collect_data())
        return items

    def skip_to_matching_next(self) -> None:
        """Move the cursor past the NEXT closing the loop just entered."""
        depth = 0
        while self.cursor < len(self.lines):
            keyword = self._keyword(self.lines[self.cursor])
            self.cursor += 1
            if keyword is TokenKind.FOR:
                depth += 1
            elif keyword is TokenKind.NEXT:
                if depth == 0:
                    return
                depth -= 1
        raise BasicSyntaxError("Missing NEXT")

    def _keyword(self, line: str) -> TokenKind:
        """Kind of the first token after any label; leaves the lexer after it."""
        lexer = self._lexer.feed(line)
        first = lexer.next()
        if first.kind is TokenKind.INTEGER:
            first = lexer.next()
        return first.kind
