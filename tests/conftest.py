from __future__ import annotations
from typing import Callable, Iterable, List, Optional

import pytest

from interpreter import Interpreter


class Console:
    """Collects interpreter output and serves queued INPUT lines."""

    def __init__(self, lines: Iterable[str] = ()) -> None:
        self.output: List[str] = []
        self.pending: List[str] = list(lines)

    def write(self, text: str) -> None:
        self.output.append(text)

    def read(self) -> str:
        if not self.pending:
            raise EOFError
        return self.pending.pop(0)

    @property
    def text(self) -> str:
        return "".join(self.output)

    def clear(self) -> None:
        self.output.clear()


@pytest.fixture
def console() -> Console:
    return Console()


@pytest.fixture
def make_interpreter(console: Console) -> Callable[..., Interpreter]:
    def _make(source: str = "", inputs: Optional[Iterable[str]] = None, **kwargs) -> Interpreter:
        if inputs is not None:
            console.pending = list(inputs)
        return Interpreter(source=source, input_provider=console.read, output_sink=console.write, **kwargs)

    return _make


@pytest.fixture
def run(make_interpreter: Callable[..., Interpreter], console: Console) -> Callable[..., str]:
    """Run a whole program and return everything it printed."""

    def _run(source: str, **kwargs) -> str:
        interpreter = make_interpreter(source, **kwargs)
        interpreter.run()
        return console.text

    return _run
