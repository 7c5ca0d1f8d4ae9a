from __future__ import annotations
import json
import math
import os
import re
import sys
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, FrozenSet, Iterable, List, Optional

from expression import BasicArithmeticError, BasicRuntimeError, ExpressionEvaluator, Value, as_number
from extensions import Handler, HookRegistry, LineContext, RuntimeServices, StepContext
from lexer import BasicError, BasicLexError, BasicSyntaxError, Lexer, Token, TokenKind, TokenValue
from program import END_OF_PROGRAM, ProgramStore


__all__ = [
    "BasicArithmeticError",
    "BasicError",
    "BasicLexError",
    "BasicRuntimeError",
    "BasicSyntaxError",
    "DataPool",
    "Interpreter",
    "Signal",
    "TracebackFormatter",
    "Variables",
]

# Re-entry depth for FOR/GOSUB; each level costs several Python frames.
DEFAULT_MAX_DEPTH = 64
DEFAULT_HISTORY = 1000

TIME_VARIABLE = "TI"
INPUT_NUMBER = re.compile(r"\d+(\.\d*)?|\.\d+")


class Signal(Enum):
    CONTINUE = "continue"
    END_OF_SOURCE = "end-of-source"
    NEXT = "next"
    RETURN = "return"
    END = "end"


_TOP_LEVEL_STOP = frozenset({Signal.END})
_FOR_STOP = frozenset({Signal.NEXT, Signal.RETURN, Signal.END})
_GOSUB_STOP = frozenset({Signal.RETURN, Signal.END})


class Variables:
    """Variable table.

    A name that was never assigned reads as ``DEFAULT`` (numeric zero); that
    is part of the language, not an error. ``reset`` empties the table and
    seeds ``PI`` and ``E``.
    """

    DEFAULT: Value = 0

    def __init__(self) -> None:
        self.values: Dict[str, Value] = {}
        self.reset()

    def reset(self) -> None:
        self.values.clear()
        self.values["PI"] = math.pi
        self.values["E"] = math.e

    def get(self, name: str) -> Value:
        return self.values.get(name, self.DEFAULT)

    def set(self, name: str, value: Value) -> None:
        self.values[name] = value

    def has(self, name: str) -> bool:
        return name in self.values

    def __getitem__(self, name: str) -> Value:
        return self.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.values

    def snapshot(self) -> Dict[str, str]:
        def _render(val: Value) -> str:
            rendered = repr(val) if isinstance(val, str) else str(val)
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            return rendered

        return {k: _render(v) for k, v in self.values.items()}


class DataPool:
    """Literal values harvested from DATA lines, read in order by READ."""

    def __init__(self, items: Iterable[TokenValue] = ()) -> None:
        self.items: List[TokenValue] = list(items)
        self.cursor = 0

    def __len__(self) -> int:
        return len(self.items)

    @property
    def remaining(self) -> int:
        return len(self.items) - self.cursor

    def read(self) -> TokenValue:
        if self.cursor >= len(self.items):
            raise BasicRuntimeError("OUT OF DATA")
        value = self.items[self.cursor]
        self.cursor += 1
        return value

    def restore(self) -> None:
        self.cursor = 0


@dataclass
class Frame:
    name: str
    frame_id: str
    return_position: Optional[int]
    call_line_index: Optional[int]


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    frame_id: Optional[str]
    line_index: Optional[int]
    statement: Optional[str]
    rule: str
    env_snapshot: Optional[Dict[str, str]]


class StateLogger:
    def __init__(self, verbose: bool, history: int = DEFAULT_HISTORY) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=history)
        self.next_state_index = 0
        self.frame_last_entry: Dict[str, StateEntry] = {}

    def record(
        self,
        *,
        frame: Optional[Frame],
        line_index: Optional[int],
        statement: Optional[str],
        rule: str,
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            frame_id=frame.frame_id if frame else None,
            line_index=line_index,
            statement=statement,
            rule=rule,
            env_snapshot=env_snapshot,
        )
        self.entries.append(entry)
        if frame:
            self.frame_last_entry[frame.frame_id] = entry
        self.next_state_index += 1
        return entry

    def last_entry_for_frame(self, frame_id: str) -> Optional[StateEntry]:
        return self.frame_last_entry.get(frame_id)

    def clear(self) -> None:
        self.entries.clear()
        self.frame_last_entry.clear()
        self.next_state_index = 0


def _write_stdout(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class Interpreter:
    """Runs a BASIC program one physical line at a time.

    Each line is fed to the shared lexer and dispatched on its leading
    keyword. Loops and subroutines re-enter ``_run_lines`` recursively and
    report back with a ``Signal``; the program cursor lives in the
    ``ProgramStore``.
    """

    def __init__(
        self,
        *,
        source: str = "",
        filename: str = "<string>",
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
        input_provider: Optional[Callable[[], str]] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        lexer: Optional[Lexer] = None,
    ) -> None:
        if max_depth < 1:
            raise ValueError("max_depth must be >= 1")
        self.source = source
        self.filename = filename if filename == "<string>" else os.path.abspath(filename)
        self.verbose = verbose
        self.services = services or RuntimeServices()
        self.hook_registry: HookRegistry = self.services.hook_registry
        self.input_provider = input_provider or (lambda: input())
        self.output_sink = output_sink or _write_stdout
        self.max_depth = max_depth

        self.lexer = lexer or Lexer()
        self.variables = Variables()
        self.program = ProgramStore("", lexer=self.lexer)
        self.data = DataPool()
        self.evaluator = ExpressionEvaluator(self.lexer, self.value_of, self.services.functions)

        self.logger = StateLogger(verbose=verbose)
        self.line: Optional[str] = None
        self.line_index: Optional[int] = None
        self.frame_counter = 0
        self.call_stack: List[Frame] = [self._new_frame("<top-level>", None)]

        self._handlers: Dict[TokenKind, Callable[[Token], Signal]] = {
            TokenKind.EOS: self._do_nothing,
            TokenKind.EOL: self._do_nothing,
            TokenKind.REM: self._do_nothing,
            TokenKind.DATA: self._do_nothing,
            TokenKind.LET: self._do_assignment,
            TokenKind.IDENT: self._do_assignment,
            TokenKind.PRINT: self._do_print,
            TokenKind.INPUT: self._do_input,
            TokenKind.IF: self._do_conditional,
            TokenKind.FOR: self._do_for,
            TokenKind.NEXT: lambda _token: Signal.NEXT,
            TokenKind.GOTO: self._do_goto,
            TokenKind.GOSUB: self._do_gosub,
            TokenKind.RETURN: lambda _token: Signal.RETURN,
            TokenKind.READ: self._do_read,
            TokenKind.RESTORE: self._do_restore,
            TokenKind.STOP: self._do_stop,
            TokenKind.END: lambda _token: Signal.END,
        }

    # ---- program level ----

    def reset(self, source: str) -> None:
        """Fresh variables, program store and DATA pool for ``source``."""
        self.variables.reset()
        self.program = ProgramStore(source, lexer=self.lexer)
        self.data = DataPool(self.program.collect_data())
        self.logger.clear()
        self.line = None
        self.line_index = None
        self.frame_counter = 0
        self.call_stack = [self._new_frame("<top-level>", None)]

    def run_program(self, source: str) -> None:
        self.source = source
        self.run()

    def run(self) -> None:
        if not self.source:
            raise BasicSyntaxError("EMPTY PROGRAM")
        try:
            self.reset(self.source)
            self._emit_event("program_start")
            self._run_lines(_TOP_LEVEL_STOP)
        except (BasicError, ArithmeticError) as error:
            self._annotate(error)
            self._emit_event("on_error", error)
            raise
        except Exception as exc:
            self._emit_event("on_error", exc)
            # Unexpected Python-level failures surface as runtime errors so
            # callers can render them with a BASIC traceback.
            wrapped = BasicRuntimeError(f"Internal interpreter error: {exc}")
            self._annotate(wrapped)
            raise wrapped from exc
        self._emit_event("program_end")

    def _run_lines(self, stop: FrozenSet[Signal]) -> Signal:
        program = self.program
        while True:
            index = program.current_position()
            line = program.next_line()
            if line is END_OF_PROGRAM:
                return Signal.END_OF_SOURCE
            assert isinstance(line, str)
            self.line_index = index
            context = self._line_context(index, line)
            self._emit_event("before_line", context)
            signal = self.execute_line(line)
            self._emit_event("after_line", context)
            if signal in stop:
                return signal
            if signal is Signal.NEXT:
                raise BasicSyntaxError(f"NEXT WITHOUT FOR in '{line}'")
            if signal is Signal.RETURN:
                raise BasicSyntaxError(f"RETURN WITHOUT GOSUB in '{line}'")

    # ---- line level ----

    def execute_line(self, line: Optional[str]) -> Signal:
        if line is None:
            raise BasicSyntaxError("No input specified")
        self.line = line
        statement = self.lexer.feed(line).next()
        if statement.kind is TokenKind.INTEGER:
            statement = self.lexer.next()
        return self._execute_statement(statement)

    def _execute_statement(self, statement: Token) -> Signal:
        self._log_step(rule=statement.kind.name)
        handler = self._handlers.get(statement.kind)
        if handler is None:
            return self._do_ignore(statement)
        return handler(statement)

    def value_of(self, name: str) -> Value:
        if name == TIME_VARIABLE:
            return time.time()
        return self.variables.get(name)

    # ---- statements ----

    def _do_nothing(self, _token: Token) -> Signal:
        return Signal.CONTINUE

    def _do_ignore(self, _token: Token) -> Signal:
        text = (self.line or "").rstrip("\r\n")
        self.output_sink(f"IGNORING <{text}> FOR NOW\n")
        return Signal.CONTINUE

    def _do_assignment(self, token: Token) -> Signal:
        if token.kind is TokenKind.LET:
            name = str(self.lexer.expect((TokenKind.IDENT,)).value)
        else:
            name = str(token.value)
        self.lexer.expect((TokenKind.ASSIGN,))
        self.variables.set(name, self.evaluator.evaluate())
        return Signal.CONTINUE

    def _do_print(self, _token: Token) -> Signal:
        parts: List[str] = []
        last: Optional[TokenKind] = None
        while True:
            kind = self.lexer.peek_kind()
            if kind is TokenKind.EOS or kind is TokenKind.EOL:
                break
            if kind is TokenKind.COMMA or kind is TokenKind.SEMICOLON:
                self.lexer.skip()
                if kind is TokenKind.COMMA:
                    parts.append("\t")
                last = kind
                continue
            parts.append(self._format(self.evaluator.evaluate()))
            last = None
        if last is not TokenKind.SEMICOLON:
            parts.append("\n")
        self.output_sink("".join(parts))
        return Signal.CONTINUE

    def _do_input(self, _token: Token) -> Signal:
        prompted = False
        while True:
            item = self.lexer.expect(
                (TokenKind.STRING, TokenKind.COMMA, TokenKind.SEMICOLON, TokenKind.IDENT, TokenKind.EOL, TokenKind.EOS)
            )
            if item.kind is TokenKind.IDENT:
                break
            if item.kind is TokenKind.EOS or item.kind is TokenKind.EOL:
                raise BasicSyntaxError(f"No variable specified for INPUT in '{self.line}'")
            prompted = True
            if item.kind is TokenKind.STRING:
                self.output_sink(str(item.value))
            elif item.kind is TokenKind.COMMA:
                self.output_sink("\t")

        if not prompted:
            self.output_sink("? ")
        try:
            text = self.input_provider()
        except EOFError:
            raise BasicRuntimeError(f"INPUT reached end of input for {item.value}")
        self.variables.set(str(item.value), self._coerce_input(text.rstrip("\r\n")))
        return Signal.CONTINUE

    def _do_conditional(self, _token: Token) -> Signal:
        if not self.evaluator.condition():
            return Signal.CONTINUE
        self.lexer.expect((TokenKind.THEN,))
        statement = self.lexer.next()
        if statement.kind is TokenKind.INTEGER:
            # IF ... THEN 100 is shorthand for IF ... THEN GOTO 100
            self.program.goto_label(statement.value)  # type: ignore[arg-type]
            return Signal.CONTINUE
        return self._execute_statement(statement)

    def _do_for(self, _token: Token) -> Signal:
        name = str(self.lexer.expect((TokenKind.IDENT,)).value)
        self.lexer.expect((TokenKind.ASSIGN,))
        start = as_number(self.evaluator.evaluate(), "FOR")
        self.lexer.expect((TokenKind.TO,))
        finish = as_number(self.evaluator.evaluate(), "TO")
        step: Any = 1
        if self.lexer.peek_kind() is TokenKind.STEP:
            self.lexer.skip()
            step = as_number(self.evaluator.evaluate(), "STEP")
        if step == 0:
            raise BasicSyntaxError(f"STEP 0 IS INVALID in '{self.line}'")

        top = self.program.current_position()
        self.variables.set(name, start)
        if self._loop_finished(name, finish, step):
            self.program.skip_to_matching_next()
            return Signal.CONTINUE

        frame = self._enter(f"FOR {name}", top)
        while True:
            self.program.resume(frame.return_position)
            signal = self._run_lines(_FOR_STOP)
            if signal is Signal.END_OF_SOURCE:
                raise BasicSyntaxError(f"Missing NEXT for FOR {name}")
            if signal is not Signal.NEXT:
                break
            bound = self.lexer.peek()
            if bound.kind is TokenKind.IDENT and bound.value != name:
                raise BasicSyntaxError(f"NEXT WITHOUT FOR ERROR: NEXT {bound.value} inside FOR {name}")
            self.variables.set(name, as_number(self.variables.get(name), "NEXT") + step)
            if self._loop_finished(name, finish, step):
                signal = Signal.CONTINUE
                break
        self._leave()
        return signal

    def _loop_finished(self, name: str, finish: Any, step: Any) -> bool:
        value = as_number(self.variables.get(name), "FOR")
        if step < 0:
            return value < finish
        return value > finish

    def _do_goto(self, _token: Token) -> Signal:
        label = self.lexer.expect((TokenKind.INTEGER,)).value
        self.program.goto_label(label)  # type: ignore[arg-type]
        return Signal.CONTINUE

    def _do_gosub(self, _token: Token) -> Signal:
        label = self.lexer.expect((TokenKind.INTEGER,)).value
        place = self.program.current_position()
        self.program.goto_label(label)  # type: ignore[arg-type]
        self._enter(f"GOSUB {label}", place)
        signal = self._run_lines(_GOSUB_STOP)
        frame = self._leave()
        if signal is Signal.RETURN:
            self.program.resume(frame.return_position)
            return Signal.CONTINUE
        # Running off the end of the program inside a subroutine just ends it.
        return Signal.END

    def _do_read(self, _token: Token) -> Signal:
        while True:
            name = str(self.lexer.expect((TokenKind.IDENT,)).value)
            self.variables.set(name, self.data.read())  # type: ignore[arg-type]
            if self.lexer.peek_kind() is not TokenKind.COMMA:
                return Signal.CONTINUE
            self.lexer.skip()

    def _do_restore(self, _token: Token) -> Signal:
        self.data.restore()
        return Signal.CONTINUE

    def _do_stop(self, _token: Token) -> Signal:
        self.output_sink("STOPPED\n")
        return Signal.END

    # ---- helpers ----

    def _format(self, value: Value) -> str:
        return str(value)

    def _coerce_input(self, text: str) -> Value:
        if INPUT_NUMBER.fullmatch(text):
            return float(text) if "." in text else int(text)
        return text

    def unwind(self) -> None:
        """Drop FOR/GOSUB frames left behind by a failed line.

        ``run`` keeps them after an error so tracebacks can show them; an
        immediate-mode caller reusing the interpreter calls this first.
        """
        del self.call_stack[1:]
        self.line_index = None

    def _enter(self, name: str, return_position: int) -> Frame:
        if len(self.call_stack) - 1 >= self.max_depth:
            raise BasicRuntimeError(f"NESTING TOO DEEP (limit {self.max_depth}) entering {name}")
        frame = self._new_frame(name, return_position)
        self.call_stack.append(frame)
        return frame

    def _leave(self) -> Frame:
        return self.call_stack.pop()

    def _new_frame(self, name: str, return_position: Optional[int]) -> Frame:
        frame_id = f"f_{self.frame_counter:04d}"
        self.frame_counter += 1
        return Frame(name=name, frame_id=frame_id, return_position=return_position, call_line_index=self.line_index)

    def _annotate(self, error: BaseException) -> None:
        if not isinstance(error, BasicRuntimeError):
            return
        if error.line_index is None:
            error.line_index = self.line_index
        if error.label is None and error.line_index is not None:
            try:
                error.label = self.program.label_at(error.line_index)
            except BasicLexError:
                error.label = None
        if error.step_index is None and self.logger.entries:
            error.step_index = self.logger.entries[-1].step_index

    def _line_context(self, index: int, line: str) -> Optional[LineContext]:
        if not self.hook_registry.wants("before_line", "after_line"):
            return None
        return LineContext(index=index, label=self.program.label_at(index), text=line)

    def _emit_event(self, event: str, *args: Any) -> None:
        for hook in self.hook_registry.hooks(event):
            self._call_extension(hook.extension, event, hook.handler, *args)

    def _call_extension(self, extension: str, where: str, handler: Handler, *args: Any) -> None:
        try:
            handler(self, *args)
        except BasicError:
            raise
        except Exception as exc:
            raise BasicRuntimeError(
                f"Extension '{extension}' failed in {where}: {exc}", line_index=self.line_index
            ) from exc

    def _log_step(self, *, rule: str) -> None:
        frame = self.call_stack[-1] if self.call_stack else None
        env_snapshot = self.variables.snapshot() if self.verbose else None
        entry = self.logger.record(
            frame=frame,
            line_index=self.line_index,
            statement=self.line,
            rule=rule,
            env_snapshot=env_snapshot,
        )

        rules = self.hook_registry.due_rules(entry.step_index)
        if not rules:
            return
        step = StepContext(
            step_index=entry.step_index,
            rule=rule,
            line_index=self.line_index,
            label=self.program.label_at(self.line_index) if self.line_index is not None else None,
            statement=self.line,
        )
        for step_rule in rules:
            self._call_extension(step_rule.extension, f"step rule (every {step_rule.every})", step_rule.handler, step)


@dataclass
class TracebackFrame:
    name: str
    line_index: Optional[int]
    label: Optional[int]
    statement: Optional[str]
    state_entry: Optional[StateEntry]


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self) -> List[TracebackFrame]:
        frames: List[TracebackFrame] = []
        for frame in self.interpreter.call_stack:
            entry = self.interpreter.logger.last_entry_for_frame(frame.frame_id)
            line_index = entry.line_index if entry else frame.call_line_index
            frames.append(
                TracebackFrame(
                    name=frame.name,
                    line_index=line_index,
                    label=self._label(line_index),
                    statement=entry.statement if entry else None,
                    state_entry=entry,
                )
            )
        return frames

    def format_text(self, error: BaseException, verbose: bool) -> str:
        filename = self.interpreter.filename
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames():
            if frame.line_index is not None:
                where = f"line {frame.line_index + 1}"
                if frame.label is not None:
                    where += f" (label {frame.label})"
                lines.append(f"  File \"{filename}\", {where}, in {frame.name}")
                if frame.statement:
                    lines.append(f"    {frame.statement.strip()}")
            else:
                lines.append(f"  <unknown location> in {frame.name}")
            if frame.state_entry:
                lines.append(
                    f"    State log index: {frame.state_entry.step_index}  State id: {frame.state_entry.state_id}"
                )
                if verbose and frame.state_entry.env_snapshot is not None:
                    snapshot = ", ".join(f"{k}={v}" for k, v in frame.state_entry.env_snapshot.items())
                    lines.append(f"    Env snapshot: {snapshot}")
        lines.append(f"{error.__class__.__name__}: {error}")
        return "\n".join(lines)

    def to_json(self, error: BaseException) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames()):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name}
            if frame.line_index is not None:
                entry["source_location"] = {
                    "file": self.interpreter.filename,
                    "line": frame.line_index + 1,
                    "label": frame.label,
                    "statement": frame.statement,
                }
            if frame.state_entry:
                entry["state_id"] = frame.state_entry.state_id
                entry["step_index"] = frame.state_entry.step_index
                entry["rule"] = frame.state_entry.rule
                if frame.state_entry.env_snapshot is not None:
                    entry["env_snapshot"] = frame.state_entry.env_snapshot
            frames_json.append(entry)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": str(error),
                "failing_step_index": getattr(error, "step_index", None),
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)

    def _label(self, line_index: Optional[int]) -> Optional[int]:
        if line_index is None:
            return None
        try:
            return self.interpreter.program.label_at(line_index)
        except BasicLexError:
            return None
