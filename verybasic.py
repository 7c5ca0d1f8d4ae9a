"""VeryBasic entry point and REPL wiring."""

from __future__ import annotations
import argparse
import sys
from typing import Dict, List, Optional

from extensions import ExtensionError, RuntimeServices, load_runtime_services
from interpreter import DEFAULT_MAX_DEPTH, Interpreter, Signal, TracebackFormatter
from lexer import BasicError, BasicLexError, BasicSyntaxError, Lexer, TokenKind


def _syntax_message(error: BasicError, interpreter: Interpreter) -> str:
    message = f"SYNTAX ERROR: {error}"
    if interpreter.line_index is not None and interpreter.line is not None:
        message += f" (line {interpreter.line_index + 1}: {interpreter.line.strip()})"
    return message


def _leading_label(line: str) -> Optional[int]:
    try:
        first = Lexer().feed(line).peek()
    except BasicLexError:
        return None
    if first.kind is TokenKind.INTEGER and isinstance(first.value, int) and first.value >= 0:
        return first.value
    return None


def _render_program(lines: Dict[int, str]) -> str:
    return "\n".join(lines[label] for label in sorted(lines))


def run_repl(verbose: bool, services: RuntimeServices, max_depth: int) -> int:
    print("VeryBasic REPL. Numbered lines are stored; RUN, LIST, NEW and HELP manage them.")
    stored: Dict[int, str] = {}
    interpreter = Interpreter(source="", filename="<string>", verbose=verbose, services=services, max_depth=max_depth)

    while True:
        try:
            line = input("] ")
        except EOFError:
            print()
            break

        stripped = line.strip()
        command = stripped.upper()
        if stripped == "":
            continue
        if command == "LIST":
            for label in sorted(stored):
                print(stored[label])
            continue
        if command == "NEW":
            stored.clear()
            continue
        if command == "HELP":
            for entry in services.describe_functions() or ["NO EXTENSION FUNCTIONS"]:
                print(entry)
            continue

        label = _leading_label(stripped)
        if label is not None:
            if stripped == str(label):
                stored.pop(label, None)
            else:
                stored[label] = stripped
            continue

        try:
            if command == "RUN":
                if not stored:
                    print("NOTHING TO RUN", file=sys.stderr)
                    continue
                interpreter.run_program(_render_program(stored))
            else:
                interpreter.unwind()
                signal = interpreter.execute_line(line)
                if signal is Signal.NEXT or signal is Signal.RETURN:
                    print(f"{signal.name} IGNORED IN IMMEDIATE MODE", file=sys.stderr)
        except (BasicSyntaxError, BasicLexError) as error:
            print(_syntax_message(error, interpreter), file=sys.stderr)
        except (BasicError, ArithmeticError) as error:
            formatter = TracebackFormatter(interpreter)
            print(formatter.format_text(error, verbose=interpreter.verbose), file=sys.stderr)

    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="VeryBasic line-numbered BASIC interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit variable snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--max-depth", type=int, default=DEFAULT_MAX_DEPTH, help="Maximum FOR/GOSUB nesting depth")
    parser.add_argument("--ext", dest="extensions", action="append", default=[], metavar="PATH", help="Load an extension module (repeatable)")
    args = parser.parse_args(argv)

    if args.max_depth < 1:
        print("--max-depth must be >= 1", file=sys.stderr)
        return 1

    try:
        services = load_runtime_services(args.extensions) if args.extensions else RuntimeServices()
    except ExtensionError as exc:
        print(f"Extension error: {exc}", file=sys.stderr)
        return 1

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        return run_repl(verbose=args.verbose, services=services, max_depth=args.max_depth)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    interpreter = Interpreter(
        source=source_text,
        filename=filename,
        verbose=args.verbose,
        services=services,
        max_depth=args.max_depth,
    )
    try:
        interpreter.run()
    except (BasicSyntaxError, BasicLexError) as error:
        print(_syntax_message(error, interpreter), file=sys.stderr)
        return 1
    except (BasicError, ArithmeticError) as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(run_cli())
