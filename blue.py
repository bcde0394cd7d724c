"""Blue entry point: run scripts, the REPL, the bundler and version."""

from __future__ import annotations
import argparse
import os
import sys
from typing import Callable, List, Optional

from corelib import VERSION
from extensions import BlueExtensionError, RuntimeServices, build_default_services, load_runtime_services
from interpreter import BlueRuntimeError, ExitSignal, Interpreter, TracebackFormatter
from lexer import BlueParseError, Lexer
from objects import TYPE_NULL, inspect
from parser import Parser
from printer import format_node

SUBCOMMANDS = ("repl", "bundle", "version")
REPL_MODES = ("lexer", "parser", "eval")

REPL_HELP = """\
.exit          leave the REPL
.help          show this message
.save <file>   write every successfully evaluated input to <file>
.load <file>   evaluate <file> in this session
Results are bound to _1, _2, ... in evaluation order."""

PROMPT = "\x1b[38;2;153;221;255m>>\033[0m "  # light blue
CONTINUATION = "\x1b[38;2;153;221;255m..\033[0m "


def print_parse_error(error: BlueParseError) -> None:
    for message in error.errors:
        print(f"ParserError: {message}", file=sys.stderr)


def bracket_depth(text: str) -> int:
    """Count unclosed brackets, skipping strings and `#` comments."""
    depth = 0
    quote: Optional[str] = None
    i = 0
    while i < len(text):
        ch = text[i]
        if quote is not None:
            if ch == "\\":
                i += 1
            elif ch == quote:
                quote = None
        elif ch in ("'", '"', "`"):
            quote = ch
        elif ch == "#" and not text.startswith("#{", i):
            newline = text.find("\n", i)
            if newline == -1:
                break
            i = newline
        elif ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        i += 1
    return depth


def _load_services(paths: List[str]) -> RuntimeServices:
    return load_runtime_services(paths) if paths else build_default_services()


def run_repl(
    verbose: bool,
    mode: str = "eval",
    services: Optional[RuntimeServices] = None,
    read_line: Callable[[str], str] = input,
) -> int:
    print(f"\x1b[38;2;153;221;255mBlue\033[0m {VERSION} REPL ({mode} mode). Type .help for commands.")
    interpreter = Interpreter(source="", filename="<repl>", verbose=verbose, services=services)
    formatter = TracebackFormatter(interpreter)
    history: List[str] = []
    buffer: List[str] = []
    result_count = 0

    def evaluate(text: str, filename: str) -> None:
        nonlocal result_count
        if mode == "lexer":
            for token in Lexer(text, filename).tokenize():
                print(f"{token.type:<12} {token.value!r}")
            return
        if mode == "parser":
            program = Parser.from_source(text, filename).parse()
            for statement in program.statements:
                print(format_node(statement))
            return
        result = interpreter.evaluate_source(text, filename)
        if result.type != TYPE_NULL:
            result_count += 1
            interpreter.global_env.define(f"_{result_count}", result)
            print(f"_{result_count} = {inspect(result, True)}")

    while True:
        try:
            line = read_line(CONTINUATION if buffer else PROMPT)
        except EOFError:
            print()
            break
        stripped = line.strip()
        if not buffer and stripped.startswith("."):
            command, _, argument = stripped.partition(" ")
            argument = argument.strip()
            if command == ".exit":
                break
            if command == ".help":
                print(REPL_HELP)
            elif command == ".save" and argument:
                with open(argument, "w", encoding="utf-8") as handle:
                    handle.write("\n".join(history) + ("\n" if history else ""))
            elif command == ".load" and argument:
                try:
                    with open(argument, "r", encoding="utf-8") as handle:
                        text = handle.read()
                except OSError as exc:
                    print(f"Failed to read {argument}: {exc}", file=sys.stderr)
                    continue
                try:
                    evaluate(text, os.path.abspath(argument))
                    history.append(text.rstrip("\n"))
                except ExitSignal as sig:
                    return sig.code
                except BlueParseError as error:
                    print_parse_error(error)
                except BlueRuntimeError as error:
                    print(formatter.format_text(error, verbose=verbose), file=sys.stderr)
            else:
                print(f"unknown REPL command {stripped!r}; try .help", file=sys.stderr)
            continue

        buffer.append(line)
        source_text = "\n".join(buffer)
        if bracket_depth(source_text) > 0:
            continue
        buffer.clear()
        if not source_text.strip():
            continue
        try:
            evaluate(source_text, "<repl>")
            history.append(source_text)
        except ExitSignal as sig:
            return sig.code
        except BlueParseError as error:
            print_parse_error(error)
        except BlueRuntimeError as error:
            print(formatter.format_text(error, verbose=verbose), file=sys.stderr)
            # keep the REPL usable after an error deep in a call
            interpreter.call_stack = interpreter.call_stack[:1]
    return 0


def run_source(source_text: str, filename: str, *, verbose: bool, traceback_json: bool, services: RuntimeServices) -> int:
    interpreter = Interpreter(source=source_text, filename=filename, verbose=verbose, services=services)
    try:
        interpreter.run()
    except BlueParseError as error:
        print_parse_error(error)
        return 1
    except ExitSignal as sig:
        return sig.code
    except BlueRuntimeError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=verbose), file=sys.stderr)
        if traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    return 0


def run_embedded(source_text: str, name: str) -> int:
    """Entry point used by bundled archives."""
    return run_source(
        source_text,
        f"<embedded:{name}>",
        verbose=False,
        traceback_json=False,
        services=build_default_services(),
    )


def _run_repl_command(argv: List[str]) -> int:
    parser = argparse.ArgumentParser(prog="blue repl", description="Interactive Blue session")
    parser.add_argument("--mode", choices=REPL_MODES, default="eval", help="lexer prints tokens, parser prints the AST")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit env snapshots in tracebacks")
    parser.add_argument("-ext", "--ext", dest="ext", action="append", default=[], help="Extension file or .bxt pointer file")
    args = parser.parse_args(argv)
    try:
        services = _load_services(args.ext)
    except BlueExtensionError as exc:
        print(f"ExtensionError: {exc}", file=sys.stderr)
        return 1
    return run_repl(verbose=args.verbose, mode=args.mode, services=services)


def _run_bundle_command(argv: List[str]) -> int:
    from bundler import BundleError, bundle

    parser = argparse.ArgumentParser(prog="blue bundle", description="Pack a script and the interpreter into a .pyz")
    parser.add_argument("file", help="Blue script to bundle")
    parser.add_argument("-o", "--output", default=None, help="Output archive (default: <file>.pyz)")
    args = parser.parse_args(argv)
    try:
        target = bundle(args.file, args.output)
    except BundleError as exc:
        print(f"BundleError: {exc}", file=sys.stderr)
        return 1
    print(f"Bundled {args.file} -> {target}")
    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if argv and argv[0] in SUBCOMMANDS:
        command, rest = argv[0], argv[1:]
        if command == "version":
            print(f"blue {VERSION}")
            return 0
        if command == "repl":
            return _run_repl_command(rest)
        return _run_bundle_command(rest)

    parser = argparse.ArgumentParser(
        prog="blue",
        description="Blue interpreter. Subcommands: repl [--mode lexer|parser|eval], bundle FILE [-o OUT], version",
    )
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit env snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("-ext", "--ext", dest="ext", action="append", default=[], help="Extension file or .bxt pointer file")
    args = parser.parse_args(argv)

    try:
        services = _load_services(args.ext)
    except BlueExtensionError as exc:
        print(f"ExtensionError: {exc}", file=sys.stderr)
        return 1

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        return run_repl(verbose=args.verbose, services=services)

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

    return run_source(
        source_text,
        filename,
        verbose=args.verbose,
        traceback_json=args.traceback_json,
        services=services,
    )


if __name__ == "__main__":
    raise SystemExit(run_cli())
