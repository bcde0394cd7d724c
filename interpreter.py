from __future__ import annotations
import json
import os
import sys
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Tuple

from corelib import Builtins
from environment import Environment
from extensions import HookRegistry, RuntimeServices, StdlibLoader, StepContext, build_default_services
from lexer import BlueParseError, error_line, split_interpolation
from numeric import COMPARISONS, INTEGRAL_TYPES, arithmetic, compare, invert, is_numeric, make_integer, negate
from objects import (
    IGNORE,
    LITERAL_TYPES,
    NULL,
    TYPE_BOOLEAN,
    TYPE_BUILTIN,
    TYPE_ERROR,
    TYPE_FUNCTION,
    TYPE_IGNORE,
    TYPE_LIST,
    TYPE_MAP,
    TYPE_MODULE,
    TYPE_NULL,
    TYPE_PROCESS,
    TYPE_SET,
    TYPE_STRING,
    BlueRuntimeError,
    BuiltinFunction,
    Function,
    Module,
    Value,
    hash_key,
    inspect,
    is_truthy,
    make_list,
    make_string,
    map_get,
    map_set,
    native_bool,
    new_map,
    new_set,
    values_equal,
)
from parser import (
    AssignExpression,
    Block,
    BooleanLiteral,
    BreakStatement,
    CallArgument,
    CallExpression,
    CForExpression,
    Comprehension,
    ContinueStatement,
    DotCall,
    EvalExpression,
    ExecString,
    Expression,
    ExpressionStatement,
    ForExpression,
    FunctionLiteral,
    FunctionStatement,
    Identifier,
    IfExpression,
    ImportStatement,
    IndexExpression,
    InfixExpression,
    ListLiteral,
    MapLiteral,
    MatchExpression,
    NullLiteral,
    NumberLiteral,
    Parser,
    PostfixExpression,
    PrefixExpression,
    Program,
    RegexLiteral,
    ReturnStatement,
    SelfExpression,
    SetLiteral,
    SourceLocation,
    SpawnExpression,
    Statement,
    StringLiteral,
    TryStatement,
    VarStatement,
)
from pubsub import Broker, ProcessRecord, ProcessTable

__all__ = ["BlueRuntimeError", "Interpreter", "RuntimeContext", "TracebackFormatter"]

SOURCE_EXTENSION = ".b"

# Non-verbose runs keep only the most recent steps for tracebacks.
STEP_HISTORY_LIMIT = 256

# Each Blue call nests several Python frames; deep user recursion needs headroom.
RECURSION_LIMIT = 20_000
# Spawned tasks recurse on their own thread stack.
SPAWN_STACK_SIZE = 256 * 1024 * 1024


class ReturnSignal(Exception):
    def __init__(self, value: Value) -> None:
        super().__init__(value)
        self.value = value


class ExitSignal(Exception):
    def __init__(self, code: int = 0) -> None:
        super().__init__(code)
        self.code = code


class BreakSignal(Exception):
    def __init__(self) -> None:
        super().__init__()


class ContinueSignal(Exception):
    def __init__(self) -> None:
        super().__init__()


@dataclass
class Frame:
    name: str
    env: Environment
    frame_id: str
    call_location: Optional[SourceLocation]


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    frame_id: Optional[str]
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    env_snapshot: Optional[Dict[str, Any]]
    rewrite_record: Optional[Dict[str, Any]]


class StateLogger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=None if verbose else STEP_HISTORY_LIMIT)
        self.next_state_index = 0
        self.last_state_id = "seed"
        self.frame_last_entry: Dict[str, StateEntry] = {}

    def record(
        self,
        *,
        frame: Optional[Frame],
        location: Optional[SourceLocation],
        statement: Optional[str],
        rewrite_record: Optional[Dict[str, Any]] = None,
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        rewrite = {} if rewrite_record is None else rewrite_record
        if "from_state_id" not in rewrite:
            rewrite["from_state_id"] = self.last_state_id
        step_index = self.next_state_index
        state_id = f"s_{step_index:06d}"
        rewrite["to_state_id"] = state_id
        entry = StateEntry(
            step_index=step_index,
            state_id=state_id,
            frame_id=frame.frame_id if frame else None,
            source_location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            rewrite_record=rewrite,
        )
        self.entries.append(entry)
        if frame:
            self.frame_last_entry[frame.frame_id] = entry
        self.last_state_id = state_id
        self.next_state_index += 1
        return entry

    def last_entry_for_frame(self, frame_id: str) -> Optional[StateEntry]:
        return self.frame_last_entry.get(frame_id)


def _search_paths_from_env() -> List[str]:
    raw = os.environ.get("BLUE_PATH", "")
    return [os.path.abspath(p) for p in raw.split(os.pathsep) if p]


class RuntimeContext:
    """State shared by every interpreter of one program: processes, broker, modules."""

    def __init__(
        self,
        services: Optional[RuntimeServices] = None,
        search_paths: Optional[List[str]] = None,
    ) -> None:
        self.services = services or build_default_services()
        self.processes = ProcessTable()
        self.broker = Broker()
        self.stdlib = StdlibLoader(self.services)
        self.search_paths = list(search_paths) if search_paths is not None else _search_paths_from_env()
        self.module_cache: Dict[str, Module] = {}
        self.sources: Dict[str, List[str]] = {}
        self._loading: set = set()
        self._module_lock = threading.RLock()

    def source_lines(self, filename: str) -> List[str]:
        return self.sources.get(filename, [])


def _write_stdout(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class Interpreter:
    def __init__(
        self,
        *,
        source: str,
        filename: str = "<string>",
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
        input_provider: Optional[Callable[[], str]] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        context: Optional[RuntimeContext] = None,
        host_builtins: Optional[List[BuiltinFunction]] = None,
        pid: int = 0,
    ) -> None:
        self.source = source
        normalized_filename = filename if filename.startswith("<") else os.path.abspath(filename)
        self.filename = normalized_filename
        self.verbose = verbose
        self.context = context or RuntimeContext(services)
        self.context.sources.setdefault(normalized_filename, source.splitlines())
        self.services = self.context.services
        self.hook_registry: HookRegistry = self.services.hook_registry
        self.input_provider = input_provider or input
        self.output_sink = output_sink or _write_stdout
        self.pid = pid
        if sys.getrecursionlimit() < RECURSION_LIMIT:
            sys.setrecursionlimit(RECURSION_LIMIT)

        self.builtins = Builtins()
        # Extension builtins are appended to the table but cannot shadow core names.
        for builtin in self.services.builtins:
            if builtin.name not in self.builtins.table:
                self.builtins.register(builtin)
        self._builtin_values: Dict[str, Value] = {}

        # Host tables of stdlib modules live one frame above the module globals,
        # so module functions see them but `module._name` does not.
        root = Environment()
        for builtin in host_builtins or []:
            root.define(builtin.name, Value(TYPE_BUILTIN, builtin))
        self.global_env = root.child() if host_builtins else root

        self.logger = StateLogger(verbose=verbose)
        self.logger.record(frame=None, location=None, statement="<seed>", rewrite_record={"rule": "SEED"})
        self.call_stack: List[Frame] = [self._new_frame("<top-level>", self.global_env, None)]
        self.frame_counter = 1
        self._interpolations: Dict[str, List[Tuple[bool, Any]]] = {}

        self._expression_handlers: Dict[type, Callable[[Any, Environment], Value]] = {
            NumberLiteral: self._evaluate_number,
            StringLiteral: self._evaluate_string,
            BooleanLiteral: lambda node, env: native_bool(node.value),
            NullLiteral: lambda node, env: NULL,
            RegexLiteral: self._evaluate_regex,
            ExecString: self._evaluate_exec_string,
            Identifier: self._evaluate_identifier,
            PrefixExpression: self._evaluate_prefix,
            InfixExpression: self._evaluate_infix,
            PostfixExpression: self._evaluate_postfix,
            AssignExpression: self._evaluate_assign,
            CallExpression: self._evaluate_call,
            DotCall: self._evaluate_dot_call,
            IndexExpression: self._evaluate_index,
            IfExpression: self._evaluate_if,
            ForExpression: self._evaluate_for,
            CForExpression: self._evaluate_c_for,
            MatchExpression: self._evaluate_match,
            FunctionLiteral: self._evaluate_function_literal,
            ListLiteral: self._evaluate_list,
            MapLiteral: self._evaluate_map,
            SetLiteral: self._evaluate_set,
            Comprehension: self._evaluate_comprehension,
            SpawnExpression: self._evaluate_spawn,
            SelfExpression: lambda node, env: Value(TYPE_PROCESS, self.pid),
            EvalExpression: self._evaluate_eval,
        }
        self._statement_handlers: Dict[type, Callable[[Any, Environment], Value]] = {
            ExpressionStatement: lambda stmt, env: self._evaluate(stmt.expression, env),
            VarStatement: self._execute_var,
            FunctionStatement: self._execute_function_statement,
            ReturnStatement: self._execute_return,
            BreakStatement: self._execute_break,
            ContinueStatement: self._execute_continue,
            ImportStatement: self._execute_import,
            TryStatement: self._execute_try,
        }

    # -- entry points ---------------------------------------------------

    def parse(self) -> Program:
        return Parser.from_source(self.source, self.filename).parse()

    def run(self) -> Value:
        return self.execute(self.parse())

    def execute(self, program: Program) -> Value:
        """Run a parsed program in the global scope and return its last value."""
        self._emit_event("program_start", self, program, self.global_env)
        try:
            result = self._execute_statements(program.statements, self.global_env)
        except ReturnSignal as signal:
            result = signal.value
        except BreakSignal:
            raise BlueRuntimeError("break used outside of a loop", kind="Syntax")
        except ContinueSignal:
            raise BlueRuntimeError("continue used outside of a loop", kind="Syntax")
        except BlueRuntimeError as error:
            self._emit_event("on_error", self, error)
            if self.logger.entries:
                error.step_index = self.logger.entries[-1].step_index
            raise
        except (ExitSignal, BlueParseError):
            raise
        except RecursionError:
            raise self._internal_error("maximum recursion depth exceeded")
        except Exception as exc:
            self._emit_event("on_error", self, exc)
            # Unexpected Python-level failures still surface as language tracebacks.
            raise self._internal_error(f"Internal interpreter error: {exc}")
        self._emit_event("program_end", self, result)
        return result

    def evaluate_source(self, source: str, filename: str = "<repl>") -> Value:
        """Parse and run `source` in this interpreter's global scope (used by the REPL)."""
        self.context.sources[filename] = source.splitlines()
        program = Parser.from_source(source, filename).parse()
        return self.execute(program)

    def request_exit(self, code: int) -> None:
        raise ExitSignal(code)

    def _internal_error(self, message: str) -> BlueRuntimeError:
        loc = self.logger.entries[-1].source_location if self.logger.entries else None
        wrapped = BlueRuntimeError(message, kind="Runtime", location=loc)
        if self.logger.entries:
            wrapped.step_index = self.logger.entries[-1].step_index
        return wrapped

    # -- statements -----------------------------------------------------

    def _execute_block(self, block: Block, env: Environment) -> Value:
        return self._execute_statements(block.statements, env.child())

    def _execute_statements(self, statements: List[Statement], env: Environment) -> Value:
        result = NULL
        execute = self._execute_statement
        for statement in statements:
            result = execute(statement, env)
        return result

    def _execute_statement(self, statement: Statement, env: Environment) -> Value:
        self._log_step(rule=statement.__class__.__name__, location=statement.location)
        try:
            return self._statement_handlers[type(statement)](statement, env)
        except BlueRuntimeError as error:
            if error.location is None:
                error.location = statement.location
            raise

    def _execute_var(self, statement: VarStatement, env: Environment) -> Value:
        value = NULL if statement.value is None else self._evaluate(statement.value, env)
        if value.type == TYPE_FUNCTION and value.value.name is None:
            value.value.name = statement.name
        env.define(statement.name, value, immutable=statement.immutable)
        return NULL

    def _execute_function_statement(self, statement: FunctionStatement, env: Environment) -> Value:
        value = self._evaluate_function_literal(statement.function, env)
        env.define(statement.name, value)
        return NULL

    def _execute_return(self, statement: ReturnStatement, env: Environment) -> Value:
        value = NULL if statement.value is None else self._evaluate(statement.value, env)
        raise ReturnSignal(value)

    def _execute_break(self, statement: BreakStatement, env: Environment) -> Value:
        raise BreakSignal()

    def _execute_continue(self, statement: ContinueStatement, env: Environment) -> Value:
        raise ContinueSignal()

    def _execute_try(self, statement: TryStatement, env: Environment) -> Value:
        try:
            result = self._execute_block(statement.try_block, env)
        except BlueRuntimeError as error:
            if statement.catch_block is None:
                raise
            catch_env = env.child()
            catch_env.define(statement.catch_name or "_", make_string(error.message))
            result = self._execute_block(statement.catch_block, catch_env)
        finally:
            if statement.finally_block is not None:
                self._execute_block(statement.finally_block, env)
        return result

    # -- imports --------------------------------------------------------

    def _execute_import(self, statement: ImportStatement, env: Environment) -> Value:
        module = self._load_module(statement.path)
        if statement.import_all:
            for name, value in module.env.items():
                if not name.startswith("_"):
                    env.define(name, value)
            return NULL
        if statement.names is not None:
            for name in statement.names:
                env.define(name, self._module_member(module, name))
            return NULL
        env.define(statement.alias or module.name, Value(TYPE_MODULE, module))
        return NULL

    def _resolve_module_file(self, path: List[str]) -> Optional[str]:
        base = os.getcwd() if self.filename.startswith("<") else os.path.dirname(self.filename)
        for directory in [base] + self.context.search_paths:
            candidate = os.path.join(directory, *path) + SOURCE_EXTENSION
            if os.path.isfile(candidate):
                return os.path.abspath(candidate)
        return None

    def _load_module(self, path: List[str]) -> Module:
        name = path[-1]
        dotted = ".".join(path)
        filename = self._resolve_module_file(path)
        if filename is None and len(path) == 1 and self.context.stdlib.has(name):
            return self._load_stdlib_module(name)
        if filename is None:
            raise BlueRuntimeError(f"failed to import '{dotted}': no such file {dotted}{SOURCE_EXTENSION}", kind="Import")
        with self.context._module_lock:
            cached = self.context.module_cache.get(filename)
            if cached is not None:
                return cached
            if filename in self.context._loading:
                raise BlueRuntimeError(f"circular import of '{dotted}'", kind="Import")
            self.context._loading.add(filename)
            try:
                with open(filename, "r", encoding="utf-8") as handle:
                    source = handle.read()
                child = Interpreter(
                    source=source,
                    filename=filename,
                    verbose=self.verbose,
                    input_provider=self.input_provider,
                    output_sink=self.output_sink,
                    context=self.context,
                    pid=self.pid,
                )
                module = Module(name=name, env=self._run_module(child, name, child.parse))
                self.context.module_cache[filename] = module
                return module
            finally:
                self.context._loading.discard(filename)

    def _load_stdlib_module(self, name: str) -> Module:
        cache_key = f"<std:{name}>"
        with self.context._module_lock:
            cached = self.context.module_cache.get(cache_key)
            if cached is not None:
                return cached
            host = self.context.stdlib.host_module(name)
            child = Interpreter(
                source=host.source,
                filename=cache_key,
                verbose=False,
                input_provider=self.input_provider,
                output_sink=self.output_sink,
                context=self.context,
                host_builtins=host.builtins,
                pid=self.pid,
            )
            module = Module(name=name, env=self._run_module(child, name, lambda: self.context.stdlib.program(name)))
            self.context.module_cache[cache_key] = module
            return module

    def _run_module(self, child: "Interpreter", name: str, parse: Callable[[], Program]) -> Environment:
        try:
            program = parse()
        except BlueParseError as exc:
            raise BlueRuntimeError(f"ParserError in `{name}` module:\n" + "\n".join(exc.errors), kind="Import")
        try:
            child.execute(program)
        except BlueRuntimeError as exc:
            wrapped = BlueRuntimeError(f"EvaluatorError in `{name}` module: {exc}", kind="Import")
            wrapped.trace = exc.frames
            raise wrapped
        return child.global_env

    def _module_member(self, module: Module, name: str) -> Value:
        if name.startswith("_"):
            raise BlueRuntimeError(f"cannot use private object '{name}' from imported file '{module.name}'", kind="Import")
        value = module.env.values.get(name)
        if value is None:
            raise BlueRuntimeError(f"failed to find '{name}' in imported file '{module.name}'", kind="Import")
        return value

    # -- expressions ----------------------------------------------------

    def _evaluate(self, node: Expression, env: Environment) -> Value:
        try:
            return self._expression_handlers[type(node)](node, env)
        except BlueRuntimeError as error:
            if error.location is None:
                error.location = node.location
            raise

    def _evaluate_number(self, node: NumberLiteral, env: Environment) -> Value:
        return Value(LITERAL_TYPES[node.kind], node.value)

    def _evaluate_string(self, node: StringLiteral, env: Environment) -> Value:
        if not node.interpolated:
            return make_string(node.value)
        segments = self._interpolations.get(node.value)
        if segments is None:
            segments = []
            for is_expr, text in split_interpolation(node.value):
                if not is_expr:
                    segments.append((False, text))
                    continue
                try:
                    program = Parser.from_source(text, node.location.file).parse()
                except BlueParseError as exc:
                    first = exc.errors[0].splitlines()[0] if exc.errors else "empty expression"
                    raise BlueRuntimeError(
                        f"failed to parse interpolation `#{{{text}}}`: {first}",
                        kind="Syntax",
                        location=node.location,
                    )
                segments.append((True, program))
            self._interpolations[node.value] = segments
        parts: List[str] = []
        for is_expr, item in segments:
            if is_expr:
                parts.append(inspect(self._execute_statements(item.statements, env)))
            else:
                parts.append(item)
        return make_string("".join(parts))

    def _evaluate_regex(self, node: RegexLiteral, env: Environment) -> Value:
        return self.builtins.invoke(self, "re", [make_string(node.pattern)], [], env, node.location)

    def _evaluate_exec_string(self, node: ExecString, env: Environment) -> Value:
        return self._checked(self.builtins.invoke(self, "exec", [make_string(node.command)], [], env, node.location), node.location)

    def _evaluate_identifier(self, node: Identifier, env: Environment) -> Value:
        found = env.get_optional(node.name)
        if found is not None:
            return found
        builtin = self._builtin_value(node.name)
        if builtin is not None:
            return builtin
        if node.name == "_":
            return IGNORE
        raise BlueRuntimeError(f"identifier not found: {node.name}", kind="Name", location=node.location)

    def _builtin_value(self, name: str) -> Optional[Value]:
        value = self._builtin_values.get(name)
        if value is None:
            builtin = self.builtins.table.get(name)
            if builtin is None:
                return None
            value = Value(TYPE_BUILTIN, builtin)
            self._builtin_values[name] = value
        return value

    def _evaluate_prefix(self, node: PrefixExpression, env: Environment) -> Value:
        if node.operator == "<<":
            target = self._evaluate(node.right, env)
            self._check_mutable(node.right, env)
            items = self._expect_list_operand(target, "<<")
            return items.pop(0) if items else NULL
        right = self._evaluate(node.right, env)
        if node.operator == "not":
            return native_bool(not is_truthy(right))
        if node.operator == "-":
            return negate(right)
        return invert(right)

    def _evaluate_postfix(self, node: PostfixExpression, env: Environment) -> Value:
        target = self._evaluate(node.left, env)
        self._check_mutable(node.left, env)
        items = self._expect_list_operand(target, ">>")
        return items.pop() if items else NULL

    def _expect_list_operand(self, value: Value, operator: str) -> List[Value]:
        if value.type != TYPE_LIST:
            raise BlueRuntimeError(f"unknown operator: {operator}{value.type}", kind="Type")
        return value.value

    def _evaluate_infix(self, node: InfixExpression, env: Environment) -> Value:
        op = node.operator
        if op == "and":
            left = self._evaluate(node.left, env)
            return native_bool(is_truthy(left) and is_truthy(self._evaluate(node.right, env)))
        if op == "or":
            left = self._evaluate(node.left, env)
            if left.type == TYPE_NULL:
                return self._evaluate(node.right, env)
            return native_bool(is_truthy(left) or is_truthy(self._evaluate(node.right, env)))
        left = self._evaluate(node.left, env)
        right = self._evaluate(node.right, env)
        if op == "<<" and left.type in (TYPE_LIST, TYPE_SET):
            self._check_mutable(node.left, env)
            if left.type == TYPE_LIST:
                left.value.append(right)
            else:
                left.value.setdefault(hash_key(right), right)
            return left
        return self.binary(op, left, right)

    def binary(self, op: str, left: Value, right: Value) -> Value:
        """Apply a non-short-circuit infix operator to two evaluated operands."""
        if op == "==":
            return native_bool(self._equals(left, right))
        if op == "!=":
            return native_bool(not self._equals(left, right))
        if op == "in":
            return native_bool(self._contains(right, left))
        if op == "notin":
            return native_bool(not self._contains(right, left))
        if op in ("..", "..<"):
            return self._range(op, left, right)
        if is_numeric(left) and is_numeric(right):
            if op in COMPARISONS:
                return native_bool(compare(op, left, right))
            return arithmetic(op, left, right)
        if left.type == TYPE_STRING or right.type == TYPE_STRING:
            return self._string_infix(op, left, right)
        if left.type == TYPE_LIST:
            return self._list_infix(op, left, right)
        if left.type == TYPE_SET and right.type == TYPE_SET:
            return self._set_infix(op, left, right)
        if left.type == TYPE_BOOLEAN and right.type == TYPE_BOOLEAN and op in ("&", "|", "^"):
            a, b = left.value, right.value
            return native_bool({"&": a and b, "|": a or b, "^": a != b}[op])
        raise self._operator_error(op, left, right)

    def _operator_error(self, op: str, left: Value, right: Value) -> BlueRuntimeError:
        if left.type != right.type:
            return BlueRuntimeError(f"type mismatch: {left.type} {op} {right.type}", kind="Type")
        return BlueRuntimeError(f"unknown operator: {left.type} {op} {right.type}", kind="Type")

    def _equals(self, left: Value, right: Value) -> bool:
        if is_numeric(left) and is_numeric(right):
            return compare("==", left, right)
        return values_equal(left, right)

    def _contains(self, container: Value, item: Value) -> bool:
        kind = container.type
        if kind == TYPE_STRING:
            if item.type != TYPE_STRING:
                raise self._operator_error("in", item, container)
            return item.value in container.value
        if kind == TYPE_LIST:
            return any(self._equals(item, element) for element in container.value)
        if kind in (TYPE_MAP, TYPE_SET):
            return hash_key(item) in container.value
        raise self._operator_error("in", item, container)

    def _range(self, op: str, left: Value, right: Value) -> Value:
        inclusive = op == ".."
        if left.type in INTEGRAL_TYPES and right.type in INTEGRAL_TYPES:
            start, stop = left.value, right.value
            wrap = make_integer
        elif (
            left.type == TYPE_STRING
            and right.type == TYPE_STRING
            and len(left.value) == 1
            and len(right.value) == 1
        ):
            start, stop = ord(left.value), ord(right.value)
            wrap = lambda code: make_string(chr(code))
        else:
            raise self._operator_error(op, left, right)
        if not inclusive and start == stop:
            raise BlueRuntimeError(
                f"non-inclusive range with equal endpoints: {inspect(left, True)}..<{inspect(right, True)}",
                kind="Arithmetic",
            )
        step = 1 if start <= stop else -1
        end = stop + step if inclusive else stop
        return make_list([wrap(n) for n in range(start, end, step)])

    def _string_infix(self, op: str, left: Value, right: Value) -> Value:
        if op == "+":
            return make_string(inspect(left) + inspect(right))
        if op == "*":
            if left.type == TYPE_STRING and right.type in INTEGRAL_TYPES:
                return make_string(left.value * max(right.value, 0))
            if right.type == TYPE_STRING and left.type in INTEGRAL_TYPES:
                return make_string(right.value * max(left.value, 0))
        if left.type == TYPE_STRING and right.type == TYPE_STRING and op in COMPARISONS:
            return native_bool(COMPARISONS[op](left.value, right.value))
        raise self._operator_error(op, left, right)

    def _list_infix(self, op: str, left: Value, right: Value) -> Value:
        if op == "+" and right.type == TYPE_LIST:
            return make_list(left.value + right.value)
        if op == "*" and right.type in INTEGRAL_TYPES:
            return make_list(left.value * max(right.value, 0))
        raise self._operator_error(op, left, right)

    def _set_infix(self, op: str, left: Value, right: Value) -> Value:
        a, b = left.value, right.value
        if op == "|":
            return Value(TYPE_SET, {**a, **{k: v for k, v in b.items() if k not in a}})
        if op == "&":
            return Value(TYPE_SET, {k: v for k, v in a.items() if k in b})
        if op == "-":
            return Value(TYPE_SET, {k: v for k, v in a.items() if k not in b})
        if op == "^":
            merged = {k: v for k, v in a.items() if k not in b}
            merged.update({k: v for k, v in b.items() if k not in a})
            return Value(TYPE_SET, merged)
        if op == "<=":
            return native_bool(a.keys() <= b.keys())
        if op == ">=":
            return native_bool(a.keys() >= b.keys())
        if op in ("<", ">"):
            return native_bool(a.keys() < b.keys() if op == "<" else a.keys() > b.keys())
        raise self._operator_error(op, left, right)

    # -- assignment -----------------------------------------------------

    def _root_identifier(self, node: Expression) -> Optional[Identifier]:
        while isinstance(node, IndexExpression):
            node = node.base
        return node if isinstance(node, Identifier) else None

    def _check_mutable(self, node: Expression, env: Environment) -> None:
        root = self._root_identifier(node)
        if root is not None and env.is_immutable(root.name):
            raise BlueRuntimeError(f"'{root.name}' is immutable", kind="Name")

    def _evaluate_assign(self, node: AssignExpression, env: Environment) -> Value:
        target = node.target
        self._check_mutable(target, env)
        value = self._evaluate(node.value, env)
        if node.operator != "=":
            current = self._current_target_value(target, env)
            value = self.binary(node.operator[:-1], current, value)
        if value.type == TYPE_FUNCTION and value.value.name is None and isinstance(target, Identifier):
            value.value.name = target.name
        self._store(target, value, env)
        return value

    def _current_target_value(self, target: Expression, env: Environment) -> Value:
        if isinstance(target, IndexExpression):
            container = self._evaluate(target.base, env)
            if container.type == TYPE_MAP:
                key = self._evaluate(target.index, env)
                found = map_get(container, key)
                if found is None:
                    raise BlueRuntimeError(f"map key `{inspect(key, True)}` does not exist", kind="Name")
                return found
            return self._index(container, self._evaluate(target.index, env))
        return self._evaluate(target, env)

    def _store(self, target: Expression, value: Value, env: Environment) -> None:
        if isinstance(target, Identifier):
            env.set(target.name, value)
            return
        container = self._evaluate(target.base, env)
        key = self._evaluate(target.index, env)
        kind = container.type
        if kind == TYPE_LIST:
            items: List[Value] = container.value
            index = self._expect_index(key, container)
            if index < 0:
                index += len(items)
                if index < 0:
                    raise BlueRuntimeError(f"index out of range: {key.value}", kind="Type")
            if index >= len(items):
                items.extend([NULL] * (index + 1 - len(items)))
            items[index] = value
            return
        if kind == TYPE_MAP:
            map_set(container, key, value)
            return
        if kind == TYPE_STRING:
            if value.type != TYPE_STRING:
                raise BlueRuntimeError(f"string index assignment expects a STRING. got={value.type}", kind="Type")
            text = container.value
            index = self._expect_index(key, container)
            if index < 0:
                index += len(text)
            if not 0 <= index < len(text):
                raise BlueRuntimeError(f"index out of range: {key.value}", kind="Type")
            self._store(target.base, make_string(text[:index] + value.value + text[index + 1:]), env)
            return
        raise BlueRuntimeError(f"index assignment not supported: {kind}[{key.type}]", kind="Type")

    # -- indexing -------------------------------------------------------

    def _evaluate_index(self, node: IndexExpression, env: Environment) -> Value:
        return self._index(self._evaluate(node.base, env), self._evaluate(node.index, env))

    def _expect_index(self, key: Value, container: Value) -> int:
        if key.type not in INTEGRAL_TYPES:
            raise BlueRuntimeError(f"index operator not supported: {container.type}[{key.type}]", kind="Type")
        return key.value

    def _index(self, container: Value, key: Value) -> Value:
        kind = container.type
        if kind in (TYPE_LIST, TYPE_STRING, TYPE_SET):
            if kind == TYPE_SET:
                items = list(container.value.values())
            else:
                items = container.value
            if key.type == TYPE_LIST:
                picked = [self._index(container, k) for k in key.value]
                if kind == TYPE_STRING:
                    return make_string("".join(p.value for p in picked if p.type == TYPE_STRING))
                return make_list(picked)
            index = self._expect_index(key, container)
            if index < 0:
                index += len(items)
            if not 0 <= index < len(items):
                return NULL
            return make_string(items[index]) if kind == TYPE_STRING else items[index]
        if kind == TYPE_MAP:
            found = map_get(container, key)
            return NULL if found is None else found
        if kind == TYPE_MODULE and key.type == TYPE_STRING:
            return self._module_member(container.value, key.value)
        if kind == TYPE_PROCESS and key.type == TYPE_STRING:
            if key.value == "id":
                return make_integer(container.value)
            if key.value == "name":
                record = self.context.processes.get(container.value)
                return make_string(record.name) if record is not None else NULL
        raise BlueRuntimeError(f"index operator not supported: {kind}[{key.type}]", kind="Type")

    # -- calls ----------------------------------------------------------

    def _evaluate_arguments(self, args: List[CallArgument], env: Environment) -> Tuple[List[Value], Dict[str, Value]]:
        positional: List[Value] = []
        named: Dict[str, Value] = {}
        for arg in args:
            value = self._evaluate(arg.expression, env)
            if arg.name is None:
                positional.append(value)
            elif arg.name in named:
                raise BlueRuntimeError(f"duplicate named argument '{arg.name}'", kind="Argument")
            else:
                named[arg.name] = value
        return positional, named

    def _evaluate_call(self, node: CallExpression, env: Environment) -> Value:
        callee = self._evaluate(node.function, env)
        positional, named = self._evaluate_arguments(node.args, env)
        arg_nodes = [arg.expression for arg in node.args]
        return self.call_function(callee, positional, node.location, named=named, env=env, arg_nodes=arg_nodes)

    def _evaluate_dot_call(self, node: DotCall, env: Environment) -> Value:
        receiver = self._evaluate(node.receiver, env)
        positional, named = self._evaluate_arguments(node.args, env)
        arg_nodes = [node.receiver] + [arg.expression for arg in node.args]
        if receiver.type == TYPE_MODULE:
            callee = self._module_member(receiver.value, node.method)
            return self.call_function(callee, positional, node.location, named=named, env=env, arg_nodes=arg_nodes[1:])
        builtin = self._builtin_value(node.method)
        if builtin is not None:
            return self.call_function(builtin, [receiver] + positional, node.location, named=named, env=env, arg_nodes=arg_nodes)
        callee = self._index(receiver, make_string(node.method))
        return self.call_function(callee, positional, node.location, named=named, env=env, arg_nodes=arg_nodes[1:])

    def call_function(
        self,
        callee: Value,
        args: List[Value],
        location: SourceLocation,
        *,
        named: Optional[Dict[str, Value]] = None,
        env: Optional[Environment] = None,
        arg_nodes: Optional[List[Expression]] = None,
    ) -> Value:
        """Call a function or builtin value with evaluated arguments."""
        named = named or {}
        if callee.type == TYPE_BUILTIN:
            builtin: BuiltinFunction = callee.value
            if named:
                raise BlueRuntimeError(f"`{builtin.name}` does not accept named arguments", kind="Argument", location=location)
            self._emit_event("before_call", self, builtin.name, args, env, location)
            builtin.validate(len(args))
            result = builtin.impl(self, args, arg_nodes or [], env or self.global_env, location)
            self._emit_event("after_call", self, builtin.name, result, env, location)
            return self._checked(result, location)
        if callee.type != TYPE_FUNCTION:
            raise BlueRuntimeError(f"not a function: {callee.type}", kind="Type", location=location)
        return self._call_user_function(callee.value, args, named, location)

    def _checked(self, result: Value, location: SourceLocation) -> Value:
        if result.type == TYPE_ERROR:
            raise BlueRuntimeError(result.value, kind="Runtime", location=location)
        return result

    def _call_user_function(
        self,
        function: Function,
        positional_args: List[Value],
        keyword_args: Dict[str, Value],
        call_location: SourceLocation,
    ) -> Value:
        name = function.name or "<anonymous>"
        params = function.params
        if len(positional_args) > len(params):
            raise BlueRuntimeError(
                f"function `{name}` takes {len(params)} arguments but {len(positional_args)} were given",
                kind="Argument",
                location=call_location,
            )
        env = function.env.child()
        for param, arg in zip(params, positional_args):
            env.define(param.name, arg)
        param_names = {param.name for param in params}
        for key, value in keyword_args.items():
            if key not in param_names:
                raise BlueRuntimeError(f"function `{name}` has no parameter named '{key}'", kind="Argument", location=call_location)
            env.define(key, value)
        for i in range(len(positional_args), len(params)):
            param = params[i]
            if param.name in keyword_args:
                continue
            default = function.defaults[i]
            if default is None:
                raise BlueRuntimeError(
                    f"function `{name}` missing argument for parameter '{param.name}'",
                    kind="Argument",
                    location=call_location,
                )
            env.define(param.name, default)

        self._emit_event("before_call", self, name, positional_args, env, call_location)
        frame = self._new_frame(name, env, call_location)
        self.call_stack.append(frame)
        try:
            result = self._execute_statements(function.body.statements, env)
        except ReturnSignal as signal:
            result = signal.value
        except (BreakSignal, ContinueSignal):
            raise BlueRuntimeError("break or continue used outside of a loop", kind="Syntax", location=call_location)
        except BlueRuntimeError as error:
            error.trace.append(call_location)
            raise
        finally:
            self.call_stack.pop()
        self._emit_event("after_call", self, name, result, env, call_location)
        return result

    # -- control flow ---------------------------------------------------

    def _evaluate_if(self, node: IfExpression, env: Environment) -> Value:
        for branch in node.branches:
            if is_truthy(self._evaluate(branch.condition, env)):
                return self._execute_block(branch.block, env)
        if node.else_block is not None:
            return self._execute_block(node.else_block, env)
        return NULL

    def _loop_names(self, target: Expression) -> Optional[List[str]]:
        if isinstance(target, Identifier):
            return [target.name]
        if (
            isinstance(target, ListLiteral)
            and len(target.elements) == 2
            and all(isinstance(e, Identifier) for e in target.elements)
        ):
            return [e.name for e in target.elements]
        return None

    def _iterate(self, names: List[str], iterable: Value) -> Iterator[List[Tuple[str, Value]]]:
        """Yield the bindings of each loop iteration; the iterable is snapshotted first."""
        kind = iterable.type
        if kind == TYPE_MAP:
            for pair in list(iterable.value.values()):
                if len(names) == 2:
                    yield [(names[0], pair.key), (names[1], pair.value)]
                else:
                    yield [(names[0], make_list([pair.key, pair.value]))]
            return
        if kind == TYPE_LIST:
            items = list(iterable.value)
        elif kind == TYPE_STRING:
            items = [make_string(ch) for ch in iterable.value]
        elif kind == TYPE_SET:
            items = list(iterable.value.values())
        else:
            raise BlueRuntimeError(f"cannot iterate over {kind}", kind="Type")
        for index, item in enumerate(items):
            if len(names) == 2:
                yield [(names[0], make_integer(index)), (names[1], item)]
            else:
                yield [(names[0], item)]

    def _evaluate_for(self, node: ForExpression, env: Environment) -> Value:
        condition = node.condition
        names = None
        if isinstance(condition, InfixExpression) and condition.operator == "in":
            names = self._loop_names(condition.left)
        if names is not None:
            iterable = self._evaluate(condition.right, env)
            loop_env = env.child()
            for bindings in self._iterate(names, iterable):
                for name, value in bindings:
                    loop_env.values[name] = value
                try:
                    self._execute_block(node.block, loop_env)
                except BreakSignal:
                    break
                except ContinueSignal:
                    continue
            return NULL
        while is_truthy(self._evaluate(condition, env)):
            try:
                self._execute_block(node.block, env)
            except BreakSignal:
                break
            except ContinueSignal:
                continue
        return NULL

    def _evaluate_c_for(self, node: CForExpression, env: Environment) -> Value:
        loop_env = env.child()
        if node.init is not None:
            self._execute_statement(node.init, loop_env)
        while node.condition is None or is_truthy(self._evaluate(node.condition, loop_env)):
            try:
                self._execute_block(node.block, loop_env)
            except BreakSignal:
                break
            except ContinueSignal:
                pass
            if node.post is not None:
                self._evaluate(node.post, loop_env)
        return NULL

    def _evaluate_match(self, node: MatchExpression, env: Environment) -> Value:
        subject = None if node.subject is None else self._evaluate(node.subject, env)
        for arm in node.arms:
            if isinstance(arm.pattern, Identifier) and arm.pattern.name == "_":
                return self._execute_block(arm.block, env)
            pattern = self._evaluate(arm.pattern, env)
            if subject is None:
                matched = pattern.type == TYPE_IGNORE or is_truthy(pattern)
            else:
                matched = self._pattern_matches(pattern, subject)
            if matched:
                return self._execute_block(arm.block, env)
        return NULL

    def _pattern_matches(self, pattern: Value, subject: Value) -> bool:
        if pattern.type == TYPE_IGNORE:
            return True
        if pattern.type == TYPE_MAP and subject.type == TYPE_MAP:
            if len(pattern.value) != len(subject.value):
                return False
            for key, pair in pattern.value.items():
                other = subject.value.get(key)
                if other is None:
                    return False
                if not self._pattern_matches(pair.value, other.value):
                    return False
            return True
        return self._equals(pattern, subject)

    # -- literals -------------------------------------------------------

    def _evaluate_function_literal(self, node: FunctionLiteral, env: Environment) -> Value:
        defaults = [None if p.default is None else self._evaluate(p.default, env) for p in node.params]
        return Value(TYPE_FUNCTION, Function(params=node.params, defaults=defaults, body=node.body, env=env, name=node.name))

    def _evaluate_list(self, node: ListLiteral, env: Environment) -> Value:
        return make_list([self._evaluate(element, env) for element in node.elements])

    def _evaluate_map(self, node: MapLiteral, env: Environment) -> Value:
        return new_map([(self._evaluate(k, env), self._evaluate(v, env)) for k, v in node.pairs])

    def _evaluate_set(self, node: SetLiteral, env: Environment) -> Value:
        return new_set([self._evaluate(element, env) for element in node.elements])

    def _evaluate_comprehension(self, node: Comprehension, env: Environment) -> Value:
        names = self._loop_names(node.target)
        if names is None:
            raise BlueRuntimeError("comprehension target must be an identifier or [a, b]", kind="Syntax")
        iterable = self._evaluate(node.iterable, env)
        scope = env.child()
        elements: List[Value] = []
        pairs: List[Tuple[Value, Value]] = []
        for bindings in self._iterate(names, iterable):
            for name, value in bindings:
                scope.values[name] = value
            if node.condition is not None and not is_truthy(self._evaluate(node.condition, scope)):
                continue
            element = self._evaluate(node.element, scope)
            if node.kind == "map":
                pairs.append((element, self._evaluate(node.value, scope)))
            else:
                elements.append(element)
        if node.kind == "map":
            return new_map(pairs)
        if node.kind == "set":
            return new_set(elements)
        return make_list(elements)

    # -- concurrency and eval -------------------------------------------

    def _evaluate_spawn(self, node: SpawnExpression, env: Environment) -> Value:
        callee = self._evaluate(node.function, env)
        if callee.type not in (TYPE_FUNCTION, TYPE_BUILTIN):
            raise BlueRuntimeError(f"`spawn` expects a FUNCTION. got={callee.type}", kind="Argument")
        args: List[Value] = []
        if node.args is not None:
            arg_list = self._evaluate(node.args, env)
            if arg_list.type != TYPE_LIST:
                raise BlueRuntimeError(f"`spawn` expects arguments as a LIST. got={arg_list.type}", kind="Argument")
            args = list(arg_list.value)
        if callee.type == TYPE_FUNCTION:
            fn: Function = callee.value
            # Rebinding in the spawned task must not leak back into this one.
            callee = Value(
                TYPE_FUNCTION,
                Function(params=fn.params, defaults=fn.defaults, body=fn.body, env=fn.env.copy_chain(), name=fn.name),
            )
            name = fn.name or "<anonymous>"
        else:
            name = callee.value.name
        record = self.context.processes.register(name)
        worker = Interpreter(
            source=self.source,
            filename=self.filename,
            verbose=False,
            input_provider=self.input_provider,
            output_sink=self.output_sink,
            context=self.context,
            pid=record.pid,
        )
        if threading.stack_size() < SPAWN_STACK_SIZE:
            threading.stack_size(SPAWN_STACK_SIZE)
        thread = threading.Thread(
            target=worker._run_process,
            args=(record, callee, args, node.location),
            name=f"blue-process-{record.pid}",
            daemon=True,
        )
        record.thread = thread
        thread.start()
        return Value(TYPE_PROCESS, record.pid)

    def _run_process(self, record: ProcessRecord, callee: Value, args: List[Value], location: SourceLocation) -> None:
        self._emit_event("process_start", self, record.pid)
        try:
            record.result = self.call_function(callee, args, location)
        except ExitSignal:
            pass
        except BlueRuntimeError as error:
            record.error = error
            print(f"ProcessError: {error}", file=sys.stderr)
        except RecursionError:
            record.error = BlueRuntimeError("maximum recursion depth exceeded", kind="Process", location=location)
            print(f"ProcessError: {record.error}", file=sys.stderr)
        finally:
            self.context.broker.remove_subscriber(record.pid)
            self.context.processes.remove(record.pid)
        self._emit_event("process_exit", self, record.pid, record.result)

    def _evaluate_eval(self, node: EvalExpression, env: Environment) -> Value:
        source = self._evaluate(node.source, env)
        if source.type != TYPE_STRING:
            raise BlueRuntimeError(f"`eval` expects a STRING. got={source.type}", kind="Argument")
        try:
            program = Parser.from_source(source.value, "<eval>").parse()
        except BlueParseError as exc:
            raise BlueRuntimeError("eval failed to parse: " + " | ".join(e.splitlines()[0] for e in exc.errors), kind="Syntax")
        return self._execute_statements(program.statements, env)

    # -- hooks and state log --------------------------------------------

    def _new_frame(self, name: str, env: Environment, call_location: Optional[SourceLocation]) -> Frame:
        frame_id = f"f_{getattr(self, 'frame_counter', 0):04d}"
        self.frame_counter = getattr(self, "frame_counter", 0) + 1
        return Frame(name=name, env=env, frame_id=frame_id, call_location=call_location)

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        try:
            self.hook_registry.emit(event, *args, **kwargs)
        except BlueRuntimeError:
            raise
        except Exception as exc:
            loc = None
            if self.logger.entries:
                loc = self.logger.entries[-1].source_location
            raise BlueRuntimeError(f"Extension hook '{event}' failed: {exc}", kind="Runtime", location=loc)

    def _log_step(
        self,
        *,
        rule: str,
        location: Optional[SourceLocation],
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        frame = self.call_stack[-1] if self.call_stack else None
        env_snapshot = frame.env.snapshot() if (self.verbose and frame) else None
        statement = location.statement if location else None
        rewrite = {"rule": rule}
        if extra:
            rewrite.update(extra)
        entry = self.logger.record(
            frame=frame,
            location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            rewrite_record=rewrite,
        )
        try:
            self.hook_registry.after_step(
                self,
                StepContext(step_index=entry.step_index, rule=rule, location=location, extra=extra),
            )
        except BlueRuntimeError:
            raise
        except Exception as exc:
            raise BlueRuntimeError(f"Extension step rule failed: {exc}", kind="Runtime", location=location)


@dataclass
class TracebackFrame:
    location: SourceLocation
    excerpt: str


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self, error: BlueRuntimeError) -> List[TracebackFrame]:
        frames: List[TracebackFrame] = []
        for location in error.frames:
            lines = self.interpreter.context.source_lines(location.file)
            frames.append(TracebackFrame(location=location, excerpt=error_line(lines, location.file, location.line, location.column)))
        return frames

    def format_text(self, error: BlueRuntimeError, verbose: bool) -> str:
        lines = [str(error)]
        for frame in self.build_frames(error):
            lines.append(frame.excerpt)
        if verbose and error.step_index is not None:
            lines.append(f"State log index: {error.step_index}")
            entry = self.interpreter.logger.entries[-1] if self.interpreter.logger.entries else None
            if entry is not None and entry.env_snapshot is not None:
                snapshot = ", ".join(f"{k}={v}" for k, v in entry.env_snapshot.items())
                lines.append(f"Env snapshot: {snapshot}")
        return "\n".join(lines)

    def to_json(self, error: BlueRuntimeError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames(error)):
            frames_json.append(
                {
                    "frame_index": index,
                    "file": frame.location.file,
                    "line": frame.location.line,
                    "column": frame.location.column,
                    "statement": frame.location.statement,
                }
            )
        data = {
            "error": {
                "kind": error.kind,
                "message": error.message,
                "failing_step_index": error.step_index,
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)
