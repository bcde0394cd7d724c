from __future__ import annotations
import functools
import json
import os
import re
import subprocess
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from environment import Environment
from numeric import compare, is_numeric, make_integer, make_uinteger, to_decimal
from objects import (
    INT64_MIN,
    NULL,
    TRUE,
    TYPE_BIGFLOAT,
    TYPE_BIGINTEGER,
    TYPE_BOOLEAN,
    TYPE_BUILTIN,
    TYPE_FLOAT,
    TYPE_FUNCTION,
    TYPE_HOST,
    TYPE_INTEGER,
    TYPE_LIST,
    TYPE_MAP,
    TYPE_MODULE,
    TYPE_NULL,
    TYPE_PROCESS,
    TYPE_SET,
    TYPE_STRING,
    TYPE_UINTEGER,
    UINT64_MASK,
    BlueRuntimeError,
    BuiltinFunction,
    BuiltinImpl,
    Value,
    hash_key,
    hash_u64,
    host_value,
    inspect,
    is_truthy,
    make_error,
    make_list,
    make_string,
    native_bool,
    new_map,
    new_set,
)
from parser import Expression, SourceLocation

VERSION = "0.1.2"

# On Windows, command lines over a certain length cause CreateProcess errors
WINDOWS_COMMAND_LENGTH_LIMIT = 8000


def positional_type_error(name: str, position: int, expected: str, got: str) -> BlueRuntimeError:
    return BlueRuntimeError(
        f"PositionalTypeError: `{name}` expects argument {position} to be {expected}. got={got}",
        kind="Argument",
    )


def to_native(value: Value) -> Any:
    """Convert a value into plain Python data (used by JSON and host modules)."""
    kind = value.type
    if kind in (TYPE_INTEGER, TYPE_UINTEGER, TYPE_BIGINTEGER, TYPE_FLOAT, TYPE_STRING, TYPE_BOOLEAN):
        return value.value
    if kind == TYPE_BIGFLOAT:
        return float(value.value)
    if kind == TYPE_NULL:
        return None
    if kind == TYPE_LIST:
        return [to_native(item) for item in value.value]
    if kind == TYPE_SET:
        return [to_native(item) for item in value.value.values()]
    if kind == TYPE_MAP:
        out: Dict[Any, Any] = {}
        for pair in value.value.values():
            key = pair.key.value if pair.key.type == TYPE_STRING else inspect(pair.key)
            out[key] = to_native(pair.value)
        return out
    return inspect(value)


def from_native(data: Any) -> Value:
    if data is None:
        return NULL
    if isinstance(data, bool):
        return native_bool(data)
    if isinstance(data, int):
        return make_integer(data)
    if isinstance(data, float):
        return Value(TYPE_FLOAT, data)
    if isinstance(data, Decimal):
        return Value(TYPE_BIGFLOAT, data)
    if isinstance(data, str):
        return make_string(data)
    if isinstance(data, (list, tuple)):
        return make_list([from_native(item) for item in data])
    if isinstance(data, dict):
        return new_map([(from_native(k), from_native(v)) for k, v in data.items()])
    raise BlueRuntimeError(f"cannot convert {type(data).__name__} to a value", kind="Type")


def compare_values(left: Value, right: Value) -> int:
    if is_numeric(left) and is_numeric(right):
        if compare("<", left, right):
            return -1
        return 1 if compare(">", left, right) else 0
    if left.type == right.type and left.type in (TYPE_STRING, TYPE_BOOLEAN):
        return (left.value > right.value) - (left.value < right.value)
    raise BlueRuntimeError(f"cannot compare {left.type} with {right.type}", kind="Type")


class Builtins:
    def __init__(self) -> None:
        self.table: Dict[str, BuiltinFunction] = {}
        self._register_custom("print", 0, None, self._print, "`print` returns NULL and prints each of args")
        self._register_custom("println", 0, None, self._println, "`println` returns NULL and prints each of args on a new line")
        self._register_custom("input", 0, 1, self._input, "`input` reads a line from stdin, printing the optional prompt first")
        self._register_custom("len", 1, 1, self._len, "`len` returns the INTEGER length of a STRING, LIST, MAP or SET")
        self._register_custom("type", 1, 1, self._type, "`type` returns the STRING type representation of the given arg")
        self._register_custom("str", 1, 1, self._str, "`str` returns the STRING representation of the given arg")
        self._register_custom("int", 1, 1, self._int, "`int` converts the arg to an INTEGER (lossy)")
        self._register_custom("uint", 1, 1, self._uint, "`uint` converts the arg to a UINTEGER")
        self._register_custom("float", 1, 1, self._float, "`float` converts the arg to a FLOAT")
        self._register_custom("bigint", 1, 1, self._bigint, "`bigint` converts the arg to a BIG_INTEGER")
        self._register_custom("bigfloat", 1, 1, self._bigfloat, "`bigfloat` converts the arg to a BIG_FLOAT")
        self._register_custom("keys", 1, 1, self._keys, "`keys` returns a LIST of key objects from given MAP")
        self._register_custom("values", 1, 1, self._values, "`values` returns a LIST of value objects from given MAP")
        self._register_custom("append", 2, None, self._append, "`append` returns a new LIST with the args at the end")
        self._register_custom("prepend", 2, None, self._prepend, "`prepend` returns a new LIST with the args at the front")
        self._register_custom("push", 2, None, self._push, "`push` appends the args to the LIST in place and returns the new length")
        self._register_custom("pop", 1, 1, self._pop, "`pop` removes and returns the last element of the LIST")
        self._register_custom("shift", 1, 1, self._shift, "`shift` removes and returns the first element of the LIST")
        self._register_custom("unshift", 2, None, self._unshift, "`unshift` prepends the args to the LIST in place and returns the new length")
        self._register_custom("concat", 2, None, self._concat, "`concat` merges 2 or more LISTs together and returns the result")
        self._register_custom("reverse", 1, 1, self._reverse, "`reverse` reverses a STRING or LIST")
        self._register_custom("sort", 1, 2, self._sort, "`sort` sorts the LIST in place, optionally by a key function, and returns it")
        self._register_custom("sorted", 1, 2, self._sorted, "`sorted` returns a sorted copy of the LIST, optionally by a key function")
        self._register_custom("del", 2, 2, self._del, "`del` deletes a key from a MAP, an index from a LIST or a member from a SET")
        self._register_custom("set", 0, 1, self._set, "`set` returns the SET version of a LIST, or an empty set with no args")
        self._register_custom("new", 1, 1, self._new, "`new` returns a copy of the given MAP, LIST or SET")
        self._register_custom("help", 1, 1, self._help, "`help` returns the help STRING for a given object")
        self._register_custom("error", 1, 1, self._error, "`error` raises an error carrying the given message")
        self._register_custom("assert", 1, 2, self._assert, "`assert` raises an error when the condition is not truthy")
        self._register_custom("exec", 1, 1, self._exec, "`exec` runs a shell command and returns its combined output")
        self._register_custom("exit", 0, 1, self._exit, "`exit` stops the program with the given status code")
        self._register_custom("version", 0, 0, self._version, "`version` returns the interpreter version STRING")
        self._register_custom("startswith", 2, 2, self._startswith, "`startswith` reports whether the STRING starts with the prefix")
        self._register_custom("endswith", 2, 2, self._endswith, "`endswith` reports whether the STRING ends with the suffix")
        self._register_custom("split", 1, 2, self._split, "`split` splits the STRING on the separator (default ' ')")
        self._register_custom("join", 1, 2, self._join, "`join` joins a LIST of values with the separator (default '')")
        self._register_custom("replace", 3, 3, self._replace, "`replace` replaces every match of a STRING or regex with the replacement")
        self._register_custom("strip", 1, 2, self._strip, "`strip` removes surrounding whitespace or the given characters")
        self._register_custom("trim", 1, 1, self._trim, "`trim` removes surrounding whitespace")
        self._register_custom("upper", 1, 1, self._upper, "`upper` returns the STRING in upper case")
        self._register_custom("lower", 1, 1, self._lower, "`lower` returns the STRING in lower case")
        self._register_custom("to_json", 1, 1, self._to_json, "`to_json` returns the JSON STRING for the given value")
        self._register_custom("from_json", 1, 1, self._from_json, "`from_json` parses a JSON STRING into values")
        self._register_custom("re", 1, 1, self._re, "`re` compiles a regular expression")
        self._register_custom("matches", 2, 2, self._matches, "`matches` reports whether the regex matches anywhere in the STRING")
        self._register_custom("find", 2, 2, self._find, "`find` returns the first match of the regex in the STRING or NULL")
        self._register_custom("find_all", 2, 2, self._find_all, "`find_all` returns a LIST of every match of the regex in the STRING")
        self._register_custom("cwd", 0, 0, self._cwd, "`cwd` returns the current working directory")
        self._register_custom("is_file", 1, 1, self._is_file, "`is_file` reports whether the path is a file")
        self._register_custom("is_dir", 1, 1, self._is_dir, "`is_dir` reports whether the path is a directory")
        self._register_custom("ls", 0, 1, self._ls, "`ls` returns the sorted entries of a directory")
        self._register_custom("abs_path", 1, 1, self._abs_path, "`abs_path` returns the absolute form of the path")
        self._register_custom("read_file", 1, 1, self._read_file, "`read_file` returns the contents of a UTF-8 file")
        self._register_custom("write_file", 2, 2, self._write_file, "`write_file` writes the STRING to the path")
        self._register_custom("__hash", 1, 1, self._hash, "`__hash` returns the UINTEGER structural hash of the value")
        self._register_custom("send", 2, 2, self._send, "`send` puts a value in a process mailbox")
        self._register_custom("recv", 0, 2, self._recv, "`recv` blocks for the next mailbox or subscriber message")
        self._register_custom("is_alive", 1, 1, self._is_alive, "`is_alive` reports whether the process is still running")
        self._register_custom("wait", 1, None, self._wait, "`wait` blocks until every given process has finished")
        self._register_custom("sleep", 1, 1, self._sleep, "`sleep` suspends the current task for the given milliseconds")
        self._register_custom("range", 1, 3, self._range, "`range` returns the half-open INTEGER LIST start..<stop by step")
        self._register_custom("fmt", 2, 2, self._fmt, "`fmt` formats the value with a format spec such as '04b'")

    def _register_custom(
        self,
        name: str,
        min_args: int,
        max_args: Optional[int],
        impl: BuiltinImpl,
        doc: Optional[str] = None,
    ) -> None:
        self.table[name] = BuiltinFunction(name=name, min_args=min_args, max_args=max_args, impl=impl, doc=doc)

    def register(self, builtin: BuiltinFunction) -> None:
        self.table[builtin.name] = builtin

    def invoke(
        self,
        interpreter: "Interpreter",
        name: str,
        args: List[Value],
        arg_nodes: List[Expression],
        env: Environment,
        location: SourceLocation,
    ) -> Value:
        builtin = self.table.get(name)
        if builtin is None:
            raise BlueRuntimeError(f"identifier not found: {name}", kind="Name", location=location)
        builtin.validate(len(args))
        return builtin.impl(interpreter, args, arg_nodes, env, location)

    # Helpers
    def _expect(self, value: Value, name: str, position: int, *types: str) -> Any:
        if value.type not in types:
            raise positional_type_error(name, position, " or ".join(types), value.type)
        return value.value

    def _expect_str(self, value: Value, name: str, position: int = 1) -> str:
        return self._expect(value, name, position, TYPE_STRING)

    def _expect_int(self, value: Value, name: str, position: int = 1) -> int:
        return self._expect(value, name, position, TYPE_INTEGER, TYPE_UINTEGER, TYPE_BIGINTEGER)

    def _expect_list(self, value: Value, name: str, position: int = 1) -> List[Value]:
        return self._expect(value, name, position, TYPE_LIST)

    def _expect_pattern(self, value: Value, name: str, position: int) -> "re.Pattern[str]":
        if value.type == TYPE_HOST and value.value.kind == "regex":
            return value.value.value
        text = self._expect(value, name, position, TYPE_STRING, TYPE_HOST)
        try:
            return re.compile(text)
        except re.error as exc:
            raise BlueRuntimeError(f"`{name}` invalid regex: {exc}", kind="Runtime")

    def _expect_millis(self, value: Value, name: str, position: int) -> float:
        self._expect(value, name, position, TYPE_INTEGER, TYPE_UINTEGER, TYPE_FLOAT)
        return max(float(value.value), 0.0) / 1000.0

    # I/O
    def _print(self, interpreter, args, __, ___, ____) -> Value:
        interpreter.output_sink("".join(inspect(arg) for arg in args))
        return NULL

    def _println(self, interpreter, args, __, ___, ____) -> Value:
        if not args:
            interpreter.output_sink("\n")
        for arg in args:
            interpreter.output_sink(inspect(arg) + "\n")
        return NULL

    def _input(self, interpreter, args, __, ___, ____) -> Value:
        if args:
            interpreter.output_sink(self._expect_str(args[0], "input"))
        return make_string(interpreter.input_provider())

    # Introspection and conversion
    def _len(self, _, args, __, ___, ____) -> Value:
        arg = args[0]
        if arg.type in (TYPE_STRING, TYPE_LIST, TYPE_MAP, TYPE_SET):
            return make_integer(len(arg.value))
        raise positional_type_error("len", 1, "STRING or LIST or MAP or SET", arg.type)

    def _type(self, _, args, __, ___, ____) -> Value:
        return make_string(args[0].type)

    def _str(self, _, args, __, ___, ____) -> Value:
        return make_string(inspect(args[0]))

    def _parse_int_text(self, text: str, name: str) -> int:
        try:
            return int(text.strip().replace("_", ""), 0)
        except ValueError:
            raise BlueRuntimeError(f"`{name}` cannot parse {text!r} as an integer", kind="Type")

    def _integral(self, value: Value, name: str) -> int:
        kind = value.type
        if kind in (TYPE_INTEGER, TYPE_UINTEGER, TYPE_BIGINTEGER):
            return value.value
        if kind in (TYPE_FLOAT, TYPE_BIGFLOAT):
            try:
                return int(value.value)
            except (OverflowError, ValueError):
                raise BlueRuntimeError(f"`{name}` cannot convert {inspect(value)} to an integer", kind="Type")
        if kind == TYPE_STRING:
            return self._parse_int_text(value.value, name)
        if kind == TYPE_BOOLEAN:
            return int(value.value)
        raise positional_type_error(name, 1, "a number or STRING", kind)

    def _int(self, _, args, __, ___, ____) -> Value:
        number = self._integral(args[0], "int")
        # wraps into the signed 64-bit range like a machine conversion
        wrapped = ((number - INT64_MIN) & UINT64_MASK) + INT64_MIN
        return Value(TYPE_INTEGER, wrapped)

    def _uint(self, _, args, __, ___, ____) -> Value:
        return make_uinteger(self._integral(args[0], "uint"))

    def _bigint(self, _, args, __, ___, ____) -> Value:
        return Value(TYPE_BIGINTEGER, self._integral(args[0], "bigint"))

    def _float(self, _, args, __, ___, ____) -> Value:
        arg = args[0]
        if is_numeric(arg):
            return Value(TYPE_FLOAT, float(arg.value))
        text = self._expect(arg, "float", 1, TYPE_STRING)
        try:
            return Value(TYPE_FLOAT, float(text.strip()))
        except ValueError:
            raise BlueRuntimeError(f"`float` cannot parse {text!r} as a float", kind="Type")

    def _bigfloat(self, _, args, __, ___, ____) -> Value:
        arg = args[0]
        if is_numeric(arg):
            return Value(TYPE_BIGFLOAT, to_decimal(arg))
        text = self._expect(arg, "bigfloat", 1, TYPE_STRING)
        try:
            return Value(TYPE_BIGFLOAT, Decimal(text.strip().replace("_", "")))
        except InvalidOperation:
            raise BlueRuntimeError(f"`bigfloat` cannot parse {text!r} as a big float", kind="Type")

    # Collections
    def _keys(self, _, args, __, ___, ____) -> Value:
        pairs = self._expect(args[0], "keys", 1, TYPE_MAP)
        return make_list([pair.key for pair in pairs.values()])

    def _values(self, _, args, __, ___, ____) -> Value:
        pairs = self._expect(args[0], "values", 1, TYPE_MAP)
        return make_list([pair.value for pair in pairs.values()])

    def _append(self, _, args, __, ___, ____) -> Value:
        items = self._expect_list(args[0], "append")
        return make_list(items + args[1:])

    def _prepend(self, _, args, __, ___, ____) -> Value:
        items = self._expect_list(args[0], "prepend")
        return make_list(args[1:] + items)

    def _push(self, _, args, __, ___, ____) -> Value:
        items = self._expect_list(args[0], "push")
        items.extend(args[1:])
        return make_integer(len(items))

    def _pop(self, _, args, __, ___, ____) -> Value:
        items = self._expect_list(args[0], "pop")
        return items.pop() if items else NULL

    def _shift(self, _, args, __, ___, ____) -> Value:
        items = self._expect_list(args[0], "shift")
        return items.pop(0) if items else NULL

    def _unshift(self, _, args, __, ___, ____) -> Value:
        items = self._expect_list(args[0], "unshift")
        items[0:0] = args[1:]
        return make_integer(len(items))

    def _concat(self, _, args, __, ___, ____) -> Value:
        out: List[Value] = []
        for i, arg in enumerate(args):
            out.extend(self._expect_list(arg, "concat", i + 1))
        return make_list(out)

    def _reverse(self, _, args, __, ___, ____) -> Value:
        arg = args[0]
        if arg.type == TYPE_STRING:
            return make_string(arg.value[::-1])
        return make_list(list(reversed(self._expect_list(arg, "reverse"))))

    def _sort_key(self, interpreter, args, location) -> Callable[[Value], Any]:
        compare_key = functools.cmp_to_key(compare_values)
        if len(args) < 2:
            return compare_key
        fn = args[1]
        self._expect(fn, "sort", 2, TYPE_FUNCTION, TYPE_BUILTIN)
        return lambda item: compare_key(interpreter.call_function(fn, [item], location))

    def _sort(self, interpreter, args, __, ___, location) -> Value:
        items = self._expect_list(args[0], "sort")
        items.sort(key=self._sort_key(interpreter, args, location))
        return args[0]

    def _sorted(self, interpreter, args, __, ___, location) -> Value:
        items = self._expect_list(args[0], "sorted")
        return make_list(sorted(items, key=self._sort_key(interpreter, args, location)))

    def _del(self, _, args, __, ___, ____) -> Value:
        target, key = args
        if target.type == TYPE_MAP:
            target.value.pop(hash_key(key), None)
        elif target.type == TYPE_LIST:
            index = self._expect_int(key, "del", 2)
            if -len(target.value) <= index < len(target.value):
                del target.value[index]
        elif target.type == TYPE_SET:
            target.value.pop(hash_key(key), None)
        else:
            raise positional_type_error("del", 1, "MAP or LIST or SET", target.type)
        return NULL

    def _set(self, _, args, __, ___, ____) -> Value:
        if not args:
            return new_set()
        return new_set(self._expect_list(args[0], "set"))

    def _new(self, _, args, __, ___, ____) -> Value:
        arg = args[0]
        if arg.type == TYPE_LIST:
            return make_list(list(arg.value))
        if arg.type in (TYPE_MAP, TYPE_SET):
            return Value(arg.type, dict(arg.value))
        raise positional_type_error("new", 1, "MAP or LIST or SET", arg.type)

    def _help(self, _, args, __, ___, ____) -> Value:
        arg = args[0]
        if arg.type == TYPE_BUILTIN:
            return make_string(arg.value.doc or "")
        if arg.type == TYPE_FUNCTION:
            return make_string(arg.value.docstring or "")
        if arg.type == TYPE_MODULE:
            lines = [f"Module '{arg.value.name}'"]
            for name, member in arg.value.env.items():
                if name.startswith("_"):
                    continue
                doc = ""
                if member.type == TYPE_FUNCTION and member.value.docstring:
                    doc = " - " + member.value.docstring.splitlines()[0]
                lines.append(f"  {name}{doc}")
            return make_string("\n".join(lines))
        return make_string(f"{arg.type} value")

    def _error(self, _, args, __, ___, ____) -> Value:
        return make_error(inspect(args[0]))

    def _assert(self, _, args, __, ___, ____) -> Value:
        if not is_truthy(args[0]):
            message = inspect(args[1]) if len(args) > 1 else "assertion failed"
            raise BlueRuntimeError(message, kind="Runtime")
        return TRUE

    def _exec(self, _, args, __, ___, ____) -> Value:
        command = self._expect_str(args[0], "exec")
        if os.name == "nt" and len(command) > WINDOWS_COMMAND_LENGTH_LIMIT:
            return make_error("`exec` command line is too long")
        try:
            completed = subprocess.run(
                command,
                shell=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                check=False,
            )
        except OSError as exc:
            return make_error(f"`exec` failed: {exc}")
        return make_string(completed.stdout.decode("utf-8", errors="replace"))

    def _exit(self, interpreter, args, __, ___, ____) -> Value:
        code = self._expect_int(args[0], "exit") if args else 0
        interpreter.request_exit(code)
        return NULL

    def _version(self, _, __, ___, ____, _____) -> Value:
        return make_string(VERSION)

    # Strings
    def _startswith(self, _, args, __, ___, ____) -> Value:
        return native_bool(self._expect_str(args[0], "startswith").startswith(self._expect_str(args[1], "startswith", 2)))

    def _endswith(self, _, args, __, ___, ____) -> Value:
        return native_bool(self._expect_str(args[0], "endswith").endswith(self._expect_str(args[1], "endswith", 2)))

    def _split(self, _, args, __, ___, ____) -> Value:
        text = self._expect_str(args[0], "split")
        sep = self._expect_str(args[1], "split", 2) if len(args) > 1 else " "
        if sep == "":
            return make_list([make_string(ch) for ch in text])
        return make_list([make_string(part) for part in text.split(sep)])

    def _join(self, _, args, __, ___, ____) -> Value:
        items = self._expect_list(args[0], "join")
        sep = self._expect_str(args[1], "join", 2) if len(args) > 1 else ""
        return make_string(sep.join(inspect(item) for item in items))

    def _replace(self, _, args, __, ___, ____) -> Value:
        text = self._expect_str(args[0], "replace")
        replacement = self._expect_str(args[2], "replace", 3)
        if args[1].type == TYPE_HOST:
            pattern = self._expect_pattern(args[1], "replace", 2)
            return make_string(pattern.sub(replacement, text))
        return make_string(text.replace(self._expect_str(args[1], "replace", 2), replacement))

    def _strip(self, _, args, __, ___, ____) -> Value:
        text = self._expect_str(args[0], "strip")
        chars = self._expect_str(args[1], "strip", 2) if len(args) > 1 else None
        return make_string(text.strip(chars))

    def _trim(self, _, args, __, ___, ____) -> Value:
        return make_string(self._expect_str(args[0], "trim").strip())

    def _upper(self, _, args, __, ___, ____) -> Value:
        return make_string(self._expect_str(args[0], "upper").upper())

    def _lower(self, _, args, __, ___, ____) -> Value:
        return make_string(self._expect_str(args[0], "lower").lower())

    def _to_json(self, _, args, __, ___, ____) -> Value:
        return make_string(json.dumps(to_native(args[0])))

    def _from_json(self, _, args, __, ___, ____) -> Value:
        text = self._expect_str(args[0], "from_json")
        try:
            return from_native(json.loads(text))
        except json.JSONDecodeError as exc:
            return make_error(f"`from_json` invalid JSON: {exc}")

    def _re(self, _, args, __, ___, ____) -> Value:
        return host_value("regex", self._expect_pattern(args[0], "re", 1))

    def _matches(self, _, args, __, ___, ____) -> Value:
        text = self._expect_str(args[0], "matches")
        return native_bool(self._expect_pattern(args[1], "matches", 2).search(text) is not None)

    def _find(self, _, args, __, ___, ____) -> Value:
        text = self._expect_str(args[0], "find")
        match = self._expect_pattern(args[1], "find", 2).search(text)
        return make_string(match.group(0)) if match else NULL

    def _find_all(self, _, args, __, ___, ____) -> Value:
        text = self._expect_str(args[0], "find_all")
        pattern = self._expect_pattern(args[1], "find_all", 2)
        return make_list([make_string(m.group(0)) for m in pattern.finditer(text)])

    # Files
    def _cwd(self, _, __, ___, ____, _____) -> Value:
        return make_string(os.getcwd())

    def _is_file(self, _, args, __, ___, ____) -> Value:
        return native_bool(os.path.isfile(self._expect_str(args[0], "is_file")))

    def _is_dir(self, _, args, __, ___, ____) -> Value:
        return native_bool(os.path.isdir(self._expect_str(args[0], "is_dir")))

    def _ls(self, _, args, __, ___, ____) -> Value:
        path = self._expect_str(args[0], "ls") if args else "."
        try:
            entries = sorted(os.listdir(path))
        except OSError as exc:
            return make_error(f"`ls` failed: {exc}")
        return make_list([make_string(entry) for entry in entries])

    def _abs_path(self, _, args, __, ___, ____) -> Value:
        return make_string(os.path.abspath(self._expect_str(args[0], "abs_path")))

    def _read_file(self, _, args, __, ___, ____) -> Value:
        path = self._expect_str(args[0], "read_file")
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return make_string(handle.read())
        except OSError as exc:
            return make_error(f"Failed to read '{path}': {exc}")

    def _write_file(self, _, args, __, ___, ____) -> Value:
        path = self._expect_str(args[0], "write_file")
        blob = args[1].value if args[1].type == TYPE_STRING else inspect(args[1])
        try:
            with open(path, "w", encoding="utf-8") as handle:
                handle.write(blob)
        except OSError as exc:
            return make_error(f"Failed to write '{path}': {exc}")
        return NULL

    def _hash(self, _, args, __, ___, ____) -> Value:
        return Value(TYPE_UINTEGER, hash_u64(args[0]))

    # Processes
    def _send(self, interpreter, args, __, ___, ____) -> Value:
        pid = self._expect(args[0], "send", 1, TYPE_PROCESS)
        if not interpreter.context.processes.send(pid, args[1]):
            return make_error(f"process {pid} is not alive")
        return NULL

    def _recv(self, interpreter, args, __, ___, ____) -> Value:
        timeout = self._expect_millis(args[1], "recv", 2) if len(args) > 1 else None
        source = args[0] if args else Value(TYPE_PROCESS, interpreter.pid)
        if source.type == TYPE_HOST and source.value.kind == "subscriber":
            message = source.value.value.poll(timeout)
            if message is None:
                return NULL
            return new_map([(make_string("topic"), make_string(message.topic)), (make_string("msg"), message.payload)])
        pid = self._expect(source, "recv", 1, TYPE_PROCESS)
        record = interpreter.context.processes.get(pid)
        if record is None:
            return NULL
        return interpreter.context.processes.receive(record, timeout)

    def _is_alive(self, interpreter, args, __, ___, ____) -> Value:
        pid = self._expect(args[0], "is_alive", 1, TYPE_PROCESS)
        return native_bool(interpreter.context.processes.is_alive(pid))

    def _wait(self, interpreter, args, __, ___, ____) -> Value:
        pids = []
        for i, arg in enumerate(args):
            if arg.type == TYPE_LIST:
                pids.extend(self._expect(item, "wait", i + 1, TYPE_PROCESS) for item in arg.value)
            else:
                pids.append(self._expect(arg, "wait", i + 1, TYPE_PROCESS))
        interpreter.context.processes.wait(pids)
        return NULL

    def _sleep(self, _, args, __, ___, ____) -> Value:
        time.sleep(self._expect_millis(args[0], "sleep", 1))
        return NULL

    # Misc
    def _range(self, _, args, __, ___, ____) -> Value:
        bounds = [self._expect_int(arg, "range", i + 1) for i, arg in enumerate(args)]
        if len(bounds) == 1:
            start, stop, step = 0, bounds[0], 1
        else:
            start, stop = bounds[0], bounds[1]
            step = bounds[2] if len(bounds) > 2 else 1
        if step == 0:
            raise BlueRuntimeError("`range` step must not be zero", kind="Argument")
        return make_list([make_integer(n) for n in range(start, stop, step)])

    def _fmt(self, _, args, __, ___, ____) -> Value:
        spec = self._expect_str(args[1], "fmt", 2)
        value = args[0]
        native = value.value if (value.type == TYPE_STRING or is_numeric(value)) else inspect(value)
        try:
            return make_string(format(native, spec))
        except (ValueError, TypeError) as exc:
            return make_error(f"`fmt` invalid format spec {spec!r}: {exc}")
