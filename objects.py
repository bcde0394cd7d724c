from __future__ import annotations
import hashlib
import itertools
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from lexer import BlueError
from parser import Block, Expression, FunctionLiteral, Param, SourceLocation
from printer import format_node

TYPE_INTEGER = "INTEGER"
TYPE_UINTEGER = "UINTEGER"
TYPE_BIGINTEGER = "BIG_INTEGER"
TYPE_FLOAT = "FLOAT"
TYPE_BIGFLOAT = "BIG_FLOAT"
TYPE_BOOLEAN = "BOOLEAN"
TYPE_NULL = "NULL"
TYPE_IGNORE = "IGNORE"
TYPE_STRING = "STRING"
TYPE_LIST = "LIST"
TYPE_MAP = "MAP"
TYPE_SET = "SET"
TYPE_FUNCTION = "FUNCTION"
TYPE_BUILTIN = "BUILTIN"
TYPE_ERROR = "ERROR"
TYPE_MODULE = "MODULE"
TYPE_PROCESS = "PROCESS"
TYPE_HOST = "HOST_OBJECT"

# Literal kinds produced by the parser, mapped to value tags.
LITERAL_TYPES = {
    "INTEGER": TYPE_INTEGER,
    "UINTEGER": TYPE_UINTEGER,
    "BIGINTEGER": TYPE_BIGINTEGER,
    "FLOAT": TYPE_FLOAT,
    "BIGFLOAT": TYPE_BIGFLOAT,
}

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1
UINT64_MASK = 2 ** 64 - 1

ERROR_KINDS = ("Name", "Type", "Arithmetic", "Argument", "Import", "Runtime", "Process", "Syntax")


class BlueRuntimeError(BlueError):
    """Raised when evaluation fails. `trace` collects call sites, innermost first."""

    def __init__(
        self,
        message: str,
        *,
        kind: str = "Runtime",
        location: Optional[SourceLocation] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.location = location
        self.trace: List[SourceLocation] = []
        self.step_index: Optional[int] = None

    @property
    def frames(self) -> List[SourceLocation]:
        frames = [self.location] if self.location is not None else []
        for loc in self.trace:
            if not frames or frames[-1] is not loc:
                frames.append(loc)
        return frames

    def __str__(self) -> str:
        return f"{self.kind}Error: {self.message}"


@dataclass
class Value:
    type: str
    value: Any


NULL = Value(TYPE_NULL, None)
TRUE = Value(TYPE_BOOLEAN, True)
FALSE = Value(TYPE_BOOLEAN, False)
IGNORE = Value(TYPE_IGNORE, None)


def native_bool(flag: bool) -> Value:
    return TRUE if flag else FALSE


def make_string(text: str) -> Value:
    return Value(TYPE_STRING, text)


def make_list(items: List[Value]) -> Value:
    return Value(TYPE_LIST, items)


def make_error(message: str) -> Value:
    return Value(TYPE_ERROR, message)


@dataclass
class MapPair:
    key: Value
    value: Value


@dataclass
class Function:
    params: List[Param]
    defaults: List[Optional[Value]]
    body: Block
    env: "Environment"
    name: Optional[str] = None

    @property
    def docstring(self) -> Optional[str]:
        return self.body.docstring


BuiltinImpl = Callable[["Interpreter", List[Value], List[Expression], "Environment", SourceLocation], Value]


@dataclass
class BuiltinFunction:
    name: str
    min_args: int
    max_args: Optional[int]
    impl: BuiltinImpl
    doc: Optional[str] = None

    def validate(self, supplied: int) -> None:
        if self.min_args <= supplied and (self.max_args is None or supplied <= self.max_args):
            return
        if self.max_args == self.min_args:
            want = str(self.min_args)
        elif self.max_args is None:
            want = f">={self.min_args}"
        else:
            want = f"{self.min_args}..{self.max_args}"
        raise BlueRuntimeError(
            f"InvalidArgCountError: `{self.name}` wrong number of args. got={supplied}, want={want}",
            kind="Argument",
        )


@dataclass
class Module:
    name: str
    env: "Environment"


_host_ids = itertools.count(1)


@dataclass
class HostObject:
    kind: str
    value: Any
    id: int = field(default_factory=lambda: next(_host_ids))


def host_value(kind: str, value: Any) -> Value:
    return Value(TYPE_HOST, HostObject(kind=kind, value=value))


def hash_key(value: Value) -> Tuple[str, Any]:
    """Structural key used for map entries, set members and `==` on composites."""
    kind = value.type
    if kind in (TYPE_INTEGER, TYPE_UINTEGER, TYPE_BIGINTEGER, TYPE_FLOAT, TYPE_BIGFLOAT):
        return (kind, value.value)
    if kind in (TYPE_STRING, TYPE_BOOLEAN, TYPE_ERROR, TYPE_PROCESS):
        return (kind, value.value)
    if kind in (TYPE_NULL, TYPE_IGNORE):
        return (kind, None)
    if kind == TYPE_LIST:
        return (kind, tuple(hash_key(item) for item in value.value))
    if kind == TYPE_MAP:
        return (kind, tuple((key, hash_key(pair.value)) for key, pair in value.value.items()))
    if kind == TYPE_SET:
        return (kind, frozenset(value.value.keys()))
    if kind == TYPE_BUILTIN:
        return (kind, value.value.name)
    if kind == TYPE_HOST:
        return (kind, value.value.id)
    # functions and modules are identified by the object itself
    return (kind, id(value.value))


def hash_u64(value: Value) -> int:
    digest = hashlib.blake2b(repr(hash_key(value)).encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big")


def values_equal(left: Value, right: Value) -> bool:
    return hash_key(left) == hash_key(right)


def is_truthy(value: Value) -> bool:
    if value.type == TYPE_NULL:
        return False
    if value.type == TYPE_BOOLEAN:
        return bool(value.value)
    return True


def _format_float(number: float) -> str:
    if number != number:
        return "NaN"
    if number in (float("inf"), float("-inf")):
        return "+Inf" if number > 0 else "-Inf"
    return repr(number)


def _format_decimal(number: Decimal) -> str:
    if not number.is_finite():
        return str(number)
    return format(number, "f")


def _quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n") + '"'


def inspect(value: Value, nested: bool = False) -> str:
    """Display form of a value; strings are quoted only inside containers."""
    kind = value.type
    if kind in (TYPE_INTEGER, TYPE_UINTEGER, TYPE_BIGINTEGER):
        return str(value.value)
    if kind == TYPE_FLOAT:
        return _format_float(value.value)
    if kind == TYPE_BIGFLOAT:
        return _format_decimal(value.value)
    if kind == TYPE_BOOLEAN:
        return "true" if value.value else "false"
    if kind == TYPE_NULL:
        return "null"
    if kind == TYPE_IGNORE:
        return "_"
    if kind == TYPE_STRING:
        return _quote(value.value) if nested else value.value
    if kind == TYPE_LIST:
        return "[" + ", ".join(inspect(item, True) for item in value.value) + "]"
    if kind == TYPE_MAP:
        items = (f"{inspect(pair.key, True)}: {inspect(pair.value, True)}" for pair in value.value.values())
        return "{" + ", ".join(items) + "}"
    if kind == TYPE_SET:
        return "{" + ", ".join(inspect(item, True) for item in value.value.values()) + "}"
    if kind == TYPE_FUNCTION:
        fn: Function = value.value
        literal = FunctionLiteral(location=fn.body.location, params=fn.params, body=fn.body)
        return format_node(literal)
    if kind == TYPE_BUILTIN:
        return f"builtin function `{value.value.name}`"
    if kind == TYPE_ERROR:
        return f"ERROR: {value.value}"
    if kind == TYPE_MODULE:
        return f"Module '{value.value.name}'"
    if kind == TYPE_PROCESS:
        return f"Process{{id: {value.value}}}"
    if kind == TYPE_HOST:
        host: HostObject = value.value
        return f"{host.kind}[{host.id}]"
    return repr(value.value)


def new_map(pairs: Optional[List[Tuple[Value, Value]]] = None) -> Value:
    entries: Dict[Tuple[str, Any], MapPair] = {}
    for key, item in pairs or []:
        entries[hash_key(key)] = MapPair(key, item)
    return Value(TYPE_MAP, entries)


def new_set(items: Optional[List[Value]] = None) -> Value:
    entries: Dict[Tuple[str, Any], Value] = {}
    for item in items or []:
        entries.setdefault(hash_key(item), item)
    return Value(TYPE_SET, entries)


def map_get(mapping: Value, key: Value) -> Optional[Value]:
    pair = mapping.value.get(hash_key(key))
    return pair.value if pair is not None else None


def map_set(mapping: Value, key: Value, item: Value) -> None:
    mapping.value[hash_key(key)] = MapPair(key, item)
