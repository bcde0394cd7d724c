"""Stdlib host modules.

Each module embeds a Blue script (``BLUE_MODULE_SOURCE``) and registers a
table of ``_``-prefixed host builtins through ``blue_register(ext)``. The
script is evaluated once per runtime context and only it can see the table.
"""

from __future__ import annotations

from typing import Any, List

from corelib import positional_type_error
from numeric import INTEGRAL_TYPES, NUMERIC_TYPES
from objects import TYPE_HOST, TYPE_LIST, TYPE_STRING, BlueRuntimeError, Value


def expect(value: Value, rule: str, position: int, *types: str) -> Any:
    if value.type not in types:
        raise positional_type_error(rule, position, " or ".join(types), value.type)
    return value.value


def expect_str(value: Value, rule: str, position: int = 1) -> str:
    return expect(value, rule, position, TYPE_STRING)


def expect_int(value: Value, rule: str, position: int = 1) -> int:
    return expect(value, rule, position, *INTEGRAL_TYPES)


def expect_float(value: Value, rule: str, position: int = 1) -> float:
    return float(expect(value, rule, position, *NUMERIC_TYPES))


def expect_floats(value: Value, rule: str, position: int = 1) -> List[float]:
    items = expect(value, rule, position, TYPE_LIST)
    return [expect_float(item, rule, position) for item in items]


def expect_host(value: Value, rule: str, kind: str, position: int = 1) -> Any:
    host = expect(value, rule, position, TYPE_HOST)
    if host.kind != kind:
        raise BlueRuntimeError(f"`{rule}` expects argument {position} to be a {kind}. got={host.kind}", kind="Argument")
    return host.value
