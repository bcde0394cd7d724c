"""Numeric tower: one promotion rule, then per-variant operator tables.

Variants are ordered Int < UInt < BigInt < Float < BigFloat. A pair of
operands is widened to the narrowest variant that holds both, except that
BigInt meets Float at BigFloat and a negative Int never widens silently to
UInt. Signed machine integers promote to BigInt on overflow, unsigned ones
wrap modulo 2**64, floats follow IEEE 754.
"""

from __future__ import annotations
import decimal
import math
import operator
from decimal import Decimal
from typing import Any, Callable, Dict, Tuple

from objects import (
    INT64_MAX,
    INT64_MIN,
    TYPE_BIGFLOAT,
    TYPE_BIGINTEGER,
    TYPE_FLOAT,
    TYPE_INTEGER,
    TYPE_UINTEGER,
    UINT64_MASK,
    BlueRuntimeError,
    Value,
)

NUMERIC_TYPES = (TYPE_INTEGER, TYPE_UINTEGER, TYPE_BIGINTEGER, TYPE_FLOAT, TYPE_BIGFLOAT)
INTEGRAL_TYPES = (TYPE_INTEGER, TYPE_UINTEGER, TYPE_BIGINTEGER)

RANK: Dict[str, int] = {name: i for i, name in enumerate(NUMERIC_TYPES)}

COMPARISONS: Dict[str, Callable[[Any, Any], bool]] = {
    "<": operator.lt,
    ">": operator.gt,
    "<=": operator.le,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}


def is_numeric(value: Value) -> bool:
    return value.type in RANK


def make_integer(number: int) -> Value:
    if INT64_MIN <= number <= INT64_MAX:
        return Value(TYPE_INTEGER, number)
    return Value(TYPE_BIGINTEGER, number)


def make_uinteger(number: int) -> Value:
    return Value(TYPE_UINTEGER, number & UINT64_MASK)


def to_decimal(value: Value) -> Decimal:
    if value.type == TYPE_FLOAT:
        return Decimal(repr(value.value)) if math.isfinite(value.value) else Decimal(value.value)
    return Decimal(value.value)


def _mismatch(op: str, left: Value, right: Value) -> BlueRuntimeError:
    return BlueRuntimeError(f"type mismatch: {left.type} {op} {right.type}", kind="Type")


def _unknown(op: str, left: Value, right: Value) -> BlueRuntimeError:
    return BlueRuntimeError(f"unknown operator: {left.type} {op} {right.type}", kind="Type")


def promote(op: str, left: Value, right: Value) -> Tuple[str, Any, Any]:
    """Widen both operands to their common variant."""
    lt, rt = left.type, right.type
    if lt == rt:
        return lt, left.value, right.value
    pair = {lt, rt}
    if pair == {TYPE_INTEGER, TYPE_UINTEGER}:
        signed = left if lt == TYPE_INTEGER else right
        if signed.value < 0:
            raise _mismatch(op, left, right)
        return TYPE_UINTEGER, left.value, right.value
    if pair == {TYPE_BIGINTEGER, TYPE_FLOAT}:
        target = TYPE_BIGFLOAT
    else:
        target = lt if RANK[lt] > RANK[rt] else rt
    if target == TYPE_BIGFLOAT:
        return target, to_decimal(left), to_decimal(right)
    if target == TYPE_FLOAT:
        return target, float(left.value), float(right.value)
    return target, int(left.value), int(right.value)


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _check_divisor(op: str, divisor: Any) -> None:
    if divisor == 0:
        if op == "/":
            raise BlueRuntimeError("Division by zero is not allowed", kind="Arithmetic")
        if op == "//":
            raise BlueRuntimeError("Floor Division by zero is not allowed", kind="Arithmetic")
        raise BlueRuntimeError("Modulus by zero is not allowed", kind="Arithmetic")


def _shift_count(b: int) -> int:
    if b < 0:
        raise BlueRuntimeError("negative shift count", kind="Arithmetic")
    return b


def _signed(op: str, a: int, b: int, big: bool) -> Value:
    wrap = (lambda n: Value(TYPE_BIGINTEGER, n)) if big else make_integer
    if op == "+":
        return wrap(a + b)
    if op == "-":
        return wrap(a - b)
    if op == "*":
        return wrap(a * b)
    if op == "**":
        if b < 0:
            if big:
                return Value(TYPE_BIGFLOAT, Decimal(a) ** b)
            return Value(TYPE_FLOAT, float(a) ** b)
        return wrap(a ** b)
    if op in ("/", "//", "%"):
        _check_divisor(op, b)
        if op == "/":
            return wrap(_trunc_div(a, b))
        if op == "//":
            return wrap(a // b)
        if a < 0 or b < 0:
            return Value(TYPE_BIGINTEGER, a % abs(b))
        return wrap(a % b)
    if op == "&":
        return wrap(a & b)
    if op == "|":
        return wrap(a | b)
    if op == "^":
        return wrap(a ^ b)
    if op == "~":
        return wrap(a & ~b)
    if op == "<<":
        return wrap(a << _shift_count(b))
    if op == ">>":
        return wrap(a >> _shift_count(b))
    raise KeyError(op)


def _unsigned(op: str, a: int, b: int) -> Value:
    if op == "+":
        return make_uinteger(a + b)
    if op == "-":
        return make_uinteger(a - b)
    if op == "*":
        return make_uinteger(a * b)
    if op == "**":
        return make_uinteger(pow(a, b, UINT64_MASK + 1))
    if op in ("/", "//", "%"):
        _check_divisor(op, b)
        return make_uinteger(a % b if op == "%" else a // b)
    if op == "&":
        return make_uinteger(a & b)
    if op == "|":
        return make_uinteger(a | b)
    if op == "^":
        return make_uinteger(a ^ b)
    if op == "~":
        return make_uinteger(a & ~b)
    if op == "<<":
        return make_uinteger(a << min(_shift_count(b), 64))
    if op == ">>":
        return make_uinteger(a >> _shift_count(b))
    raise KeyError(op)


def _float(op: str, a: float, b: float) -> Value:
    if op == "+":
        return Value(TYPE_FLOAT, a + b)
    if op == "-":
        return Value(TYPE_FLOAT, a - b)
    if op == "*":
        return Value(TYPE_FLOAT, a * b)
    if op == "**":
        try:
            return Value(TYPE_FLOAT, math.pow(a, b))
        except OverflowError:
            return Value(TYPE_FLOAT, math.inf)
        except ValueError:
            return Value(TYPE_FLOAT, math.nan)
    if op in ("/", "//", "%"):
        _check_divisor(op, b)
        if op == "/":
            return Value(TYPE_FLOAT, a / b)
        if op == "//":
            quotient = a / b
            return Value(TYPE_FLOAT, float(math.floor(quotient)) if math.isfinite(quotient) else quotient)
        if math.isinf(a):
            return Value(TYPE_FLOAT, math.nan)
        return Value(TYPE_FLOAT, math.fmod(a, b))
    raise KeyError(op)


def _bigfloat(op: str, a: Decimal, b: Decimal) -> Value:
    try:
        if op == "+":
            return Value(TYPE_BIGFLOAT, a + b)
        if op == "-":
            return Value(TYPE_BIGFLOAT, a - b)
        if op == "*":
            return Value(TYPE_BIGFLOAT, a * b)
        if op == "**":
            return Value(TYPE_BIGFLOAT, a ** b)
        if op in ("/", "//", "%"):
            _check_divisor(op, b)
            if op == "/":
                return Value(TYPE_BIGFLOAT, a / b)
            if op == "//":
                return Value(TYPE_BIGFLOAT, (a / b).to_integral_value(rounding=decimal.ROUND_FLOOR))
            return Value(TYPE_BIGFLOAT, a % b)
    except decimal.InvalidOperation as exc:
        raise BlueRuntimeError(f"invalid big float operation: {op} ({exc})", kind="Arithmetic")
    raise KeyError(op)


def arithmetic(op: str, left: Value, right: Value) -> Value:
    """Apply an arithmetic or bitwise operator to two numeric values."""
    target, a, b = promote(op, left, right)
    try:
        if target == TYPE_INTEGER:
            return _signed(op, a, b, big=False)
        if target == TYPE_BIGINTEGER:
            return _signed(op, a, b, big=True)
        if target == TYPE_UINTEGER:
            return _unsigned(op, a, b)
        if target == TYPE_FLOAT:
            return _float(op, a, b)
        return _bigfloat(op, a, b)
    except KeyError:
        raise _unknown(op, left, right)
    except ZeroDivisionError:
        raise BlueRuntimeError("Division by zero is not allowed", kind="Arithmetic")


def compare(op: str, left: Value, right: Value) -> bool:
    """Compare two numeric values by their mathematical value."""
    fn = COMPARISONS[op]
    lt, rt = left.type, right.type
    if lt in INTEGRAL_TYPES and rt in INTEGRAL_TYPES:
        return fn(left.value, right.value)
    if TYPE_BIGFLOAT in (lt, rt) or {lt, rt} == {TYPE_BIGINTEGER, TYPE_FLOAT}:
        a, b = to_decimal(left), to_decimal(right)
        if a.is_nan() or b.is_nan():
            return op == "!="
        return fn(a, b)
    return fn(float(left.value), float(right.value))


def negate(value: Value) -> Value:
    if value.type == TYPE_INTEGER:
        return make_integer(-value.value)
    if value.type == TYPE_UINTEGER:
        return make_uinteger(-value.value)
    if value.type in (TYPE_BIGINTEGER, TYPE_FLOAT, TYPE_BIGFLOAT):
        return Value(value.type, -value.value)
    raise BlueRuntimeError(f"unknown operator: -{value.type}", kind="Type")


def invert(value: Value) -> Value:
    if value.type == TYPE_UINTEGER:
        return Value(TYPE_UINTEGER, UINT64_MASK ^ value.value)
    if value.type in (TYPE_INTEGER, TYPE_BIGINTEGER):
        return Value(value.type, ~value.value)
    raise BlueRuntimeError(f"unknown operator: ~{value.type}", kind="Type")
