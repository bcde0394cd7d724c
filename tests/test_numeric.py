import math
from decimal import Decimal

import pytest

from numeric import arithmetic, compare, invert, make_integer, make_uinteger, negate, promote
from objects import (
    INT64_MAX,
    INT64_MIN,
    TYPE_BIGFLOAT,
    TYPE_BIGINTEGER,
    TYPE_FLOAT,
    TYPE_INTEGER,
    TYPE_UINTEGER,
    BlueRuntimeError,
    Value,
)

from helpers import run


def integer(n):
    return Value(TYPE_INTEGER, n)


def uinteger(n):
    return Value(TYPE_UINTEGER, n)


def test_make_integer_promotes_outside_int64():
    assert make_integer(INT64_MAX).type == TYPE_INTEGER
    assert make_integer(INT64_MAX + 1).type == TYPE_BIGINTEGER
    assert make_integer(INT64_MIN - 1).type == TYPE_BIGINTEGER


def test_unsigned_values_wrap():
    assert make_uinteger(-1).value == 2 ** 64 - 1
    assert arithmetic("-", uinteger(0), uinteger(1)).value == 2 ** 64 - 1
    assert arithmetic("+", uinteger(2 ** 64 - 1), uinteger(2)).value == 1


@pytest.mark.parametrize(
    "left, right, expected",
    [
        (integer(1), Value(TYPE_FLOAT, 1.5), TYPE_FLOAT),
        (integer(1), uinteger(2), TYPE_UINTEGER),
        (integer(1), Value(TYPE_BIGINTEGER, 2), TYPE_BIGINTEGER),
        (Value(TYPE_BIGINTEGER, 1), Value(TYPE_FLOAT, 0.5), TYPE_BIGFLOAT),
        (Value(TYPE_FLOAT, 1.0), Value(TYPE_BIGFLOAT, Decimal("2.5")), TYPE_BIGFLOAT),
    ],
)
def test_promotion_picks_common_variant(left, right, expected):
    assert promote("+", left, right)[0] == expected


def test_negative_signed_never_widens_to_unsigned():
    with pytest.raises(BlueRuntimeError, match="type mismatch: INTEGER \\+ UINTEGER"):
        arithmetic("+", integer(-1), uinteger(1))


def test_signed_overflow_becomes_big_integer():
    result = arithmetic("*", integer(INT64_MAX), integer(2))
    assert result.type == TYPE_BIGINTEGER
    assert result.value == INT64_MAX * 2


def test_integer_division_truncates_toward_zero():
    assert arithmetic("/", integer(7), integer(2)).value == 3
    assert arithmetic("/", integer(-7), integer(2)).value == -3
    assert arithmetic("//", integer(-7), integer(2)).value == -4


def test_negative_exponent_gives_float():
    result = arithmetic("**", integer(2), integer(-1))
    assert result.type == TYPE_FLOAT
    assert result.value == 0.5


@pytest.mark.parametrize(
    "op, message",
    [
        ("/", "Division by zero is not allowed"),
        ("//", "Floor Division by zero is not allowed"),
        ("%", "Modulus by zero is not allowed"),
    ],
)
def test_zero_divisors(op, message):
    with pytest.raises(BlueRuntimeError) as excinfo:
        arithmetic(op, integer(1), integer(0))
    assert excinfo.value.message == message
    assert excinfo.value.kind == "Arithmetic"


def test_float_division_by_zero_is_an_error():
    with pytest.raises(BlueRuntimeError, match="Division by zero"):
        arithmetic("/", Value(TYPE_FLOAT, 1.0), Value(TYPE_FLOAT, 0.0))


def test_float_power_overflow_is_infinite():
    assert math.isinf(arithmetic("**", Value(TYPE_FLOAT, 10.0), Value(TYPE_FLOAT, 400.0)).value)


def test_bitwise_operators():
    assert arithmetic("&", integer(0b1100), integer(0b1010)).value == 0b1000
    assert arithmetic("|", integer(0b1100), integer(0b1010)).value == 0b1110
    assert arithmetic("^", integer(0b1100), integer(0b1010)).value == 0b0110
    assert arithmetic("<<", integer(1), integer(70)).type == TYPE_BIGINTEGER
    with pytest.raises(BlueRuntimeError, match="negative shift count"):
        arithmetic(">>", integer(1), integer(-1))


def test_bitwise_on_floats_is_unknown_operator():
    with pytest.raises(BlueRuntimeError, match="unknown operator: FLOAT & FLOAT"):
        arithmetic("&", Value(TYPE_FLOAT, 1.0), Value(TYPE_FLOAT, 2.0))


def test_compare_across_variants():
    assert compare("==", integer(1), Value(TYPE_FLOAT, 1.0))
    assert compare("<", uinteger(1), Value(TYPE_BIGINTEGER, 2 ** 80))
    assert compare(">", Value(TYPE_BIGFLOAT, Decimal("0.5")), integer(0))
    assert not compare("==", Value(TYPE_FLOAT, math.nan), Value(TYPE_FLOAT, math.nan))


def test_negate_and_invert():
    assert negate(integer(INT64_MIN)).type == TYPE_BIGINTEGER
    assert negate(Value(TYPE_FLOAT, 2.5)).value == -2.5
    assert invert(integer(0)).value == -1
    assert invert(uinteger(0)).value == 2 ** 64 - 1
    with pytest.raises(BlueRuntimeError, match="unknown operator: -STRING"):
        negate(Value("STRING", "x"))


def test_numeric_literals():
    assert run("0xff").value == 255
    assert run("0o17").value == 15
    assert run("0b101").value == 5
    assert run("1_000_000").value == 1000000
    assert run("99999999999999999999").type == TYPE_BIGINTEGER


def test_conversion_builtins():
    assert run('int("42")').value == 42
    assert run("int(3.9)").value == 3
    assert run("uint(-1)").value == 2 ** 64 - 1
    assert run('float("2.5")').value == 2.5
    assert run('bigfloat("0.1") + bigfloat("0.2") == bigfloat("0.3")').value is True
    assert run("type(bigint(1))").value == "BIG_INTEGER"


def test_float_floor_division_with_non_finite_quotient():
    assert math.isinf(arithmetic("//", Value(TYPE_FLOAT, 1e308), Value(TYPE_FLOAT, 1e-308)).value)
    assert math.isinf(run('float("inf") // 1.0').value)
    assert math.isnan(run('float("nan") // 2.0').value)
    assert math.isnan(run('float("inf") % 2.0').value)
    assert run("7.5 // 2.0").value == 3.0


def test_int64_min_literal_is_machine_integer():
    value = run("-9223372036854775808")
    assert (value.type, value.value) == (TYPE_INTEGER, INT64_MIN)
    assert run("-9223372036854775808n").type == TYPE_BIGINTEGER
    assert run("9223372036854775808").type == TYPE_BIGINTEGER
