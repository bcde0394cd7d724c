"""Blue stdlib module `math`: scalar functions and list statistics backed by numpy."""

from __future__ import annotations

import math
from typing import List

import numpy as np

from ext import expect, expect_float, expect_floats, expect_int
from extensions import ExtensionAPI
from numeric import INTEGRAL_TYPES, NUMERIC_TYPES, make_integer
from objects import TYPE_FLOAT, TYPE_INTEGER, TYPE_LIST, BlueRuntimeError, Value, make_list, native_bool

BLUE_EXTENSION_NAME = "math"
BLUE_EXTENSION_API_VERSION = 1

BLUE_MODULE_SOURCE = r"""
val PI = 3.141592653589793;
val E = 2.718281828459045;
val TAU = 6.283185307179586;
val INF = _inf();

fun sqrt(x) {
    ## Square root of x as a float; negative input yields NaN.
    return _sqrt(x);
}
fun sin(x) { return _sin(x); }
fun cos(x) { return _cos(x); }
fun tan(x) { return _tan(x); }
fun log(x, base=null) {
    ## Natural logarithm, or the logarithm in `base` when given.
    if (base == null) { return _log(x); }
    return _log(x) / _log(base);
}
fun exp(x) { return _exp(x); }
fun floor(x) { return _floor(x); }
fun ceil(x) { return _ceil(x); }
fun round(x, digits=0) { return _round(x, digits); }
fun abs(x) { return _abs(x); }
fun pow(x, y) { return _pow(x, y); }
fun gcd(a, b) { return _gcd(a, b); }
fun lcm(a, b) { return _lcm(a, b); }
fun hypot(x, y) { return _hypot(x, y); }
fun is_inf(x) { return _is_inf(x); }
fun is_nan(x) { return _is_nan(x); }
fun min(xs) {
    ## Smallest element of a non-empty list.
    var best = xs[0];
    for (x in xs) { if (x < best) { best = x; } }
    return best;
}
fun max(xs) {
    ## Largest element of a non-empty list.
    var best = xs[0];
    for (x in xs) { if (x > best) { best = x; } }
    return best;
}
fun sum(xs) { return _sum(xs); }
fun mean(xs) { return _mean(xs); }
fun median(xs) { return _median(xs); }
fun stddev(xs) { return _stddev(xs); }
fun dot(xs, ys) { return _dot(xs, ys); }
fun linspace(start, stop, num) { return _linspace(start, stop, num); }
fun rand() {
    ## Uniform float in [0, 1).
    return _rand();
}
"""

_RNG = np.random.default_rng()


def _float(number: float) -> Value:
    return Value(TYPE_FLOAT, float(number))


def _unary(fn):
    def impl(_interpreter, args, _arg_nodes, _env, location):
        x = expect_float(args[0], fn.__name__, 1)
        with np.errstate(all="ignore"):
            return _float(fn(np.float64(x)))

    return impl


def _nonempty(values: List[float], rule: str) -> List[float]:
    if not values:
        raise BlueRuntimeError(f"`{rule}` expects a non-empty LIST", kind="Argument")
    return values


def _floor(_interpreter, args, _arg_nodes, _env, location):
    value = args[0]
    if value.type in INTEGRAL_TYPES:
        return value
    return make_integer(math.floor(expect_float(value, "floor")))


def _ceil(_interpreter, args, _arg_nodes, _env, location):
    value = args[0]
    if value.type in INTEGRAL_TYPES:
        return value
    return make_integer(math.ceil(expect_float(value, "ceil")))


def _round(_interpreter, args, _arg_nodes, _env, location):
    digits = expect_int(args[1], "round", 2) if len(args) > 1 else 0
    value = args[0]
    if value.type in INTEGRAL_TYPES:
        return value
    x = expect_float(value, "round")
    if digits == 0:
        return make_integer(int(np.round(x)))
    return _float(np.round(x, digits))


def _abs(_interpreter, args, _arg_nodes, _env, location):
    value = args[0]
    expect(value, "abs", 1, *NUMERIC_TYPES)
    if value.type == TYPE_INTEGER:
        return make_integer(abs(value.value))
    return Value(value.type, abs(value.value))


def _pow(_interpreter, args, _arg_nodes, _env, location):
    x = expect_float(args[0], "pow", 1)
    y = expect_float(args[1], "pow", 2)
    with np.errstate(all="ignore"):
        return _float(np.power(np.float64(x), np.float64(y)))


def _gcd(_interpreter, args, _arg_nodes, _env, location):
    return make_integer(math.gcd(expect_int(args[0], "gcd", 1), expect_int(args[1], "gcd", 2)))


def _lcm(_interpreter, args, _arg_nodes, _env, location):
    return make_integer(math.lcm(expect_int(args[0], "lcm", 1), expect_int(args[1], "lcm", 2)))


def _hypot(_interpreter, args, _arg_nodes, _env, location):
    return _float(np.hypot(expect_float(args[0], "hypot", 1), expect_float(args[1], "hypot", 2)))


def _inf(_interpreter, args, _arg_nodes, _env, location):
    return _float(np.inf)


def _is_inf(_interpreter, args, _arg_nodes, _env, location):
    return native_bool(bool(np.isinf(expect_float(args[0], "is_inf"))))


def _is_nan(_interpreter, args, _arg_nodes, _env, location):
    return native_bool(bool(np.isnan(expect_float(args[0], "is_nan"))))


def _sum(_interpreter, args, _arg_nodes, _env, location):
    items = expect(args[0], "sum", 1, TYPE_LIST)
    if all(item.type in INTEGRAL_TYPES for item in items):
        return make_integer(sum(item.value for item in items))
    return _float(np.sum(expect_floats(args[0], "sum")))


def _mean(_interpreter, args, _arg_nodes, _env, location):
    return _float(np.mean(_nonempty(expect_floats(args[0], "mean"), "mean")))


def _median(_interpreter, args, _arg_nodes, _env, location):
    return _float(np.median(_nonempty(expect_floats(args[0], "median"), "median")))


def _stddev(_interpreter, args, _arg_nodes, _env, location):
    return _float(np.std(_nonempty(expect_floats(args[0], "stddev"), "stddev")))


def _dot(_interpreter, args, _arg_nodes, _env, location):
    xs = expect_floats(args[0], "dot", 1)
    ys = expect_floats(args[1], "dot", 2)
    if len(xs) != len(ys):
        raise BlueRuntimeError(f"`dot` expects lists of equal length. got={len(xs)} and {len(ys)}", kind="Argument")
    return _float(np.dot(np.asarray(xs), np.asarray(ys)))


def _linspace(_interpreter, args, _arg_nodes, _env, location):
    start = expect_float(args[0], "linspace", 1)
    stop = expect_float(args[1], "linspace", 2)
    num = expect_int(args[2], "linspace", 3)
    if num < 0:
        raise BlueRuntimeError("`linspace` expects a non-negative count", kind="Argument")
    return make_list([_float(x) for x in np.linspace(start, stop, num)])


def _rand(_interpreter, args, _arg_nodes, _env, location):
    return _float(_RNG.random())


def blue_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="math", version="0.1.0")
    ext.register_builtin("_sqrt", 1, 1, _unary(np.sqrt), doc="_sqrt(x) -> FLOAT")
    ext.register_builtin("_sin", 1, 1, _unary(np.sin), doc="_sin(x) -> FLOAT")
    ext.register_builtin("_cos", 1, 1, _unary(np.cos), doc="_cos(x) -> FLOAT")
    ext.register_builtin("_tan", 1, 1, _unary(np.tan), doc="_tan(x) -> FLOAT")
    ext.register_builtin("_log", 1, 1, _unary(np.log), doc="_log(x) -> FLOAT")
    ext.register_builtin("_exp", 1, 1, _unary(np.exp), doc="_exp(x) -> FLOAT")
    ext.register_builtin("_floor", 1, 1, _floor, doc="_floor(x) -> INTEGER")
    ext.register_builtin("_ceil", 1, 1, _ceil, doc="_ceil(x) -> INTEGER")
    ext.register_builtin("_round", 1, 2, _round, doc="_round(x[, digits]) -> INTEGER or FLOAT")
    ext.register_builtin("_abs", 1, 1, _abs, doc="_abs(x) -> same numeric type")
    ext.register_builtin("_pow", 2, 2, _pow, doc="_pow(x, y) -> FLOAT")
    ext.register_builtin("_gcd", 2, 2, _gcd, doc="_gcd(a, b) -> INTEGER")
    ext.register_builtin("_lcm", 2, 2, _lcm, doc="_lcm(a, b) -> INTEGER")
    ext.register_builtin("_hypot", 2, 2, _hypot, doc="_hypot(x, y) -> FLOAT")
    ext.register_builtin("_inf", 0, 0, _inf, doc="_inf() -> FLOAT")
    ext.register_builtin("_is_inf", 1, 1, _is_inf, doc="_is_inf(x) -> BOOLEAN")
    ext.register_builtin("_is_nan", 1, 1, _is_nan, doc="_is_nan(x) -> BOOLEAN")
    ext.register_builtin("_sum", 1, 1, _sum, doc="_sum(list) -> number")
    ext.register_builtin("_mean", 1, 1, _mean, doc="_mean(list) -> FLOAT")
    ext.register_builtin("_median", 1, 1, _median, doc="_median(list) -> FLOAT")
    ext.register_builtin("_stddev", 1, 1, _stddev, doc="_stddev(list) -> FLOAT (population)")
    ext.register_builtin("_dot", 2, 2, _dot, doc="_dot(xs, ys) -> FLOAT")
    ext.register_builtin("_linspace", 3, 3, _linspace, doc="_linspace(start, stop, num) -> LIST")
    ext.register_builtin("_rand", 0, 0, _rand, doc="_rand() -> FLOAT in [0, 1)")
