"""Blue stdlib module `time`: wall clock, sleeping and strftime formatting."""

from __future__ import annotations

import time

from ext import expect_float, expect_str
from extensions import ExtensionAPI
from objects import NULL, TYPE_FLOAT, BlueRuntimeError, Value, make_string

BLUE_EXTENSION_NAME = "time"
BLUE_EXTENSION_API_VERSION = 1

BLUE_MODULE_SOURCE = r"""
val DEFAULT_FORMAT = "%Y-%m-%d %H:%M:%S";

fun now() {
    ## Seconds since the epoch as a float.
    return _now();
}
fun now_ms() { return int(_now() * 1000); }
fun sleep(ms) { return _sleep(ms); }
fun since(start) {
    ## Seconds elapsed since `start`, a value returned by now().
    return _now() - start;
}
fun format(seconds=null, layout=DEFAULT_FORMAT) {
    if (seconds == null) { seconds = _now(); }
    return _format(seconds, layout);
}
"""


def _now(_interpreter, args, _arg_nodes, _env, location):
    return Value(TYPE_FLOAT, time.time())


def _sleep(_interpreter, args, _arg_nodes, _env, location):
    ms = expect_float(args[0], "sleep")
    if ms > 0:
        time.sleep(ms / 1000.0)
    return NULL


def _format(_interpreter, args, _arg_nodes, _env, location):
    seconds = expect_float(args[0], "format", 1)
    layout = expect_str(args[1], "format", 2) if len(args) > 1 else "%Y-%m-%d %H:%M:%S"
    try:
        return make_string(time.strftime(layout, time.localtime(seconds)))
    except (OverflowError, OSError, ValueError) as exc:
        raise BlueRuntimeError(f"`format` cannot format {seconds}: {exc}", kind="Argument")


def blue_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="time", version="0.1.0")
    ext.register_builtin("_now", 0, 0, _now, doc="_now() -> FLOAT seconds since the epoch")
    ext.register_builtin("_sleep", 1, 1, _sleep, doc="_sleep(ms) -> NULL")
    ext.register_builtin("_format", 1, 2, _format, doc="_format(seconds[, layout]) -> STRING")
