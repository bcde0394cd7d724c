from objects import TYPE_BIGINTEGER, TYPE_INTEGER, TYPE_STRING

from helpers import run, show


def test_break_stops_range_loop():
    result = run("var x = 0; for (i in 1..10) { x += 1; if (i == 5) { break; } }; x")
    assert result.type == TYPE_INTEGER
    assert result.value == 5


def test_integer_overflow_promotes_to_big_integer():
    result = run("val a = 9223372036854775807; a + 1")
    assert result.type == TYPE_BIGINTEGER
    assert result.value == 9223372036854775808


def test_string_interpolation():
    result = run('"Hello #{1 + 2}"')
    assert result.type == TYPE_STRING
    assert result.value == "Hello 3"


def test_default_parameters():
    assert show("fun f(x, y=10){ x + y }; [f(1), f(1,2)]") == "[11, 3]"


def test_map_iteration_follows_insertion_order():
    source = """
    val m = {1: "a", 2: "b", 3: "c"};
    var out = "";
    for ([k, v] in m) { out = out + k }
    out
    """
    assert run(source).value == "123"


def test_try_catch_binds_message():
    result = run("try { 1/0 } catch (e) { e }")
    assert result.type == TYPE_STRING
    assert result.value.startswith("Division by zero")
