import pytest

from interpreter import BlueRuntimeError
from objects import TYPE_NULL

from helpers import make_interpreter, run, show


def test_type_and_str():
    assert show('[type(1), type(1.0), type("s"), type(null), type([]), type({}), type(set())]') == (
        '["INTEGER", "FLOAT", "STRING", "NULL", "LIST", "MAP", "SET"]'
    )
    assert run("str([1, \"a\"])").value == '[1, "a"]'


def test_len_rejects_numbers():
    with pytest.raises(BlueRuntimeError) as excinfo:
        run("len(1)")
    assert excinfo.value.message == "PositionalTypeError: `len` expects argument 1 to be STRING or LIST or MAP or SET. got=INTEGER"


def test_arity_is_checked():
    with pytest.raises(BlueRuntimeError) as excinfo:
        run("len()")
    assert excinfo.value.kind == "Argument"


def test_list_helpers():
    assert show("append([1], 2, 3)") == "[1, 2, 3]"
    assert show("prepend([3], 1, 2)") == "[1, 2, 3]"
    assert show("var xs = [1]; push(xs, 2); unshift(xs, 0); xs") == "[0, 1, 2]"
    assert show("var xs = [1, 2, 3]; [pop(xs), shift(xs), xs]") == "[3, 1, [2]]"
    assert show("concat([1], [2], [3])") == "[1, 2, 3]"
    assert show("reverse([1, 2, 3])") == "[3, 2, 1]"
    assert run('reverse("abc")').value == "cba"
    assert run("pop([])").type == TYPE_NULL


def test_sort_and_sorted():
    assert show("var xs = [3, 1, 2]; sort(xs); xs") == "[1, 2, 3]"
    assert show('sorted(["b", "a"])') == '["a", "b"]'
    with pytest.raises(BlueRuntimeError, match="cannot compare STRING with INTEGER"):
        run('sorted([1, "a"])')


def test_map_helpers():
    assert show('values({"a": 1, "b": 2})') == "[1, 2]"
    assert show('var m = {"a": 1, "b": 2}; del(m, "a"); m') == '{"b": 2}'
    assert show('val m = {"a": [1]}; var c = new(m); c["b"] = 2; [len(m), len(c)]') == "[1, 2]"


def test_set_builtin():
    assert show("set([1, 1, 2])") == "{1, 2}"
    assert show("var s = {1, 2}; del(s, 1); s") == "{2}"


def test_string_helpers():
    assert run('startswith("hello", "he")').value is True
    assert run('endswith("hello", "lo")').value is True
    assert show('split("a b c")') == '["a", "b", "c"]'
    assert show('split("ab", "")') == '["a", "b"]'
    assert run('join([1, 2], ", ")').value == "1, 2"
    assert run('replace("a-b-c", "-", "+")').value == "a+b+c"
    assert run('replace("a1b22", r/[0-9]+/, "#")').value == "a#b#"
    assert run('strip("xxhixx", "x")').value == "hi"
    assert run('trim("  hi ")').value == "hi"
    assert run('upper("hi")').value == "HI"
    assert run('lower("HI")').value == "hi"


def test_json_round_trip():
    assert run('to_json({"a": [1, true, null]})').value == '{"a": [1, true, null]}'
    assert show('from_json("{\\"a\\": [1, 2.5]}")') == '{"a": [1, 2.5]}'


def test_error_values_from_builtins_raise_when_used():
    with pytest.raises(BlueRuntimeError, match="invalid JSON"):
        run('val x = from_json("{"); 1')


def test_regex_helpers():
    assert run('find("abc123", r/[0-9]+/)').value == "123"
    assert run('find("abc", "[0-9]")').type == TYPE_NULL
    with pytest.raises(BlueRuntimeError, match="invalid regex"):
        run('matches("a", "(")')


def test_help_for_builtins_and_modules():
    assert run("help(len)").value.startswith("`len` returns")
    assert run("help(1)").value == "INTEGER value"


def test_assert_builtin():
    assert run("assert(1 == 1)").value is True
    with pytest.raises(BlueRuntimeError, match="numbers differ"):
        run('assert(1 == 2, "numbers differ")')


def test_version():
    assert run("version()").value == "0.1.2"


def test_range_builtin():
    assert show("range(3)") == "[0, 1, 2]"
    assert show("range(5, 0, -2)") == "[5, 3, 1]"
    with pytest.raises(BlueRuntimeError, match="step must not be zero"):
        run("range(0, 3, 0)")


def test_fmt():
    assert run('fmt(5, "04b")').value == "0101"
    assert run('fmt(3.14159, ".2f")').value == "3.14"


def test_files(tmp_path):
    target = tmp_path / "note.txt"
    source = f'write_file("{target}", "hello"); [read_file("{target}"), is_file("{target}"), is_dir("{tmp_path}")]'
    assert show(source) == '["hello", true, true]'
    assert show(f'ls("{tmp_path}")') == '["note.txt"]'
    with pytest.raises(BlueRuntimeError, match="Failed to read"):
        run(f'read_file("{tmp_path / "missing"}")')


def test_input_uses_provider():
    interpreter, output = make_interpreter('input("name? ")')
    interpreter.input_provider = lambda: "bo"
    assert interpreter.run().value == "bo"
    assert output == ["name? "]


def test_exit_builtin_stops_program():
    from interpreter import ExitSignal

    with pytest.raises(ExitSignal) as excinfo:
        run("exit(3); 1")
    assert excinfo.value.code == 3
