import pytest

from interpreter import BlueRuntimeError
from objects import TYPE_FLOAT, TYPE_NULL, TYPE_STRING

from helpers import run, run_output, show


@pytest.mark.parametrize(
    "source",
    [
        "val x = 1; x = 2",
        "val x = [1]; x = [2]",
        'val x = "a"; x += "b"',
        "val x = {1: 2}; x = null",
    ],
)
def test_val_cannot_be_reassigned(source):
    with pytest.raises(BlueRuntimeError) as excinfo:
        run(source)
    assert "immutable" in excinfo.value.message
    assert excinfo.value.kind == "Name"


def test_val_blocks_in_place_shift():
    with pytest.raises(BlueRuntimeError, match="immutable"):
        run("val xs = [1, 2]; xs << 3")


def test_var_can_be_reassigned():
    assert run("var x = 1; x = 2; x").value == 2


def test_len_counts_codepoints():
    assert run('len("héllo🙂")').value == 6
    assert run('"日本語"[1]').value == "本"


def test_map_keys_keep_literal_order():
    assert show('val m = {"z": 1, "a": 2, "m": 3}; keys(m)') == '["z", "a", "m"]'
    assert show('var out = []; for (x in {"b": 1, "a": 2}) { out << x[0] }; out') == '["b", "a"]'


def test_composites_compare_by_structure():
    assert run("[1, [2, 3]] == [1, [2, 3]]").value is True
    assert run('{"a": [1]} == {"a": [1]}').value is True
    assert run("[1, 2] == [2, 1]").value is False
    assert run("__hash([1, 2]) == __hash([1, 2])").value is True
    assert run("{1, 2} == {2, 1}").value is True


def test_numeric_equality_across_variants():
    assert run("1 == 1.0").value is True
    assert run("2 != 3").value is True


def test_if_is_an_expression():
    assert run("val x = if (3 > 2) { \"yes\" } else { \"no\" }; x").value == "yes"
    assert run("if (false) { 1 }").type == TYPE_NULL


def test_else_if_chain():
    source = """
    fun grade(n) {
        if (n >= 90) { "A" } else if (n >= 80) { "B" } else { "C" }
    }
    [grade(95), grade(85), grade(10)]
    """
    assert show(source) == '["A", "B", "C"]'


def test_while_style_for_loop():
    assert run("var i = 0; for (i < 10) { i += 3 }; i").value == 12


def test_c_style_for_scopes_loop_variable():
    source = "var total = 0; for (var i = 0; i < 4; i += 1) { total += i }; total"
    assert run(source).value == 6
    with pytest.raises(BlueRuntimeError, match="identifier not found: i"):
        run("for (var i = 0; i < 1; i += 1) { }; i")


def test_continue_skips_iteration():
    assert show("var out = []; for (x in [1, 2, 3, 4]) { if (x % 2 == 0) { continue; } out << x }; out") == "[1, 3]"


def test_for_with_index_binding():
    assert show('var out = []; for ([i, c] in "ab") { out << "#{i}#{c}" }; out') == '["0a", "1b"]'


def test_closures_capture_environment():
    source = """
    fun counter() {
        var n = 0;
        return fun() { n += 1; n };
    }
    val c = counter();
    c(); c();
    c()
    """
    assert run(source).value == 3


def test_named_arguments():
    source = "fun f(a, b=2, c=3) { [a, b, c] }; f(1, c=30)"
    assert show(source) == "[1, 2, 30]"


def test_missing_argument_is_an_argument_error():
    with pytest.raises(BlueRuntimeError) as excinfo:
        run("fun f(a, b) { a }; f(1)")
    assert excinfo.value.kind == "Argument"


def test_unknown_named_argument():
    with pytest.raises(BlueRuntimeError, match="no parameter named 'z'"):
        run("fun f(a) { a }; f(1, z=2)")


def test_defaults_are_evaluated_at_definition():
    assert run("var d = 1; fun f(x=d) { x }; d = 5; f()").value == 1


def test_return_exits_early():
    assert run("fun f() { for (x in [1, 2, 3]) { if (x == 2) { return x * 10 } }; 0 }; f()").value == 20


def test_recursion():
    assert run("fun fib(n) { if (n < 2) { return n }; fib(n - 1) + fib(n - 2) }; fib(15)").value == 610


def test_deep_recursion():
    assert run("fun f(n) { if (n == 0) { return 0 }; n + f(n - 1) }; f(1000)").value == 500500


def test_match_on_subject():
    source = """
    fun describe(x) {
        match x {
            1 => { "one" },
            "two" => { "two" },
            _ => { "other" },
        }
    }
    [describe(1), describe("two"), describe(3.5)]
    """
    assert show(source) == '["one", "two", "other"]'


def test_match_without_subject_runs_first_true_arm():
    source = """
    val n = 7;
    match {
        n < 5 => { "small" },
        n < 10 => { "medium" },
        _ => { "large" },
    }
    """
    assert run(source).value == "medium"


def test_match_map_pattern_with_wildcard_values():
    source = """
    fun kind(m) {
        match m {
            {"type": "add", "value": _} => { "add" },
            {"type": _} => { "bare" },
            _ => { "unknown" },
        }
    }
    [kind({"type": "add", "value": 3}), kind({"type": "x"}), kind({"type": "add"}), kind(1)]
    """
    assert show(source) == '["add", "bare", "bare", "unknown"]'


def test_match_on_literal_map_and_set_subjects():
    assert run('match {"a": 1} { {"a": _} => { "hit" }, _ => { "miss" } }').value == "hit"
    assert run('match {1, 2} { {2, 1} => { "same" }, _ => { "other" } }').value == "same"


def test_match_without_matching_arm_is_null():
    assert run("match 3 { 1 => { 1 } }").type == TYPE_NULL


def test_try_finally_runs_on_success_and_error():
    source = """
    var log = [];
    try { log << "try" } finally { log << "finally" }
    try { error("boom") } catch (e) { log << e } finally { log << "again" }
    log
    """
    assert show(source) == '["try", "finally", "boom", "again"]'


def test_finally_without_catch_propagates():
    with pytest.raises(BlueRuntimeError, match="boom"):
        run('var seen = false; try { error("boom") } finally { seen = true }')


def test_catch_identifier_is_scoped_to_block():
    with pytest.raises(BlueRuntimeError, match="identifier not found: e"):
        run("try { 1 / 0 } catch (e) { 0 }; e")


def test_error_value_short_circuits():
    with pytest.raises(BlueRuntimeError) as excinfo:
        run('val x = error("bad thing"); 1')
    assert excinfo.value.message == "bad thing"


def test_undefined_identifier():
    with pytest.raises(BlueRuntimeError) as excinfo:
        run("missing + 1")
    assert excinfo.value.kind == "Name"
    assert str(excinfo.value) == "NameError: identifier not found: missing"


def test_error_location_points_at_expression():
    with pytest.raises(BlueRuntimeError) as excinfo:
        run("var a = 1;\nvar b = a / 0;")
    assert excinfo.value.location.line == 2


def test_call_trace_records_call_sites():
    with pytest.raises(BlueRuntimeError) as excinfo:
        run("fun inner() { 1 / 0 }\nfun outer() { inner() }\nouter()")
    lines = [frame.line for frame in excinfo.value.frames]
    assert lines[0] == 1
    assert 3 in lines


def test_type_mismatch_messages():
    with pytest.raises(BlueRuntimeError, match="type mismatch: LIST - INTEGER"):
        run("[1] - 1")
    with pytest.raises(BlueRuntimeError, match="unknown operator: BOOLEAN - BOOLEAN"):
        run("true - false")


def test_string_concatenation_uses_display_form():
    assert run('"n=" + 5').value == "n=5"
    assert run('[1] + "x"').value == "[1]x"
    assert run('"ab" * 3').value == "ababab"


def test_null_coalescing_or():
    assert run('null or "fallback"').value == "fallback"
    assert run("1 or 2").value is True
    assert run("false or false").value is False


def test_logical_and_short_circuits():
    assert run("false and missing_name").value is False


def test_membership():
    assert run("2 in [1, 2, 3]").value is True
    assert run('"ell" in "hello"').value is True
    assert run('"k" in {"k": 1}').value is True
    assert run("4 notin {1, 2}").value is True


def test_ranges():
    assert show("1..4") == "[1, 2, 3, 4]"
    assert show("4..1") == "[4, 3, 2, 1]"
    assert show("0..<3") == "[0, 1, 2]"
    assert show("'a'..'d'") == '["a", "b", "c", "d"]'
    with pytest.raises(BlueRuntimeError) as excinfo:
        run("3..<3")
    assert excinfo.value.kind == "Arithmetic"


def test_indexing():
    assert run("[1, 2, 3][-1]").value == 3
    assert run("[1, 2, 3][10]").type == TYPE_NULL
    assert show("[10, 20, 30, 40][1..2]") == "[20, 30]"
    assert run('"hello"[1..3]').value == "ell"
    assert run('{"a": 1}["b"]').type == TYPE_NULL
    assert run('{"a": {"b": 2}}.a.b').value == 2


def test_index_assignment():
    assert show("var xs = [1, 2]; xs[4] = 5; xs") == "[1, 2, null, null, 5]"
    assert show('var m = {}; m["k"] = 1; m["k"] += 1; m') == '{"k": 2}'
    assert run('var s = "cat"; s[0] = "b"; s').value == "bat"


def test_augmented_assignment_on_missing_map_key():
    with pytest.raises(BlueRuntimeError, match="map key `\"k\"` does not exist"):
        run('var m = {}; m["k"] += 1')


def test_list_shift_operators():
    source = """
    var xs = [2, 3];
    xs << 4;
    val first = << xs;
    val last = xs >>;
    [first, last, xs]
    """
    assert show(source) == "[2, 4, [3]]"


def test_set_operations():
    assert show("{1, 2} | {2, 3}") == "{1, 2, 3}"
    assert show("{1, 2} & {2, 3}") == "{2}"
    assert show("{1, 2} - {2}") == "{1}"
    assert show("{1, 2} ^ {2, 3}") == "{1, 3}"
    assert run("{1} <= {1, 2}").value is True


def test_comprehensions():
    assert show("[x * x for (x in 1..5) if (x % 2 == 1)]") == "[1, 9, 25]"
    assert show('{k: v * 2 for ([k, v] in {"a": 1, "b": 2})}') == '{"a": 2, "b": 4}'
    assert show("{x % 3 for (x in 1..6)}") == "{1, 2, 0}"


def test_comprehension_variable_does_not_leak():
    with pytest.raises(BlueRuntimeError, match="identifier not found: x"):
        run("[x for (x in [1])]; x")


def test_dot_call_prefers_builtins():
    assert run("[1, 2, 3].len()").value == 3
    assert run('"a,b".split(",").join("-")').value == "a-b"


def test_dot_call_falls_back_to_map_member():
    assert run('val obj = {"greet": fun(name) { "hi " + name }}; obj.greet("bo")').value == "hi bo"


def test_lambda_and_higher_order_functions():
    assert run("val double = fun(x) { x * 2 }; double(4)").value == 8
    assert show("sorted([3, 1, 2], fun(x) { 0 - x })") == "[3, 2, 1]"
    assert run("fun apply(f, x) { f(x) }; apply(fun(n) { n + 1 }, 41)").value == 42


def test_docstring_available_through_help():
    source = """
    fun area(w, h) {
        ## Area of a rectangle.
        return w * h;
    }
    help(area)
    """
    assert run(source).value == "Area of a rectangle."


def test_regex_literal():
    assert run('matches("abc123", r/[0-9]+/)').value is True
    assert show('find_all("a1b22c333", r/[0-9]+/)') == '["1", "22", "333"]'


def test_exec_string_runs_command():
    result = run("`echo hi`")
    assert result.type == TYPE_STRING
    assert result.value.strip() == "hi"


def test_eval_runs_in_current_scope():
    assert run('var x = 2; eval("x * 21")').value == 42


def test_eval_syntax_error():
    with pytest.raises(BlueRuntimeError) as excinfo:
        run('eval("1 +")')
    assert excinfo.value.kind == "Syntax"


def test_print_and_println(capsys):
    _, output = run_output('print("a", 1); println("b"); println()')
    assert output == "a1b\n\n"
    assert capsys.readouterr().out == ""


def test_interpolation_of_nested_expressions():
    assert run('val xs = [1, 2]; "xs=#{xs} len=#{len(xs)} s=#{"q"}"').value == 'xs=[1, 2] len=2 s=q'


def test_float_arithmetic_type():
    result = run("1 / 2.0")
    assert result.type == TYPE_FLOAT
    assert result.value == 0.5
