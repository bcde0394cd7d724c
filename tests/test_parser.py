import pytest

from lexer import BlueParseError
from parser import (
    CForExpression,
    Comprehension,
    DotCall,
    ExpressionStatement,
    FunctionLiteral,
    FunctionStatement,
    ImportStatement,
    IndexExpression,
    MapLiteral,
    MatchExpression,
    NumberLiteral,
    PostfixExpression,
    PrefixExpression,
    SetLiteral,
    VarStatement,
    parse_source,
)
from printer import format_node

ROUND_TRIP_SOURCE = '''
import lib.util as u
from math import sqrt, PI
fun area(w, h = 2) {
    ## Area of a rectangle.
    return w * h;
}
val table = {"a": [1, 2.5, null], 3: {true, false}}
var total = 0
for ([k, v] in table) { total += len(v) }
for (var i = 0; i < 3; i += 1) { if (i == 1) { continue } else if (i > 5) { break } else { total -= 1 } }
val squares = [x ** 2 for (x in 1..<5) if x % 2 == 0]
val label = match total { 0 => "zero", _ => { "n=#{total}" }, }
try { error("x") } catch (e) { println(e) } finally { total = -total }
val pid = spawn(fun(n) { recv() }, [1])
val f = |x, y = 1| => x + y
table.a.0 >> ;
"s".upper().lower()
'''


def first_expression(source):
    statement = parse_source(source).statements[0]
    assert isinstance(statement, ExpressionStatement)
    return statement.expression


@pytest.mark.parametrize(
    "source, expected",
    [
        ("1 + 2 * 3", "(1 + (2 * 3))"),
        ("2 ** 3 ** 2", "(2 ** (3 ** 2))"),
        ("-2 ** 2", "((- 2) ** 2)"),
        ("i in 1..10", "(i in (1 .. 10))"),
        ("a or b and c", "(a or (b and c))"),
        ("a == b | c", "((a == b) | c)"),
        ("1 << 2 + 3", "(1 << (2 + 3))"),
        ("not a == b", "((not a) == b)"),
        ("x = y = 3", "x = y = 3"),
    ],
)
def test_operator_precedence(source, expected):
    assert format_node(first_expression(source)) == expected


def test_format_then_parse_gives_equal_tree():
    program = parse_source(ROUND_TRIP_SOURCE)
    assert parse_source(format_node(program)) == program


def test_brace_literals():
    assert isinstance(first_expression("{}"), MapLiteral)
    assert isinstance(first_expression("{1, 2}"), SetLiteral)
    assert first_expression('{k: 1 for (k in "ab")}').kind == "map"
    assert first_expression("{x for (x in xs)}").kind == "set"


def test_comprehension_without_parentheses():
    node = first_expression("[x for x in xs if x]")
    assert isinstance(node, Comprehension)
    assert node.condition is not None


def test_dot_member_and_dot_call():
    node = first_expression("xs.first.0")
    assert isinstance(node, IndexExpression) and node.dotted
    call = first_expression("xs.len()")
    assert isinstance(call, DotCall)
    assert call.method == "len"


def test_postfix_pop_only_before_terminators():
    assert isinstance(first_expression("xs >>;"), PostfixExpression)
    assert format_node(first_expression("a >> 1")) == "(a >> 1)"


def test_newline_does_not_continue_with_call():
    program = parse_source("val f = g\n(1 + 2)")
    assert len(program.statements) == 2


def test_function_statement_keeps_docstring():
    statement = parse_source("fun f() {\n## first\n## second\n1 }").statements[0]
    assert isinstance(statement, FunctionStatement)
    assert statement.function.body.docstring == "first\nsecond"


def test_docstring_outside_block_is_a_comment():
    assert parse_source("## not a doc\n1").statements[0].expression.value == 1


def test_lambda_forms():
    node = first_expression("|a, b| => a + b")
    assert isinstance(node, FunctionLiteral)
    assert [p.name for p in node.params] == ["a", "b"]
    assert first_expression("|| => 1").params == []


def test_c_style_for():
    node = first_expression("for (var i = 0; i < 3; i += 1) { }")
    assert isinstance(node, CForExpression)
    assert isinstance(node.init, VarStatement)


def test_match_arms():
    node = first_expression("match x { 1 => 2, _ => { 3 } }")
    assert isinstance(node, MatchExpression)
    assert len(node.arms) == 2


def test_match_on_literal_map_subject():
    node = first_expression('match {"a": 1} { {"a": _} => 1, _ => 2 }')
    assert isinstance(node.subject, MapLiteral)
    assert len(node.arms) == 2
    bare = first_expression('match { {"a": 1} == m => 1, _ => 2 }')
    assert bare.subject is None


def test_negated_int64_min_literal_stays_machine_int():
    node = first_expression("-9223372036854775808")
    assert isinstance(node, NumberLiteral)
    assert (node.kind, node.value) == ("INTEGER", -(2 ** 63))
    assert parse_source(format_node(parse_source("x - -9223372036854775808"))) == parse_source("x - -9223372036854775808")
    assert isinstance(first_expression("-9223372036854775808n"), PrefixExpression)
    for source in ("5n", "1.5n", "99999999999999999999"):
        assert parse_source(format_node(parse_source(source))) == parse_source(source)


def test_import_forms():
    plain, aliased, named, star = parse_source("import a.b; import c as d; from e import f, g; from h import *").statements
    assert isinstance(plain, ImportStatement) and plain.path == ["a", "b"]
    assert aliased.alias == "d"
    assert named.names == ["f", "g"]
    assert star.import_all


def test_parse_errors_are_collected():
    with pytest.raises(BlueParseError) as excinfo:
        parse_source("val = 1; var y = ; 3")
    errors = excinfo.value.errors
    assert len(errors) == 2
    assert errors[0].startswith("expected next token to be IDENT, got ASSIGN instead\n<string>:1:5 ")
    assert errors[1].startswith("no prefix parse function for SEMICOLON found")


def test_val_requires_initialiser():
    with pytest.raises(BlueParseError, match="val 'x' must be initialised"):
        parse_source("val x;")


def test_illegal_tokens_are_reported():
    with pytest.raises(BlueParseError) as excinfo:
        parse_source("1 + @")
    assert excinfo.value.errors[0].startswith("unexpected character '@'")


def test_default_parameters_must_trail():
    with pytest.raises(BlueParseError, match="without default follows"):
        parse_source("fun f(a = 1, b) { }")


def test_positional_after_named_argument():
    with pytest.raises(BlueParseError, match="positional argument cannot follow named argument"):
        parse_source("f(a = 1, 2)")
