from lexer import Lexer, error_line, split_interpolation


def token_types(source):
    return [token.type for token in Lexer(source).tokenize()]


def test_statement_tokens():
    assert token_types("var x = 1.5;") == ["VAR", "IDENT", "ASSIGN", "FLOAT", "SEMICOLON", "EOF"]


def test_longest_operator_wins():
    assert token_types("a **= 2 ..< 3 => b") == ["IDENT", "POWEQ", "INT", "NONINCRANGE", "INT", "RARROW", "IDENT", "EOF"]


def test_number_literal_kinds():
    assert token_types("0xff 0o7 0b1 0u9 12n 1.5n 1_000") == [
        "HEX", "OCTAL", "BINARY", "UINT", "BIGINT", "BIGFLOAT", "INT", "EOF",
    ]


def test_dotted_index_is_not_a_float():
    assert token_types("xs.0.1") == ["IDENT", "DOT", "INT", "DOT", "INT", "EOF"]


def test_malformed_number_is_illegal():
    tokens = Lexer("12abc").tokenize()
    assert tokens[0].type == "ILLEGAL"
    assert "malformed number literal" in tokens[0].value


def test_strings_and_escapes():
    tokens = Lexer(r'"a\tb" ' + "'it\\'s' \"\"\"raw #{x}\"\"\"").tokenize()
    assert [(t.type, t.value) for t in tokens[:3]] == [
        ("STRING", "a\tb"),
        ("STRING", "it's"),
        ("RAW_STRING", "raw #{x}"),
    ]


def test_interpolated_string_keeps_expression_text():
    token = Lexer('"sum=#{a + {"k": 1}["k"]}!"').tokenize()[0]
    assert token.type == "ISTRING"
    assert token.value == 'sum=#{a + {"k": 1}["k"]}!'


def test_split_interpolation():
    assert split_interpolation("a#{b}c#{d}") == [(False, "a"), (True, "b"), (False, "c"), (True, "d")]
    assert split_interpolation('#{"}"}') == [(True, '"}"')]


def test_unterminated_string_is_illegal():
    token = Lexer('"abc').tokenize()[0]
    assert token.type == "ILLEGAL"
    assert token.value == "unterminated string literal"


def test_comments_are_skipped():
    assert token_types("1 # line\n### block\nstill block ### 2") == ["INT", "INT", "EOF"]


def test_docstring_token():
    tokens = Lexer("## Adds things.").tokenize()
    assert (tokens[0].type, tokens[0].value) == ("DOCSTRING", "Adds things.")


def test_regex_and_exec_strings():
    tokens = Lexer(r"r/a\/b/ `ls -l`").tokenize()
    assert [(t.type, t.value) for t in tokens[:2]] == [("REGEX", "a/b"), ("EXEC_STRING", "ls -l")]


def test_r_identifier_without_closing_slash():
    assert token_types("r / 2") == ["IDENT", "SLASH", "INT", "EOF"]


def test_positions_and_newline_flag():
    tokens = Lexer("a\n  b", "f.b").tokenize()
    assert (tokens[1].line, tokens[1].column, tokens[1].file) == (2, 3, "f.b")
    assert tokens[1].newline_before
    assert not Lexer("a b").tokenize()[1].newline_before


def test_illegal_character():
    token = Lexer("@").tokenize()[0]
    assert token.type == "ILLEGAL"
    assert token.value == "unexpected character '@'"


def test_error_line_points_at_column():
    assert error_line(["abc"], "f.b", 1, 2) == "f.b:1:2 abc\n         ^"
