from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from lexer import BlueParseError, Lexer, Token, error_line


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


@dataclass
class Node:
    location: SourceLocation = field(compare=False, repr=False)


@dataclass
class Block(Node):
    statements: List["Statement"]
    docstring: Optional[str] = None


@dataclass
class Program(Node):
    statements: List["Statement"]


class Statement(Node):
    pass


class Expression(Node):
    pass


@dataclass
class VarStatement(Statement):
    name: str
    value: Optional[Expression]
    immutable: bool


@dataclass
class ReturnStatement(Statement):
    value: Optional[Expression]


@dataclass
class BreakStatement(Statement):
    pass


@dataclass
class ContinueStatement(Statement):
    pass


@dataclass
class ImportStatement(Statement):
    path: List[str]
    alias: Optional[str] = None
    names: Optional[List[str]] = None
    import_all: bool = False


@dataclass
class TryStatement(Statement):
    try_block: Block
    catch_name: Optional[str]
    catch_block: Optional[Block]
    finally_block: Optional[Block]


@dataclass
class FunctionStatement(Statement):
    name: str
    function: "FunctionLiteral"


@dataclass
class ExpressionStatement(Statement):
    expression: Expression


@dataclass
class NumberLiteral(Expression):
    value: Union[int, float, Decimal]
    kind: str
    literal: str = field(compare=False)


@dataclass
class StringLiteral(Expression):
    value: str
    interpolated: bool = False


@dataclass
class RegexLiteral(Expression):
    pattern: str


@dataclass
class ExecString(Expression):
    command: str


@dataclass
class BooleanLiteral(Expression):
    value: bool


@dataclass
class NullLiteral(Expression):
    pass


@dataclass
class Identifier(Expression):
    name: str


@dataclass
class PrefixExpression(Expression):
    operator: str
    right: Expression


@dataclass
class InfixExpression(Expression):
    left: Expression
    operator: str
    right: Expression


@dataclass
class PostfixExpression(Expression):
    left: Expression
    operator: str


@dataclass
class AssignExpression(Expression):
    target: Expression
    operator: str
    value: Expression


@dataclass
class CallArgument:
    name: Optional[str]
    expression: Expression


@dataclass
class CallExpression(Expression):
    function: Expression
    args: List[CallArgument]


@dataclass
class DotCall(Expression):
    receiver: Expression
    method: str
    args: List[CallArgument]


@dataclass
class IndexExpression(Expression):
    base: Expression
    index: Expression
    dotted: bool = False


@dataclass
class IfBranch:
    condition: Expression
    block: Block


@dataclass
class IfExpression(Expression):
    branches: List[IfBranch]
    else_block: Optional[Block]


@dataclass
class ForExpression(Expression):
    condition: Expression
    block: Block


@dataclass
class CForExpression(Expression):
    init: Optional[Statement]
    condition: Optional[Expression]
    post: Optional[Expression]
    block: Block


@dataclass
class MatchArm:
    pattern: Expression
    block: Block


@dataclass
class MatchExpression(Expression):
    subject: Optional[Expression]
    arms: List[MatchArm]


@dataclass
class Param:
    name: str
    default: Optional[Expression]


@dataclass
class FunctionLiteral(Expression):
    params: List[Param]
    body: Block
    name: Optional[str] = field(default=None, compare=False)


@dataclass
class ListLiteral(Expression):
    elements: List[Expression]


@dataclass
class MapLiteral(Expression):
    pairs: List[Tuple[Expression, Expression]]


@dataclass
class SetLiteral(Expression):
    elements: List[Expression]


@dataclass
class Comprehension(Expression):
    kind: str
    element: Expression
    value: Optional[Expression]
    target: Expression
    iterable: Expression
    condition: Optional[Expression]


@dataclass
class SpawnExpression(Expression):
    function: Expression
    args: Optional[Expression]


@dataclass
class SelfExpression(Expression):
    pass


@dataclass
class EvalExpression(Expression):
    source: Expression


LOWEST = 0
ASSIGN = 1
LOGICAL_OR = 2
LOGICAL_AND = 3
BIT_OR = 4
BIT_XOR = 5
BIT_AND = 6
EQUALS = 7
LESS_GREATER = 8
SHIFT = 9
SUM = 10
PRODUCT = 11
POWER = 12
MEMBERSHIP = 13
RANGE = 14
PREFIX = 15
CALL = 16
INDEX = 17

PRECEDENCES: Dict[str, int] = {
    "ASSIGN": ASSIGN,
    "PLUSEQ": ASSIGN,
    "MINUSEQ": ASSIGN,
    "STAREQ": ASSIGN,
    "SLASHEQ": ASSIGN,
    "FDIVEQ": ASSIGN,
    "POWEQ": ASSIGN,
    "PERCENTEQ": ASSIGN,
    "AMPEQ": ASSIGN,
    "PIPEEQ": ASSIGN,
    "HATEQ": ASSIGN,
    "TILDEEQ": ASSIGN,
    "LSHIFTEQ": ASSIGN,
    "RSHIFTEQ": ASSIGN,
    "OR": LOGICAL_OR,
    "AND": LOGICAL_AND,
    "PIPE": BIT_OR,
    "HAT": BIT_XOR,
    "AMP": BIT_AND,
    "TILDE": BIT_AND,
    "EQ": EQUALS,
    "NEQ": EQUALS,
    "LT": LESS_GREATER,
    "GT": LESS_GREATER,
    "LTE": LESS_GREATER,
    "GTE": LESS_GREATER,
    "LSHIFT": SHIFT,
    "RSHIFT": SHIFT,
    "PLUS": SUM,
    "MINUS": SUM,
    "STAR": PRODUCT,
    "SLASH": PRODUCT,
    "FDIV": PRODUCT,
    "PERCENT": PRODUCT,
    "POW": POWER,
    "IN": MEMBERSHIP,
    "NOTIN": MEMBERSHIP,
    "RANGE": RANGE,
    "NONINCRANGE": RANGE,
    "LPAREN": CALL,
    "LBRACKET": INDEX,
    "DOT": INDEX,
}

# Operator spelling used in the AST, keyed by token type.
INFIX_OPERATORS: Dict[str, str] = {
    "OR": "or",
    "AND": "and",
    "PIPE": "|",
    "HAT": "^",
    "AMP": "&",
    "TILDE": "~",
    "EQ": "==",
    "NEQ": "!=",
    "LT": "<",
    "GT": ">",
    "LTE": "<=",
    "GTE": ">=",
    "LSHIFT": "<<",
    "RSHIFT": ">>",
    "PLUS": "+",
    "MINUS": "-",
    "STAR": "*",
    "SLASH": "/",
    "FDIV": "//",
    "PERCENT": "%",
    "POW": "**",
    "IN": "in",
    "NOTIN": "notin",
    "RANGE": "..",
    "NONINCRANGE": "..<",
}

ASSIGN_OPERATORS: Dict[str, str] = {
    "ASSIGN": "=",
    "PLUSEQ": "+=",
    "MINUSEQ": "-=",
    "STAREQ": "*=",
    "SLASHEQ": "/=",
    "FDIVEQ": "//=",
    "POWEQ": "**=",
    "PERCENTEQ": "%=",
    "AMPEQ": "&=",
    "PIPEEQ": "|=",
    "HATEQ": "^=",
    "TILDEEQ": "~=",
    "LSHIFTEQ": "<<=",
    "RSHIFTEQ": ">>=",
}

# Tokens after which a trailing `>>` is the postfix pop form.
POSTFIX_FOLLOWERS = {"SEMICOLON", "RPAREN", "RBRACKET", "RBRACE", "COMMA", "EOF"}

INT64_MAX = 2 ** 63 - 1
UINT64_MAX = 2 ** 64 - 1


class _ParseAbort(Exception):
    """Unwinds the current statement after an error has been recorded."""


class Parser:
    def __init__(
        self,
        tokens: List[Token],
        filename: str = "<string>",
        source_lines: Optional[List[str]] = None,
    ):
        self.filename = filename
        self.source_lines = source_lines if source_lines is not None else []
        self.tokens = self._attach_docstrings(tokens)
        self.index = 0
        self.errors: List[str] = []
        self._prefix_parsers: Dict[str, Callable[[], Expression]] = {
            "IDENT": self._parse_identifier,
            "INT": self._parse_number,
            "FLOAT": self._parse_number,
            "HEX": self._parse_number,
            "OCTAL": self._parse_number,
            "BINARY": self._parse_number,
            "UINT": self._parse_number,
            "BIGINT": self._parse_number,
            "BIGFLOAT": self._parse_number,
            "STRING": self._parse_string,
            "ISTRING": self._parse_string,
            "RAW_STRING": self._parse_string,
            "EXEC_STRING": self._parse_exec_string,
            "REGEX": self._parse_regex,
            "TRUE": self._parse_boolean,
            "FALSE": self._parse_boolean,
            "NULL": self._parse_null,
            "MINUS": self._parse_prefix,
            "NOT": self._parse_prefix,
            "TILDE": self._parse_prefix,
            "LSHIFT": self._parse_prefix,
            "LPAREN": self._parse_grouped,
            "LBRACKET": self._parse_list_literal,
            "LBRACE": self._parse_brace_literal,
            "IF": self._parse_if,
            "FOR": self._parse_for,
            "MATCH": self._parse_match,
            "FUN": self._parse_function_literal,
            "PIPE": self._parse_lambda,
            "OR": self._parse_lambda,
            "SPAWN": self._parse_spawn,
            "SELF": self._parse_self,
            "EVAL": self._parse_eval,
        }

    @classmethod
    def from_source(cls, source: str, filename: str = "<string>") -> "Parser":
        tokens = Lexer(source, filename).tokenize()
        return cls(tokens, filename, source.splitlines())

    def parse(self) -> Program:
        illegal = [tok for tok in self.tokens if tok.type == "ILLEGAL"]
        if illegal:
            raise BlueParseError([self._format_error(tok, tok.value) for tok in illegal])
        first = self._peek()
        statements = self._parse_statements(stop_tokens={"EOF"})
        if self.errors:
            raise BlueParseError(self.errors)
        return Program(location=self._location_from_token(first), statements=statements)

    def _attach_docstrings(self, tokens: List[Token]) -> List[Token]:
        # Only `##` lines directly after an opening brace are kept; the rest are comments.
        kept: List[Token] = []
        previous: Optional[Token] = None
        for tok in tokens:
            if tok.type == "DOCSTRING":
                if previous is not None and previous.type == "LBRACE":
                    kept.append(tok)
                continue
            kept.append(tok)
            previous = tok
        return kept

    # -- statements -----------------------------------------------------

    def _parse_statements(self, stop_tokens: Iterable[str]) -> List[Statement]:
        statements: List[Statement] = []
        while self._peek().type not in stop_tokens and self._peek().type != "EOF":
            if self._match("SEMICOLON") or self._match("DOCSTRING"):
                continue
            start = self.index
            try:
                statements.append(self._parse_statement())
            except _ParseAbort:
                self._synchronize(start)
                continue
            while self._match("SEMICOLON"):
                pass
        return statements

    def _synchronize(self, start: int) -> None:
        if self.index == start:
            self.index += 1
        while self._peek().type not in ("SEMICOLON", "RBRACE", "EOF"):
            self.index += 1
        self._match("SEMICOLON")

    def _parse_statement(self) -> Statement:
        token = self._peek()
        if token.type in ("VAR", "VAL"):
            return self._parse_var()
        if token.type == "RETURN":
            return self._parse_return()
        if token.type == "BREAK":
            self.index += 1
            return BreakStatement(location=self._location_from_token(token))
        if token.type == "CONTINUE":
            self.index += 1
            return ContinueStatement(location=self._location_from_token(token))
        if token.type == "IMPORT":
            return self._parse_import()
        if token.type == "IDENT" and token.value == "from" and self._peek_next().type == "IDENT":
            return self._parse_from_import()
        if token.type == "TRY":
            return self._parse_try()
        if token.type == "FUN" and self._peek_next().type == "IDENT":
            return self._parse_function_statement()
        expr = self._parse_expression(LOWEST)
        return ExpressionStatement(location=expr.location, expression=expr)

    def _parse_var(self) -> VarStatement:
        keyword = self._advance()
        name = self._consume("IDENT")
        value: Optional[Expression] = None
        if self._match("ASSIGN"):
            value = self._parse_expression(LOWEST)
        elif keyword.type == "VAL":
            self._error(self._peek(), f"val '{name.value}' must be initialised")
        return VarStatement(
            location=self._location_from_token(keyword),
            name=name.value,
            value=value,
            immutable=keyword.type == "VAL",
        )

    def _parse_return(self) -> ReturnStatement:
        keyword = self._consume("RETURN")
        value: Optional[Expression] = None
        if self._peek().type not in ("SEMICOLON", "RBRACE", "EOF"):
            value = self._parse_expression(LOWEST)
        return ReturnStatement(location=self._location_from_token(keyword), value=value)

    def _parse_dotted_path(self) -> List[str]:
        parts = [self._consume("IDENT").value]
        while self._match("DOT"):
            parts.append(self._consume("IDENT").value)
        return parts

    def _parse_import(self) -> ImportStatement:
        keyword = self._consume("IMPORT")
        path = self._parse_dotted_path()
        alias: Optional[str] = None
        if self._peek().type == "IDENT" and self._peek().value == "as":
            self.index += 1
            alias = self._consume("IDENT").value
        return ImportStatement(location=self._location_from_token(keyword), path=path, alias=alias)

    def _parse_from_import(self) -> ImportStatement:
        keyword = self._advance()
        path = self._parse_dotted_path()
        self._consume("IMPORT")
        location = self._location_from_token(keyword)
        if self._match("STAR"):
            return ImportStatement(location=location, path=path, import_all=True)
        names = [self._consume("IDENT").value]
        while self._match("COMMA"):
            names.append(self._consume("IDENT").value)
        return ImportStatement(location=location, path=path, names=names)

    def _parse_try(self) -> TryStatement:
        keyword = self._consume("TRY")
        try_block = self._parse_block()
        catch_name: Optional[str] = None
        catch_block: Optional[Block] = None
        finally_block: Optional[Block] = None
        if self._match("CATCH"):
            self._consume("LPAREN")
            catch_name = self._consume("IDENT").value
            self._consume("RPAREN")
            catch_block = self._parse_block()
        if self._match("FINALLY"):
            finally_block = self._parse_block()
        if catch_block is None and finally_block is None:
            self._error(self._peek(), "try requires a catch or finally block")
        return TryStatement(
            location=self._location_from_token(keyword),
            try_block=try_block,
            catch_name=catch_name,
            catch_block=catch_block,
            finally_block=finally_block,
        )

    def _parse_function_statement(self) -> FunctionStatement:
        keyword = self._consume("FUN")
        name = self._consume("IDENT")
        params = self._parse_params("LPAREN", "RPAREN")
        body = self._parse_block()
        location = self._location_from_token(keyword)
        function = FunctionLiteral(location=location, params=params, body=body, name=name.value)
        return FunctionStatement(location=location, name=name.value, function=function)

    def _parse_block(self) -> Block:
        start = self._consume("LBRACE")
        doc_lines: List[str] = []
        while self._peek().type == "DOCSTRING":
            doc_lines.append(self._advance().value)
        statements = self._parse_statements(stop_tokens={"RBRACE"})
        self._consume("RBRACE")
        return Block(
            location=self._location_from_token(start),
            statements=statements,
            docstring="\n".join(doc_lines) if doc_lines else None,
        )

    def _parse_block_or_expression(self) -> Block:
        if self._peek().type == "LBRACE":
            return self._parse_block()
        expr = self._parse_expression(LOWEST)
        return Block(location=expr.location, statements=[ExpressionStatement(location=expr.location, expression=expr)])

    # -- expressions ----------------------------------------------------

    def _parse_expression(self, precedence: int) -> Expression:
        token = self._peek()
        prefix = self._prefix_parsers.get(token.type)
        if prefix is None:
            self._error(token, f"no prefix parse function for {token.type} found")
        left = prefix()
        while True:
            token = self._peek()
            if token.type in ("SEMICOLON", "EOF"):
                break
            token_precedence = PRECEDENCES.get(token.type, LOWEST)
            if precedence >= token_precedence:
                break
            # a new line never continues the previous expression with a call or index
            if token.type in ("LPAREN", "LBRACKET") and token.newline_before:
                break
            left = self._parse_infix(left)
        return left

    def _parse_infix(self, left: Expression) -> Expression:
        token = self._advance()
        location = self._location_from_token(token)
        if token.type in ASSIGN_OPERATORS:
            if not isinstance(left, (Identifier, IndexExpression)):
                self._error(token, "invalid assignment target")
            value = self._parse_expression(LOWEST)
            return AssignExpression(location=location, target=left, operator=ASSIGN_OPERATORS[token.type], value=value)
        if token.type == "LPAREN":
            args = self._parse_call_arguments()
            if isinstance(left, IndexExpression) and left.dotted and isinstance(left.index, StringLiteral):
                return DotCall(location=left.location, receiver=left.base, method=left.index.value, args=args)
            return CallExpression(location=location, function=left, args=args)
        if token.type == "LBRACKET":
            index = self._parse_expression(LOWEST)
            self._consume("RBRACKET")
            return IndexExpression(location=location, base=left, index=index)
        if token.type == "DOT":
            return self._parse_member(left, token)
        if token.type == "RSHIFT":
            following = self._peek()
            if following.type in POSTFIX_FOLLOWERS or following.newline_before:
                return PostfixExpression(location=location, left=left, operator=">>")
        operator = INFIX_OPERATORS[token.type]
        precedence = PRECEDENCES[token.type]
        if token.type == "POW":
            precedence -= 1
        right = self._parse_expression(precedence)
        return InfixExpression(location=location, left=left, operator=operator, right=right)

    def _parse_member(self, left: Expression, dot: Token) -> IndexExpression:
        token = self._advance()
        location = self._location_from_token(dot)
        if token.type == "INT":
            key: Expression = NumberLiteral(
                location=self._location_from_token(token),
                value=int(token.value.replace("_", "")),
                kind="INTEGER",
                literal=token.value,
            )
        elif token.value.isidentifier():
            key = StringLiteral(location=self._location_from_token(token), value=token.value)
        else:
            self._error(token, f"expected member name after '.', got {token.type}")
        return IndexExpression(location=location, base=left, index=key, dotted=True)

    def _parse_call_arguments(self) -> List[CallArgument]:
        args: List[CallArgument] = []
        seen_named = False
        while self._peek().type != "RPAREN":
            if self._peek().type == "IDENT" and self._peek_next().type == "ASSIGN":
                name = self._advance()
                self._advance()
                args.append(CallArgument(name=name.value, expression=self._parse_expression(LOWEST)))
                seen_named = True
            else:
                if seen_named:
                    self._error(self._peek(), "positional argument cannot follow named argument")
                args.append(CallArgument(name=None, expression=self._parse_expression(LOWEST)))
            if not self._match("COMMA"):
                break
        self._consume("RPAREN")
        return args

    def _parse_identifier(self) -> Expression:
        token = self._advance()
        return Identifier(location=self._location_from_token(token), name=token.value)

    def _parse_number(self) -> Expression:
        token = self._advance()
        location = self._location_from_token(token)
        text = token.value.replace("_", "")
        value: Union[int, float, Decimal]
        if token.type == "INT":
            value = int(text)
            kind = "INTEGER" if value <= INT64_MAX else "BIGINTEGER"
        elif token.type in ("HEX", "OCTAL", "BINARY", "UINT"):
            base = {"HEX": 16, "OCTAL": 8, "BINARY": 2, "UINT": 10}[token.type]
            value = int(text[2:], base)
            kind = "UINTEGER" if value <= UINT64_MAX else "BIGINTEGER"
        elif token.type == "FLOAT":
            value = float(text)
            kind = "FLOAT"
        elif token.type == "BIGINT":
            value = int(text)
            kind = "BIGINTEGER"
        else:
            value = Decimal(text)
            kind = "BIGFLOAT"
        return NumberLiteral(location=location, value=value, kind=kind, literal=token.value)

    def _parse_string(self) -> Expression:
        token = self._advance()
        return StringLiteral(
            location=self._location_from_token(token),
            value=token.value,
            interpolated=token.type == "ISTRING",
        )

    def _parse_exec_string(self) -> Expression:
        token = self._advance()
        return ExecString(location=self._location_from_token(token), command=token.value)

    def _parse_regex(self) -> Expression:
        token = self._advance()
        return RegexLiteral(location=self._location_from_token(token), pattern=token.value)

    def _parse_boolean(self) -> Expression:
        token = self._advance()
        return BooleanLiteral(location=self._location_from_token(token), value=token.type == "TRUE")

    def _parse_null(self) -> Expression:
        token = self._advance()
        return NullLiteral(location=self._location_from_token(token))

    def _parse_prefix(self) -> Expression:
        token = self._advance()
        operator = {"MINUS": "-", "NOT": "not", "TILDE": "~", "LSHIFT": "<<"}[token.type]
        operand_type = self._peek().type
        right = self._parse_expression(PREFIX)
        if (
            operator == "-"
            and isinstance(right, NumberLiteral)
            and right.kind == "BIGINTEGER"
            and right.value == INT64_MAX + 1
            and operand_type != "BIGINT"
        ):
            # INT64_MIN is only reachable as a negated literal
            return NumberLiteral(
                location=self._location_from_token(token),
                value=-right.value,
                kind="INTEGER",
                literal="-" + right.literal,
            )
        return PrefixExpression(location=self._location_from_token(token), operator=operator, right=right)

    def _parse_grouped(self) -> Expression:
        self._consume("LPAREN")
        expr = self._parse_expression(LOWEST)
        self._consume("RPAREN")
        return expr

    def _parse_list_literal(self) -> Expression:
        start = self._consume("LBRACKET")
        location = self._location_from_token(start)
        elements: List[Expression] = []
        if self._match("RBRACKET"):
            return ListLiteral(location=location, elements=elements)
        first = self._parse_expression(LOWEST)
        if self._peek().type == "FOR":
            comp = self._parse_comprehension_tail(location, "list", first, None)
            self._consume("RBRACKET")
            return comp
        elements.append(first)
        while self._match("COMMA"):
            if self._peek().type == "RBRACKET":
                break
            elements.append(self._parse_expression(LOWEST))
        self._consume("RBRACKET")
        return ListLiteral(location=location, elements=elements)

    def _parse_brace_literal(self) -> Expression:
        start = self._consume("LBRACE")
        location = self._location_from_token(start)
        while self._match("DOCSTRING"):
            pass
        if self._match("RBRACE"):
            return MapLiteral(location=location, pairs=[])
        first = self._parse_expression(LOWEST)
        if self._match("COLON"):
            value = self._parse_expression(LOWEST)
            if self._peek().type == "FOR":
                comp = self._parse_comprehension_tail(location, "map", first, value)
                self._consume("RBRACE")
                return comp
            pairs = [(first, value)]
            while self._match("COMMA"):
                if self._peek().type == "RBRACE":
                    break
                key = self._parse_expression(LOWEST)
                self._consume("COLON")
                pairs.append((key, self._parse_expression(LOWEST)))
            self._consume("RBRACE")
            return MapLiteral(location=location, pairs=pairs)
        if self._peek().type == "FOR":
            comp = self._parse_comprehension_tail(location, "set", first, None)
            self._consume("RBRACE")
            return comp
        elements = [first]
        while self._match("COMMA"):
            if self._peek().type == "RBRACE":
                break
            elements.append(self._parse_expression(LOWEST))
        self._consume("RBRACE")
        return SetLiteral(location=location, elements=elements)

    def _parse_comprehension_tail(
        self,
        location: SourceLocation,
        kind: str,
        element: Expression,
        value: Optional[Expression],
    ) -> Comprehension:
        self._consume("FOR")
        parenthesised = self._match("LPAREN")
        target = self._parse_loop_target()
        self._consume("IN")
        iterable = self._parse_expression(LOWEST)
        if parenthesised:
            self._consume("RPAREN")
        condition: Optional[Expression] = None
        if self._match("IF"):
            condition = self._parse_expression(LOWEST)
        return Comprehension(
            location=location,
            kind=kind,
            element=element,
            value=value,
            target=target,
            iterable=iterable,
            condition=condition,
        )

    def _parse_loop_target(self) -> Expression:
        token = self._peek()
        if token.type == "IDENT":
            return self._parse_identifier()
        if token.type == "LBRACKET":
            start = self._advance()
            names: List[Expression] = [self._parse_identifier_strict()]
            while self._match("COMMA"):
                names.append(self._parse_identifier_strict())
            self._consume("RBRACKET")
            return ListLiteral(location=self._location_from_token(start), elements=names)
        self._error(token, f"expected loop variable, got {token.type}")

    def _parse_identifier_strict(self) -> Identifier:
        token = self._consume("IDENT")
        return Identifier(location=self._location_from_token(token), name=token.value)

    def _parse_if(self) -> Expression:
        keyword = self._consume("IF")
        branches = [IfBranch(condition=self._parse_expression(LOWEST), block=self._parse_block())]
        else_block: Optional[Block] = None
        while self._match("ELSE"):
            if self._match("IF"):
                branches.append(IfBranch(condition=self._parse_expression(LOWEST), block=self._parse_block()))
                continue
            else_block = self._parse_block()
            break
        return IfExpression(location=self._location_from_token(keyword), branches=branches, else_block=else_block)

    def _parse_for(self) -> Expression:
        keyword = self._consume("FOR")
        location = self._location_from_token(keyword)
        if self._is_c_style_for():
            self._consume("LPAREN")
            init: Optional[Statement] = None
            if self._peek().type != "SEMICOLON":
                init = self._parse_statement()
            self._consume("SEMICOLON")
            condition: Optional[Expression] = None
            if self._peek().type != "SEMICOLON":
                condition = self._parse_expression(LOWEST)
            self._consume("SEMICOLON")
            post: Optional[Expression] = None
            if self._peek().type != "RPAREN":
                post = self._parse_expression(LOWEST)
            self._consume("RPAREN")
            block = self._parse_block()
            return CForExpression(location=location, init=init, condition=condition, post=post, block=block)
        condition_expr = self._parse_expression(LOWEST)
        return ForExpression(location=location, condition=condition_expr, block=self._parse_block())

    def _is_c_style_for(self) -> bool:
        if self._peek().type != "LPAREN":
            return False
        depth = 0
        i = self.index
        while i < len(self.tokens):
            tok = self.tokens[i]
            if tok.type in ("LPAREN", "LBRACKET", "LBRACE"):
                depth += 1
            elif tok.type in ("RPAREN", "RBRACKET", "RBRACE"):
                depth -= 1
                if depth == 0:
                    return False
            elif tok.type == "SEMICOLON" and depth == 1:
                return True
            elif tok.type == "EOF":
                return False
            i += 1
        return False

    def _parse_match(self) -> Expression:
        keyword = self._consume("MATCH")
        subject: Optional[Expression] = None
        if self._peek().type != "LBRACE" or self._brace_literal_subject():
            subject = self._parse_expression(LOWEST)
        self._consume("LBRACE")
        arms: List[MatchArm] = []
        while self._peek().type not in ("RBRACE", "EOF"):
            pattern = self._parse_expression(LOWEST)
            self._consume("RARROW")
            arms.append(MatchArm(pattern=pattern, block=self._parse_block_or_expression()))
            if not self._match("COMMA") and self._peek().type != "RBRACE":
                self._error(self._peek(), f"expected ',' after match arm, got {self._peek().type}")
        self._consume("RBRACE")
        return MatchExpression(location=self._location_from_token(keyword), subject=subject, arms=arms)

    def _brace_literal_subject(self) -> bool:
        """True when `match {…} {` starts with a map or set literal as its subject."""
        depth = 0
        for i in range(self.index, len(self.tokens)):
            kind = self.tokens[i].type
            if kind == "LBRACE":
                depth += 1
            elif kind == "RBRACE":
                depth -= 1
                if depth == 0:
                    following = self.tokens[i + 1] if i + 1 < len(self.tokens) else self.tokens[-1]
                    return following.type == "LBRACE" and not following.newline_before
            elif kind == "EOF":
                break
        return False

    def _parse_params(self, opening: str, closing: str, default_precedence: int = LOWEST) -> List[Param]:
        self._consume(opening)
        params: List[Param] = []
        seen_default = False
        while self._peek().type != closing:
            name = self._peek()
            if name.type != "IDENT":
                self._error(name, f"bad function parameter list: unexpected {name.type}")
            self.index += 1
            default: Optional[Expression] = None
            if self._match("ASSIGN"):
                default = self._parse_expression(default_precedence)
                seen_default = True
            elif seen_default:
                self._error(name, f"parameter '{name.value}' without default follows a parameter with a default")
            if any(p.name == name.value for p in params):
                self._error(name, f"duplicate parameter '{name.value}'")
            params.append(Param(name=name.value, default=default))
            if not self._match("COMMA"):
                break
        self._consume(closing)
        return params

    def _parse_function_literal(self) -> Expression:
        keyword = self._consume("FUN")
        params = self._parse_params("LPAREN", "RPAREN")
        body = self._parse_block()
        return FunctionLiteral(location=self._location_from_token(keyword), params=params, body=body)

    def _parse_lambda(self) -> Expression:
        token = self._peek()
        params: List[Param] = []
        if token.type == "OR":
            self.index += 1
        else:
            params = self._parse_params("PIPE", "PIPE", BIT_OR)
        self._consume("RARROW")
        body = self._parse_block_or_expression()
        return FunctionLiteral(location=self._location_from_token(token), params=params, body=body)

    def _parse_spawn(self) -> Expression:
        keyword = self._consume("SPAWN")
        self._consume("LPAREN")
        function = self._parse_expression(LOWEST)
        args: Optional[Expression] = None
        if self._match("COMMA"):
            args = self._parse_expression(LOWEST)
        self._consume("RPAREN")
        return SpawnExpression(location=self._location_from_token(keyword), function=function, args=args)

    def _parse_self(self) -> Expression:
        keyword = self._consume("SELF")
        self._consume("LPAREN")
        self._consume("RPAREN")
        return SelfExpression(location=self._location_from_token(keyword))

    def _parse_eval(self) -> Expression:
        keyword = self._consume("EVAL")
        self._consume("LPAREN")
        source = self._parse_expression(LOWEST)
        self._consume("RPAREN")
        return EvalExpression(location=self._location_from_token(keyword), source=source)

    # -- token helpers --------------------------------------------------

    def _error(self, token: Token, message: str) -> None:
        self.errors.append(self._format_error(token, message))
        raise _ParseAbort()

    def _format_error(self, token: Token, message: str) -> str:
        return f"{message}\n{error_line(self.source_lines, token.file, token.line, token.column)}"

    def _consume(self, token_type: str) -> Token:
        token = self._peek()
        if token.type != token_type:
            self._error(token, f"expected next token to be {token_type}, got {token.type} instead")
        self.index += 1
        return token

    def _match(self, token_type: str) -> bool:
        if self._peek().type == token_type:
            self.index += 1
            return True
        return False

    def _advance(self) -> Token:
        token = self._peek()
        if token.type != "EOF":
            self.index += 1
        return token

    def _peek(self) -> Token:
        if self.index < len(self.tokens):
            return self.tokens[self.index]
        return self.tokens[-1]

    def _peek_next(self) -> Token:
        if self.index + 1 < len(self.tokens):
            return self.tokens[self.index + 1]
        return self.tokens[-1]

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=token.file, line=token.line, column=token.column, statement=statement)


def parse_source(source: str, filename: str = "<string>") -> Program:
    return Parser.from_source(source, filename).parse()
