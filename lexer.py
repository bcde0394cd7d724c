from __future__ import annotations
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple


class BlueError(Exception):
    """Base class for interpreter errors."""


class BlueParseError(BlueError):
    """Raised when lexing or parsing fails. Carries every collected message."""

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors: List[str] = list(errors)
        super().__init__("\n".join(self.errors))


@dataclass
class Token:
    type: str
    value: str
    line: int
    column: int
    file: str = "<string>"
    newline_before: bool = False


KEYWORDS = {
    "fun": "FUN",
    "var": "VAR",
    "val": "VAL",
    "true": "TRUE",
    "false": "FALSE",
    "if": "IF",
    "else": "ELSE",
    "return": "RETURN",
    "for": "FOR",
    "in": "IN",
    "notin": "NOTIN",
    "and": "AND",
    "or": "OR",
    "not": "NOT",
    "match": "MATCH",
    "null": "NULL",
    "import": "IMPORT",
    "try": "TRY",
    "catch": "CATCH",
    "finally": "FINALLY",
    "break": "BREAK",
    "continue": "CONTINUE",
    "spawn": "SPAWN",
    "self": "SELF",
    "eval": "EVAL",
}

# Longest operators first so that matching is greedy.
OPERATORS: List[Tuple[str, str]] = [
    ("...", "ELLIPSIS"),
    ("..<", "NONINCRANGE"),
    ("**=", "POWEQ"),
    ("//=", "FDIVEQ"),
    ("<<=", "LSHIFTEQ"),
    (">>=", "RSHIFTEQ"),
    ("==", "EQ"),
    ("=>", "RARROW"),
    ("!=", "NEQ"),
    ("+=", "PLUSEQ"),
    ("-=", "MINUSEQ"),
    ("*=", "STAREQ"),
    ("/=", "SLASHEQ"),
    ("%=", "PERCENTEQ"),
    ("&=", "AMPEQ"),
    ("|=", "PIPEEQ"),
    ("^=", "HATEQ"),
    ("~=", "TILDEEQ"),
    ("**", "POW"),
    ("//", "FDIV"),
    ("<<", "LSHIFT"),
    (">>", "RSHIFT"),
    ("<=", "LTE"),
    (">=", "GTE"),
    ("&&", "AND"),
    ("||", "OR"),
    ("..", "RANGE"),
    ("=", "ASSIGN"),
    ("!", "NOT"),
    ("+", "PLUS"),
    ("-", "MINUS"),
    ("*", "STAR"),
    ("/", "SLASH"),
    ("%", "PERCENT"),
    ("<", "LT"),
    (">", "GT"),
    ("&", "AMP"),
    ("|", "PIPE"),
    ("^", "HAT"),
    ("~", "TILDE"),
    (".", "DOT"),
    (",", "COMMA"),
    (":", "COLON"),
    (";", "SEMICOLON"),
    ("(", "LPAREN"),
    (")", "RPAREN"),
    ("{", "LBRACE"),
    ("}", "RBRACE"),
    ("[", "LBRACKET"),
    ("]", "RBRACKET"),
]

ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "\\": "\\", "0": "\0"}

HEX_DIGITS = "0123456789abcdefABCDEF_"


class Lexer:
    def __init__(self, text: str, filename: str = "<string>") -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1
        self._last_type: Optional[str] = None
        self._end_line = 0

    def __iter__(self) -> Iterator[Token]:
        while True:
            token = self.next_token()
            yield token
            if token.type == "EOF":
                return

    def tokenize(self) -> List[Token]:
        return list(self)

    def next_token(self) -> Token:
        token = self._scan()
        token.newline_before = token.line > self._end_line
        self._last_type = token.type
        self._end_line = self.line
        return token

    def _scan(self) -> Token:
        text = self.text
        n = len(text)
        while self.index < n:
            ch = text[self.index]
            if ch in " \t\r\n":
                self._advance()
                continue
            if ch == "#":
                doc = self._consume_comment()
                if doc is not None:
                    return doc
                continue
            break
        if self.index >= n:
            return self._make("EOF", "", self.line, self.column)

        ch = text[self.index]
        line, col = self.line, self.column
        if ch.isdigit():
            return self._consume_number()
        if ch == "r" and self._peek(1) == "/" and self._regex_closes():
            return self._consume_regex()
        if ch.isalpha() or ch == "_":
            return self._consume_identifier()
        if ch == '"' and text.startswith('"""', self.index):
            return self._consume_raw_string()
        if ch in ('"', "'"):
            return self._consume_string()
        if ch == "`":
            return self._consume_exec_string()
        for literal, token_type in OPERATORS:
            if text.startswith(literal, self.index):
                for _ in literal:
                    self._advance()
                return self._make(token_type, literal, line, col)
        self._advance()
        return self._illegal(f"unexpected character '{ch}'", line, col)

    def _make(self, token_type: str, value: str, line: int, col: int) -> Token:
        return Token(token_type, value, line, col, self.filename)

    def _illegal(self, message: str, line: int, col: int) -> Token:
        return self._make("ILLEGAL", message, line, col)

    def _consume_comment(self) -> Optional[Token]:
        text = self.text
        line, col = self.line, self.column
        if text.startswith("###", self.index):
            for _ in range(3):
                self._advance()
            end = text.find("###", self.index)
            stop = len(text) if end == -1 else end + 3
            while self.index < stop:
                self._advance()
            return None
        if text.startswith("##", self.index):
            self._advance()
            self._advance()
            start = self.index
            while self.index < len(text) and text[self.index] != "\n":
                self._advance()
            return self._make("DOCSTRING", text[start:self.index].strip(), line, col)
        while self.index < len(text) and text[self.index] != "\n":
            self._advance()
        return None

    def _consume_number(self) -> Token:
        text = self.text
        line, col = self.line, self.column
        prefix = text[self.index:self.index + 2].lower()
        if prefix in ("0x", "0o", "0b", "0u"):
            self._advance()
            self._advance()
            allowed = {"0x": HEX_DIGITS, "0o": "01234567_", "0b": "01_", "0u": "0123456789_"}[prefix]
            start = self.index
            while self.index < len(text) and text[self.index] in allowed:
                self._advance()
            digits = text[start:self.index]
            if not digits.replace("_", ""):
                return self._illegal(f"malformed number literal '{prefix}'", line, col)
            kind = {"0x": "HEX", "0o": "OCTAL", "0b": "BINARY", "0u": "UINT"}[prefix]
            return self._make(kind, prefix + digits, line, col)

        start = self.index
        self._consume_digits()
        is_float = False
        # a member index such as `xs.0.1` must not read `0.1` as a float
        if (
            self._last_type != "DOT"
            and self._peek() == "."
            and self._peek(1).isdigit()
        ):
            is_float = True
            self._advance()
            self._consume_digits()
        literal = text[start:self.index]
        if self._peek() == "n":
            self._advance()
            return self._make("BIGFLOAT" if is_float else "BIGINT", literal, line, col)
        if self._peek().isalpha() or self._peek() == "_":
            while self.index < len(text) and (text[self.index].isalnum() or text[self.index] == "_"):
                self._advance()
            return self._illegal(f"malformed number literal '{text[start:self.index]}'", line, col)
        return self._make("FLOAT" if is_float else "INT", literal, line, col)

    def _consume_digits(self) -> None:
        text = self.text
        while self.index < len(text) and (text[self.index].isdigit() or text[self.index] == "_"):
            self._advance()

    def _consume_identifier(self) -> Token:
        text = self.text
        line, col = self.line, self.column
        start = self.index
        while self.index < len(text) and (text[self.index].isalnum() or text[self.index] == "_"):
            self._advance()
        value = text[start:self.index]
        return self._make(KEYWORDS.get(value, "IDENT"), value, line, col)

    def _consume_string(self) -> Token:
        text = self.text
        line, col = self.line, self.column
        opening = text[self.index]
        self._advance()
        chars: List[str] = []
        interpolated = False
        while self.index < len(text):
            ch = text[self.index]
            if ch == opening:
                self._advance()
                return self._make("ISTRING" if interpolated else "STRING", "".join(chars), line, col)
            if ch == "\\":
                self._advance()
                if self.index >= len(text):
                    break
                esc = text[self.index]
                if esc == opening:
                    chars.append(esc)
                    self._advance()
                elif esc in ESCAPES:
                    chars.append(ESCAPES[esc])
                    self._advance()
                elif esc == "x":
                    hex_digits = text[self.index + 1:self.index + 3]
                    if len(hex_digits) != 2 or any(c not in HEX_DIGITS[:-1] for c in hex_digits):
                        return self._illegal("invalid \\x escape in string literal", line, col)
                    chars.append(chr(int(hex_digits, 16)))
                    for _ in range(3):
                        self._advance()
                else:
                    chars.append("\\" + esc)
                    self._advance()
                continue
            if ch == "#" and self._peek(1) == "{":
                segment = self._read_interpolation()
                if segment is None:
                    break
                chars.append(segment)
                interpolated = True
                continue
            chars.append(ch)
            self._advance()
        return self._illegal("unterminated string literal", line, col)

    def _read_interpolation(self) -> Optional[str]:
        """Copy a `#{...}` region verbatim, honouring nested braces and quotes."""
        text = self.text
        start = self.index
        self._advance()
        self._advance()
        depth = 1
        quote: Optional[str] = None
        while self.index < len(text):
            ch = text[self.index]
            if quote is not None:
                if ch == "\\":
                    self._advance()
                elif ch == quote:
                    quote = None
            elif ch in ('"', "'", "`"):
                quote = ch
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    self._advance()
                    return text[start:self.index]
            self._advance()
        return None

    def _consume_raw_string(self) -> Token:
        text = self.text
        line, col = self.line, self.column
        for _ in range(3):
            self._advance()
        end = text.find('"""', self.index)
        if end == -1:
            while self.index < len(text):
                self._advance()
            return self._illegal("unterminated raw string literal", line, col)
        value = text[self.index:end]
        while self.index < end + 3:
            self._advance()
        return self._make("RAW_STRING", value, line, col)

    def _consume_exec_string(self) -> Token:
        text = self.text
        line, col = self.line, self.column
        self._advance()
        end = text.find("`", self.index)
        if end == -1:
            while self.index < len(text):
                self._advance()
            return self._illegal("unterminated exec string literal", line, col)
        value = text[self.index:end]
        while self.index <= end:
            self._advance()
        return self._make("EXEC_STRING", value, line, col)

    def _regex_closes(self) -> bool:
        end_of_line = self.text.find("\n", self.index)
        if end_of_line == -1:
            end_of_line = len(self.text)
        i = self.index + 2
        while i < end_of_line:
            if self.text[i] == "\\":
                i += 2
                continue
            if self.text[i] == "/":
                return True
            i += 1
        return False

    def _consume_regex(self) -> Token:
        text = self.text
        line, col = self.line, self.column
        self._advance()
        self._advance()
        chars: List[str] = []
        while self.index < len(text):
            ch = text[self.index]
            if ch == "\\" and self._peek(1) == "/":
                chars.append("/")
                self._advance()
                self._advance()
                continue
            if ch == "/":
                self._advance()
                return self._make("REGEX", "".join(chars), line, col)
            chars.append(ch)
            self._advance()
        return self._illegal("unterminated regex literal", line, col)

    def _peek(self, offset: int = 0) -> str:
        i = self.index + offset
        if i < len(self.text):
            return self.text[i]
        return ""

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1


def split_interpolation(text: str) -> List[Tuple[bool, str]]:
    """Split an interpolated string into (is_expression, text) segments."""
    parts: List[Tuple[bool, str]] = []
    buffer: List[str] = []
    i = 0
    n = len(text)
    while i < n:
        if text.startswith("#{", i):
            depth = 1
            j = i + 2
            quote: Optional[str] = None
            while j < n and depth:
                ch = text[j]
                if quote is not None:
                    if ch == "\\":
                        j += 1
                    elif ch == quote:
                        quote = None
                elif ch in ('"', "'", "`"):
                    quote = ch
                elif ch == "{":
                    depth += 1
                elif ch == "}":
                    depth -= 1
                j += 1
            if buffer:
                parts.append((False, "".join(buffer)))
                buffer = []
            parts.append((True, text[i + 2:j - 1]))
            i = j
            continue
        buffer.append(text[i])
        i += 1
    if buffer:
        parts.append((False, "".join(buffer)))
    return parts


def error_line(source_lines: Sequence[str], file: str, line: int, column: int) -> str:
    """Render `file:line:col <source>` followed by a caret under the column."""
    source = source_lines[line - 1] if 0 < line <= len(source_lines) else ""
    prefix = f"{file}:{line}:{column} "
    return f"{prefix}{source}\n{' ' * (len(prefix) + max(column - 1, 0))}^"
