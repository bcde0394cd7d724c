from __future__ import annotations
from typing import List

from lexer import split_interpolation
from parser import (
    AssignExpression,
    Block,
    BooleanLiteral,
    BreakStatement,
    CallArgument,
    CallExpression,
    CForExpression,
    Comprehension,
    ContinueStatement,
    DotCall,
    EvalExpression,
    ExecString,
    ExpressionStatement,
    ForExpression,
    FunctionLiteral,
    FunctionStatement,
    Identifier,
    IfExpression,
    ImportStatement,
    IndexExpression,
    InfixExpression,
    ListLiteral,
    MapLiteral,
    MatchExpression,
    Node,
    NullLiteral,
    NumberLiteral,
    Param,
    PostfixExpression,
    PrefixExpression,
    Program,
    RegexLiteral,
    ReturnStatement,
    SelfExpression,
    SetLiteral,
    SpawnExpression,
    StringLiteral,
    TryStatement,
    VarStatement,
)

INDENT = "    "

_ESCAPES = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\r": "\\r", "\t": "\\t", "\0": "\\0"}


def quote_string(text: str) -> str:
    out: List[str] = []
    for ch in text:
        if ch in _ESCAPES:
            out.append(_ESCAPES[ch])
        elif ord(ch) < 0x20:
            out.append(f"\\x{ord(ch):02x}")
        else:
            out.append(ch)
    return '"' + "".join(out) + '"'


def _format_string(node: StringLiteral) -> str:
    if not node.interpolated:
        if "#{" in node.value and '"""' not in node.value:
            return '"""' + node.value + '"""'
        return quote_string(node.value)
    pieces: List[str] = []
    for is_expr, text in split_interpolation(node.value):
        pieces.append("#{" + text + "}" if is_expr else quote_string(text)[1:-1])
    return '"' + "".join(pieces) + '"'


def _format_args(args: List[CallArgument]) -> str:
    parts = []
    for arg in args:
        text = format_node(arg.expression)
        if isinstance(arg.expression, AssignExpression):
            text = f"({text})"
        parts.append(f"{arg.name} = {text}" if arg.name else text)
    return ", ".join(parts)


def _format_params(params: List[Param]) -> str:
    parts = []
    for param in params:
        if param.default is None:
            parts.append(param.name)
        else:
            parts.append(f"{param.name} = {format_node(param.default)}")
    return ", ".join(parts)


def _format_block(block: Block, depth: int) -> str:
    lines = ["{"]
    inner = INDENT * (depth + 1)
    if block.docstring:
        for doc in block.docstring.split("\n"):
            lines.append(f"{inner}## {doc}")
    for stmt in block.statements:
        lines.append(inner + format_node(stmt, depth + 1) + ";")
    lines.append(INDENT * depth + "}")
    return "\n".join(lines)


def _format_target(target: Node) -> str:
    if isinstance(target, ListLiteral):
        return "[" + ", ".join(format_node(e) for e in target.elements) + "]"
    return format_node(target)


def format_node(node: Node, depth: int = 0) -> str:
    """Render an AST node back to source text that parses to an equal tree."""
    if isinstance(node, Program):
        return "\n".join(format_node(stmt, depth) + ";" for stmt in node.statements)
    if isinstance(node, Block):
        return _format_block(node, depth)
    if isinstance(node, VarStatement):
        keyword = "val" if node.immutable else "var"
        if node.value is None:
            return f"{keyword} {node.name}"
        return f"{keyword} {node.name} = {format_node(node.value, depth)}"
    if isinstance(node, ReturnStatement):
        return "return" if node.value is None else f"return {format_node(node.value, depth)}"
    if isinstance(node, BreakStatement):
        return "break"
    if isinstance(node, ContinueStatement):
        return "continue"
    if isinstance(node, ImportStatement):
        path = ".".join(node.path)
        if node.import_all:
            return f"from {path} import *"
        if node.names is not None:
            return f"from {path} import {', '.join(node.names)}"
        if node.alias:
            return f"import {path} as {node.alias}"
        return f"import {path}"
    if isinstance(node, TryStatement):
        text = "try " + _format_block(node.try_block, depth)
        if node.catch_block is not None:
            text += f" catch ({node.catch_name}) " + _format_block(node.catch_block, depth)
        if node.finally_block is not None:
            text += " finally " + _format_block(node.finally_block, depth)
        return text
    if isinstance(node, FunctionStatement):
        fn = node.function
        return f"fun {node.name}({_format_params(fn.params)}) " + _format_block(fn.body, depth)
    if isinstance(node, ExpressionStatement):
        return format_node(node.expression, depth)
    if isinstance(node, NumberLiteral):
        if node.kind in ("BIGINTEGER", "BIGFLOAT") and node.literal[:2].lower() not in ("0x", "0o", "0b", "0u"):
            return node.literal + "n"
        return node.literal
    if isinstance(node, StringLiteral):
        return _format_string(node)
    if isinstance(node, RegexLiteral):
        return "r/" + node.pattern.replace("/", "\\/") + "/"
    if isinstance(node, ExecString):
        return "`" + node.command + "`"
    if isinstance(node, BooleanLiteral):
        return "true" if node.value else "false"
    if isinstance(node, NullLiteral):
        return "null"
    if isinstance(node, Identifier):
        return node.name
    if isinstance(node, PrefixExpression):
        return f"({node.operator} {format_node(node.right, depth)})"
    if isinstance(node, InfixExpression):
        return f"({format_node(node.left, depth)} {node.operator} {format_node(node.right, depth)})"
    if isinstance(node, PostfixExpression):
        return f"({format_node(node.left, depth)} {node.operator})"
    if isinstance(node, AssignExpression):
        return f"{format_node(node.target, depth)} {node.operator} {format_node(node.value, depth)}"
    if isinstance(node, CallExpression):
        return f"{format_node(node.function, depth)}({_format_args(node.args)})"
    if isinstance(node, DotCall):
        return f"{_format_receiver(node.receiver, depth)}.{node.method}({_format_args(node.args)})"
    if isinstance(node, IndexExpression):
        if node.dotted:
            key = node.index.value if isinstance(node.index, StringLiteral) else format_node(node.index)
            return f"{_format_receiver(node.base, depth)}.{key}"
        return f"{format_node(node.base, depth)}[{format_node(node.index, depth)}]"
    if isinstance(node, IfExpression):
        parts = []
        for branch in node.branches:
            parts.append(f"if ({format_node(branch.condition, depth)}) " + _format_block(branch.block, depth))
        text = " else ".join(parts)
        if node.else_block is not None:
            text += " else " + _format_block(node.else_block, depth)
        return text
    if isinstance(node, ForExpression):
        return f"for ({format_node(node.condition, depth)}) " + _format_block(node.block, depth)
    if isinstance(node, CForExpression):
        init = format_node(node.init, depth) if node.init is not None else ""
        cond = format_node(node.condition, depth) if node.condition is not None else ""
        post = format_node(node.post, depth) if node.post is not None else ""
        return f"for ({init}; {cond}; {post}) " + _format_block(node.block, depth)
    if isinstance(node, MatchExpression):
        head = "match " if node.subject is None else f"match {_format_receiver(node.subject, depth)} "
        inner = INDENT * (depth + 1)
        arms = [
            f"{inner}{format_node(arm.pattern, depth + 1)} => {_format_block(arm.block, depth + 1)},"
            for arm in node.arms
        ]
        return head + "{\n" + "\n".join(arms) + "\n" + INDENT * depth + "}"
    if isinstance(node, FunctionLiteral):
        return f"fun({_format_params(node.params)}) " + _format_block(node.body, depth)
    if isinstance(node, ListLiteral):
        return "[" + ", ".join(format_node(e, depth) for e in node.elements) + "]"
    if isinstance(node, MapLiteral):
        pairs = [f"{format_node(k, depth)}: {format_node(v, depth)}" for k, v in node.pairs]
        return "{" + ", ".join(pairs) + "}"
    if isinstance(node, SetLiteral):
        return "{" + ", ".join(format_node(e, depth) for e in node.elements) + "}"
    if isinstance(node, Comprehension):
        head = format_node(node.element, depth)
        if node.kind == "map":
            head += f": {format_node(node.value, depth)}"
        tail = f" for ({_format_target(node.target)} in {format_node(node.iterable, depth)})"
        if node.condition is not None:
            tail += f" if {format_node(node.condition, depth)}"
        opening, closing = ("[", "]") if node.kind == "list" else ("{", "}")
        return opening + head + tail + closing
    if isinstance(node, SpawnExpression):
        if node.args is None:
            return f"spawn({format_node(node.function, depth)})"
        return f"spawn({format_node(node.function, depth)}, {format_node(node.args, depth)})"
    if isinstance(node, SelfExpression):
        return "self()"
    if isinstance(node, EvalExpression):
        return f"eval({format_node(node.source, depth)})"
    raise TypeError(f"cannot format node {type(node).__name__}")


def _format_receiver(node: Node, depth: int) -> str:
    text = format_node(node, depth)
    if isinstance(node, (NumberLiteral, MapLiteral, SetLiteral, Comprehension, FunctionLiteral, IfExpression,
                         ForExpression, CForExpression, MatchExpression, AssignExpression)):
        return f"({text})"
    return text
