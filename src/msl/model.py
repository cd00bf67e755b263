"""
Script AST: statements, value expressions and media blocks.

Nodes are frozen dataclasses holding tuples, so a parsed script is immutable
and two parses of the same text compare equal.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union


class MediaKind(enum.Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


# Value expressions

@dataclass(frozen=True, slots=True)
class Split:
    """Split the current value on `separator` and keep the part at `index`."""
    separator: str
    index: int


Transform = Split


@dataclass(frozen=True, slots=True)
class Text:
    """Trimmed text content of the element."""
    transforms: Tuple[Transform, ...] = ()


@dataclass(frozen=True, slots=True)
class Attr:
    """Attribute value of the element, passed through `transforms` in order."""
    name: str
    transforms: Tuple[Transform, ...] = ()


ValueExpr = Union[Text, Attr]


# Media

@dataclass(frozen=True, slots=True)
class MediaBlock:
    """
    Filter rules for one kind of media.

    An item qualifies when its kind matches and both optional filters accept
    it: `src_pattern` is compared against the URL using `src_operator`
    (`~` containment, `=` equality, `!=` inequality) and `extensions` holds
    lower-case extensions without the leading dot.
    """
    kind: MediaKind
    src_pattern: Optional[str] = None
    extensions: Optional[Tuple[str, ...]] = None
    src_operator: str = "~"


# Statements

@dataclass(frozen=True, slots=True)
class Open:
    url: str


@dataclass(frozen=True, slots=True)
class Click:
    selector: str
    body: Tuple["Statement", ...] = ()


@dataclass(frozen=True, slots=True)
class Set:
    name: str
    expr: ValueExpr


@dataclass(frozen=True, slots=True)
class Media:
    blocks: Tuple[MediaBlock, ...]


@dataclass(frozen=True, slots=True)
class Save:
    path_template: str


@dataclass(frozen=True, slots=True)
class Wait:
    duration: float


Statement = Union[Open, Click, Set, Media, Save, Wait]

STATEMENT_TYPES: Tuple[type, ...] = (Open, Click, Set, Media, Save, Wait)


@dataclass(frozen=True, slots=True)
class Script:
    statements: Tuple[Statement, ...] = field(default_factory=tuple)


# Canonical text rendering

INDENT = "  "


def quote(value: str) -> str:
    """Quote a string literal the way the lexer reads it back."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_value(expr: ValueExpr) -> str:
    """Source text for a `text` / `attr(...)` expression and its transforms."""
    if isinstance(expr, Attr):
        head = f"attr({quote(expr.name)})"
    else:
        head = "text"
    tail = "".join(f".split({quote(t.separator)})[{t.index}]" for t in expr.transforms)
    return head + tail


def _format_number(value: float) -> str:
    """Render a wait duration without a trailing `.0`."""
    return str(int(value)) if float(value).is_integer() else repr(float(value))


def _format_block(block: MediaBlock, depth: int) -> List[str]:
    """Lines for one media kind block and its filters."""
    pad = INDENT * depth
    lines = [pad + block.kind.value]
    if block.src_pattern is not None:
        lines.append(f"{pad}{INDENT}where src {block.src_operator} {quote(block.src_pattern)}")
    if block.extensions:
        lines.append(f"{pad}{INDENT}extensions {', '.join(block.extensions)}")
    return lines


def _format_statements(statements: Tuple[Statement, ...], depth: int) -> List[str]:
    """Lines for a statement list, indented to `depth`."""
    pad = INDENT * depth
    lines: List[str] = []
    for stmt in statements:
        if isinstance(stmt, Open):
            lines.append(f"{pad}open {quote(stmt.url)}")
        elif isinstance(stmt, Click):
            lines.append(f"{pad}click {quote(stmt.selector)}")
            lines.extend(_format_statements(stmt.body, depth + 1))
        elif isinstance(stmt, Set):
            lines.append(f"{pad}set {stmt.name} = {format_value(stmt.expr)}")
        elif isinstance(stmt, Media):
            lines.append(f"{pad}media")
            for block in stmt.blocks:
                lines.extend(_format_block(block, depth + 1))
        elif isinstance(stmt, Save):
            lines.append(f"{pad}save to {quote(stmt.path_template)}")
        elif isinstance(stmt, Wait):
            lines.append(f"{pad}wait {_format_number(stmt.duration)}")
        else:
            raise TypeError(f"cannot format statement {stmt!r}")
    return lines


def format_script(script: Script) -> str:
    """Render a script as canonical source text (two-space indentation)."""
    lines = _format_statements(script.statements, 0)
    return "\n".join(lines) + ("\n" if lines else "")


def node_to_dict(node: object) -> object:
    """JSON-ready form of an AST node, tagging each node with its type."""
    if isinstance(node, MediaKind):
        return node.value
    if isinstance(node, tuple):
        return [node_to_dict(item) for item in node]
    if hasattr(node, "__dataclass_fields__"):
        data = {"type": type(node).__name__}
        for name in node.__dataclass_fields__:
            data[name] = node_to_dict(getattr(node, name))
        return data
    return node
