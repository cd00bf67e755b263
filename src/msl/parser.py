"""
Lexer and parser for MSL scripts.

Scripts are line oriented. Indentation (spaces only) nests a body under the
nearest `click`, `media` or media-kind line above it:

    open "https://example.com"
    click ".user-card a"
      set user = text
      media
        image
          where src ~ "cdn.example.com"
          extensions jpg, png
        save to "./media/{user}"

Parsing happens in two passes: lines are tokenized and arranged into a tree
by indentation, then each line is turned into statements by a small
recursive-descent reader.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import soupsieve

from msl.errors import ScriptSyntaxError
from msl.model import (
    Attr,
    Click,
    Media,
    MediaBlock,
    MediaKind,
    Open,
    Save,
    Script,
    Set,
    Split,
    Statement,
    Text,
    Transform,
    ValueExpr,
    Wait,
)

STRING = "string"
NUMBER = "number"
WORD = "word"
OP = "op"

TOKEN_PATTERNS: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    (NUMBER, re.compile(r"-?\d+(?:\.\d+)?(?![\w.])")),
    (WORD, re.compile(r"[A-Za-z0-9_][\w\-]*")),
    (OP, re.compile(r"!=|[=~()\[\].,]")),
)

IDENTIFIER = re.compile(r"[A-Za-z_]\w*\Z")
INTEGER = re.compile(r"-?\d+\Z")

MEDIA_KINDS: Dict[str, MediaKind] = {kind.value: kind for kind in MediaKind}
FILTER_KEYWORDS = frozenset(("where", "extensions"))
SRC_OPERATORS = frozenset(("~", "=", "!="))


@dataclass(slots=True)
class Token:
    kind: str
    value: str
    column: int


@dataclass(slots=True)
class Line:
    """One non-blank source line and the indented lines nested under it."""
    number: int
    indent: int
    tokens: List[Token]
    end_column: int
    children: List["Line"] = field(default_factory=list)


def _unescape(body: str) -> str:
    """Resolve backslash escapes inside a string literal."""
    return re.sub(r"\\(.)", r"\1", body)


def tokenize_line(raw: str, number: int) -> List[Token]:
    """Split one source line into tokens. Columns are 1-based."""
    tokens: List[Token] = []
    pos = 0
    length = len(raw)
    while pos < length:
        char = raw[pos]
        if char.isspace():
            pos += 1
            continue
        if char == '"':
            end = pos + 1
            while end < length and raw[end] != '"':
                end += 2 if raw[end] == "\\" else 1
            if end >= length:
                raise ScriptSyntaxError(number, pos + 1, "unterminated string literal")
            tokens.append(Token(STRING, _unescape(raw[pos + 1:end]), pos + 1))
            pos = end + 1
            continue
        for kind, pattern in TOKEN_PATTERNS:
            match = pattern.match(raw, pos)
            if match:
                tokens.append(Token(kind, match.group(), pos + 1))
                pos = match.end()
                break
        else:
            raise ScriptSyntaxError(number, pos + 1, f"unexpected character {char!r}")
    return tokens


def build_tree(text: str) -> List[Line]:
    """Tokenize `text` and nest lines by indentation."""
    root = Line(number=0, indent=-1, tokens=[], end_column=0)
    stack: List[Line] = [root]

    for number, raw in enumerate(text.splitlines(), start=1):
        content = raw.lstrip()
        if not content or content.startswith("#"):
            continue
        margin = raw[: len(raw) - len(content)]
        if "\t" in margin:
            raise ScriptSyntaxError(number, margin.index("\t") + 1, "tabs are not allowed in indentation")

        line = Line(
            number=number,
            indent=len(margin),
            tokens=tokenize_line(raw, number),
            end_column=len(raw.rstrip()) + 1,
        )

        while stack[-1].indent >= line.indent:
            stack.pop()
        parent = stack[-1]
        if parent is root and line.indent != 0:
            raise ScriptSyntaxError(number, 1, "unexpected indent")
        if parent.children and parent.children[0].indent != line.indent:
            raise ScriptSyntaxError(number, 1, "inconsistent indentation")
        parent.children.append(line)
        stack.append(line)

    return root.children


class LineReader:
    """Cursor over the tokens of a single line."""

    def __init__(self, line: Line) -> None:
        self.line = line
        self.pos = 0

    def peek(self) -> Optional[Token]:
        """Next token without consuming it, or None at end of line."""
        if self.pos < len(self.line.tokens):
            return self.line.tokens[self.pos]
        return None

    def at_end(self) -> bool:
        """True once every token on the line has been consumed."""
        return self.pos >= len(self.line.tokens)

    def error(self, message: str, token: Optional[Token] = None) -> ScriptSyntaxError:
        """Build a syntax error at `token`, or at the end of the line."""
        if token is None:
            token = self.peek()
        column = token.column if token is not None else self.line.end_column
        return ScriptSyntaxError(self.line.number, column, message)

    def next(self, what: str) -> Token:
        """Consume any token; `what` names it in the error at end of line."""
        token = self.peek()
        if token is None:
            raise self.error(f"expected {what}, found end of line")
        self.pos += 1
        return token

    def expect(self, kind: str, what: str, value: Optional[str] = None) -> Token:
        """Consume a token of `kind` (and `value`, if given) or fail."""
        token = self.peek()
        if token is None or token.kind != kind or (value is not None and token.value != value):
            found = "end of line" if token is None else repr(token.value)
            raise self.error(f"expected {what}, found {found}")
        self.pos += 1
        return token

    def accept(self, kind: str, value: str) -> bool:
        """Consume the token if it matches; report whether it did."""
        token = self.peek()
        if token is not None and token.kind == kind and token.value == value:
            self.pos += 1
            return True
        return False

    def expect_end(self) -> None:
        """Fail if anything is left on the line."""
        token = self.peek()
        if token is not None:
            raise self.error(f"unexpected {token.value!r}", token)


def _no_body(line: Line, keyword: str) -> None:
    """Reject indented lines under a statement that takes no body."""
    if line.children:
        child = line.children[0]
        raise ScriptSyntaxError(child.number, child.indent + 1, f"unexpected indent: '{keyword}' cannot have a body")


# Value expressions

def _parse_transforms(reader: LineReader) -> Tuple[Transform, ...]:
    """Parse a chain of `.split("sep")[index]` calls."""
    transforms: List[Transform] = []
    while reader.accept(OP, "."):
        method = reader.expect(WORD, "a transform name")
        if method.value != "split":
            raise reader.error(f"unknown transform {method.value!r}", method)
        reader.expect(OP, "'('", "(")
        separator = reader.expect(STRING, "a separator string")
        if not separator.value:
            raise reader.error("split separator cannot be empty", separator)
        reader.expect(OP, "')'", ")")
        reader.expect(OP, "'[' and an index after split()", "[")
        index = reader.expect(NUMBER, "an integer index")
        if not INTEGER.match(index.value):
            raise reader.error("split index must be an integer", index)
        reader.expect(OP, "']'", "]")
        transforms.append(Split(separator=separator.value, index=int(index.value)))
    return tuple(transforms)


def parse_value(reader: LineReader) -> ValueExpr:
    """Parse `text` or `attr("name")`, with optional transforms."""
    head = reader.expect(WORD, "'text' or 'attr(...)'")
    if head.value == "text":
        return Text(transforms=_parse_transforms(reader))
    if head.value == "attr":
        reader.expect(OP, "'('", "(")
        name = reader.expect(STRING, "an attribute name string")
        reader.expect(OP, "')'", ")")
        return Attr(name=name.value, transforms=_parse_transforms(reader))
    raise reader.error(f"unknown value {head.value!r}; expected 'text' or 'attr(...)'", head)


# Media blocks

@dataclass(slots=True)
class _BlockBuilder:
    kind: MediaKind
    src_pattern: Optional[str] = None
    src_operator: str = "~"
    extensions: Optional[Tuple[str, ...]] = None

    def build(self) -> MediaBlock:
        """Freeze the collected directives into a MediaBlock."""
        return MediaBlock(
            kind=self.kind,
            src_pattern=self.src_pattern,
            extensions=self.extensions,
            src_operator=self.src_operator,
        )


def _parse_extension(reader: LineReader) -> str:
    """Parse one extension, normalized to lower case without a dot."""
    reader.accept(OP, ".")
    token = reader.peek()
    if token is None or token.kind not in (WORD, NUMBER, STRING):
        raise reader.error("expected a file extension")
    reader.pos += 1
    value = token.value.strip().lstrip(".").lower()
    if not value:
        raise reader.error("empty file extension", token)
    return value


def _parse_filters(reader: LineReader, builder: _BlockBuilder) -> None:
    """Consume `where` / `extensions` directives until the end of the line."""
    while not reader.at_end():
        keyword = reader.expect(WORD, "'where' or 'extensions'")
        if keyword.value == "where":
            if builder.src_pattern is not None:
                raise reader.error("duplicate 'where' filter", keyword)
            field_token = reader.expect(WORD, "'src'")
            if field_token.value != "src":
                raise reader.error(f"cannot filter on {field_token.value!r}; only 'src' is supported", field_token)
            operator = reader.next("'~', '=' or '!='")
            if operator.kind != OP or operator.value not in SRC_OPERATORS:
                raise reader.error(f"expected '~', '=' or '!=', found {operator.value!r}", operator)
            pattern = reader.expect(STRING, "a quoted pattern")
            builder.src_operator = operator.value
            builder.src_pattern = pattern.value
        elif keyword.value == "extensions":
            if builder.extensions is not None:
                raise reader.error("duplicate 'extensions' filter", keyword)
            found = [_parse_extension(reader)]
            while reader.accept(OP, ","):
                found.append(_parse_extension(reader))
            builder.extensions = tuple(dict.fromkeys(found))
        else:
            raise reader.error(f"expected 'where' or 'extensions', found {keyword.value!r}", keyword)


def _parse_kind_body(lines: List[Line], builder: _BlockBuilder) -> None:
    """Apply filter lines nested under a media kind."""
    for child in lines:
        _no_body(child, child.tokens[0].value if child.tokens else "filter")
        reader = LineReader(child)
        head = reader.peek()
        if head is None or head.kind != WORD or head.value not in FILTER_KEYWORDS:
            found = head.value if head is not None else ""
            raise reader.error(f"expected 'where' or 'extensions' inside a {builder.kind.value} block, found {found!r}")
        _parse_filters(reader, builder)


def _parse_save(reader: LineReader) -> Save:
    """Parse `save to "template"` after the `save` keyword."""
    reader.expect(WORD, "'to' after 'save'", "to")
    path = reader.expect(STRING, "a quoted path template")
    reader.expect_end()
    return Save(path_template=path.value)


def _parse_kind_line(reader: LineReader, kind_token: Token) -> _BlockBuilder:
    """Parse a kind line and any filters that follow it inline."""
    builder = _BlockBuilder(kind=MEDIA_KINDS[kind_token.value])
    _parse_filters(reader, builder)
    _parse_kind_body(reader.line.children, builder)
    return builder


# Statements

def _parse_open(reader: LineReader) -> List[Statement]:
    """Parse `open "url"`; takes no body."""
    url = reader.expect(STRING, "a quoted URL")
    reader.expect_end()
    _no_body(reader.line, "open")
    return [Open(url=url.value)]


def _parse_click(reader: LineReader) -> List[Statement]:
    """click "selector", with an indented body."""
    selector = reader.expect(STRING, "a quoted CSS selector")
    reader.expect_end()
    try:
        soupsieve.compile(selector.value)
    except (soupsieve.SelectorSyntaxError, TypeError, ValueError) as exc:
        raise reader.error(f"invalid CSS selector {selector.value!r}: {exc}", selector) from exc
    return [Click(selector=selector.value, body=tuple(parse_block(reader.line.children)))]


def _parse_set(reader: LineReader) -> List[Statement]:
    """Parse `set name = value`."""
    name = reader.expect(WORD, "a variable name")
    if not IDENTIFIER.match(name.value):
        raise reader.error(f"invalid variable name {name.value!r}", name)
    reader.expect(OP, "'='", "=")
    expr = parse_value(reader)
    reader.expect_end()
    _no_body(reader.line, "set")
    return [Set(name=name.value, expr=expr)]


def _parse_media(reader: LineReader) -> List[Statement]:
    """media [kind ...], with kinds or filters on indented lines."""
    blocks: List[_BlockBuilder] = []
    saves: List[Statement] = []
    inline: Optional[_BlockBuilder] = None

    head = reader.peek()
    if head is not None:
        kind_token = reader.expect(WORD, "a media kind")
        if kind_token.value not in MEDIA_KINDS:
            raise reader.error(f"unknown media kind {kind_token.value!r}", kind_token)
        inline = _BlockBuilder(kind=MEDIA_KINDS[kind_token.value])
        _parse_filters(reader, inline)
        blocks.append(inline)

    for child in reader.line.children:
        child_reader = LineReader(child)
        token = child_reader.next("a media kind")
        if token.kind == WORD and token.value == "save":
            _no_body(child, "save")
            saves.append(_parse_save(child_reader))
        elif inline is not None and token.kind == WORD and token.value in FILTER_KEYWORDS:
            _no_body(child, token.value)
            child_reader.pos = 0
            _parse_filters(child_reader, inline)
        elif inline is None and token.kind == WORD and token.value in MEDIA_KINDS:
            blocks.append(_parse_kind_line(child_reader, token))
        elif token.kind == WORD and token.value in FILTER_KEYWORDS:
            raise child_reader.error(f"'{token.value}' must be nested under image, video or audio", token)
        else:
            expected = "'where', 'extensions' or 'save to'" if inline is not None else "'image', 'video', 'audio' or 'save to'"
            raise child_reader.error(f"expected {expected} inside 'media', found {token.value!r}", token)

    if not blocks:
        raise reader.error("'media' must declare at least one of image, video or audio")
    statements: List[Statement] = [Media(blocks=tuple(b.build() for b in blocks))]
    statements.extend(saves)
    return statements


def _parse_save_statement(reader: LineReader) -> List[Statement]:
    """Parse `save to "template"` as a statement; takes no body."""
    _no_body(reader.line, "save")
    return [_parse_save(reader)]


def _parse_wait(reader: LineReader) -> List[Statement]:
    """Parse `wait seconds`; the duration cannot be negative."""
    amount = reader.expect(NUMBER, "a number of seconds")
    if amount.value.startswith("-"):
        raise reader.error("wait duration cannot be negative", amount)
    reader.expect_end()
    _no_body(reader.line, "wait")
    return [Wait(duration=float(amount.value))]


STATEMENT_PARSERS: Dict[str, Callable[[LineReader], List[Statement]]] = {
    "open": _parse_open,
    "click": _parse_click,
    "set": _parse_set,
    "media": _parse_media,
    "save": _parse_save_statement,
    "wait": _parse_wait,
}


def parse_statement(line: Line) -> List[Statement]:
    """Parse one line (and its nested body) into one or more statements."""
    reader = LineReader(line)
    head = reader.next("a statement")
    handler = STATEMENT_PARSERS.get(head.value) if head.kind == WORD else None
    if handler is None:
        if head.value in MEDIA_KINDS:
            raise reader.error(f"'{head.value}' is only valid inside a 'media' block", head)
        if head.value in FILTER_KEYWORDS:
            raise reader.error(f"'{head.value}' is only valid inside an image, video or audio block", head)
        raise reader.error(f"unknown statement {head.value!r}", head)
    return handler(reader)


def parse_block(lines: List[Line]) -> List[Statement]:
    """Parse sibling lines in order into a flat statement list."""
    statements: List[Statement] = []
    for line in lines:
        statements.extend(parse_statement(line))
    return statements


def parse(text: str) -> Script:
    """
    Parse script text into a Script.

    Raises:
        ScriptSyntaxError: with the 1-based line and column of the problem.
    """
    if text.startswith("\ufeff"):
        text = text[1:]
    return Script(statements=tuple(parse_block(build_tree(text))))
