"""
Immutable variable scopes.

Every branch of a crawl owns a snapshot of the bindings it inherited. A child
scope copies its parent at creation time, so later bindings in one branch are
never seen by its parent or its siblings.
"""
from __future__ import annotations

import re
from typing import Dict, Iterator, Mapping, Optional

from msl.errors import TemplateError

PLACEHOLDER = re.compile(r"\{([A-Za-z_]\w*)\}")


class Scope(Mapping[str, str]):
    """Read-only mapping of variable names to resolved string values."""

    __slots__ = ("_bindings",)

    def __init__(self, bindings: Optional[Mapping[str, str]] = None) -> None:
        self._bindings: Dict[str, str] = dict(bindings or {})

    def __getitem__(self, name: str) -> str:
        return self._bindings[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)

    def __repr__(self) -> str:
        return f"Scope({self._bindings!r})"

    def bind(self, name: str, value: str) -> "Scope":
        """Return a copy of this scope with `name` bound (or overwritten)."""
        return child(self, {name: value})


EMPTY_SCOPE = Scope()


def child(parent: Mapping[str, str], bindings: Optional[Mapping[str, str]] = None) -> Scope:
    """Snapshot `parent` and layer `bindings` on top."""
    merged = dict(parent)
    if bindings:
        merged.update(bindings)
    return Scope(merged)


def get(scope: Mapping[str, str], name: str) -> Optional[str]:
    return scope.get(name)


def resolve_template(scope: Mapping[str, str], template: str) -> str:
    """
    Replace each `{name}` placeholder with its bound value.

    Braces that do not wrap an identifier are kept as they are.

    Raises:
        TemplateError: if a placeholder names an unbound variable.
    """
    def substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        value = get(scope, name)
        if value is None:
            raise TemplateError(name, template)
        return value

    return PLACEHOLDER.sub(substitute, template)
