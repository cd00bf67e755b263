"""
Media filtering and destination templating.

Pure functions only: nothing here touches the network or the filesystem.
"""
from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Sequence
from urllib.parse import unquote, urlparse

from msl.model import MediaBlock, MediaKind
from msl.scope import Scope, resolve_template


@dataclass(frozen=True, slots=True)
class MediaItem:
    """A discovered media reference and the scope in effect when it was found."""
    url: str
    kind: MediaKind
    scope: Scope


def file_extension(url: str) -> str:
    """Lower-case extension of the URL path without the dot ('' if none)."""
    path = unquote(urlparse(url).path)
    _, ext = posixpath.splitext(posixpath.basename(path))
    return ext[1:].lower()


def _src_matches(url: str, block: MediaBlock) -> bool:
    if block.src_pattern is None:
        return True
    if block.src_operator == "=":
        return url == block.src_pattern
    if block.src_operator == "!=":
        return url != block.src_pattern
    return block.src_pattern in url


def matches(item: MediaItem, block: MediaBlock) -> bool:
    """Check whether `item` qualifies for `block`."""
    if item.kind is not block.kind:
        return False
    if not _src_matches(item.url, block):
        return False
    if block.extensions is not None:
        return file_extension(item.url) in {ext.lower() for ext in block.extensions}
    return True


def select_media(items: Iterable[MediaItem], blocks: Sequence[MediaBlock]) -> List[MediaItem]:
    """Items qualifying for at least one block, each URL once, in document order."""
    selected: List[MediaItem] = []
    seen = set()
    for item in items:
        if item.url in seen:
            continue
        if any(matches(item, block) for block in blocks):
            seen.add(item.url)
            selected.append(item)
    return selected


def render_path(template: str, scope: Mapping[str, str]) -> str:
    """Resolve a `save to` template against a scope snapshot."""
    return resolve_template(scope, template)
