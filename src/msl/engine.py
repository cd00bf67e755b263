"""
Execution engine: walks a parsed script against live pages.

Each `click` fans out into one child branch per matched element. Branches are
asyncio tasks; the blocking collaborator calls they make (page fetches and
storage writes) run on a thread pool sized by `max_concurrency`, which bounds
in-flight I/O without parents ever holding a slot while their children run.

An EngineError ends only the branch that raised it. Every branch, root
included, leaves a BranchOutcome in the ExecutionSummary.
"""
from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from msl.errors import (
    ConfigError,
    EngineError,
    ExtractionFailed,
    FetchError,
    FetchFailed,
    NoActivePage,
    StorageError,
    StorageFailed,
)
from msl.fetcher import Element, Fetcher, Page, resolve_url
from msl.media import MediaItem, render_path, select_media
from msl.model import (
    STATEMENT_TYPES,
    Attr,
    Click,
    Media,
    MediaKind,
    Open,
    Save,
    Script,
    Set,
    Split,
    Statement,
    ValueExpr,
    Wait,
)
from msl.scope import EMPTY_SCOPE, Scope, child
from msl.storage import Storage

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
FAILED = "failed"

DEFAULT_MAX_CONCURRENCY = 4


@dataclass(frozen=True, slots=True)
class SaveInstruction:
    source_url: str
    destination: str
    kind: MediaKind


@dataclass(slots=True)
class BranchOutcome:
    """How one execution context ended and how it was reached."""
    trail: Tuple[str, ...]
    status: str
    error: Optional[EngineError] = None
    saved: int = 0
    children: int = 0

    @property
    def path(self) -> str:
        return " > ".join(self.trail) or "<root>"


@dataclass(slots=True)
class ExecutionSummary:
    branches: List[BranchOutcome] = field(default_factory=list)
    saves: List[SaveInstruction] = field(default_factory=list)

    @property
    def failed(self) -> List[BranchOutcome]:
        return [b for b in self.branches if b.status == FAILED]

    @property
    def succeeded(self) -> List[BranchOutcome]:
        return [b for b in self.branches if b.status == SUCCEEDED]

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass(slots=True)
class ExecutionContext:
    """
    One node of the traversal tree.

    `element` is the element whose link produced this context (None at the
    root); `scope` is replaced, never mutated, when a variable is set.
    """
    page: Optional[Page]
    scope: Scope
    element: Optional[Element] = None
    trail: Tuple[str, ...] = ()
    pending_media: List[MediaItem] = field(default_factory=list)
    saved: int = 0
    children: int = 0


@dataclass(slots=True)
class _RunState:
    pool: ThreadPoolExecutor
    summary: ExecutionSummary


def apply_split(name: str, value: str, transform: Split) -> str:
    parts = value.split(transform.separator)
    try:
        return parts[transform.index]
    except IndexError:
        raise ExtractionFailed(
            name,
            f"split({transform.separator!r})[{transform.index}] out of range ({len(parts)} parts)",
        ) from None


def evaluate(name: str, expr: ValueExpr, element: Element) -> str:
    """Evaluate a value expression against an element."""
    if isinstance(expr, Attr):
        value = element.get(expr.name)
        if value is None:
            raise ExtractionFailed(name, f"element has no attribute {expr.name!r}")
    else:
        value = element.text.strip()
    for transform in expr.transforms:
        value = apply_split(name, value, transform)
    return value


def link_target(element: Element, base_url: str) -> str:
    """Absolute URL a matched element leads to: its href, else its first a[href]."""
    href = element.get("href")
    if not href:
        anchors = element.select("a[href]")
        href = anchors[0].get("href") if anchors else None
    if not href:
        raise ExtractionFailed("href", "matched element has no link target")
    target = resolve_url(href, base_url)
    if target is None:
        raise ExtractionFailed("href", f"unsupported link target {href!r}")
    return target


class Engine:
    """Interprets scripts using a page fetcher and a storage sink."""

    HANDLERS: Dict[type, str] = {
        Open: "_exec_open",
        Click: "_exec_click",
        Set: "_exec_set",
        Media: "_exec_media",
        Save: "_exec_save",
        Wait: "_exec_wait",
    }

    def __init__(
        self,
        fetcher: Fetcher,
        storage: Storage,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        if max_concurrency < 1:
            raise ConfigError(
                f"max concurrency must be at least 1, got {max_concurrency}",
                {"max_concurrency": max_concurrency},
            )
        self.fetcher = fetcher
        self.storage = storage
        self.max_concurrency = max_concurrency
        self._handlers: Dict[type, Callable[[_RunState, ExecutionContext, Statement], Awaitable[None]]] = {
            stmt_type: getattr(self, method) for stmt_type, method in self.HANDLERS.items()
        }

    def execute(self, script: Script) -> ExecutionSummary:
        """Run `script` to completion on a fresh event loop."""
        return asyncio.run(self.run(script))

    async def run(self, script: Script) -> ExecutionSummary:
        summary = ExecutionSummary()
        with ThreadPoolExecutor(max_workers=self.max_concurrency, thread_name_prefix="msl-io") as pool:
            state = _RunState(pool=pool, summary=summary)
            root = ExecutionContext(page=None, scope=EMPTY_SCOPE)
            await self._guard(state, root, self._run_statements(state, root, script.statements))
        logger.info(
            "Run finished: %d branches, %d failed, %d saves",
            len(summary.branches), len(summary.failed), len(summary.saves),
        )
        return summary

    # Branch lifecycle

    async def _guard(self, state: _RunState, ctx: ExecutionContext, work: Awaitable[None]) -> None:
        """Run a branch's work and record its outcome; EngineErrors stop here."""
        try:
            await work
        except EngineError as e:
            logger.warning("Branch %s failed: %s", " > ".join(ctx.trail) or "<root>", e)
            outcome = BranchOutcome(ctx.trail, FAILED, e, ctx.saved, ctx.children)
        else:
            outcome = BranchOutcome(ctx.trail, SUCCEEDED, None, ctx.saved, ctx.children)
        state.summary.branches.append(outcome)

    async def _run_statements(
        self,
        state: _RunState,
        ctx: ExecutionContext,
        statements: Tuple[Statement, ...],
    ) -> None:
        for stmt in statements:
            handler = self._handlers.get(type(stmt))
            if handler is None:
                raise TypeError(f"no handler for statement {stmt!r}")
            await handler(state, ctx, stmt)

    async def _enter_child(
        self,
        state: _RunState,
        ctx: ExecutionContext,
        base_url: str,
        body: Tuple[Statement, ...],
    ) -> None:
        target = link_target(ctx.element, base_url)
        ctx.trail += (target,)
        ctx.page = await self._fetch(state, target)
        await self._run_statements(state, ctx, body)

    # Collaborator calls

    async def _fetch(self, state: _RunState, url: str) -> Page:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(state.pool, self.fetcher.fetch, url)
        except FetchError as e:
            raise FetchFailed(url, e.reason) from e

    async def _write(self, state: _RunState, item: MediaItem, destination: str) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(state.pool, self.storage.write, item.url, destination)
        except StorageError as e:
            raise StorageFailed(item.url, destination, e.reason) from e
        state.summary.saves.append(SaveInstruction(item.url, destination, item.kind))

    @staticmethod
    def _require_page(ctx: ExecutionContext, statement: str) -> Page:
        if ctx.page is None:
            raise NoActivePage(statement)
        return ctx.page

    # Statements

    async def _exec_open(self, state: _RunState, ctx: ExecutionContext, stmt: Open) -> None:
        ctx.trail += (stmt.url,)
        ctx.page = await self._fetch(state, stmt.url)
        logger.debug("Opened %s", stmt.url)

    async def _exec_click(self, state: _RunState, ctx: ExecutionContext, stmt: Click) -> None:
        page = self._require_page(ctx, "click")
        elements = page.select(stmt.selector)
        if not elements:
            logger.info("No elements match %r on %s", stmt.selector, page.url)
            return

        logger.debug("%r matched %d elements on %s", stmt.selector, len(elements), page.url)
        branches = []
        for element in elements:
            branch = ExecutionContext(
                page=None,
                scope=child(ctx.scope),
                element=element,
                trail=ctx.trail + (stmt.selector,),
            )
            branches.append(self._guard(state, branch, self._enter_child(state, branch, page.base_url, stmt.body)))
        ctx.children += len(branches)
        await asyncio.gather(*branches)

    async def _exec_set(self, state: _RunState, ctx: ExecutionContext, stmt: Set) -> None:
        page = self._require_page(ctx, "set")
        element = ctx.element if ctx.element is not None else page.document
        value = evaluate(stmt.name, stmt.expr, element)
        ctx.scope = ctx.scope.bind(stmt.name, value)
        logger.debug("set %s = %r", stmt.name, value)

    async def _exec_media(self, state: _RunState, ctx: ExecutionContext, stmt: Media) -> None:
        page = self._require_page(ctx, "media")
        found: List[MediaItem] = []
        for kind, src in page.media():
            url = resolve_url(src, page.base_url)
            if url is not None:
                found.append(MediaItem(url=url, kind=kind, scope=ctx.scope))
        selected = select_media(found, stmt.blocks)
        queued = {item.url for item in ctx.pending_media}
        ctx.pending_media.extend(item for item in selected if item.url not in queued)
        logger.debug("%d of %d media items qualify on %s", len(selected), len(found), page.url)

    async def _exec_save(self, state: _RunState, ctx: ExecutionContext, stmt: Save) -> None:
        self._require_page(ctx, "save")
        if not ctx.pending_media:
            logger.info("Nothing to save to %r", stmt.path_template)
            return
        # Resolve every destination before writing anything
        planned = [(item, render_path(stmt.path_template, item.scope)) for item in ctx.pending_media]
        for item, destination in planned:
            await self._write(state, item, destination)
            ctx.saved += 1
        ctx.pending_media.clear()

    async def _exec_wait(self, state: _RunState, ctx: ExecutionContext, stmt: Wait) -> None:
        await asyncio.sleep(stmt.duration)


_unhandled = [t.__name__ for t in STATEMENT_TYPES if t not in Engine.HANDLERS]
if _unhandled:
    raise TypeError(f"Engine has no handler for: {', '.join(_unhandled)}")


def execute(
    script: Script,
    fetcher: Fetcher,
    storage: Storage,
    *,
    max_concurrency: Optional[int] = None,
) -> ExecutionSummary:
    """Execute a parsed script and summarize every branch."""
    if max_concurrency is None:
        max_concurrency = DEFAULT_MAX_CONCURRENCY
    engine = Engine(fetcher, storage, max_concurrency)
    return engine.execute(script)
