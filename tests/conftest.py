"""Shared fakes: an in-memory fetcher serving HTML and recording storages."""
from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from msl.errors import FetchError, StorageError
from msl.fetcher import HtmlPage
from msl.storage import DryRunStorage


class HtmlFetcher:
    """Serves canned HTML by URL; unknown URLs fail like a 404."""

    def __init__(self, pages: Dict[str, str]) -> None:
        self.pages = pages
        self.fetched: List[str] = []
        self._lock = threading.Lock()

    def fetch(self, url: str) -> HtmlPage:
        with self._lock:
            self.fetched.append(url)
        html = self.pages.get(url)
        if html is None:
            raise FetchError(url, "HTTP 404")
        return HtmlPage(html, url=url)

    def close(self) -> None:
        pass


class FailingStorage(DryRunStorage):
    """Fails for any source URL containing `marker`."""

    def __init__(self, marker: str) -> None:
        super().__init__()
        self.marker = marker

    def write(self, source_url: str, destination: str) -> Path:
        if self.marker in source_url:
            raise StorageError(source_url, destination, "disk full")
        return super().write(source_url, destination)


@pytest.fixture
def make_fetcher():
    def factory(pages: Dict[str, str]) -> HtmlFetcher:
        return HtmlFetcher(pages)
    return factory


@pytest.fixture
def storage() -> DryRunStorage:
    return DryRunStorage()


@pytest.fixture
def failing_storage():
    def factory(marker: str) -> FailingStorage:
        return FailingStorage(marker)
    return factory


def link_page(links: List[str], body: str = "", css_class: str = "link") -> str:
    anchors = "".join(f'<a class="{css_class}" href="{href}">{href}</a>' for href in links)
    return f"<html><body>{anchors}{body}</body></html>"


def image_page(*srcs: str, extra: Optional[str] = None) -> str:
    images = "".join(f'<img src="{src}">' for src in srcs)
    return f"<html><body>{images}{extra or ''}</body></html>"


@pytest.fixture
def gallery_pages() -> Dict[str, str]:
    """Two linked user pages, each with one qualifying PNG on a cdn host."""
    return {
        "https://x/a": link_page(["/users/1", "/users/2"]),
        "https://x/users/1": image_page(
            "https://cdn.example.com/p1.png",
            "https://static.example.com/p1.png",
            "https://cdn.example.com/p1.jpg",
        ),
        "https://x/users/2": image_page(
            "https://cdn.example.com/p2.png",
            "/local/p2.gif",
        ),
    }
