"""
Page fetching: the Page/Element capabilities the engine relies on, and an
HTTP implementation built on requests and BeautifulSoup.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Tuple
from urllib.parse import urldefrag, urljoin, urlparse, urlunparse

import requests
from bs4 import BeautifulSoup, Tag

from msl.errors import FetchError
from msl.model import MediaKind

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "MslEngine/1.0"

# Elements carrying media, queried in one pass so document order is preserved
MEDIA_SELECTOR = "img[src], video[src], video source[src], audio[src], audio source[src]"

TAG_KINDS = {
    "img": MediaKind.IMAGE,
    "video": MediaKind.VIDEO,
    "audio": MediaKind.AUDIO,
}


class Element(Protocol):
    @property
    def text(self) -> str: ...

    def get(self, name: str) -> Optional[str]: ...

    def select(self, css: str) -> List["Element"]: ...


class Page(Protocol):
    url: str
    base_url: str

    @property
    def document(self) -> Element: ...

    def select(self, css: str) -> List[Element]: ...

    def media(self) -> List[Tuple[MediaKind, str]]: ...


class Fetcher(Protocol):
    def fetch(self, url: str) -> Page: ...


def resolve_url(url: str, base: str) -> Optional[str]:
    """
    Resolve a link or media reference found on a page.

    - Joins relative URLs against base
    - Drops fragments (#...)
    - Normalizes scheme/host case
    - Removes default ports (:80, :443)
    - Returns None for anything that is not http(s)
    """
    if not url or not url.strip():
        return None

    try:
        joined, _ = urldefrag(urljoin(base, url.strip()))
        parsed = urlparse(joined)
        port = parsed.port
    except ValueError:
        # Malformed port or IPv6 host
        logger.debug("Ignoring malformed URL %r", url)
        return None

    if parsed.scheme not in ("http", "https"):
        return None

    hostname = (parsed.hostname or "").lower()

    if (parsed.scheme == "http" and port == 80) or (parsed.scheme == "https" and port == 443):
        netloc = hostname
    elif port:
        netloc = f"{hostname}:{port}"
    else:
        netloc = hostname

    return urlunparse((
        parsed.scheme.lower(),
        netloc,
        parsed.path or "/",
        parsed.params,
        parsed.query,
        "",
    ))


class HtmlElement:
    """Element backed by a BeautifulSoup tag (or the whole document)."""

    __slots__ = ("tag",)

    def __init__(self, tag: Tag) -> None:
        self.tag = tag

    @property
    def text(self) -> str:
        return self.tag.get_text(separator=" ", strip=True)

    def get(self, name: str) -> Optional[str]:
        value = self.tag.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value

    def select(self, css: str) -> List[HtmlElement]:
        return [HtmlElement(t) for t in self.tag.select(css)]

    def __repr__(self) -> str:
        return f"<HtmlElement {self.tag.name}>"


class HtmlPage:
    """Parsed HTML document with its effective base URL."""

    def __init__(self, html: str, url: str) -> None:
        self.url = url
        self.soup = BeautifulSoup(html, "lxml")
        base = self.soup.find("base", href=True)
        self.base_url = urljoin(url, base["href"]) if base else url

    @property
    def document(self) -> HtmlElement:
        return HtmlElement(self.soup)

    def select(self, css: str) -> List[HtmlElement]:
        return [HtmlElement(t) for t in self.soup.select(css)]

    def media(self) -> List[Tuple[MediaKind, str]]:
        """(kind, src) for each media-bearing element, in document order."""
        found: List[Tuple[MediaKind, str]] = []
        for tag in self.soup.select(MEDIA_SELECTOR):
            if tag.name == "source":
                owner = tag.find_parent(["video", "audio"])
                kind = TAG_KINDS[owner.name] if owner is not None else None
            else:
                kind = TAG_KINDS.get(tag.name)
            src = tag.get("src")
            if kind is not None and src:
                found.append((kind, src))
        return found


class HttpFetcher:
    """Fetches pages over a shared requests session. Safe to call from worker threads."""

    def __init__(
        self,
        timeout_s: float = 15.0,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.timeout_s = timeout_s
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = user_agent

    def fetch(self, url: str) -> HtmlPage:
        logger.debug("GET %s", url)
        try:
            resp = self.session.get(url, timeout=self.timeout_s, allow_redirects=True)
        except requests.RequestException as e:
            raise FetchError(url, f"{type(e).__name__}: {e}") from e

        if resp.status_code >= 400:
            raise FetchError(url, f"HTTP {resp.status_code}")

        content_type = (resp.headers.get("content-type") or "").lower()
        if content_type and "html" not in content_type:
            raise FetchError(url, f"unsupported content type {content_type!r}")

        logger.debug("%s %s (%d bytes)", resp.status_code, resp.url or url, len(resp.text))
        return HtmlPage(resp.text, url=resp.url or url)

    def close(self) -> None:
        self.session.close()
