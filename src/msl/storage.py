"""
Storage sinks for saved media.

`destination` is a directory: the file name is taken from the source URL.
"""
from __future__ import annotations

import hashlib
import logging
import mimetypes
import os
import posixpath
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple
from urllib.parse import unquote, urlparse

import requests

from msl.errors import StorageError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class Storage(Protocol):
    def write(self, source_url: str, destination: str) -> Path: ...


def filename_from_url(url: str, content_type: Optional[str] = None) -> str:
    """Derive a file name from the URL path, guessing an extension if it has none."""
    name = posixpath.basename(unquote(urlparse(url).path)) or "index"
    if "." not in name and content_type:
        ext = mimetypes.guess_extension(content_type.split(";", 1)[0].strip())
        if ext:
            name += ext
    return name


class NameRegistry:
    """Hands out file names per directory so distinct URLs never share a target."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._owners: Dict[Path, str] = {}

    def claim(self, directory: Path, name: str, source_url: str) -> Path:
        target = directory / name
        with self._lock:
            owner = self._owners.setdefault(target, source_url)
            if owner != source_url:
                stem, ext = posixpath.splitext(name)
                digest = hashlib.sha1(source_url.encode("utf-8")).hexdigest()[:8]
                target = directory / f"{stem}-{digest}{ext}"
                self._owners.setdefault(target, source_url)
        return target


class FileStorage:
    """Downloads media with requests and writes it below `root`."""

    def __init__(
        self,
        root: str = ".",
        timeout_s: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.root = Path(root)
        self.timeout_s = timeout_s
        self.session = session or requests.Session()
        self.names = NameRegistry()

    def write(self, source_url: str, destination: str) -> Path:
        """Stream `source_url` into `destination`; a failed download leaves nothing behind."""
        directory = self.root / destination
        partial: Optional[Path] = None
        try:
            with self.session.get(source_url, timeout=self.timeout_s, stream=True) as resp:
                if resp.status_code >= 400:
                    raise StorageError(source_url, destination, f"HTTP {resp.status_code}")
                directory.mkdir(parents=True, exist_ok=True)
                name = filename_from_url(source_url, resp.headers.get("content-type"))
                target = self.names.claim(directory, name, source_url)
                with tempfile.NamedTemporaryFile(dir=directory, prefix=".msl-", suffix=".part", delete=False) as fh:
                    partial = Path(fh.name)
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            fh.write(chunk)
                os.replace(partial, target)
                partial = None
        except requests.RequestException as e:
            raise StorageError(source_url, destination, f"{type(e).__name__}: {e}") from e
        except OSError as e:
            raise StorageError(source_url, destination, str(e)) from e
        finally:
            if partial is not None:
                partial.unlink(missing_ok=True)

        logger.info("Saved %s -> %s", source_url, target)
        return target

    def close(self) -> None:
        self.session.close()


class DryRunStorage:
    """Records what would be written without touching the network or disk."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.writes: List[Tuple[str, str]] = []
        self.names = NameRegistry()

    def write(self, source_url: str, destination: str) -> Path:
        with self._lock:
            self.writes.append((source_url, destination))
        target = self.names.claim(Path(destination), filename_from_url(source_url), source_url)
        logger.info("Would save %s -> %s", source_url, target)
        return target
