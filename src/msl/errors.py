"""
Exception hierarchy for parsing, configuring and executing scripts.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class MslError(Exception):
    """Base class for every error raised by the engine."""

    def __init__(
        self,
        message: str,
        error_code: str = "MSL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


class ScriptSyntaxError(MslError):
    """Script text does not conform to the grammar. Fatal before execution."""

    def __init__(self, line: int, column: int, message: str) -> None:
        self.line = line
        self.column = column
        super().__init__(
            f"line {line}, column {column}: {message}",
            "SYNTAX_ERROR",
            {"line": line, "column": column, "reason": message},
        )
        self.reason = message


class ConfigError(MslError):
    """Invalid run configuration. Fatal before execution."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "CONFIG_ERROR", details)


# Collaborator errors

class FetchError(MslError):
    """A page could not be fetched or parsed."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"{url}: {reason}", "FETCH_ERROR", {"url": url, "reason": reason})


class StorageError(MslError):
    """A media item could not be written to its destination."""

    def __init__(self, url: str, destination: str, reason: str) -> None:
        self.url = url
        self.destination = destination
        self.reason = reason
        super().__init__(
            f"{url} -> {destination}: {reason}",
            "STORAGE_ERROR",
            {"url": url, "destination": destination, "reason": reason},
        )


# Branch-scoped engine errors

class EngineError(MslError):
    """Error that terminates a single branch of the traversal tree."""

    def __init__(
        self,
        message: str,
        error_code: str = "ENGINE_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, error_code, details)

    @property
    def kind(self) -> str:
        return type(self).__name__


class NoActivePage(EngineError):
    def __init__(self, statement: str) -> None:
        self.statement = statement
        super().__init__(
            f"'{statement}' requires a page; use 'open' first",
            "NO_ACTIVE_PAGE",
            {"statement": statement},
        )


class FetchFailed(EngineError):
    def __init__(self, url: str, cause: str) -> None:
        self.url = url
        self.cause = cause
        super().__init__(f"failed to fetch {url}: {cause}", "FETCH_FAILED", {"url": url, "cause": cause})


class ExtractionFailed(EngineError):
    def __init__(self, name: str, cause: str) -> None:
        self.name = name
        self.cause = cause
        super().__init__(
            f"could not extract '{name}': {cause}",
            "EXTRACTION_FAILED",
            {"name": name, "cause": cause},
        )


class TemplateError(EngineError):
    """A path template references a variable that is not bound."""

    def __init__(self, name: str, template: str = "") -> None:
        self.name = name
        self.template = template
        super().__init__(
            f"unbound variable '{name}' in template {template!r}",
            "TEMPLATE_ERROR",
            {"name": name, "template": template},
        )


class StorageFailed(EngineError):
    def __init__(self, url: str, destination: str, cause: str) -> None:
        self.url = url
        self.destination = destination
        self.cause = cause
        super().__init__(
            f"failed to save {url} to {destination}: {cause}",
            "STORAGE_FAILED",
            {"url": url, "destination": destination, "cause": cause},
        )
