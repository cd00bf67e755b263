"""
Run settings, read from the environment and overridable from the CLI.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any

from msl.errors import ConfigError
from msl.fetcher import DEFAULT_USER_AGENT


def _env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    try:
        return int(val)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {val!r}", {"name": name}) from None


def _env_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    try:
        return float(val)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {val!r}", {"name": name}) from None


@dataclass
class Settings:
    max_concurrency: int = field(default_factory=lambda: _env_int("MSL_MAX_CONCURRENCY", 4))
    timeout_s: float = field(default_factory=lambda: _env_float("MSL_TIMEOUT", 15.0))
    user_agent: str = field(default_factory=lambda: os.getenv("MSL_USER_AGENT", DEFAULT_USER_AGENT))
    output_root: str = field(default_factory=lambda: os.getenv("MSL_OUTPUT_ROOT", "."))

    def validate(self) -> "Settings":
        if self.max_concurrency < 1:
            raise ConfigError(
                f"max concurrency must be at least 1, got {self.max_concurrency}",
                {"max_concurrency": self.max_concurrency},
            )
        if self.timeout_s <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout_s}", {"timeout_s": self.timeout_s})
        if not self.user_agent:
            raise ConfigError("user agent cannot be empty")
        return self

    def override(self, **values: Any) -> "Settings":
        """Copy with every non-None value applied."""
        return replace(self, **{k: v for k, v in values.items() if v is not None})


def load_settings(**overrides: Any) -> Settings:
    """Environment settings with CLI overrides applied, validated."""
    return Settings().override(**overrides).validate()
