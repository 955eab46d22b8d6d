"""Runtime settings and logging setup."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from rich.logging import RichHandler

DEFAULT_HOME = Path.home() / ".taskrouter"


@dataclass(frozen=True)
class Settings:
    """
    Taskrouter settings.

    Resolution order: defaults, then ``<data_dir>/config.toml``, then
    ``TASKROUTER_*`` environment variables.
    """

    data_dir: Path = DEFAULT_HOME
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 3848
    callback_timeout: float = 5.0  # seconds
    heartbeat_timeout: float = 60.0  # seconds - ready agents go unavailable after this

    @classmethod
    def load(cls, data_dir: Path | None = None) -> Settings:
        env_home = os.environ.get("TASKROUTER_HOME")
        home = data_dir or (Path(env_home) if env_home else DEFAULT_HOME)
        settings = cls(data_dir=home)

        config_file = home / "config.toml"
        if config_file.exists():
            with config_file.open("rb") as f:
                settings = settings.merge(tomllib.load(f))

        env: dict[str, Any] = {}
        for f in fields(cls):
            value = os.environ.get(f"TASKROUTER_{f.name.upper()}")
            if value is not None and f.name != "data_dir":
                env[f.name] = value
        return settings.merge(env)

    def merge(self, values: dict[str, Any]) -> Settings:
        """Return a copy with known keys from ``values`` applied."""
        known = {f.name: f for f in fields(self)}
        changes: dict[str, Any] = {}
        for key, value in values.items():
            if key not in known or key == "data_dir":
                continue
            current = getattr(self, key)
            changes[key] = type(current)(value)
        return replace(self, **changes)


def configure_logging(level: str = "INFO") -> None:
    """Route taskrouter logs through rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
