from __future__ import annotations

from typing import Any, Mapping

from .manager import ConfigManager
from .models import Settings

__all__ = [
    "ConfigManager",
    "Settings",
    "load_settings",
]


def load_settings(
    *,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Build the process-wide settings value; call once at start-up and pass it down."""
    return ConfigManager(environ=environ).load(overrides=overrides)
