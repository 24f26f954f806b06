from __future__ import annotations

import os
from pathlib import Path
from threading import RLock
from typing import Any, Mapping

from .models import Settings
from .sources import env_overrides, load_from_toml


class ConfigManager:
    """Layers config.toml, environment variables and explicit overrides into a Settings value."""

    def __init__(
        self,
        *,
        env_var: str = "CONFIG_FILE",
        default_file: str = "config.toml",
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._env_var = env_var
        self._default_file = default_file
        self._environ = environ if environ is not None else os.environ
        self._lock = RLock()

    @property
    def config_path(self) -> Path:
        candidate = self._environ.get(self._env_var, self._default_file)
        return Path(candidate)

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        with self._lock:
            data = load_from_toml(self.config_path, Settings)
            data.update(env_overrides(Settings, self._environ))
            if overrides:
                data.update(overrides)
            return Settings(**data)
