from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Type

import tomllib

from pydantic import BaseModel

logger = logging.getLogger(__name__)

ENV_PREFIX = "VAULTGATE_"


def flatten_sections(data: Mapping[str, Any]) -> dict[str, Any]:
    """``[jwt] secret = "..."`` becomes ``jwt_secret``; top-level keys pass through."""
    flattened: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, MutableMapping):
            flattened.update({f"{key}_{subkey}": subval for subkey, subval in value.items()})
        else:
            flattened[key] = value
    return flattened


def load_from_toml(path: str | Path | None, model: Type[BaseModel] | None = None) -> dict[str, Any]:
    if not path:
        return {}
    file_path = Path(path)
    if not file_path.exists():
        return {}

    with file_path.open("rb") as handle:
        values = flatten_sections(tomllib.load(handle))

    if model is not None:
        unknown = sorted(set(values) - set(model.model_fields))
        if unknown:
            logger.warning(f"Ignoring unknown settings in {file_path}: {', '.join(unknown)}")
            values = {k: v for k, v in values.items() if k not in unknown}
    return values


def env_overrides(model: Type[BaseModel], environ: Mapping[str, str]) -> dict[str, Any]:
    """Bare upper-cased field names, with ``VAULTGATE_``-prefixed names taking precedence."""
    overrides: dict[str, Any] = {}
    for field in model.model_fields:
        for env_key in (field.upper(), f"{ENV_PREFIX}{field.upper()}"):
            if env_key in environ:
                overrides[field] = environ[env_key]
    return overrides
