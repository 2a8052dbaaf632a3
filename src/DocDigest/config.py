from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import DigestInputError

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

_ENV_KEYS = {
    "provider": "DIGEST_PROVIDER",
    "model": "OPENAI_MODEL",
    "base_url": "OPENAI_BASE_URL",
    "api_key": "OPENAI_API_KEY",
    "concurrency": "DIGEST_CONCURRENCY",
    "fallback_on_error": "DIGEST_FALLBACK_ON_ERROR",
    "request_timeout": "DIGEST_REQUEST_TIMEOUT",
    "table_preview_max_rows": "TABLE_PREVIEW_MAX_ROWS",
}


@dataclass
class DigestSettings:
    provider: str = "openai"
    model: str = "gpt-5.2"
    base_url: str = "https://api.openai.com/v1"
    api_key: Optional[str] = None
    concurrency: int = 3
    fallback_on_error: bool = True
    request_timeout: Optional[float] = 120.0
    table_preview_max_rows: int = 30


def load_settings(
    config_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> DigestSettings:
    """
    Resolve settings: explicit overrides > YAML file > environment > defaults.
    """
    env = os.environ if env is None else env
    defaults = DigestSettings()
    file_values = _read_yaml(config_path) if config_path else {}

    resolved: Dict[str, Any] = {}
    for f in fields(DigestSettings):
        default = getattr(defaults, f.name)
        if overrides.get(f.name) is not None:
            resolved[f.name] = overrides[f.name]
        elif file_values.get(f.name) is not None:
            resolved[f.name] = _coerce(f.name, file_values[f.name], default, strict=True)
        elif env.get(_ENV_KEYS[f.name]):
            resolved[f.name] = _coerce(f.name, env[_ENV_KEYS[f.name]], default, strict=False)
        else:
            resolved[f.name] = default

    if resolved["table_preview_max_rows"] < 1:
        resolved["table_preview_max_rows"] = defaults.table_preview_max_rows
    settings = DigestSettings(**resolved)
    logger.debug("Digest settings: provider=%s concurrency=%s", settings.provider, settings.concurrency)
    return settings


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise DigestInputError(f"Unable to read settings file {path}: {exc}", {"path": str(path)}) from exc
    if not isinstance(data, dict):
        raise DigestInputError(f"Settings file {path} must contain a mapping", {"path": str(path)})
    unknown = set(data) - set(_ENV_KEYS)
    if unknown:
        raise DigestInputError(f"Unknown settings keys in {path}: {sorted(unknown)}", {"path": str(path)})
    return data


def _coerce(name: str, value: Any, default: Any, strict: bool) -> Any:
    """Coerce a raw value to the type of ``default``; env values fall back to the default."""
    try:
        if isinstance(default, bool):
            return _to_bool(value)
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
        return str(value)
    except (TypeError, ValueError) as exc:
        if strict:
            raise DigestInputError(f"Invalid value for setting {name}: {value!r}", {"setting": name}) from exc
        return default


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean: {value!r}")
