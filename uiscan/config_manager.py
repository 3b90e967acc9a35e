"""Load and write ``uiscan.toml`` configuration files."""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import toml

from .config import (
    CONFIG_FILENAME,
    WIRE_CASINGS,
    MockSettings,
    ScanSettings,
    SelectorSettings,
    Settings,
    default_config_path,
)
from .errors import ConfigError

logger = logging.getLogger(__name__)


DEFAULT_CONFIG_TEXT = """\
# uiscan configuration

[scan]
# entry_globs = ["src/pages/*"]
# aliases = { "@/*" = ["src/*"] }
workers = 4
# fail_threshold = 0

[selectors]
attribute = "data-testid"

[mocks]
wire_casing = "snake"
page_size = 2

# [[catalog.hooks]]
# name = "useApiQuery"
# kind = "query"
"""


def load_settings(root: Path, config_path: Optional[Path] = None) -> Settings:
    """Build :class:`Settings` from defaults plus the project's TOML file.

    An explicitly requested file must exist; the implicit
    ``<root>/uiscan.toml`` is optional.
    """
    path = config_path or default_config_path(root)
    if not path.exists():
        if config_path is not None:
            raise ConfigError(f"Config file not found: {path}")
        return Settings()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = toml.load(f)
    except (toml.TomlDecodeError, OSError) as exc:
        raise ConfigError(f"Could not read {path}: {exc}") from exc

    logger.debug("Loaded configuration from %s", path)
    return settings_from_dict(data, source=str(path))


def settings_from_dict(data: Dict[str, Any], source: str = "<dict>") -> Settings:
    settings = Settings(
        scan=_section(ScanSettings, data.get("scan", {}), "scan", source),
        selectors=_section(SelectorSettings, data.get("selectors", {}), "selectors", source),
        mocks=_section(MockSettings, data.get("mocks", {}), "mocks", source),
        catalog=dict(data.get("catalog", {})),
        integrations=list(data.get("integrations", [])),
    )
    for key in sorted(set(data) - {"scan", "selectors", "mocks", "catalog", "integrations"}):
        logger.warning("Ignoring unknown section [%s] in %s", key, source)
    _validate(settings)
    return settings


def write_default_config(root: Path, overwrite: bool = False) -> Path:
    path = root / CONFIG_FILENAME
    if path.exists() and not overwrite:
        raise ConfigError(f"{path} already exists")
    path.write_text(DEFAULT_CONFIG_TEXT, encoding="utf-8")
    return path


def _section(cls: Any, values: Dict[str, Any], name: str, source: str) -> Any:
    if not isinstance(values, dict):
        raise ConfigError(f"[{name}] in {source} must be a table")
    defaults = cls()
    known = {f.name: f for f in dataclasses.fields(cls)}
    kwargs: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in known:
            logger.warning("Ignoring unknown key %s.%s in %s", name, key, source)
            continue
        default = getattr(defaults, key)
        if isinstance(default, tuple):
            if not isinstance(value, list):
                raise ConfigError(f"{name}.{key} in {source} must be a list")
            value = tuple(value)
        kwargs[key] = value
    return cls(**kwargs)


def _validate(settings: Settings) -> None:
    if settings.mocks.wire_casing not in WIRE_CASINGS:
        raise ConfigError(
            f"mocks.wire_casing must be one of {', '.join(WIRE_CASINGS)}, "
            f"got {settings.mocks.wire_casing!r}"
        )
    if settings.mocks.page_size < 0:
        raise ConfigError("mocks.page_size must not be negative")
    if settings.scan.workers < 1:
        raise ConfigError("scan.workers must be at least 1")
    if settings.scan.max_resolution_depth < 1:
        raise ConfigError("scan.max_resolution_depth must be at least 1")
    for template, shape in settings.mocks.pagination_overrides.items():
        if shape not in ("envelope", "bare"):
            raise ConfigError(f"pagination override for {template} must be 'envelope' or 'bare'")
