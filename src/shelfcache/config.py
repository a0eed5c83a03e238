"""Where shelfcache keeps its settings and how they are layered.

Settings live in ``config.json`` under the user config directory and may be
overridden per working directory by ``./shelfcache.json``, then by
``SHELFCACHE_*`` environment variables, then by command-line flags.
The session file and crash logs go to the data directory.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from shelfcache.exceptions import ConfigError
from shelfcache.models import GlobalConfig

_APP_NAME = "shelfcache"
_CONFIG_FILENAME = "config.json"
_PROJECT_CONFIG_FILENAME = "shelfcache.json"

ENV_BASE_URL = "SHELFCACHE_BASE_URL"
ENV_STALE_TIME = "SHELFCACHE_STALE_TIME"


def _is_xdg_platform() -> bool:
    system = platform.system()
    return system == "Linux" or system.endswith("BSD")


def _app_dir(xdg_var: str, xdg_default: Path, legacy: Path) -> Path:
    if _is_xdg_platform():
        root = Path(os.environ.get(xdg_var) or xdg_default)
        path = root / _APP_NAME
    else:
        path = legacy
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_dir() -> Path:
    """``$XDG_CONFIG_HOME/shelfcache`` on Linux and BSD, ``~/.shelfcache`` elsewhere."""
    home = Path.home()
    return _app_dir("XDG_CONFIG_HOME", home / ".config", home / f".{_APP_NAME}")


def get_data_dir() -> Path:
    """``$XDG_DATA_HOME/shelfcache`` on Linux and BSD, ``~/.shelfcache/data`` elsewhere."""
    home = Path.home()
    return _app_dir("XDG_DATA_HOME", home / ".local" / "share", home / f".{_APP_NAME}" / "data")


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Replace *path* with *data* so readers never observe a half-written file.

    The content goes to a sibling temp file which is fsynced and renamed over
    *path*. *mode*, when given, is applied before the secret hits the disk.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    )
    staged = Path(handle.name)
    try:
        with handle:
            if mode is not None:
                os.chmod(staged, mode)
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(staged, path)
    except BaseException:
        staged.unlink(missing_ok=True)
        raise


def _read_json(path: Path, label: str) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise ConfigError(f"Invalid {label} config at {path}: {exc}") from exc


def load_global_config() -> GlobalConfig:
    """Read the user's ``config.json``; defaults when it is absent.

    Raises:
        ConfigError: The file is not JSON or does not describe a valid config.
    """
    path = get_config_dir() / _CONFIG_FILENAME
    if not path.is_file():
        return GlobalConfig()
    raw = _read_json(path, "global")
    try:
        return GlobalConfig.model_validate(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    text = json.dumps(config.model_dump(mode="json"), indent=2)
    atomic_write(get_config_dir() / _CONFIG_FILENAME, text + "\n")


def load_project_config() -> Optional[dict[str, Any]]:
    """Read ``./shelfcache.json`` if there is one.

    It has the same shape as ``config.json``; only the keys it sets apply.
    """
    path = Path.cwd() / _PROJECT_CONFIG_FILENAME
    if not path.is_file():
        return None
    raw = _read_json(path, "project")
    if not isinstance(raw, dict):
        raise ConfigError(f"Invalid project config at {path}: expected an object")
    return raw


def _overlay(base: dict[str, Any], top: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in top.items():
        below = result.get(key)
        result[key] = _overlay(below, value) if isinstance(below, dict) and isinstance(value, dict) else value
    return result


def resolve_config(
    cli_base_url: Optional[str] = None,
    cli_format: Optional[str] = None,
) -> GlobalConfig:
    """Build the effective settings for one command.

    Later layers win: defaults, ``config.json``, ``./shelfcache.json``,
    ``SHELFCACHE_BASE_URL`` / ``SHELFCACHE_STALE_TIME``, then flags.

    Raises:
        ConfigError: A layer cannot be parsed or validated.
    """
    config = load_global_config()

    project = load_project_config()
    if project:
        try:
            config = GlobalConfig.model_validate(_overlay(config.model_dump(mode="json"), project))
        except ValueError as exc:
            raise ConfigError(f"Invalid project config: {exc}") from exc

    if os.environ.get(ENV_BASE_URL):
        config.request.base_url = os.environ[ENV_BASE_URL]
    stale = os.environ.get(ENV_STALE_TIME)
    if stale:
        try:
            config.cache.stale_time = float(stale)
        except ValueError as exc:
            raise ConfigError(f"{ENV_STALE_TIME} must be a number of seconds, got: {stale}") from exc

    if cli_base_url is not None:
        config.request.base_url = cli_base_url
    if cli_format is not None:
        config.output.format = cli_format
    return config
