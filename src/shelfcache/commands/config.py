"""``shelfcache config``: inspect and edit the user's ``config.json``."""

from __future__ import annotations

from typing import Any, NoReturn

import typer
from pydantic import ValidationError as PydanticValidationError

from shelfcache.config import get_config_dir, load_global_config, save_global_config
from shelfcache.exit_codes import EXIT_INVALID_USAGE
from shelfcache.models import GlobalConfig
from shelfcache.output import error, format_response, info, success

config_app = typer.Typer(no_args_is_help=True)

_NONE_WORDS = ("none", "null", "")
_TRUE_WORDS = ("true", "1", "yes")


def _usage_error(message: str) -> NoReturn:
    error(message)
    raise typer.Exit(code=EXIT_INVALID_USAGE)


@config_app.command("show")
def config_show() -> None:
    """Print the stored settings, e.g. ``shelfcache --json config show``."""
    info(f"Config directory: {get_config_dir()}")
    format_response(load_global_config().model_dump(mode="json"))


def _locate(data: dict[str, Any], key: str) -> tuple[dict[str, Any], str]:
    """Return the section holding the leaf named by dotted *key*, and the leaf name."""
    *path, leaf = key.split(".")
    section = data
    for part in path:
        section = section.get(part)
        if not isinstance(section, dict):
            _usage_error(f"Invalid config key: {key}")
    if leaf not in section or isinstance(section[leaf], dict):
        _usage_error(f"Unknown config key: {key}")
    return section, leaf


def _coerce(key: str, current: Any, value: str) -> Any:
    """Parse *value* as the type the setting currently holds.

    Cache windows are optional floats, so ``none`` clears them.
    """
    lowered = value.lower()
    if isinstance(current, bool):
        return lowered in _TRUE_WORDS
    if isinstance(current, int):
        try:
            return int(value)
        except ValueError:
            _usage_error(f"Expected integer for {key}, got: {value}")
    seconds = isinstance(current, float) or (current is None and key.startswith("cache."))
    if lowered in _NONE_WORDS and (seconds or current is None):
        return None
    if seconds:
        try:
            return float(value)
        except ValueError:
            _usage_error(f"Expected number of seconds for {key}, got: {value}")
    return value


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Dotted setting name, e.g. cache.stale_time."),
    value: str = typer.Argument(help="New value; 'none' clears an optional setting."),
) -> None:
    """Change one setting and save it if the result is still valid.

    Example::

        shelfcache config set request.base_url https://books.example.com/api
        shelfcache config set cache.gc_time none
    """
    data = load_global_config().model_dump(mode="json")
    section, leaf = _locate(data, key)
    section[leaf] = _coerce(key, section[leaf], value)
    try:
        updated = GlobalConfig.model_validate(data)
    except PydanticValidationError as exc:
        _usage_error(f"Validation error: {exc}")
    save_global_config(updated)
    success(f"Set {key} = {section[leaf]}")


@config_app.command("reset")
def config_reset(ctx: typer.Context) -> None:
    """Restore default settings, asking first unless ``--force`` was given."""
    opts = ctx.find_root().obj
    force = isinstance(opts, dict) and opts.get("force", False)
    if not force and not typer.confirm("Reset all config to defaults?"):
        info("Cancelled.")
        raise typer.Exit()
    save_global_config(GlobalConfig())
    success("Configuration reset to defaults.")
