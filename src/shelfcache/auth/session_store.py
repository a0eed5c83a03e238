"""Persistent session store for the catalog backend.

Holds the bearer token returned by ``POST login`` and the active user's
record in ``~/.local/share/shelfcache/session.json`` (XDG) or the
platform-equivalent directory. Writes go through
:func:`~shelfcache.config.atomic_write` with ``0o600`` permissions so the
token is never world-readable, even momentarily.

The query layer never reads this file; only
:class:`~shelfcache.client.AsyncClient` (to inject the ``Authorization``
header) and :class:`~shelfcache.services.AuthService` use it.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from shelfcache.config import atomic_write, get_data_dir
from shelfcache.exceptions import ConfigError


class SessionEntry(BaseModel):
    """A signed-in session.

    Attributes:
        access_token: Bearer token sent on every request.
        user: The active user's record as returned by the backend, if known.
        created_at: When the session was stored (UTC).
        expires_at: Optional UTC expiry. ``None`` means the backend decides.
    """

    access_token: str = Field(description="Bearer token for the Authorization header")
    user: Optional[dict[str, Any]] = Field(default=None, description="Active user record")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: Optional[datetime] = None


class SessionStore:
    """Read/write the current session.

    Args:
        path: Session file location. Defaults to ``<data_dir>/session.json``.

    Example::

        store = SessionStore()
        store.save(SessionEntry(access_token="tok123"))
        assert store.token() == "tok123"
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path if path is not None else get_data_dir() / "session.json"

    @property
    def path(self) -> Path:
        return self._path

    def save(self, entry: SessionEntry) -> None:
        """Persist *entry* atomically with ``0o600`` permissions.

        Raises:
            OSError: If the file cannot be written.
        """
        data = entry.model_dump(mode="json")
        atomic_write(self._path, json.dumps(data, indent=2) + "\n", mode=0o600)

    def load(self) -> Optional[SessionEntry]:
        """Return the stored session, or ``None`` if missing or unreadable."""
        if not self._path.is_file():
            return None
        try:
            text = self._path.read_text(encoding="utf-8")
            return SessionEntry.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValueError, OSError):
            return None

    def is_valid(self) -> bool:
        """True when a session exists and has not expired."""
        entry = self.load()
        if entry is None:
            return False
        if entry.expires_at is None:
            return True
        expires = entry.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) < expires

    def token(self) -> Optional[str]:
        """Return the bearer token of a valid session, else ``None``."""
        if not self.is_valid():
            return None
        entry = self.load()
        return entry.access_token if entry is not None else None

    def active_user(self) -> Optional[dict[str, Any]]:
        """Return the stored user record, else ``None``."""
        entry = self.load()
        return entry.user if entry is not None else None

    def set_active_user(self, user: dict[str, Any]) -> None:
        """Attach *user* to the current session.

        Raises:
            ConfigError: If there is no session to attach it to.
        """
        entry = self.load()
        if entry is None:
            raise ConfigError("No session stored; log in first")
        entry.user = user
        self.save(entry)

    def clear(self) -> None:
        """Delete the session file. No-op if it is already gone."""
        if self._path.is_file():
            self._path.unlink()
