"""Session persistence for the catalog backend's bearer token."""

from shelfcache.auth.session_store import SessionEntry, SessionStore

__all__ = ["SessionEntry", "SessionStore"]
