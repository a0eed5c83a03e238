"""Login, signup, logout, and the active-user query.

:class:`AuthService` owns the session lifecycle. Login and signup run as
mutations so that the ``active_user`` query is invalidated (and refetched
for anyone watching it) once the new session is stored. Logout clears the
session file, reports a logged-out ``active_user`` to its watchers, and
drops every other cached entry, since those were fetched with the old token.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from shelfcache.auth import SessionEntry, SessionStore
from shelfcache.client import AsyncClient
from shelfcache.models import LoginRequest, LoginResponse, SignupRequest, User
from shelfcache.query import MutationCoordinator, MutationHandle, QueryCache, Subscription
from shelfcache.query.cache import Listener
from shelfcache.services.catalog import ACTIVE_USER
from shelfcache.services.forms import parse_form

logger = logging.getLogger(__name__)


class AuthService:
    """Session management against ``POST login`` / ``POST signup``.

    Args:
        client: Open backend client.
        session_store: Where the token and active user are kept.
        cache: Cache holding the ``active_user`` query.
        coordinator: Runs login/signup. Created over *cache* when omitted.
    """

    def __init__(
        self,
        client: AsyncClient,
        session_store: SessionStore,
        cache: QueryCache,
        coordinator: Optional[MutationCoordinator] = None,
    ) -> None:
        self._client = client
        self._store = session_store
        self._cache = cache
        self._coordinator = coordinator or MutationCoordinator(cache)

    # --- queries ---

    async def get_active_user(self) -> Optional[User]:
        """Fetcher for ``active_user``: the user stored with the session."""
        record = self._store.active_user()
        if record is None:
            return None
        return User.model_validate(record)

    def active_user(self, listener: Optional[Listener] = None) -> Subscription:
        return self._cache.subscribe(ACTIVE_USER, self.get_active_user, listener)

    # --- mutations ---

    def login(self, form: Mapping[str, Any]) -> MutationHandle:
        """Validate *form*, log in, and store the session.

        Raises:
            ValidationError: Before any request, if the form is invalid.
        """
        request = parse_form(LoginRequest, form)
        return self._coordinator.mutate(
            lambda: self._login(request), invalidates=[ACTIVE_USER]
        )

    def signup(self, form: Mapping[str, Any]) -> MutationHandle:
        """Validate *form* and register a new account.

        Raises:
            ValidationError: Before any request, if the form is invalid.
        """
        request = parse_form(SignupRequest, form)
        return self._coordinator.mutate(
            lambda: self._client.post_json("signup", request.api_payload())
        )

    def logout(self) -> None:
        """Forget the session and everything fetched with it.

        Anyone watching ``active_user`` is told the user is now ``None``;
        every other entry is dropped.
        """
        self._store.clear()
        for key in self._cache.keys():
            if key != ACTIVE_USER:
                self._cache.remove(key)
        if ACTIVE_USER in self._cache:
            self._cache.set_data(ACTIVE_USER, None)
            if self._cache.fetching_count(ACTIVE_USER):
                # A read started before the session was cleared; re-read afterwards.
                self._cache.invalidate(ACTIVE_USER)
        logger.debug("Session cleared")

    # --- internals ---

    async def _login(self, request: LoginRequest) -> LoginResponse:
        body = await self._client.post_json(
            "login", {"email": request.email, "password": request.password}
        )
        response = LoginResponse.model_validate(body)
        user = response.user or User(email=request.email)
        self._store.save(
            SessionEntry(
                access_token=response.access_token,
                user=user.model_dump(mode="json", by_alias=False, exclude_none=True),
            )
        )
        return response
