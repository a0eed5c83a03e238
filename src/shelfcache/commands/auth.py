"""Auth commands -- sign in, register, sign out, and show the active user.

Provides the ``shelfcache auth`` sub-command group. The session (bearer
token plus user record) is written to the data directory by
:class:`~shelfcache.auth.SessionStore` and injected into every later
request.

Typical workflow::

    shelfcache auth signup --email ada@example.com --first-name Ada ...
    shelfcache auth login --email ada@example.com
    shelfcache auth profile
    shelfcache auth logout
"""

from __future__ import annotations

import typer

from shelfcache.auth import SessionStore
from shelfcache.commands.runtime import execute, open_runtime, require_data, require_success
from shelfcache.output import format_response, info, success, suggest

auth_app = typer.Typer(no_args_is_help=True)


@auth_app.command("login")
def auth_login(
    ctx: typer.Context,
    email: str = typer.Option(..., "--email", "-e", prompt=True, help="Account email."),
    password: str = typer.Option(
        ..., "--password", prompt=True, hide_input=True, help="Account password."
    ),
) -> None:
    """Log in and store the session token."""

    async def _login() -> None:
        async with open_runtime(ctx) as rt:
            require_success(await rt.auth.login({"email": email, "password": password}))
        success(f"Logged in as {email}.")
        suggest("Browse the catalog: shelfcache books list")

    execute(_login())


@auth_app.command("signup")
def auth_signup(
    ctx: typer.Context,
    first_name: str = typer.Option(..., "--first-name", prompt=True, help="First name."),
    last_name: str = typer.Option(..., "--last-name", prompt=True, help="Last name."),
    birthdate: str = typer.Option(..., "--birthdate", prompt=True, help="Birthdate (YYYY-MM-DD)."),
    email: str = typer.Option(..., "--email", "-e", prompt=True, help="Account email."),
    password: str = typer.Option(
        ...,
        "--password",
        prompt=True,
        hide_input=True,
        confirmation_prompt=True,
        help="Account password.",
    ),
) -> None:
    """Register a new account."""

    async def _signup() -> None:
        form = {
            "first_name": first_name,
            "last_name": last_name,
            "birthdate": birthdate,
            "email": email,
            "password": password,
            "confirm_password": password,
        }
        async with open_runtime(ctx) as rt:
            require_success(await rt.auth.signup(form))
        success(f"Account created for {email}.")
        suggest("Log in: shelfcache auth login")

    execute(_signup())


@auth_app.command("logout")
def auth_logout(ctx: typer.Context) -> None:
    """Forget the stored session."""
    store = SessionStore()
    if store.load() is None:
        info("Not logged in.")
        return
    store.clear()
    success("Logged out.")


@auth_app.command("profile")
def auth_profile(ctx: typer.Context) -> None:
    """Show the active user."""

    async def _profile() -> None:
        async with open_runtime(ctx) as rt:
            user = require_data(await rt.auth.active_user().settled())
        if user is None:
            info("Not logged in.")
            suggest("Log in: shelfcache auth login")
            return
        format_response(user.model_dump(mode="json", exclude_none=True))

    execute(_profile())
