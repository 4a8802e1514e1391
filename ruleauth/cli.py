"""Command-line interface for ruleauth."""

from __future__ import annotations

import argparse
import asyncio
import sys

from typing import TYPE_CHECKING

from .exceptions import RuleAuthException


if TYPE_CHECKING:
    from .app import AuthApp
    from .types import AuthSnapshot


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="ruleauth",
        description="Sign in to the rule catalog and manage the stored session",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    login_parser = subparsers.add_parser("login", help="Sign in through the browser")
    login_parser.add_argument(
        "--port",
        "-p",
        type=int,
        default=0,
        help="Port for the local callback server (default: auto)",
    )
    login_parser.add_argument(
        "--timeout",
        "-t",
        type=float,
        default=None,
        help="Seconds to wait for the browser login (uses config default)",
    )
    login_parser.add_argument(
        "--no-browser",
        action="store_true",
        help="Print the login URL instead of opening a browser",
    )

    subparsers.add_parser("logout", help="Sign out and forget the stored session")
    subparsers.add_parser("status", help="Show the signed-in user")

    profile_parser = subparsers.add_parser("profile", help="Open your account page")
    profile_parser.add_argument(
        "--no-browser",
        action="store_true",
        help="Print the profile URL instead of opening a browser",
    )

    config_parser = subparsers.add_parser("config", help="Show or export configuration")
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument("--show", action="store_true", help="Show current configuration")
    config_group.add_argument("--toml", action="store_true", help="Export configuration as TOML")
    config_group.add_argument(
        "--env", action="store_true", help="Export configuration as environment variables"
    )

    args = parser.parse_args(argv)

    if args.debug:
        from . import log

        log.enable_debug()

    if args.command == "config":
        return handle_config(args)
    if args.command in {"login", "logout", "status", "profile"}:
        try:
            return asyncio.run(_run_command(args))
        except RuleAuthException as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        except KeyboardInterrupt:
            print("\nCancelled.")
            return 130
    parser.print_help()
    return 0


def handle_config(args: argparse.Namespace) -> int:
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    from .config import RuleAuthSettings

    settings = RuleAuthSettings()
    if args.toml:
        print(settings.to_toml())
    elif args.env:
        print(settings.to_env())
    else:
        print(settings.show())
    return 0


async def _run_command(args: argparse.Namespace) -> int:
    from .app import AuthApp

    app = AuthApp.from_settings(opener=_print_url if getattr(args, "no_browser", False) else None)
    async with app:
        if args.command == "login":
            return await handle_login(app, args)
        if args.command == "logout":
            return await handle_logout(app)
        if args.command == "profile":
            return await handle_profile(app)
        return await handle_status(app)


def _print_url(url: str) -> bool:
    print(f"Open this URL in your browser:\n  {url}")
    return True


async def handle_login(app: AuthApp, args: argparse.Namespace) -> int:
    """Sign in through the browser and a local callback server.

    Returns
    -------
    int
        0 once signed in, 1 on failure or timeout.
    """
    from .callback_server import CallbackServer

    await app.restore_session()
    if app.is_authenticated:
        user = app.current_user
        print(f"You are already logged in as {user.email if user else 'unknown user'}.")
        print("Run 'ruleauth logout' to sign in as someone else.")
        if app.initiator.profile_url:
            print(f"Manage your account at {app.initiator.profile_url}")
        return 0

    signed_in = asyncio.Event()

    def _on_change(snapshot: AuthSnapshot) -> None:
        if snapshot.is_authenticated:
            signed_in.set()

    unsubscribe = app.on_auth_state_change(_on_change)
    server = CallbackServer(
        app.callback_handler,
        asyncio.get_running_loop(),
        port=args.port,
    )
    redirect_uri = server.start()
    try:
        started = await app.begin_login(redirect_uri)
        if not started.success:
            print(f"Login failed: {started.error}", file=sys.stderr)
            return 1
        print("Waiting for the browser login to complete...")

        timeout = args.timeout
        if timeout is None and app.settings is not None:
            timeout = app.settings.login.timeout_seconds
        try:
            await asyncio.wait_for(signed_in.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            print("Login timed out.", file=sys.stderr)
            return 1
    finally:
        unsubscribe()
        await server.aclose()

    user = app.current_user
    print(f"Successfully logged in as {user.email if user else 'unknown user'}")
    return 0


async def handle_logout(app: AuthApp) -> int:
    """Sign out.

    Returns
    -------
    int
        Exit code.
    """
    await app.restore_session()
    if not app.is_authenticated:
        print("You are not logged in.")
        return 0
    result = await app.sign_out()
    if not result.success:
        print(f"Logout failed: {result.error}", file=sys.stderr)
        return 1
    print("Successfully logged out.")
    return 0


async def handle_status(app: AuthApp) -> int:
    """Print the signed-in user.

    Returns
    -------
    int
        0 when authenticated, 1 otherwise.
    """
    result = await app.restore_session()
    if app.is_authenticated and app.current_user is not None:
        print(f"Authenticated as: {app.current_user.email or app.current_user.user_id}")
        return 0
    if result.error is not None:
        print(f"Stored session is no longer valid: {result.error}", file=sys.stderr)
    print("Not authenticated. Run 'ruleauth login' to sign in.")
    return 1


async def handle_profile(app: AuthApp) -> int:
    """Open the account page of the signed-in user.

    Returns
    -------
    int
        0 once the page was opened, 1 otherwise.
    """
    await app.restore_session()
    if not app.is_authenticated:
        print("Not authenticated. Run 'ruleauth login' to sign in.")
        return 1
    result = await app.open_profile()
    if not result.success:
        print(f"Could not open profile: {result.error}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
