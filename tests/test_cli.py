"""Tests for the command-line interface."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import argparse
import asyncio

from typing import TYPE_CHECKING, Any
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse
from urllib.request import urlopen

import pytest

from ruleauth.app import AuthApp
from ruleauth.cli import handle_login, main
from ruleauth.config import RuleAuthSettings
from ruleauth.exceptions import ProviderRejectedError
from ruleauth.store import MemorySessionStore, _serialize_session

from tests.constants import HTTP_TIMEOUT


if TYPE_CHECKING:
    from collections.abc import Iterator
    from unittest.mock import MagicMock

    from ruleauth.types import Session


def _memory_settings() -> RuleAuthSettings:
    return RuleAuthSettings(storage={"backend": "memory"})


@pytest.fixture()
def cli_app(mock_provider: MagicMock) -> Iterator[tuple[MemorySessionStore, Any]]:
    """Route AuthApp.from_settings to the mock provider and a memory store."""
    store = MemorySessionStore()
    build_app = AuthApp.from_settings

    def factory(settings: RuleAuthSettings | None = None, **kwargs: Any) -> AuthApp:
        return build_app(
            settings or _memory_settings(),
            provider=mock_provider,
            store=store,
            opener=kwargs.get("opener"),
        )

    with patch.object(AuthApp, "from_settings", side_effect=factory) as patched:
        yield store, patched


def _persist(store: MemorySessionStore, session: Session) -> None:
    store._data[store.session_key] = _serialize_session(session)


class TestMain:
    """Tests for argument parsing and dispatch."""

    def test_no_args_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Without a command the usage is printed."""
        assert main([]) == 0
        output = capsys.readouterr().out
        assert "login" in output
        assert "logout" in output
        assert "status" in output

    def test_config_show(self, capsys: pytest.CaptureFixture[str]) -> None:
        """config prints the settings table."""
        assert main(["config"]) == 0
        assert "ruleauth Configuration" in capsys.readouterr().out

    def test_config_toml(self, capsys: pytest.CaptureFixture[str]) -> None:
        """config --toml prints TOML."""
        assert main(["config", "--toml"]) == 0
        assert "[refresh]" in capsys.readouterr().out

    def test_config_env(self, capsys: pytest.CaptureFixture[str]) -> None:
        """config --env prints exports."""
        assert main(["config", "--env"]) == 0
        assert "export RULEAUTH_LOGIN__LOGIN_URL=" in capsys.readouterr().out


class TestStatus:
    """Tests for the status command."""

    def test_not_authenticated(
        self, cli_app: tuple[MemorySessionStore, Any], capsys: pytest.CaptureFixture[str]
    ) -> None:
        """An empty store reports not authenticated."""
        assert main(["status"]) == 1
        assert "Not authenticated" in capsys.readouterr().out

    def test_authenticated(
        self,
        cli_app: tuple[MemorySessionStore, Any],
        stored_session: Session,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """A valid stored session reports the user."""
        _persist(cli_app[0], stored_session)
        assert main(["status"]) == 0
        assert "Authenticated as: user@example.com" in capsys.readouterr().out

    def test_rejected_session(
        self,
        cli_app: tuple[MemorySessionStore, Any],
        stored_session: Session,
        mock_provider: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """A stored session the provider rejects is reported and cleared."""
        _persist(cli_app[0], stored_session)
        mock_provider.exchange_token.side_effect = ProviderRejectedError("expired")

        assert main(["status"]) == 1

        captured = capsys.readouterr()
        assert "no longer valid" in captured.err
        assert cli_app[0].keys() == []


class TestLogout:
    """Tests for the logout command."""

    def test_logout(
        self,
        cli_app: tuple[MemorySessionStore, Any],
        stored_session: Session,
        mock_provider: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Logout clears the store and revokes remotely."""
        _persist(cli_app[0], stored_session)

        assert main(["logout"]) == 0

        assert "Successfully logged out." in capsys.readouterr().out
        assert cli_app[0].keys() == []
        mock_provider.revoke.assert_awaited_once()

    def test_not_logged_in(
        self,
        cli_app: tuple[MemorySessionStore, Any],
        mock_provider: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Logging out with nothing stored is a no-op."""
        assert main(["logout"]) == 0
        assert "not logged in" in capsys.readouterr().out
        mock_provider.revoke.assert_not_awaited()


class TestLogin:
    """Tests for the login command."""

    def test_already_logged_in(
        self,
        cli_app: tuple[MemorySessionStore, Any],
        stored_session: Session,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """login with a valid stored session does not start a new flow."""
        _persist(cli_app[0], stored_session)
        assert main(["login", "--no-browser"]) == 0
        output = capsys.readouterr().out
        assert "already logged in as user@example.com" in output
        assert "Open this URL" not in output

    @pytest.mark.asyncio
    async def test_browser_round_trip(
        self, mock_provider: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """The browser lands on the loopback server and the CLI completes."""

        async def fake_browser(url: str) -> bool:
            query = parse_qs(urlparse(url).query)
            redirect, state = query["redirect"][0], query["state"][0]
            target = f"{redirect}?access_token=at_cb&refresh_token=rt_cb&state={state}"

            def visit() -> int:
                with urlopen(target, timeout=HTTP_TIMEOUT) as resp:
                    return resp.status

            assert await asyncio.to_thread(visit) == 200
            return True

        app = AuthApp.from_settings(
            _memory_settings(), provider=mock_provider, store=MemorySessionStore(), opener=fake_browser
        )
        args = argparse.Namespace(port=0, timeout=HTTP_TIMEOUT)
        async with app:
            assert await handle_login(app, args) == 0
            assert app.is_authenticated

        assert "Successfully logged in as user@example.com" in capsys.readouterr().out
        mock_provider.exchange_token.assert_awaited_once_with("at_cb", "rt_cb")

    @pytest.mark.asyncio
    async def test_timeout(self, mock_provider: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
        """Without a callback the login times out."""
        app = AuthApp.from_settings(
            _memory_settings(), provider=mock_provider, store=MemorySessionStore(), opener=lambda _url: True
        )
        args = argparse.Namespace(port=0, timeout=0.05)
        async with app:
            assert await handle_login(app, args) == 1
        assert "timed out" in capsys.readouterr().err


class TestProfile:
    """Tests for the profile command."""

    def test_prints_profile_url(
        self,
        cli_app: tuple[MemorySessionStore, Any],
        stored_session: Session,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """--no-browser prints the configured account page."""
        _persist(cli_app[0], stored_session)
        assert main(["profile", "--no-browser"]) == 0
        output = capsys.readouterr().out
        assert "Open this URL in your browser" in output
        assert "https://codingrules.ai/profile" in output

    def test_requires_login(
        self, cli_app: tuple[MemorySessionStore, Any], capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Without a session nothing is opened."""
        assert main(["profile", "--no-browser"]) == 1
        output = capsys.readouterr().out
        assert "Not authenticated" in output
        assert "https://codingrules.ai/profile" not in output

    def test_already_logged_in_mentions_profile(
        self,
        cli_app: tuple[MemorySessionStore, Any],
        stored_session: Session,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """login points a signed-in user at their account page."""
        _persist(cli_app[0], stored_session)
        assert main(["login", "--no-browser"]) == 0
        assert "Manage your account at https://codingrules.ai/profile" in capsys.readouterr().out
