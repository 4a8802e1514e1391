"""Tests for the AuthApp composition root."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from ruleauth.app import AuthApp, resolve_callback_uri
from ruleauth.config import RuleAuthSettings
from ruleauth.providers import SupabaseProvider
from ruleauth.store import MemorySessionStore


class TestResolveCallbackUri:
    """Tests for callback URI resolution."""

    def test_editor_default(self) -> None:
        """Scheme, extension id and path build the default URI."""
        settings = RuleAuthSettings()
        assert resolve_callback_uri(settings) == "vscode://codingrules-ai.ruleauth/auth/callback"

    def test_explicit_uri_wins(self) -> None:
        """An explicit callback URI is used as-is."""
        settings = RuleAuthSettings(login={"callback_uri": "myapp://done/auth/callback"})
        assert resolve_callback_uri(settings) == "myapp://done/auth/callback"


class TestFromSettings:
    """Tests for AuthApp.from_settings wiring."""

    @pytest.mark.asyncio
    async def test_shared_components(self, mock_provider: MagicMock) -> None:
        """Initiator and handler share one manager and one pending slot."""
        settings = RuleAuthSettings(
            storage={"backend": "memory"},
            refresh={"interval_seconds": 60, "staleness_threshold_seconds": 120},
        )
        async with AuthApp.from_settings(settings, provider=mock_provider) as app:
            assert app.initiator.manager is app.manager
            assert app.callback_handler.manager is app.manager
            assert app.initiator.pending is app.callback_handler.pending
            assert app.manager.pending is app.initiator.pending
            assert isinstance(app.manager.store, MemorySessionStore)
            assert app.manager.scheduler.interval == 60
            assert app.manager.scheduler.staleness_threshold == 120
            assert app.initiator.callback_uri == resolve_callback_uri(settings)
        mock_provider.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_builds_supabase_provider(self) -> None:
        """Provider settings produce a Supabase adapter."""
        settings = RuleAuthSettings(
            provider={"url": "https://project.supabase.co", "anon_key": "anon"},
            storage={"backend": "memory"},
        )
        async with AuthApp.from_settings(settings) as app:
            assert isinstance(app.manager.provider, SupabaseProvider)
            assert app.manager.provider.url == "https://project.supabase.co"

    @pytest.mark.asyncio
    async def test_listener_passthrough(self, mock_provider: MagicMock) -> None:
        """on_auth_state_change reaches the manager's listeners."""
        settings = RuleAuthSettings(storage={"backend": "memory"})
        async with AuthApp.from_settings(settings, provider=mock_provider) as app:
            seen: list[bool] = []
            app.on_auth_state_change(lambda snap: seen.append(snap.is_authenticated))
            await app.manager.set_session_from_tokens("at", "rt")
            await app.refresh_current_user()
            await app.sign_out()
        assert seen == [True, False]


class TestOpenProfile:
    """Tests for opening the account page."""

    @pytest.mark.asyncio
    async def test_opens_configured_url(self, mock_provider: MagicMock) -> None:
        """A signed-in user gets the configured profile page."""
        opened: list[str] = []
        settings = RuleAuthSettings(
            storage={"backend": "memory"},
            login={"profile_url": "https://rules.example.com/me"},
        )
        async with AuthApp.from_settings(
            settings, provider=mock_provider, opener=lambda url: opened.append(url) or True
        ) as app:
            await app.manager.set_session_from_tokens("at", "rt")
            result = await app.open_profile()
        assert result.success
        assert result.identity is not None
        assert opened == ["https://rules.example.com/me"]

    @pytest.mark.asyncio
    async def test_signed_out_opens_nothing(self, mock_provider: MagicMock) -> None:
        """Without a session the profile page is not opened."""
        opener = MagicMock(return_value=True)
        settings = RuleAuthSettings(storage={"backend": "memory"})
        async with AuthApp.from_settings(settings, provider=mock_provider, opener=opener) as app:
            result = await app.open_profile()
        assert not result.success
        opener.assert_not_called()

    @pytest.mark.asyncio
    async def test_blank_url_rejected(self, mock_provider: MagicMock) -> None:
        """An empty profile URL is reported instead of opening a blank page."""
        opener = MagicMock(return_value=True)
        settings = RuleAuthSettings(storage={"backend": "memory"}, login={"profile_url": ""})
        async with AuthApp.from_settings(settings, provider=mock_provider, opener=opener) as app:
            await app.manager.set_session_from_tokens("at", "rt")
            result = await app.open_profile()
        assert not result.success
        assert "profile URL" in str(result.error)
        opener.assert_not_called()

    @pytest.mark.asyncio
    async def test_browser_unavailable(self, mock_provider: MagicMock) -> None:
        """An opener reporting failure turns into a failed result."""
        settings = RuleAuthSettings(storage={"backend": "memory"})
        async with AuthApp.from_settings(
            settings, provider=mock_provider, opener=lambda _url: False
        ) as app:
            await app.manager.set_session_from_tokens("at", "rt")
            result = await app.open_profile()
        assert not result.success
        assert "No browser available" in str(result.error)
