"""Composition root for the auth session lifecycle.

``AuthApp`` builds one store, provider, pending slot, session manager,
login initiator and callback handler, and hands them out by reference.
Applications create it once at startup and pass it (or its
``manager``) to everything that needs auth state.
"""

from __future__ import annotations

import time

from typing import TYPE_CHECKING, Any

from . import log
from .callback import CallbackHandler
from .config import RuleAuthSettings, get_settings
from .login import RedirectLoginInitiator, editor_callback_uri
from .pending import PendingStateSlot
from .providers import SupabaseProvider
from .session import AuthSessionManager
from .store import create_session_store


if TYPE_CHECKING:
    from collections.abc import Callable

    from .events import AuthListener
    from .providers import IdentityProvider
    from .store import SessionStore
    from .types import AuthResult, Identity


def resolve_callback_uri(settings: RuleAuthSettings) -> str:
    """Callback URI from configuration.

    An explicit ``login.callback_uri`` wins; otherwise the editor-style
    ``<scheme>://<extension_id><callback_path>`` form is used.
    """
    login = settings.login
    if login.callback_uri:
        return login.callback_uri
    return editor_callback_uri(login.callback_scheme, login.extension_id, login.callback_path)


class AuthApp:
    """Wired-up auth components sharing one session manager.

    Parameters
    ----------
    manager : AuthSessionManager
        The session owner.
    initiator : RedirectLoginInitiator
        Starts redirect logins.
    callback_handler : CallbackHandler
        Completes redirect logins.
    settings : RuleAuthSettings, optional
        Settings the components were built from.
    """

    def __init__(
        self,
        manager: AuthSessionManager,
        initiator: RedirectLoginInitiator,
        callback_handler: CallbackHandler,
        settings: RuleAuthSettings | None = None,
    ) -> None:
        """Initialize from already constructed components."""
        self.manager = manager
        self.initiator = initiator
        self.callback_handler = callback_handler
        self.settings = settings

    @classmethod
    def from_settings(
        cls,
        settings: RuleAuthSettings | None = None,
        *,
        provider: IdentityProvider | None = None,
        store: SessionStore | None = None,
        opener: Callable[[str], Any] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> AuthApp:
        """Build every component from configuration.

        Parameters
        ----------
        settings : RuleAuthSettings, optional
            Defaults to the cached global settings.
        provider : IdentityProvider, optional
            Overrides the configured Supabase provider.
        store : SessionStore, optional
            Overrides the configured storage backend.
        opener : callable, optional
            Opens the login and profile URLs (default: system browser).
        clock : callable, optional
            Time source for session ages.
        """
        settings = settings or get_settings()
        log.configure(settings.log.level, settings.log.format)

        provider = provider or SupabaseProvider.from_settings(settings.provider)
        store = store or create_session_store(settings.storage)
        pending = PendingStateSlot(store)

        manager = AuthSessionManager(
            provider=provider,
            store=store,
            refresh_interval=settings.refresh.interval_seconds,
            staleness_threshold=settings.refresh.staleness_threshold_seconds,
            token_lifetime=settings.refresh.token_lifetime_seconds,
            clock=clock,
            pending=pending,
        )
        initiator = RedirectLoginInitiator(
            manager=manager,
            pending=pending,
            login_url=settings.login.login_url,
            callback_uri=resolve_callback_uri(settings),
            opener=opener,
            profile_url=settings.login.profile_url,
        )
        handler = CallbackHandler(
            manager=manager,
            pending=pending,
            callback_path=settings.login.callback_path,
        )
        return cls(manager, initiator, handler, settings=settings)

    @property
    def is_authenticated(self) -> bool:
        """Whether a user is signed in."""
        return self.manager.is_authenticated

    @property
    def current_user(self) -> Identity | None:
        """The signed-in user, or None."""
        return self.manager.current_user

    def get_access_token(self) -> str | None:
        """Current access token, or None."""
        return self.manager.get_access_token()

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """Subscribe to auth transitions."""
        return self.manager.on_auth_state_change(listener)

    async def restore_session(self) -> AuthResult:
        """Restore and re-validate the persisted session."""
        return await self.manager.restore_session()

    async def begin_login(self, callback_uri: str | None = None) -> AuthResult:
        """Start a redirect login."""
        return await self.initiator.begin_login(callback_uri)

    async def handle_callback(self, uri: str) -> AuthResult:
        """Complete a redirect login from its callback URI."""
        return await self.callback_handler.handle_callback(uri)

    async def open_profile(self) -> AuthResult:
        """Open the signed-in user's account page in the browser."""
        return await self.initiator.open_profile()

    async def refresh_current_user(self) -> AuthResult:
        """Re-validate the signed-in user."""
        return await self.manager.refresh_current_user()

    async def sign_out(self) -> AuthResult:
        """Sign out."""
        return await self.manager.sign_out()

    async def close(self) -> None:
        """Stop background work and release network resources."""
        await self.manager.close()

    async def __aenter__(self) -> AuthApp:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
