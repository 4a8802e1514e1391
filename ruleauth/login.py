"""Redirect login initiation.

Builds the external login URL carrying the callback URI and a fresh
CSRF nonce, records the nonce as the single pending state, and hands
the URL to an external opener (the system browser by default). The
flow resumes later, if ever, in ``CallbackHandler``.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import inspect
import logging
import webbrowser

from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from .exceptions import AuthenticationError, StorageError
from .log import redact_token
from .nonce import generate_nonce
from .types import AuthResult


if TYPE_CHECKING:
    from collections.abc import Callable

    from .pending import PendingStateSlot
    from .session import AuthSessionManager


logger = logging.getLogger("ruleauth.auth")


def editor_callback_uri(scheme: str, extension_id: str, path: str = "/auth/callback") -> str:
    """Build ``<scheme>://<extension_id><path>``.

    Parameters
    ----------
    scheme : str
        URI scheme of the receiving host, with or without ``://``.
    extension_id : str
        Authority part identifying the receiving extension or app.
    path : str
        Callback path (default ``/auth/callback``).
    """
    scheme = scheme.removesuffix("://") or "vscode"
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{scheme}://{extension_id}{path}"


def build_authorization_url(login_url: str, callback_uri: str, state: str) -> str:
    """Build ``<login_url>?redirect=<callback>&state=<nonce>``.

    Both values are fully percent-encoded.
    """
    separator = "&" if "?" in login_url else "?"
    return (
        f"{login_url}{separator}redirect={quote(callback_uri, safe='')}"
        f"&state={quote(state, safe='')}"
    )


def _open_in_browser(url: str) -> bool:
    return webbrowser.open(url)


class RedirectLoginInitiator:
    """Starts the external redirect login.

    Parameters
    ----------
    manager : AuthSessionManager
        Consulted to short-circuit when already signed in.
    pending : PendingStateSlot
        Single pending-nonce slot shared with the callback handler.
    login_url : str
        External login page.
    callback_uri : str
        URI the login page redirects back to.
    opener : callable, optional
        ``opener(url)``, sync or async; defaults to the system browser.
    nonce_factory : callable, optional
        Nonce source (default ``generate_nonce``).
    profile_url : str, optional
        Account page opened by ``open_profile``.
    """

    def __init__(
        self,
        manager: AuthSessionManager,
        pending: PendingStateSlot,
        login_url: str,
        callback_uri: str,
        opener: Callable[[str], Any] | None = None,
        nonce_factory: Callable[[], str] = generate_nonce,
        profile_url: str = "",
    ) -> None:
        """Initialize the initiator."""
        self.manager = manager
        self.pending = pending
        self.login_url = login_url
        self.callback_uri = callback_uri
        self.opener = opener or _open_in_browser
        self.nonce_factory = nonce_factory
        self.profile_url = profile_url

    async def begin_login(self, callback_uri: str | None = None) -> AuthResult:
        """Open the external login page for a new login attempt.

        Parameters
        ----------
        callback_uri : str, optional
            Overrides the configured callback URI for this attempt.

        Returns
        -------
        AuthResult
            Success once the page was handed to the opener (or when
            already signed in). Failure when the nonce could not be
            stored, in which case nothing was opened.
        """
        if self.manager.is_authenticated:
            logger.info("Already signed in, not starting a new login")
            return AuthResult.ok(self.manager.current_user)

        nonce = self.nonce_factory()
        try:
            await self.pending.replace(nonce)
        except StorageError as exc:
            logger.error("Login not started, pending state could not be stored: %s", exc)
            return AuthResult.fail(exc)

        url = build_authorization_url(self.login_url, callback_uri or self.callback_uri, nonce)
        logger.debug("Opening login page with state %s", redact_token(nonce))
        error = await self._open(url, "login page")
        if error is not None:
            return AuthResult.fail(error)
        return AuthResult.ok()

    async def open_profile(self) -> AuthResult:
        """Open the signed-in user's account page.

        Returns
        -------
        AuthResult
            Success with the current identity once the page was handed
            to the opener. Failure when nobody is signed in, no profile
            URL is configured, or the page could not be opened.
        """
        if not self.manager.is_authenticated:
            return AuthResult.fail(AuthenticationError("Not authenticated"))
        if not self.profile_url:
            return AuthResult.fail(AuthenticationError("No profile URL configured"))
        logger.debug("Opening profile page %s", self.profile_url)
        error = await self._open(self.profile_url, "profile page")
        if error is not None:
            return AuthResult.fail(error)
        return AuthResult.ok(self.manager.current_user)

    async def _open(self, url: str, what: str) -> AuthenticationError | None:
        try:
            opened = self.opener(url)
            if inspect.isawaitable(opened):
                opened = await opened
        except Exception as exc:
            logger.exception("Opening the %s failed", what)
            return AuthenticationError(f"Could not open {what}: {exc}")
        if opened is False:
            return AuthenticationError(f"No browser available to open the {what}")
        return None
