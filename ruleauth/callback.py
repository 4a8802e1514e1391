"""Redirect callback handling.

Receives the inbound callback URI, proves it belongs to the login this
client started (single-use state nonce), and hands the delivered
tokens to the session manager.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlparse

from .exceptions import InvalidStateError, MissingTokenError, StorageError, ValidationError
from .types import AuthResult


if TYPE_CHECKING:
    from .pending import PendingStateSlot
    from .session import AuthSessionManager


logger = logging.getLogger("ruleauth.auth")


@dataclass(frozen=True)
class CallbackParams:
    """Query parameters of a callback URI.

    Attributes
    ----------
    path : str
        The URI path.
    access_token : str or None
        Delivered access token.
    refresh_token : str
        Delivered refresh token (empty if absent).
    state : str or None
        The echoed state nonce.
    """

    path: str
    access_token: str | None = field(default=None, repr=False)
    refresh_token: str = field(default="", repr=False)
    state: str | None = field(default=None, repr=False)


def parse_callback_uri(uri: str) -> CallbackParams:
    """Extract path, tokens and state from a callback URI.

    Only the first value of a repeated parameter is used; empty values
    are treated as absent.
    """
    parsed = urlparse(uri)
    params = parse_qs(parsed.query, keep_blank_values=True)

    def _first(name: str) -> str | None:
        values = params.get(name)
        if not values or not values[0]:
            return None
        return values[0]

    return CallbackParams(
        path=parsed.path or "/",
        access_token=_first("access_token"),
        refresh_token=_first("refresh_token") or "",
        state=_first("state"),
    )


class CallbackHandler:
    """Validates redirect callbacks and completes the login.

    Parameters
    ----------
    manager : AuthSessionManager
        Receives the validated tokens.
    pending : PendingStateSlot
        Single pending-nonce slot shared with the login initiator.
    callback_path : str
        Registered callback path; other paths are rejected.
    """

    def __init__(
        self,
        manager: AuthSessionManager,
        pending: PendingStateSlot,
        callback_path: str = "/auth/callback",
    ) -> None:
        """Initialize the callback handler."""
        self.manager = manager
        self.pending = pending
        self.callback_path = callback_path

    def matches(self, uri: str) -> bool:
        """Whether ``uri`` targets the registered callback path."""
        return urlparse(uri).path == self.callback_path

    async def handle_callback(self, uri: str) -> AuthResult:
        """Process an inbound callback URI.

        Returns
        -------
        AuthResult
            Failure with ``InvalidStateError`` for a missing or stale
            state (nothing is changed), ``MissingTokenError`` when the
            state matched but no access token came back, or the
            provider error when token validation failed.
        """
        params = parse_callback_uri(uri)
        if params.path != self.callback_path:
            logger.warning("Ignoring callback on unexpected path %s", params.path)
            return AuthResult.fail(ValidationError("Unexpected callback path", path=params.path))

        try:
            consumed = await self.pending.consume(params.state)
        except StorageError as exc:
            logger.error("Authentication failed: pending state could not be cleared: %s", exc)
            return AuthResult.fail(exc)

        if not consumed:
            logger.error("Authentication failed: invalid state parameter")
            return AuthResult.fail(InvalidStateError("Invalid state parameter"))

        if not params.access_token:
            logger.error("Authentication failed: no access token received")
            return AuthResult.fail(MissingTokenError("No access token received"))

        result = await self.manager.set_session_from_tokens(
            params.access_token, params.refresh_token
        )
        if result.success:
            logger.info("Login completed via redirect callback")
        else:
            logger.error("Error during authentication: %s", result.error)
        return result
