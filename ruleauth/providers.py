"""Identity provider abstractions.

Defines the IdentityProvider ABC consumed by the session manager and a
concrete adapter for the Supabase (GoTrue) auth REST API.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import httpx

from .exceptions import (
    ConfigurationError,
    ProviderError,
    ProviderRejectedError,
    ProviderUnavailableError,
    TokenRefreshError,
)
from .log import redact_sensitive_data
from .types import Identity, ProviderSession


if TYPE_CHECKING:
    from .config import ProviderSettings
    from .types import Session


logger = logging.getLogger("ruleauth.auth")

# Statuses meaning "these credentials are not acceptable"
_REJECTION_STATUSES = frozenset({400, 401, 403, 404, 422})


def _loggable_error_body(resp: httpx.Response) -> Any:
    """Error payload with credential-like fields redacted.

    Bodies that are not JSON are summarized by size only, since their
    fields cannot be told apart.
    """
    try:
        body = resp.json()
    except ValueError:
        return f"<{len(resp.content)} bytes>"
    return redact_sensitive_data(body)


class IdentityProvider(ABC):
    """Abstract base class for identity providers.

    Implementations translate every failure into a ``ProviderError``
    subclass: ``ProviderRejectedError`` when the provider refused the
    credentials, ``ProviderUnavailableError`` for transport problems.
    """

    @property
    def name(self) -> str:
        """Provider name used in errors and logs."""
        return self.__class__.__name__

    @abstractmethod
    async def exchange_token(self, access_token: str, refresh_token: str = "") -> ProviderSession:
        """Validate a token pair and resolve the identity it belongs to.

        Parameters
        ----------
        access_token : str
            Access token delivered by the redirect (or restored).
        refresh_token : str
            Matching refresh token, may be empty.

        Returns
        -------
        ProviderSession
            Validated tokens (possibly rotated) with ``identity`` set.
        """

    @abstractmethod
    async def refresh_token(self, refresh_token: str) -> ProviderSession:
        """Exchange a refresh token for a new access token.

        Raises
        ------
        TokenRefreshError
            If the provider refuses the refresh token.
        ProviderUnavailableError
            If the provider cannot be reached.
        """

    @abstractmethod
    async def revoke(self, session: Session) -> bool:
        """Invalidate ``session`` at the provider.

        Returns
        -------
        bool
            True if revoked, False if the provider has no revocation.
        """

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""


def _identity_from_user(user: dict[str, Any]) -> Identity:
    """Build an Identity from a GoTrue user object."""
    user_id = user.get("id")
    if not user_id:
        msg = "Provider response did not include a user id"
        raise ProviderRejectedError(msg, provider="SupabaseProvider")
    metadata = {
        k: user[k] for k in ("role", "aud", "user_metadata", "app_metadata") if k in user
    }
    return Identity(user_id=str(user_id), email=str(user.get("email") or ""), metadata=metadata)


class SupabaseProvider(IdentityProvider):
    """Supabase auth (GoTrue) REST adapter.

    Parameters
    ----------
    url : str
        Project base URL, e.g. ``https://<ref>.supabase.co``.
    anon_key : str
        Public anon key sent as ``apikey`` with every request.
    timeout : float
        HTTP timeout in seconds.
    http_client : httpx.AsyncClient, optional
        Preconfigured client (tests pass one with a mock transport).
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the Supabase provider."""
        if not url or not anon_key:
            msg = "Supabase provider needs both a URL and an anon key"
            raise ConfigurationError(msg, provider="SupabaseProvider")
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: ProviderSettings) -> SupabaseProvider:
        """Create a provider from the ``[provider]`` config section."""
        return cls(
            url=settings.url,
            anon_key=settings.anon_key,
            timeout=settings.timeout_seconds,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self, bearer: str | None = None) -> dict[str, str]:
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {bearer or self.anon_key}",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        bearer: str | None = None,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        rejected: type[ProviderError] = ProviderRejectedError,
    ) -> httpx.Response:
        """Send a request and map failures onto the provider error types."""
        client = await self._get_client()
        try:
            resp = await client.request(
                method,
                f"{self.url}{path}",
                headers=self._headers(bearer),
                params=params,
                json=json,
            )
        except httpx.HTTPError as exc:
            msg = f"Identity provider unreachable: {exc.__class__.__name__}"
            raise ProviderUnavailableError(msg, provider=self.name) from exc

        if resp.is_success:
            return resp
        logger.debug(
            "Identity provider %s %s returned %s: %s",
            method,
            path,
            resp.status_code,
            _loggable_error_body(resp),
        )
        if resp.status_code in _REJECTION_STATUSES:
            msg = f"Identity provider rejected {path}"
            raise rejected(msg, provider=self.name, status_code=resp.status_code)
        msg = f"Identity provider failed on {path}"
        raise ProviderUnavailableError(msg, provider=self.name, status_code=resp.status_code)

    @staticmethod
    def _json(resp: httpx.Response) -> dict[str, Any]:
        try:
            body = resp.json()
        except ValueError as exc:
            msg = "Identity provider returned a non-JSON body"
            raise ProviderUnavailableError(msg, provider="SupabaseProvider") from exc
        if not isinstance(body, dict):
            msg = "Identity provider returned an unexpected body"
            raise ProviderUnavailableError(msg, provider="SupabaseProvider")
        return body

    async def get_user(self, access_token: str) -> Identity:
        """Fetch the user an access token belongs to."""
        resp = await self._request("GET", "/auth/v1/user", bearer=access_token)
        return _identity_from_user(self._json(resp))

    async def exchange_token(self, access_token: str, refresh_token: str = "") -> ProviderSession:
        """Validate the access token, refreshing once if it was rejected.

        A rejected access token with a refresh token present is retried
        through the refresh grant, matching how the hosted client
        restores an expired session.
        """
        try:
            identity = await self.get_user(access_token)
        except ProviderRejectedError:
            if not refresh_token:
                raise
            logger.debug("Access token rejected, trying refresh grant")
            refreshed = await self.refresh_token(refresh_token)
            if refreshed.identity is not None:
                return refreshed
            identity = await self.get_user(refreshed.access_token)
            return ProviderSession(
                access_token=refreshed.access_token,
                refresh_token=refreshed.refresh_token,
                identity=identity,
                expires_in=refreshed.expires_in,
            )
        return ProviderSession(
            access_token=access_token,
            refresh_token=refresh_token,
            identity=identity,
        )

    async def refresh_token(self, refresh_token: str) -> ProviderSession:
        """Run the ``refresh_token`` grant."""
        if not refresh_token:
            msg = "No refresh token available"
            raise TokenRefreshError(msg, provider=self.name)
        resp = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
            rejected=TokenRefreshError,
        )
        body = self._json(resp)
        access = body.get("access_token")
        if not access:
            msg = "Refresh response did not include an access token"
            raise TokenRefreshError(msg, provider=self.name)
        user = body.get("user")
        expires_in = body.get("expires_in")
        return ProviderSession(
            access_token=str(access),
            refresh_token=str(body.get("refresh_token") or refresh_token),
            identity=_identity_from_user(user) if isinstance(user, dict) else None,
            expires_in=int(expires_in) if expires_in is not None else None,
        )

    async def revoke(self, session: Session) -> bool:
        """Sign the session out at the provider."""
        await self._request("POST", "/auth/v1/logout", bearer=session.access_token)
        return True
