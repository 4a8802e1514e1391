"""ruleauth exception hierarchy.

All ruleauth-specific exceptions inherit from RuleAuthException, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class RuleAuthException(Exception):
    """Base exception for all ruleauth errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize ruleauth exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (provider, operation, key, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(RuleAuthException):
    """Required configuration is missing or inconsistent."""


class StorageError(RuleAuthException):
    """Session storage operation failed.

    Raised when writing or deleting the persisted session or the
    pending login state fails. Read failures never raise; they are
    treated as "nothing stored".
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        key: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize storage error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        operation : str, optional
            The storage operation that failed ("save", "clear", ...).
        key : str, optional
            The storage key involved.
        **context : Any
            Additional context.
        """
        super().__init__(message, operation=operation, key=key, **context)
        self.operation = operation
        self.key = key


class AuthenticationError(RuleAuthException):
    """Base exception for all authentication failures.

    Raised when an authentication operation fails, including the
    redirect login flow, token validation, or session refresh.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The identity provider name.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, **context)
        self.provider = provider


class ValidationError(AuthenticationError):
    """The redirect callback failed an integrity check.

    Never carries raw token or nonce values.
    """


class InvalidStateError(ValidationError):
    """Callback ``state`` is absent or does not match the pending nonce."""


class MissingTokenError(ValidationError):
    """Callback carried a valid ``state`` but no ``access_token``."""


class ProviderError(AuthenticationError):
    """Base exception for identity provider failures."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        **context: Any,
    ) -> None:
        """Initialize provider error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The identity provider name.
        status_code : int, optional
            HTTP status returned by the provider, if any.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, status_code=status_code, **context)
        self.status_code = status_code


class ProviderRejectedError(ProviderError):
    """The provider rejected the presented tokens."""


class ProviderUnavailableError(ProviderError):
    """The provider could not be reached or failed server-side."""


class TokenRefreshError(ProviderRejectedError):
    """The provider refused the refresh token."""
