"""Type definitions for the ruleauth session lifecycle.

Shared types used across the store, provider, and session manager.
"""

from __future__ import annotations

import time

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from .exceptions import RuleAuthException


@dataclass(frozen=True)
class Identity:
    """Authenticated user as reported by the identity provider.

    Attributes
    ----------
    user_id : str
        Provider-assigned user identifier.
    email : str
        Email address, empty if the provider does not expose one.
    metadata : dict[str, Any]
        Additional profile fields returned by the provider.
    """

    user_id: str
    email: str = ""
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class Session:
    """The currently trusted credential set.

    Attributes
    ----------
    access_token : str
        Bearer token for API requests.
    refresh_token : str
        Token used to obtain a new access token (may be empty).
    user_id : str
        Identifier of the signed-in user.
    email : str
        Email of the signed-in user.
    stored_at : float
        Unix timestamp when the tokens were last obtained or confirmed.
    """

    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    user_id: str
    email: str = ""
    stored_at: float = field(default_factory=time.time)

    def __repr__(self) -> str:
        """Render without token values."""
        return (
            f"Session(user_id={self.user_id!r}, email={self.email!r}, "
            f"stored_at={self.stored_at!r}, access_token=[REDACTED], "
            f"refresh_token=[REDACTED])"
        )

    @property
    def identity(self) -> Identity:
        """Identity projected from this session."""
        return Identity(user_id=self.user_id, email=self.email)

    def age(self, now: float | None = None) -> float:
        """Seconds since ``stored_at``."""
        return (time.time() if now is None else now) - self.stored_at


@dataclass(frozen=True)
class PendingAuthState:
    """Single pending CSRF nonce for an initiated redirect login.

    Attributes
    ----------
    nonce : str
        The state value embedded in the authorization URL.
    created_at : float
        Unix timestamp when the login was initiated.
    """

    nonce: str = field(repr=False)
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ProviderSession:
    """Result of a token exchange or refresh at the identity provider.

    Attributes
    ----------
    access_token : str
        The validated or newly issued access token.
    refresh_token : str
        The refresh token to keep (may be rotated by the provider).
    identity : Identity or None
        The user the tokens belong to, when the call reports it.
    expires_in : int or None
        Token lifetime in seconds, if the provider returned one.
    """

    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    identity: Identity | None = None
    expires_in: int | None = None


class AuthState(str, Enum):
    """State of the session lifecycle."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class AuthSnapshot:
    """Read-only projection of the current session.

    Attributes
    ----------
    is_authenticated : bool
        Whether a session is held in memory.
    current_user : Identity or None
        The signed-in user.
    """

    is_authenticated: bool = False
    current_user: Identity | None = None

    @property
    def state(self) -> AuthState:
        """The lifecycle state this snapshot represents."""
        return AuthState.AUTHENTICATED if self.is_authenticated else AuthState.UNAUTHENTICATED

    @classmethod
    def from_session(cls, session: Session | None) -> AuthSnapshot:
        """Derive a snapshot from a session (or its absence)."""
        if session is None:
            return cls()
        return cls(is_authenticated=True, current_user=session.identity)


@dataclass
class AuthResult:
    """Outcome of a public auth operation.

    Attributes
    ----------
    success : bool
        Whether the operation completed successfully.
    error : RuleAuthException or None
        The failure, if any.
    identity : Identity or None
        The signed-in user after the operation, when relevant.
    """

    success: bool
    error: RuleAuthException | None = None
    identity: Identity | None = None

    @classmethod
    def ok(cls, identity: Identity | None = None) -> AuthResult:
        """Successful result."""
        return cls(success=True, identity=identity)

    @classmethod
    def fail(cls, error: RuleAuthException) -> AuthResult:
        """Failed result carrying ``error``."""
        return cls(success=False, error=error)

    def __bool__(self) -> bool:
        return self.success
