"""ruleauth - sign-in session lifecycle for the rule catalog client.

Provides the CSRF-protected redirect login, durable session storage,
and background token refresh behind one ``AuthSessionManager``.
"""

from __future__ import annotations

from .app import AuthApp
from .callback import CallbackHandler
from .config import RuleAuthSettings, get_settings
from .events import AuthStateListeners
from .exceptions import (
    AuthenticationError,
    InvalidStateError,
    MissingTokenError,
    ProviderError,
    ProviderRejectedError,
    ProviderUnavailableError,
    RuleAuthException,
    StorageError,
    ValidationError,
)
from .login import RedirectLoginInitiator
from .nonce import generate_nonce
from .pending import PendingStateSlot
from .providers import IdentityProvider, SupabaseProvider
from .scheduler import BackgroundRefreshScheduler
from .session import AuthSessionManager
from .store import KeyringSessionStore, MemorySessionStore, SessionStore
from .types import AuthResult, AuthSnapshot, AuthState, Identity, Session


__version__ = "0.1.0"

__all__ = [
    "AuthApp",
    "AuthResult",
    "AuthSessionManager",
    "AuthSnapshot",
    "AuthState",
    "AuthStateListeners",
    "AuthenticationError",
    "BackgroundRefreshScheduler",
    "CallbackHandler",
    "Identity",
    "IdentityProvider",
    "InvalidStateError",
    "KeyringSessionStore",
    "MemorySessionStore",
    "MissingTokenError",
    "PendingStateSlot",
    "ProviderError",
    "ProviderRejectedError",
    "ProviderUnavailableError",
    "RedirectLoginInitiator",
    "RuleAuthException",
    "RuleAuthSettings",
    "Session",
    "SessionStore",
    "StorageError",
    "SupabaseProvider",
    "ValidationError",
    "generate_nonce",
    "get_settings",
]
