"""Pluggable session storage backends.

Provides the SessionStore ABC and concrete implementations for
in-memory and OS keyring persistence. Each store holds exactly two
entries: the serialized session and the single pending login state.

Reads never raise: a missing, unreadable, or undecodable entry is
reported as absent. Writes and deletes raise ``StorageError``.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import json
import logging

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from .exceptions import StorageError
from .types import PendingAuthState, Session


if TYPE_CHECKING:
    from .config import StorageSettings


logger = logging.getLogger("ruleauth.auth")

SESSION_SCHEMA_VERSION = 1
DEFAULT_SESSION_KEY = "ruleauth.authSession"
DEFAULT_PENDING_KEY = "ruleauth.authState"


def _serialize_session(session: Session) -> str:
    """Serialize a Session to the versioned JSON schema."""
    return json.dumps(
        {
            "version": SESSION_SCHEMA_VERSION,
            "access_token": session.access_token,
            "refresh_token": session.refresh_token,
            "user_id": session.user_id,
            "email": session.email,
            "stored_at": session.stored_at,
        }
    )


def _deserialize_session(data: str) -> Session | None:
    """Deserialize a Session, returning None for anything unrecognised."""
    try:
        obj = json.loads(data)
    except (TypeError, ValueError):
        return None
    if not isinstance(obj, dict) or obj.get("version") != SESSION_SCHEMA_VERSION:
        return None
    try:
        access_token = obj["access_token"]
        refresh_token = obj.get("refresh_token") or ""
        user_id = obj["user_id"]
        stored_at = float(obj["stored_at"])
    except (KeyError, TypeError, ValueError):
        return None
    if not isinstance(access_token, str) or not access_token or not isinstance(user_id, str):
        return None
    return Session(
        access_token=access_token,
        refresh_token=str(refresh_token),
        user_id=user_id,
        email=str(obj.get("email") or ""),
        stored_at=stored_at,
    )


def _serialize_pending(state: PendingAuthState) -> str:
    return json.dumps({"nonce": state.nonce, "created_at": state.created_at})


def _deserialize_pending(data: str) -> PendingAuthState | None:
    try:
        obj = json.loads(data)
        nonce = obj["nonce"]
        created_at = float(obj["created_at"])
    except (TypeError, ValueError, KeyError):
        return None
    if not isinstance(nonce, str) or not nonce:
        return None
    return PendingAuthState(nonce=nonce, created_at=created_at)


class SessionStore(ABC):
    """Abstract base class for session persistence.

    Subclasses implement the three raw primitives; the session and
    pending-state semantics live here.

    Parameters
    ----------
    session_key : str
        Key holding the serialized session.
    pending_key : str
        Key holding the pending login state.
    """

    def __init__(
        self,
        session_key: str = DEFAULT_SESSION_KEY,
        pending_key: str = DEFAULT_PENDING_KEY,
    ) -> None:
        """Initialize the store keys."""
        self.session_key = session_key
        self.pending_key = pending_key

    @abstractmethod
    async def _read(self, key: str) -> str | None:
        """Return the raw value under ``key`` or None. May raise."""

    @abstractmethod
    async def _write(self, key: str, value: str) -> None:
        """Replace the raw value under ``key``. May raise."""

    @abstractmethod
    async def _delete(self, key: str) -> None:
        """Remove ``key``. Missing keys are not an error. May raise."""

    async def _safe_read(self, key: str) -> str | None:
        try:
            return await self._read(key)
        except Exception as exc:
            logger.warning("Reading %s failed, treating as absent: %s", key, exc)
            return None

    async def _checked_write(self, key: str, value: str) -> None:
        try:
            await self._write(key, value)
        except Exception as exc:
            msg = f"Could not write {key}"
            raise StorageError(msg, operation="save", key=key) from exc

    async def _checked_delete(self, key: str) -> None:
        try:
            await self._delete(key)
        except Exception as exc:
            msg = f"Could not clear {key}"
            raise StorageError(msg, operation="clear", key=key) from exc

    async def save_session(self, session: Session) -> None:
        """Persist ``session``, fully replacing any previous value.

        Raises
        ------
        StorageError
            If the write fails.
        """
        await self._checked_write(self.session_key, _serialize_session(session))

    async def load_session(self) -> Session | None:
        """Load the persisted session.

        Returns
        -------
        Session or None
            None when nothing is stored, the read fails, or the stored
            blob does not match the current schema.
        """
        data = await self._safe_read(self.session_key)
        if data is None:
            return None
        session = _deserialize_session(data)
        if session is None:
            logger.warning("Discarding unreadable persisted session")
        return session

    async def clear_session(self) -> None:
        """Remove the persisted session."""
        await self._checked_delete(self.session_key)

    async def save_pending_state(self, state: PendingAuthState) -> None:
        """Overwrite the single pending login state."""
        await self._checked_write(self.pending_key, _serialize_pending(state))

    async def load_pending_state(self) -> PendingAuthState | None:
        """Load the pending login state, or None."""
        data = await self._safe_read(self.pending_key)
        if data is None:
            return None
        return _deserialize_pending(data)

    async def clear_pending_state(self) -> None:
        """Remove the pending login state."""
        await self._checked_delete(self.pending_key)


class MemorySessionStore(SessionStore):
    """In-memory session store for tests and ephemeral processes.

    Thread-safe via asyncio.Lock.
    """

    def __init__(
        self,
        session_key: str = DEFAULT_SESSION_KEY,
        pending_key: str = DEFAULT_PENDING_KEY,
    ) -> None:
        """Initialize the memory store."""
        super().__init__(session_key=session_key, pending_key=pending_key)
        self._data: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def _read(self, key: str) -> str | None:
        async with self._lock:
            return self._data.get(key)

    async def _write(self, key: str, value: str) -> None:
        async with self._lock:
            self._data[key] = value

    async def _delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        """Keys currently held (for inspection)."""
        return list(self._data)


class KeyringSessionStore(SessionStore):
    """OS keyring-backed session store for persistent native credentials.

    Requires the ``keyring`` package.

    Parameters
    ----------
    service_name : str
        Service name for keyring storage (default "ruleauth").
    session_key : str
        Keyring username holding the session.
    pending_key : str
        Keyring username holding the pending state.
    """

    def __init__(
        self,
        service_name: str = "ruleauth",
        session_key: str = DEFAULT_SESSION_KEY,
        pending_key: str = DEFAULT_PENDING_KEY,
    ) -> None:
        """Initialize the keyring session store."""
        try:
            import keyring as _keyring
            import keyring.errors as _keyring_errors
        except ImportError:
            msg = "Install keyring for persistent session storage: pip install keyring"
            raise ImportError(msg) from None
        super().__init__(session_key=session_key, pending_key=pending_key)
        self._service_name = service_name
        self._keyring: Any = _keyring
        self._delete_error: type[Exception] = _keyring_errors.PasswordDeleteError

    async def _run(self, func: Any, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def _read(self, key: str) -> str | None:
        return await self._run(self._keyring.get_password, self._service_name, key)  # type: ignore[no-any-return]

    async def _write(self, key: str, value: str) -> None:
        await self._run(self._keyring.set_password, self._service_name, key, value)

    async def _delete(self, key: str) -> None:
        try:
            await self._run(self._keyring.delete_password, self._service_name, key)
        except self._delete_error:
            pass  # nothing stored


def create_session_store(settings: StorageSettings) -> SessionStore:
    """Build the session store selected in configuration.

    Parameters
    ----------
    settings : StorageSettings
        Storage configuration section.

    Returns
    -------
    SessionStore
        A configured store instance.
    """
    if settings.backend == "memory":
        return MemorySessionStore(
            session_key=settings.session_key,
            pending_key=settings.pending_key,
        )
    if settings.backend == "keyring":
        return KeyringSessionStore(
            service_name=settings.service_name,
            session_key=settings.session_key,
            pending_key=settings.pending_key,
        )
    msg = f"Unknown session store backend: {settings.backend}"
    raise ValueError(msg)
