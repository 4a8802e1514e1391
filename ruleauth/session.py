"""Authentication session manager.

Owns the in-memory session, persists it through a SessionStore,
validates and refreshes it against an IdentityProvider, and runs the
background refresh scheduler while a user is signed in.

All mutations of the session go through one ``asyncio.Lock`` and bump
a generation counter. Provider calls happen outside the lock; when one
completes, its result is applied only if the generation it started
from is still current, so a refresh that finishes after ``sign_out``
cannot bring the session back.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import time

from typing import TYPE_CHECKING

from .events import AuthStateListeners
from .exceptions import (
    AuthenticationError,
    ProviderError,
    ProviderRejectedError,
    StorageError,
)
from .pending import PendingStateSlot
from .scheduler import BackgroundRefreshScheduler, check_refresh_timing
from .types import AuthResult, AuthSnapshot, AuthState, Identity, Session


if TYPE_CHECKING:
    from collections.abc import Callable

    from .events import AuthListener
    from .providers import IdentityProvider
    from .store import SessionStore
    from .types import ProviderSession


logger = logging.getLogger("ruleauth.auth")


class AuthSessionManager:
    """Manages the signed-in session and its lifecycle.

    Parameters
    ----------
    provider : IdentityProvider
        Identity provider used to validate, refresh, and revoke tokens.
    store : SessionStore
        Durable storage for the session.
    refresh_interval : float
        Seconds between background staleness checks (default 5 min).
    staleness_threshold : float
        Session age that triggers a background refresh (default 50 min).
    token_lifetime : float
        Hard token lifetime. A background refresh that keeps failing
        forces a logout only once the session is older than this
        (default 60 min).
    clock : callable, optional
        Time source returning Unix seconds.
    listeners : AuthStateListeners, optional
        Observer list notified on every auth transition.
    pending : PendingStateSlot, optional
        Slot guarding the pending login nonce. Pass the slot shared with
        the login initiator and callback handler so sign-out clears the
        nonce under the same lock. Defaults to a slot over ``store``.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        store: SessionStore,
        refresh_interval: float = 5 * 60,
        staleness_threshold: float = 50 * 60,
        token_lifetime: float = 60 * 60,
        clock: Callable[[], float] = time.time,
        listeners: AuthStateListeners | None = None,
        pending: PendingStateSlot | None = None,
    ) -> None:
        """Initialize the session manager (unauthenticated)."""
        check_refresh_timing(refresh_interval, staleness_threshold, token_lifetime)
        self.provider = provider
        self.store = store
        self.pending = pending or PendingStateSlot(store)
        self.token_lifetime = token_lifetime
        self.listeners = listeners or AuthStateListeners()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._session: Session | None = None
        self._generation = 0
        self.scheduler = BackgroundRefreshScheduler(
            session_source=lambda: self._session,
            refresh=self._background_refresh,
            interval=refresh_interval,
            staleness_threshold=staleness_threshold,
            clock=clock,
        )

    # ── Read-only accessors ─────────────────────────────────────────

    @property
    def is_authenticated(self) -> bool:
        """True iff a session is held in memory."""
        return self._session is not None

    @property
    def current_user(self) -> Identity | None:
        """The signed-in user, or None."""
        return self._session.identity if self._session is not None else None

    @property
    def snapshot(self) -> AuthSnapshot:
        """Read-only projection of the current session."""
        return AuthSnapshot.from_session(self._session)

    @property
    def state(self) -> AuthState:
        """Current lifecycle state."""
        return self.snapshot.state

    def get_access_token(self) -> str | None:
        """Current access token, or None. Never performs I/O."""
        return self._session.access_token if self._session is not None else None

    def get_authorization_headers(self) -> dict[str, str]:
        """Bearer header for the current session, or an empty dict."""
        token = self.get_access_token()
        return {"Authorization": f"Bearer {token}"} if token else {}

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """Subscribe to auth transitions. Returns an unsubscribe function."""
        return self.listeners.subscribe(listener)

    # ── Internal state transitions ──────────────────────────────────

    async def _commit(
        self,
        provider_session: ProviderSession,
        expected_generation: int | None,
        stored_at_floor: float = 0.0,
    ) -> Session | None:
        """Install a validated session, persist it, and arm the scheduler.

        Returns None (and changes nothing) when ``expected_generation``
        is given and no longer current.
        """
        async with self._lock:
            if expected_generation is not None and expected_generation != self._generation:
                logger.info("Discarding provider result for a superseded session")
                return None
            previous = self._session
            identity = provider_session.identity
            if identity is None and previous is not None:
                identity = previous.identity
            if identity is None:
                msg = "Provider did not identify the session owner"
                raise ProviderRejectedError(msg, provider=self.provider.name)
            session = Session(
                access_token=provider_session.access_token,
                refresh_token=provider_session.refresh_token,
                user_id=identity.user_id,
                email=identity.email,
                stored_at=max(self._clock(), stored_at_floor),
            )
            self._session = session
            self._generation += 1
            try:
                await self.store.save_session(session)
            except StorageError as exc:
                logger.warning("Session kept in memory only: %s", exc)
            if not self.scheduler.is_running:
                self.scheduler.start()

        if previous is None or previous.user_id != session.user_id:
            await self.listeners.publish(self.snapshot)
        return session

    async def _clear(self, expected_generation: int | None = None) -> StorageError | None:
        """Drop the session everywhere and stop the scheduler.

        Returns the storage failure, if clearing persisted state failed.
        """
        async with self._lock:
            if expected_generation is not None and expected_generation != self._generation:
                return None
            had_session = self._session is not None
            self._session = None
            self._generation += 1
            self.scheduler.stop()
            storage_error: StorageError | None = None
            try:
                await self.store.clear_session()
            except StorageError as exc:
                logger.warning("Persisted session could not be cleared: %s", exc)
                storage_error = exc
            try:
                await self.pending.clear()
            except StorageError as exc:
                logger.warning("Pending login state could not be cleared: %s", exc)
                storage_error = storage_error or exc

        if had_session:
            await self.listeners.publish(self.snapshot)
        return storage_error

    # ── Public operations ───────────────────────────────────────────

    async def set_session_from_tokens(self, access_token: str, refresh_token: str = "") -> AuthResult:
        """Validate tokens delivered by the redirect and sign in.

        A provider failure leaves any existing session untouched.
        """
        try:
            provider_session = await self.provider.exchange_token(access_token, refresh_token)
            session = await self._commit(provider_session, expected_generation=None)
        except ProviderError as exc:
            logger.warning("Token validation failed: %s", exc)
            return AuthResult.fail(exc)
        if session is None:
            return AuthResult.fail(AuthenticationError("Session superseded"))
        logger.info("Session established for user %s", session.user_id)
        return AuthResult.ok(session.identity)

    async def refresh_current_user(self) -> AuthResult:
        """Re-validate the session with the provider.

        On success the identity and ``stored_at`` are updated. On any
        provider failure the session is cleared (forced logout).
        """
        session, generation = self._session, self._generation
        if session is None:
            return AuthResult.fail(AuthenticationError("Not authenticated"))

        try:
            provider_session = await self.provider.exchange_token(
                session.access_token, session.refresh_token
            )
            committed = await self._commit(
                provider_session,
                expected_generation=generation,
                stored_at_floor=session.stored_at,
            )
        except ProviderError as exc:
            logger.warning("Session re-validation failed, signing out: %s", exc)
            await self._clear(expected_generation=generation)
            return AuthResult.fail(exc)

        if committed is None:
            return AuthResult.fail(AuthenticationError("Session changed during refresh"))
        logger.debug("Current user refreshed")
        return AuthResult.ok(committed.identity)

    async def restore_session(self) -> AuthResult:
        """Load the persisted session at startup and re-validate it.

        A persisted session the provider no longer accepts is cleared
        from storage, leaving the manager fully unauthenticated.
        """
        persisted = await self.store.load_session()
        if persisted is None:
            logger.debug("No saved session found")
            return AuthResult.ok()

        generation = self._generation
        logger.debug("Found saved session, attempting to restore")
        try:
            provider_session = await self.provider.exchange_token(
                persisted.access_token, persisted.refresh_token
            )
            committed = await self._commit(
                provider_session,
                expected_generation=generation,
                stored_at_floor=persisted.stored_at,
            )
        except ProviderError as exc:
            logger.warning("Saved session rejected, clearing it: %s", exc)
            await self._clear(expected_generation=generation)
            return AuthResult.fail(exc)

        if committed is None:
            return AuthResult.ok(self.current_user)
        logger.info("Session restored for user %s", committed.user_id)
        return AuthResult.ok(committed.identity)

    async def sign_out(self) -> AuthResult:
        """Sign out locally and, best effort, at the provider.

        Calling this while unauthenticated is a successful no-op that
        touches neither storage nor the provider.
        """
        session = self._session
        if session is None:
            return AuthResult.ok()

        storage_error = await self._clear()
        try:
            await self.provider.revoke(session)
        except ProviderError as exc:
            logger.warning("Remote sign-out failed: %s", exc)

        logger.info("User signed out")
        if storage_error is not None:
            return AuthResult.fail(storage_error)
        return AuthResult.ok()

    async def _background_refresh(self) -> None:
        """Refresh tokens for a stale session (scheduler tick body).

        Failures keep the session for the next tick until it is older
        than the hard token lifetime.
        """
        session, generation = self._session, self._generation
        if session is None:
            return
        try:
            provider_session = await self.provider.refresh_token(session.refresh_token)
        except ProviderError as exc:
            age = session.age(self._clock())
            if age > self.token_lifetime:
                logger.warning(
                    "Background refresh failed past token lifetime (%.0fs), signing out: %s",
                    age,
                    exc,
                )
                await self._clear(expected_generation=generation)
            else:
                logger.warning("Background refresh failed, retrying next tick: %s", exc)
            return

        committed = await self._commit(
            provider_session,
            expected_generation=generation,
            stored_at_floor=session.stored_at,
        )
        if committed is not None:
            logger.info("Session refreshed in background")

    async def close(self) -> None:
        """Stop background work and release provider resources."""
        await self.scheduler.aclose()
        await self.provider.close()
