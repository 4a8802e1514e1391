"""Single-slot holder for the pending CSRF nonce.

Only the login initiator writes the slot and only the callback handler
consumes it. Both go through one ``asyncio.Lock`` so that comparing a
callback's state with the stored nonce and clearing the nonce happen
as one step: no other callback or login initiation can interleave at
the storage awaits in between.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import time

from typing import TYPE_CHECKING

from .log import redact_token
from .nonce import nonces_match
from .types import PendingAuthState


if TYPE_CHECKING:
    from .store import SessionStore


logger = logging.getLogger("ruleauth.auth")


class PendingStateSlot:
    """Atomic replace/consume access to the store's pending state.

    Parameters
    ----------
    store : SessionStore
        The store holding the pending entry.
    """

    def __init__(self, store: SessionStore) -> None:
        """Initialize the slot."""
        self.store = store
        self._lock = asyncio.Lock()

    async def replace(self, nonce: str) -> PendingAuthState:
        """Make ``nonce`` the only valid pending state.

        Any previously pending nonce becomes unusable immediately.

        Raises
        ------
        StorageError
            If the new state cannot be persisted.
        """
        state = PendingAuthState(nonce=nonce, created_at=time.time())
        async with self._lock:
            await self.store.save_pending_state(state)
        logger.debug("Pending login state set (%s)", redact_token(nonce))
        return state

    async def consume(self, received: str | None) -> bool:
        """Validate ``received`` against the pending nonce and clear it on match.

        On mismatch nothing is cleared, so the legitimate redirect can
        still complete.

        Returns
        -------
        bool
            True if ``received`` matched and the nonce was consumed.

        Raises
        ------
        StorageError
            If the matched nonce could not be cleared. The callback
            must then be rejected, since the nonce is still usable.
        """
        async with self._lock:
            pending = await self.store.load_pending_state()
            expected = pending.nonce if pending is not None else None
            if not nonces_match(expected, received):
                return False
            await self.store.clear_pending_state()
        return True

    async def peek(self) -> PendingAuthState | None:
        """Current pending state, without consuming it."""
        async with self._lock:
            return await self.store.load_pending_state()

    async def clear(self) -> None:
        """Drop any pending nonce so no in-flight redirect can complete.

        Raises
        ------
        StorageError
            If the pending entry could not be removed.
        """
        async with self._lock:
            await self.store.clear_pending_state()
