"""Auth state change notifications.

Dependents (catalog caches, UI trees) register a listener and are
called with the new ``AuthSnapshot`` on every transition between
authenticated and unauthenticated. Listeners may be sync or async.
"""

from __future__ import annotations

import inspect
import logging

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from .types import AuthSnapshot


logger = logging.getLogger("ruleauth.auth")

AuthListener = Callable[["AuthSnapshot"], None] | Callable[["AuthSnapshot"], Awaitable[None]]


class AuthStateListeners:
    """Ordered observer list for auth transitions."""

    def __init__(self) -> None:
        """Initialize an empty listener list."""
        self._listeners: list[AuthListener] = []

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register ``listener``.

        Returns
        -------
        callable
            A function that unsubscribes the listener.
        """
        if listener not in self._listeners:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(listener)

        return _unsubscribe

    def unsubscribe(self, listener: AuthListener) -> bool:
        """Remove ``listener``. Returns False if it was not registered."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def clear(self) -> None:
        """Remove every listener."""
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)

    async def publish(self, snapshot: AuthSnapshot) -> None:
        """Deliver ``snapshot`` to every listener in registration order.

        A failing listener is logged and does not stop delivery.
        """
        for listener in list(self._listeners):
            try:
                result = listener(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Auth state listener %r failed", getattr(listener, "__name__", listener)
                )
