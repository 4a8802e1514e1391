"""Background refresh scheduling for the signed-in session.

The scheduler is an asyncio task on the application's event loop that
wakes every ``interval`` seconds, checks how old the session is, and
asks for a refresh once it is older than the staleness threshold.
Every tick runs inside an error boundary: a failing refresh is logged
and the timer keeps running.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import contextlib
import logging
import time

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .types import Session


logger = logging.getLogger("ruleauth.auth")


def check_refresh_timing(interval: float, staleness_threshold: float, token_lifetime: float) -> None:
    """Validate that a stale session is always caught before its token expires.

    The timer phase is independent of when the session was stored, so a
    session first looks stale at an age of up to
    ``staleness_threshold + interval``. One more interval must fit before
    ``token_lifetime`` so that a failed refresh is retried once.

    Raises
    ------
    ValueError
        If the three values do not satisfy
        ``interval <= staleness_threshold`` and
        ``staleness_threshold + 2 * interval <= token_lifetime``.
    """
    if interval <= 0:
        msg = f"interval must be positive, got {interval}"
        raise ValueError(msg)
    if interval > staleness_threshold:
        msg = f"interval ({interval}s) must not exceed the staleness threshold ({staleness_threshold}s)"
        raise ValueError(msg)
    if staleness_threshold + 2 * interval > token_lifetime:
        msg = (
            f"staleness threshold ({staleness_threshold}s) plus two intervals ({interval}s) "
            f"must fit within the token lifetime ({token_lifetime}s)"
        )
        raise ValueError(msg)


class BackgroundRefreshScheduler:
    """Periodic staleness check that triggers session refresh.

    Parameters
    ----------
    session_source : callable
        Returns the current in-memory session, or None.
    refresh : callable
        Coroutine function performing the refresh. Called at most once
        per tick, only for a stale session.
    interval : float
        Seconds between ticks.
    staleness_threshold : float
        Session age (seconds) beyond which a refresh is requested.
        Must be at least ``interval``.
    clock : callable, optional
        Time source returning Unix seconds (default ``time.time``).
    """

    def __init__(
        self,
        session_source: Callable[[], Session | None],
        refresh: Callable[[], Awaitable[object]],
        interval: float,
        staleness_threshold: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the scheduler (not started)."""
        if interval <= 0:
            msg = f"interval must be positive, got {interval}"
            raise ValueError(msg)
        if interval > staleness_threshold:
            msg = (
                f"interval ({interval}s) must not exceed the staleness "
                f"threshold ({staleness_threshold}s)"
            )
            raise ValueError(msg)
        self._session_source = session_source
        self._refresh = refresh
        self.interval = interval
        self.staleness_threshold = staleness_threshold
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._inflight: asyncio.Future[None] | None = None

    @property
    def is_running(self) -> bool:
        """Whether a timer is currently armed."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Arm the periodic timer, replacing any existing one.

        Must be called from a running event loop.
        """
        self.stop()
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="ruleauth-refresh-scheduler"
        )
        logger.debug("Refresh scheduler armed (every %.0fs)", self.interval)

    def stop(self) -> None:
        """Cancel the timer if armed. Safe to call repeatedly."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            logger.debug("Refresh scheduler stopped")

    async def aclose(self) -> None:
        """Stop and wait for the timer task to finish cancelling."""
        task = self._task
        self.stop()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Refresh scheduler tick failed")

    async def tick(self) -> bool:
        """Run one staleness check.

        Returns
        -------
        bool
            True if a refresh was attempted.
        """
        session = self._session_source()
        if session is None:
            return False
        age = self._clock() - session.stored_at
        if age <= self.staleness_threshold:
            logger.debug("Session age %.0fs within threshold, no refresh", age)
            return False
        logger.info("Session age %.0fs exceeds threshold, refreshing", age)
        # stop() must not abort a refresh already talking to the provider
        self._inflight = asyncio.ensure_future(self._guarded_refresh())
        await asyncio.shield(self._inflight)
        return True

    async def _guarded_refresh(self) -> None:
        try:
            await self._refresh()
        except Exception:
            logger.exception("Background session refresh failed")
