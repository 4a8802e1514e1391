"""Tests for the background refresh scheduler."""

from __future__ import annotations

import asyncio

from unittest.mock import AsyncMock

import pytest

from ruleauth.scheduler import BackgroundRefreshScheduler, check_refresh_timing
from ruleauth.types import Session

from tests.conftest import FakeClock


def _session(stored_at: float) -> Session:
    return Session(access_token="at", refresh_token="rt", user_id="u", stored_at=stored_at)


class TestSchedulerValidation:
    """Constructor argument checks."""

    def test_interval_must_be_positive(self) -> None:
        """A zero interval is rejected."""
        with pytest.raises(ValueError, match="positive"):
            BackgroundRefreshScheduler(lambda: None, AsyncMock(), interval=0, staleness_threshold=10)

    def test_interval_not_above_threshold(self) -> None:
        """An interval longer than the threshold could skip a refresh window."""
        with pytest.raises(ValueError, match="must not exceed"):
            BackgroundRefreshScheduler(lambda: None, AsyncMock(), interval=20, staleness_threshold=10)


class TestCheckRefreshTiming:
    """Timing rules shared by settings and the session manager."""

    def test_defaults_accepted(self) -> None:
        """Five minute checks fit the 50/60 minute window."""
        check_refresh_timing(300, 3000, 3600)

    def test_exact_fit_accepted(self) -> None:
        """Threshold plus two intervals may equal the lifetime."""
        check_refresh_timing(60, 600, 720)

    @pytest.mark.parametrize(
        ("interval", "threshold", "lifetime", "message"),
        [
            (0, 3000, 3600, "positive"),
            (4000, 3000, 3600, "must not exceed"),
            (1800, 3000, 3600, "plus two intervals"),
            (301, 3000, 3600, "plus two intervals"),
            (300, 3600, 3600, "plus two intervals"),
        ],
    )
    def test_rejected(self, interval: float, threshold: float, lifetime: float, message: str) -> None:
        """Timings that could let a token expire unchecked are rejected."""
        with pytest.raises(ValueError, match=message):
            check_refresh_timing(interval, threshold, lifetime)


class TestTick:
    """Tests for a single staleness check."""

    @pytest.mark.asyncio
    async def test_no_session(self) -> None:
        """Nothing happens without a session."""
        refresh = AsyncMock()
        scheduler = BackgroundRefreshScheduler(lambda: None, refresh, interval=10, staleness_threshold=50)
        assert await scheduler.tick() is False
        refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_at_threshold_not_stale(self) -> None:
        """Exactly the threshold age is still fresh."""
        clock = FakeClock(1000.0)
        refresh = AsyncMock()
        scheduler = BackgroundRefreshScheduler(
            lambda: _session(950.0), refresh, interval=10, staleness_threshold=50, clock=clock
        )
        assert await scheduler.tick() is False
        refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_refreshes_once(self) -> None:
        """One stale tick means exactly one refresh call."""
        clock = FakeClock(1000.0)
        refresh = AsyncMock()
        scheduler = BackgroundRefreshScheduler(
            lambda: _session(900.0), refresh, interval=10, staleness_threshold=50, clock=clock
        )
        assert await scheduler.tick() is True
        refresh.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_refresh_error_is_contained(self) -> None:
        """A raising refresh does not escape the tick."""
        clock = FakeClock(1000.0)
        refresh = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler = BackgroundRefreshScheduler(
            lambda: _session(0.0), refresh, interval=10, staleness_threshold=50, clock=clock
        )
        assert await scheduler.tick() is True


class TestTimer:
    """Tests for the periodic task."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        """start arms a task and stop cancels it."""
        scheduler = BackgroundRefreshScheduler(lambda: None, AsyncMock(), interval=10, staleness_threshold=50)
        scheduler.start()
        assert scheduler.is_running
        await scheduler.aclose()
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_double_start_keeps_one_timer(self) -> None:
        """A second start replaces the first timer rather than adding one."""
        scheduler = BackgroundRefreshScheduler(lambda: None, AsyncMock(), interval=10, staleness_threshold=50)
        scheduler.start()
        first = scheduler._task
        scheduler.start()
        second = scheduler._task
        await asyncio.sleep(0)

        assert first is not second
        assert first is not None
        assert first.cancelled()
        assert scheduler.is_running
        await scheduler.aclose()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self) -> None:
        """Stopping an idle scheduler is harmless."""
        scheduler = BackgroundRefreshScheduler(lambda: None, AsyncMock(), interval=10, staleness_threshold=50)
        scheduler.stop()
        scheduler.stop()
        await scheduler.aclose()
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_timer_fires_and_survives_errors(self) -> None:
        """The periodic task keeps ticking after a failing refresh."""
        calls = 0
        twice = asyncio.Event()

        async def refresh() -> None:
            nonlocal calls
            calls += 1
            if calls >= 2:
                twice.set()
            raise RuntimeError("still failing")

        scheduler = BackgroundRefreshScheduler(
            lambda: _session(0.0), refresh, interval=0.01, staleness_threshold=0.01
        )
        scheduler.start()
        try:
            await asyncio.wait_for(twice.wait(), timeout=2.0)
        finally:
            await scheduler.aclose()
        assert calls >= 2
