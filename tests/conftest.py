"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import os
import time

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from ruleauth.config import clear_settings
from ruleauth.pending import PendingStateSlot
from ruleauth.session import AuthSessionManager
from ruleauth.store import MemorySessionStore
from ruleauth.types import Identity, ProviderSession, Session

from tests.constants import INTERVAL, STALENESS, TOKEN_LIFETIME


if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator
    from pathlib import Path


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float | None = None) -> None:
        self.now = time.time() if now is None else now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


USER = Identity(user_id="user-1", email="user@example.com")


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Keep local config files and RULEAUTH_* variables out of tests."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("APPDATA", str(tmp_path))

    for name in list(os.environ):
        if name.startswith("RULEAUTH_"):
            monkeypatch.delenv(name, raising=False)
    clear_settings()
    yield
    clear_settings()


@pytest.fixture()
def clock() -> FakeClock:
    """A controllable clock."""
    return FakeClock()


@pytest.fixture()
def mock_provider() -> MagicMock:
    """Create a mock identity provider."""
    provider = MagicMock()
    provider.name = "MockProvider"
    provider.exchange_token = AsyncMock(
        return_value=ProviderSession(
            access_token="at_valid",
            refresh_token="rt_valid",
            identity=USER,
        )
    )
    provider.refresh_token = AsyncMock(
        return_value=ProviderSession(
            access_token="at_refreshed",
            refresh_token="rt_new",
            identity=USER,
            expires_in=3600,
        )
    )
    provider.revoke = AsyncMock(return_value=True)
    provider.close = AsyncMock()
    return provider


@pytest.fixture()
def store() -> MemorySessionStore:
    """Create a memory session store."""
    return MemorySessionStore()


@pytest.fixture()
def pending(store: MemorySessionStore) -> PendingStateSlot:
    """Pending-nonce slot over the memory store."""
    return PendingStateSlot(store)


@pytest.fixture()
def stored_session(clock: FakeClock) -> Session:
    """A session as it would be persisted after a login."""
    return Session(
        access_token="at_stored",
        refresh_token="rt_stored",
        user_id=USER.user_id,
        email=USER.email,
        stored_at=clock.now,
    )


@pytest_asyncio.fixture()
async def manager(
    mock_provider: MagicMock,
    store: MemorySessionStore,
    pending: PendingStateSlot,
    clock: FakeClock,
) -> AsyncIterator[AuthSessionManager]:
    """Session manager wired to the mock provider and memory store."""
    mgr = AuthSessionManager(
        provider=mock_provider,
        store=store,
        refresh_interval=INTERVAL,
        staleness_threshold=STALENESS,
        token_lifetime=TOKEN_LIFETIME,
        clock=clock,
        pending=pending,
    )
    yield mgr
    await mgr.scheduler.aclose()
