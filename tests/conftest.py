"""Shared test fixtures."""

from __future__ import annotations

import datetime as dt
import time
from pathlib import Path
from typing import Callable, Optional

import pytest

from crosspost.accounts.cipher import TokenCipher
from crosspost.content.models import Platform, SocialAccount
from crosspost.content.storage import PipelineStore
from crosspost.queue.broker import JobQueue
from crosspost.queue.models import BackoffPolicy

TEST_SECRET = "test-encryption-secret"


class FakeClock:
    """Manually advanced epoch clock shared by queue, resolver and composer."""

    def __init__(self, start: Optional[float] = None) -> None:
        # whole seconds so datetime round-trips are exact
        self.t = float(int(time.time())) if start is None else start

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds

    def now(self) -> dt.datetime:
        return dt.datetime.fromtimestamp(self.t, tz=dt.timezone.utc)


@pytest.fixture
def tests_dir() -> Path:
    """Return the path to the tests directory."""
    return Path(__file__).parent


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(TEST_SECRET)


@pytest.fixture
def store(tmp_path: Path) -> PipelineStore:
    s = PipelineStore(tmp_path / "pipeline.db")
    yield s
    s.close()


@pytest.fixture
def queue(tmp_path: Path, clock: FakeClock) -> JobQueue:
    q = JobQueue(
        tmp_path / "queue.db",
        max_attempts=3,
        backoff=BackoffPolicy("exponential", 30.0),
        lock_duration=300.0,
        max_stalled_count=1,
        clock=clock,
    )
    yield q
    q.close()


@pytest.fixture
def make_account(store: PipelineStore, cipher: TokenCipher) -> Callable[..., SocialAccount]:
    """Factory that stores an account with encrypted tokens."""

    def _make(
        platform: Platform = Platform.TWITTER,
        *,
        user_id: str = "user-1",
        is_active: bool = True,
        access_token: str = "access-token",
        refresh_token: Optional[str] = None,
        token_expires_at: Optional[dt.datetime] = None,
        oauth1: bool = False,
    ) -> SocialAccount:
        account = SocialAccount(
            user_id=user_id,
            platform=platform,
            platform_user_id=f"{platform.value}-uid",
            platform_username=f"{platform.value}_user",
            access_token=cipher.encrypt(access_token),
            refresh_token=cipher.encrypt(refresh_token) if refresh_token else None,
            token_expires_at=token_expires_at,
            oauth1_access_token=cipher.encrypt("oauth1-token") if oauth1 else None,
            oauth1_access_token_secret=cipher.encrypt("oauth1-secret") if oauth1 else None,
            is_active=is_active,
        )
        return store.save_account(account)

    return _make
