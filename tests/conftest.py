"""
Pytest configuration and shared fixtures.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator

import pytest

from sitewatch.config import get_settings
from sitewatch.engine import (
    CheckResult,
    JobReport,
    RetryState,
    Site,
    ValidationOutcome,
    apply_check,
)
from sitewatch.store import reset_site_store


@pytest.fixture(autouse=True)
def reset_globals() -> Iterator[None]:
    """Fresh settings and store for each test."""
    get_settings.cache_clear()
    reset_site_store()
    yield
    get_settings.cache_clear()
    reset_site_store()


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeStore:
    """In-memory SiteRepository that remembers every recorded result."""

    def __init__(self, sites: list[Site] | None = None) -> None:
        self.sites = {s.id: s for s in sites or []}
        self.recorded: list[tuple[str, ValidationOutcome, datetime]] = []
        self.fail_writes = False

    async def list_active_sites(self) -> list[Site]:
        return [s for s in self.sites.values() if not s.disabled]

    async def record_result(
        self,
        site_id: str,
        outcome: ValidationOutcome,
        timestamp: datetime,
    ) -> None:
        if self.fail_writes:
            raise OSError("disk full")
        self.recorded.append((site_id, outcome, timestamp))


class FakeNotifier:
    """Notifier that records calls."""

    def __init__(self) -> None:
        self.successes: list[str] = []
        self.failures: list[tuple[str, str]] = []

    async def success(self, site: Site) -> None:
        self.successes.append(site.id)

    async def failure(self, site: Site, reason: str) -> None:
        self.failures.append((site.id, reason))


class ScriptedJob:
    """
    Stand-in for ValidationJob that replays scripted check results.

    Set `gate` to an asyncio.Event to hold checks until it is set.
    """

    def __init__(self, clock: FakeClock, checks: list[Any] | None = None) -> None:
        self.clock = clock
        self.checks = list(checks or [])
        self.calls: list[tuple[Site, RetryState]] = []
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()

    async def run(self, site: Site, retry_state: RetryState | None = None) -> JobReport:
        retry_state = retry_state or RetryState()
        self.calls.append((site, retry_state))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()

        check = self.checks.pop(0) if self.checks else CheckResult.passed()
        if isinstance(check, Exception):
            raise check
        return apply_check(site, check, retry_state, self.clock())


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(now: datetime) -> FakeClock:
    return FakeClock(now)


@pytest.fixture
def make_site() -> Callable[..., Site]:
    """Factory for sites with test-friendly defaults."""

    def _make(**overrides: Any) -> Site:
        values: dict[str, Any] = {
            "name": "Example",
            "url": "https://example.com/health",
            "check_interval_ms": 600_000,
            "network_timeout_ms": 1_000,
        }
        values.update(overrides)
        return Site(**values)

    return _make


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def make_job(clock: FakeClock) -> Callable[..., ScriptedJob]:
    """Factory for scripted jobs sharing the test clock."""

    def _make(checks: list[Any] | None = None) -> ScriptedJob:
        return ScriptedJob(clock, checks)

    return _make
