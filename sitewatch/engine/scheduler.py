"""
Validation Scheduler

APScheduler-based scheduler that owns one timer per site, runs validation
jobs without overlap and reconciles its schedule with the site store.
"""

from __future__ import annotations

import asyncio
import itertools
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Coroutine

import structlog
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from sitewatch.engine.errors import SchedulerInternalError
from sitewatch.engine.job import Clock, ValidationJob, utc_now
from sitewatch.engine.models import (
    Failed,
    RuntimeScheduleEntry,
    Site,
    Success,
    ValidationOutcome,
)
from sitewatch.engine.ports import Notifier, SiteRepository
from sitewatch.engine.retry import RetryState

logger = structlog.get_logger(__name__)

DEFAULT_MAX_CONCURRENT_CHECKS = 16

# Receives every outcome, including intermediate retries
OutcomeListener = Callable[[Site, ValidationOutcome, datetime], Awaitable[None]]


@dataclass
class ReconcileReport:
    """What one reconciliation pass changed."""

    scheduled: list[str] = field(default_factory=list)
    refreshed: list[str] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)


def first_fire_time(site: Site, now: datetime) -> datetime:
    """
    When a site without a schedule should be checked first.

    One interval after its last result, or now if that moment has passed or
    the site has never been checked.
    """
    if site.last_result is None:
        return now
    due = site.last_result.timestamp + site.check_interval
    return max(due, now)


def _last_terminal_ok(site: Site) -> bool | None:
    if site.last_result is None:
        return None
    return site.last_result.ok


class ValidationScheduler:
    """
    Schedules and runs site validations.

    Every site has at most one entry and one timer. Operations on one site
    are serialized by a per-site lock; different sites never wait on each
    other except for the global cap on concurrent checks.
    """

    def __init__(
        self,
        store: SiteRepository,
        job: ValidationJob | None = None,
        notifier: Notifier | None = None,
        max_concurrent_checks: int = DEFAULT_MAX_CONCURRENT_CHECKS,
        clock: Clock = utc_now,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            store: Source of site configuration and sink for results
            job: Validation job runner
            notifier: Receives success/failure notifications
            max_concurrent_checks: Cap on checks running at the same time
            clock: Source of the current time
        """
        self._store = store
        self._job = job or ValidationJob(clock=clock)
        self._notifier = notifier
        self._clock = clock

        self._entries: dict[str, RuntimeScheduleEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()  # holders and waiters per site lock
        self._dispatched: dict[str, int] = {}  # site_id -> generation of the running job
        self._generations = itertools.count(1)
        self._slots = asyncio.Semaphore(max_concurrent_checks)
        self._listeners: list[OutcomeListener] = []
        self._tasks: set[asyncio.Task[Any]] = set()

        self._scheduler: AsyncIOScheduler | None = None
        self._running = False

    def _create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure the APScheduler instance."""
        jobstores = {
            "default": MemoryJobStore(),
        }
        executors = {
            "default": AsyncIOExecutor(),
        }
        job_defaults = {
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,  # Timer callbacks only spawn a task and return
            "misfire_grace_time": None,  # A late check is still a check
        }

        return AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone="UTC",
        )

    async def start(self) -> None:
        """Start the scheduler and arm timers for entries created before start."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting validation scheduler")
        self._scheduler = self._create_scheduler()
        self._scheduler.start()
        self._running = True

        for entry in list(self._entries.values()):
            if entry.next_fire_at is not None:
                self._arm(entry, entry.next_fire_at)

        logger.info("Validation scheduler started", site_count=len(self._entries))

    async def stop(self) -> None:
        """Stop the scheduler and cancel running checks."""
        if not self._running or self._scheduler is None:
            return

        logger.info("Stopping validation scheduler")
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self._running = False

        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()
        logger.info("Validation scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    # Listeners

    def add_listener(self, listener: OutcomeListener) -> None:
        """
        Register an async callback for every outcome.

        Listeners run while the site's lock is held, so a listener must not
        await scheduler operations for the same site.
        """
        self._listeners.append(listener)

    def remove_listener(self, listener: OutcomeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # Public operations

    async def schedule_validation(
        self,
        site: Site,
        right_now: bool = False,
        cancel_previous: bool = False,
    ) -> RuntimeScheduleEntry | None:
        """
        Create or update a site's schedule.

        Args:
            site: Current site snapshot
            right_now: Check immediately instead of after one interval
            cancel_previous: Replace any existing entry, dropping its timer,
                its retry state and the outcome of a check in flight

        Returns:
            The site's entry, or None for a disabled site
        """
        async with self._site_lock(site.id):
            return self._schedule_locked(site, right_now, cancel_previous)

    async def cancel_scheduled_validation(self, site: Site | str) -> bool:
        """
        Remove a site's schedule.

        Returns:
            True if an entry was removed, False if the site was not scheduled
        """
        site_id = site if isinstance(site, str) else site.id
        async with self._site_lock(site_id):
            return self._cancel_locked(site_id)

    async def ensure_scheduled_validations(self) -> ReconcileReport:
        """
        Bring the schedule in line with the store.

        Active sites without an entry are scheduled one interval after their
        last result (never in the past); entries for sites that are gone or
        disabled are cancelled. Existing entries keep their timers and get a
        fresh snapshot.
        """
        sites = await self._store.list_active_sites()
        active = {s.id: s for s in sites if not s.disabled}
        report = ReconcileReport()

        for site in active.values():
            async with self._site_lock(site.id):
                entry = self._entries.get(site.id)
                if entry is not None:
                    entry.site = site
                    report.refreshed.append(site.id)
                    continue
                self._schedule_locked(site, at=first_fire_time(site, self._clock()))
                report.scheduled.append(site.id)

        for site_id in list(self._entries):
            if site_id in active:
                continue
            async with self._site_lock(site_id):
                if self._cancel_locked(site_id):
                    report.cancelled.append(site_id)

        logger.info(
            "Reconciled schedule",
            scheduled=len(report.scheduled),
            refreshed=len(report.refreshed),
            cancelled=len(report.cancelled),
        )
        return report

    async def run_now(self, site_id: str) -> ValidationOutcome | None:
        """Run a scheduled site's check immediately, outside its timer."""
        return await self._dispatch(site_id)

    async def fire(self, site_id: str) -> ValidationOutcome | None:
        """
        Run one check for a site if it is not already being checked.

        Returns:
            The applied outcome, or None when the tick was skipped or the
            outcome was discarded because the entry was replaced

        Raises:
            SchedulerInternalError: The entry table is inconsistent
        """
        async with self._site_lock(site_id):
            entry = self._entries.get(site_id)
            if entry is None:
                logger.debug("No schedule for site, ignoring timer", site_id=site_id)
                return None

            now = self._clock()
            if entry.in_flight:
                entry.skipped_while_busy = True
                self._arm(entry, now + entry.site.check_interval)
                logger.info("Validation still in flight, skipping tick", site_id=site_id)
                return None

            if site_id in self._dispatched:
                raise SchedulerInternalError(
                    site_id, "idle entry has a dispatched job", entry.generation
                )

            entry.in_flight = True
            entry.skipped_while_busy = False
            entry.next_fire_at = None
            self._dispatched[site_id] = entry.generation
            site = entry.site
            generation = entry.generation
            retry_state = RetryState(entry.consecutive_failures)

        try:
            async with self._slots:
                report = await self._job.run(site, retry_state)
        except Exception as e:
            self._release(site_id, generation)
            raise SchedulerInternalError(
                site_id, f"validation job crashed: {e}", generation
            ) from e
        except BaseException:
            self._release(site_id, generation)
            raise

        async with self._site_lock(site_id):
            entry = self._release(site_id, generation)
            if entry is None or entry.generation != generation:
                logger.info(
                    "Discarding outcome of superseded validation",
                    site_id=site_id,
                    generation=generation,
                    outcome=report.outcome.kind,
                )
                if entry is not None and entry.skipped_while_busy:
                    entry.skipped_while_busy = False
                    self._arm(entry, self._clock())
                return None

            previous_ok = entry.last_terminal_ok
            entry.consecutive_failures = report.retry_state.consecutive_failures
            if report.outcome.is_terminal:
                entry.last_terminal_ok = isinstance(report.outcome, Success)
            self._arm(entry, report.next_fire_at)

            await self._emit(site, report.outcome, previous_ok)

        return report.outcome

    # Introspection

    def get_entry(self, site_id: str) -> RuntimeScheduleEntry | None:
        """Get a site's entry."""
        return self._entries.get(site_id)

    def entries(self) -> list[RuntimeScheduleEntry]:
        """List all entries."""
        return list(self._entries.values())

    def get_next_run_times(self) -> dict[str, datetime | None]:
        """Get next scheduled check time for all sites."""
        return {site_id: entry.next_fire_at for site_id, entry in self._entries.items()}

    async def wait_idle(self) -> None:
        """Wait until no checks or notifications are running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @asynccontextmanager
    async def _site_lock(self, site_id: str) -> AsyncIterator[None]:
        """
        Hold a site's lock.

        The lock is dropped once nobody holds or waits for it and the site has
        neither an entry nor a running job.
        """
        lock = self._locks.setdefault(site_id, asyncio.Lock())
        self._lock_users[site_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[site_id] -= 1
            if not self._lock_users[site_id]:
                del self._lock_users[site_id]
                if site_id not in self._entries and site_id not in self._dispatched:
                    self._locks.pop(site_id, None)

    # Internals. Callers hold the site's lock.

    def _schedule_locked(
        self,
        site: Site,
        right_now: bool = False,
        cancel_previous: bool = False,
        at: datetime | None = None,
    ) -> RuntimeScheduleEntry | None:
        if site.disabled:
            if self._cancel_locked(site.id):
                logger.info("Site disabled, schedule cancelled", site_id=site.id)
            return None

        now = self._clock()
        existing = self._entries.get(site.id)

        if existing is not None and not cancel_previous:
            existing.site = site
            if right_now:
                self._arm(existing, now)
            return existing

        if existing is not None:
            self._unarm(site.id)
            logger.info(
                "Replacing scheduled validation",
                site_id=site.id,
                generation=existing.generation,
            )

        entry = RuntimeScheduleEntry(
            site=site,
            generation=next(self._generations),
            in_flight=site.id in self._dispatched,
            last_terminal_ok=(
                existing.last_terminal_ok if existing is not None else _last_terminal_ok(site)
            ),
        )
        self._entries[site.id] = entry

        if right_now:
            when = now
        elif at is not None:
            when = at
        else:
            when = now + site.check_interval
        self._arm(entry, when)

        logger.info(
            "Scheduled validation",
            site_id=site.id,
            url=site.url,
            next_fire_at=entry.next_fire_at.isoformat() if entry.next_fire_at else None,
            interval_ms=site.check_interval_ms,
        )
        return entry

    def _cancel_locked(self, site_id: str) -> bool:
        entry = self._entries.pop(site_id, None)
        if entry is None:
            return False
        self._unarm(site_id)
        logger.info("Cancelled scheduled validation", site_id=site_id)
        return True

    def _release(self, site_id: str, generation: int) -> RuntimeScheduleEntry | None:
        """Clear the in-flight marker left by the job of `generation`."""
        if self._dispatched.get(site_id) == generation:
            del self._dispatched[site_id]
        entry = self._entries.get(site_id)
        if entry is not None and site_id not in self._dispatched:
            entry.in_flight = False
        return entry

    def _arm(self, entry: RuntimeScheduleEntry, when: datetime) -> None:
        """Point the site's single timer at `when` (never in the past)."""
        when = max(when, self._clock())
        entry.next_fire_at = when

        if not self._running or self._scheduler is None:
            return

        try:
            self._scheduler.add_job(
                self._on_timer,
                trigger=DateTrigger(run_date=when),
                id=entry.site_id,
                name=f"validate:{entry.site.display_name}",
                args=[entry.site_id],
                replace_existing=True,
            )
        except Exception as e:
            logger.error("Failed to arm timer", site_id=entry.site_id, error=str(e))

    def _unarm(self, site_id: str) -> None:
        if not self._running or self._scheduler is None:
            return
        try:
            self._scheduler.remove_job(site_id)
        except JobLookupError:
            pass  # Already fired or never armed

    async def _on_timer(self, site_id: str) -> None:
        """APScheduler callback. Returns at once so the timer slot is never held."""
        self._spawn(self._dispatch(site_id))

    async def _dispatch(self, site_id: str) -> ValidationOutcome | None:
        """Per-site dispatch point: one site's failure never escapes to others."""
        generation: int | None = None
        try:
            return await self.fire(site_id)
        except SchedulerInternalError as e:
            generation = e.generation
            logger.error(
                "Schedule state broken, unscheduling site until next reconcile",
                site_id=site_id,
                generation=generation,
                error=str(e),
            )
        except Exception as e:
            logger.exception("Unexpected error during validation", site_id=site_id, error=str(e))

        async with self._site_lock(site_id):
            entry = self._entries.get(site_id)
            if entry is not None and generation is not None and entry.generation != generation:
                # The failed job belonged to a replaced entry
                logger.info(
                    "Keeping replacement schedule after superseded job failed",
                    site_id=site_id,
                    generation=entry.generation,
                )
                if entry.skipped_while_busy:
                    entry.skipped_while_busy = False
                    self._arm(entry, self._clock())
            else:
                self._cancel_locked(site_id)
        return None

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _emit(
        self,
        site: Site,
        outcome: ValidationOutcome,
        previous_ok: bool | None,
    ) -> None:
        """Hand an outcome to listeners, the store and the notifier."""
        timestamp = self._clock()

        for listener in list(self._listeners):
            try:
                await listener(site, outcome, timestamp)
            except Exception as e:
                logger.error(
                    "Outcome listener failed",
                    listener=getattr(listener, "__name__", repr(listener)),
                    error=str(e),
                )

        if not outcome.is_terminal:
            return

        try:
            await self._store.record_result(site.id, outcome, timestamp)
        except Exception as e:
            logger.error("Failed to record result", site_id=site.id, error=str(e))

        if self._notifier is None:
            return
        if isinstance(outcome, Failed):
            self._spawn(self._notify(self._notifier.failure(site, outcome.reason), site.id))
        elif isinstance(outcome, Success) and previous_ok is False:
            self._spawn(self._notify(self._notifier.success(site), site.id))

    async def _notify(self, delivery: Awaitable[None], site_id: str) -> None:
        try:
            await delivery
        except Exception as e:
            logger.error("Notification delivery failed", site_id=site_id, error=str(e))


# Global scheduler instance
_scheduler: ValidationScheduler | None = None


def create_validation_job() -> ValidationJob:
    """Build a validation job configured from settings."""
    from sitewatch.config import get_settings
    from sitewatch.engine.prober import DEFAULT_USER_AGENT, HttpProber
    from sitewatch.engine.script import ScriptSandbox
    from sitewatch.engine.validators import JavaScriptValidator

    settings = get_settings()
    return ValidationJob(
        prober=HttpProber(
            user_agent=settings.user_agent or DEFAULT_USER_AGENT,
            max_redirects=settings.max_redirects,
        ),
        javascript=JavaScriptValidator(ScriptSandbox(settings.script_timeout_seconds)),
    )


def get_scheduler() -> ValidationScheduler:
    """Get the global scheduler, wired to the global store and notifier."""
    global _scheduler
    if _scheduler is None:
        from sitewatch.config import get_settings
        from sitewatch.notifications import get_notification_router
        from sitewatch.store import get_site_store

        settings = get_settings()
        _scheduler = ValidationScheduler(
            store=get_site_store(),
            job=create_validation_job(),
            notifier=get_notification_router(),
            max_concurrent_checks=settings.max_concurrent_checks,
        )
    return _scheduler
