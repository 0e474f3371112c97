"""
Validation Job

One check of one site: probe, validate, and fold the verdict into the
site's retry state.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

import structlog

from sitewatch.engine.errors import ConfigurationError, TransportError
from sitewatch.engine.models import (
    Failed,
    RetryScheduled,
    Site,
    Success,
    ValidationMode,
    ValidationOutcome,
)
from sitewatch.engine.prober import HttpProber, ProbeResponse
from sitewatch.engine.retry import RetryState
from sitewatch.engine.validators import (
    CheckResult,
    JavaScriptValidator,
    check_configuration,
    validate_status_code,
    validate_term_search,
)

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class JobReport:
    """Result of one validation job."""

    outcome: ValidationOutcome
    retry_state: RetryState
    next_fire_at: datetime
    duration_seconds: float = 0.0


def apply_check(
    site: Site,
    check: CheckResult,
    retry_state: RetryState,
    now: datetime,
) -> JobReport:
    """
    Fold a check result into the retry state.

    Pure: the same inputs always produce the same report.
    """
    if check.ok:
        return JobReport(
            outcome=Success(),
            retry_state=retry_state.reset(),
            next_fire_at=now + site.check_interval,
        )

    reason = check.reason or "validation failed"
    if check.permanent:
        return JobReport(
            outcome=Failed(reason=reason),
            retry_state=retry_state.reset(),
            next_fire_at=now + site.check_interval,
        )

    decision = retry_state.on_failure(site.retry_policy)
    if decision.retry:
        next_attempt_at = now + site.retry_policy.interval
        return JobReport(
            outcome=RetryScheduled(
                attempt=decision.attempt,
                next_attempt_at=next_attempt_at,
                reason=reason,
            ),
            retry_state=decision.state,
            next_fire_at=next_attempt_at,
        )

    return JobReport(
        outcome=Failed(reason=reason),
        retry_state=decision.state,
        next_fire_at=now + site.check_interval,
    )


class ValidationJob:
    """
    Runs checks for sites.

    Holds the prober and the validators; it keeps no per-site state, so one
    instance serves every site.
    """

    def __init__(
        self,
        prober: HttpProber | None = None,
        javascript: JavaScriptValidator | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """
        Initialize the job runner.

        Args:
            prober: HTTP prober
            javascript: Script validator (owns the sandbox)
            clock: Source of the current time
        """
        self.prober = prober or HttpProber()
        self.javascript = javascript or JavaScriptValidator()
        self.clock = clock

    async def run(self, site: Site, retry_state: RetryState | None = None) -> JobReport:
        """
        Check a site once.

        Args:
            site: Site snapshot to check
            retry_state: Consecutive failures so far

        Returns:
            JobReport with the outcome, the next retry state and the time the
            site should next be checked
        """
        retry_state = retry_state or RetryState()
        start_time = time.monotonic()

        logger.debug(
            "Running validation",
            site_id=site.id,
            url=site.url,
            mode=site.validation_mode.value,
        )

        check = await self._check(site)
        report = apply_check(site, check, retry_state, self.clock())
        report = JobReport(
            outcome=report.outcome,
            retry_state=report.retry_state,
            next_fire_at=report.next_fire_at,
            duration_seconds=time.monotonic() - start_time,
        )

        logger.info(
            "Validation completed",
            site_id=site.id,
            outcome=report.outcome.kind,
            reason=check.reason,
            consecutive_failures=report.retry_state.consecutive_failures,
            duration=f"{report.duration_seconds:.2f}s",
        )
        return report

    async def _check(self, site: Site) -> CheckResult:
        try:
            check_configuration(site)
            response = await self.prober.probe(
                site.url,
                site.network_timeout_ms,
                site.headers,
                site.client_certificate,
            )
        except ConfigurationError as e:
            return CheckResult.from_error(e)
        except TransportError as e:
            return CheckResult.failed(f"network error: {e}")

        return await self.check_response(site, response)

    async def check_response(self, site: Site, response: ProbeResponse) -> CheckResult:
        """Judge a response with the validator selected by the site's mode."""
        mode = site.validation_mode
        if mode == ValidationMode.STATUS_CODE:
            return validate_status_code(site, response.status, response.content, response.charset)
        elif mode == ValidationMode.TERM_SEARCH:
            return validate_term_search(site, response.status, response.content, response.charset)
        elif mode == ValidationMode.JAVASCRIPT:
            return await self.javascript(site, response.status, response.content, response.charset)
        return CheckResult.from_error(ConfigurationError(f"unknown validation mode: {mode}"))
