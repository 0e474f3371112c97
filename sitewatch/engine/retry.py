"""
Retry Tracker

Consecutive-failure accounting against a site's retry policy.
"""

from __future__ import annotations

from dataclasses import dataclass

from sitewatch.engine.models import RetryPolicy


@dataclass(frozen=True)
class RetryState:
    """Consecutive failures seen since the last terminal outcome."""

    consecutive_failures: int = 0

    def __post_init__(self) -> None:
        if self.consecutive_failures < 0:
            raise ValueError("consecutive_failures must be >= 0")

    def reset(self) -> RetryState:
        return RetryState()

    def on_failure(self, policy: RetryPolicy) -> RetryDecision:
        """
        Account for one failed attempt.

        Returns a decision to retry (with the attempt number) while fewer than
        `policy.count` consecutive failures have been seen, otherwise a
        decision to fail, which resets the counter.
        """
        if self.consecutive_failures < policy.count:
            attempt = self.consecutive_failures + 1
            return RetryDecision(retry=True, attempt=attempt, state=RetryState(attempt))
        return RetryDecision(retry=False, attempt=0, state=self.reset())


@dataclass(frozen=True)
class RetryDecision:
    """What to do after a failed attempt."""

    retry: bool
    attempt: int
    state: RetryState
