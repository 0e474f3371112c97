"""
Collaborator Interfaces

What the scheduler needs from storage and notification delivery.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from sitewatch.engine.models import Site, ValidationOutcome


class SiteRepository(Protocol):
    """Durable site configuration and results."""

    async def list_active_sites(self) -> list[Site]: ...

    async def record_result(
        self,
        site_id: str,
        outcome: ValidationOutcome,
        timestamp: datetime,
    ) -> None: ...


class Notifier(Protocol):
    """Success and failure delivery. Calls are fire-and-forget for the scheduler."""

    async def success(self, site: Site) -> None: ...

    async def failure(self, site: Site, reason: str) -> None: ...
