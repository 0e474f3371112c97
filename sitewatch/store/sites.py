"""
Site Store

Persistence for sites and their validation results.
Uses in-memory storage with optional JSON file persistence.

The file may be shared by several processes (the daemon and CLI commands).
Every write re-reads it first so edits made elsewhere are not overwritten.
"""

from __future__ import annotations

import asyncio
import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import structlog
from pydantic import TypeAdapter

from sitewatch.config import get_settings
from sitewatch.engine.models import Site, ValidationOutcome, ValidationResult
from sitewatch.engine.ports import SiteRepository

logger = structlog.get_logger(__name__)

_results_adapter = TypeAdapter(list[ValidationResult])


class SiteStore:
    """
    Stores sites and results.

    Sites and results are persisted together in one JSON document when a
    path is configured.
    """

    def __init__(
        self,
        persist_path: Path | str | None = None,
        result_retention_days: int = 30,
    ) -> None:
        """
        Initialize the store.

        Args:
            persist_path: Path to persist to (None for memory-only)
            result_retention_days: How long to keep results
        """
        self._persist_path = Path(persist_path).expanduser() if persist_path else None
        self._result_retention = timedelta(days=result_retention_days)

        self._sites: dict[str, Site] = {}
        self._results: dict[str, list[ValidationResult]] = {}  # site_id -> results
        self._lock = asyncio.Lock()

        if self._persist_path and self._persist_path.exists():
            self._load_from_file()

    def _load_from_file(self) -> None:
        """
        Replace in-memory state with the persistence file's contents.

        A file that cannot be read or parsed leaves the current state alone.
        """
        if not self._persist_path:
            return

        try:
            with open(self._persist_path, "r") as f:
                data = json.load(f)

            sites: dict[str, Site] = {}
            for site_data in data.get("sites", []):
                site = Site.model_validate(site_data)
                sites[site.id] = site

            results = {
                site_id: _results_adapter.validate_python(items)
                for site_id, items in data.get("results", {}).items()
            }

        except Exception as e:
            logger.error("Failed to load sites from file", path=str(self._persist_path), error=str(e))
            return

        self._sites = sites
        self._results = results
        logger.debug("Loaded sites from file", count=len(sites))

    def _refresh_locked(self) -> None:
        """Pick up edits made by other processes. Caller holds the lock."""
        if self._persist_path and self._persist_path.exists():
            self._load_from_file()

    async def reload(self) -> None:
        """Re-read the persistence file, picking up edits made by other processes."""
        async with self._lock:
            self._refresh_locked()

    def _save_to_file(self) -> None:
        """Save sites and results to the persistence file."""
        if not self._persist_path:
            return

        try:
            self._persist_path.parent.mkdir(parents=True, exist_ok=True)

            data = {
                "sites": [s.model_dump(mode="json") for s in self._sites.values()],
                "results": {
                    site_id: _results_adapter.dump_python(results, mode="json")
                    for site_id, results in self._results.items()
                },
                "saved_at": datetime.now(timezone.utc).isoformat(),
            }

            tmp_path = self._persist_path.with_suffix(
                f"{self._persist_path.suffix}.{os.getpid()}.tmp"
            )
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2, default=str)
            tmp_path.replace(self._persist_path)

        except Exception as e:
            logger.error("Failed to save sites to file", path=str(self._persist_path), error=str(e))

    # Site operations

    async def save_site(self, site: Site) -> None:
        """Save or update a site."""
        async with self._lock:
            self._refresh_locked()
            self._sites[site.id] = site
            self._save_to_file()

    async def get_site(self, site_id: str) -> Site | None:
        """Get a site by ID."""
        return self._sites.get(site_id)

    async def find_site(self, id_prefix: str) -> Site | None:
        """Get a site by ID or unambiguous ID prefix."""
        if id_prefix in self._sites:
            return self._sites[id_prefix]
        matches = [s for s in self._sites.values() if s.id.startswith(id_prefix)]
        if len(matches) == 1:
            return matches[0]
        return None

    async def delete_site(self, site_id: str) -> bool:
        """Delete a site and its results."""
        async with self._lock:
            self._refresh_locked()
            if site_id not in self._sites:
                return False

            del self._sites[site_id]
            self._results.pop(site_id, None)

            self._save_to_file()
            return True

    async def list_sites(
        self,
        tags: list[str] | None = None,
        include_disabled: bool = True,
    ) -> list[Site]:
        """List sites, optionally filtered by any of the given tags."""
        sites = list(self._sites.values())

        if not include_disabled:
            sites = [s for s in sites if not s.disabled]
        if tags:
            wanted = {t.lower() for t in tags}
            sites = [s for s in sites if wanted & {t.lower() for t in s.tags}]

        sites.sort(key=lambda s: s.created_at)
        return sites

    async def list_active_sites(self) -> list[Site]:
        """List sites that should be scheduled."""
        return await self.list_sites(include_disabled=False)

    async def set_disabled(self, site_id: str, disabled: bool) -> Site | None:
        """Enable or disable a site. Returns the updated site."""
        async with self._lock:
            self._refresh_locked()
            site = self._sites.get(site_id)
            if site is None:
                return None
            site = site.model_copy(update={"disabled": disabled})
            self._sites[site_id] = site
            self._save_to_file()
            return site

    # Result operations

    async def record_result(
        self,
        site_id: str,
        outcome: ValidationOutcome,
        timestamp: datetime,
    ) -> None:
        """Record an outcome and make it the site's last result."""
        result = ValidationResult(site_id=site_id, outcome=outcome, timestamp=timestamp)

        async with self._lock:
            self._refresh_locked()
            site = self._sites.get(site_id)
            if site is None:
                logger.debug("Dropping result for unknown site", site_id=site_id)
                return

            self._results.setdefault(site_id, []).append(result)
            self._cleanup_old_results(site_id)
            self._sites[site_id] = site.model_copy(update={"last_result": result})

            self._save_to_file()

    async def get_results(self, site_id: str, limit: int = 50) -> list[ValidationResult]:
        """Get results for a site, newest first."""
        results = sorted(
            self._results.get(site_id, []),
            key=lambda r: r.timestamp,
            reverse=True,
        )
        return results[:limit]

    def _cleanup_old_results(self, site_id: str) -> None:
        """Remove results older than the retention period."""
        cutoff = datetime.now(timezone.utc) - self._result_retention
        if site_id in self._results:
            self._results[site_id] = [
                r for r in self._results[site_id]
                if r.timestamp >= cutoff
            ]

    async def cleanup_old_results(self) -> int:
        """Prune expired results for every site."""
        async with self._lock:
            self._refresh_locked()
            before = sum(len(r) for r in self._results.values())
            for site_id in list(self._results):
                self._cleanup_old_results(site_id)
            removed = before - sum(len(r) for r in self._results.values())
            if removed:
                self._save_to_file()

        if removed > 0:
            logger.info("Cleaned up old results", removed=removed)
        return removed


# Global store instance
_store: SiteStore | None = None


def get_site_store(persist_path: Path | str | None = None) -> SiteStore:
    """Get the global site store instance."""
    global _store
    if _store is None:
        settings = get_settings()
        _store = SiteStore(
            persist_path=persist_path or settings.data_path,
            result_retention_days=settings.result_retention_days,
        )
    return _store


def reset_site_store() -> None:
    """Drop the global store (used by tests)."""
    global _store
    _store = None
