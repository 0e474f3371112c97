"""
Site Store

Durable configuration and results for monitored sites.
"""

from sitewatch.store.sites import (
    SiteRepository,
    SiteStore,
    get_site_store,
    reset_site_store,
)

__all__ = [
    "SiteRepository",
    "SiteStore",
    "get_site_store",
    "reset_site_store",
]
