"""
SiteWatch

Periodic health checks for remote sites with retries and notifications.
"""

__version__ = "0.1.0"
