"""
Notification Routing

Routes site up/down notifications to configured channels (CLI, Slack,
Discord, generic webhooks).
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog

from sitewatch.engine.models import Site
from sitewatch.engine.ports import Notifier
from sitewatch.notifications.models import (
    Notification,
    NotificationChannel,
    NotificationKind,
)

logger = structlog.get_logger(__name__)


class NotificationRouter:
    """
    Routes notifications to configured channels.

    Supports:
    - CLI (console output)
    - Slack (via webhook)
    - Discord (via webhook)
    - Generic webhooks
    """

    def __init__(
        self,
        channels: list[NotificationChannel] | None = None,
        slack_webhook_url: str | None = None,
        discord_webhook_url: str | None = None,
        webhook_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the router.

        Args:
            channels: Channels every notification goes to
            slack_webhook_url: Slack incoming webhook URL
            discord_webhook_url: Discord webhook URL
            webhook_url: Generic JSON webhook URL
            http_client: Client to post with (created lazily if None)
        """
        self.channels = channels if channels is not None else [NotificationChannel.CLI]
        self._slack_webhook = slack_webhook_url
        self._discord_webhook = discord_webhook_url
        self._webhook = webhook_url
        self._http_client = http_client
        self.muted = False

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def set_muted(self, muted: bool) -> None:
        """Suppress delivery, e.g. while an operator is watching the console."""
        self.muted = muted
        logger.debug("Notifications muted" if muted else "Notifications unmuted")

    async def success(self, site: Site) -> None:
        """Notify that a site passed validation after failing."""
        await self.send(self._build(site, NotificationKind.SUCCESS))

    async def failure(self, site: Site, reason: str) -> None:
        """Notify that a site failed validation."""
        await self.send(self._build(site, NotificationKind.FAILURE, reason))

    def _build(
        self,
        site: Site,
        kind: NotificationKind,
        reason: str | None = None,
    ) -> Notification:
        return Notification(
            kind=kind,
            site_id=site.id,
            site_name=site.display_name,
            url=site.url,
            reason=reason,
            channels=list(self.channels),
        )

    async def send(self, notification: Notification) -> Notification:
        """Send a notification to all of its channels."""
        if self.muted:
            logger.debug(
                "Notifications muted, not posting",
                site_id=notification.site_id,
                kind=notification.kind.value,
            )
            return notification

        tasks = [
            self._send_to_channel(notification, channel)
            for channel in notification.channels
        ]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info(
            "Notification posted",
            site_id=notification.site_id,
            kind=notification.kind.value,
            delivered_to=notification.delivered_to,
        )
        return notification

    async def _send_to_channel(
        self,
        notification: Notification,
        channel: NotificationChannel,
    ) -> None:
        """Send a notification to a specific channel."""
        try:
            if channel == NotificationChannel.CLI:
                self._send_cli(notification)
            elif channel == NotificationChannel.SLACK:
                if not self._slack_webhook:
                    logger.warning("No Slack webhook configured")
                    return
                await self._post(self._slack_webhook, _slack_payload(notification))
            elif channel == NotificationChannel.DISCORD:
                if not self._discord_webhook:
                    logger.warning("No Discord webhook configured")
                    return
                await self._post(self._discord_webhook, _discord_payload(notification))
            elif channel == NotificationChannel.WEBHOOK:
                if not self._webhook:
                    logger.warning("No webhook configured")
                    return
                await self._post(self._webhook, _webhook_payload(notification))

            notification.mark_delivered(channel.value)

        except Exception as e:
            logger.error(
                "Failed to send notification",
                channel=channel.value,
                site_id=notification.site_id,
                error=str(e),
            )
            notification.mark_delivery_failed(channel.value, str(e))

    def _send_cli(self, notification: Notification) -> None:
        """Print a notification panel to the console."""
        from rich.console import Console
        from rich.panel import Panel
        from rich.text import Text

        console = Console()
        color = "green" if notification.kind == NotificationKind.SUCCESS else "red"

        content = Text()
        content.append(f"{notification.message}\n\n", style="white")
        content.append("Site: ", style="dim")
        content.append(f"{notification.site_id}\n", style="cyan")

        console.print(Panel(
            content,
            title=f"[bold {color}]{notification.title}[/bold {color}]",
            subtitle=f"[dim]{notification.created_at.strftime('%Y-%m-%d %H:%M:%S UTC')}[/dim]",
            border_style=color,
        ))

    async def _post(self, url: str, payload: dict[str, Any]) -> None:
        client = await self._get_client()
        response = await client.post(url, json=payload)
        response.raise_for_status()


def _slack_payload(notification: Notification) -> dict[str, Any]:
    emoji = ":white_check_mark:" if notification.kind == NotificationKind.SUCCESS else ":rotating_light:"
    return {
        "blocks": [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"{notification.title}",
                    "emoji": True,
                },
            },
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": f"{emoji} {notification.message}",
                },
            },
        ],
        "text": f"{notification.title} - {notification.message}",  # Fallback
    }


def _discord_payload(notification: Notification) -> dict[str, Any]:
    color = 0x2ECC71 if notification.kind == NotificationKind.SUCCESS else 0xFF0000
    return {
        "embeds": [
            {
                "title": notification.title,
                "description": notification.message,
                "color": color,
                "fields": [
                    {"name": "URL", "value": f"`{notification.url}`", "inline": True},
                    {"name": "Site", "value": notification.site_id, "inline": True},
                ],
                "timestamp": notification.created_at.isoformat(),
            }
        ]
    }


def _webhook_payload(notification: Notification) -> dict[str, Any]:
    return {
        "id": notification.id,
        "kind": notification.kind.value,
        "site_id": notification.site_id,
        "site_name": notification.site_name,
        "url": notification.url,
        "reason": notification.reason,
        "created_at": notification.created_at.isoformat(),
    }


# Global router instance
_router: NotificationRouter | None = None


def get_notification_router(**kwargs: Any) -> NotificationRouter:
    """Get the global notification router, configured from settings by default."""
    global _router
    if _router is None:
        if not kwargs:
            from sitewatch.config import get_settings

            settings = get_settings()
            kwargs = {
                "channels": [NotificationChannel(c) for c in settings.notify_channels],
                "slack_webhook_url": settings.slack_webhook_url,
                "discord_webhook_url": settings.discord_webhook_url,
                "webhook_url": settings.webhook_url,
            }
        _router = NotificationRouter(**kwargs)
    return _router
