"""
Notification Models
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field


class NotificationKind(str, Enum):
    """What happened to the site."""

    SUCCESS = "success"  # Recovered after a failure
    FAILURE = "failure"


class NotificationChannel(str, Enum):
    """Available notification channels."""

    CLI = "cli"  # Print to console
    SLACK = "slack"
    DISCORD = "discord"
    WEBHOOK = "webhook"


class Notification(BaseModel):
    """A notification about one site's state transition."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    kind: NotificationKind
    site_id: str
    site_name: str
    url: str
    reason: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Delivery
    channels: list[NotificationChannel] = Field(default_factory=list)
    delivered_to: list[str] = Field(default_factory=list)
    delivery_errors: dict[str, str] = Field(default_factory=dict)  # Channel -> error

    @property
    def title(self) -> str:
        if self.kind == NotificationKind.SUCCESS:
            return f"{self.site_name} is back up"
        return f"{self.site_name} is down"

    @property
    def message(self) -> str:
        if self.kind == NotificationKind.SUCCESS:
            return f"{self.url} passed validation."
        return f"{self.url} failed validation: {self.reason or 'something is wrong'}"

    def mark_delivered(self, channel: str) -> None:
        self.delivered_to.append(channel)

    def mark_delivery_failed(self, channel: str, error: str) -> None:
        self.delivery_errors[channel] = error
