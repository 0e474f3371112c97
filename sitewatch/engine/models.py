"""
Engine Models

Data models for sites, retry policies, validation outcomes and runtime
schedule state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ValidationMode(str, Enum):
    """How a site's health is judged."""

    STATUS_CODE = "status_code"  # 2xx response
    TERM_SEARCH = "term_search"  # Body contains a search term
    JAVASCRIPT = "javascript"  # Script evaluates to a truthy value

    @classmethod
    def from_value(cls, value: int | str) -> ValidationMode:
        """Parse a mode from its name or its legacy integer code."""
        legacy = {1: cls.STATUS_CODE, 2: cls.TERM_SEARCH, 3: cls.JAVASCRIPT}
        if isinstance(value, int):
            if value not in legacy:
                raise ValueError(f"Unknown validation mode: {value}")
            return legacy[value]
        return cls(value.lower())


class Status(str, Enum):
    """Display status of a site."""

    OK = "ok"
    WAITING = "waiting"
    ERROR = "error"


class Header(BaseModel):
    """A request header sent with every check. Keys need not be unique."""

    model_config = ConfigDict(frozen=True)

    key: str
    value: str


class RetryPolicy(BaseModel):
    """Consecutive retries allowed before a failure is reported."""

    model_config = ConfigDict(frozen=True)

    count: int = Field(default=0, ge=0)
    minutes: int = Field(default=0, ge=0)

    @property
    def interval_minutes(self) -> int:
        return self.minutes

    @property
    def interval(self) -> timedelta:
        return timedelta(minutes=self.minutes)


class Success(BaseModel):
    """The site passed validation."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["success"] = "success"

    @property
    def is_terminal(self) -> bool:
        return True


class RetryScheduled(BaseModel):
    """The site failed validation and will be retried before failing."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["retry_scheduled"] = "retry_scheduled"
    attempt: int = Field(ge=1)
    next_attempt_at: datetime
    reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return False


class Failed(BaseModel):
    """The site failed validation and retries are exhausted (or not allowed)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["failed"] = "failed"
    reason: str

    @property
    def is_terminal(self) -> bool:
        return True


ValidationOutcome = Annotated[
    Union[Success, RetryScheduled, Failed],
    Field(discriminator="kind"),
]


class ValidationResult(BaseModel):
    """A persisted terminal outcome for one site."""

    model_config = ConfigDict(frozen=True)

    site_id: str
    outcome: ValidationOutcome
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ok(self) -> bool:
        return isinstance(self.outcome, Success)

    @property
    def status(self) -> Status:
        if isinstance(self.outcome, Success):
            return Status.OK
        if isinstance(self.outcome, Failed):
            return Status.ERROR
        return Status.WAITING

    @property
    def reason(self) -> str | None:
        return getattr(self.outcome, "reason", None)


class Site(BaseModel):
    """
    A site to check.

    Sites are owned by the store; everything else works on frozen snapshots
    and asks the store for a new one when configuration changes.
    """

    model_config = ConfigDict(frozen=True)

    # Identity
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = ""
    url: str
    tags: list[str] = Field(default_factory=list)

    # Schedule
    check_interval_ms: int = Field(default=600_000, gt=0)
    network_timeout_ms: int = Field(default=10_000, gt=0)

    # Validation
    validation_mode: ValidationMode = ValidationMode.STATUS_CODE
    validation_args: str | None = None  # Search term or script source
    headers: list[Header] = Field(default_factory=list)
    client_certificate: str | None = None  # Path or file:// URI to a PEM
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)

    # State
    disabled: bool = False
    last_result: ValidationResult | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("validation_mode", mode="before")
    @classmethod
    def _parse_mode(cls, value: Any) -> Any:
        if isinstance(value, (int, str)) and not isinstance(value, ValidationMode):
            return ValidationMode.from_value(value)
        return value

    @property
    def check_interval(self) -> timedelta:
        return timedelta(milliseconds=self.check_interval_ms)

    @property
    def display_name(self) -> str:
        return self.name or self.url

    @property
    def status(self) -> Status:
        if self.last_result is None:
            return Status.WAITING
        return self.last_result.status


@dataclass
class RuntimeScheduleEntry:
    """
    In-memory schedule state for one site.

    `generation` is the cancellation token: a job captures it at dispatch and
    its outcome is only applied if the entry still carries the same value.
    """

    site: Site
    generation: int
    next_fire_at: datetime | None = None
    in_flight: bool = False
    consecutive_failures: int = 0
    last_terminal_ok: bool | None = None
    skipped_while_busy: bool = False

    @property
    def site_id(self) -> str:
        return self.site.id
