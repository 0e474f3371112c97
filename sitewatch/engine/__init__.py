"""
Validation Engine

Scheduling and execution of site health checks.

Provides:
- Site and outcome models
- HTTP prober and validation strategies
- Retry accounting and the validation job
- Scheduler with per-site timers and store reconciliation
"""

from sitewatch.engine.errors import (
    ConfigurationError,
    SchedulerInternalError,
    SiteWatchError,
    TransportError,
    ValidatorError,
)
from sitewatch.engine.job import JobReport, ValidationJob, apply_check
from sitewatch.engine.models import (
    Failed,
    Header,
    RetryPolicy,
    RetryScheduled,
    RuntimeScheduleEntry,
    Site,
    Status,
    Success,
    ValidationMode,
    ValidationOutcome,
    ValidationResult,
)
from sitewatch.engine.prober import HttpProber, ProbeResponse
from sitewatch.engine.retry import RetryDecision, RetryState
from sitewatch.engine.scheduler import (
    ReconcileReport,
    ValidationScheduler,
    create_validation_job,
    get_scheduler,
)
from sitewatch.engine.script import ScriptSandbox
from sitewatch.engine.validators import CheckResult, JavaScriptValidator

__all__ = [
    # Errors
    "ConfigurationError",
    "SchedulerInternalError",
    "SiteWatchError",
    "TransportError",
    "ValidatorError",
    # Models
    "Failed",
    "Header",
    "RetryPolicy",
    "RetryScheduled",
    "RuntimeScheduleEntry",
    "Site",
    "Status",
    "Success",
    "ValidationMode",
    "ValidationOutcome",
    "ValidationResult",
    # Execution
    "CheckResult",
    "HttpProber",
    "JavaScriptValidator",
    "JobReport",
    "ProbeResponse",
    "RetryDecision",
    "RetryState",
    "ScriptSandbox",
    "ValidationJob",
    "apply_check",
    # Scheduler
    "ReconcileReport",
    "ValidationScheduler",
    "create_validation_job",
    "get_scheduler",
]
