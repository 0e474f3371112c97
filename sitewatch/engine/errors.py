"""
Engine Errors

Failure taxonomy for validation. Everything except SchedulerInternalError is
turned into a ValidationOutcome by the validation job.
"""


class SiteWatchError(Exception):
    """Base class for SiteWatch errors."""

    pass


class ConfigurationError(SiteWatchError):
    """Site configuration can never validate (empty term, bad URL, bad cert). Not retried."""

    pass


class TransportError(SiteWatchError):
    """The request did not produce a response (DNS, connect, timeout, redirects). Retried."""

    pass


class ValidatorError(SiteWatchError):
    """A response could not be judged (script error or timeout, undecodable body). Retried."""

    pass


class SchedulerInternalError(SiteWatchError):
    """Schedule state for one site is inconsistent. The site is unscheduled until reconciled."""

    def __init__(self, site_id: str, message: str, generation: int | None = None) -> None:
        super().__init__(f"{message} (site {site_id})")
        self.site_id = site_id
        self.generation = generation  # entry generation the failure belongs to
