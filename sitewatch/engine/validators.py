"""
Validators

Strategies that judge a response. Validators never raise: a problem while
judging is itself a failed check with an explanatory reason.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlparse

import structlog

from sitewatch.engine.errors import ConfigurationError, ValidatorError
from sitewatch.engine.models import Site, ValidationMode
from sitewatch.engine.script import ScriptSandbox

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CheckResult:
    """Verdict of one validator run."""

    ok: bool
    reason: str | None = None
    permanent: bool = False  # Configuration problems are never retried

    @classmethod
    def passed(cls) -> CheckResult:
        return cls(ok=True)

    @classmethod
    def failed(cls, reason: str, permanent: bool = False) -> CheckResult:
        return cls(ok=False, reason=reason, permanent=permanent)

    @classmethod
    def from_error(cls, error: Exception) -> CheckResult:
        if isinstance(error, ConfigurationError):
            return cls.failed(f"configuration error: {error}", permanent=True)
        return cls.failed(str(error))


def decode_body(content: bytes, charset: str | None = None) -> str:
    """
    Decode a response body as text.

    Raises:
        ValidatorError: The body is not text in its declared charset (UTF-8
            when none is declared).
    """
    encoding = charset or "utf-8"
    try:
        return content.decode(encoding)
    except LookupError:
        try:
            return content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidatorError("response body is not valid text") from e
    except UnicodeDecodeError as e:
        raise ValidatorError(f"response body is not valid {encoding} text") from e


def validate_status_code(site: Site, status: int, content: bytes, charset: str | None = None) -> CheckResult:
    """Pass on any 2xx status."""
    if 200 <= status < 300:
        return CheckResult.passed()
    return CheckResult.failed(f"status {status}")


def validate_term_search(site: Site, status: int, content: bytes, charset: str | None = None) -> CheckResult:
    """Pass when the body contains the search term (case-sensitive)."""
    term = site.validation_args or ""
    if not term:
        return CheckResult.from_error(ConfigurationError("empty search term"))

    try:
        body = decode_body(content, charset)
    except ValidatorError as e:
        return CheckResult.from_error(e)

    if term in body:
        return CheckResult.passed()
    return CheckResult.failed(f'term "{term}" not found in response body')


class JavaScriptValidator:
    """Pass when the site's script evaluates to a truthy value."""

    def __init__(self, sandbox: ScriptSandbox | None = None) -> None:
        self.sandbox = sandbox or ScriptSandbox()

    async def __call__(
        self,
        site: Site,
        status: int,
        content: bytes,
        charset: str | None = None,
    ) -> CheckResult:
        script = site.validation_args or ""
        if not script.strip():
            return CheckResult.from_error(ConfigurationError("empty script"))

        try:
            body = decode_body(content, charset)
            passed = await self.sandbox.evaluate(script, status, body)
        except ValidatorError as e:
            logger.debug("Script validation error", site_id=site.id, error=str(e))
            return CheckResult.from_error(e)

        if passed:
            return CheckResult.passed()
        return CheckResult.failed("script returned a falsy result")


def check_configuration(site: Site) -> None:
    """
    Reject configurations that can never validate.

    Raises:
        ConfigurationError: Describing the first problem found.
    """
    parsed = urlparse(site.url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(f"malformed URL: {site.url}")

    if site.validation_mode == ValidationMode.TERM_SEARCH and not site.validation_args:
        raise ConfigurationError("empty search term")
    if site.validation_mode == ValidationMode.JAVASCRIPT and not (site.validation_args or "").strip():
        raise ConfigurationError("empty script")
