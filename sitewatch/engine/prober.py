"""
HTTP Prober

Performs the network request for a check.
"""

from __future__ import annotations

import asyncio
import ssl
import time
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx
import structlog

from sitewatch import __version__
from sitewatch.engine.errors import ConfigurationError, TransportError
from sitewatch.engine.models import Header

logger = structlog.get_logger(__name__)

DEFAULT_USER_AGENT = f"SiteWatch/{__version__}"
DEFAULT_MAX_REDIRECTS = 5


@dataclass(frozen=True)
class ProbeResponse:
    """Raw response of a probe. The body is left undecoded for the validators."""

    status: int
    content: bytes
    charset: str | None = None
    url: str = ""
    elapsed_ms: float = 0.0


class HttpProber:
    """
    Issues one GET request per check.

    A client is built per probe because timeout, headers and client
    certificate are all per-site settings.
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the prober.

        Args:
            user_agent: Sent when the site's headers carry no User-Agent
            max_redirects: Redirect hops followed before giving up
            transport: Custom httpx transport (used by tests)
        """
        self.user_agent = user_agent
        self.max_redirects = max_redirects
        self._transport = transport

    async def probe(
        self,
        url: str,
        timeout_ms: int,
        headers: list[Header] | None = None,
        client_certificate: str | None = None,
    ) -> ProbeResponse:
        """
        Fetch a URL.

        Args:
            url: Target URL
            timeout_ms: Deadline covering connection and read
            headers: Headers applied verbatim, in order, duplicates kept
            client_certificate: Path or file:// URI of a PEM with cert and key

        Returns:
            The response status and body

        Raises:
            TransportError: The request did not produce a response
            ConfigurationError: A header or the client certificate cannot be used
        """
        timeout_s = timeout_ms / 1000.0
        request_headers = build_headers(headers or [], self.user_agent)
        verify: ssl.SSLContext | bool = True
        if client_certificate:
            verify = load_client_certificate(client_certificate)

        start = time.monotonic()
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(timeout_s),
                follow_redirects=True,
                max_redirects=self.max_redirects,
                verify=verify,
                transport=self._transport,
            ) as client:
                response = await asyncio.wait_for(
                    client.get(url, headers=request_headers),
                    timeout=timeout_s,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise TransportError(f"timed out after {timeout_ms}ms") from e
        except httpx.TooManyRedirects as e:
            raise TransportError(f"more than {self.max_redirects} redirects") from e
        except httpx.InvalidURL as e:
            raise ConfigurationError(f"malformed URL: {url}") from e
        except httpx.HTTPError as e:
            raise TransportError(str(e) or e.__class__.__name__) from e

        elapsed_ms = (time.monotonic() - start) * 1000
        logger.debug(
            "Probe completed",
            url=url,
            status=response.status_code,
            elapsed_ms=round(elapsed_ms, 1),
        )
        return ProbeResponse(
            status=response.status_code,
            content=response.content,
            charset=response.charset_encoding,
            url=str(response.url),
            elapsed_ms=elapsed_ms,
        )


def build_headers(headers: list[Header], user_agent: str) -> httpx.Headers:
    """
    Build request headers, adding a User-Agent only when none is set.

    Raises:
        ConfigurationError: A header name or value cannot be sent on the wire
    """
    try:
        result = httpx.Headers([(h.key, h.value) for h in headers])
    except (UnicodeEncodeError, ValueError) as e:
        raise ConfigurationError(f"invalid header: {e}") from e
    if "user-agent" not in result:
        result["User-Agent"] = user_agent
    return result


def load_client_certificate(reference: str) -> ssl.SSLContext:
    """
    Build an SSL context that presents a client certificate.

    The reference is a filesystem path or a file:// URI to a PEM file holding
    the certificate and its private key.
    """
    path = _certificate_path(reference)
    if not path.is_file():
        raise ConfigurationError(f"client certificate not found: {reference}")

    context = ssl.create_default_context()
    try:
        context.load_cert_chain(certfile=str(path))
    except (ssl.SSLError, OSError) as e:
        raise ConfigurationError(f"unusable client certificate {reference}: {e}") from e
    return context


def _certificate_path(reference: str) -> Path:
    parsed = urlparse(reference)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(reference).expanduser()
