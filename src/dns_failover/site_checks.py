"""
HTTP reachability and TLS certificate checks for a published hostname.
"""

import asyncio
import contextlib
import ssl
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import httpx

from .models import HTTPCheck, SSLCheck

# (host, port, timeout) -> decoded peer certificate as returned by getpeercert()
CertificateFetcher = Callable[[str, int, float], Awaitable[dict]]


class HTTPChecker:
    """GET https://fqdn with bounded redirects."""

    def __init__(
        self,
        timeout: float = 10.0,
        max_redirects: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout
        self._max_redirects = max_redirects
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "HTTPChecker":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=True,
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                max_redirects=self._max_redirects,
                transport=self._transport,
            )
        return self._client

    async def check(self, fqdn: str) -> HTTPCheck:
        start = time.perf_counter()
        try:
            response = await self._get_client().get(f"https://{fqdn}")
        except httpx.TimeoutException:
            return HTTPCheck(
                success=False,
                response_time_ms=_elapsed_ms(start),
                error=f"Timed out after {self._timeout}s",
            )
        except httpx.TooManyRedirects:
            return HTTPCheck(
                success=False,
                response_time_ms=_elapsed_ms(start),
                error=f"More than {self._max_redirects} redirects",
            )
        except httpx.HTTPError as e:
            return HTTPCheck(
                success=False,
                response_time_ms=_elapsed_ms(start),
                error=f"Connection error: {e}",
            )

        status = response.status_code
        success = 200 <= status < 400
        return HTTPCheck(
            success=success,
            status_code=status,
            response_time_ms=_elapsed_ms(start),
            final_url=str(response.url),
            server=response.headers.get("server"),
            content_type=response.headers.get("content-type"),
            error=None if success else f"HTTP {status}",
        )


async def fetch_peer_certificate(host: str, port: int = 443, timeout: float = 10.0) -> dict:
    """
    Complete a verifying TLS handshake and return the peer certificate.

    Raises:
        ssl.SSLError, OSError, asyncio.TimeoutError: On handshake failure
    """
    context = ssl.create_default_context()
    _, writer = await asyncio.wait_for(
        asyncio.open_connection(host, port, ssl=context, server_hostname=host),
        timeout=timeout,
    )
    try:
        return writer.get_extra_info("peercert") or {}
    finally:
        writer.close()
        with contextlib.suppress(ssl.SSLError, OSError):
            await writer.wait_closed()


def _name_field(name: tuple, key: str) -> Optional[str]:
    for rdn in name or ():
        for attr, value in rdn:
            if attr == key:
                return value
    return None


class SSLChecker:
    """Checks that fqdn serves a valid, unexpired certificate."""

    def __init__(
        self,
        timeout: float = 10.0,
        fetcher: Optional[CertificateFetcher] = None,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._timeout = timeout
        self._fetch = fetcher or fetch_peer_certificate
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def check(self, fqdn: str, port: int = 443) -> SSLCheck:
        try:
            cert = await self._fetch(fqdn, port, self._timeout)
        except ssl.SSLCertVerificationError as e:
            return SSLCheck(success=False, error=f"Certificate verification failed: {e.verify_message}")
        except asyncio.TimeoutError:
            return SSLCheck(success=False, error=f"TLS handshake timed out after {self._timeout}s")
        except (ssl.SSLError, OSError) as e:
            return SSLCheck(success=False, error=f"TLS connection failed: {e}")

        not_after = cert.get("notAfter")
        if not not_after:
            return SSLCheck(success=False, error="Peer presented no certificate")

        valid_to = datetime.fromtimestamp(ssl.cert_time_to_seconds(not_after), tz=timezone.utc)
        valid_from = None
        if cert.get("notBefore"):
            valid_from = datetime.fromtimestamp(
                ssl.cert_time_to_seconds(cert["notBefore"]), tz=timezone.utc
            )

        now = self._now()
        days_left = (valid_to - now).days
        expired = valid_to <= now

        return SSLCheck(
            success=not expired,
            issuer=_name_field(cert.get("issuer"), "commonName")
            or _name_field(cert.get("issuer"), "organizationName"),
            subject=_name_field(cert.get("subject"), "commonName"),
            valid_from=valid_from.isoformat() if valid_from else None,
            valid_to=valid_to.isoformat(),
            days_until_expiry=days_left,
            error="Certificate has expired" if expired else None,
        )


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
