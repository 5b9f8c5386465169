"""
CNAME lookups through the system resolver, explicit public resolvers,
and DNS-over-HTTPS JSON APIs.

Lookup failures that mean "no such record" return an empty list; failures
that mean "could not ask" raise NetworkError so callers can tell them apart.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import dns.asyncresolver
import dns.exception
import dns.resolver
import httpx

from .config import DoHServiceConfig, ResolverConfig
from .exceptions import NetworkError
from .hostname import normalize_target
from .models import (
    DNSServersCheck,
    OnlineChecks,
    OnlineServiceCheck,
    ResolverCheck,
)

CNAME_RECORD_TYPE = 5

# (fqdn, nameserver or None for the system resolver) -> CNAME values
CNAMELookup = Callable[[str, Optional[str]], Awaitable[list[str]]]


class CNAMEResolver:
    """dnspython-backed CNAME resolver."""

    def __init__(self, timeout: float = 5.0) -> None:
        self._timeout = timeout

    async def lookup(self, fqdn: str, nameserver: Optional[str] = None) -> list[str]:
        """
        Resolve the CNAME of ``fqdn``.

        Args:
            fqdn: Name to resolve
            nameserver: Resolver IP; the system configuration is used when None

        Raises:
            NetworkError: On timeout or when no nameserver answered
        """
        try:
            resolver = dns.asyncresolver.Resolver(configure=nameserver is None)
            if nameserver:
                resolver.nameservers = [nameserver]
            resolver.timeout = self._timeout
            resolver.lifetime = self._timeout
            answer = await resolver.resolve(fqdn, "CNAME")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        except dns.exception.Timeout as e:
            raise NetworkError(
                code="timeout",
                message=f"CNAME lookup for {fqdn} timed out",
                details={"nameserver": nameserver or "system"},
            ) from e
        except dns.exception.DNSException as e:
            raise NetworkError(
                code="dns_error",
                message=f"CNAME lookup for {fqdn} failed: {e}",
                details={"nameserver": nameserver or "system"},
            ) from e

        return [normalize_target(rdata.target.to_text()) for rdata in answer]

    __call__ = lookup


class DoHClient:
    """Client for the JSON flavour of DNS-over-HTTPS (Google, Cloudflare)."""

    def __init__(
        self,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "DoHClient":
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
                transport=self._transport,
            )
        return self._client

    async def lookup(self, service: DoHServiceConfig, fqdn: str) -> list[str]:
        """
        Raises:
            NetworkError: On transport failures, non-200 responses or bad JSON
        """
        try:
            response = await self._get_client().get(
                service.url,
                params={"name": fqdn, "type": "CNAME"},
                headers={"Accept": "application/dns-json"},
            )
        except httpx.TimeoutException as e:
            raise NetworkError(
                code="timeout",
                message=f"{service.name} DoH lookup timed out after {self._timeout}s",
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(
                code="network_error",
                message=f"{service.name} DoH lookup failed: {e}",
            ) from e

        if response.status_code != 200:
            raise NetworkError(
                code="server_error",
                message=f"{service.name} DoH lookup returned HTTP {response.status_code}",
            )

        try:
            data = response.json()
        except ValueError as e:
            raise NetworkError(
                code="parse_error",
                message=f"{service.name} returned invalid JSON",
            ) from e

        answers = (data.get("Answer") or []) if isinstance(data, dict) else None
        if not isinstance(answers, list) or not all(isinstance(a, dict) for a in answers):
            raise NetworkError(
                code="parse_error",
                message=f"{service.name} returned an unexpected answer format",
            )

        return [
            normalize_target(str(answer.get("data", "")))
            for answer in answers
            if answer.get("type") == CNAME_RECORD_TYPE
        ]


async def check_resolver(
    lookup: CNAMELookup,
    fqdn: str,
    target: str,
    resolver: Optional[ResolverConfig] = None,
) -> ResolverCheck:
    """Look up the CNAME through one resolver and compare it to the target."""
    start = time.perf_counter()
    name = resolver.name if resolver else "local"
    address = resolver.address if resolver else None
    expected = normalize_target(target)

    try:
        values = await lookup(fqdn, address)
    except NetworkError as e:
        return ResolverCheck(
            resolver=name,
            address=address,
            success=False,
            error=e.message,
            response_time_ms=(time.perf_counter() - start) * 1000,
        )

    return ResolverCheck(
        resolver=name,
        address=address,
        success=expected in values,
        values=values,
        error=None if expected in values else f"Expected {expected}, got {values or 'no CNAME'}",
        response_time_ms=(time.perf_counter() - start) * 1000,
    )


async def check_resolvers(
    lookup: CNAMELookup,
    fqdn: str,
    target: str,
    resolvers: list[ResolverConfig],
    quorum: float,
) -> DNSServersCheck:
    """Query every public resolver concurrently and apply the share quorum."""
    results = list(await asyncio.gather(
        *(check_resolver(lookup, fqdn, target, r) for r in resolvers)
    ))
    successful = sum(1 for r in results if r.success)
    total = len(results)
    share = successful / total if total else 0.0

    return DNSServersCheck(
        success=total > 0 and share >= quorum,
        successful=successful,
        total=total,
        percentage=round(share * 100, 1),
        results=results,
    )


async def check_online(
    client: DoHClient,
    fqdn: str,
    target: str,
    services: list[DoHServiceConfig],
) -> OnlineChecks:
    """Ask each DNS-over-HTTPS service; one agreeing service is enough."""
    expected = normalize_target(target)

    async def one(service: DoHServiceConfig) -> OnlineServiceCheck:
        try:
            values = await client.lookup(service, fqdn)
        except NetworkError as e:
            return OnlineServiceCheck(service=service.name, success=False, error=e.message)
        return OnlineServiceCheck(
            service=service.name,
            success=expected in values,
            values=values,
        )

    results = list(await asyncio.gather(*(one(s) for s in services)))
    return OnlineChecks(success=any(r.success for r in results), results=results)
