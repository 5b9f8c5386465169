"""
DNS provider backends.

Each provider wraps one vendor API behind the same contract: a cheap
authenticated health check that never raises, an idempotent CNAME
create-or-update that reports failures as RecordResult values, and a
lookup of the currently published CNAME value.

Supported vendors:
- Porkbun: API key pair in the JSON body of every POST
- Cloudflare: bearer token, records addressed through a zone id
- Netlify: bearer token, DNS zones that may need nameserver delegation
"""

import asyncio
import time
from abc import abstractmethod
from typing import Optional, Protocol, runtime_checkable

import httpx

from .audit_logger import AuditLogger
from .config import ProviderSettings
from .credentials import CredentialLoader
from .enums import ProviderErrorCode
from .exceptions import (
    ConfigurationError,
    CredentialError,
    DNSFailoverError,
    ProviderError,
    ZoneNotFoundError,
)
from .hostname import normalize_target
from .models import ProviderHealth, RecordRequest, RecordResult


@runtime_checkable
class DNSProvider(Protocol):
    """Protocol implemented by every DNS provider backend."""

    name: str
    priority: int
    available: bool

    @abstractmethod
    async def health_check(self) -> ProviderHealth:
        """Verify credentials and API reachability. Never raises."""
        ...

    @abstractmethod
    async def create_or_update_record(self, request: RecordRequest) -> RecordResult:
        """Publish the CNAME, creating or replacing any existing record."""
        ...

    @abstractmethod
    async def get_record(self, domain: str, subdomain: str) -> Optional[str]:
        """Return the published CNAME value, or None when absent."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class HTTPProvider:
    """
    Shared plumbing for the JSON-over-HTTPS provider APIs.

    Subclasses implement ``_ping``, ``_upsert`` and ``_lookup`` and may
    raise DNSFailoverError subclasses freely; the public methods convert
    them into ProviderHealth / RecordResult values.
    """

    name = "http"
    BASE_URL = ""
    REQUIRED_KEYS: tuple[str, ...] = ()

    def __init__(
        self,
        settings: ProviderSettings,
        credentials: CredentialLoader,
        logger: Optional[AuditLogger] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        base_url: Optional[str] = None,
    ) -> None:
        self._settings = settings
        self._credential_loader = credentials
        self._logger = logger
        self._transport = transport
        self._base_url = base_url or self.BASE_URL
        self._client: Optional[httpx.AsyncClient] = None
        self._credentials: Optional[dict] = None
        self.priority = settings.priority
        self.ttl = settings.ttl
        self.available = settings.enabled

    async def __aenter__(self) -> "HTTPProvider":
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
                base_url=self._base_url,
                timeout=httpx.Timeout(self._settings.request_timeout_seconds),
                transport=self._transport,
                verify=True,
            )
        return self._client

    async def _load_credentials(self) -> dict:
        if self._credentials is None:
            self._credentials = await self._credential_loader.load(
                self.name, self.REQUIRED_KEYS
            )
        return self._credentials

    def _auth_headers(self, creds: dict) -> dict:
        return {}

    async def _request(
        self,
        method: str,
        path: str,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> httpx.Response:
        """
        Send a request and classify transport and status failures.

        4xx responses other than 401/403/429 are returned to the caller,
        which knows what they mean for its API.

        Raises:
            ProviderError: On timeout, connection failure, auth failure, 429 or 5xx
        """
        creds = await self._load_credentials()
        headers = dict(kwargs.pop("headers", {}) or {})
        headers.update(self._auth_headers(creds))
        request_timeout = timeout or self._settings.request_timeout_seconds

        try:
            response = await self._get_client().request(
                method, path, headers=headers, timeout=request_timeout, **kwargs
            )
        except httpx.TimeoutException as e:
            raise ProviderError(
                code=ProviderErrorCode.TIMEOUT.value,
                message=f"{self.name}: {method} {path} timed out after {request_timeout}s",
                retryable=True,
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(
                code=ProviderErrorCode.NETWORK_ERROR.value,
                message=f"{self.name}: connection error: {e}",
                retryable=True,
            ) from e

        status = response.status_code
        if status in (401, 403):
            raise ProviderError(
                code=ProviderErrorCode.AUTH_FAILED.value,
                message=f"{self.name}: authentication rejected (HTTP {status})",
                details={"path": path, "status_code": status},
            )
        if status == 429:
            raise ProviderError(
                code=ProviderErrorCode.RATE_LIMITED.value,
                message=f"{self.name}: rate limited",
                details={"path": path},
                retryable=True,
            )
        if status >= 500:
            raise ProviderError(
                code=ProviderErrorCode.SERVER_ERROR.value,
                message=f"{self.name}: server error (HTTP {status})",
                details={"path": path, "status_code": status},
                retryable=True,
            )
        return response

    def _json(self, response: httpx.Response):
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                code=ProviderErrorCode.API_ERROR.value,
                message=f"{self.name}: invalid JSON in response (HTTP {response.status_code})",
            ) from e

    async def health_check(self) -> ProviderHealth:
        start = time.perf_counter()
        try:
            await self._ping()
        except DNSFailoverError as e:
            self._log_failure("Health check failed", e)
            return ProviderHealth(healthy=False, error=e.message, response_time_ms=_elapsed_ms(start))
        except Exception as e:
            self._log_failure("Health check raised unexpectedly", e)
            return ProviderHealth(healthy=False, error=str(e), response_time_ms=_elapsed_ms(start))

        return ProviderHealth(healthy=True, response_time_ms=_elapsed_ms(start))

    async def create_or_update_record(self, request: RecordRequest) -> RecordResult:
        try:
            result = await self._upsert(request)
        except ZoneNotFoundError as e:
            self._log_failure("Zone not found", e)
            return RecordResult(success=False, error=e.message, error_code=ProviderErrorCode.ZONE_NOT_FOUND)
        except CredentialError as e:
            self._log_failure("Missing credentials", e)
            return RecordResult(success=False, error=e.message, error_code=ProviderErrorCode.MISSING_CREDENTIALS)
        except ProviderError as e:
            self._log_failure("Record update failed", e)
            return RecordResult(success=False, error=e.message, error_code=_error_code(e.code))
        except ConfigurationError as e:
            self._log_failure("Configuration error", e)
            return RecordResult(success=False, error=e.message, error_code=ProviderErrorCode.API_ERROR)

        if self._logger:
            self._logger.info(
                self._component,
                f"CNAME {request.fqdn} -> {request.target} {result.action}",
                {"record_id": result.record_id, "ttl": request.ttl},
            )
        return result

    async def get_record(self, domain: str, subdomain: str) -> Optional[str]:
        """
        Raises:
            DNSFailoverError: When the lookup itself fails
        """
        return await self._lookup(domain, subdomain)

    @property
    def _component(self) -> str:
        return f"{type(self).__name__}"

    def _log_failure(self, message: str, error: Exception) -> None:
        if self._logger:
            self._logger.log_error(self._component, message, error=error)

    async def _ping(self) -> None:
        raise NotImplementedError

    async def _upsert(self, request: RecordRequest) -> RecordResult:
        raise NotImplementedError

    async def _lookup(self, domain: str, subdomain: str) -> Optional[str]:
        raise NotImplementedError


class PorkbunProvider(HTTPProvider):
    """Porkbun JSON API v3."""

    name = "porkbun"
    BASE_URL = "https://porkbun.com/api/json/v3"
    REQUIRED_KEYS = ("api_key", "secret_key")

    def _body(self, creds: dict, **fields) -> dict:
        body = {"apikey": creds["api_key"], "secretapikey": creds["secret_key"]}
        body.update(fields)
        return body

    def _check_status(self, data: dict, action: str) -> dict:
        if not isinstance(data, dict) or data.get("status") != "SUCCESS":
            message = data.get("message") if isinstance(data, dict) else None
            raise ProviderError(
                code=ProviderErrorCode.API_ERROR.value,
                message=f"porkbun: {action} failed: {message or 'unknown error'}",
            )
        return data

    async def _ping(self) -> None:
        creds = await self._load_credentials()
        response = await self._request(
            "POST", "/ping",
            json=self._body(creds),
            timeout=self._settings.health_timeout_seconds,
        )
        self._check_status(self._json(response), "ping")

    async def _existing(self, domain: str, subdomain: str) -> Optional[dict]:
        creds = await self._load_credentials()
        response = await self._request(
            "POST",
            f"/dns/retrieveByNameType/{domain}/CNAME/{subdomain}",
            json=self._body(creds),
        )
        data = self._json(response)
        if isinstance(data, dict) and data.get("status") == "ERROR":
            message = str(data.get("message", ""))
            if "domain" in message.lower():
                raise ZoneNotFoundError(
                    code=ProviderErrorCode.ZONE_NOT_FOUND.value,
                    message=f"porkbun: {message}",
                    details={"domain": domain},
                )
        records = self._check_status(data, "record lookup").get("records") or []
        return records[0] if records else None

    async def _lookup(self, domain: str, subdomain: str) -> Optional[str]:
        record = await self._existing(domain, subdomain)
        return normalize_target(record["content"]) if record else None

    async def _upsert(self, request: RecordRequest) -> RecordResult:
        creds = await self._load_credentials()
        existing = await self._existing(request.domain, request.subdomain)

        if existing:
            record_id = str(existing.get("id"))
            if normalize_target(existing.get("content", "")) == normalize_target(request.target):
                return RecordResult(success=True, record_id=record_id, action="unchanged")

            response = await self._request(
                "POST",
                f"/dns/editByNameType/{request.domain}/CNAME/{request.subdomain}",
                json=self._body(creds, content=request.target, ttl=str(request.ttl)),
            )
            self._check_status(self._json(response), "record update")
            return RecordResult(success=True, record_id=record_id, action="updated")

        response = await self._request(
            "POST",
            f"/dns/create/{request.domain}",
            json=self._body(
                creds,
                name=request.subdomain,
                type="CNAME",
                content=request.target,
                ttl=str(request.ttl),
            ),
        )
        data = self._check_status(self._json(response), "record create")
        return RecordResult(success=True, record_id=str(data.get("id")), action="created")


class CloudflareProvider(HTTPProvider):
    """Cloudflare API v4."""

    name = "cloudflare"
    BASE_URL = "https://api.cloudflare.com/client/v4"
    REQUIRED_KEYS = ("api_token",)

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._zone_ids: dict[str, str] = {}

    def _auth_headers(self, creds: dict) -> dict:
        return {"Authorization": f"Bearer {creds['api_token']}"}

    def _result(self, response: httpx.Response, action: str):
        data = self._json(response)
        if not isinstance(data, dict) or not data.get("success"):
            errors = data.get("errors") if isinstance(data, dict) else None
            message = errors[0].get("message") if errors else f"HTTP {response.status_code}"
            raise ProviderError(
                code=ProviderErrorCode.API_ERROR.value,
                message=f"cloudflare: {action} failed: {message}",
            )
        return data.get("result")

    async def _ping(self) -> None:
        response = await self._request(
            "GET", "/user/tokens/verify", timeout=self._settings.health_timeout_seconds
        )
        result = self._result(response, "token verification") or {}
        if result.get("status", "active") != "active":
            raise ProviderError(
                code=ProviderErrorCode.AUTH_FAILED.value,
                message=f"cloudflare: token status is {result.get('status')}",
            )

    async def zone_id(self, domain: str) -> str:
        """Resolve and cache the active zone id for a domain."""
        if domain in self._zone_ids:
            return self._zone_ids[domain]

        response = await self._request(
            "GET", "/zones", params={"name": domain, "status": "active"}
        )
        zones = self._result(response, "zone lookup") or []
        if not zones:
            raise ZoneNotFoundError(
                code=ProviderErrorCode.ZONE_NOT_FOUND.value,
                message=f"cloudflare: no active zone for {domain}",
                details={"domain": domain},
            )
        self._zone_ids[domain] = zones[0]["id"]
        return self._zone_ids[domain]

    async def _existing(self, zone_id: str, fqdn: str) -> Optional[dict]:
        response = await self._request(
            "GET",
            f"/zones/{zone_id}/dns_records",
            params={"type": "CNAME", "name": fqdn},
        )
        records = self._result(response, "record lookup") or []
        return records[0] if records else None

    async def _lookup(self, domain: str, subdomain: str) -> Optional[str]:
        fqdn = RecordRequest(domain, subdomain, "").fqdn
        record = await self._existing(await self.zone_id(domain), fqdn)
        return normalize_target(record["content"]) if record else None

    async def _upsert(self, request: RecordRequest) -> RecordResult:
        zone_id = await self.zone_id(request.domain)
        existing = await self._existing(zone_id, request.fqdn)
        payload = {
            "type": "CNAME",
            "name": request.fqdn,
            "content": request.target,
            "ttl": request.ttl,
            "proxied": self._settings.proxied,
        }

        if existing:
            if normalize_target(existing.get("content", "")) == normalize_target(request.target):
                return RecordResult(success=True, record_id=existing["id"], action="unchanged")
            response = await self._request(
                "PUT", f"/zones/{zone_id}/dns_records/{existing['id']}", json=payload
            )
            result = self._result(response, "record update")
            return RecordResult(success=True, record_id=result.get("id", existing["id"]), action="updated")

        response = await self._request("POST", f"/zones/{zone_id}/dns_records", json=payload)
        result = self._result(response, "record create")
        return RecordResult(success=True, record_id=result.get("id"), action="created")


class NetlifyDNSProvider(HTTPProvider):
    """Netlify DNS API v1."""

    name = "netlify"
    BASE_URL = "https://api.netlify.com/api/v1"
    REQUIRED_KEYS = ("access_token",)

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._zones: dict[str, str] = {}
        # Zones created by us whose nameservers still have to be set at the registrar
        self.pending_delegation: dict[str, list[str]] = {}

    def _auth_headers(self, creds: dict) -> dict:
        return {"Authorization": f"Bearer {creds['access_token']}"}

    def _expect(self, response: httpx.Response, action: str, expected=(200,)):
        if response.status_code not in expected:
            raise ProviderError(
                code=ProviderErrorCode.API_ERROR.value,
                message=f"netlify: {action} failed (HTTP {response.status_code})",
                details={"body": response.text[:200]},
            )
        return self._json(response) if response.content else None

    async def _ping(self) -> None:
        response = await self._request("GET", "/user", timeout=self._settings.health_timeout_seconds)
        self._expect(response, "user lookup")

    async def zone_id(self, domain: str, create: bool = True) -> str:
        """Find the DNS zone for a domain, creating it when allowed."""
        if domain in self._zones:
            return self._zones[domain]

        response = await self._request("GET", "/dns_zones")
        for zone in self._expect(response, "zone list") or []:
            if zone.get("name") == domain:
                self._zones[domain] = zone["id"]
                return zone["id"]

        if not create:
            raise ZoneNotFoundError(
                code=ProviderErrorCode.ZONE_NOT_FOUND.value,
                message=f"netlify: no DNS zone for {domain}",
                details={"domain": domain},
            )

        response = await self._request("POST", "/dns_zones", json={"name": domain})
        zone = self._expect(response, "zone create", expected=(200, 201))
        self._zones[domain] = zone["id"]
        nameservers = list(zone.get("dns_servers") or [])
        self.pending_delegation[domain] = nameservers
        if self._logger:
            self._logger.warn(
                self._component,
                f"Created DNS zone for {domain}; delegate nameservers at the registrar",
                {"nameservers": nameservers},
            )
        return zone["id"]

    async def _existing(self, zone_id: str, request: RecordRequest) -> Optional[dict]:
        response = await self._request("GET", f"/dns_zones/{zone_id}/dns_records")
        for record in self._expect(response, "record list") or []:
            if record.get("type") != "CNAME":
                continue
            if record.get("hostname") in (request.fqdn, request.subdomain):
                return record
        return None

    async def _lookup(self, domain: str, subdomain: str) -> Optional[str]:
        zone_id = await self.zone_id(domain, create=False)
        record = await self._existing(zone_id, RecordRequest(domain, subdomain, ""))
        return normalize_target(record["value"]) if record else None

    async def _upsert(self, request: RecordRequest) -> RecordResult:
        zone_id = await self.zone_id(request.domain)
        existing = await self._existing(zone_id, request)
        body = {
            "type": "CNAME",
            "hostname": request.fqdn,
            "value": request.target,
            "ttl": request.ttl,
        }

        if existing:
            if normalize_target(existing.get("value", "")) == normalize_target(request.target):
                return RecordResult(success=True, record_id=existing["id"], action="unchanged")
            response = await self._request(
                "PUT", f"/dns_zones/{zone_id}/dns_records/{existing['id']}", json=body
            )
            record = self._expect(response, "record update", expected=(200, 201)) or {}
            return RecordResult(success=True, record_id=record.get("id", existing["id"]), action="updated")

        response = await self._request("POST", f"/dns_zones/{zone_id}/dns_records", json=body)
        record = self._expect(response, "record create", expected=(200, 201)) or {}
        return RecordResult(success=True, record_id=record.get("id"), action="created")


PROVIDER_CLASSES = {
    PorkbunProvider.name: PorkbunProvider,
    CloudflareProvider.name: CloudflareProvider,
    NetlifyDNSProvider.name: NetlifyDNSProvider,
}


class ProviderRegistry:
    """Priority-ordered set of providers with one-time startup verification."""

    def __init__(
        self,
        providers: list,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._providers = sorted(providers, key=lambda p: p.priority)
        self._logger = logger
        self._health: dict[str, ProviderHealth] = {}

    async def __aenter__(self) -> "ProviderRegistry":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def providers(self) -> list:
        return list(self._providers)

    @property
    def health(self) -> dict[str, ProviderHealth]:
        return dict(self._health)

    def available(self) -> list:
        return [p for p in self._providers if p.available]

    def get(self, name: str):
        for provider in self._providers:
            if provider.name == name:
                return provider
        return None

    async def verify_all(self) -> dict[str, ProviderHealth]:
        """
        Health-check every enabled provider concurrently.

        Providers that fail are marked unavailable for the rest of the run.
        """
        candidates = [p for p in self._providers if p.available]
        results = await asyncio.gather(*(p.health_check() for p in candidates))

        for provider, health in zip(candidates, results):
            provider.available = health.healthy
            self._health[provider.name] = health
            if self._logger:
                if health.healthy:
                    self._logger.info(
                        "ProviderRegistry",
                        f"Provider {provider.name} is available",
                        {"response_time_ms": round(health.response_time_ms, 1)},
                    )
                else:
                    self._logger.warn(
                        "ProviderRegistry",
                        f"Provider {provider.name} is unavailable",
                        {"error": health.error},
                    )

        return self.health

    async def close(self) -> None:
        for provider in self._providers:
            await provider.close()


def create_providers(
    settings: list[ProviderSettings],
    credentials: CredentialLoader,
    logger: Optional[AuditLogger] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> list:
    """
    Instantiate the configured providers.

    Raises:
        ConfigurationError: For an unknown provider name
    """
    providers = []
    for entry in settings:
        cls = PROVIDER_CLASSES.get(entry.name.lower())
        if cls is None:
            raise ConfigurationError(
                code="unknown_provider",
                message=f"Unknown DNS provider: {entry.name}",
                details={"known": sorted(PROVIDER_CLASSES)},
            )
        if not entry.enabled:
            continue
        providers.append(cls(entry, credentials, logger=logger, transport=transport))
    return providers


def _error_code(code: str) -> ProviderErrorCode:
    try:
        return ProviderErrorCode(code)
    except ValueError:
        return ProviderErrorCode.API_ERROR


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
