"""
Credential loading for DNS providers.

Credentials are looked up through an ordered list of sources: environment
variables, then a JSON file under the credentials directory, then a secret
manager. The first source that yields every required key wins.
"""

import json
import os
import re
from pathlib import Path
from typing import Mapping, Optional, Protocol, runtime_checkable

from .audit_logger import AuditLogger
from .enums import ProviderErrorCode
from .exceptions import CredentialError

# Environment variable names per provider, keyed by credential field
ENV_VARS: dict[str, dict[str, str]] = {
    "porkbun": {
        "api_key": "PORKBUN_API_KEY",
        "secret_key": "PORKBUN_SECRET_KEY",
    },
    "cloudflare": {
        "api_token": "CLOUDFLARE_API_TOKEN",
    },
    "netlify": {
        "access_token": "NETLIFY_ACCESS_TOKEN",
    },
}

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    # apiKey -> api_key; API_KEY and api_key pass through lowercased
    if "_" in key or key.isupper():
        return key.lower()
    return _CAMEL_RE.sub("_", key).lower()


def _complete(values: Optional[Mapping], required: tuple[str, ...]) -> Optional[dict]:
    """Return only the required keys, or None if any is missing or empty."""
    if not values:
        return None
    normalized = {_snake(str(k)): v for k, v in values.items()}
    picked = {key: normalized.get(key) for key in required}
    if all(isinstance(v, str) and v.strip() for v in picked.values()):
        return {k: v.strip() for k, v in picked.items()}
    return None


@runtime_checkable
class SecretManager(Protocol):
    """External secret store."""

    async def get_secret(self, name: str) -> Optional[dict]:
        ...


class NullSecretManager:
    """Secret manager used when none is configured."""

    async def get_secret(self, name: str) -> Optional[dict]:
        return None


class EnvironmentSource:
    name = "environment"

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self._environ = environ if environ is not None else os.environ

    async def __call__(self, provider: str, required: tuple[str, ...]) -> Optional[dict]:
        names = ENV_VARS.get(provider, {})
        values = {
            key: self._environ.get(names.get(key, f"{provider}_{key}".upper()))
            for key in required
        }
        return _complete(values, required)


class JsonFileSource:
    """Reads ``<directory>/<provider>-creds.json``."""

    name = "file"

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    def path_for(self, provider: str) -> Path:
        return self._directory / f"{provider}-creds.json"

    async def __call__(self, provider: str, required: tuple[str, ...]) -> Optional[dict]:
        path = self.path_for(provider)
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            return None
        return _complete(data, required)


class SecretManagerSource:
    name = "secret_manager"

    def __init__(self, manager: SecretManager) -> None:
        self._manager = manager

    async def __call__(self, provider: str, required: tuple[str, ...]) -> Optional[dict]:
        return _complete(await self._manager.get_secret(f"{provider}-credentials"), required)


class CredentialLoader:
    """Walks the credential sources in order and returns the first complete set."""

    def __init__(self, sources: list, logger: Optional[AuditLogger] = None) -> None:
        self._sources = list(sources)
        self._logger = logger

    @property
    def sources(self) -> list:
        return list(self._sources)

    async def load(self, provider: str, required: tuple[str, ...]) -> dict:
        """
        Load credentials for a provider.

        A source that raises is logged and skipped.

        Raises:
            CredentialError: If no source yields every required key
        """
        tried = []
        for source in self._sources:
            source_name = getattr(source, "name", type(source).__name__)
            tried.append(source_name)
            try:
                creds = await source(provider, required)
            except Exception as e:
                if self._logger:
                    self._logger.log_error(
                        "CredentialLoader",
                        f"Credential source '{source_name}' failed for {provider}",
                        error=e,
                    )
                continue

            if creds:
                if self._logger:
                    self._logger.debug(
                        "CredentialLoader",
                        f"Loaded {provider} credentials",
                        {"provider": provider, "source": source_name},
                    )
                return creds

        raise CredentialError(
            code=ProviderErrorCode.MISSING_CREDENTIALS.value,
            message=f"No credentials found for {provider}",
            details={"provider": provider, "sources": tried, "required": list(required)},
        )


def default_credential_loader(
    credentials_dir: Path,
    secret_manager: Optional[SecretManager] = None,
    logger: Optional[AuditLogger] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> CredentialLoader:
    """Environment, then JSON file, then secret manager."""
    return CredentialLoader(
        sources=[
            EnvironmentSource(environ),
            JsonFileSource(credentials_dir),
            SecretManagerSource(secret_manager or NullSecretManager()),
        ],
        logger=logger,
    )
