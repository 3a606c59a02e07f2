"""OpenID Connect provider metadata discovery and caching.

Fetches ``{base_url}/.well-known/openid-configuration``, validates it in
full and caches it in the process-wide cache. A failed fetch or a document
that does not validate never replaces the cached one. The provider's JSON
Web Key Set is cached alongside it with its own shorter TTL.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import hashlib
import json
import logging

from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx

from ..exceptions import DiscoveryError, EndpointNotFoundError, StorageError
from ..http import parse_json
from ..types import REQUIRED_DISCOVERY_FIELDS, DiscoveryDocument


if TYPE_CHECKING:
    from ..clock import Clock
    from ..config import SSOClientSettings
    from ..http import HttpTransport
    from ..storage.base import KeyValueStore


logger = logging.getLogger("ssoclient.auth")


def _is_absolute_url(value: Any) -> bool:
    if not isinstance(value, str) or not value:
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_discovery_document(data: Any) -> dict[str, Any]:
    """Validate a raw discovery document.

    Parameters
    ----------
    data : Any
        The decoded JSON body.

    Returns
    -------
    dict[str, Any]
        The document, unchanged.

    Raises
    ------
    DiscoveryError
        If the body is not an object or a required field is missing or
        is not an absolute URL.
    """
    if not isinstance(data, dict):
        msg = "Discovery document is not a JSON object"
        raise DiscoveryError(msg)
    for name in REQUIRED_DISCOVERY_FIELDS:
        if not _is_absolute_url(data.get(name)):
            msg = f"Discovery document has a missing or invalid '{name}'"
            raise DiscoveryError(msg, field=name)
    return data


class DiscoveryCache:
    """Provider metadata and signing key cache.

    Parameters
    ----------
    base_url : str
        The provider base URL (issuer).
    transport : HttpTransport
        HTTP transport used for discovery and JWKS fetches.
    cache : KeyValueStore
        Process-wide cache shared across sessions.
    clock : Clock
        Time source for ``fetched_at`` and freshness checks.
    discovery_path : str
        Path of the discovery document.
    ttl : int
        Discovery document TTL in seconds.
    jwks_ttl : int
        Key set TTL in seconds.
    prefix : str
        Cache key prefix.
    enabled : bool
        When False every call goes to the network.
    """

    def __init__(
        self,
        base_url: str,
        transport: HttpTransport,
        cache: KeyValueStore,
        clock: Clock,
        discovery_path: str = "/.well-known/openid-configuration",
        ttl: int = 3600,
        jwks_ttl: int = 300,
        prefix: str = "sso_client_",
        enabled: bool = True,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.discovery_url = f"{self.base_url}/{discovery_path.lstrip('/')}"
        self.ttl = ttl
        self.jwks_ttl = jwks_ttl
        self.enabled = enabled
        self._transport = transport
        self._cache = cache
        self._clock = clock
        url_hash = hashlib.sha256(self.base_url.encode("utf-8")).hexdigest()
        self.cache_key = f"{prefix}discovery_{url_hash}_discovery"
        self.jwks_cache_key = f"{prefix}discovery_{url_hash}_jwks"

    @classmethod
    def from_settings(
        cls,
        settings: SSOClientSettings,
        transport: HttpTransport,
        cache: KeyValueStore,
        clock: Clock,
    ) -> DiscoveryCache:
        """Create a discovery cache from client settings."""
        return cls(
            settings.base_url,
            transport,
            cache,
            clock,
            discovery_path=settings.endpoints.discovery,
            ttl=settings.cache.discovery_ttl,
            jwks_ttl=settings.cache.jwks_ttl,
            prefix=settings.cache.prefix,
            enabled=settings.cache.enabled,
        )

    async def _read_cached(self, key: str, ttl: int) -> dict[str, Any] | None:
        """Read a fresh cache entry, dropping unreadable ones."""
        if not self.enabled:
            return None
        try:
            raw = await self._cache.get(key)
        except StorageError:
            raw = None
        if raw is None:
            return None
        try:
            entry = json.loads(raw)
            fetched_at = float(entry["fetched_at"])
            data = entry["data"]
        except (ValueError, KeyError, TypeError):
            logger.warning("Dropping malformed cache entry %s", key)
            await self._cache.forget(key)
            return None
        if not isinstance(data, dict) or fetched_at + ttl <= self._clock.now():
            return None
        return {"fetched_at": fetched_at, "data": data}

    async def _write_cached(self, key: str, data: dict[str, Any], fetched_at: float, ttl: int) -> None:
        if not self.enabled:
            return
        await self._cache.put(key, json.dumps({"fetched_at": fetched_at, "data": data}), ttl)

    async def _fetch_json(self, url: str, what: str) -> Any:
        """GET a JSON document, wrapping transport failures."""
        try:
            response = await self._transport.get(url)
        except httpx.TimeoutException as exc:
            msg = f"Timed out fetching {what}"
            raise DiscoveryError(msg, endpoint=url, timed_out=True) from exc
        except httpx.HTTPError as exc:
            msg = f"Failed to fetch {what}: {exc.__class__.__name__}"
            raise DiscoveryError(msg, endpoint=url) from exc

        if not response.is_success:
            msg = f"Failed to fetch {what}: HTTP {response.status_code}"
            raise DiscoveryError(msg, endpoint=url, status_code=response.status_code)

        data = parse_json(response)
        if data is None:
            msg = f"{what.capitalize()} is not valid JSON"
            raise DiscoveryError(msg, endpoint=url, status_code=response.status_code)
        return data

    async def get_document(self, force_refresh: bool = False) -> DiscoveryDocument:
        """Get the provider's discovery document.

        Parameters
        ----------
        force_refresh : bool
            Bypass the cache and fetch from the provider.

        Returns
        -------
        DiscoveryDocument
            The validated document.

        Raises
        ------
        DiscoveryError
            If the document cannot be fetched or fails validation. Any
            previously cached document is left in place.
        """
        if not force_refresh:
            cached = await self._read_cached(self.cache_key, self.ttl)
            if cached is not None:
                return DiscoveryDocument.from_dict(cached["data"], cached["fetched_at"])

        logger.debug("Fetching discovery document from %s", self.discovery_url)
        data = validate_discovery_document(
            await self._fetch_json(self.discovery_url, "discovery document")
        )
        fetched_at = self._clock.now()
        await self._write_cached(self.cache_key, data, fetched_at, self.ttl)
        logger.info("Loaded discovery document for issuer %s", data["issuer"])
        return DiscoveryDocument.from_dict(data, fetched_at)

    async def get_endpoint(self, name: str, force_refresh: bool = False) -> str:
        """Get a named endpoint URL from the discovery document.

        Raises
        ------
        EndpointNotFoundError
            If the document does not advertise the endpoint.
        """
        document = await self.get_document(force_refresh)
        value = document.get(name)
        if not value or not isinstance(value, str):
            msg = f"Endpoint '{name}' not found in discovery document"
            raise EndpointNotFoundError(msg, endpoint=name)
        return value

    async def supported_scopes(self) -> list[str]:
        """Scopes advertised by the provider (empty if not advertised)."""
        return list((await self.get_document()).scopes_supported or [])

    async def supported_response_types(self) -> list[str]:
        """Response types advertised by the provider (default ``["code"]``)."""
        return list((await self.get_document()).response_types_supported or ["code"])

    async def supported_code_challenge_methods(self) -> list[str]:
        """PKCE methods advertised by the provider (default ``["S256"]``)."""
        document = await self.get_document()
        return list(document.code_challenge_methods_supported or ["S256"])

    async def is_pkce_supported(self) -> bool:
        """Whether the provider accepts PKCE challenges."""
        return bool(await self.supported_code_challenge_methods())

    async def get_jwks(self, force_refresh: bool = False) -> dict[str, Any]:
        """Get the provider's JSON Web Key Set.

        Parameters
        ----------
        force_refresh : bool
            Bypass the cache, e.g. after an unknown key id was seen.

        Raises
        ------
        DiscoveryError
            If the key set cannot be fetched, has no ``keys`` list, or holds
            an entry that is not a JSON object.
        """
        if not force_refresh:
            cached = await self._read_cached(self.jwks_cache_key, self.jwks_ttl)
            if cached is not None:
                return cached["data"]

        document = await self.get_document()
        data = await self._fetch_json(document.jwks_uri, "JWKS")
        if not isinstance(data, dict) or not isinstance(data.get("keys"), list):
            msg = "JWKS document has no 'keys' list"
            raise DiscoveryError(msg, endpoint=document.jwks_uri)
        if not all(isinstance(key, dict) for key in data["keys"]):
            msg = "JWKS document has a key entry that is not a JSON object"
            raise DiscoveryError(msg, endpoint=document.jwks_uri)
        await self._write_cached(self.jwks_cache_key, data, self._clock.now(), self.jwks_ttl)
        logger.debug("Loaded %d signing keys from %s", len(data["keys"]), document.jwks_uri)
        return data

    async def clear_cache(self) -> bool:
        """Evict the cached discovery document and key set.

        Never raises; failures are logged.

        Returns
        -------
        bool
            True if the cache entries were evicted without error.
        """
        try:
            await self._cache.forget(self.cache_key)
            await self._cache.forget(self.jwks_cache_key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to clear discovery cache: %s", exc)
            return False
        return True
