"""Settings for ssoclient, built on pydantic-settings.

Values are resolved from these layers, weakest first:
1. Field defaults
2. pyproject.toml [tool.ssoclient] section (project-level)
3. ./ssoclient.toml (project-level, explicit)
4. ~/.config/ssoclient/config.toml (user-level, overrides project)
5. SSOCLIENT_* environment variables, then explicit keyword arguments

Environment variables use SSOCLIENT_ prefix with nested delimiter __.
Example: SSOCLIENT_CLIENT_ID, SSOCLIENT_HTTP__TIMEOUT
"""

from __future__ import annotations

import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Literal
from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .exceptions import ConfigurationError


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


def _user_config_path() -> Path:
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "~"), "ssoclient", "config.toml").expanduser()
    return Path.home() / ".config" / "ssoclient" / "config.toml"


def _config_candidates() -> list[Path]:
    """Return existing TOML files, weakest first."""
    candidates = [Path("pyproject.toml"), Path("ssoclient.toml"), _user_config_path()]
    extra = os.environ.get("SSOCLIENT_CONFIG_FILE")
    if extra:
        candidates.append(Path(extra))
    return [path for path in candidates if path.is_file()]


def _read_toml_section(path: Path) -> dict[str, Any]:
    """Read the ssoclient table of one file; unreadable files count as empty."""
    try:
        with path.open("rb") as fh:
            document = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError):
        return {}
    if path.name == "pyproject.toml":
        return document.get("tool", {}).get("ssoclient", {})
    return document


def _merge_tables(lower: dict[str, Any], upper: dict[str, Any]) -> dict[str, Any]:
    """Overlay ``upper`` on ``lower``, recursing into shared sub-tables."""
    combined = dict(lower)
    for name, value in upper.items():
        below = combined.get(name)
        if isinstance(below, dict) and isinstance(value, dict):
            combined[name] = _merge_tables(below, value)
        else:
            combined[name] = value
    return combined


def _load_toml_config() -> dict[str, Any]:
    layered: dict[str, Any] = {}
    for path in _config_candidates():
        layered = _merge_tables(layered, _read_toml_section(path))
    return layered


class _TomlSettingsSource(PydanticBaseSettingsSource):
    """Settings source reading the merged TOML configuration files."""

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        return _load_toml_config()


def _is_absolute_url(value: str) -> bool:
    """Check that a value is an absolute http(s) URL."""
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {
    "client_secret",
    "encryption_key",
    "redis_url",
}

_REDACTED = "********"


class EndpointSettings(BaseSettings):
    """Provider paths resolved against ``base_url``.

    Environment prefix: SSOCLIENT_ENDPOINTS__
    """

    model_config = SettingsConfigDict(env_prefix="SSOCLIENT_ENDPOINTS__", extra="ignore")

    discovery: str = Field(
        default="/.well-known/openid-configuration",
        description="Path of the OpenID discovery document",
    )
    logout: str = Field(default="/logout", description="Path of the provider logout page")
    launch_token: str = Field(
        default="/api/launch-token",
        description="Path used to resolve provider-issued launch tokens",
    )


class SecuritySettings(BaseSettings):
    """Security configuration for the authorization flow.

    Environment prefix: SSOCLIENT_SECURITY__
    """

    model_config = SettingsConfigDict(env_prefix="SSOCLIENT_SECURITY__", extra="ignore")

    force_pkce: bool = Field(default=True, description="Always send a PKCE challenge")
    code_challenge_method: Literal["S256", "plain"] = Field(
        default="S256",
        description="PKCE code challenge method",
    )
    state_length: int = Field(default=40, ge=32, description="Length of generated state values")
    code_verifier_length: int = Field(
        default=128,
        ge=43,
        le=128,
        description="Length of generated PKCE code verifiers",
    )
    encrypt_tokens: bool = Field(
        default=True,
        description="Encrypt state and token records in the session store",
    )
    encryption_key: str = Field(
        default="",
        description="Fernet key for session encryption (generated per process if empty)",
    )
    verify_ssl: bool = Field(default=True, description="Verify TLS certificates")
    id_token_algorithms: list[str] = Field(
        default_factory=lambda: ["RS256", "RS384", "RS512", "ES256", "ES384", "ES512", "PS256"],
        description="Accepted ID token signing algorithms",
    )


class SessionSettings(BaseSettings):
    """Session storage configuration.

    Environment prefix: SSOCLIENT_SESSION__
    """

    model_config = SettingsConfigDict(env_prefix="SSOCLIENT_SESSION__", extra="ignore")

    prefix: str = Field(default="sso_", description="Session key prefix")
    tokens_key: str = Field(default="sso_tokens", description="Session key for the token set")
    lifetime: int = Field(
        default=15,
        ge=1,
        description="Minutes a pending authorization request stays valid",
    )
    backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Session store backend: memory or redis",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for the redis session backend",
    )


class HttpSettings(BaseSettings):
    """HTTP client configuration.

    Environment prefix: SSOCLIENT_HTTP__
    """

    model_config = SettingsConfigDict(env_prefix="SSOCLIENT_HTTP__", extra="ignore")

    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    connect_timeout: float = Field(default=10.0, gt=0, description="Connect timeout in seconds")
    retry_attempts: int = Field(default=3, ge=1, description="Total attempts per request")
    retry_delay: int = Field(
        default=1000,
        ge=0,
        description="Fixed delay between attempts in milliseconds",
    )


class CacheSettings(BaseSettings):
    """Provider metadata cache configuration.

    Environment prefix: SSOCLIENT_CACHE__
    """

    model_config = SettingsConfigDict(env_prefix="SSOCLIENT_CACHE__", extra="ignore")

    enabled: bool = Field(default=True, description="Cache discovery and JWKS documents")
    discovery_ttl: int = Field(default=3600, ge=1, description="Discovery document TTL (s)")
    jwks_ttl: int = Field(default=300, ge=1, description="JWKS key set TTL (s)")
    prefix: str = Field(default="sso_client_", description="Cache key prefix")


class LogSettings(BaseSettings):
    """Logging configuration.

    Environment prefix: SSOCLIENT_LOG__
    """

    model_config = SettingsConfigDict(env_prefix="SSOCLIENT_LOG__", extra="ignore")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING",
        description="Log level for the ssoclient logger",
    )
    include_user_data: bool = Field(
        default=False,
        description="Include user claims in log records",
    )


class ClaimSettings(BaseSettings):
    """Claim-to-field mapping configuration.

    Maps a target field name to an ordered list of claim sources. A source
    prefixed with ``:`` is a derived value (``:full_name``), anything else
    is a raw claim name.
    """

    model_config = SettingsConfigDict(env_prefix="SSOCLIENT_CLAIMS__", extra="ignore")

    field_mappings: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "username": [":email"],
            "name": [":full_name"],
            "identifier": [":identifier"],
        },
        description="Target field -> ordered claim sources",
    )


class SSOClientSettings(BaseSettings):
    """Top-level client settings holding every section.

    Layering follows the module docstring. A file named by
    ``SSOCLIENT_CONFIG_FILE`` is read after the user-level file.
    """

    model_config = SettingsConfigDict(
        env_prefix="SSOCLIENT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    base_url: str = Field(default="https://sso.myunnes.com", description="Provider base URL")
    client_id: str = Field(default="", description="OAuth2 client ID")
    client_secret: str = Field(
        default="",
        description="OAuth2 client secret (empty for public clients)",
    )
    redirect_uri: str = Field(default="", description="Registered callback URL")
    scopes: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["openid", "profile", "email"],
        description="Requested scopes (list, or comma/space separated string)",
    )

    endpoints: EndpointSettings = Field(default_factory=EndpointSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    claims: ClaimSettings = Field(default_factory=ClaimSettings)

    @field_validator("scopes", mode="before")
    @classmethod
    def _parse_scopes(cls, v: Any) -> list[str]:
        """Accept a comma/space separated string (from env var) or a list."""
        if isinstance(v, str):
            v = [s for s in v.replace(",", " ").split() if s]
        if not isinstance(v, list):
            msg = f"scopes must be a list or separated string, got {type(v).__name__}"
            raise TypeError(msg)
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Place TOML files between environment variables and defaults."""
        return (init_settings, env_settings, _TomlSettingsSource(settings_cls))

    def require_client_config(self) -> None:
        """Check the settings a client cannot start without.

        Validation happens at usage time rather than init time
        to allow partial configuration via env vars.

        Raises
        ------
        ConfigurationError
            If base URL, client ID, redirect URI or scopes are missing,
            or if a URL is not absolute.
        """
        if not self.base_url:
            raise ConfigurationError("SSO base URL is not configured", setting="base_url")
        if not self.client_id:
            raise ConfigurationError("SSO client ID is not configured", setting="client_id")
        if not self.redirect_uri:
            raise ConfigurationError(
                "SSO redirect URI is not configured", setting="redirect_uri"
            )
        if not self.scopes:
            raise ConfigurationError("SSO scopes must be configured", setting="scopes")
        if not _is_absolute_url(self.base_url):
            raise ConfigurationError("SSO base URL is not valid", setting="base_url")
        if not _is_absolute_url(self.redirect_uri):
            raise ConfigurationError("SSO redirect URI is not valid", setting="redirect_uri")

    @property
    def issuer_base_url(self) -> str:
        """Base URL without a trailing slash."""
        return self.base_url.rstrip("/")

    def redacted_dump(self) -> dict[str, Any]:
        """Dump settings with sensitive fields replaced by a placeholder."""
        data = self.model_dump()

        def _redact(section: dict[str, Any]) -> dict[str, Any]:
            result: dict[str, Any] = {}
            for key, value in section.items():
                if isinstance(value, dict) and key != "field_mappings":
                    result[key] = _redact(value)
                elif key in _SENSITIVE_FIELDS and value:
                    result[key] = _REDACTED
                else:
                    result[key] = value
            return result

        return _redact(data)


@lru_cache(maxsize=1)
def get_settings() -> SSOClientSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return SSOClientSettings()


def clear_settings() -> None:
    """Drop the cached settings object."""
    get_settings.cache_clear()


def reload_settings() -> SSOClientSettings:
    """Clear the cache and build fresh settings."""
    clear_settings()
    return get_settings()
