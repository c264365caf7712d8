"""
Application configuration models and helpers.

Centralizes settings management so the session manager, the hardware token
services, the bridge API and the command line share one configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal, Optional

import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


def _split_csv(value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
    if isinstance(value, tuple):
        return value
    if isinstance(value, list):
        return tuple(value)
    return tuple(item.strip() for item in value.split(",") if item.strip())


class ProviderSettings(BaseSettings):
    """OAuth client registration and endpoints of the mail provider."""

    client_id: str = Field(..., validation_alias="GOOGLE_CLIENT_ID")
    client_secret: str = Field(..., validation_alias="GOOGLE_CLIENT_SECRET")
    auth_url: str = Field(
        "https://accounts.google.com/o/oauth2/v2/auth",
        validation_alias="SECUREMAIL_PROVIDER_AUTH_URL",
    )
    token_url: str = Field(
        "https://oauth2.googleapis.com/token",
        validation_alias="SECUREMAIL_PROVIDER_TOKEN_URL",
    )
    revoke_url: str = Field(
        "https://oauth2.googleapis.com/revoke",
        validation_alias="SECUREMAIL_PROVIDER_REVOKE_URL",
    )
    api_base_url: str = Field(
        "https://gmail.googleapis.com/gmail/v1",
        validation_alias="SECUREMAIL_PROVIDER_API_BASE_URL",
        description="Base URL of the mail REST API.",
    )
    request_timeout_seconds: float = Field(
        10.0, validation_alias="SECUREMAIL_PROVIDER_TIMEOUT"
    )


class OAuthSettings(BaseSettings):
    """Authorization flow configuration."""

    model_config = SettingsConfigDict(env_prefix="SECUREMAIL_OAUTH_")

    strategy: Literal["loopback", "out_of_band"] = Field(
        "loopback",
        description="Loopback redirect listener or manual code entry.",
    )
    callback_host: str = "localhost"
    callback_port: int = 3000
    authorization_timeout_seconds: float = Field(
        120.0,
        description="Watchdog budget for receiving the redirect.",
    )
    out_of_band_redirect_uri: str = "urn:ietf:wg:oauth:2.0:oob"
    scopes: Annotated[tuple[str, ...], NoDecode] = (
        "https://www.googleapis.com/auth/gmail.readonly",
        "https://www.googleapis.com/auth/gmail.send",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        return _split_csv(value)

    @property
    def redirect_uri(self) -> str:
        if self.strategy == "out_of_band":
            return self.out_of_band_redirect_uri
        return f"http://{self.callback_host}:{self.callback_port}"


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="SECUREMAIL_TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )


class StorageSettings(BaseSettings):
    """Location of the persisted provider session."""

    model_config = SettingsConfigDict(env_prefix="SECUREMAIL_")

    credential_path: Path = Field(
        default_factory=lambda: Path.home() / ".secure-mail-client" / "oauth-token.json"
    )


class HardwareTokenSettings(BaseSettings):
    """Hardware token driver and polling configuration."""

    model_config = SettingsConfigDict(env_prefix="SECUREMAIL_TOKEN_")

    ykman_path: str = "ykman"
    gpg_path: str = "gpg"
    command_timeout_seconds: float = 10.0
    poll_interval_seconds: float = 15.0
    card_url_retries: int = Field(
        2,
        description="Automatic retries of a transient card URL lookup failure.",
    )


class KeyserverSettings(BaseSettings):
    """Public keyservers consulted for key lookups, in order."""

    model_config = SettingsConfigDict(env_prefix="SECUREMAIL_KEYSERVER_")

    hosts: Annotated[tuple[str, ...], NoDecode] = (
        "keys.openpgp.org",
        "keyserver.ubuntu.com",
        "pgp.mit.edu",
    )
    timeout_seconds: float = 10.0

    @field_validator("hosts", mode="before")
    @classmethod
    def _split_hosts(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        return _split_csv(value)


class AppSettings(BaseSettings):
    """Root settings object for the mail client core."""

    model_config = SettingsConfigDict(
        env_prefix="SECUREMAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    log_level: str = "INFO"
    api_host: str = Field("127.0.0.1", description="Bind address of the bridge API.")
    api_port: int = 8765
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    hardware_token: HardwareTokenSettings = Field(default_factory=HardwareTokenSettings)
    keyserver: KeyserverSettings = Field(default_factory=KeyserverSettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "HardwareTokenSettings",
    "KeyserverSettings",
    "OAuthSettings",
    "ProviderSettings",
    "SecuritySettings",
    "StorageSettings",
    "get_settings",
]
