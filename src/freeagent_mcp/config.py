from __future__ import annotations

import secrets
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from freeagent_mcp.audit import get_logger
from freeagent_mcp.errors import ConfigurationError

PRODUCTION_API = "https://api.freeagent.com"
SANDBOX_API = "https://api.sandbox.freeagent.com"
CALLBACK_PATH = "/oauth/callback"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Upstream OAuth application
    freeagent_client_id: str = ""
    freeagent_client_secret: str = ""
    freeagent_use_sandbox: bool = False

    # Token signing
    jwt_secret: str = ""
    mcp_token_expiry_seconds: int | None = None  # overrides upstream expires_in
    refresh_token_ttl_seconds: int = 30 * 24 * 60 * 60
    auth_code_ttl_seconds: int = 600

    upstream_timeout_seconds: float = 30.0

    # Externally visible URL, first one set wins
    production_url: str = ""
    vercel_branch_url: str = ""
    vercel_url: str = ""
    base_url: str = "http://localhost:3000"

    # Server
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"
    log_dir: Path | None = None
    max_log_size_mb: int = 50

    @property
    def public_url(self) -> str:
        for host in (self.production_url, self.vercel_branch_url, self.vercel_url):
            if host:
                return f"https://{host}".rstrip("/")
        return self.base_url.rstrip("/")

    @property
    def callback_url(self) -> str:
        return self.public_url + CALLBACK_PATH

    @property
    def upstream_base(self) -> str:
        return SANDBOX_API if self.freeagent_use_sandbox else PRODUCTION_API

    def require_upstream_credentials(self) -> None:
        if not self.freeagent_client_id or not self.freeagent_client_secret:
            raise ConfigurationError(
                "FREEAGENT_CLIENT_ID and FREEAGENT_CLIENT_SECRET are required"
            )


_settings: Settings | None = None
_generated_secret: str | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def get_signing_secret(settings: Settings) -> str:
    """Return the configured JWT secret, or a random one held for the process lifetime."""
    global _generated_secret
    if settings.jwt_secret:
        return settings.jwt_secret
    if _generated_secret is None:
        _generated_secret = secrets.token_hex(32)
        get_logger("config").warning(
            "jwt_secret_generated",
            detail="JWT_SECRET not set; tokens will not be valid across restarts or instances",
        )
    return _generated_secret
