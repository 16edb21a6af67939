"""Application configuration schema and validation."""

from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    stripe_api_base: str = Field(
        default="https://api.stripe.com",
        description="Stripe API base URL",
    )
    stripe_restricted_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe restricted API key",
    )
    stripe_webhook_signing_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe webhook signing secret (whsec_...)",
    )
    stripe_product_id: str = Field(
        default="",
        description="Stripe product whose subscriptions grant membership",
    )
    stripe_max_network_retries: int = Field(
        default=2,
        ge=0,
        le=5,
        description="Retries for transient Stripe failures (network, 5xx)",
    )
    stripe_webhook_tolerance_seconds: int = Field(
        default=0,
        ge=0,
        description="Maximum webhook timestamp age in seconds (0 disables the check)",
    )
    ghost_api_url: str = Field(
        default="",
        description="Ghost site URL (admin API is served below it)",
    )
    ghost_admin_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Ghost admin API key in '<id>:<secret>' form",
    )
    ghost_api_version: str = Field(
        default="v4",
        description="Ghost admin API version",
    )
    ghost_membership_page: str = Field(
        default="",
        description="URL the portal endpoint redirects to",
    )
    member_email_case_insensitive: bool = Field(
        default=False,
        description="Lower-case emails before looking members up",
    )
    smtp_host: str = Field(
        default="localhost",
        description="SMTP host ('localhost' disables TLS and auth)",
    )
    smtp_port: int = Field(
        default=587,
        ge=1,
        le=65535,
        description="SMTP port",
    )
    smtp_username: str = Field(
        default="",
        description="SMTP username",
    )
    smtp_password: SecretStr = Field(
        default=SecretStr(""),
        description="SMTP password",
    )
    from_name: str = Field(
        default="",
        description="Display name used as email sender",
    )
    from_email: str = Field(
        default="",
        description="Email address used as email sender",
    )
    portal_template_path: Optional[Path] = Field(
        default=None,
        description="Portal email template (bundled template when unset)",
    )
    stats_token: SecretStr = Field(
        default=SecretStr(""),
        description="Token required by GET /stats (open when empty)",
    )
    stats_file: Path = Field(
        default=Path("stats.json"),
        description="File holding the latest stats snapshot",
    )
    stats_interval_seconds: float = Field(
        default=60,
        gt=0,
        description="Delay between stats sync cycles",
    )
    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="HTTP listen port",
    )
    http_timeout_seconds: float = Field(
        default=10,
        gt=0,
        description="Timeout for outbound HTTP calls",
    )
    debug: bool = Field(
        default=False,
        description="Verbose logging",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("ghost_admin_api_key")
    @classmethod
    def validate_admin_key(cls, v: SecretStr) -> SecretStr:
        """Ensure the admin key has the '<id>:<secret>' shape."""
        value = v.get_secret_value()
        if value and value.count(":") != 1:
            raise ValueError("ghost_admin_api_key must be '<id>:<secret>'")
        return v

    @property
    def effective_log_level(self) -> str:
        """DEBUG when the verbose flag is set, log_level otherwise."""
        return "DEBUG" if self.debug else self.log_level.upper()


_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get or create the singleton AppConfig instance."""
    global _config
    if _config is None:
        _config = AppConfig()
    return _config
