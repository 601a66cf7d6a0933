"""Pydantic configuration models for the exporter."""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional


class CloudflareConfig(BaseModel):
    """Upstream API access."""
    api_key: str
    account_id: str
    base_url: str = "https://api.cloudflare.com/client/v4"
    timeout_seconds: float = Field(default=10.0, gt=0)
    page_size: int = Field(default=50, ge=1, le=1000)

    @field_validator('api_key', 'account_id')
    @classmethod
    def not_blank(cls, v: str) -> str:
        """Reject empty credentials."""
        if not v or not v.strip():
            raise ValueError('must not be empty')
        return v.strip()

    @field_validator('base_url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate URL format."""
        if not v.startswith(('http://', 'https://')):
            raise ValueError('URL must start with http:// or https://')
        return v.rstrip('/')


class CollectorsConfig(BaseModel):
    """Independent enablement toggles, read once per scrape."""
    devices: bool = False
    users: bool = False
    tunnels: bool = False
    dex: bool = False
    # Upper bound on concurrent traceroute detail fetches; None means one task per test
    dex_max_concurrency: Optional[int] = Field(default=None, ge=1)


class RetryConfig(BaseModel):
    """Backoff policy applied to every upstream call."""
    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay: float = Field(default=1.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=10.0, ge=0)
    jitter: bool = True

    @model_validator(mode='after')
    def cap_not_below_base(self) -> 'RetryConfig':
        """Ensure the delay cap does not undercut the first delay."""
        if self.max_delay < self.base_delay:
            raise ValueError('max_delay must be greater than or equal to base_delay')
        return self


class ServerConfig(BaseModel):
    """HTTP listener configuration."""
    interface: str = ""  # Empty means all interfaces
    port: int = Field(default=9184, ge=1, le=65535)

    @property
    def host(self) -> str:
        return self.interface or "0.0.0.0"


class ScrapeConfig(BaseModel):
    """Per-scrape behaviour."""
    timeout_seconds: float = Field(default=30.0, gt=0)
    # Drop label sets a successful collector run no longer reports
    evict_stale: bool = False


class ExporterConfig(BaseModel):
    """Root configuration model for the exporter."""
    cloudflare: CloudflareConfig
    collectors: CollectorsConfig = Field(default_factory=CollectorsConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    scrape: ScrapeConfig = Field(default_factory=ScrapeConfig)
    debug: bool = False
    log_level: str = "INFO"

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Accept only standard logging levels."""
        level = v.upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f'Unknown log level: {v}')
        return level
