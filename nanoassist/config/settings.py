"""
Nanoassist Dashboard
Centralized Configuration Management

Pydantic settings with environment variable support, validation, and type
safety. Each subsystem reads its own prefixed block of variables.
"""

from functools import lru_cache
from typing import Optional, List, Literal
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """PostgreSQL Database Configuration"""
    
    model_config = SettingsConfigDict(env_prefix="POSTGRES_")
    
    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="postgres", alias="database", description="Database name")
    user: str = Field(default="postgres", description="Database user")
    password: SecretStr = Field(default="postgres", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    pooled: bool = Field(default=False, description="Connections go through a transaction-mode pooler")
    url: Optional[str] = Field(
        default=None,
        alias="DATABASE_URL",
        description="Full connection string (overrides host/port), e.g. the hosted Postgres pooler URL",
    )
    
    @property
    def async_url(self) -> str:
        """Async database URL for asyncpg"""
        if self.url:
            if self.url.startswith("postgresql://"):
                return self.url.replace("postgresql://", "postgresql+asyncpg://", 1)
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Redis Cache and Change Feed Configuration"""
    
    model_config = SettingsConfigDict(env_prefix="REDIS_")
    
    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[SecretStr] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    max_connections: int = Field(default=50, description="Max connections")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    decode_responses: bool = Field(default=True, description="Decode responses to strings")
    key_prefix: str = Field(default="nanoassist", description="Prefix of every cache key")
    url: Optional[str] = Field(default=None, alias="REDIS_URL", description="Redis URL (overrides host/port)")
    
    def get_url(self) -> str:
        """Redis connection URL - uses REDIS_URL if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        if self.password:
            return f"redis://:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class SupabaseSettings(BaseSettings):
    """Hosted auth service configuration"""
    
    model_config = SettingsConfigDict(env_prefix="SUPABASE_")
    
    url: str = Field(default="http://localhost:54321", description="Project URL")
    anon_key: SecretStr = Field(default="anon-key-change-me", description="Public anon API key")
    request_timeout: float = Field(default=10.0, description="HTTP timeout in seconds")
    persist_session: bool = Field(default=True, description="Persist the session in the cache")
    auto_refresh_token: bool = Field(default=True, description="Refresh the access token before expiry")
    refresh_margin_seconds: int = Field(default=60, description="Refresh this many seconds before expiry")
    
    @property
    def auth_url(self) -> str:
        """Base URL of the auth REST API"""
        return f"{self.url.rstrip('/')}/auth/v1"


class RealtimeSettings(BaseSettings):
    """Row change notification configuration"""
    
    model_config = SettingsConfigDict(env_prefix="REALTIME_")
    
    enabled: bool = Field(default=True, description="Subscribe to row change notifications")
    channel_prefix: str = Field(default="nanoassist:changes", description="Pub/sub channel prefix")
    recordings_debounce_ms: int = Field(default=500, description="Debounce window for recording inserts")


class DashboardSettings(BaseSettings):
    """Dashboard behaviour: time buckets, session bootstrap, caching"""
    
    model_config = SettingsConfigDict(env_prefix="DASHBOARD_")
    
    timezone: str = Field(default="Europe/Bucharest", description="Timezone used for chart buckets and date ranges")
    bootstrap_timeout_seconds: float = Field(default=3.0, description="Upper bound on the session loading phase")
    sign_out_timeout_seconds: float = Field(default=5.0, description="Upper bound on the remote sign-out call")
    profile_lookup: Literal["id", "email"] = Field(default="id", description="Column used to key profile rows")
    
    default_page_size: int = Field(default=10, description="Recordings page size")
    max_page_size: int = Field(default=100, description="Largest accepted recordings page size")
    history_days: int = Field(default=7, description="Snapshots returned by the history widget")
    
    chart_cache_ttl: int = Field(default=60, description="Chart series cache TTL in seconds")
    latest_metrics_ttl: int = Field(default=30, description="Latest snapshot cache TTL in seconds")
    history_ttl: int = Field(default=300, description="Snapshot history cache TTL in seconds")
    recordings_ttl: int = Field(default=60, description="Recordings page cache TTL in seconds")
    profile_cache_ttl: int = Field(default=1800, description="Advisory profile cache TTL in seconds")


class SecuritySettings(BaseSettings):
    """HTTP surface protection"""
    
    model_config = SettingsConfigDict(env_prefix="")
    
    # Rate limiting
    rate_limit_requests: int = Field(default=100, alias="RATE_LIMIT_REQUESTS", description="Rate limit requests")
    rate_limit_window_seconds: int = Field(default=60, alias="RATE_LIMIT_WINDOW_SECONDS", description="Rate limit window")
    
    # CORS
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )


class MonitoringSettings(BaseSettings):
    """Monitoring and Observability Configuration"""
    
    model_config = SettingsConfigDict(env_prefix="")
    
    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")
    
    # Metrics
    expose_metrics: bool = Field(default=True, alias="EXPOSE_METRICS", description="Mount Prometheus /metrics")


class Settings(BaseSettings):
    """
    Main Application Settings
    
    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )
    
    # Application
    app_name: str = Field(default="nanoassist-dashboard", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")
    
    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")
    
    # Version
    version: str = Field(default="1.0.0", description="Application version")
    
    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    supabase: SupabaseSettings = Field(default_factory=SupabaseSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    dashboard: DashboardSettings = Field(default_factory=DashboardSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    
    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()
    
    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"
    
    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.
    
    Uses LRU cache to ensure settings are only loaded once.
    
    Returns:
        Settings: Application settings instance
    """
    return Settings()


# Convenience function for accessing settings
settings = get_settings()
