import os
from datetime import timedelta

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from wallwhale.sdk.models import ApiKeyConfig, SdkConfig
from wallwhale.services.cache import CacheConfig
from wallwhale.services.circuit_breaker import CircuitBreakerConfig
from wallwhale.services.client import OptimizationConfig
from wallwhale.services.polling import PollConfig
from wallwhale.services.pool import PoolConfig


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # WallWhale API Configuration
    api_base_url: str = Field(default="http://localhost:3000", alias="WALLWHALE_BASE_URL")
    api_key: str = Field(default="", alias="WALLWHALE_API_KEY")
    api_key_in_header: bool = Field(default=False, alias="WALLWHALE_API_KEY_IN_HEADER")
    request_timeout: float = Field(default=30.0, alias="WALLWHALE_REQUEST_TIMEOUT")

    # Download Defaults
    account_name: str = Field(default="", alias="WALLWHALE_ACCOUNT")
    save_root: str | None = Field(default=None, alias="WALLWHALE_SAVE_ROOT")
    poll_interval: float = Field(default=2.0, alias="POLL_INTERVAL")
    poll_timeout: float = Field(default=300.0, alias="POLL_TIMEOUT")

    # Cache Configuration
    cache_enabled: bool = Field(default=True, alias="CACHE_ENABLED")
    cache_ttl_seconds: float = Field(default=30.0, alias="CACHE_TTL")
    cache_max_size: int = Field(default=100, alias="CACHE_MAX_SIZE")

    # Circuit Breaker Configuration
    circuit_breaker_enabled: bool = Field(default=True, alias="CIRCUIT_BREAKER_ENABLED")
    failure_threshold: int = Field(default=5, alias="CIRCUIT_FAILURE_THRESHOLD")
    recovery_timeout_seconds: float = Field(default=60.0, alias="CIRCUIT_RECOVERY_TIMEOUT")
    exponential_backoff: bool = Field(default=False, alias="CIRCUIT_EXPONENTIAL_BACKOFF")

    # Connection Pool Configuration
    pool_enabled: bool = Field(default=True, alias="POOL_ENABLED")
    max_connections: int = Field(default=3, alias="POOL_MAX_CONNECTIONS")
    pool_timeout: float = Field(default=10.0, alias="POOL_TIMEOUT")
    retry_attempts: int = Field(default=3, alias="POOL_RETRY_ATTEMPTS")

    debug: bool = Field(default=False, alias="WALLWHALE_DEBUG")

    def to_sdk_config(self) -> SdkConfig:
        return SdkConfig(
            base_url=self.api_base_url,
            auth=ApiKeyConfig(api_key=self.api_key, use_header=self.api_key_in_header),
        )

    def to_optimization_config(self) -> OptimizationConfig:
        return OptimizationConfig(
            cache=CacheConfig(
                enabled=self.cache_enabled,
                default_ttl=timedelta(seconds=self.cache_ttl_seconds),
                max_size=self.cache_max_size,
            ),
            circuit_breaker=CircuitBreakerConfig(
                enabled=self.circuit_breaker_enabled,
                failure_threshold=self.failure_threshold,
                recovery_timeout=timedelta(seconds=self.recovery_timeout_seconds),
                use_exponential_backoff=self.exponential_backoff,
            ),
            pool=PoolConfig(
                enabled=self.pool_enabled,
                max_connections=self.max_connections,
                timeout=self.pool_timeout,
                retry_attempts=self.retry_attempts,
            ),
            debug=self.debug,
        )

    def to_poll_config(self) -> PollConfig:
        return PollConfig(poll_interval=self.poll_interval, timeout=self.poll_timeout)


def load_settings(env_file: str | None = None) -> Settings:
    """Load settings from the environment, after reading a .env file."""
    load_dotenv(env_file)
    return Settings.model_validate(dict(os.environ))
