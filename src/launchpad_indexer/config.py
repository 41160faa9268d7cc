"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
launchpad indexer, loading and validating environment variables at
startup. Components never read the environment themselves; they receive
the relevant settings group at construction.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_TIMEFRAME_RE = re.compile(r"^(\d+)([smhd])$")

DEFAULT_TIMEFRAMES = "5s,1m,5m,15m,30m,1h,4h,1d"


def _normalize_address(value: str | None, *, field: str) -> str | None:
    if value is None or value == "":
        return None
    if not _ADDRESS_RE.match(value):
        raise ValueError(f"{field} must be a 0x-prefixed 20-byte hex address")
    return value.lower()


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", populate_by_name=True)

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL connection string (sqlite+aiosqlite is accepted for local runs)",
    )
    pool_size: int = Field(
        default=5,
        alias="DATABASE_POOL_SIZE",
        ge=1,
        le=100,
        description="Connection pool size (ignored for SQLite)",
    )
    echo: bool = Field(
        default=False,
        alias="DATABASE_ECHO",
        description="Echo SQL statements for debugging",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL (or sqlite+aiosqlite) connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", populate_by_name=True)

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class ChainSettings(BaseModel):
    """One indexed chain: its RPC endpoints and the contracts to follow.

    Parsed from the ``INDEXER_CHAINS`` JSON list, e.g.::

        INDEXER_CHAINS='[{"chain_id": 97, "rpc_urls": "https://a,https://b",
                          "factory_address": "0x...", "factory_start_block": 123}]'
    """

    chain_id: int = Field(ge=1)
    name: str | None = None
    rpc_urls: list[str] = Field(min_length=1)
    factory_address: str | None = None
    factory_start_block: int | None = Field(default=None, ge=0)
    vote_treasury_address: str | None = None
    vote_treasury_start_block: int | None = Field(default=None, ge=0)

    @field_validator("rpc_urls", mode="before")
    @classmethod
    def split_rpc_urls(cls, v: Any) -> Any:
        """Accept a comma-separated string as well as a JSON list."""
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @field_validator("rpc_urls")
    @classmethod
    def validate_rpc_urls(cls, v: list[str]) -> list[str]:
        for url in v:
            if not url.startswith(("http://", "https://")):
                raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v

    @field_validator("factory_address")
    @classmethod
    def validate_factory_address(cls, v: str | None) -> str | None:
        return _normalize_address(v, field="factory_address")

    @field_validator("vote_treasury_address")
    @classmethod
    def validate_vote_treasury_address(cls, v: str | None) -> str | None:
        return _normalize_address(v, field="vote_treasury_address")

    @property
    def label(self) -> str:
        return self.name or f"chain-{self.chain_id}"


class ScannerSettings(BaseSettings):
    """Live log scanning settings (chunking, confirmations, retries)."""

    model_config = SettingsConfigDict(env_prefix="SCANNER_", extra="ignore", populate_by_name=True)

    chunk_size_ceiling: int = Field(
        default=2000,
        alias="SCANNER_CHUNK_SIZE_CEILING",
        ge=1,
        le=1_000_000,
        description="Widest block range requested from eth_getLogs",
    )
    chunk_size_floor: int = Field(
        default=250,
        alias="SCANNER_CHUNK_SIZE_FLOOR",
        ge=1,
        le=1_000_000,
        description="Narrowest block range the scanner shrinks down to",
    )
    chunk_shrink_factor: float = Field(
        default=0.5,
        alias="SCANNER_CHUNK_SHRINK_FACTOR",
        gt=0.0,
        lt=1.0,
        description="Multiplier applied to the chunk size on a range-too-large error",
    )
    chunk_growth_factor: float = Field(
        default=2.0,
        alias="SCANNER_CHUNK_GROWTH_FACTOR",
        ge=1.0,
        le=16.0,
        description="Multiplier applied to the chunk size after a run of successful windows",
    )
    chunk_growth_after: int = Field(
        default=3,
        alias="SCANNER_CHUNK_GROWTH_AFTER",
        ge=1,
        le=1000,
        description="Consecutive successful windows before the chunk size grows",
    )
    confirmations: int = Field(
        default=1,
        alias="SCANNER_CONFIRMATIONS",
        ge=0,
        le=10_000,
        description="Blocks behind the observed head treated as safe to index",
    )
    interval_seconds: float = Field(
        default=5.0,
        alias="SCANNER_INTERVAL_SECONDS",
        gt=0.0,
        le=3600.0,
        description="Scan cycle interval per chain",
    )
    start_lookback_blocks: int = Field(
        default=250_000,
        alias="SCANNER_START_LOOKBACK_BLOCKS",
        ge=0,
        description="Blocks behind head to start from when no start block is configured",
    )
    max_attempts: int = Field(
        default=6,
        alias="SCANNER_MAX_ATTEMPTS",
        ge=1,
        le=100,
        description="Attempts per sub-range before the cycle aborts",
    )
    backoff_base_seconds: float = Field(
        default=0.75,
        alias="SCANNER_BACKOFF_BASE_SECONDS",
        ge=0.0,
        le=60.0,
        description="Initial retry delay (doubles per attempt)",
    )
    backoff_max_seconds: float = Field(
        default=15.0,
        alias="SCANNER_BACKOFF_MAX_SECONDS",
        ge=0.0,
        le=600.0,
        description="Retry delay cap",
    )
    rpc_timeout_seconds: float = Field(
        default=20.0,
        alias="SCANNER_RPC_TIMEOUT_SECONDS",
        gt=0.0,
        le=600.0,
        description="Timeout applied to every RPC call",
    )
    max_requests_per_second: float = Field(
        default=10.0,
        alias="SCANNER_MAX_REQUESTS_PER_SECOND",
        gt=0.0,
        le=10_000.0,
        description="Token-bucket rate limit per chain client",
    )
    block_timestamp_cache_ttl_seconds: int = Field(
        default=86_400,
        alias="SCANNER_BLOCK_TIMESTAMP_CACHE_TTL_SECONDS",
        ge=1,
        description="Redis TTL for cached block timestamps (keyed by block hash)",
    )

    @model_validator(mode="after")
    def validate_chunk_bounds(self) -> ScannerSettings:
        if self.chunk_size_floor > self.chunk_size_ceiling:
            raise ValueError("SCANNER_CHUNK_SIZE_FLOOR must be <= SCANNER_CHUNK_SIZE_CEILING")
        if self.backoff_base_seconds > self.backoff_max_seconds:
            raise ValueError("SCANNER_BACKOFF_BASE_SECONDS must be <= SCANNER_BACKOFF_MAX_SECONDS")
        return self


class RepairSettings(BaseSettings):
    """Reorg repair job settings."""

    model_config = SettingsConfigDict(env_prefix="REPAIR_", extra="ignore", populate_by_name=True)

    enabled: bool = Field(
        default=True,
        alias="REPAIR_ENABLED",
        description="Run the periodic reorg repair job",
    )
    interval_seconds: float = Field(
        default=60.0,
        alias="REPAIR_INTERVAL_SECONDS",
        gt=0.0,
        le=86_400.0,
        description="Repair cycle interval per chain",
    )
    lookback_blocks: int = Field(
        default=20_000,
        alias="REPAIR_LOOKBACK_BLOCKS",
        ge=0,
        description="Oldest block (behind the confirmed head) the repair job may rewind to",
    )
    rewind_blocks: int = Field(
        default=200,
        alias="REPAIR_REWIND_BLOCKS",
        ge=0,
        description="Blocks the cursor is rewound by on each repair pass",
    )


class RealtimeSettings(BaseSettings):
    """Realtime publishing and subscribe-token settings."""

    model_config = SettingsConfigDict(env_prefix="REALTIME_", extra="ignore", populate_by_name=True)

    enabled: bool = Field(
        default=True,
        alias="REALTIME_ENABLED",
        description="Publish committed events to Redis pub/sub",
    )
    channel_prefix: str = Field(
        default="token",
        alias="REALTIME_CHANNEL_PREFIX",
        min_length=1,
        max_length=64,
        description="Channel name prefix, channels are <prefix>:<chain_id>:<campaign>",
    )
    token_ttl_seconds: int = Field(
        default=3600,
        alias="REALTIME_TOKEN_TTL_SECONDS",
        ge=60,
        le=86_400,
        description="Lifetime of issued subscribe tokens",
    )
    token_key_prefix: str = Field(
        default="launchpad:realtime:token:",
        alias="REALTIME_TOKEN_KEY_PREFIX",
        description="Redis key prefix for issued subscribe tokens",
    )


class CandleSettings(BaseSettings):
    """Candle aggregation settings."""

    model_config = SettingsConfigDict(env_prefix="CANDLE_", extra="ignore", populate_by_name=True)

    timeframes: str = Field(
        default=DEFAULT_TIMEFRAMES,
        alias="CANDLE_TIMEFRAMES",
        description="Comma-separated timeframe labels (<n>s, <n>m, <n>h, <n>d)",
    )

    @field_validator("timeframes")
    @classmethod
    def validate_timeframes(cls, v: str) -> str:
        labels = [part.strip() for part in v.split(",") if part.strip()]
        if not labels:
            raise ValueError("CANDLE_TIMEFRAMES must name at least one timeframe")
        for label in labels:
            match = _TIMEFRAME_RE.match(label)
            if not match or int(match.group(1)) <= 0:
                raise ValueError(f"Invalid timeframe label: {label!r}")
        if len(set(labels)) != len(labels):
            raise ValueError("CANDLE_TIMEFRAMES contains duplicates")
        return ",".join(labels)

    @property
    def labels(self) -> list[str]:
        return self.timeframes.split(",")


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from launchpad_indexer.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print([chain.chain_id for chain in settings.chains])
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
        populate_by_name=True,
    )

    # Nested configuration groups
    #
    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    scanner: ScannerSettings = Field(
        default_factory=lambda: ScannerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    repair: RepairSettings = Field(
        default_factory=lambda: RepairSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    realtime: RealtimeSettings = Field(
        default_factory=lambda: RealtimeSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    candles: CandleSettings = Field(
        default_factory=lambda: CandleSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    chains: list[ChainSettings] = Field(
        default_factory=list,
        alias="INDEXER_CHAINS",
        description="JSON list of chains to index",
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    @field_validator("chains")
    @classmethod
    def validate_unique_chains(cls, v: list[ChainSettings]) -> list[ChainSettings]:
        ids = [chain.chain_id for chain in v]
        if len(set(ids)) != len(ids):
            raise ValueError("INDEXER_CHAINS contains duplicate chain_id entries")
        return v

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def get_chain(self, chain_id: int) -> ChainSettings:
        for chain in self.chains:
            if chain.chain_id == chain_id:
                return chain
        raise KeyError(f"Chain {chain_id} is not configured")

    def redacted_summary(self) -> dict[str, Any]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "chains": [
                {
                    "chain_id": str(chain.chain_id),
                    "rpc_urls": [self._redact_url(url) for url in chain.rpc_urls],
                    "factory_address": chain.factory_address or "(not set)",
                    "factory_start_block": str(chain.factory_start_block)
                    if chain.factory_start_block is not None
                    else "(lookback)",
                    "vote_treasury_address": chain.vote_treasury_address or "(not set)",
                }
                for chain in self.chains
            ],
            "scanner": {
                "chunk_size_ceiling": str(self.scanner.chunk_size_ceiling),
                "chunk_size_floor": str(self.scanner.chunk_size_floor),
                "confirmations": str(self.scanner.confirmations),
                "interval_seconds": str(self.scanner.interval_seconds),
            },
            "repair": {
                "enabled": str(self.repair.enabled),
                "lookback_blocks": str(self.repair.lookback_blocks),
                "rewind_blocks": str(self.repair.rewind_blocks),
            },
            "realtime_enabled": str(self.realtime.enabled),
            "candle_timeframes": self.candles.timeframes,
            "log_level": self.log_level,
        }

    def validate_requirements(self, *, command: Literal["run", "scan-once", "repair-once"]) -> None:
        """Validate command-specific requirements.

        Indexing commands refuse to run without at least one chain that has
        a contract to follow.
        """
        if not self.chains:
            raise ValueError(f"INDEXER_CHAINS is required for '{command}'")
        for chain in self.chains:
            if not (chain.factory_address or chain.vote_treasury_address):
                raise ValueError(
                    f"Chain {chain.chain_id} needs factory_address or vote_treasury_address"
                )

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            # URL has credentials - redact the password
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
