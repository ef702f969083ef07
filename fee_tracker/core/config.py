from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # API Keys
    etherscan_api_key: str = Field(default="", description="Etherscan V2 API key (all chains)")
    coingecko_api_key: str = Field(default="", description="CoinGecko demo API key")

    # URLs
    etherscan_base_url: str = "https://api.etherscan.io/v2/api"
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"

    # Fee collection addresses
    ethereum_fee_address: str = "0x4169447a424ec645f8a24dccfd8328f714dd5562"
    hyperevm_fee_address: str = "0xbc0b9c63dc0581278d4b554af56858298bf2a9ec"
    ethereum_chain_id: int = 1
    hyperevm_chain_id: int = 999

    # Explorer fetching
    fetch_max_retries: int = Field(default=3, description="Attempts per explorer call")
    fetch_backoff_seconds: float = Field(default=1.0, description="Linear backoff base delay")
    window_timeout_seconds: float = Field(default=15.0, description="Deadline for a single block window")
    window_delay_seconds: float = Field(default=0.2, description="Pause between block windows")
    ethereum_window_blocks: int = 250_000
    hyperevm_window_blocks: int = 100_000
    ethereum_include_internal: bool = Field(default=False, description="Also collect native ETH from internal calls")
    ethereum_max_empty_windows: int = 4
    hyperevm_max_empty_windows: int = 20
    bisect_truncated_windows: bool = False
    collection_budget_seconds: float = Field(default=55.0, description="Wall clock budget for all collectors")

    # Classification
    method_resolution_limit: int = Field(default=50, description="Recent hashes to decode method names for")
    method_resolution_delay_seconds: float = 0.1
    classifier_magnitude_heuristic: bool = Field(
        default=False, description="Infer methods from amounts when none is resolvable"
    )

    # Prices
    price_cache_ttl_seconds: int = 3600

    # Offline import (explorer CSV exports), used instead of live fetching when set
    ethereum_csv_path: Optional[str] = None
    hyperevm_csv_path: Optional[str] = None

    # Report
    fee_start_date: Optional[str] = Field(default=None, description="ISO date; earlier transfers are ignored")
    recent_transactions_limit: int = 20
    report_cache_ttl_seconds: int = 300
    report_stale_ttl_seconds: int = 7 * 24 * 3600

    # State storage
    state_backend: str = Field(default="memory", description="memory/redis/sqlite")
    redis_url: str = Field(default="redis://localhost:6379", description="Redis connection URL")
    state_db_path: str = "fee_tracker_state.db"

    # Backend
    backend_host: str = "0.0.0.0"
    backend_port: int = 8004
    environment: str = Field(default="development", description="dev/staging/production")
    cors_origins: str = Field(default="http://localhost:3000", description="Comma separated origins")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("ethereum_fee_address", "hyperevm_fee_address")
    @classmethod
    def normalize_address(cls, v):
        return v.strip().lower()

    @field_validator("state_backend")
    @classmethod
    def validate_state_backend(cls, v):
        v = v.strip().lower()
        if v not in ("memory", "redis", "sqlite"):
            raise ValueError(f"Unsupported state backend: {v}")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def has_explorer_key(self) -> bool:
        return bool(self.etherscan_api_key)

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
