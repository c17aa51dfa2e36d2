"""Application configuration using pydantic-settings.

One managed CKB key, its transfer limits, the CKB/Fiber node endpoints and
the chain sync schedule are all read from environment variables (or `.env`).
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/ckbvault.db",
        description="Shared counter store connection URL",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=3000, description="API server port")
    ai_token: str = Field(default="", description="Authorization header value for mutating endpoints")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    # ======================
    # Managed key
    # ======================
    private_key: Optional[str] = Field(
        default=None, description="Hex secp256k1 private key of the managed wallet"
    )

    # ======================
    # CKB node
    # ======================
    ckb_network: str = Field(default="testnet", description="testnet or mainnet")
    ckb_rpc_url: str = Field(
        default="https://testnet.ckbapp.dev/", description="CKB node JSON-RPC URL"
    )
    ckb_indexer_url: Optional[str] = Field(
        default=None, description="CKB indexer URL (defaults to the node URL)"
    )
    fee_rate: int = Field(default=1000, description="Fee rate in shannons per 1000 bytes")
    rpc_timeout_seconds: float = Field(default=30.0, description="JSON-RPC request timeout")

    # ======================
    # Fiber node
    # ======================
    fiber_rpc_url: str = Field(
        default="http://127.0.0.1:8227", description="Fiber node JSON-RPC URL"
    )
    default_peer_id: Optional[str] = Field(default=None, description="Default channel peer")
    close_code_hash: Optional[str] = Field(default=None, description="Channel close script code hash")
    close_args: Optional[str] = Field(default=None, description="Channel close script args")
    payment_poll_interval_seconds: float = Field(
        default=1.0, description="Delay between payment status polls"
    )
    payment_timeout_seconds: float = Field(
        default=60.0, description="Maximum wait for an inflight payment"
    )

    # ======================
    # Transfer limits
    # ======================
    ckb_hourly_limit: int = Field(default=3000, description="Max CKB sent per UTC hour")
    ckb_destination_limit: Optional[int] = Field(
        default=1, description="Max native transfers to a single destination"
    )
    default_token_hourly_limit: int = Field(
        default=1000, description="Hourly ceiling for tokens without an override"
    )
    token_hourly_limits: dict[str, int] = Field(
        default_factory=dict, description="JSON map of xUDT args to hourly ceiling"
    )
    token_destination_limits: dict[str, int] = Field(
        default_factory=dict, description="JSON map of xUDT args to destination ceiling"
    )
    token_decimals: int = Field(default=8, description="Display decimals of xUDT amounts")

    # ======================
    # Chain sync
    # ======================
    sync_enabled: bool = Field(default=True, description="Run the chain sync scheduler")
    sync_interval_seconds: float = Field(default=3.0, description="Seconds between sync ticks")
    sync_lock_ttl_seconds: int = Field(default=60, description="Sync lock expiry")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_mainnet(self) -> bool:
        return self.ckb_network.lower() == "mainnet"

    @property
    def indexer_url(self) -> str:
        return self.ckb_indexer_url or self.ckb_rpc_url

    @property
    def has_wallet(self) -> bool:
        """Check if the managed private key is configured."""
        return bool(self.private_key)

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "ai_token": "***" if self.ai_token else "(not set)",
            "wallet_configured": self.has_wallet,
            "ckb": {
                "network": self.ckb_network,
                "rpc": self.ckb_rpc_url,
                "indexer": self.indexer_url,
                "fee_rate": self.fee_rate,
            },
            "fiber": {
                "rpc": self.fiber_rpc_url,
                "default_peer_id": self.default_peer_id or "(not set)",
            },
            "limits": {
                "ckb_hourly": self.ckb_hourly_limit,
                "ckb_destination": self.ckb_destination_limit,
                "token_hourly_default": self.default_token_hourly_limit,
                "token_hourly": self.token_hourly_limits,
                "token_destination": self.token_destination_limits,
            },
            "sync": {
                "enabled": self.sync_enabled,
                "interval_seconds": self.sync_interval_seconds,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
