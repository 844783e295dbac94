"""Application configuration using pydantic-settings.

Covers the backend API, the Solana RPC endpoint, the wallet encryption
policy and the devnet faucet switch.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: str = Field(default="human", description="Log format: human or json")

    # ======================
    # Backend API
    # ======================
    backend_api_url: str = Field(
        default="http://127.0.0.1:8000/api/", description="Application backend base URL"
    )
    backend_api_token: Optional[str] = Field(default=None, description="Backend bearer token")
    http_timeout: float = Field(default=30.0, description="HTTP timeout in seconds")

    # ======================
    # Solana
    # ======================
    solana_rpc_url: str = Field(
        default="https://api.devnet.solana.com", description="Solana RPC URL"
    )
    solana_network: str = Field(default="devnet", description="Solana cluster name")
    commitment: str = Field(default="confirmed", description="Commitment level for reads")
    confirm_timeout: float = Field(
        default=60.0, description="Maximum wait for transaction confirmation (seconds)"
    )
    confirm_poll_interval: float = Field(
        default=1.0, description="Signature status poll interval (seconds)"
    )

    # ======================
    # Tokens
    # ======================
    token_decimals: int = Field(default=6, description="SwapCoin decimals")
    mint_fee_amount: Decimal = Field(
        default=Decimal("20"), description="SwapCoin fee charged before minting"
    )

    # ======================
    # Funding
    # ======================
    faucet_topup_enabled: bool = Field(
        default=False, description="Request airdrops when the native balance is low"
    )
    min_native_balance: int = Field(
        default=5000, description="Minimum lamports required before signing"
    )
    faucet_topup_lamports: int = Field(
        default=50_000_000, description="Lamports requested from the faucet"
    )

    # ======================
    # Encryption
    # ======================
    kdf_salt: str = Field(default="some-salt", description="Public PBKDF2 salt")
    kdf_iterations: int = Field(default=100_000, description="PBKDF2 iteration count")

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/ecoswap.db",
        description="Wallet record store connection URL",
    )

    @model_validator(mode="after")
    def _faucet_not_in_production(self) -> "Settings":
        if self.faucet_topup_enabled and self.is_production:
            raise ValueError(
                "FAUCET_TOPUP_ENABLED cannot be set in production; "
                "configure a real funding step instead"
            )
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "backend_api_url": self.backend_api_url,
            "backend_api_token": "***" if self.backend_api_token else "(not set)",
            "solana": {
                "rpc": self.solana_rpc_url,
                "network": self.solana_network,
                "confirm_timeout": self.confirm_timeout,
            },
            "funding": {
                "faucet_topup_enabled": self.faucet_topup_enabled,
                "min_native_balance": self.min_native_balance,
            },
            "encryption": {
                "kdf": "PBKDF2-SHA256",
                "iterations": self.kdf_iterations,
                "cipher": "AES-256-GCM",
            },
            "database_url": self._redact_url(self.database_url),
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
