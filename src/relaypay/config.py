"""Application configuration using pydantic-settings.

Relayer keys, RPC endpoints and the wallet encryption key are all read from
the environment (or a local .env file).
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional
from urllib.parse import urlsplit

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
        default="sqlite+aiosqlite:///./data/relaypay.db",
        description="Database connection URL",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug mode")

    # ======================
    # Admin
    # ======================
    admin_token: str = Field(default="", description="Admin API token for protected endpoints")

    # ======================
    # Wallet Encryption
    # ======================
    encryption_key: Optional[str] = Field(
        default=None, description="AES-256 key for wallet private keys (64 hex chars)"
    )
    allow_plaintext_wallets: bool = Field(
        default=False,
        description="Allow reading legacy wallets that have not been migrated to encryption",
    )

    # ======================
    # Base (EVM)
    # ======================
    base_rpc_url: str = Field(default="https://mainnet.base.org", description="Base RPC URL")
    base_chain_id: int = Field(default=8453, description="Base chain ID")
    base_usdc_address: str = Field(
        default="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        description="USDC token contract on Base",
    )

    # ======================
    # Solana
    # ======================
    solana_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com", description="Solana RPC URL"
    )
    solana_usdc_mint: str = Field(
        default="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
        description="USDC mint on Solana",
    )

    # ======================
    # Relayers (fee payers)
    # ======================
    relayer_private_key: Optional[str] = Field(
        default=None, description="EVM relayer private key (0x hex)"
    )
    solana_relayer_private_key: Optional[str] = Field(
        default=None, description="Solana relayer secret key (base64 of the 64-byte keypair)"
    )
    evm_min_relayer_balance: Decimal = Field(
        default=Decimal("0.00005"), description="Minimum relayer ETH balance to accept transfers"
    )
    solana_min_relayer_balance: Decimal = Field(
        default=Decimal("0.001"), description="Minimum relayer SOL balance to accept transfers"
    )

    # ======================
    # Gasless Transfers
    # ======================
    permit_deadline_seconds: int = Field(
        default=3600, description="Validity window of an EIP-2612 permit signature"
    )
    permit_gas_limit: int = Field(default=100_000, description="Gas limit for permit()")
    transfer_gas_limit: int = Field(default=70_000, description="Gas limit for transferFrom()")
    confirmation_timeout: float = Field(
        default=120.0, description="Seconds to wait for a transaction to confirm"
    )
    confirmation_poll_interval: float = Field(
        default=2.0, description="Seconds between confirmation polls"
    )
    transfer_timeout: float = Field(
        default=300.0, description="Wall-clock bound for a whole transfer request"
    )
    transfer_lock_timeout: float = Field(
        default=30.0, description="Seconds to wait for a concurrent transfer of the same user"
    )

    # ======================
    # Block Explorers
    # ======================
    base_explorer_url: str = Field(
        default="https://basescan.org/tx/", description="Base transaction explorer prefix"
    )
    solana_explorer_url: str = Field(
        default="https://solscan.io/tx/", description="Solana transaction explorer prefix"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def has_evm_relayer(self) -> bool:
        return bool(self.relayer_private_key)

    @property
    def has_solana_relayer(self) -> bool:
        return bool(self.solana_relayer_private_key)

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "encryption_key": "***" if self.encryption_key else "(not set)",
            "allow_plaintext_wallets": self.allow_plaintext_wallets,
            "networks": {
                "evm": {
                    "rpc": self._redact_rpc_url(self.base_rpc_url),
                    "chain_id": self.base_chain_id,
                    "usdc": self.base_usdc_address,
                    "relayer": "***" if self.has_evm_relayer else "(not set)",
                    "min_relayer_balance": str(self.evm_min_relayer_balance),
                },
                "solana": {
                    "rpc": self._redact_rpc_url(self.solana_rpc_url),
                    "usdc": self.solana_usdc_mint,
                    "relayer": "***" if self.has_solana_relayer else "(not set)",
                    "min_relayer_balance": str(self.solana_min_relayer_balance),
                },
            },
            "timeouts": {
                "confirmation": self.confirmation_timeout,
                "transfer": self.transfer_timeout,
                "lock": self.transfer_lock_timeout,
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

    @staticmethod
    def _redact_rpc_url(url: str) -> str:
        """Keep scheme and host of an RPC URL; provider API keys sit in the
        path, query or credentials."""
        parts = urlsplit(url)
        if not parts.scheme or not parts.hostname:
            return "***" if url else url
        host = parts.hostname if parts.port is None else f"{parts.hostname}:{parts.port}"
        if parts.path.strip("/") or parts.query or parts.username:
            return f"{parts.scheme}://{host}/***"
        return f"{parts.scheme}://{host}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
