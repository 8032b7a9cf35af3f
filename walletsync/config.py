import os

from decimal import Decimal
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Pick up the legacy single-endpoint variable when no ledger URL is set."""

        super().model_post_init(__context)

        if not self.rpc_url:
            fallback = os.getenv("WEB3_PROVIDER_URI") or os.getenv("ETH_RPC_URL")
            object.__setattr__(self, "rpc_url", fallback or "https://rpc.sepolia.org")

    log_level: str = Field(default="INFO", description="Logging level")

    # Endpoints
    rpc_url: str = Field(
        default="",
        description="Ledger JSON-RPC HTTP endpoint",
        validation_alias=AliasChoices("rpc_url", "ledger_rpc_url", "RPC_URL", "LEDGER_RPC_URL"),
    )
    ws_url: str = Field(
        default="",
        description="Ledger websocket endpoint; empty means push subscriptions are emulated by polling",
    )
    wallet_rpc_url: str = Field(
        default="http://127.0.0.1:1248",
        description="JSON-RPC endpoint of the external signer acting as wallet provider",
    )
    request_timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")

    # Network
    expected_chain_id: int = Field(default=11155111, description="Chain the application expects (Sepolia)")
    expected_chain_name: str = Field(default="Sepolia Test Network", description="Display name of the expected chain")
    expected_chain_rpc_url: str = Field(
        default="https://rpc.sepolia.org",
        description="Public RPC advertised when asking the wallet to add the expected chain",
    )
    native_symbol: str = Field(default="ETH", description="Symbol of the native coin")
    native_currency_name: str = Field(default="Sepolia ETH", description="Native currency name advertised when adding the chain")
    explorer_url: str = Field(default="https://sepolia.etherscan.io", description="Block explorer base URL")
    explorer_tx_url: str = Field(
        default="https://sepolia.etherscan.io/tx/{tx_hash}",
        description="Explorer link template for a transaction hash",
    )

    # Token
    default_token: str = Field(default="MTK", description="Token registry key used by the wallet session")

    # Synchronisation
    balance_poll_interval_seconds: float = Field(default=15.0, gt=0, description="Balance refresh interval")
    block_poll_interval_seconds: float = Field(
        default=4.0,
        gt=0,
        description="Block header emulation interval when no websocket endpoint is configured",
    )
    provider_event_poll_seconds: float = Field(
        default=2.0,
        gt=0,
        description="How often the wallet provider watcher checks for account/chain changes",
    )

    # Gas
    gas_quote_freshness_seconds: float = Field(default=30.0, gt=0, description="Gas quote freshness window")
    gas_limit_multiplier: Decimal = Field(
        default=Decimal("1.1"),
        ge=1,
        description="Safety multiplier applied to estimated gas units",
    )

    # Transaction tracking
    receipt_poll_interval_seconds: float = Field(default=1.0, gt=0, description="Receipt poll interval")
    receipt_max_attempts: int = Field(default=30, ge=1, description="Receipt poll attempts before giving up")
    history_limit: int = Field(default=10, ge=1, le=500, description="Finished transfers kept in history")
    reject_duplicate_submissions: bool = Field(
        default=False,
        description="Reject a submit identical to a transfer that is still pending",
    )

    def explorer_link(self, tx_hash: str) -> str:
        return self.explorer_tx_url.format(tx_hash=tx_hash)


# Global settings instance
settings = Settings()
