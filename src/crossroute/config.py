"""Client configuration using pydantic-settings.

Values are read from environment variables (or a local .env file) once and
cached; components receive the settings object explicitly.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ROUTING_API_URL = "https://api.skip.money/v1"


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Routing service
    # ======================
    routing_api_url: str = Field(
        default=DEFAULT_ROUTING_API_URL, description="Routing/status service base URL"
    )
    client_id: str = Field(
        default="crossroute", description="Client identifier sent with every routing request"
    )
    api_key: str = Field(default="", description="Optional routing service API key")
    http_timeout: float = Field(default=30.0, description="HTTP timeout in seconds")

    # ======================
    # Gas & fees
    # ======================
    gas_multiplier: float = Field(
        default=1.5, gt=1.0, description="Safety multiplier applied to simulated gas"
    )
    fee_denom_overrides: dict[str, str] = Field(
        default_factory=dict,
        description="Chain id -> fee denom used instead of the derived default",
    )

    # ======================
    # Signing
    # ======================
    timeout_height_offset: int = Field(
        default=100, gt=0, description="Blocks added to the latest height for timeout-bound chains"
    )
    signing_family_overrides: dict[str, str] = Field(
        default_factory=dict,
        description="Chain id -> signing family (generic, ethermint, injective)",
    )

    # ======================
    # Broadcast & tracking
    # ======================
    broadcast_via_api: bool = Field(
        default=False, description="Submit signed Cosmos txs through the routing service"
    )
    poll_interval_seconds: float = Field(
        default=1.0, gt=0, description="Status polling interval"
    )
    tracking_timeout_seconds: Optional[float] = Field(
        default=None, description="Maximum tracking duration (None = until terminal state)"
    )

    # ======================
    # Chain registry / endpoints
    # ======================
    chain_registry_path: Optional[str] = Field(
        default=None, description="Path to a chain registry JSON file (default: bundled)"
    )
    evm_rpc_urls: dict[str, str] = Field(
        default_factory=dict, description="EVM chain id -> JSON-RPC URL"
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "routing": {
                "url": self.routing_api_url,
                "client_id": self.client_id,
                "api_key": "***" if self.api_key else "(not set)",
                "timeout": self.http_timeout,
            },
            "gas": {
                "multiplier": self.gas_multiplier,
                "fee_denom_overrides": dict(self.fee_denom_overrides),
            },
            "signing": {
                "timeout_height_offset": self.timeout_height_offset,
                "family_overrides": dict(self.signing_family_overrides),
            },
            "tracking": {
                "broadcast_via_api": self.broadcast_via_api,
                "poll_interval": self.poll_interval_seconds,
                "timeout": self.tracking_timeout_seconds,
            },
            "registry": self.chain_registry_path or "(bundled)",
            "evm_rpc": {chain_id: self._redact_url(url) for chain_id, url in self.evm_rpc_urls.items()},
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact API keys embedded in RPC URL paths (e.g. .../v3/<key>)."""
        if "://" not in url:
            return url
        proto, rest = url.split("://", 1)
        host, _, path = rest.partition("/")
        parts = path.split("/") if path else []
        if parts and len(parts[-1]) >= 24:
            parts[-1] = "***"
        return f"{proto}://{host}" + ("/" + "/".join(parts) if parts else "")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
