from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from trade_trigger_engine.errors import ConfigMissing


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="TTE_", extra="allow")

    # Database (run journal). Unset disables journaling.
    database_url: str | None = None

    # EVM provider
    rpc_url: str | None = None
    chain_id: int = 1

    # Execution
    private_key: str | None = None
    executor_address: str | None = None
    swap_router_address: str | None = "0xE592427A0AEce92De3Edee1F18E0157C05861564"  # Uniswap V3 SwapRouter
    uniswap_v3_quoter_address: str = "0xb27308f9F90D607463bb33eA1BeBb41C27CE5AB6"
    slippage_bps: int = 50  # 0.5%
    tx_deadline_seconds: int = 600
    receipt_timeout_sec: float = 600.0

    # Pair: token_in is sold, token_out is bought
    token_in_address: str | None = "0x1c95519d3fc922fc04fcf5d099be4a1ed8b15240"
    token_out_address: str | None = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"  # WETH

    # Route quoting: 'uniswap_v3' | '0x' | '1inch'
    route_source: str = "uniswap_v3"
    v3_fee_tiers: list[int] = [500, 3000, 10000]
    oneinch_base_url: str = "https://api.1inch.dev/swap/v5.2"
    oneinch_api_key: str | None = None
    zeroex_base_url: str = "https://api.0x.org"
    zeroex_api_key: str | None = None

    # Gas
    priority_fee_gwei: float = 1.0
    economical_priority_fee_gwei: float = 0.5
    gas_limit: int = 500_000
    gas_limit_upper_bound: int = 3_000_000

    # Trade feed (Bitquery streaming)
    bitquery_token: str | None = None
    bitquery_ws_url: str = "wss://streaming.bitquery.io/graphql"
    feed_network: str = "eth"
    feed_mempool: bool = True
    feed_protocol_family: str = "Uniswap"
    feed_min_amount_usd: str = "1"
    feed_timeout_sec: float = 600.0
    feed_stop_grace_sec: float = 1.0

    # Logging
    log_level: str = "INFO"

    # --- Validators to coerce empty strings in optional envs to None ---
    @field_validator(
        "database_url",
        "rpc_url",
        "private_key",
        "executor_address",
        "swap_router_address",
        "token_in_address",
        "token_out_address",
        "oneinch_api_key",
        "zeroex_api_key",
        "bitquery_token",
        mode="before",
    )
    @classmethod
    def _empty_str_to_none(cls, v):
        if v == "":
            return None
        return v

    def require(self, *names: str) -> None:
        """Raise ConfigMissing for the first unset setting among `names`."""
        for name in names:
            if getattr(self, name, None) in (None, ""):
                raise ConfigMissing(f"TTE_{name.upper()}")
