from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import requests
from loguru import logger

from trade_trigger_engine.aggregators import oneinch as agg_oneinch
from trade_trigger_engine.aggregators import zeroex as agg_zeroex
from trade_trigger_engine.config import AppSettings
from trade_trigger_engine.errors import ConfigMissing
from trade_trigger_engine.execution.evm_wallet import EvmWallet
from trade_trigger_engine.execution.uniswap_v3 import UniswapV3RouteQuoter
from trade_trigger_engine.models import SwapQuote, TokenDescriptor


class RouteQuoter(Protocol):
    def quote(
        self, token_in: TokenDescriptor, token_out: TokenDescriptor, amount_in: int, recipient: str
    ) -> SwapQuote | None: ...


@dataclass
class ZeroExRouteQuoter:
    base_url: str
    slippage_bps: int
    api_key: str | None = None

    def quote(self, token_in, token_out, amount_in, recipient):
        try:
            return agg_zeroex.get_swap_quote(
                base_url=self.base_url,
                sell_token=token_in.address,
                buy_token=token_out.address,
                sell_amount=amount_in,
                taker_address=recipient,
                slippage_bps=self.slippage_bps,
                api_key=self.api_key,
            )
        except requests.RequestException as e:
            logger.warning("0x quote failed: {}", e)
            return None


@dataclass
class OneInchRouteQuoter:
    base_url: str
    chain_id: int
    slippage_bps: int
    api_key: str | None = None

    def quote(self, token_in, token_out, amount_in, recipient):
        try:
            return agg_oneinch.get_swap_quote(
                base_url=self.base_url,
                chain_id=self.chain_id,
                src_token=token_in.address,
                dst_token=token_out.address,
                amount_in=amount_in,
                from_address=recipient,
                slippage_bps=self.slippage_bps,
                api_key=self.api_key,
            )
        except requests.RequestException as e:
            logger.warning("1inch quote failed: {}", e)
            return None


def make_route_quoter(settings: AppSettings, wallet: EvmWallet) -> RouteQuoter:
    source = (settings.route_source or "").lower()
    if source == "uniswap_v3":
        settings.require("swap_router_address")
        return UniswapV3RouteQuoter(
            quoter=wallet.quoter_v3(settings.uniswap_v3_quoter_address),
            router=wallet.router_v3(settings.swap_router_address),
            slippage_bps=settings.slippage_bps,
            deadline_seconds=settings.tx_deadline_seconds,
            fee_tiers=list(settings.v3_fee_tiers),
        )
    if source == "0x":
        return ZeroExRouteQuoter(
            base_url=settings.zeroex_base_url,
            slippage_bps=settings.slippage_bps,
            api_key=settings.zeroex_api_key,
        )
    if source == "1inch":
        return OneInchRouteQuoter(
            base_url=settings.oneinch_base_url,
            chain_id=settings.chain_id,
            slippage_bps=settings.slippage_bps,
            api_key=settings.oneinch_api_key,
        )
    raise ConfigMissing(f"TTE_ROUTE_SOURCE (unknown value {settings.route_source!r})")
