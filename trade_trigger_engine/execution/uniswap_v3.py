from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from web3 import Web3
from web3.exceptions import Web3Exception

from trade_trigger_engine.models import SwapQuote, TokenDescriptor


@dataclass
class V3SinglePlan:
    router: str
    token_in: str
    token_out: str
    fee: int
    amount_in: int
    min_out: int
    recipient: str
    deadline: int
    value: int


def apply_slippage(quoted_out: int, slippage_bps: int) -> int:
    slip = quoted_out * slippage_bps // 10_000
    return max(0, quoted_out - slip)


def quote_exact_input_single(quoter_contract, token_in: str, token_out: str, fee: int, amount_in: int) -> int | None:
    try:
        return int(
            quoter_contract.functions.quoteExactInputSingle(token_in, token_out, int(fee), int(amount_in), 0).call()
        )
    except (ValueError, Web3Exception) as e:
        # No pool for this fee tier, or not enough liquidity
        logger.debug("V3 quoteExactInputSingle failed for fee {}: {}", fee, e)
        return None


def encode_exact_input_single(router_contract, p: V3SinglePlan) -> str:
    params = (
        p.token_in,
        p.token_out,
        int(p.fee),
        p.recipient,
        int(p.deadline),
        int(p.amount_in),
        int(p.min_out),
        0,  # sqrtPriceLimitX96
    )
    return router_contract.encode_abi("exactInputSingle", args=[params])


@dataclass
class UniswapV3RouteQuoter:
    """Single-hop exact-input routes through the V3 SwapRouter, best fee tier wins."""

    quoter: Any
    router: Any
    slippage_bps: int
    deadline_seconds: int
    fee_tiers: list[int] = field(default_factory=lambda: [500, 3000, 10000])

    def quote(
        self, token_in: TokenDescriptor, token_out: TokenDescriptor, amount_in: int, recipient: str
    ) -> SwapQuote | None:
        tin = Web3.to_checksum_address(token_in.address)
        tout = Web3.to_checksum_address(token_out.address)
        best: tuple[int, int] | None = None
        for fee in self.fee_tiers:
            out = quote_exact_input_single(self.quoter, tin, tout, fee, amount_in)
            if out and (best is None or out > best[1]):
                best = (fee, out)
        if best is None:
            return None

        fee, quoted_out = best
        router_addr = Web3.to_checksum_address(self.router.address)
        plan = V3SinglePlan(
            router=router_addr,
            token_in=tin,
            token_out=tout,
            fee=fee,
            amount_in=amount_in,
            min_out=apply_slippage(quoted_out, self.slippage_bps),
            recipient=Web3.to_checksum_address(recipient),
            deadline=int(time.time()) + int(self.deadline_seconds),
            value=0,
        )
        return SwapQuote(
            amount_out=quoted_out,
            min_amount_out=plan.min_out,
            call_data=encode_exact_input_single(self.router, plan),
            value=plan.value,
            to=router_addr,
            allowance_target=router_addr,
            source=f"uniswap_v3:{fee}",
        )
