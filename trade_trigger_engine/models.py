from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

MAX_UINT256 = 2**256 - 1


@dataclass(frozen=True)
class TokenDescriptor:
    address: str
    symbol: str
    name: str
    decimals: int
    chain_id: int = 1

    def format_amount(self, raw: int) -> str:
        return f"{Decimal(int(raw)).scaleb(-self.decimals).normalize():f}"


@dataclass(frozen=True)
class TradeSignal:
    block_time: Optional[str]
    block_number: int
    transaction_hash: Optional[str]
    amount: Decimal


@dataclass(frozen=True)
class SwapQuote:
    amount_out: int  # expected output, raw units
    min_amount_out: int
    call_data: str
    value: int  # native value sent with the router call
    to: str  # router target
    allowance_target: str  # spender that must be approved for token_in
    source: str


@dataclass(frozen=True)
class TransactionOutcome:
    hash: str
    block_number: Optional[int]
    gas_used: Optional[int]
    success: bool
