from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from web3 import Web3

from trade_trigger_engine.models import SwapQuote, TransactionOutcome

WALLET = Web3.to_checksum_address("0x" + "ab" * 20)
ROUTER = Web3.to_checksum_address("0xE592427A0AEce92De3Edee1F18E0157C05861564")
TOKEN_IN = Web3.to_checksum_address("0x1c95519d3fc922fc04fcf5d099be4a1ed8b15240")
TOKEN_OUT = Web3.to_checksum_address("0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2")


class FakeCall:
    def __init__(self, contract: "FakeErc20", name: str, args: tuple):
        self.contract = contract
        self.name = name
        self.args = args

    def call(self):
        return self.contract.handle(self.name, self.args)

    def build_transaction(self, params: dict):
        tx = {"to": self.contract.address, "data": f"{self.name}{self.args}", **params}
        if self.name == "approve" and not self.contract.ignore_approve:
            spender, amount = self.args

            def apply():
                self.contract.allowances[spender] = amount

            tx["fake_effect"] = apply
        return tx


class FakeFunctions:
    def __init__(self, contract: "FakeErc20"):
        self._contract = contract

    def __getattr__(self, name: str):
        def factory(*args):
            return FakeCall(self._contract, name, args)

        return factory


class FakeErc20:
    def __init__(self, address: str, symbol: str = "TKN", name: str = "Token", decimals: int = 18,
                 balances: dict | None = None, allowances: dict | None = None, fail: set | None = None,
                 ignore_approve: bool = False):
        self.address = Web3.to_checksum_address(address)
        self.symbol = symbol
        self.name = name
        self.decimals = decimals
        self.balances = balances or {}
        self.allowances = allowances or {}
        self.fail = fail or set()
        self.ignore_approve = ignore_approve
        self.functions = FakeFunctions(self)

    def handle(self, name: str, args: tuple) -> Any:
        if name in self.fail:
            raise ValueError(f"{name} reverted")
        if name in ("name", "symbol", "decimals"):
            return getattr(self, name)
        if name == "balanceOf":
            return self.balances.get(args[0], 0)
        if name == "allowance":
            return self.allowances.get(args[1], 0)
        raise AttributeError(name)


class FakeWallet:
    def __init__(self, address: str = WALLET, native: int = 10**18, base_fee: int = 10 * 10**9, chain_id: int = 1):
        self.address = address
        self.native = native
        self.base_fee = base_fee
        self.chain_id = chain_id
        self.contracts: dict[str, FakeErc20] = {}
        self.sent: list[tuple[str, dict, str]] = []
        self.events: list[tuple[str, str]] = []
        self.revert_steps: set[str] = set()

    def add_token(self, contract: FakeErc20) -> FakeErc20:
        self.contracts[contract.address] = contract
        return contract

    def erc20(self, token_addr: str):
        return self.contracts[Web3.to_checksum_address(token_addr)]

    def native_balance(self) -> int:
        return self.native

    def base_fee_estimate(self) -> int:
        return self.base_fee

    def send_tx(self, tx: dict, step: str = "submit") -> str:
        tx_hash = "0x%064x" % (len(self.sent) + 1)
        self.sent.append((step, tx, tx_hash))
        self.events.append(("send", step))
        return tx_hash

    def wait_for_receipt(self, tx_hash: str, step: str = "confirm") -> TransactionOutcome:
        idx = next(i for i, (_, _, h) in enumerate(self.sent) if h == tx_hash)
        _, tx, _ = self.sent[idx]
        success = step not in self.revert_steps
        if success and tx.get("fake_effect"):
            tx["fake_effect"]()
        self.events.append(("confirm", step))
        return TransactionOutcome(hash=tx_hash, block_number=100 + idx, gas_used=21_000 * (idx + 1), success=success)

    def sent_steps(self) -> list[str]:
        return [step for step, _, _ in self.sent]


class FakeQuoter:
    def __init__(self, quote: SwapQuote | None):
        self._quote = quote
        self.calls: list[tuple] = []

    def quote(self, token_in, token_out, amount_in, recipient):
        self.calls.append((token_in.address, token_out.address, amount_in, recipient))
        return self._quote


class FakeWebSocket:
    def __init__(self, incoming: list):
        self.incoming = list(incoming)
        self.sent: list[dict] = []
        self.closed = False

    async def send(self, message: str):
        self.sent.append(json.loads(message))

    async def recv(self):
        if self.incoming:
            item = self.incoming.pop(0)
            if isinstance(item, Exception):
                raise item
            return item if isinstance(item, (str, bytes)) else json.dumps(item)
        # Nothing more from the server; hang until cancelled
        await asyncio.Event().wait()

    async def close(self):
        self.closed = True

    def sent_types(self) -> list[str]:
        return [m.get("type") for m in self.sent]


def make_quote(amount_out: int = 123_456, value: int = 0) -> SwapQuote:
    return SwapQuote(
        amount_out=amount_out,
        min_amount_out=amount_out - amount_out * 50 // 10_000,
        call_data="0xdeadbeef",
        value=value,
        to=ROUTER,
        allowance_target=ROUTER,
        source="uniswap_v3:3000",
    )


@pytest.fixture
def wallet() -> FakeWallet:
    return FakeWallet()


@pytest.fixture
def trade_record() -> dict:
    return {
        "Block": {"Time": "2024-05-01T12:00:00Z", "Number": "19780000"},
        "Transaction": {"Hash": "0x" + "cd" * 32},
        "Trade": {"Amount": "1520.25"},
    }
