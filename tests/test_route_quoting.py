from __future__ import annotations

from typing import Any

import pytest
import requests
from web3.exceptions import ContractLogicError

from conftest import ROUTER, TOKEN_IN, TOKEN_OUT, WALLET


def _descriptors():
    from trade_trigger_engine.models import TokenDescriptor

    return (
        TokenDescriptor(address=TOKEN_IN, symbol="PEPE", name="Pepe", decimals=18),
        TokenDescriptor(address=TOKEN_OUT, symbol="WETH", name="Wrapped Ether", decimals=18),
    )


class FakeQuoterCall:
    def __init__(self, outputs, args):
        self.outputs = outputs
        self.args = args

    def call(self):
        out = self.outputs.get(self.args[2])
        if out is None:
            raise ContractLogicError("execution reverted")
        return out


class FakeV3Quoter:
    def __init__(self, outputs: dict[int, int]):
        self.outputs = outputs
        self.seen: list[tuple] = []
        quoter = self

        class _Functions:
            def quoteExactInputSingle(self, *args):
                quoter.seen.append(args)
                return FakeQuoterCall(quoter.outputs, args)

        self.functions = _Functions()


class FakeV3Router:
    address = ROUTER

    def __init__(self):
        self.encoded: list[tuple[str, Any]] = []

    def encode_abi(self, fn_name, args=None):
        self.encoded.append((fn_name, args))
        return "0x414bf389"


def test_uniswap_v3_picks_best_fee_tier():
    from trade_trigger_engine.execution.uniswap_v3 import UniswapV3RouteQuoter

    quoter = FakeV3Quoter({3000: 900, 10000: 950})
    router = FakeV3Router()
    q = UniswapV3RouteQuoter(quoter=quoter, router=router, slippage_bps=50, deadline_seconds=600)
    tin, tout = _descriptors()
    quote = q.quote(tin, tout, 500, WALLET)

    assert [a[2] for a in quoter.seen] == [500, 3000, 10000]
    assert quote.amount_out == 950
    assert quote.min_amount_out == 950 - 950 * 50 // 10_000
    assert quote.source == "uniswap_v3:10000"
    assert quote.to == ROUTER and quote.allowance_target == ROUTER
    assert quote.call_data == "0x414bf389"
    fn_name, args = router.encoded[0]
    params = args[0]
    assert fn_name == "exactInputSingle"
    assert params[0] == TOKEN_IN and params[1] == TOKEN_OUT
    assert params[2] == 10000 and params[3] == WALLET
    assert params[5] == 500 and params[6] == quote.min_amount_out


def test_uniswap_v3_no_pool_returns_none():
    from trade_trigger_engine.execution.uniswap_v3 import UniswapV3RouteQuoter

    q = UniswapV3RouteQuoter(quoter=FakeV3Quoter({}), router=FakeV3Router(), slippage_bps=50, deadline_seconds=600)
    tin, tout = _descriptors()
    assert q.quote(tin, tout, 500, WALLET) is None


class FakeResp:
    def __init__(self, payload: dict[str, Any], status_code: int = 200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


def test_zeroex_quote_maps_fields(monkeypatch):
    from trade_trigger_engine.execution.routing import ZeroExRouteQuoter

    calls = []

    def fake_get(url, params=None, headers=None, timeout=None):
        calls.append((url, params, headers))
        return FakeResp(
            {"to": ROUTER, "data": "0xabc", "value": "0", "allowanceTarget": TOKEN_OUT, "buyAmount": "10000"}
        )

    monkeypatch.setattr("requests.get", fake_get)
    tin, tout = _descriptors()
    quote = ZeroExRouteQuoter(base_url="https://api.0x.org", slippage_bps=100, api_key="k").quote(
        tin, tout, 500, WALLET
    )
    assert quote.amount_out == 10000
    assert quote.min_amount_out == 9900
    assert quote.allowance_target == TOKEN_OUT
    url, params, headers = calls[0]
    assert url == "https://api.0x.org/swap/v1/quote"
    assert params["sellAmount"] == "500"
    assert params["slippagePercentage"] == "0.01"
    assert headers["0x-api-key"] == "k"


def test_zeroex_http_error_is_no_route(monkeypatch):
    from trade_trigger_engine.execution.routing import ZeroExRouteQuoter

    monkeypatch.setattr("requests.get", lambda *a, **k: FakeResp({}, status_code=400))
    tin, tout = _descriptors()
    assert ZeroExRouteQuoter(base_url="https://api.0x.org", slippage_bps=100).quote(tin, tout, 500, WALLET) is None


def test_oneinch_quote_without_tx_is_no_route(monkeypatch):
    from trade_trigger_engine.execution.routing import OneInchRouteQuoter

    monkeypatch.setattr("requests.get", lambda *a, **k: FakeResp({"toAmount": "0"}))
    tin, tout = _descriptors()
    q = OneInchRouteQuoter(base_url="https://api.1inch.dev/swap/v5.2", chain_id=1, slippage_bps=100)
    assert q.quote(tin, tout, 500, WALLET) is None


def test_oneinch_quote_maps_fields(monkeypatch):
    from trade_trigger_engine.execution.routing import OneInchRouteQuoter

    payload = {"toAmount": "2000", "tx": {"to": ROUTER, "data": "0x12aa3caf", "value": "0"}}
    monkeypatch.setattr("requests.get", lambda *a, **k: FakeResp(payload))
    tin, tout = _descriptors()
    q = OneInchRouteQuoter(base_url="https://api.1inch.dev/swap/v5.2", chain_id=1, slippage_bps=100)
    quote = q.quote(tin, tout, 500, WALLET)
    assert quote.amount_out == 2000
    assert quote.allowance_target == ROUTER
    assert quote.source == "1inch"


def test_make_route_quoter_selection():
    from trade_trigger_engine.config import AppSettings
    from trade_trigger_engine.errors import ConfigMissing
    from trade_trigger_engine.execution.routing import OneInchRouteQuoter, ZeroExRouteQuoter, make_route_quoter
    from trade_trigger_engine.execution.uniswap_v3 import UniswapV3RouteQuoter

    class Wallet:
        def quoter_v3(self, addr):
            return FakeV3Quoter({})

        def router_v3(self, addr):
            return FakeV3Router()

    assert isinstance(make_route_quoter(AppSettings(route_source="0x"), Wallet()), ZeroExRouteQuoter)
    assert isinstance(make_route_quoter(AppSettings(route_source="1inch"), Wallet()), OneInchRouteQuoter)
    v3 = make_route_quoter(AppSettings(route_source="uniswap_v3", v3_fee_tiers=[3000]), Wallet())
    assert isinstance(v3, UniswapV3RouteQuoter)
    assert v3.fee_tiers == [3000]
    with pytest.raises(ConfigMissing):
        make_route_quoter(AppSettings(route_source="sushi"), Wallet())
