from __future__ import annotations

import requests

from trade_trigger_engine.models import SwapQuote


def get_swap_quote(
    base_url: str,
    sell_token: str,
    buy_token: str,
    sell_amount: int,
    taker_address: str,
    slippage_bps: int,
    api_key: str | None = None,
) -> SwapQuote | None:
    slippage_pct = max(0.0, slippage_bps / 10_000.0)
    # Base URL example: https://api.0x.org or https://base.api.0x.org for Base
    url = f"{base_url}/swap/v1/quote"
    params = {
        "sellToken": sell_token,
        "buyToken": buy_token,
        "sellAmount": str(sell_amount),
        "takerAddress": taker_address,
        "slippagePercentage": str(slippage_pct),
    }
    headers = {"Accept": "application/json"}
    if api_key:
        headers["0x-api-key"] = api_key
    r = requests.get(url, params=params, headers=headers, timeout=15)
    r.raise_for_status()
    data = r.json()
    # Fields: to, data, value, allowanceTarget, buyAmount, guaranteedPrice
    buy_amount = int(data.get("buyAmount") or 0)
    if not data.get("to") or not data.get("data") or buy_amount <= 0:
        return None
    min_out = buy_amount - buy_amount * slippage_bps // 10_000
    return SwapQuote(
        amount_out=buy_amount,
        min_amount_out=max(0, min_out),
        call_data=data["data"],
        value=int(data.get("value") or 0),
        to=data["to"],
        allowance_target=data.get("allowanceTarget") or data["to"],
        source="0x",
    )
