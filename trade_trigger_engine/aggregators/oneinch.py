from __future__ import annotations

import requests

from trade_trigger_engine.models import SwapQuote


def get_swap_quote(
    base_url: str,
    chain_id: int,
    src_token: str,
    dst_token: str,
    amount_in: int,
    from_address: str,
    slippage_bps: int,
    api_key: str | None = None,
) -> SwapQuote | None:
    slippage = max(0.0, slippage_bps / 100.0)
    url = f"{base_url}/{chain_id}/swap"
    params = {
        "src": src_token,
        "dst": dst_token,
        "amount": str(amount_in),
        "from": from_address,
        "slippage": str(slippage),
        "disableEstimate": "true",
    }
    headers = {"Accept": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    r = requests.get(url, params=params, headers=headers, timeout=15)
    r.raise_for_status()
    data = r.json()
    # Expected fields: tx { to, data, value }, toAmount (toTokenAmount on older versions)
    tx = data.get("tx") or {}
    to_amount = int(data.get("toAmount") or data.get("toTokenAmount") or 0)
    if not tx.get("to") or not tx.get("data") or to_amount <= 0:
        return None
    min_out = to_amount - to_amount * slippage_bps // 10_000
    return SwapQuote(
        amount_out=to_amount,
        min_amount_out=max(0, min_out),
        call_data=tx["data"],
        value=int(tx.get("value") or 0),
        to=tx["to"],
        # The 1inch router is its own spender
        allowance_target=tx["to"],
        source="1inch",
    )
