"""
Bitquery streaming subscription (graphql-ws protocol) for DEX trades.

A `TradeFeedSubscriber` runs exactly one session:

    IDLE -> CONNECTING -> AWAITING_ACK -> SUBSCRIBED -> MATCHED | TIMED_OUT | ERRORED -> CLOSED

The first terminal event wins and fixes the `SubscriptionResult`; anything
that happens afterwards (a late timeout, a close error) is discarded. Transport
failures and server errors resolve as "no trade" instead of raising, so the
caller only has to branch on `result.matched`. A missing token is the one hard
failure and raises `ConfigMissing`.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Optional

import websockets
from loguru import logger
from websockets.exceptions import WebSocketException

from trade_trigger_engine.config import AppSettings
from trade_trigger_engine.errors import ConfigMissing, FeedConnectionError
from trade_trigger_engine.models import TradeSignal

SUBSCRIPTION_ID = "1"
GRAPHQL_WS_SUBPROTOCOL = "graphql-ws"


class FeedState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_ACK = "awaiting_ack"
    SUBSCRIBED = "subscribed"
    MATCHED = "matched"
    TIMED_OUT = "timed_out"
    ERRORED = "errored"
    CLOSED = "closed"


class FeedOutcome(str, Enum):
    MATCHED = "matched"
    TIMED_OUT = "timed_out"
    FEED_ERROR = "feed_error"


@dataclass(frozen=True)
class SubscriptionResult:
    outcome: FeedOutcome
    signal: Optional[TradeSignal] = None
    detail: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.outcome is FeedOutcome.MATCHED

    def __bool__(self) -> bool:
        return self.matched


def build_dex_trades_query(
    currency: str,
    side_currency: str,
    network: str = "eth",
    mempool: bool = True,
    protocol_family: str = "Uniswap",
    min_amount_usd: str = "1",
) -> str:
    """Subscription for successful trades of `currency` against a sell side in `side_currency`."""
    return f"""
subscription TradeTrigger {{
  EVM(network: {network}, mempool: {"true" if mempool else "false"}) {{
    DEXTradeByTokens(
      where: {{
        TransactionStatus: {{Success: true}},
        Trade: {{
          Dex: {{ProtocolFamily: {{is: "{protocol_family}"}}}},
          Side: {{
            Currency: {{SmartContract: {{is: "{side_currency}"}}}},
            Type: {{is: sell}},
            AmountInUSD: {{ge: "{min_amount_usd}"}}
          }},
          Currency: {{SmartContract: {{is: "{currency}"}}}}
        }}
      }}
    ) {{
      Block {{
        Time
        Number
      }}
      Transaction {{
        Hash
      }}
      Trade {{
        Amount
      }}
    }}
  }}
}}
""".strip()


def _section(record: dict, key: str) -> dict:
    value = record.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise FeedConnectionError(f"Malformed trade record: {key} is {type(value).__name__}")
    return value


def _well_formed(record: Any) -> bool:
    if not isinstance(record, dict):
        return False
    return all(isinstance(record.get(key), (dict, type(None))) for key in ("Block", "Transaction", "Trade"))


def extract_trade_records(payload: Any) -> list[dict]:
    if payload is None:
        return []
    if not isinstance(payload, dict):
        raise FeedConnectionError(f"Malformed data message: payload is {type(payload).__name__}")
    data = payload.get("data")
    if data is None:
        return []
    if not isinstance(data, dict):
        raise FeedConnectionError(f"Malformed data message: data is {type(data).__name__}")
    evm = data.get("EVM")
    if evm is None:
        return []
    if not isinstance(evm, dict):
        raise FeedConnectionError(f"Malformed data message: EVM is {type(evm).__name__}")
    records = evm.get("DEXTradeByTokens") or []
    if not isinstance(records, list):
        raise FeedConnectionError(f"Malformed data message: DEXTradeByTokens is {type(records).__name__}")
    well_formed = [r for r in records if _well_formed(r)]
    if len(well_formed) < len(records):
        logger.warning("Skipping {} malformed trade record(s)", len(records) - len(well_formed))
    return well_formed


def parse_trade_signal(record: dict) -> TradeSignal:
    block = _section(record, "Block")
    tx = _section(record, "Transaction")
    trade = _section(record, "Trade")
    try:
        amount = Decimal(str(trade.get("Amount") or "0"))
    except InvalidOperation:
        amount = Decimal(0)
    try:
        block_number = int(block.get("Number") or 0)
    except (TypeError, ValueError):
        block_number = 0
    return TradeSignal(
        block_time=block.get("Time"),
        block_number=block_number,
        transaction_hash=tx.get("Hash"),
        amount=amount,
    )


class TradeFeedSubscriber:
    def __init__(
        self,
        url: str,
        token: str | None,
        query: str,
        timeout_sec: float = 600.0,
        stop_grace_sec: float = 1.0,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.url = url
        self.token = token
        self.query = query
        self.timeout_sec = timeout_sec
        self.stop_grace_sec = stop_grace_sec
        self._connect = connect
        self.state = FeedState.IDLE
        self._ws = None
        self._result: SubscriptionResult | None = None

    @classmethod
    def from_settings(cls, settings: AppSettings, currency: str, side_currency: str, **kwargs) -> TradeFeedSubscriber:
        query = build_dex_trades_query(
            currency=currency,
            side_currency=side_currency,
            network=settings.feed_network,
            mempool=settings.feed_mempool,
            protocol_family=settings.feed_protocol_family,
            min_amount_usd=settings.feed_min_amount_usd,
        )
        return cls(
            url=settings.bitquery_ws_url,
            token=settings.bitquery_token,
            query=query,
            timeout_sec=settings.feed_timeout_sec,
            stop_grace_sec=settings.feed_stop_grace_sec,
            **kwargs,
        )

    @property
    def result(self) -> SubscriptionResult | None:
        return self._result

    async def subscribe(self) -> SubscriptionResult:
        if self.state is not FeedState.IDLE:
            raise RuntimeError(f"Subscriber already used (state {self.state.value})")
        if not self.token:
            self._transition(FeedState.ERRORED)
            self._transition(FeedState.CLOSED)
            raise ConfigMissing("TTE_BITQUERY_TOKEN")

        try:
            await asyncio.wait_for(self._run_session(), timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            logger.info("Timeout reached after {}s. Closing feed connection.", self.timeout_sec)
            self._resolve(
                FeedState.TIMED_OUT,
                SubscriptionResult(FeedOutcome.TIMED_OUT, detail=f"no matching trade within {self.timeout_sec}s"),
            )
        except (OSError, WebSocketException, FeedConnectionError) as e:
            logger.error("Trade feed error: {}", e)
            self._resolve(FeedState.ERRORED, SubscriptionResult(FeedOutcome.FEED_ERROR, detail=str(e)))
        finally:
            await self._close()
            self._transition(FeedState.CLOSED)

        if self._result is None:
            # session ended without any terminal event
            self._result = SubscriptionResult(FeedOutcome.FEED_ERROR, detail="session ended without a result")
        return self._result

    async def _run_session(self) -> None:
        self._transition(FeedState.CONNECTING)
        try:
            self._ws = await self._connect(
                f"{self.url}?token={self.token}", subprotocols=[GRAPHQL_WS_SUBPROTOCOL]
            )
        except (asyncio.TimeoutError, TimeoutError) as e:
            # opening handshake timeout, distinct from the session window
            raise FeedConnectionError(f"Timed out connecting to {self.url}") from e
        logger.info("Connected to trade feed {}", self.url)
        await self._send({"type": "connection_init"})
        self._transition(FeedState.AWAITING_ACK)

        while self._result is None:
            message = self._decode(await self._ws.recv())
            await self._handle(message)

    async def _handle(self, message: dict) -> None:
        mtype = message.get("type")
        if mtype == "connection_ack":
            if self.state is not FeedState.AWAITING_ACK:
                logger.debug("Ignoring connection_ack in state {}", self.state.value)
                return
            logger.info("Connection acknowledged by feed server.")
            await self._send({"type": "start", "id": SUBSCRIPTION_ID, "payload": {"query": self.query}})
            self._transition(FeedState.SUBSCRIBED)
            logger.info("Subscription message sent; monitoring for trades...")
        elif mtype == "data":
            if self.state is not FeedState.SUBSCRIBED:
                logger.debug("Ignoring data message in state {}", self.state.value)
                return
            records = extract_trade_records(message.get("payload"))
            if not records:
                return
            signal = parse_trade_signal(records[0])
            logger.info(
                "Detected matching trade: tx {} block {} amount {}",
                signal.transaction_hash,
                signal.block_number,
                signal.amount,
            )
            self._resolve(FeedState.MATCHED, SubscriptionResult(FeedOutcome.MATCHED, signal=signal))
            await self._send({"type": "stop", "id": SUBSCRIPTION_ID})
            logger.info("Stop message sent to feed.")
            await asyncio.sleep(self.stop_grace_sec)
            await self._close()
        elif mtype in ("error", "connection_error"):
            raise FeedConnectionError(f"Feed reported {mtype}: {message.get('payload')}")
        elif mtype == "complete":
            raise FeedConnectionError("Feed completed the subscription without a matching trade")
        elif mtype == "ka":
            return
        else:
            logger.debug("Ignoring feed message type {}", mtype)

    def _decode(self, raw: Any) -> dict:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8", errors="replace")
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise FeedConnectionError(f"Malformed feed message: {e}") from e
        if not isinstance(message, dict):
            raise FeedConnectionError(f"Unexpected feed message: {message!r}")
        return message

    async def _send(self, message: dict) -> None:
        await self._ws.send(json.dumps(message))

    async def _close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
            logger.info("Disconnected from trade feed.")
        except (OSError, WebSocketException) as e:
            logger.debug("Feed close failed: {}", e)

    def _resolve(self, state: FeedState, result: SubscriptionResult) -> bool:
        if self._result is not None:
            logger.debug("Discarding {} after session resolved as {}", result.outcome.value, self._result.outcome.value)
            return False
        self._result = result
        self._transition(state)
        return True

    def _transition(self, state: FeedState) -> None:
        if state is not self.state:
            logger.debug("Feed state {} -> {}", self.state.value, state.value)
            self.state = state
