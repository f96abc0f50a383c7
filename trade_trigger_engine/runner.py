from __future__ import annotations

import asyncio

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from web3.exceptions import Web3Exception

from trade_trigger_engine.chains.erc20 import TokenBinding
from trade_trigger_engine.config import AppSettings
from trade_trigger_engine.db import make_session_factory, record_run
from trade_trigger_engine.errors import ConfigMissing, ExecutionError, ExecutionReverted, ResolutionError
from trade_trigger_engine.execution.evm_wallet import EvmWallet
from trade_trigger_engine.execution.routing import make_route_quoter
from trade_trigger_engine.execution.swap_executor import SwapAttempt, SwapExecutionOrchestrator
from trade_trigger_engine.feeds.bitquery import SubscriptionResult, TradeFeedSubscriber

REQUIRED_SETTINGS = (
    "rpc_url",
    "private_key",
    "swap_router_address",
    "bitquery_token",
    "token_in_address",
    "token_out_address",
)

EXIT_OK = 0
EXIT_FAILURE = 1


def _journal(
    SessionFactory,
    settings: AppSettings,
    status: str,
    feed: SubscriptionResult | None = None,
    attempt: SwapAttempt | None = None,
    error: Exception | None = None,
) -> None:
    if SessionFactory is None:
        return
    signal = feed.signal if feed else None
    quote = attempt.quote if attempt else None
    swap = attempt.swap if attempt else None
    fields = dict(
        chain_id=settings.chain_id,
        status=status,
        token_in=settings.token_in_address,
        token_out=settings.token_out_address,
        feed_outcome=feed.outcome.value if feed else None,
        signal_tx_hash=signal.transaction_hash if signal else None,
        signal_block_number=signal.block_number if signal else None,
        signal_amount=str(signal.amount) if signal else None,
        amount_in_wei=str(attempt.amount_in) if attempt and attempt.amount_in is not None else None,
        expected_out_wei=str(quote.amount_out) if quote else None,
        route_source=quote.source if quote else None,
        approve_tx_hash=attempt.approval.hash if attempt and attempt.approval else None,
        swap_tx_hash=swap.hash if swap else None,
        block_number=swap.block_number if swap else None,
        gas_used=swap.gas_used if swap else None,
    )
    if error is not None:
        fields.update(
            error_kind=type(error).__name__,
            error_step=getattr(error, "step", None) or (attempt.failed_step if attempt else None),
            error=str(error),
        )
    try:
        run_id = record_run(SessionFactory, **fields)
        logger.debug("Journaled run {} as {}", run_id, status)
    except SQLAlchemyError as e:
        logger.exception("Failed to journal run: {}", e)


def run(settings: AppSettings) -> int:
    logger.info("Starting trade trigger...")
    try:
        settings.require(*REQUIRED_SETTINGS)
        wallet = EvmWallet.create(
            rpc_url=settings.rpc_url,
            chain_id=settings.chain_id,
            private_key=settings.private_key,
            explicit_address=settings.executor_address,
            receipt_timeout_sec=settings.receipt_timeout_sec,
        )
        quoter = make_route_quoter(settings, wallet)
    except ConfigMissing as e:
        logger.error("{}", e)
        return EXIT_FAILURE

    SessionFactory = make_session_factory(settings.database_url) if settings.database_url else None

    logger.info("Initializing token contracts...")
    try:
        token_from = TokenBinding.resolve(wallet, settings.token_in_address)
        token_to = TokenBinding.resolve(wallet, settings.token_out_address)
    except ResolutionError as e:
        logger.error("Token resolution failed: {}", e)
        return EXIT_FAILURE
    logger.info("Token setup complete. From: {}, To: {}", token_from.symbol, token_to.symbol)

    logger.info("Monitoring for trades with target token...")
    subscriber = TradeFeedSubscriber.from_settings(
        settings,
        currency=token_from.descriptor.address,
        side_currency=token_to.descriptor.address,
    )
    try:
        feed = asyncio.run(subscriber.subscribe())
    except ConfigMissing as e:
        logger.error("{}", e)
        return EXIT_FAILURE

    if not feed.matched:
        logger.info("No trade detected ({}: {}). Exiting without swapping.", feed.outcome.value, feed.detail)
        _journal(SessionFactory, settings, "no_trade", feed=feed)
        return EXIT_OK

    logger.info("Trade detected! Proceeding with the swap.")
    orchestrator = SwapExecutionOrchestrator.from_settings(settings, wallet, quoter)
    try:
        outcome = orchestrator.execute(token_from, token_to, feed.signal)
    except ExecutionError as e:
        logger.error("Swap failed at step '{}' with {}: {} context={}", e.step, e.kind, e, e.context)
        status = "reverted" if isinstance(e, ExecutionReverted) else "failed"
        _journal(SessionFactory, settings, status, feed=feed, attempt=orchestrator.attempt, error=e)
        return EXIT_FAILURE
    except (ValueError, Web3Exception, OSError) as e:
        logger.exception("RPC failure during swap at step '{}': {}", orchestrator.attempt.failed_step, e)
        _journal(SessionFactory, settings, "failed", feed=feed, attempt=orchestrator.attempt, error=e)
        return EXIT_FAILURE

    logger.info("Swap {} confirmed in block {}", outcome.hash, outcome.block_number)
    _journal(SessionFactory, settings, "success", feed=feed, attempt=orchestrator.attempt)
    return EXIT_OK
