from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger
from web3 import Web3
from web3.exceptions import Web3Exception

from trade_trigger_engine.chains.erc20 import TokenBinding
from trade_trigger_engine.config import AppSettings
from trade_trigger_engine.errors import (
    AllowanceNotGranted,
    ExecutionReverted,
    InsufficientBalance,
    InsufficientGasFunds,
    NoRouteFound,
)
from trade_trigger_engine.execution.evm_wallet import EvmWallet
from trade_trigger_engine.execution.gas import GasPlan, derive_gas_plan
from trade_trigger_engine.execution.routing import RouteQuoter
from trade_trigger_engine.models import MAX_UINT256, SwapQuote, TradeSignal, TransactionOutcome


@dataclass
class SwapAttempt:
    """Progress of one execute() call, filled in step by step."""

    balance: Optional[int] = None
    amount_in: Optional[int] = None
    quote: Optional[SwapQuote] = None
    allowance: Optional[int] = None
    approval: Optional[TransactionOutcome] = None
    gas_plan: Optional[GasPlan] = None
    swap: Optional[TransactionOutcome] = None
    failed_step: Optional[str] = None


class SwapExecutionOrchestrator:
    def __init__(
        self,
        wallet: EvmWallet,
        quoter: RouteQuoter,
        *,
        priority_fee: int,
        economical_priority_fee: int,
        gas_limit: int = 500_000,
        gas_limit_upper_bound: int = 3_000_000,
    ):
        self.wallet = wallet
        self.quoter = quoter
        self.priority_fee = priority_fee
        self.economical_priority_fee = economical_priority_fee
        self.gas_limit = gas_limit
        self.gas_limit_upper_bound = gas_limit_upper_bound
        self.attempt = SwapAttempt()

    @classmethod
    def from_settings(cls, settings: AppSettings, wallet: EvmWallet, quoter: RouteQuoter) -> SwapExecutionOrchestrator:
        return cls(
            wallet,
            quoter,
            priority_fee=Web3.to_wei(settings.priority_fee_gwei, "gwei"),
            economical_priority_fee=Web3.to_wei(settings.economical_priority_fee_gwei, "gwei"),
            gas_limit=settings.gas_limit,
            gas_limit_upper_bound=settings.gas_limit_upper_bound,
        )

    def execute(
        self, token_from: TokenBinding, token_to: TokenBinding, signal: TradeSignal | None = None
    ) -> TransactionOutcome:
        self.attempt = SwapAttempt()
        if signal is not None:
            logger.info("Executing swap for signal tx {} (block {})", signal.transaction_hash, signal.block_number)
        step = "balance"
        try:
            amount_in = self._amount_in(token_from)
            step = "quote"
            quote = self._quote(token_from, token_to, amount_in)
            step = "approve"
            self._reconcile_allowance(token_from, quote.allowance_target, amount_in)
            step = "gas"
            plan = self._gas_plan()
            outcome = self._submit(quote, plan)
        except Exception as e:
            self.attempt.failed_step = getattr(e, "step", None) or step
            raise

        self._log_new_balance(token_to)
        return outcome

    def _amount_in(self, token_from: TokenBinding) -> int:
        desc = token_from.descriptor
        balance = token_from.balance_of(self.wallet.address)
        self.attempt.balance = balance
        logger.info("Current {} balance: {}", desc.symbol, desc.format_amount(balance))
        if balance <= 0:
            raise InsufficientBalance(
                f"No {desc.symbol} balance to swap.", "balance", context={"balance": balance}
            )
        # Fixed policy: trade half of the current holdings
        amount_in = balance // 2
        if amount_in <= 0:
            raise InsufficientBalance(
                f"{desc.symbol} balance too small to halve.", "amount", context={"balance": balance}
            )
        self.attempt.amount_in = amount_in
        logger.info("Swapping 50% of balance: {} {}", desc.format_amount(amount_in), desc.symbol)
        return amount_in

    def _quote(self, token_from: TokenBinding, token_to: TokenBinding, amount_in: int) -> SwapQuote:
        logger.info("Finding optimal swap route...")
        quote = self.quoter.quote(token_from.descriptor, token_to.descriptor, amount_in, self.wallet.address)
        if quote is None:
            raise NoRouteFound(
                f"No route found for {token_from.symbol} -> {token_to.symbol}.",
                "quote",
                context={"amount_in": amount_in},
            )
        self.attempt.quote = quote
        logger.info(
            "Found route via {}: swapping {} {} for approximately {} {} (min {})",
            quote.source,
            token_from.descriptor.format_amount(amount_in),
            token_from.symbol,
            token_to.descriptor.format_amount(quote.amount_out),
            token_to.symbol,
            token_to.descriptor.format_amount(quote.min_amount_out),
        )
        return quote

    def _reconcile_allowance(self, token_from: TokenBinding, spender: str, amount_in: int) -> None:
        owner = self.wallet.address
        allowance = token_from.allowance(owner, spender)
        self.attempt.allowance = allowance
        logger.info("Current allowance: {} {}", token_from.descriptor.format_amount(allowance), token_from.symbol)
        if allowance >= amount_in:
            logger.info("Sufficient {} allowance. Executing swap...", token_from.symbol)
            return

        logger.info("Requesting {} approval for {}...", token_from.symbol, spender)
        approval = token_from.approve(spender, MAX_UINT256)
        self.attempt.approval = approval
        if not approval.success:
            raise ExecutionReverted(
                f"Approval transaction {approval.hash} reverted.",
                "approve",
                outcome=approval,
                context={"spender": spender, "allowance": allowance, "amount_in": amount_in},
            )
        # Only trust the allowance read after the approval is confirmed
        if not token_from.ensure_allowance(owner, spender, amount_in):
            raise AllowanceNotGranted(
                f"Allowance for {spender} still below {amount_in} after approval {approval.hash}.",
                "approve",
                context={"spender": spender, "amount_in": amount_in},
            )
        logger.info("Approval confirmed. Executing swap...")

    def _gas_plan(self) -> GasPlan:
        base_fee = self.wallet.base_fee_estimate()
        plan = derive_gas_plan(
            base_fee,
            self.wallet.native_balance(),
            priority_fee=self.priority_fee,
            economical_priority_fee=self.economical_priority_fee,
            gas_limit=self.gas_limit,
            gas_limit_upper_bound=self.gas_limit_upper_bound,
        )
        self.attempt.gas_plan = plan
        return plan

    def _submit(self, quote: SwapQuote, plan: GasPlan) -> TransactionOutcome:
        tx = {
            "to": Web3.to_checksum_address(quote.to),
            "from": self.wallet.address,
            "data": quote.call_data,
            "value": int(quote.value),
            "gas": plan.gas_limit,
            "maxFeePerGas": plan.max_fee_per_gas,
            "maxPriorityFeePerGas": plan.max_priority_fee_per_gas,
        }
        logger.info(
            "Transaction built: to={} value={} gas={} maxFeePerGas={} maxPriorityFeePerGas={}",
            tx["to"],
            tx["value"],
            tx["gas"],
            tx["maxFeePerGas"],
            tx["maxPriorityFeePerGas"],
        )

        native = self.wallet.native_balance()
        required = plan.max_cost() + int(quote.value)
        logger.info("ETH balance for gas: {} ETH", Web3.from_wei(native, "ether"))
        if native <= required:
            raise InsufficientGasFunds(
                f"Not enough ETH to cover gas: need more than {Web3.from_wei(required, 'ether')} ETH",
                "gas",
                context={"native_balance": native, "required": required},
            )

        logger.info("Submitting transaction...")
        tx_hash = self.wallet.send_tx(tx, step="swap")
        logger.info("Transaction submitted: {}", tx_hash)
        logger.info("Waiting for confirmation...")
        outcome = self.wallet.wait_for_receipt(tx_hash, step="swap")
        self.attempt.swap = outcome
        logger.info("Transaction confirmed in block {}", outcome.block_number)
        logger.info("Gas used: {}", outcome.gas_used)
        if not outcome.success:
            raise ExecutionReverted(
                f"Swap transaction {outcome.hash} reverted.",
                "swap",
                outcome=outcome,
                context={"gas_used": outcome.gas_used, "block_number": outcome.block_number},
            )
        logger.info("Swap complete!")
        return outcome

    def _log_new_balance(self, token_to: TokenBinding) -> None:
        try:
            new_balance = token_to.balance_of(self.wallet.address)
        except (ValueError, Web3Exception) as e:
            logger.warning("Could not read new {} balance: {}", token_to.symbol, e)
            return
        logger.info("New {} balance: {}", token_to.symbol, token_to.descriptor.format_amount(new_balance))
