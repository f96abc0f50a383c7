from __future__ import annotations

from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any

from loguru import logger
from web3 import Web3
from web3.exceptions import Web3Exception

from trade_trigger_engine.errors import ResolutionError, SubmissionError
from trade_trigger_engine.execution.evm_wallet import EvmWallet
from trade_trigger_engine.models import TokenDescriptor, TransactionOutcome

DESCRIPTOR_FIELDS = ("name", "symbol", "decimals")


def fetch_descriptor(contract: Any, address: str, chain_id: int = 1) -> TokenDescriptor:
    """Query name/symbol/decimals in parallel; any failure aborts the resolution."""
    with ThreadPoolExecutor(max_workers=len(DESCRIPTOR_FIELDS)) as pool:
        futures = {
            field: pool.submit(getattr(contract.functions, field)().call) for field in DESCRIPTOR_FIELDS
        }
        done, pending = wait(futures.values(), return_when=FIRST_EXCEPTION)
        for fut in pending:
            fut.cancel()
        for field, fut in futures.items():
            if fut in done and fut.exception() is not None:
                raise ResolutionError(
                    f"Failed to fetch token {field} for address {address}: {fut.exception()}",
                    address=address,
                    context={"field": field},
                ) from fut.exception()
        values = {field: fut.result() for field, fut in futures.items()}

    return TokenDescriptor(
        address=Web3.to_checksum_address(address),
        symbol=str(values["symbol"]),
        name=str(values["name"]),
        decimals=int(values["decimals"]),
        chain_id=chain_id,
    )


@dataclass
class TokenBinding:
    descriptor: TokenDescriptor
    contract: Any
    wallet: EvmWallet

    @classmethod
    def resolve(cls, wallet: EvmWallet, address: str) -> TokenBinding:
        try:
            contract = wallet.erc20(address)
        except ValueError as e:
            raise ResolutionError(f"Invalid token address {address}: {e}", address=address) from e
        descriptor = fetch_descriptor(contract, address, chain_id=wallet.chain_id)
        logger.info("Resolved token {} ({}) at {}", descriptor.symbol, descriptor.name, descriptor.address)
        return cls(descriptor=descriptor, contract=contract, wallet=wallet)

    @property
    def symbol(self) -> str:
        return self.descriptor.symbol

    def balance_of(self, owner: str) -> int:
        return int(self.contract.functions.balanceOf(Web3.to_checksum_address(owner)).call())

    def allowance(self, owner: str, spender: str) -> int:
        return int(
            self.contract.functions.allowance(
                Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)
            ).call()
        )

    def ensure_allowance(self, owner: str, spender: str, required: int) -> bool:
        """True when the current on-chain allowance already covers `required`. Read-only."""
        return self.allowance(owner, spender) >= int(required)

    def approve(self, spender: str, amount: int) -> TransactionOutcome:
        """Submit approve(spender, amount) and block until one confirmation."""
        spender = Web3.to_checksum_address(spender)
        try:
            tx = self.contract.functions.approve(spender, int(amount)).build_transaction(
                {"from": self.wallet.address}
            )
        except (ValueError, Web3Exception) as e:
            raise SubmissionError(f"Could not build approval: {e}", "approve", context={"spender": spender}) from e
        tx_hash = self.wallet.send_tx(tx, step="approve")
        logger.info("Approval transaction submitted: {}", tx_hash)
        logger.info("Waiting for approval confirmation...")
        outcome = self.wallet.wait_for_receipt(tx_hash, step="approve")
        logger.info(
            "Approval {} in block {} (status {})",
            outcome.hash,
            outcome.block_number,
            "success" if outcome.success else "failed",
        )
        return outcome
