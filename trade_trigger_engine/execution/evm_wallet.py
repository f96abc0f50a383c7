from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from eth_account import Account
from loguru import logger
from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception

from trade_trigger_engine.errors import ConfigMissing, ConfirmationTimeout, SubmissionError
from trade_trigger_engine.models import TransactionOutcome


def _load_abi(rel_path: str):
    path = Path(__file__).resolve().parent.parent / "abi" / rel_path
    return json.loads(path.read_text())


ERC20_ABI = _load_abi("erc20.json")
UNI_V3_ROUTER_ABI = _load_abi("uniswap_v3_router.json")
UNI_V3_QUOTER_ABI = _load_abi("uniswap_v3_quoter.json")


@dataclass
class EvmWallet:
    """Execution context for one process run: web3 client plus signing identity."""

    w3: Web3
    chain_id: int
    private_key: str | None
    address: str | None
    receipt_timeout_sec: float = 600.0

    @classmethod
    def create(
        cls,
        rpc_url: str,
        chain_id: int,
        private_key: str | None,
        explicit_address: str | None,
        receipt_timeout_sec: float = 600.0,
    ):
        if rpc_url.startswith("ws"):
            wsprov = getattr(Web3, "LegacyWebSocketProvider", None) or getattr(Web3, "WebsocketProvider", None)
            if wsprov is None:
                raise RuntimeError(
                    "No synchronous websocket provider in this web3 build. Use an HTTP RPC URL."
                )
            w3 = Web3(wsprov(rpc_url))
        else:
            w3 = Web3(Web3.HTTPProvider(rpc_url))
        addr = explicit_address
        if private_key:
            signer = Account.from_key(private_key).address
            if addr and Web3.to_checksum_address(addr) != signer:
                raise ConfigMissing(f"TTE_EXECUTOR_ADDRESS ({addr} does not match the TTE_PRIVATE_KEY signer {signer})")
            addr = signer
        logger.info("Connected to EVM provider (chain id {})", chain_id)
        if addr:
            logger.info("Using wallet: {}", addr)
        return cls(
            w3=w3,
            chain_id=chain_id,
            private_key=private_key,
            address=Web3.to_checksum_address(addr) if addr else None,
            receipt_timeout_sec=receipt_timeout_sec,
        )

    def erc20(self, token_addr: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(token_addr), abi=ERC20_ABI)

    def router_v3(self, router_addr: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(router_addr), abi=UNI_V3_ROUTER_ABI)

    def quoter_v3(self, quoter_addr: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(quoter_addr), abi=UNI_V3_QUOTER_ABI)

    def native_balance(self) -> int:
        return int(self.w3.eth.get_balance(self.address))

    def base_fee_estimate(self) -> int:
        return int(self.w3.eth.gas_price)

    def send_tx(self, tx: dict, step: str = "submit") -> str:
        if not self.private_key or not self.address:
            raise SubmissionError("Signing key and address required for sending transactions", step)
        tx = dict(tx)
        # Populate common fields
        tx.setdefault("chainId", self.chain_id)
        tx.setdefault("from", self.address)
        try:
            if "nonce" not in tx:
                tx["nonce"] = self.w3.eth.get_transaction_count(self.address, "pending")
            # Fill gas if not provided
            if "gas" not in tx:
                tx["gas"] = self.w3.eth.estimate_gas(tx)
            signed = self.w3.eth.account.sign_transaction(tx, self.private_key)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except (ValueError, Web3Exception) as e:
            raise SubmissionError(f"Transaction rejected: {e}", step, context={"to": tx.get("to")}) from e
        return Web3.to_hex(tx_hash)

    def wait_for_receipt(self, tx_hash: str, step: str = "confirm") -> TransactionOutcome:
        try:
            rcpt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout_sec)
        except TimeExhausted as e:
            raise ConfirmationTimeout(
                f"Transaction {tx_hash} not confirmed within {self.receipt_timeout_sec}s",
                step,
                context={"tx_hash": tx_hash},
            ) from e
        return TransactionOutcome(
            hash=tx_hash,
            block_number=rcpt.get("blockNumber"),
            gas_used=rcpt.get("gasUsed"),
            success=rcpt.get("status") == 1,
        )
