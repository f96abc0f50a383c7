from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from web3 import Web3


@dataclass(frozen=True)
class GasPlan:
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    gas_limit: int
    downgraded: bool = False

    def max_cost(self) -> int:
        return self.max_fee_per_gas * self.gas_limit


def derive_gas_plan(
    base_fee: int,
    native_balance: int,
    *,
    priority_fee: int,
    economical_priority_fee: int,
    gas_limit: int,
    gas_limit_upper_bound: int,
) -> GasPlan:
    """Fee cap is base fee + priority fee; one downgrade when the balance can't cover the upper bound."""
    max_priority = int(priority_fee)
    max_fee = int(base_fee) + max_priority
    estimated_cost = max_fee * int(gas_limit_upper_bound)
    downgraded = False
    if native_balance < estimated_cost:
        logger.warning(
            "Gas cost might be too high for balance: estimated {} ETH, balance {} ETH",
            Web3.from_wei(estimated_cost, "ether"),
            Web3.from_wei(native_balance, "ether"),
        )
        max_priority = int(economical_priority_fee)
        max_fee = int(base_fee) + max_priority
        downgraded = True
    return GasPlan(
        max_fee_per_gas=max_fee,
        max_priority_fee_per_gas=max_priority,
        gas_limit=int(gas_limit),
        downgraded=downgraded,
    )
