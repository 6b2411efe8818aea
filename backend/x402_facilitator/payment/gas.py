"""
Gas strategy for facilitator-signed EVM transactions.

Builds fee parameters for the permit and transferFrom calls:
- EIP-1559 fees (baseFee * multiplier + tip) when the chain exposes a base fee
- legacy gasPrice otherwise
- gas limit from estimate_gas with a buffer, or a fixed default
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from web3 import Web3
from web3.types import Wei

from x402_facilitator.payment.types import FacilitatorError

logger = logging.getLogger(__name__)

# Default gas limit if estimation fails
DEFAULT_GAS_LIMIT = 150000

# Buffer on top of estimate_gas
GAS_LIMIT_BUFFER = 1.2

# Safety multiplier for base fee (tx stays valid if the base fee rises)
BASE_FEE_MULTIPLIER = 2

# Default priority fee (tip) in gwei
DEFAULT_PRIORITY_FEE_GWEI = 0.01


class GasEstimationError(FacilitatorError):
    """Raised when a transaction that must simulate cleanly does not."""


@dataclass
class GasParams:
    """Fee fields merged into a transaction before signing."""

    gas_limit: int
    max_fee_per_gas: Optional[Wei] = None
    max_priority_fee_per_gas: Optional[Wei] = None
    gas_price: Optional[Wei] = None

    def as_tx_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {"gas": self.gas_limit}
        if self.max_fee_per_gas is not None:
            fields["maxFeePerGas"] = self.max_fee_per_gas
            fields["maxPriorityFeePerGas"] = self.max_priority_fee_per_gas
        else:
            fields["gasPrice"] = self.gas_price
        return fields


class GasStrategy:
    """Computes gas parameters against a connected Web3 instance."""

    def __init__(self, web3: Web3, base_fee_multiplier: int = BASE_FEE_MULTIPLIER) -> None:
        self.web3 = web3
        self.base_fee_multiplier = base_fee_multiplier

    def get_base_fee(self) -> Optional[Wei]:
        """Base fee of the latest block, or None on pre-London chains."""
        block = self.web3.eth.get_block("latest")
        base_fee = block.get("baseFeePerGas") if hasattr(block, "get") else None
        return Wei(base_fee) if base_fee is not None else None

    def get_priority_fee(self) -> Wei:
        """Network-suggested tip, falling back to a small default."""
        try:
            return Wei(self.web3.eth.max_priority_fee)
        except Exception as e:
            logger.debug(f"Could not get maxPriorityFeePerGas, using default: {e}")
            return Wei(self.web3.to_wei(DEFAULT_PRIORITY_FEE_GWEI, "gwei"))

    def estimate_gas_limit(
        self, contract_function, tx: Dict[str, Any], required: bool = False
    ) -> int:
        """Buffered gas estimate.

        Raises:
            GasEstimationError: If estimation fails and `required` is set
        """
        try:
            return int(contract_function.estimate_gas(tx) * GAS_LIMIT_BUFFER)
        except Exception as e:
            if required:
                raise GasEstimationError(f"Gas estimation failed: {e}") from e
            logger.warning(f"Gas estimation failed: {e}. Using default gas limit.")
            return DEFAULT_GAS_LIMIT

    def calculate_gas_params(self, gas_limit: int) -> GasParams:
        base_fee = self.get_base_fee()
        if base_fee is None:
            return GasParams(gas_limit=gas_limit, gas_price=Wei(self.web3.eth.gas_price))

        priority_fee = self.get_priority_fee()
        max_fee = Wei(base_fee * self.base_fee_multiplier + priority_fee)
        logger.debug(
            f"Gas params: baseFee={base_fee} wei, priorityFee={priority_fee} wei, "
            f"maxFeePerGas={max_fee} wei, gasLimit={gas_limit}"
        )
        return GasParams(
            gas_limit=gas_limit,
            max_fee_per_gas=max_fee,
            max_priority_fee_per_gas=priority_fee,
        )

    def build_transaction(
        self, contract_function, tx: Dict[str, Any], require_estimate: bool = False
    ) -> Dict[str, Any]:
        """Estimate gas, attach fees and build the transaction dict ready for signing."""
        gas_limit = self.estimate_gas_limit(contract_function, tx, required=require_estimate)
        params = self.calculate_gas_params(gas_limit)
        return contract_function.build_transaction({**tx, **params.as_tx_fields()})
