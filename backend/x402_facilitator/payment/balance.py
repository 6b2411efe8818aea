"""
BalanceReader: read-only on-chain lookup of the payer's settlement-asset balance.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from solana.rpc.commitment import Confirmed
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from x402_facilitator.payment.chain import (
    SolanaClientFactory,
    Web3Factory,
    make_solana_client_factory,
    make_web3_factory,
)
from x402_facilitator.payment.types import ChainFamily, FacilitatorError, NetworkDescriptor

logger = logging.getLogger(__name__)

ERC20_BALANCE_ABI: tuple = (
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
)


class BalanceReadError(FacilitatorError):
    """Raised when the balance could not be read (RPC timeout, node error, ...)."""


def format_units(amount: int, decimals: int) -> str:
    """Human-readable token amount, for logs only."""
    return str(Decimal(amount).scaleb(-decimals))


class BalanceReader:
    """Reads ERC-20 balances (EVM) and SPL token-account balances (Solana)."""

    def __init__(
        self,
        web3_factory: Optional[Web3Factory] = None,
        solana_client_factory: Optional[SolanaClientFactory] = None,
    ):
        self.web3_factory = web3_factory or make_web3_factory()
        self.solana_client_factory = solana_client_factory or make_solana_client_factory()

    def read_balance(self, descriptor: NetworkDescriptor, owner: str) -> int:
        """Balance of `owner` in the descriptor's asset, in smallest units.

        Raises:
            BalanceReadError: If the chain could not be queried
        """
        try:
            if descriptor.family is ChainFamily.EVM:
                balance = self._read_erc20(descriptor, owner)
            else:
                balance = self._read_spl(descriptor, owner)
        except BalanceReadError:
            raise
        except Exception as e:
            raise BalanceReadError(f"Balance query failed on {descriptor.network}: {e}") from e

        logger.info(
            f"Balance of {owner} on {descriptor.network}: {balance} "
            f"({format_units(balance, descriptor.asset_decimals)})"
        )
        return balance

    def _read_erc20(self, descriptor: NetworkDescriptor, owner: str) -> int:
        w3 = self.web3_factory(descriptor)
        abi: List[Dict] = list(ERC20_BALANCE_ABI)
        token = w3.eth.contract(address=w3.to_checksum_address(descriptor.asset), abi=abi)
        return int(token.functions.balanceOf(w3.to_checksum_address(owner)).call())

    def _read_spl(self, descriptor: NetworkDescriptor, owner: str) -> int:
        client = self.solana_client_factory(descriptor)
        token_account = get_associated_token_address(
            Pubkey.from_string(owner), Pubkey.from_string(descriptor.asset)
        )

        # No associated token account yet means nothing to spend.
        account_info = client.get_account_info(token_account, commitment=Confirmed)
        if account_info.value is None:
            return 0

        response = client.get_token_account_balance(token_account, commitment=Confirmed)
        return int(response.value.amount)
