"""
SettlementExecutor: the on-chain write path for verified payments.

- EVM (ERC-2612): permit(owner, spender, value, deadline, v, r, s) followed by
  transferFrom(owner, payTo, value), both signed by the facilitator with two
  consecutive nonces reserved up front. The two transactions are not atomic:
  if transferFrom fails the permit approval stays on-chain.
- Solana: SPL transfer from the payer's token account to the payee's, with
  the facilitator as pre-approved delegate, fee payer and sole signer.

In both paths tokens move payer -> payee through the asset's own accounting;
the facilitator's balance is never an intermediate hop.

When real settlement is disabled the executor fabricates a transaction id
and touches no chain. That path is chosen by configuration only, never as a
fallback for errors.
"""

import logging
import secrets
from typing import Any, Dict, List, Optional, Tuple

import base58
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import TransferParams, get_associated_token_address, transfer
from web3 import Web3

from x402_facilitator.payment.authorization import (
    Authorization,
    EvmAuthorization,
    SolanaAuthorization,
    claimed_payer,
)
from x402_facilitator.payment.chain import (
    SolanaClientFactory,
    Web3Factory,
    make_solana_client_factory,
    make_web3_factory,
)
from x402_facilitator.payment.gas import GasStrategy
from x402_facilitator.payment.registry import NetworkRegistry
from x402_facilitator.payment.types import (
    ChainFamily,
    ErrorKind,
    FacilitatorError,
    NetworkDescriptor,
    PaymentPayload,
    PaymentRequirements,
    SettlementResult,
)
from x402_facilitator.payment.validator import declared_network, precheck

logger = logging.getLogger(__name__)

DEFAULT_CONFIRMATION_TIMEOUT_SECONDS = 120.0

ERC2612_SETTLEMENT_ABI: tuple = (
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "deadline", "type": "uint256"},
            {"name": "v", "type": "uint8"},
            {"name": "r", "type": "bytes32"},
            {"name": "s", "type": "bytes32"},
        ],
        "name": "permit",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "transferFrom",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
)


class SettlementError(FacilitatorError):
    """Raised inside the executor when an on-chain step fails."""


def split_signature(signature: str) -> Tuple[int, bytes, bytes]:
    """Split a 65-byte compact signature into (v, r, s).

    r = bytes[0:32], s = bytes[32:64], v = byte[64]; v of 0/1 becomes 27/28.
    """
    if not isinstance(signature, str):
        raise SettlementError("Signature must be a hex string")
    hex_part = signature[2:] if signature.startswith("0x") else signature
    try:
        raw = bytes.fromhex(hex_part)
    except ValueError as e:
        raise SettlementError(f"Signature is not valid hex: {e}") from e
    if len(raw) != 65:
        raise SettlementError(f"Signature must be 65 bytes, got {len(raw)}")

    r = raw[0:32]
    s = raw[32:64]
    v = raw[64]
    if v < 27:
        v += 27
    return v, r, s


def simulated_transaction_id(family: ChainFamily) -> str:
    """A syntactically plausible transaction id for simulated settlement."""
    if family is ChainFamily.EVM:
        return "0x" + secrets.token_hex(32)
    return base58.b58encode(secrets.token_bytes(64)).decode("ascii")


class EvmPermitSettlement:
    """permit + transferFrom on an ERC-2612 token."""

    def __init__(
        self,
        web3_factory: Optional[Web3Factory] = None,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT_SECONDS,
    ):
        self.web3_factory = web3_factory or make_web3_factory()
        self.confirmation_timeout = confirmation_timeout

    def settle(
        self,
        descriptor: NetworkDescriptor,
        authorization: EvmAuthorization,
        requirements: PaymentRequirements,
    ) -> str:
        """Run both transactions and return the transferFrom hash.

        Raises:
            SettlementError: If either transaction cannot be sent or reverts
        """
        v, r, s = split_signature(authorization.signature)

        w3 = self.web3_factory(descriptor)
        facilitator = w3.to_checksum_address(descriptor.facilitator_address)
        owner = w3.to_checksum_address(authorization.from_address)
        spender = w3.to_checksum_address(authorization.to_address)
        pay_to = w3.to_checksum_address(requirements.pay_to)
        abi: List[Dict] = list(ERC2612_SETTLEMENT_ABI)
        token = w3.eth.contract(address=w3.to_checksum_address(descriptor.asset), abi=abi)
        gas = GasStrategy(w3)

        if spender != facilitator:
            raise SettlementError(
                f"Permit spender {spender} is not this facilitator ({facilitator})"
            )

        # Reserve two consecutive nonces so the second call cannot race the first.
        nonce = w3.eth.get_transaction_count(facilitator, "pending")
        logger.info(f"Reserved nonces {nonce} (permit) and {nonce + 1} (transferFrom) for {facilitator}")

        permit_fn = token.functions.permit(
            owner, spender, authorization.value, authorization.valid_before, v, r, s
        )
        permit_hash = self._send(
            w3, gas, descriptor, permit_fn, facilitator, nonce, "permit", require_estimate=True
        )

        transfer_fn = token.functions.transferFrom(owner, pay_to, authorization.value)
        try:
            return self._send(w3, gas, descriptor, transfer_fn, facilitator, nonce + 1, "transferFrom")
        except Exception:
            logger.warning(
                f"Permit {permit_hash} confirmed but transferFrom failed; "
                f"approval for {spender} over {owner}'s tokens remains active"
            )
            raise

    def _send(
        self,
        w3: Web3,
        gas: GasStrategy,
        descriptor: NetworkDescriptor,
        contract_function,
        sender: str,
        nonce: int,
        label: str,
        require_estimate: bool = False,
    ) -> str:
        base: Dict[str, Any] = {"from": sender, "nonce": nonce, "chainId": descriptor.chain_id}
        tx = gas.build_transaction(contract_function, base, require_estimate=require_estimate)

        signed = w3.eth.account.sign_transaction(tx, private_key=descriptor.facilitator_private_key)
        tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info(f"{label} submitted on {descriptor.network}: {tx_hash_hex}")

        receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.confirmation_timeout)
        if receipt.status != 1:
            raise SettlementError(f"{label} reverted; tx_hash={tx_hash_hex}")

        logger.info(f"{label} confirmed in block {receipt.blockNumber} (gas used {receipt.gasUsed})")
        return tx_hash_hex


class SolanaDelegatedSettlement:
    """SPL transfer executed by the facilitator as the payer's delegate."""

    def __init__(self, solana_client_factory: Optional[SolanaClientFactory] = None):
        self.solana_client_factory = solana_client_factory or make_solana_client_factory()

    def settle(
        self,
        descriptor: NetworkDescriptor,
        authorization: SolanaAuthorization,
        requirements: PaymentRequirements,
    ) -> str:
        """Send the delegated transfer and return its signature once confirmed.

        Raises:
            SettlementError: If the transaction fails to confirm
        """
        keypair = Keypair.from_base58_string(descriptor.facilitator_private_key)
        mint = Pubkey.from_string(descriptor.asset)
        source = get_associated_token_address(Pubkey.from_string(authorization.from_address), mint)
        dest = get_associated_token_address(Pubkey.from_string(requirements.pay_to), mint)
        logger.info(f"Delegated transfer {source} -> {dest} by {keypair.pubkey()}")

        instruction = transfer(
            TransferParams(
                program_id=TOKEN_PROGRAM_ID,
                source=source,
                dest=dest,
                owner=keypair.pubkey(),
                amount=authorization.amount,
            )
        )

        client = self.solana_client_factory(descriptor)
        latest = client.get_latest_blockhash(commitment=Confirmed).value
        tx = Transaction.new_signed_with_payer(
            [instruction], keypair.pubkey(), [keypair], latest.blockhash
        )

        sent = client.send_raw_transaction(bytes(tx), opts=TxOpts(preflight_commitment=Confirmed))
        signature = sent.value
        logger.info(f"Delegated transfer sent: {signature}")

        confirmation = client.confirm_transaction(
            signature,
            commitment=Confirmed,
            last_valid_block_height=latest.last_valid_block_height,
        )
        status = confirmation.value[0] if confirmation.value else None
        if status is None:
            raise SettlementError(f"Transaction {signature} was not confirmed")
        if status.err is not None:
            raise SettlementError(f"Transaction {signature} failed: {status.err}")
        return str(signature)


class SettlementExecutor:
    """Runs settle requests against a NetworkRegistry."""

    def __init__(
        self,
        registry: NetworkRegistry,
        real_settlement: bool = False,
        evm: Optional[EvmPermitSettlement] = None,
        solana: Optional[SolanaDelegatedSettlement] = None,
    ):
        self.registry = registry
        self.real_settlement = real_settlement
        self.evm = evm or EvmPermitSettlement()
        self.solana = solana or SolanaDelegatedSettlement()

    def settle(self, payload: PaymentPayload, requirements: PaymentRequirements) -> SettlementResult:
        network = declared_network(payload) or "unknown"
        payer = claimed_payer(payload.payload)

        checked = precheck(self.registry, payload, requirements)
        if isinstance(checked[0], ErrorKind):
            kind, reason = checked
            logger.info(f"Settlement rejected ({kind.value}): {reason}")
            return SettlementResult.failed(network, kind, reason, payer)

        descriptor, authorization = checked
        return self.execute(descriptor, authorization, requirements)

    def execute(
        self,
        descriptor: NetworkDescriptor,
        authorization: Authorization,
        requirements: PaymentRequirements,
    ) -> SettlementResult:
        payer = authorization.payer

        if not self.real_settlement:
            transaction = simulated_transaction_id(descriptor.family)
            logger.warning(
                f"SIMULATED settlement on {descriptor.network}: {transaction} "
                f"(set ENABLE_REAL_SETTLEMENT=true for real transactions)"
            )
            return SettlementResult.succeeded(descriptor.network, payer, transaction)

        logger.info(
            f"Settling {authorization.value} from {payer} to {requirements.pay_to} "
            f"on {descriptor.display_name}"
        )
        try:
            if descriptor.family is ChainFamily.EVM:
                transaction = self.evm.settle(descriptor, authorization, requirements)
            else:
                transaction = self.solana.settle(descriptor, authorization, requirements)
        except Exception as e:
            reason = str(e) or e.__class__.__name__
            logger.error(f"Settlement failed on {descriptor.network} for {payer}: {reason}")
            return SettlementResult.failed(descriptor.network, ErrorKind.INTERNAL_ERROR, reason, payer)

        logger.info(f"Settlement complete on {descriptor.network}: {transaction}")
        return SettlementResult.succeeded(descriptor.network, payer, transaction)
