"""
Signature verification for x402 "exact" payments.

- EVM: EIP-712 typed-data recovery of an ERC-2612 Permit
- Solana: detached Ed25519 signature over a pipe-delimited transfer intent

Verifiers never raise: a malformed signature is simply not valid.
"""

import logging
from typing import Any, Dict, Mapping, Optional

import base58
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import to_checksum_address
from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from x402_facilitator.payment.authorization import (
    Authorization,
    EvmAuthorization,
    SolanaAuthorization,
)
from x402_facilitator.payment.types import ChainFamily, NetworkDescriptor

logger = logging.getLogger(__name__)

# EIP-712 type definitions (immutable; materialised per call)
EIP712_DOMAIN_FIELDS = (
    ("name", "string"),
    ("version", "string"),
    ("chainId", "uint256"),
    ("verifyingContract", "address"),
)
PERMIT_FIELDS = (
    ("owner", "address"),
    ("spender", "address"),
    ("value", "uint256"),
    ("nonce", "uint256"),
    ("deadline", "uint256"),
)


def _fields(definition) -> list:
    return [{"name": name, "type": type_} for name, type_ in definition]


def permit_domain(descriptor: NetworkDescriptor, extra: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """EIP-712 domain of the settlement asset.

    Name/version come from the requirements' `extra` when present, otherwise
    from the descriptor. They must match the token's own domain or recovery
    yields a different address.
    """
    extra = extra or {}
    return {
        "name": extra.get("name") or descriptor.eip712_name,
        "version": extra.get("version") or descriptor.eip712_version,
        "chainId": descriptor.chain_id,
        "verifyingContract": to_checksum_address(descriptor.asset),
    }


def build_permit_typed_data(
    descriptor: NetworkDescriptor,
    authorization: EvmAuthorization,
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Full EIP-712 message for the permit the payer signed."""
    return {
        "types": {
            "EIP712Domain": _fields(EIP712_DOMAIN_FIELDS),
            "Permit": _fields(PERMIT_FIELDS),
        },
        "primaryType": "Permit",
        "domain": permit_domain(descriptor, extra),
        "message": {
            "owner": to_checksum_address(authorization.from_address),
            "spender": to_checksum_address(authorization.to_address),
            "value": authorization.value,
            "nonce": authorization.nonce,
            "deadline": authorization.valid_before,
        },
    }


def encode_transfer_intent(authorization: SolanaAuthorization) -> bytes:
    """Bytes the Solana payer signs. Field order, delimiter and spacing are fixed."""
    amount = authorization.amount_text or str(authorization.amount)
    deadline = authorization.deadline_text or str(authorization.deadline)
    return (
        f"from:{authorization.from_address}"
        f"|to:{authorization.to_address}"
        f"|amount:{amount}"
        f"|nonce:{authorization.nonce}"
        f"|deadline:{deadline}"
    ).encode("utf-8")


class EvmPermitVerifier:
    """Recovers the signer of an ERC-2612 permit and compares it with `from`."""

    def verify(
        self,
        descriptor: NetworkDescriptor,
        authorization: EvmAuthorization,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        try:
            typed_data = build_permit_typed_data(descriptor, authorization, extra)
            signable = encode_typed_data(full_message=typed_data)
            recovered = Account.recover_message(signable, signature=authorization.signature)
        except Exception as e:
            logger.warning(f"Permit signature check raised for {authorization.from_address}: {e}")
            return False

        if recovered.lower() != authorization.from_address.lower():
            logger.info(
                f"Permit signature recovered {recovered}, expected {authorization.from_address}"
            )
            return False
        return True


class SolanaIntentVerifier:
    """Verifies the payer's detached Ed25519 signature over the transfer intent."""

    def verify(
        self,
        descriptor: NetworkDescriptor,
        authorization: SolanaAuthorization,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        message = encode_transfer_intent(authorization)
        try:
            verify_key = VerifyKey(base58.b58decode(authorization.from_address))
            verify_key.verify(message, base58.b58decode(authorization.signature))
        except BadSignatureError:
            logger.info(f"Ed25519 signature does not match payer {authorization.from_address}")
            return False
        except Exception as e:
            logger.warning(f"Ed25519 signature check raised for {authorization.from_address}: {e}")
            return False
        return True


class SignatureVerifier:
    """Dispatches signature verification on the descriptor's chain family."""

    def __init__(
        self,
        evm: Optional[EvmPermitVerifier] = None,
        solana: Optional[SolanaIntentVerifier] = None,
    ):
        self.evm = evm or EvmPermitVerifier()
        self.solana = solana or SolanaIntentVerifier()

    def verify(
        self,
        descriptor: NetworkDescriptor,
        authorization: Authorization,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        if descriptor.family is ChainFamily.EVM:
            return self.evm.verify(descriptor, authorization, extra)
        return self.solana.verify(descriptor, authorization, extra)
