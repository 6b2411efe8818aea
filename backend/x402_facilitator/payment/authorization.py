"""
Chain-family-specific authorizations carried in a payment payload.

EVM payloads carry an ERC-2612 permit authorization:
    {"signature": "0x...", "authorization": {"from", "to", "value",
     "validAfter", "validBefore", "nonce"}}

Solana payloads carry an Ed25519-signed delegated-transfer intent:
    {"from", "to", "amount", "nonce", "deadline", "signature"}
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from x402_facilitator.payment.types import UNKNOWN_PAYER, ChainFamily


class MalformedAuthorization(ValueError):
    """Raised when an authorization object is present but unusable."""


def parse_uint(value: Any, field: str) -> int:
    """Parse a non-negative integer carried as a decimal string (or int).

    Floats and signed strings are rejected; amounts are never floating point.
    """
    if isinstance(value, bool):
        raise MalformedAuthorization(f"{field} must be an integer")
    if isinstance(value, int):
        if value < 0:
            raise MalformedAuthorization(f"{field} must be non-negative")
        return value
    if isinstance(value, str) and value.isascii() and value.isdigit():
        return int(value)
    raise MalformedAuthorization(f"{field} must be a decimal integer, got {value!r}")


def _require_str(source: Dict[str, Any], field: str) -> str:
    value = source.get(field)
    if not isinstance(value, str) or not value:
        raise MalformedAuthorization(f"{field} is missing")
    return value


@dataclass(frozen=True)
class EvmAuthorization:
    """ERC-2612 permit signed by `from` for spender `to`."""
    from_address: str
    to_address: str
    value: int
    valid_after: int
    valid_before: int
    nonce: int
    signature: str

    @property
    def payer(self) -> str:
        return self.from_address

    @property
    def expires_at(self) -> int:
        return self.valid_before


@dataclass(frozen=True)
class SolanaAuthorization:
    """Delegated SPL transfer intent signed by `from`."""
    from_address: str
    to_address: str
    amount: int
    nonce: str
    deadline: int
    signature: str
    # Exact text of the signed numeric fields, used to rebuild the signed message.
    amount_text: str = ""
    deadline_text: str = ""

    @property
    def payer(self) -> str:
        return self.from_address

    @property
    def value(self) -> int:
        return self.amount

    @property
    def expires_at(self) -> int:
        return self.deadline


Authorization = Union[EvmAuthorization, SolanaAuthorization]


def _extract_evm(payload: Dict[str, Any]) -> Optional[EvmAuthorization]:
    authorization = payload.get("authorization")
    if not isinstance(authorization, dict):
        return None
    signature = payload.get("signature")
    if not isinstance(signature, str) or not signature:
        raise MalformedAuthorization("signature is missing")

    return EvmAuthorization(
        from_address=_require_str(authorization, "from"),
        to_address=_require_str(authorization, "to"),
        value=parse_uint(authorization.get("value"), "value"),
        valid_after=parse_uint(authorization.get("validAfter", 0), "validAfter"),
        valid_before=parse_uint(authorization.get("validBefore"), "validBefore"),
        nonce=parse_uint(authorization.get("nonce"), "nonce"),
        signature=signature,
    )


def _extract_solana(payload: Dict[str, Any]) -> Optional[SolanaAuthorization]:
    if not any(key in payload for key in ("from", "signature", "amount")):
        return None
    nonce = payload.get("nonce")
    if nonce is None or isinstance(nonce, bool):
        raise MalformedAuthorization("nonce is missing")

    amount = payload.get("amount")
    deadline = payload.get("deadline")
    return SolanaAuthorization(
        from_address=_require_str(payload, "from"),
        to_address=_require_str(payload, "to"),
        amount=parse_uint(amount, "amount"),
        nonce=str(nonce),
        deadline=parse_uint(deadline, "deadline"),
        signature=_require_str(payload, "signature"),
        amount_text=str(amount),
        deadline_text=str(deadline),
    )


def extract_authorization(family: ChainFamily, payload: Dict[str, Any]) -> Optional[Authorization]:
    """Pull the family-appropriate authorization out of a payload.

    Returns:
        The authorization, or None when the payload carries none

    Raises:
        MalformedAuthorization: If the authorization is present but malformed
    """
    if not isinstance(payload, dict):
        return None
    if family is ChainFamily.EVM:
        return _extract_evm(payload)
    return _extract_solana(payload)


def claimed_payer(payload: Any) -> str:
    """Best-effort payer for error responses, before the payload is validated."""
    if not isinstance(payload, dict):
        return UNKNOWN_PAYER
    authorization = payload.get("authorization")
    if isinstance(authorization, dict) and isinstance(authorization.get("from"), str):
        return authorization["from"]
    if isinstance(payload.get("from"), str):
        return payload["from"]
    return UNKNOWN_PAYER
