"""
Types shared by the x402 facilitator core.

- Network descriptors produced from configuration
- Wire models for payment payloads and requirements (pydantic)
- Verification / settlement results returned by the engine
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

X402_VERSION = 2
EXACT_SCHEME = "exact"
UNKNOWN_PAYER = "unknown"


class ChainFamily(str, Enum):
    """Supported chain families."""
    EVM = "eip155"
    SOLANA = "solana"


class ErrorKind(str, Enum):
    """Business-level error taxonomy for verify and settle."""
    UNSUPPORTED_SCHEME = "unsupported_scheme"
    UNKNOWN_NETWORK = "unknown_network"
    MISSING_AUTHORIZATION = "missing_authorization"
    SIGNATURE_INVALID = "signature_invalid"
    EXPIRED = "expired"
    INSUFFICIENT_AMOUNT = "insufficient_amount"
    RECIPIENT_MISMATCH = "recipient_mismatch"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    INTERNAL_ERROR = "internal_error"


class FacilitatorError(Exception):
    """Base exception for the facilitator core."""


@dataclass(frozen=True)
class NetworkDescriptor:
    """Settlement parameters for one CAIP-2 network."""
    network: str  # CAIP-2 identifier, e.g. "eip155:8453"
    family: ChainFamily
    display_name: str
    rpc_url: str
    asset: str  # ERC-20 address or SPL mint
    asset_decimals: int
    facilitator_private_key: str = ""
    facilitator_address: str = ""
    eip712_name: str = "Stable Coin"
    eip712_version: str = "1"
    chain_id: Optional[int] = None  # EVM only

    @property
    def enabled(self) -> bool:
        return bool(self.facilitator_private_key and self.facilitator_address)

    @property
    def asset_transfer_method(self) -> str:
        return "erc2612" if self.family is ChainFamily.EVM else "delegated-spl"

    def __repr__(self) -> str:
        # Keep the signing credential out of logs and tracebacks.
        return (
            f"NetworkDescriptor(network={self.network!r}, family={self.family.value!r}, "
            f"asset={self.asset!r}, facilitator_address={self.facilitator_address!r})"
        )


# --- Wire models ------------------------------------------------------------------


class AcceptedKind(BaseModel):
    """The scheme/network pair the client chose to pay with."""
    model_config = ConfigDict(extra="allow")

    scheme: Optional[str] = None
    network: Optional[str] = None


class PaymentPayload(BaseModel):
    """Client-signed payment authorization (x402 v2)."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    x402_version: int = Field(X402_VERSION, alias="x402Version")
    resource: Optional[Any] = None
    accepted: AcceptedKind = Field(default_factory=AcceptedKind)
    payload: Dict[str, Any] = Field(default_factory=dict)


def _is_decimal_integer(value: str) -> bool:
    return value.isascii() and value.isdigit()


class PaymentRequirements(BaseModel):
    """What the resource server asks the client to pay."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    scheme: str = EXACT_SCHEME
    network: Optional[str] = None
    amount: Optional[str] = None
    max_amount_required: Optional[str] = Field(None, alias="maxAmountRequired")
    asset: Optional[str] = None
    pay_to: str = Field(..., alias="payTo")
    max_timeout_seconds: Optional[int] = Field(None, alias="maxTimeoutSeconds")
    extra: Optional[Dict[str, Any]] = None

    @field_validator("amount", "max_amount_required", mode="before")
    @classmethod
    def _amount_is_integer_string(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise ValueError("amount must be a decimal integer string")
        value = str(value)
        if not _is_decimal_integer(value):
            raise ValueError(f"amount must be a non-negative decimal integer, got {value!r}")
        return value

    @property
    def required_amount(self) -> int:
        """Required amount in smallest units (`amount`, else legacy `maxAmountRequired`)."""
        raw = self.amount if self.amount is not None else self.max_amount_required
        if raw is None:
            raise ValueError("payment requirements carry no amount")
        return int(raw)


# --- Results ----------------------------------------------------------------------


@dataclass
class VerificationResult:
    """Outcome of verify; serialised as {isValid, payer, invalidReason}."""
    is_valid: bool
    payer: str = UNKNOWN_PAYER
    invalid_reason: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def valid(cls, payer: str) -> "VerificationResult":
        return cls(is_valid=True, payer=payer)

    @classmethod
    def invalid(cls, kind: ErrorKind, reason: str, payer: str = UNKNOWN_PAYER) -> "VerificationResult":
        return cls(is_valid=False, payer=payer, invalid_reason=reason, error_kind=kind)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "payer": self.payer,
            "invalidReason": self.invalid_reason,
        }


@dataclass
class SettlementResult:
    """Outcome of settle; serialised as {success, payer, transaction, network, errorReason?}."""
    success: bool
    network: str
    payer: str = UNKNOWN_PAYER
    transaction: str = ""
    error_reason: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def succeeded(cls, network: str, payer: str, transaction: str) -> "SettlementResult":
        return cls(success=True, network=network, payer=payer, transaction=transaction)

    @classmethod
    def failed(
        cls,
        network: str,
        kind: ErrorKind,
        reason: str,
        payer: str = UNKNOWN_PAYER,
    ) -> "SettlementResult":
        return cls(
            success=False,
            network=network,
            payer=payer,
            transaction="",
            error_reason=reason,
            error_kind=kind,
        )

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": self.success,
            "payer": self.payer,
            "transaction": self.transaction,
            "network": self.network,
        }
        if self.error_reason is not None:
            body["errorReason"] = self.error_reason
        return body
