"""
Payment Module - x402 "exact" scheme facilitator core

Handles payment verification and settlement across EVM and Solana networks.
"""

from x402_facilitator.payment.facilitator import FacilitatorService
from x402_facilitator.payment.registry import NetworkRegistry
from x402_facilitator.payment.config import FacilitatorSettings, build_network_descriptors
from x402_facilitator.payment.types import (
    ChainFamily,
    ErrorKind,
    NetworkDescriptor,
    PaymentPayload,
    PaymentRequirements,
    SettlementResult,
    VerificationResult,
)

__all__ = [
    "FacilitatorService",
    "NetworkRegistry",
    "FacilitatorSettings",
    "build_network_descriptors",
    "ChainFamily",
    "ErrorKind",
    "NetworkDescriptor",
    "PaymentPayload",
    "PaymentRequirements",
    "SettlementResult",
    "VerificationResult",
]
