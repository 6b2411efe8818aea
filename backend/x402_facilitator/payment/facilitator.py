"""
FacilitatorService - payment verification and settlement for x402 "exact".

Supports multiple chain families:
- EVM (Base, Radius): ERC-2612 permit + transferFrom
- Solana: delegated SPL transfer

This service is the boundary the HTTP layer talks to:
1. verify(payload, requirements) -> VerificationResult
2. settle(payload, requirements) -> SettlementResult
3. supported() -> discovery document

It knows nothing about API keys or HTTP; results are plain data.
"""

import logging
from typing import Any, Dict, Optional

from x402_facilitator.payment.authorization import claimed_payer
from x402_facilitator.payment.balance import BalanceReader
from x402_facilitator.payment.chain import make_solana_client_factory, make_web3_factory
from x402_facilitator.payment.config import FacilitatorSettings, build_network_descriptors
from x402_facilitator.payment.registry import NetworkRegistry
from x402_facilitator.payment.settlement import (
    EvmPermitSettlement,
    SettlementExecutor,
    SolanaDelegatedSettlement,
)
from x402_facilitator.payment.signatures import SignatureVerifier
from x402_facilitator.payment.supported import CapabilityAdvertiser
from x402_facilitator.payment.types import (
    ErrorKind,
    PaymentPayload,
    PaymentRequirements,
    SettlementResult,
    VerificationResult,
)
from x402_facilitator.payment.validator import PaymentValidator, declared_network

logger = logging.getLogger(__name__)


class FacilitatorService:
    """Main payment facilitator service supporting multiple networks."""

    def __init__(
        self,
        registry: NetworkRegistry,
        validator: Optional[PaymentValidator] = None,
        executor: Optional[SettlementExecutor] = None,
    ):
        """Initialize the facilitator around an already-built registry.

        Args:
            registry: Enabled networks
            validator: Verification pipeline (defaults to live chain access)
            executor: Settlement executor (defaults to simulated settlement)
        """
        self.registry = registry
        self.validator = validator or PaymentValidator(registry)
        self.executor = executor or SettlementExecutor(registry)
        self.advertiser = CapabilityAdvertiser(registry)

    @classmethod
    def from_settings(cls, settings: FacilitatorSettings) -> "FacilitatorService":
        """Build the full service graph from configuration."""
        settings.validate()
        registry = NetworkRegistry(build_network_descriptors(settings))
        web3_factory = make_web3_factory(settings.rpc_timeout_seconds)
        solana_factory = make_solana_client_factory(settings.rpc_timeout_seconds)

        validator = PaymentValidator(
            registry,
            signature_verifier=SignatureVerifier(),
            balance_reader=BalanceReader(web3_factory, solana_factory),
        )
        executor = SettlementExecutor(
            registry,
            real_settlement=settings.enable_real_settlement,
            evm=EvmPermitSettlement(web3_factory, settings.confirmation_timeout_seconds),
            solana=SolanaDelegatedSettlement(solana_factory),
        )
        if not settings.enable_real_settlement:
            logger.warning(
                "Real settlement is DISABLED: /settle returns simulated transaction ids. "
                "Set ENABLE_REAL_SETTLEMENT=true to settle on-chain."
            )
        return cls(registry, validator=validator, executor=executor)

    def verify(self, payload: PaymentPayload, requirements: PaymentRequirements) -> VerificationResult:
        """Verify a payment authorization. Never raises."""
        try:
            return self.validator.validate(payload, requirements)
        except Exception as e:
            logger.exception("Verification error")
            return VerificationResult.invalid(
                ErrorKind.INTERNAL_ERROR, f"Server error: {e}", claimed_payer(payload.payload)
            )

    def settle(self, payload: PaymentPayload, requirements: PaymentRequirements) -> SettlementResult:
        """Settle a (previously verified) payment on-chain. Never raises."""
        try:
            return self.executor.settle(payload, requirements)
        except Exception as e:
            logger.exception("Settlement error")
            return SettlementResult.failed(
                declared_network(payload) or "unknown",
                ErrorKind.INTERNAL_ERROR,
                str(e) or e.__class__.__name__,
                claimed_payer(payload.payload),
            )

    def supported(self) -> Dict[str, Any]:
        """Discovery document for GET /supported."""
        return self.advertiser.supported()
