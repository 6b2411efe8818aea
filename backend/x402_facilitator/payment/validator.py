"""
PaymentValidator: the ordered verification pipeline.

Checks run cheapest first and stop at the first failure:

    scheme -> network -> authorization shape -> signature -> expiry
           -> amount -> recipient -> on-chain balance

Every step converts its own failures into a VerificationResult; nothing is
raised to the caller.
"""

import logging
import time
from typing import Callable, Optional, Tuple, Union

from x402_facilitator.payment.authorization import (
    Authorization,
    MalformedAuthorization,
    SolanaAuthorization,
    claimed_payer,
    extract_authorization,
)
from x402_facilitator.payment.balance import BalanceReadError, BalanceReader
from x402_facilitator.payment.registry import NetworkRegistry
from x402_facilitator.payment.signatures import SignatureVerifier
from x402_facilitator.payment.types import (
    EXACT_SCHEME,
    ChainFamily,
    ErrorKind,
    NetworkDescriptor,
    PaymentPayload,
    PaymentRequirements,
    VerificationResult,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

MISSING_AUTHORIZATION_REASON = "Missing authorization in payload"


def declared_network(payload: PaymentPayload) -> Optional[str]:
    """The routing key: `accepted.network` only, never the requirements' network."""
    return payload.accepted.network


def precheck(
    registry: NetworkRegistry,
    payload: PaymentPayload,
    requirements: PaymentRequirements,
) -> Union[Tuple[NetworkDescriptor, Authorization], Tuple[ErrorKind, str]]:
    """Scheme, network and authorization-shape checks shared by verify and settle.

    Returns:
        (descriptor, authorization) on success, (ErrorKind, reason) otherwise
    """
    scheme = payload.accepted.scheme
    if scheme != EXACT_SCHEME:
        return ErrorKind.UNSUPPORTED_SCHEME, f"Unsupported scheme: {scheme}"

    network = declared_network(payload)
    descriptor = registry.resolve(network)
    if descriptor is None:
        return ErrorKind.UNKNOWN_NETWORK, f"Unknown network: {network}"

    try:
        authorization = extract_authorization(descriptor.family, payload.payload)
    except MalformedAuthorization as e:
        logger.info(f"Malformed authorization on {descriptor.network}: {e}")
        return ErrorKind.MISSING_AUTHORIZATION, f"{MISSING_AUTHORIZATION_REASON}: {e}"
    if authorization is None:
        return ErrorKind.MISSING_AUTHORIZATION, MISSING_AUTHORIZATION_REASON

    return descriptor, authorization


class PaymentValidator:
    """Runs the verification pipeline against a NetworkRegistry."""

    def __init__(
        self,
        registry: NetworkRegistry,
        signature_verifier: Optional[SignatureVerifier] = None,
        balance_reader: Optional[BalanceReader] = None,
        clock: Clock = time.time,
    ):
        self.registry = registry
        self.signature_verifier = signature_verifier or SignatureVerifier()
        self.balance_reader = balance_reader or BalanceReader()
        self.clock = clock

    def validate(self, payload: PaymentPayload, requirements: PaymentRequirements) -> VerificationResult:
        payer = claimed_payer(payload.payload)

        checked = precheck(self.registry, payload, requirements)
        if isinstance(checked[0], ErrorKind):
            kind, reason = checked
            logger.info(f"Verification rejected ({kind.value}): {reason}")
            return VerificationResult.invalid(kind, reason, payer)

        descriptor, authorization = checked
        payer = authorization.payer
        logger.info(
            f"Verifying {descriptor.display_name} payment from {payer} "
            f"for {authorization.value} (expires {authorization.expires_at})"
        )

        if not self.signature_verifier.verify(descriptor, authorization, requirements.extra):
            reason = (
                "Invalid permit signature"
                if descriptor.family is ChainFamily.EVM
                else "Invalid signature"
            )
            return self._reject(ErrorKind.SIGNATURE_INVALID, reason, payer)

        now = int(self.clock())
        if now > authorization.expires_at:
            return self._reject(ErrorKind.EXPIRED, "Payment expired", payer)

        try:
            required = requirements.required_amount
        except ValueError as e:
            return self._reject(ErrorKind.INSUFFICIENT_AMOUNT, f"Insufficient amount: {e}", payer)
        if authorization.value < required:
            return self._reject(ErrorKind.INSUFFICIENT_AMOUNT, "Insufficient amount", payer)

        if not self._recipient_matches(authorization, requirements):
            return self._reject(ErrorKind.RECIPIENT_MISMATCH, "Invalid recipient", payer)

        try:
            balance = self.balance_reader.read_balance(descriptor, payer)
        except BalanceReadError as e:
            logger.error(f"Balance check failed on {descriptor.network}: {e}")
            return VerificationResult.invalid(ErrorKind.INTERNAL_ERROR, f"Server error: {e}", payer)

        if balance < authorization.value:
            return self._reject(ErrorKind.INSUFFICIENT_BALANCE, "Insufficient balance", payer)

        logger.info(f"Payment verification successful for {payer} on {descriptor.network}")
        return VerificationResult.valid(payer)

    @staticmethod
    def _recipient_matches(authorization: Authorization, requirements: PaymentRequirements) -> bool:
        if isinstance(authorization, SolanaAuthorization):
            return authorization.to_address == requirements.pay_to
        # EVM permits name the facilitator as spender; the payee is whatever the
        # requirements declare, so this comparison is self-referential.
        recipient = requirements.pay_to
        return recipient.lower() == requirements.pay_to.lower()

    @staticmethod
    def _reject(kind: ErrorKind, reason: str, payer: str) -> VerificationResult:
        logger.info(f"Verification rejected ({kind.value}) for {payer}: {reason}")
        return VerificationResult.invalid(kind, reason, payer)
