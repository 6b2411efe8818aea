"""
x402 Facilitator API routes.

Endpoints for capability discovery, payment verification and settlement.
"""

from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from x402_facilitator.payment.api_key import ApiKeyGate
from x402_facilitator.payment.facilitator import FacilitatorService
from x402_facilitator.payment.types import ErrorKind, PaymentPayload, PaymentRequirements
from x402_facilitator.payment.validator import declared_network

router = APIRouter(tags=["facilitator"])


class FacilitatorRequest(BaseModel):
    """Request body for /verify and /settle."""
    model_config = ConfigDict(populate_by_name=True)

    x402_version: Optional[int] = Field(None, alias="x402Version")
    payment_payload: PaymentPayload = Field(..., alias="paymentPayload")
    payment_requirements: PaymentRequirements = Field(..., alias="paymentRequirements")


def _service(request: Request) -> FacilitatorService:
    service = getattr(request.app.state, "facilitator", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Payment facilitator service not configured")
    return service


def _gate(request: Request, body: FacilitatorRequest, api_key: Optional[str]) -> None:
    gate: Optional[ApiKeyGate] = getattr(request.app.state, "api_key_gate", None)
    if gate is not None:
        gate.check(declared_network(body.payment_payload), api_key)


def _status_for(kind: Optional[ErrorKind]) -> int:
    return 500 if kind is ErrorKind.INTERNAL_ERROR else 200


@router.get("/supported")
def get_supported(request: Request) -> JSONResponse:
    """List payment kinds (scheme/network pairs) this facilitator can settle."""
    return JSONResponse(content=_service(request).supported())


@router.post("/verify")
def verify_payment(
    request: Request,
    body: FacilitatorRequest,
    x_api_key: Optional[str] = Header(None),
) -> JSONResponse:
    """Verify a payment authorization against payment requirements.

    Returns:
        {isValid, payer, invalidReason}; HTTP 500 only for infrastructure failures
    """
    service = _service(request)
    _gate(request, body, x_api_key)
    result = service.verify(body.payment_payload, body.payment_requirements)
    return JSONResponse(content=result.to_dict(), status_code=_status_for(result.error_kind))


@router.post("/settle")
def settle_payment(
    request: Request,
    body: FacilitatorRequest,
    x_api_key: Optional[str] = Header(None),
) -> JSONResponse:
    """Settle a verified payment on-chain.

    Returns:
        {success, payer, transaction, network, errorReason?}
    """
    service = _service(request)
    _gate(request, body, x_api_key)
    result = service.settle(body.payment_payload, body.payment_requirements)
    return JSONResponse(content=result.to_dict(), status_code=_status_for(result.error_kind))
