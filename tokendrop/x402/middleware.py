# tokendrop/x402/middleware.py
"""
FastAPI middleware for x402 payment verification.

This module provides HTTP middleware that:
1. Intercepts requests to the paid resource
2. Returns 402 Payment Required with fresh requirements when unpaid
3. Decodes the X-PAYMENT header (400 when malformed)
4. Gates payee and resource before contacting anyone (403 on mismatch)
5. Verifies the payment via the facilitator, passing its rejections through
   verbatim
6. Resolves the delivery address (400 when missing or invalid)
7. Settles the payment, only once nothing else can reject the request
8. Hands the request to the route with the receipt and payer attached

Uses the official x402 Python SDK types for the payment requirements.
"""
import logging
from typing import Any, Callable, Dict, Optional

import httpx
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from x402.encoding import safe_base64_encode
from x402.types import PaymentRequirements

from tokendrop.core.config import RESOURCE_PATH, Settings
from tokendrop.core.errors import ClientError, ForbiddenError, VerificationFailure
from tokendrop.delivery.models import PAYMENT_AMOUNT
from tokendrop.x402.audit import (
    generate_request_id,
    log_access_rejected,
    log_payment_failed,
    log_payment_required_sent,
    log_payment_settled,
    log_payment_verified,
)
from tokendrop.x402.facilitator import FacilitatorClient, FacilitatorReply
from tokendrop.x402.gate import check_receipt
from tokendrop.x402.payer import PAYER_HEADER, PAYER_QUERY_PARAM, resolve_payer
from tokendrop.x402.receipt import PaymentReceipt, decode_payment_header

logger = logging.getLogger(__name__)

# x402 protocol constants
X402_VERSION = 1
X_PAYMENT_HEADER = "X-PAYMENT"
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"
MAX_TIMEOUT_SECONDS = 300

USDC_ASSET_EXTRA = {"name": "USD Coin", "version": "2"}

OUTPUT_SCHEMA = {
    "input": {
        "type": "http",
        "method": "GET",
        "queryParams": {},
        "bodyFields": {},
        "headerFields": {},
    },
    "output": {
        "success": {"type": "boolean"},
        "message": {"type": "string"},
        "payer": {"type": "string"},
    },
}

# Paid endpoints. The human page at /buy only goes through payment when
# the caller actually sends an X-PAYMENT header.
# Matched exactly: "/api/buy/" is redirected by the router and must not be
# settled on the way.
PROTECTED_ENDPOINTS = [
    ("GET", RESOURCE_PATH),
    ("GET", "/buy"),
]
PAYMENT_OPTIONAL_PATHS = ["/buy"]


def is_protected_endpoint(method: str, path: str) -> bool:
    """Check if the request matches a protected endpoint."""
    return any(
        method == protected_method and path == protected_path
        for protected_method, protected_path in PROTECTED_ENDPOINTS
    )


def is_payment_optional(path: str) -> bool:
    return path in PAYMENT_OPTIONAL_PATHS


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def create_payment_requirements(settings: Settings) -> PaymentRequirements:
    """
    Create PaymentRequirements for the x402 402 response.

    Built fresh on every call so the body always reflects current settings.

    Args:
        settings: Application settings (payee, asset, public domain)

    Returns:
        PaymentRequirements for the single paid resource
    """
    return PaymentRequirements(
        scheme="exact",
        network=settings.X402_NETWORK,
        max_amount_required=str(PAYMENT_AMOUNT.units),
        resource=settings.resource_url,
        description=settings.PROJECT_DESCRIPTION,
        mime_type="application/json",
        output_schema=OUTPUT_SCHEMA,
        pay_to=settings.WALLET_ADDRESS,
        max_timeout_seconds=MAX_TIMEOUT_SECONDS,
        asset=settings.USDC_ADDRESS,
        extra=dict(USDC_ASSET_EXTRA),
    )


def build_402_body(
    payment_requirements: PaymentRequirements,
    error_message: str = "Payment required",
    payer: Optional[str] = None
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "x402Version": X402_VERSION,
        "error": error_message,
        "accepts": [payment_requirements.model_dump(by_alias=True)],
    }
    if payer:
        body["payer"] = payer
    return body


def create_402_response(
    payment_requirements: PaymentRequirements,
    error_message: str = "Payment required",
    payer: Optional[str] = None
) -> JSONResponse:
    """
    Create an HTTP 402 Payment Required response.

    Args:
        payment_requirements: The payment requirements to include
        error_message: Error message for the response
        payer: Payer reported by the facilitator, if any

    Returns:
        JSONResponse with 402 status and payment details
    """
    return JSONResponse(
        status_code=402,
        content=build_402_body(payment_requirements, error_message, payer),
    )


def encode_payment_response(settle_reply: FacilitatorReply) -> str:
    """Base64-encode the facilitator's settle body for the X-PAYMENT-RESPONSE header."""
    return safe_base64_encode(settle_reply.content)


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment verification middleware for FastAPI.

    On success the decoded receipt is stored on request.state.payment_receipt,
    the payer reported by the facilitator on request.state.verified_payer and
    the resolved delivery address on request.state.delivery_payer.

    Args:
        app: The ASGI app
        settings: Application settings
        facilitator_client: Client for the facilitator
    """

    def __init__(self, app, settings: Settings, facilitator_client: FacilitatorClient):
        super().__init__(app)
        self.settings = settings
        self.facilitator_client = facilitator_client

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        if not is_protected_endpoint(request.method, request.url.path):
            return await call_next(request)

        payment_header = request.headers.get(X_PAYMENT_HEADER)
        if not payment_header and is_payment_optional(request.url.path):
            return await call_next(request)

        client_ip = get_client_ip(request)
        request_id = generate_request_id()
        request.state.request_id = request_id
        logger.info(f"x402: [{request_id}] Paid request from {client_ip}: {request.method} {request.url.path}")

        payment_requirements = create_payment_requirements(self.settings)

        if not payment_header:
            logger.info(f"x402: [{request_id}] No X-PAYMENT header, returning 402")
            log_payment_required_sent(
                client_ip=client_ip,
                amount=payment_requirements.max_amount_required,
                asset=payment_requirements.asset,
                network=payment_requirements.network,
                pay_to=payment_requirements.pay_to,
                resource=payment_requirements.resource,
                request_id=request_id
            )
            return create_402_response(payment_requirements, "X-PAYMENT header is required")

        try:
            receipt = decode_payment_header(payment_header)
            check_receipt(receipt, self.settings.resource_url, self.settings.WALLET_ADDRESS)
        except (ClientError, ForbiddenError) as e:
            logger.warning(f"x402: [{request_id}] Rejected X-PAYMENT from {client_ip}: {e.message}")
            log_access_rejected(
                client_ip=client_ip,
                status_code=e.status_code,
                reason=e.message,
                request_id=request_id
            )
            return e.to_response()

        try:
            rejection = await self._verify_and_settle(
                receipt, payment_requirements, client_ip, request_id, request
            )
        except VerificationFailure as e:
            return e.to_response()
        except httpx.HTTPError as e:
            logger.error(f"x402: [{request_id}] Facilitator unreachable: {e}")
            log_payment_failed(
                client_ip=client_ip,
                reason=str(e),
                stage="facilitator",
                wallet_address=receipt.payer,
                request_id=request_id
            )
            return JSONResponse(
                status_code=502,
                content={"error": "Payment verification failed", "detail": str(e)}
            )
        if rejection is not None:
            return rejection

        request.state.payment_receipt = receipt
        response = await call_next(request)

        if 200 <= response.status_code < 300:
            response.headers[X_PAYMENT_RESPONSE_HEADER] = request.state.payment_response
        return response

    async def _verify_and_settle(
        self,
        receipt: PaymentReceipt,
        payment_requirements: PaymentRequirements,
        client_ip: str,
        request_id: str,
        request: Request
    ) -> Optional[Response]:
        """
        Verify the payment, resolve the delivery address, then settle.

        Settlement is the last step that can fail: once it succeeds the
        route always acknowledges the request.

        Returns:
            None when the payment is settled, otherwise a 400 or 402 response

        Raises:
            VerificationFailure: When the facilitator answered with a non-2xx status
            httpx.HTTPError: When the facilitator could not be reached
        """
        reply = await self.facilitator_client.verify(receipt.raw, payment_requirements)
        self._raise_for_rejection(reply, "verify", client_ip, receipt, request_id)

        verdict = reply.json()
        is_valid = verdict.get("isValid") is True
        invalid_reason = verdict.get("invalidReason")
        verified_payer = verdict.get("payer")
        payer = verified_payer or receipt.payer
        log_payment_verified(
            client_ip=client_ip,
            payer=payer,
            is_valid=is_valid,
            invalid_reason=invalid_reason,
            request_id=request_id
        )
        if not is_valid:
            reason = invalid_reason or "Unknown reason"
            logger.warning(f"x402: [{request_id}] Payment verification failed: {reason}")
            return create_402_response(
                payment_requirements,
                f"Payment verification failed: {reason}",
                payer=payer
            )

        logger.info(f"x402: [{request_id}] Payment verified for payer {payer}")
        request.state.verified_payer = verified_payer

        try:
            delivery_payer = resolve_payer(
                request.query_params.get(PAYER_QUERY_PARAM),
                request.headers.get(PAYER_HEADER),
                receipt,
                verified_payer,
            )
        except ClientError as e:
            logger.warning(f"x402: [{request_id}] {e.message}, not settling")
            log_access_rejected(
                client_ip=client_ip,
                status_code=e.status_code,
                reason=e.message,
                request_id=request_id
            )
            return e.to_response()
        request.state.delivery_payer = delivery_payer

        reply = await self.facilitator_client.settle(receipt.raw, payment_requirements)
        self._raise_for_rejection(reply, "settle", client_ip, receipt, request_id)

        settlement = reply.json()
        success = settlement.get("success") is True
        log_payment_settled(
            client_ip=client_ip,
            payer=payer,
            transaction_hash=settlement.get("transaction"),
            network=settlement.get("network"),
            success=success,
            error_reason=settlement.get("errorReason"),
            request_id=request_id
        )
        if not success:
            reason = settlement.get("errorReason") or "Unknown reason"
            logger.warning(f"x402: [{request_id}] Payment settlement failed: {reason}")
            return create_402_response(
                payment_requirements,
                f"Payment settlement failed: {reason}",
                payer=payer
            )

        logger.info(f"x402: [{request_id}] Payment settled: {settlement.get('transaction')}")
        request.state.payment_response = encode_payment_response(reply)
        return None

    def _raise_for_rejection(
        self,
        reply: FacilitatorReply,
        operation: str,
        client_ip: str,
        receipt: PaymentReceipt,
        request_id: str
    ) -> None:
        if reply.ok:
            return
        logger.warning(f"x402: [{request_id}] Facilitator {operation} rejected with HTTP {reply.status_code}")
        log_payment_failed(
            client_ip=client_ip,
            reason=f"facilitator {operation} returned HTTP {reply.status_code}",
            stage=operation,
            status_code=reply.status_code,
            wallet_address=receipt.payer,
            request_id=request_id
        )
        raise VerificationFailure(reply.status_code, reply.content, reply.media_type)
