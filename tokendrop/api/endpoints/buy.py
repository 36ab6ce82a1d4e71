# tokendrop/api/endpoints/buy.py
from typing import Optional
import logging

from fastapi import APIRouter, Header, Query, Request, Response
from fastapi.responses import HTMLResponse

from tokendrop.api.emitter import ResponseEmitter
from tokendrop.api.models.buy import BuyAcknowledgement, ErrorResponse
from tokendrop.core.config import RESOURCE_PATH
from tokendrop.delivery.models import DeliveryRequest
from tokendrop.x402.audit import log_delivery_accepted
from tokendrop.x402.middleware import X_PAYMENT_HEADER, get_client_ip

logger = logging.getLogger(__name__)

router = APIRouter()

ACCEPTED_MESSAGE = "Payment accepted, delivering token..."

BUY_PAGE = """<!doctype html>
<html><head><meta charset="utf-8"><title>Buy $ZORRO</title></head>
<body style="font-family: system-ui; line-height:1.5; max-width:700px; margin:40px auto;">
  <h1>Payment Required</h1>
  <p>Mint 10k $ZORRO tokens with x402 payment protocol. Pay 2 USDC on Base mainnet.</p>
  <p><b>Machine endpoint:</b> <code>{resource_url}</code></p>
  <p>This page is for humans. Wallets/bots should call the API endpoint above.</p>
</body></html>
"""

BUY_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Malformed X-PAYMENT or missing payer"},
    402: {"description": "Payment required"},
    403: {"model": ErrorResponse, "description": "Receipt is for another payee or resource"},
    502: {"description": "Facilitator unreachable"},
}


async def handle_buy(request: Request) -> Response:
    """
    Acknowledge a settled payment and schedule its delivery.

    The x402 middleware has already resolved the delivery address, so a
    settled request is always acknowledged. The acknowledgement is the only
    response of the request; delivery runs as a background task once it has
    been sent.
    """
    emitter = ResponseEmitter()
    request_id = getattr(request.state, "request_id", "-")
    receipt = getattr(request.state, "payment_receipt", None)
    payer = getattr(request.state, "delivery_payer", None)
    if receipt is None or payer is None:
        logger.error(f"[{request_id}] Reached {request.url.path} without a settled payment")
        return emitter.send({"error": "Payment required"}, status_code=402)

    scheduler = request.app.state.delivery_scheduler
    delivery = DeliveryRequest(payer_address=payer, request_id=request_id)
    log_delivery_accepted(payer=payer, client_ip=get_client_ip(request), request_id=request_id)
    logger.info(f"[{request_id}] Payment accepted, scheduling delivery to {payer}")

    acknowledgement = BuyAcknowledgement(success=True, message=ACCEPTED_MESSAGE, payer=payer)
    return emitter.send(acknowledgement.model_dump(), background=scheduler.schedule(delivery))


@router.head(RESOURCE_PATH, status_code=402)
async def probe_buy() -> Response:
    """Answer scanners probing the paid resource without a body."""
    return Response(status_code=402, media_type="application/json; charset=utf-8")


# The payer parameters are read by the x402 middleware before settlement;
# they are declared here for the OpenAPI schema.
@router.get(RESOURCE_PATH, response_model=BuyAcknowledgement, responses=BUY_RESPONSES)
async def buy(
    request: Request,
    payer: Optional[str] = Query(None, description="Deliver to this address instead of the payer"),
    x_payer_address: Optional[str] = Header(None, description="Delivery address, below ?payer= in precedence")
) -> Response:
    """
    Buy the token with an x402 payment.

    Only reached once the X-PAYMENT header has been decoded, gated, verified
    and settled by the x402 middleware.
    """
    return await handle_buy(request)


@router.get("/buy", response_class=HTMLResponse, responses=BUY_RESPONSES)
async def buy_page(
    request: Request,
    payer: Optional[str] = Query(None),
    x_payer_address: Optional[str] = Header(None)
) -> Response:
    """
    Human landing page. Requests carrying X-PAYMENT are handled like /api/buy.
    """
    if not request.headers.get(X_PAYMENT_HEADER):
        settings = request.app.state.settings
        return HTMLResponse(BUY_PAGE.format(resource_url=settings.resource_url))
    return await handle_buy(request)
