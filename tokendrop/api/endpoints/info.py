# tokendrop/api/endpoints/info.py
from fastapi import APIRouter, Request
import logging

from tokendrop.api.models.buy import EndpointInfo, HealthResponse, ServiceDescriptor
from tokendrop.chain.gas import check_gas_balance
from tokendrop.core.config import RESOURCE_PATH
from tokendrop.x402.audit import get_audit_stats

logger = logging.getLogger(__name__)

router = APIRouter()

PRICE = "$2"


@router.get("/", response_model=ServiceDescriptor, summary="Service Descriptor")
def read_root(request: Request) -> ServiceDescriptor:
    """Describe the service and its paid endpoints."""
    settings = request.app.state.settings
    logger.info("Root endpoint '/' accessed.")
    return ServiceDescriptor(
        name=settings.PROJECT_NAME,
        version=settings.PROJECT_VERSION,
        description=settings.PROJECT_DESCRIPTION,
        facilitator=str(settings.FACILITATOR_URL),
        endpoints=[
            EndpointInfo(
                path="/buy",
                method="GET",
                price=PRICE,
                network=settings.X402_NETWORK,
                info="UI page for users",
            ),
            EndpointInfo(
                path=RESOURCE_PATH,
                method="GET",
                price=PRICE,
                network=settings.X402_NETWORK,
                info="Machine endpoint for x402 wallets/scanners",
            ),
        ],
    )


@router.get("/health", response_model=HealthResponse, summary="Health Check")
def health(request: Request) -> HealthResponse:
    """
    Report the delivery wallet's gas balance, the deliveries in progress and
    a summary of the audit log (delivery outcomes so far).

    Status is "degraded" when the gas balance is below the warning threshold
    or could not be read.
    """
    settings = request.app.state.settings
    chain = request.app.state.transaction_service
    scheduler = request.app.state.delivery_scheduler

    gas = check_gas_balance(chain.address, settings)
    return HealthResponse(
        status="ok" if gas["ok"] else "degraded",
        delivery_wallet=chain.address,
        deliveries_in_flight=scheduler.in_flight,
        gas=gas,
        audit=get_audit_stats(),
    )
