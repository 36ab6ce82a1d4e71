# tokendrop/main.py
from contextlib import asynccontextmanager
from typing import Optional
import logging

import uvicorn
from fastapi import FastAPI, Request

from tokendrop.api.endpoints import buy, info
from tokendrop.api.transport import CanonicalHostMiddleware, RequestLoggingMiddleware, add_cors
from tokendrop.chain.service import TransactionService
from tokendrop.chain.web3_service import Web3TransactionService
from tokendrop.core.config import RESOURCE_PATH, Settings, get_settings
from tokendrop.core.errors import ConfigurationError, GatewayError
from tokendrop.delivery.models import DeliveryPlan
from tokendrop.delivery.orchestrator import DeliveryOrchestrator
from tokendrop.delivery.scheduler import DeliveryScheduler
from tokendrop.x402.audit import configure_audit_log
from tokendrop.x402.facilitator import FacilitatorClient
from tokendrop.x402.middleware import X402Middleware

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _log_startup(settings: Settings, chain: TransactionService) -> None:
    logger.info(f"Starting {settings.PROJECT_NAME} v{settings.PROJECT_VERSION}")
    logger.info(f"   Network: {settings.X402_NETWORK}")
    logger.info(f"   Facilitator: {settings.FACILITATOR_URL}")
    logger.info(f"   Payee: {settings.WALLET_ADDRESS}")
    logger.info(f"   Resource: {settings.resource_url}")
    logger.info(f"   Token: {settings.CONTRACT_ADDRESS}")
    logger.info(f"   Delivery wallet: {chain.address}")
    logger.info(f"   Auto-refund: {'enabled' if settings.AUTO_REFUND else 'disabled'}")


def create_app(
    settings: Optional[Settings] = None,
    transaction_service: Optional[TransactionService] = None,
    facilitator_client: Optional[FacilitatorClient] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use (loaded from the environment if omitted)
        transaction_service: Signing account for delivery (web3 from settings if omitted)
        facilitator_client: Facilitator client (built from settings if omitted)

    Raises:
        ConfigurationError: If settings are missing or invalid
    """
    settings = settings or get_settings()
    configure_audit_log(settings.X402_AUDIT_LOG_PATH)

    if transaction_service is None:
        try:
            transaction_service = Web3TransactionService.from_settings(settings)
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration: PRIVATE_KEY ({e})") from e

    if facilitator_client is None:
        facilitator_client = FacilitatorClient(
            base_url=str(settings.FACILITATOR_URL),
            timeout=settings.FACILITATOR_TIMEOUT_SECONDS,
        )

    plan = DeliveryPlan.from_settings(settings)
    scheduler = DeliveryScheduler(DeliveryOrchestrator(transaction_service, plan))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _log_startup(settings, transaction_service)
        yield
        await facilitator_client.aclose()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.PROJECT_VERSION,
        description=settings.PROJECT_DESCRIPTION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.transaction_service = transaction_service
    app.state.delivery_scheduler = scheduler

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        return exc.to_response()

    app.include_router(info.router, tags=["default"])
    app.include_router(buy.router, tags=["buy"])

    # Last added runs first: CORS, logging, host redirect, then x402
    app.add_middleware(X402Middleware, settings=settings, facilitator_client=facilitator_client)
    if settings.CANONICAL_HOST_REDIRECT:
        app.add_middleware(
            CanonicalHostMiddleware,
            canonical_host=settings.canonical_host,
            exempt_paths=[RESOURCE_PATH],
        )
    app.add_middleware(RequestLoggingMiddleware)
    add_cors(app)

    return app


def run() -> None:
    """Console entry point: load settings and serve on PORT."""
    try:
        settings = get_settings()
        app = create_app(settings)
    except ConfigurationError as e:
        logger.critical(str(e))
        raise SystemExit(1)

    logging.getLogger().setLevel(settings.LOG_LEVEL.upper())
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
