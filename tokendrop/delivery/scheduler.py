# tokendrop/delivery/scheduler.py
"""
Hands deliveries to the event loop after the acknowledgement is sent.

The HTTP handler's contract ends when it returns its response. The work item
handed over here is a DeliveryRequest only; the delivery task has no access
to the request or the response and so cannot answer the caller a second
time. Starlette runs the background task once the response has been sent.
"""
import logging
from typing import Optional

from starlette.background import BackgroundTask

from tokendrop.delivery.models import DeliveryReport, DeliveryRequest
from tokendrop.delivery.orchestrator import DeliveryOrchestrator
from tokendrop.x402.audit import log_delivery_completed, log_error

logger = logging.getLogger(__name__)


class DeliveryScheduler:
    """Error boundary around the orchestrator for post-response delivery."""

    def __init__(self, orchestrator: DeliveryOrchestrator):
        self._orchestrator = orchestrator
        self.in_flight = 0

    def schedule(self, request: DeliveryRequest) -> BackgroundTask:
        """Wrap a delivery as a task to attach to the acknowledgement response."""
        return BackgroundTask(self.run, request)

    async def run(self, request: DeliveryRequest) -> Optional[DeliveryReport]:
        """
        Run one delivery to completion.

        Returns:
            The report, or None if the orchestrator itself crashed
        """
        self.in_flight += 1
        try:
            report = await self._orchestrator.deliver(request)
        except Exception as e:
            logger.error(f"[{request.request_id}] Delivery error: {e}", exc_info=True)
            log_error(
                error_type="delivery_error",
                error_message=str(e),
                wallet_address=request.payer_address,
                request_id=request.request_id
            )
            return None
        finally:
            self.in_flight -= 1

        log_delivery_completed(
            payer=request.payer_address,
            outcome=report.outcome.value,
            transaction_hashes=report.tx_hashes,
            stages_attempted=report.stages_attempted,
            request_id=request.request_id
        )
        return report
