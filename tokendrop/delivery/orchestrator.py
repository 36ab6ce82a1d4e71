# tokendrop/delivery/orchestrator.py
"""
Delivery orchestrator.

Drives one DeliveryRequest through the fallback chain:

    Start -> DirectTransfer -> Swap(tier...) -> Mint -> Refund -> Done(outcome)

Stages run strictly in order and the first success ends the chain, so at
most one of transfer/swap/mint/refund ever succeeds per request. A stage
that fails or raises is logged and the next stage runs. If every stage
fails the outcome is FAILED and a single manual-intervention alert is
emitted.
"""
import logging
from typing import List, Optional, Sequence

from tokendrop.chain.service import TransactionService
from tokendrop.core.errors import DeliveryStageFailure
from tokendrop.delivery.models import (
    DeliveryOutcome,
    DeliveryPlan,
    DeliveryReport,
    DeliveryRequest,
    StageResult,
)
from tokendrop.delivery.stages import DeliveryStage, build_stages
from tokendrop.x402.audit import log_delivery_stage_failed, log_manual_intervention_required

logger = logging.getLogger(__name__)


class DeliveryOrchestrator:
    """
    Runs the fallback chain for one request at a time.

    Args:
        chain: Transaction service of the server account
        plan: Delivery plan built from settings
        stages: Override the stage list (defaults to build_stages)
    """

    def __init__(
        self,
        chain: TransactionService,
        plan: DeliveryPlan,
        stages: Optional[Sequence[DeliveryStage]] = None
    ):
        self.chain = chain
        self.plan = plan
        self.stages: List[DeliveryStage] = (
            list(stages) if stages is not None else build_stages(chain, plan)
        )

    async def deliver(self, request: DeliveryRequest) -> DeliveryReport:
        """
        Deliver to request.payer_address.

        Never raises for stage errors: network failures, reverts and
        confirmation timeouts are all recorded as failed attempts.

        Returns:
            DeliveryReport with exactly one terminal outcome
        """
        payer = request.payer_address
        attempts: List[StageResult] = []

        for stage in self.stages:
            logger.info(f"[{request.request_id}] Attempting {stage.name} for {payer}")
            try:
                result = await stage.run(request)
            except DeliveryStageFailure as e:
                logger.warning(f"[{request.request_id}] {stage.name} skipped: {e.reason}")
                result = StageResult.failure(stage.name, e.reason)
            except Exception as e:
                logger.error(f"[{request.request_id}] {stage.name} failed: {e}", exc_info=True)
                result = StageResult.failure(stage.name, f"{type(e).__name__}: {e}")

            attempts.append(result)
            if result.succeeded:
                logger.info(
                    f"[{request.request_id}] Delivery done for {payer}: {result.outcome.value}"
                )
                return DeliveryReport(outcome=result.outcome, attempts=attempts)

            log_delivery_stage_failed(
                payer=payer,
                stage=stage.name,
                reason=result.reason or "unknown",
                request_id=request.request_id
            )

        if self.plan.auto_refund:
            reason = "all delivery stages failed, including refund"
        else:
            reason = "all delivery stages failed and AUTO_REFUND is disabled"
        logger.critical(
            f"[{request.request_id}] Manual intervention required for payer {payer}: {reason}"
        )
        log_manual_intervention_required(payer=payer, reason=reason, request_id=request.request_id)
        return DeliveryReport(outcome=DeliveryOutcome.FAILED, attempts=attempts)
