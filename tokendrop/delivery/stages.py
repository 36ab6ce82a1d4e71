# tokendrop/delivery/stages.py
"""
The delivery fallback chain, one class per stage.

A stage either returns a successful StageResult or raises. Expected
fallthrough conditions (not enough inventory, no pool at any fee tier)
raise DeliveryStageFailure; anything else is an unexpected error. Both
make the orchestrator move on to the next stage.
"""
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from tokendrop.chain.service import TransactionService
from tokendrop.core.amounts import MAX_UINT256, TokenAmount
from tokendrop.core.errors import DeliveryStageFailure
from tokendrop.delivery.models import (
    DeliveryOutcome,
    DeliveryPlan,
    DeliveryRequest,
    StageResult,
)

logger = logging.getLogger(__name__)


class DeliveryStage(ABC):
    """One step of the fallback chain."""

    name: str = "stage"

    def __init__(self, chain: TransactionService, plan: DeliveryPlan):
        self.chain = chain
        self.plan = plan

    @abstractmethod
    async def run(self, request: DeliveryRequest) -> StageResult:
        """Attempt delivery; return a successful result or raise."""

    def fail(self, reason: str) -> DeliveryStageFailure:
        return DeliveryStageFailure(self.name, reason)


class DirectTransferStage(DeliveryStage):
    """Send tokens from pre-funded inventory."""

    name = "direct_transfer"

    async def run(self, request: DeliveryRequest) -> StageResult:
        amount = self.plan.delivery_amount
        balance = await self.chain.balance_of(self.plan.token_address, self.chain.address)
        if balance < amount.units:
            raise self.fail(
                f"inventory {TokenAmount(balance, amount.decimals)} below {amount} tokens"
            )

        tx_hash = await self.chain.transfer(
            self.plan.token_address, request.payer_address, amount.units
        )
        logger.info(f"Token transferred to {request.payer_address}: {tx_hash}")
        return StageResult.success(self.name, DeliveryOutcome.DIRECT_TRANSFERRED, [tx_hash])


class SwapStage(DeliveryStage):
    """
    Buy the liquidity asset with the payment and hand it to the payer.

    Fee tiers are tried cheapest first. A failed swap at one tier moves on
    to the next; once a swap has produced output, failures are no longer
    retried at another tier, so the payment is never swapped twice.
    """

    name = "swap"

    async def run(self, request: DeliveryRequest) -> StageResult:
        tx_hashes: List[str] = []
        amount_in = self.plan.payment_amount

        approval_tx = await self._ensure_allowance(amount_in.units)
        if approval_tx:
            tx_hashes.append(approval_tx)

        for tier in self.plan.fee_tiers:
            try:
                swap_tx = await self.chain.swap_exact_input_single(
                    router=self.plan.router_address,
                    token_in=self.plan.payment_asset_address,
                    token_out=self.plan.liquidity_asset_address,
                    fee=int(tier),
                    amount_in=amount_in.units,
                    recipient=self.chain.address,
                )
            except Exception as e:
                logger.warning(f"Swap failed at fee {tier.percent}%: {str(e)[:160]}")
                continue

            tx_hashes.append(swap_tx)
            received = await self.chain.balance_of(
                self.plan.liquidity_asset_address, self.chain.address
            )
            logger.info(f"Swap at fee {tier.percent}% left {received} units of liquidity asset")
            if received <= 0:
                logger.warning(f"Swap at fee {tier.percent}% produced no output")
                continue

            transfer_tx = await self.chain.transfer(
                self.plan.liquidity_asset_address, request.payer_address, received
            )
            tx_hashes.append(transfer_tx)
            logger.info(f"Swapped asset transferred to {request.payer_address}: {transfer_tx}")
            return StageResult.success(
                self.name, DeliveryOutcome.SWAPPED_AND_TRANSFERRED, tx_hashes
            )

        raise self.fail(f"no swap succeeded at fee tiers {[int(t) for t in self.plan.fee_tiers]}")

    async def _ensure_allowance(self, amount: int) -> Optional[str]:
        """Grant the router an unlimited allowance once; no-op while it still covers amount."""
        current = await self.chain.allowance(
            self.plan.payment_asset_address, self.chain.address, self.plan.router_address
        )
        if current >= amount:
            return None

        tx_hash = await self.chain.approve(
            self.plan.payment_asset_address, self.plan.router_address, MAX_UINT256
        )
        logger.info(f"Approved payment asset to router: {tx_hash}")
        return tx_hash


class MintStage(DeliveryStage):
    """Mint the deliverable directly to the payer. Needs mint rights on the token."""

    name = "mint"

    async def run(self, request: DeliveryRequest) -> StageResult:
        tx_hash = await self.chain.mint(
            self.plan.token_address, request.payer_address, self.plan.delivery_amount.units
        )
        logger.info(f"Minted to {request.payer_address}: {tx_hash}")
        return StageResult.success(self.name, DeliveryOutcome.MINTED, [tx_hash])


class RefundStage(DeliveryStage):
    """Send the payment back. Only part of the chain when AUTO_REFUND is on."""

    name = "refund"

    async def run(self, request: DeliveryRequest) -> StageResult:
        amount = self.plan.payment_amount
        tx_hash = await self.chain.transfer(
            self.plan.payment_asset_address, request.payer_address, amount.units
        )
        logger.info(f"Refunded {amount} USDC to {request.payer_address}: {tx_hash}")
        return StageResult.success(self.name, DeliveryOutcome.REFUNDED, [tx_hash])


def build_stages(chain: TransactionService, plan: DeliveryPlan) -> List[DeliveryStage]:
    """The fallback chain in order: transfer, swap, mint, then refund if enabled."""
    stages: List[DeliveryStage] = [
        DirectTransferStage(chain, plan),
        SwapStage(chain, plan),
        MintStage(chain, plan),
    ]
    if plan.auto_refund:
        stages.append(RefundStage(chain, plan))
    return stages
