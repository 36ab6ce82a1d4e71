# tokendrop/delivery/models.py
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import List, Optional, Tuple

from tokendrop.core.amounts import TokenAmount
from tokendrop.core.config import Settings

USDC_DECIMALS = 6
TOKEN_DECIMALS = 18

# 2 USDC paid per request, 10k tokens delivered per request
PAYMENT_AMOUNT = TokenAmount.from_decimal("2", USDC_DECIMALS)
DELIVERY_AMOUNT = TokenAmount.from_decimal("10000", TOKEN_DECIMALS)


class FeeTier(IntEnum):
    """Uniswap V3 pool fee levels, in hundredths of a basis point."""
    LOW = 500
    MEDIUM = 3000
    HIGH = 10000

    @property
    def percent(self) -> str:
        return f"{self.value / 10000:g}"


# Cheapest pool first
FEE_TIERS: Tuple[FeeTier, ...] = tuple(sorted(FeeTier))


class DeliveryOutcome(Enum):
    """Terminal state of one delivery. Logged, never returned to the caller."""
    DIRECT_TRANSFERRED = "direct_transferred"
    SWAPPED_AND_TRANSFERRED = "swapped_and_transferred"
    MINTED = "minted"
    REFUNDED = "refunded"
    FAILED = "failed"


@dataclass(frozen=True)
class DeliveryPlan:
    """What gets delivered and how; identical for every request."""
    token_address: str
    liquidity_asset_address: str
    payment_asset_address: str
    router_address: str
    delivery_amount: TokenAmount = DELIVERY_AMOUNT
    payment_amount: TokenAmount = PAYMENT_AMOUNT
    fee_tiers: Tuple[FeeTier, ...] = FEE_TIERS
    auto_refund: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "DeliveryPlan":
        return cls(
            token_address=settings.CONTRACT_ADDRESS,
            liquidity_asset_address=settings.WETH_ADDRESS,
            payment_asset_address=settings.USDC_ADDRESS,
            router_address=settings.V3_SWAP_ROUTER02_ADDRESS,
            auto_refund=settings.AUTO_REFUND,
        )


@dataclass(frozen=True)
class DeliveryRequest:
    """A paid request awaiting delivery. Owned by the delivery task alone."""
    payer_address: str
    request_id: str

    def __post_init__(self):
        if not self.payer_address:
            raise ValueError("payer_address is required")


@dataclass(frozen=True)
class StageResult:
    """Tagged result of one delivery stage."""
    stage: str
    succeeded: bool
    outcome: Optional[DeliveryOutcome] = None
    tx_hashes: Tuple[str, ...] = ()
    reason: Optional[str] = None

    @classmethod
    def success(cls, stage: str, outcome: DeliveryOutcome, tx_hashes: List[str]) -> "StageResult":
        return cls(stage=stage, succeeded=True, outcome=outcome, tx_hashes=tuple(tx_hashes))

    @classmethod
    def failure(cls, stage: str, reason: str) -> "StageResult":
        return cls(stage=stage, succeeded=False, reason=reason)


@dataclass
class DeliveryReport:
    outcome: DeliveryOutcome
    attempts: List[StageResult] = field(default_factory=list)

    @property
    def stages_attempted(self) -> List[str]:
        return [attempt.stage for attempt in self.attempts]

    @property
    def tx_hashes(self) -> List[str]:
        return [tx for attempt in self.attempts for tx in attempt.tx_hashes]
