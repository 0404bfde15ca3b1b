"""
Pricing calculator: pure functions over cart lines.

Nothing here holds state; the same lines always produce the same snapshot.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Iterable, Optional

from storefront.config import Config
from storefront.models import CartLine, LoyaltyProgress, PricingSnapshot


@dataclass(frozen=True)
class PricingConfig:
    free_delivery_threshold: Decimal = Decimal("500")
    delivery_fee: Decimal = Decimal("40")
    loyalty_accrual_rate: Decimal = Decimal("0.10")

    @classmethod
    def from_config(cls) -> "PricingConfig":
        return cls(
            free_delivery_threshold=Config.FREE_DELIVERY_THRESHOLD,
            delivery_fee=Config.DELIVERY_FEE,
            loyalty_accrual_rate=Config.LOYALTY_ACCRUAL_RATE,
        )


DEFAULT_PRICING = PricingConfig()


def compute_subtotal(lines: Iterable[CartLine]) -> Decimal:
    return sum((line.variant.price * line.quantity for line in lines), Decimal("0"))


def compute_delivery_fee(subtotal: Decimal, config: PricingConfig = DEFAULT_PRICING) -> Decimal:
    """Flat fee below the free-delivery threshold, free at or above it."""
    if subtotal >= config.free_delivery_threshold:
        return Decimal("0")
    return config.delivery_fee


def compute_loyalty_credits(subtotal: Decimal, config: PricingConfig = DEFAULT_PRICING) -> int:
    # Always rounded down
    return int((subtotal * config.loyalty_accrual_rate).to_integral_value(rounding=ROUND_FLOOR))


def compute_total(subtotal: Decimal, config: PricingConfig = DEFAULT_PRICING) -> Decimal:
    return subtotal + compute_delivery_fee(subtotal, config)


def pricing_snapshot(lines: Iterable[CartLine], config: PricingConfig = DEFAULT_PRICING) -> PricingSnapshot:
    """Derive item count, subtotal, delivery fee, loyalty credits and total."""
    lines = list(lines)
    subtotal = compute_subtotal(lines)
    return PricingSnapshot(
        item_count=sum(line.quantity for line in lines),
        subtotal=subtotal,
        delivery_fee=compute_delivery_fee(subtotal, config),
        loyalty_credits=compute_loyalty_credits(subtotal, config),
        total=compute_total(subtotal, config),
    )


def loyalty_progress(
    earned_credits: Decimal,
    target_amount: Optional[Decimal] = None,
    reward: Optional[Decimal] = None,
) -> LoyaltyProgress:
    """
    Progress of earned credits toward the unlockable reward.

    Args:
        earned_credits: Credits accumulated so far
        target_amount: Credits needed to unlock the reward
        reward: Discount unlocked at the target

    Returns:
        LoyaltyProgress with percent capped at 100 and remaining floored at 0
    """
    target_amount = Config.LOYALTY_UNLOCK_TARGET if target_amount is None else target_amount
    reward = Config.LOYALTY_UNLOCK_REWARD if reward is None else reward
    earned_credits = Decimal(earned_credits)

    if target_amount <= 0:
        percent = 100.0
    else:
        percent = min(float(earned_credits / target_amount * 100), 100.0)
    remaining = max(target_amount - earned_credits, Decimal("0"))

    return LoyaltyProgress(
        earned_credits=earned_credits,
        target_amount=target_amount,
        reward=reward,
        percent=round(percent, 2),
        remaining=remaining,
        unlocked=remaining == 0,
    )
