"""
Rule evaluator.

Two ways of applying a promotion:

- apply_promotion() discounts a cart total. Each condition has a gate that
  decides whether the discount applies to the given total. Every evaluation
  of an active promotion is written to the usage ledger, including the ones
  where the gate rejected the total - the ledger is an audit trail of
  evaluations, not of discounts.
- apply_to_product() lowers a product's catalog price and links the product
  to the promotion. It is idempotent per (product, promotion) pair.
"""

import logging
from typing import Callable, Optional

from promotion_engine.event_bus import EventBus, get_event_bus
from promotion_engine.events import promotion_evaluated
from promotion_engine.exceptions import PromotionValidationError
from shared.clock import Clock, SystemClock
from shared.data_store import DataStore
from shared.models import ConditionKind, Product, Promotion, UsageRecord, link

logger = logging.getLogger("rule_evaluator")

GROUP_PURCHASE_MIN_UNITS = 3
MIN_AMOUNT_THRESHOLD = 100

ConditionGate = Callable[[float], bool]

# One gate per condition. BLACK_FRIDAY is applied by its calendar trigger,
# never through cart evaluation, so its gate always rejects.
CONDITION_GATES: dict[ConditionKind, ConditionGate] = {
    ConditionKind.GROUP_PURCHASE: lambda total: total >= GROUP_PURCHASE_MIN_UNITS,
    ConditionKind.MIN_AMOUNT: lambda total: total > MIN_AMOUNT_THRESHOLD,
    ConditionKind.EXPIRING_PRODUCT: lambda total: True,
    ConditionKind.EXPIRING_AND_LOW_SALES: lambda total: True,
    ConditionKind.BLACK_FRIDAY: lambda total: False,
}


def discounted_price(amount: float, discount_percentage: float) -> float:
    """amount reduced by discount_percentage percent."""
    return amount * (1 - discount_percentage / 100)


class RuleEvaluator:
    """
    Applies promotions to totals and to products.

    Example:
        evaluator = RuleEvaluator(data_store)
        evaluator.apply_promotion(150.0, min_amount_promo)   # 20% -> 120.0
        evaluator.apply_promotion(80.0, min_amount_promo)    # gate fails -> 80.0
        len(data_store.get_usage_records())                  # 2
    """

    def __init__(
        self,
        data_store: DataStore,
        clock: Optional[Clock] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.data_store = data_store
        self.clock = clock or SystemClock()
        self.event_bus = event_bus or get_event_bus()

    def apply_promotion(self, total: float, promotion: Optional[Promotion]) -> float:
        """
        Discount a total with a promotion and record the evaluation.

        Args:
            total: Amount to discount (a unit count for GROUP_PURCHASE)
            promotion: The promotion to apply; may be None

        Returns:
            The discounted total, or the total unchanged when the promotion
            is absent, inactive, has no condition, or its gate rejects.
        """
        if promotion is None or promotion.condition is None or not promotion.active:
            return total
        if promotion.id is None:
            raise PromotionValidationError(
                f"Promotion '{promotion.name}' must be saved before it is applied"
            )

        gate = CONDITION_GATES[promotion.condition]
        result = total
        if gate(total):
            result = discounted_price(total, promotion.discount_percentage)

        now = self.clock.now()
        self.data_store.append_usage(UsageRecord(
            promotion_id=promotion.id,
            initial_amount=total,
            discounted_amount=result,
            applied_at=now,
        ))
        logger.info(
            f"Evaluated {promotion.name} ({promotion.condition.value}): "
            f"{total:.2f} -> {result:.2f}"
        )
        self.event_bus.publish(promotion_evaluated(promotion.id, total, result, timestamp=now))
        return result

    def apply_to_product(self, product: Product, promotion: Promotion) -> bool:
        """
        Discount a product's price and add it to the promotion.

        Mutates both objects in place; the caller persists them.

        Returns:
            True if the price changed, False if the product already had
            this promotion.

        Raises:
            PromotionValidationError: the promotion has not been saved; the
                product is left untouched
        """
        if promotion.id is None:
            raise PromotionValidationError(
                f"Promotion '{promotion.name}' must be saved before products are added"
            )
        if promotion.id in product.promotion_ids:
            logger.info(f"{product.name} already has promotion {promotion.name}")
            return False

        previous_price = product.price
        product.price = discounted_price(previous_price, promotion.discount_percentage)
        link(product, promotion)

        logger.info(
            f"Promotion {promotion.name} applied to {product.name}: "
            f"{previous_price:.2f} -> {product.price:.2f}"
        )
        return True
