"""
Promotion lifecycle jobs.

- verify_active_promotions(): the daily sweep. Switches off promotions whose
  end date has passed and active promotions left without products.
- apply_black_friday() / end_black_friday(): the two yearly calendar jobs for
  the administrator-created "Black Friday" promotion.

Black Friday reprices products directly, without the rule evaluator: no
condition gate and no ledger entry.
"""

import logging
from typing import Optional

from promotion_engine.evaluator import discounted_price
from promotion_engine.event_bus import Event, EventBus, get_event_bus
from promotion_engine.events import product_discounted, promotion_deactivated
from promotion_engine.overlap import OverlapDetector
from shared.clock import Clock, SystemClock
from shared.data_store import DataStore
from shared.models import ConditionKind, link
from shared.settings import PromotionEngineSettings, get_settings

logger = logging.getLogger("promotion_lifecycle")


class LifecycleManager:
    """Deactivation sweep and the Black Friday calendar jobs."""

    def __init__(
        self,
        data_store: DataStore,
        overlap_detector: Optional[OverlapDetector] = None,
        clock: Optional[Clock] = None,
        settings: Optional[PromotionEngineSettings] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.data_store = data_store
        self.overlap_detector = overlap_detector or OverlapDetector(data_store)
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.event_bus = event_bus or get_event_bus()

    def verify_active_promotions(self) -> list[int]:
        """
        Deactivate expired promotions and active promotions without products.

        The two checks are independent. Nothing is deleted.

        Returns:
            Ids of the promotions this sweep deactivated
        """
        now = self.clock.now()
        deactivated: list[int] = []
        events: list[Event] = []

        with self.data_store.transaction():
            for promotion in self.data_store.get_promotions():
                if not promotion.active:
                    continue

                reason = None
                if promotion.is_expired(now):
                    promotion.active = False
                    reason = "expired"
                if promotion.active and not promotion.has_products():
                    promotion.active = False
                    reason = "no_products"

                if reason is None:
                    continue
                self.data_store.save_promotion(promotion)
                deactivated.append(promotion.id)
                events.append(promotion_deactivated(promotion.id, promotion.name, reason, timestamp=now))
                logger.info(f"Promotion {promotion.name} (id={promotion.id}) deactivated: {reason}")

        self.event_bus.publish_all(events)
        return deactivated

    def apply_black_friday(self) -> list[int]:
        """
        Discount every product with the active Black Friday promotion.

        Products already in it, or in another overlapping active promotion,
        are left alone. Each repriced product is saved on its own.

        Returns:
            Ids of the products that were discounted
        """
        name = self.settings.black_friday_name
        discounted: list[int] = []
        events: list[Event] = []

        with self.data_store.transaction():
            promotion = self.data_store.find_promotion_by_name(name)
            if promotion is None:
                logger.warning(f"No promotion named '{name}', nothing to apply")
                return discounted
            if not promotion.active:
                logger.info(f"Promotion '{name}' is inactive, nothing to apply")
                return discounted

            for product in self.data_store.get_products():
                if promotion.id in product.promotion_ids:
                    continue
                if self.overlap_detector.conflicts(
                    product, promotion.start_date, promotion.end_date, ConditionKind.BLACK_FRIDAY
                ):
                    continue

                previous_price = product.price
                product.price = discounted_price(previous_price, promotion.discount_percentage)
                link(product, promotion)
                self.data_store.save_product(product)

                discounted.append(product.id)
                events.append(product_discounted(
                    product.id, product.name, promotion.id, previous_price, product.price,
                    source="black-friday", timestamp=self.clock.now(),
                ))

            self.data_store.save_promotion(promotion)

        logger.info(f"Black Friday applied to {len(discounted)} products")
        self.event_bus.publish_all(events)
        return discounted

    def end_black_friday(self) -> bool:
        """
        Deactivate the Black Friday promotion.

        Returns:
            True if a promotion with that name exists
        """
        name = self.settings.black_friday_name
        with self.data_store.transaction():
            promotion = self.data_store.find_promotion_by_name(name)
            if promotion is None:
                logger.warning(f"No promotion named '{name}' to deactivate")
                return False
            was_active = promotion.active
            promotion.active = False
            self.data_store.save_promotion(promotion)

        if was_active:
            self.event_bus.publish(
                promotion_deactivated(
                    promotion.id, promotion.name, "black_friday_ended", timestamp=self.clock.now(),
                )
            )
        logger.info(f"Promotion '{name}' deactivated")
        return True
