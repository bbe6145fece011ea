"""
Dynamic promotions view.

Read-only projection for the storefront dashboard, grouped by how each
promotion came to be: the yearly Black Friday, the best-sellers-expiring
promotion, and the low-sales promotions (minimum-amount and the low-sales
scanner's). Nothing here writes to the store.
"""

from datetime import date, datetime, time, timedelta
from typing import Optional

from promotion_engine.evaluator import discounted_price
from shared.clock import Clock, SystemClock
from shared.data_store import DataStore
from shared.models import (
    ConditionKind,
    DynamicProduct,
    DynamicPromotion,
    DynamicPromotionsView,
    Promotion,
    PromotionRef,
)
from shared.settings import PromotionEngineSettings, get_settings


class DynamicPromotionsViewBuilder:
    """Builds DynamicPromotionsView from the current store state."""

    def __init__(
        self,
        data_store: DataStore,
        clock: Optional[Clock] = None,
        settings: Optional[PromotionEngineSettings] = None,
    ):
        self.data_store = data_store
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()

    def build(self) -> DynamicPromotionsView:
        expiring = self.data_store.find_active_promotion_by_condition(ConditionKind.EXPIRING_PRODUCT)
        low_sales = self.data_store.get_active_promotions_by_condition(
            ConditionKind.MIN_AMOUNT,
            ConditionKind.EXPIRING_AND_LOW_SALES,
        )
        return DynamicPromotionsView(
            black_friday=[self._black_friday_entry()],
            expiration=[self.describe(expiring)] if expiring else [],
            low_sales=[self.describe(p) for p in low_sales],
        )

    def scheduled_black_friday(self) -> date:
        """This year's Black Friday activation date."""
        return date(
            self.clock.today().year,
            self.settings.black_friday_month,
            self.settings.black_friday_day,
        )

    def _black_friday_entry(self) -> DynamicPromotion:
        """The Black Friday promotion, or a placeholder when none was created yet."""
        scheduled = self.scheduled_black_friday()
        promotion = self.data_store.find_promotion_by_name(self.settings.black_friday_name)

        if promotion is None:
            start = datetime.combine(scheduled, time.min)
            return DynamicPromotion(
                name=self.settings.black_friday_name,
                discount_percentage=self.settings.black_friday_placeholder_percentage,
                start_date=start,
                end_date=start + timedelta(days=self.settings.black_friday_duration_days),
                condition=ConditionKind.BLACK_FRIDAY,
                active=False,
                scheduled_activation_date=scheduled,
            )

        entry = self.describe(promotion)
        if not promotion.active:
            entry.scheduled_activation_date = scheduled
        return entry

    def describe(self, promotion: Promotion) -> DynamicPromotion:
        """A promotion with its products, each annotated with its discounted price."""
        products = []
        for product_id in sorted(promotion.product_ids):
            product = self.data_store.get_product(product_id)
            if product is None:
                continue
            memberships = self.data_store.get_promotions_by_ids(sorted(product.promotion_ids))
            products.append(DynamicProduct(
                id=product.id,
                name=product.name,
                price=product.price,
                discounted_price=discounted_price(product.price, promotion.discount_percentage),
                currency=product.currency or self.settings.default_currency,
                expiration_date=product.expiration_date,
                promotions=[PromotionRef(id=p.id, name=p.name) for p in memberships],
            ))

        return DynamicPromotion(
            id=promotion.id,
            name=promotion.name,
            discount_percentage=promotion.discount_percentage,
            start_date=promotion.start_date,
            end_date=promotion.end_date,
            condition=promotion.condition,
            active=promotion.active,
            products=products,
        )
