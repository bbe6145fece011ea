"""
Eligibility scanners.

A scanner walks the whole catalog, picks the products that satisfy a
time/sales rule, and consolidates them into a single auto-generated promotion:

- ExpiringHighSalesScanner: sales_count > 10, expiring within 5 days.
  Upserts the active EXPIRING_PRODUCT promotion (40%).
- ExpiringLowSalesScanner: sales_count < 10, expiring within 10 days.
  Supersedes every active EXPIRING_AND_LOW_SALES promotion with a fresh one
  (45%, one week).

Both run as a single store transaction. Products already in another active
promotion over the same window are skipped, never double-discounted. An
error on any product aborts the whole run and rolls back everything it did:
a promotion built from a partial catalog would be misleading.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Optional

from promotion_engine.evaluator import RuleEvaluator
from promotion_engine.event_bus import Event, EventBus, get_event_bus
from promotion_engine.events import (
    product_discounted,
    promotion_created,
    promotion_deactivated,
    scan_completed,
)
from promotion_engine.exceptions import ScanError, SchedulerStateError
from promotion_engine.overlap import OverlapDetector
from shared.clock import Clock, SystemClock
from shared.data_store import DataStore
from shared.models import ConditionKind, Product, Promotion, unlink
from shared.settings import PromotionEngineSettings, get_settings

logger = logging.getLogger("promotion_scanners")


@dataclass
class ScanResult:
    """What a scanner run did."""
    scan_name: str
    promotion_id: Optional[int] = None
    eligible_product_ids: list[int] = field(default_factory=list)
    admitted_product_ids: list[int] = field(default_factory=list)
    discounted_product_ids: list[int] = field(default_factory=list)
    skipped_product_ids: list[int] = field(default_factory=list)
    removed_product_ids: list[int] = field(default_factory=list)
    superseded_promotion_ids: list[int] = field(default_factory=list)

    @property
    def persisted(self) -> bool:
        """True if the run saved a promotion."""
        return self.promotion_id is not None


def midnight_after(today: date, days: int) -> datetime:
    """Start of the day `days` days after today."""
    return datetime.combine(today + timedelta(days=days), time.min)


class EligibilityScanner:
    """
    Base class for the two near-expiration scanners.

    Subclasses differ in which side of the sales threshold qualifies, how far
    ahead they look for expiring products, and how they treat the promotion
    left over from their previous run.
    """

    scan_name = "scan"
    condition: ConditionKind

    def __init__(
        self,
        data_store: DataStore,
        evaluator: Optional[RuleEvaluator] = None,
        overlap_detector: Optional[OverlapDetector] = None,
        clock: Optional[Clock] = None,
        settings: Optional[PromotionEngineSettings] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.data_store = data_store
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.event_bus = event_bus or get_event_bus()
        self.evaluator = evaluator or RuleEvaluator(data_store, self.clock, self.event_bus)
        self.overlap_detector = overlap_detector or OverlapDetector(data_store)

    # -------------------------------------------------------------------------
    # Eligibility
    # -------------------------------------------------------------------------

    @property
    def window_days(self) -> int:
        raise NotImplementedError

    def sales_qualify(self, sales_count: int) -> bool:
        raise NotImplementedError

    def is_eligible(self, product: Product, today: date) -> bool:
        days_remaining = product.days_until_expiration(today)
        if days_remaining is None:
            return False
        return self.sales_qualify(product.sales_count) and 0 <= days_remaining <= self.window_days

    def find_eligible(self, products: list[Product], today: date) -> list[Product]:
        """Eligible products, deduplicated by id, in catalog order."""
        eligible: dict[int, Product] = {}
        for product in products:
            try:
                if self.is_eligible(product, today):
                    eligible.setdefault(product.id, product)
            except Exception as exc:
                logger.error(f"Error processing product {product.name}: {exc!r}")
                raise ScanError(self.scan_name, product.id, product.name) from exc
        return list(eligible.values())

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self) -> ScanResult:
        """
        Run one scan.

        Raises:
            SchedulerStateError: a collaborator is missing; nothing was scanned
            ScanError: a product failed; nothing was committed
        """
        if self.data_store is None or self.overlap_detector is None or self.evaluator is None:
            raise SchedulerStateError(f"{self.scan_name}: store, evaluator and overlap detector are required")

        logger.info(f"Starting {self.scan_name}...")
        result = ScanResult(scan_name=self.scan_name)
        events: list[Event] = []

        now = self.clock.now()
        try:
            with self.data_store.transaction():
                self._scan(now, result, events)
        except Exception:
            logger.error(f"{self.scan_name} aborted, changes rolled back")
            raise

        events.append(scan_completed(
            scan_name=self.scan_name,
            promotion_id=result.promotion_id,
            admitted_product_ids=result.admitted_product_ids,
            skipped_product_ids=result.skipped_product_ids,
            source=self.scan_name,
            timestamp=now,
        ))
        self.event_bus.publish_all(events)

        logger.info(
            f"Finished {self.scan_name}: {len(result.eligible_product_ids)} eligible, "
            f"{len(result.admitted_product_ids)} admitted, {len(result.skipped_product_ids)} skipped"
        )
        return result

    def _scan(self, now: datetime, result: ScanResult, events: list[Event]) -> None:
        raise NotImplementedError

    # -------------------------------------------------------------------------
    # Helpers shared by both scanners
    # -------------------------------------------------------------------------

    def _partition_conflicts(
        self,
        candidates: list[Product],
        start: datetime,
        end: datetime,
        result: ScanResult,
    ) -> list[Product]:
        """Candidates not already in another overlapping active promotion."""
        admissible = []
        for product in candidates:
            if self.overlap_detector.conflicts(product, start, end, self.condition):
                result.skipped_product_ids.append(product.id)
            else:
                admissible.append(product)
        return admissible

    def _admit(
        self,
        promotion: Promotion,
        products: list[Product],
        result: ScanResult,
        events: list[Event],
    ) -> None:
        """Apply the promotion to each product; products already in it keep their price."""
        for product in products:
            previous_price = product.price
            try:
                changed = self.evaluator.apply_to_product(product, promotion)
            except Exception as exc:
                logger.error(f"Error applying {promotion.name} to {product.name}: {exc!r}")
                raise ScanError(self.scan_name, product.id, product.name) from exc

            result.admitted_product_ids.append(product.id)
            if changed:
                result.discounted_product_ids.append(product.id)
                events.append(product_discounted(
                    product_id=product.id,
                    product_name=product.name,
                    promotion_id=promotion.id,
                    previous_price=previous_price,
                    new_price=product.price,
                    source=self.scan_name,
                    timestamp=self.clock.now(),
                ))


class ExpiringHighSalesScanner(EligibilityScanner):
    """
    Best sellers about to expire.

    Keeps at most one active EXPIRING_PRODUCT promotion: the existing one is
    reused and its window refreshed, otherwise one is created. Each run
    recomputes its product set - members that stopped qualifying are removed,
    members that still qualify stay without being discounted again.
    """

    scan_name = "expiring-high-sales"
    condition = ConditionKind.EXPIRING_PRODUCT

    @property
    def window_days(self) -> int:
        return self.settings.expiring_window_days

    def sales_qualify(self, sales_count: int) -> bool:
        return sales_count > self.settings.sales_threshold

    def _scan(self, now: datetime, result: ScanResult, events: list[Event]) -> None:
        today = now.date()
        products = self.data_store.get_products()
        logger.info(f"Found {len(products)} products")

        eligible = self.find_eligible(products, today)
        result.eligible_product_ids = [p.id for p in eligible]
        if not eligible:
            logger.info("No product is selling well and close to expiration")
            return

        start = now
        end = midnight_after(today, self.window_days)
        promotion = self.data_store.find_active_promotion_by_condition(self.condition)
        is_new = promotion is None
        if is_new:
            promotion = Promotion(
                name=self.settings.expiring_promotion_name,
                condition=self.condition,
                discount_percentage=self.settings.expiring_discount_percentage,
                start_date=start,
                end_date=end,
                active=True,
            )
        else:
            promotion.discount_percentage = self.settings.expiring_discount_percentage
            promotion.start_date = start
            promotion.end_date = end
            promotion.active = True

        admissible = self._partition_conflicts(eligible, start, end, result)
        if not admissible:
            logger.info("Every eligible product is already in another promotion, nothing saved")
            return

        if is_new:
            self.data_store.save_promotion(promotion)
            events.append(promotion_created(
                promotion.id, promotion.name, promotion.condition.value,
                promotion.discount_percentage, source=self.scan_name, timestamp=now,
            ))

        catalog = {p.id: p for p in products}
        touched: dict[int, Product] = {}
        keep_ids = {p.id for p in admissible}
        for product_id in sorted(promotion.product_ids - keep_ids):
            product = catalog.get(product_id)
            if product is None:
                promotion.product_ids.discard(product_id)
                continue
            unlink(product, promotion)
            touched[product_id] = product
            result.removed_product_ids.append(product_id)

        self._admit(promotion, admissible, result, events)
        touched.update((p.id, p) for p in admissible)

        self.data_store.save_promotion(promotion)
        self.data_store.save_products(touched.values())
        result.promotion_id = promotion.id


class ExpiringLowSalesScanner(EligibilityScanner):
    """
    Slow sellers about to expire.

    Eligibility is recomputed from scratch every day, so each run deactivates
    every active EXPIRING_AND_LOW_SALES promotion (detaching its products)
    before creating a new one.
    """

    scan_name = "expiring-low-sales"
    condition = ConditionKind.EXPIRING_AND_LOW_SALES

    @property
    def window_days(self) -> int:
        return self.settings.low_sales_window_days

    def sales_qualify(self, sales_count: int) -> bool:
        return sales_count < self.settings.sales_threshold

    def _scan(self, now: datetime, result: ScanResult, events: list[Event]) -> None:
        today = now.date()
        self._supersede_active(result, events)

        products = self.data_store.get_products()
        logger.info(f"Found {len(products)} products")

        eligible = self.find_eligible(products, today)
        result.eligible_product_ids = [p.id for p in eligible]
        if not eligible:
            logger.info("No product is selling poorly and close to expiration")
            return

        start = now
        end = midnight_after(today, self.settings.low_sales_duration_days)
        promotion = Promotion(
            name=self.settings.low_sales_promotion_name,
            condition=self.condition,
            discount_percentage=self.settings.low_sales_discount_percentage,
            start_date=start,
            end_date=end,
            active=True,
        )

        admissible = self._partition_conflicts(eligible, start, end, result)
        if not admissible:
            logger.info("Every eligible product is already in another promotion, nothing saved")
            return

        self.data_store.save_promotion(promotion)
        events.append(promotion_created(
            promotion.id, promotion.name, promotion.condition.value,
            promotion.discount_percentage, source=self.scan_name, timestamp=now,
        ))

        self._admit(promotion, admissible, result, events)

        self.data_store.save_promotion(promotion)
        self.data_store.save_products(admissible)
        result.promotion_id = promotion.id

    def _supersede_active(self, result: ScanResult, events: list[Event]) -> None:
        """Deactivate the previous runs' promotions and detach their products."""
        for old in self.data_store.get_active_promotions_by_condition(self.condition):
            for product_id in sorted(old.product_ids):
                product = self.data_store.get_product(product_id)
                if product is None:
                    continue
                unlink(product, old)
                self.data_store.save_product(product)
            old.product_ids.clear()
            old.active = False
            self.data_store.save_promotion(old)

            result.superseded_promotion_ids.append(old.id)
            events.append(promotion_deactivated(
                old.id, old.name, "superseded", source=self.scan_name, timestamp=self.clock.now(),
            ))
            logger.info(f"Superseded promotion {old.name} (id={old.id})")
