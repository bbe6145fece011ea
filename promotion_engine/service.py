"""
Promotion service.

The single entry point the API, the CLI and the scheduler talk to. It owns
one instance of each engine component, wired to the same store, clock,
settings and event bus, and adds the administrative CRUD operations.

Administrative writes keep product membership consistent on both sides but
never reprice products; only the scanners and the Black Friday job do that.
"""

import logging
from datetime import timedelta
from typing import Iterable, Optional, Union

from promotion_engine.analytics import AnalyticsAggregator
from promotion_engine.evaluator import RuleEvaluator
from promotion_engine.event_bus import EventBus, get_event_bus
from promotion_engine.events import promotion_created, promotion_deactivated
from promotion_engine.exceptions import (
    PromotionNotFoundError,
    PromotionValidationError,
    SchedulerStateError,
)
from promotion_engine.lifecycle import LifecycleManager
from promotion_engine.overlap import OverlapDetector
from promotion_engine.scanners import ExpiringHighSalesScanner, ExpiringLowSalesScanner, ScanResult
from promotion_engine.views import DynamicPromotionsViewBuilder
from shared.clock import Clock, SystemClock
from shared.data_store import DataStore, get_data_store
from shared.models import (
    AUTO_GENERATED_CONDITIONS,
    DynamicPromotionsView,
    Product,
    Promotion,
    PromotionAnalytics,
    link,
    unlink,
)
from shared.settings import PromotionEngineSettings, get_settings

logger = logging.getLogger("promotion_service")


class PromotionService:
    """
    Facade over the promotion engine.

    Example:
        service = PromotionService(DataStore(data_dir))
        promo = service.create_promotion(Promotion(
            name="Spend 100", discount_percentage=20, condition="MIN_AMOUNT",
            start_date=datetime(2025, 1, 1), end_date=datetime(2025, 1, 31),
        ))
        service.apply_promotion(150.0, promo.id)    # 120.0, one ledger entry
        service.run_daily_cycle()
        service.get_promotion_analytics()
    """

    # Job name -> method, shared by the CLI, the API and the scheduler
    JOBS = {
        "daily-cycle": "run_daily_cycle",
        "expiring-high-sales": "run_expiring_high_sales_scan",
        "expiring-low-sales": "run_expiring_low_sales_scan",
        "verify-active": "verify_active_promotions",
        "black-friday-start": "apply_black_friday",
        "black-friday-end": "end_black_friday",
    }

    def __init__(
        self,
        data_store: Optional[DataStore] = None,
        clock: Optional[Clock] = None,
        settings: Optional[PromotionEngineSettings] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.data_store = data_store or get_data_store()
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock(self.settings.scheduler_timezone)
        self.event_bus = event_bus or get_event_bus()

        self.evaluator = RuleEvaluator(self.data_store, self.clock, self.event_bus)
        self.overlap_detector = OverlapDetector(self.data_store)
        scanner_args = dict(
            data_store=self.data_store,
            evaluator=self.evaluator,
            overlap_detector=self.overlap_detector,
            clock=self.clock,
            settings=self.settings,
            event_bus=self.event_bus,
        )
        self.high_sales_scanner = ExpiringHighSalesScanner(**scanner_args)
        self.low_sales_scanner = ExpiringLowSalesScanner(**scanner_args)
        self.lifecycle = LifecycleManager(
            self.data_store, self.overlap_detector, self.clock, self.settings, self.event_bus,
        )
        self.analytics = AnalyticsAggregator(self.data_store)
        self.views = DynamicPromotionsViewBuilder(self.data_store, self.clock, self.settings)

    # =========================================================================
    # Rule evaluation
    # =========================================================================

    def apply_promotion(
        self,
        total: float,
        promotion: Union[Promotion, int, None],
    ) -> float:
        """
        Discount a total with a promotion (given by object or id).

        Raises:
            PromotionNotFoundError: promotion given by an unknown id
        """
        if isinstance(promotion, int):
            promotion = self.get_promotion_by_id(promotion)
        return self.evaluator.apply_promotion(total, promotion)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_all_promotions(self) -> list[Promotion]:
        return self.data_store.get_promotions()

    def get_active_promotions(self) -> list[Promotion]:
        return self.data_store.get_active_promotions()

    def find_promotion(self, promotion_id: int) -> Optional[Promotion]:
        return self.data_store.get_promotion(promotion_id)

    def get_promotion_by_id(self, promotion_id: int) -> Promotion:
        """
        Raises:
            PromotionNotFoundError: no promotion has this id
        """
        promotion = self.data_store.get_promotion(promotion_id)
        if promotion is None:
            raise PromotionNotFoundError(promotion_id)
        return promotion

    def get_products_near_expiration(self, window_days: Optional[int] = None) -> list[Product]:
        """Products expiring between today and today + window_days, both included."""
        if window_days is None:
            window_days = self.settings.expiring_window_days
        today = self.clock.today()
        return self.data_store.get_products_expiring_between(today, today + timedelta(days=window_days))

    def get_dynamic_promotions_view(self) -> DynamicPromotionsView:
        return self.views.build()

    def get_promotion_analytics(self) -> PromotionAnalytics:
        return self.analytics.compute_analytics()

    # =========================================================================
    # Administration
    # =========================================================================

    def create_promotion(self, promotion: Promotion) -> Promotion:
        """
        Create a promotion and link the products it lists.

        Raises:
            PromotionValidationError: id already set, missing or inverted
                dates, percentage out of range, unknown product ids, or a
                second active auto-generated promotion. Nothing is written.
        """
        if promotion.id is not None:
            raise PromotionValidationError("New promotion must not have an ID")
        self._validate_fields(promotion)

        promotion = promotion.model_copy(deep=True)
        with self.data_store.transaction():
            self._ensure_single_auto_generated(promotion)
            products = self._resolve_products(promotion.product_ids)
            promotion.product_ids = set()
            self.data_store.save_promotion(promotion)
            for product in products:
                link(product, promotion)
            self.data_store.save_products(products)
            self.data_store.save_promotion(promotion)

        logger.info(f"Created promotion {promotion.name} (id={promotion.id}) with {len(products)} products")
        self.event_bus.publish(promotion_created(
            promotion.id,
            promotion.name,
            promotion.condition.value if promotion.condition else None,
            promotion.discount_percentage,
            timestamp=self.clock.now(),
        ))
        return promotion

    def update_promotion(self, promotion_id: int, changes: Promotion) -> Promotion:
        """
        Replace a promotion's fields and product list.

        Products dropped from the list are unlinked, new ones linked. Prices
        are not touched.

        Raises:
            PromotionNotFoundError: unknown id
            PromotionValidationError: missing or inverted dates, percentage out
                of range, unknown product ids, or a second active
                auto-generated promotion
        """
        with self.data_store.transaction():
            existing = self.get_promotion_by_id(promotion_id)
            self._validate_fields(changes)
            wanted = self._resolve_products(changes.product_ids)
            wanted_ids = {p.id for p in wanted}

            existing.name = changes.name
            existing.discount_percentage = changes.discount_percentage
            existing.start_date = changes.start_date
            existing.end_date = changes.end_date
            existing.condition = changes.condition
            existing.active = changes.active
            self._ensure_single_auto_generated(existing)

            touched = []
            for product_id in existing.product_ids - wanted_ids:
                product = self.data_store.get_product(product_id)
                if product is not None:
                    unlink(product, existing)
                    touched.append(product)
                existing.product_ids.discard(product_id)
            for product in wanted:
                link(product, existing)
                touched.append(product)

            self.data_store.save_products(touched)
            self.data_store.save_promotion(existing)

        logger.info(f"Updated promotion {existing.name} (id={promotion_id})")
        return existing

    def toggle_active_status(self, promotion_id: int, active: bool) -> Promotion:
        """
        Raises:
            PromotionNotFoundError: unknown id
            PromotionValidationError: activating would leave two active
                promotions for one auto-generated condition
        """
        with self.data_store.transaction():
            promotion = self.get_promotion_by_id(promotion_id)
            was_active = promotion.active
            promotion.active = active
            self._ensure_single_auto_generated(promotion)
            self.data_store.save_promotion(promotion)

        if was_active and not active:
            self.event_bus.publish(promotion_deactivated(
                promotion.id, promotion.name, "manual", timestamp=self.clock.now(),
            ))
        return promotion

    def delete_promotion(self, promotion_id: int) -> None:
        """
        Delete a promotion after detaching its products.

        Raises:
            PromotionNotFoundError: unknown id
        """
        with self.data_store.transaction():
            promotion = self.get_promotion_by_id(promotion_id)
            self._detach_and_delete(promotion)
        logger.info(f"Deleted promotion {promotion.name} (id={promotion_id})")

    def bulk_activate(self, promotion_ids: Iterable[int]) -> int:
        """
        Activate the given promotions; unknown ids are ignored. Returns how many were found.

        Raises:
            PromotionValidationError: two active promotions would share an
                auto-generated condition. None of the promotions is activated.
        """
        return self._bulk_set_active(promotion_ids, True)

    def bulk_deactivate(self, promotion_ids: Iterable[int]) -> int:
        """Deactivate the given promotions; unknown ids are ignored. Returns how many were found."""
        return self._bulk_set_active(promotion_ids, False)

    def bulk_delete(self, promotion_ids: Iterable[int]) -> int:
        """Delete the given promotions; unknown ids are ignored. Returns how many were deleted."""
        with self.data_store.transaction():
            promotions = self.data_store.get_promotions_by_ids(promotion_ids)
            for promotion in promotions:
                self._detach_and_delete(promotion)
        return len(promotions)

    # =========================================================================
    # Scheduled jobs
    # =========================================================================

    def run_expiring_high_sales_scan(self) -> ScanResult:
        return self.high_sales_scanner.run()

    def run_expiring_low_sales_scan(self) -> ScanResult:
        return self.low_sales_scanner.run()

    def verify_active_promotions(self) -> list[int]:
        return self.lifecycle.verify_active_promotions()

    def apply_black_friday(self) -> list[int]:
        return self.lifecycle.apply_black_friday()

    def end_black_friday(self) -> bool:
        return self.lifecycle.end_black_friday()

    def run_job(self, name: str):
        """
        Run one of the scheduled jobs by name.

        Raises:
            SchedulerStateError: no job has this name
        """
        method = self.JOBS.get(name)
        if method is None:
            raise SchedulerStateError(f"Unknown job: {name}. Valid jobs: {sorted(self.JOBS)}")
        logger.info(f"Running job {name}")
        return getattr(self, method)()

    def run_daily_cycle(self) -> dict:
        """
        The midnight job: both scanners, then the sweep.

        The sweep runs last so it sees the promotions the scanners just
        refreshed. An error in any step stops the cycle.
        """
        high_sales = self.run_expiring_high_sales_scan()
        low_sales = self.run_expiring_low_sales_scan()
        deactivated = self.verify_active_promotions()
        return {
            "expiring_high_sales": high_sales,
            "expiring_low_sales": low_sales,
            "deactivated_promotion_ids": deactivated,
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    def _validate_fields(self, promotion: Promotion) -> None:
        if not 0 <= promotion.discount_percentage <= 100:
            raise PromotionValidationError("Discount percentage must be between 0 and 100")
        if promotion.start_date is None or promotion.end_date is None:
            raise PromotionValidationError("Start date and end date must not be null")
        if promotion.start_date > promotion.end_date:
            raise PromotionValidationError("End date must be after start date")

    def _resolve_products(self, product_ids: Iterable[int]) -> list[Product]:
        products = []
        missing = []
        for product_id in sorted(product_ids):
            product = self.data_store.get_product(product_id)
            if product is None:
                missing.append(product_id)
            else:
                products.append(product)
        if missing:
            raise PromotionValidationError(f"Unknown product ids: {missing}")
        return products

    def _ensure_single_auto_generated(self, promotion: Promotion) -> None:
        """Only one promotion per scanner-owned condition may be active at a time."""
        if not promotion.active or promotion.condition not in AUTO_GENERATED_CONDITIONS:
            return
        for other in self.data_store.get_active_promotions_by_condition(promotion.condition):
            if other.id != promotion.id:
                raise PromotionValidationError(
                    f"Promotion {other.name} (id={other.id}) is already the active "
                    f"{promotion.condition.value} promotion"
                )

    def _detach_and_delete(self, promotion: Promotion) -> None:
        for product_id in sorted(promotion.product_ids):
            product = self.data_store.get_product(product_id)
            if product is not None:
                unlink(product, promotion)
                self.data_store.save_product(product)
        self.data_store.delete_promotion(promotion.id)

    def _bulk_set_active(self, promotion_ids: Iterable[int], active: bool) -> int:
        with self.data_store.transaction():
            promotions = self.data_store.get_promotions_by_ids(promotion_ids)
            for promotion in promotions:
                promotion.active = active
                self._ensure_single_auto_generated(promotion)
                self.data_store.save_promotion(promotion)
        logger.info(f"{'Activated' if active else 'Deactivated'} {len(promotions)} promotions")
        return len(promotions)
