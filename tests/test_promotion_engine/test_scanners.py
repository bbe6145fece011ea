"""
Tests for the near-expiration eligibility scanners.

The clock is frozen at 2025-03-10 09:30; expires_in on add_product counts
days from that date.
"""

import pytest
from datetime import date, datetime

from promotion_engine.events import EventTypes
from promotion_engine.exceptions import ScanError, SchedulerStateError
from promotion_engine.scanners import ExpiringHighSalesScanner, ExpiringLowSalesScanner, midnight_after
from promotion_engine.service import PromotionService
from shared.models import ConditionKind


@pytest.fixture
def high_sales(service) -> ExpiringHighSalesScanner:
    return service.high_sales_scanner


@pytest.fixture
def low_sales(service) -> ExpiringLowSalesScanner:
    return service.low_sales_scanner


def test_midnight_after():
    assert midnight_after(date(2025, 3, 10), 5) == datetime(2025, 3, 15)
    assert midnight_after(date(2025, 3, 30), 7) == datetime(2025, 4, 6)


class TestHighSalesEligibility:
    """Which products the best-sellers scan picks up."""

    @pytest.mark.parametrize("sales,expires_in,expected", [
        (15, 3, True),
        (15, 20, False),
        (5, 3, False),
        (10, 3, False),     # threshold is exclusive
        (11, 5, True),      # window end is inclusive
        (11, 0, True),      # expires today
        (11, -1, False),    # already expired
    ])
    def test_is_eligible(self, high_sales, add_product, clock, sales, expires_in, expected):
        product = add_product(1, sales=sales, expires_in=expires_in)
        assert high_sales.is_eligible(product, clock.today()) is expected

    def test_product_without_expiration_is_ignored(self, high_sales, add_product, clock):
        product = add_product(1, sales=50)
        assert high_sales.is_eligible(product, clock.today()) is False


class TestExpiringHighSalesScanner:
    """Tests for the EXPIRING_PRODUCT upsert."""

    def test_creates_promotion(self, high_sales, data_store, add_product, clock):
        add_product(1, price=100.0, sales=15, expires_in=3)
        add_product(2, price=50.0, sales=15, expires_in=20)
        add_product(3, price=80.0, sales=5, expires_in=3)

        result = high_sales.run()

        assert result.persisted
        assert result.eligible_product_ids == [1]
        assert result.admitted_product_ids == [1]
        promotion = data_store.get_promotion(result.promotion_id)
        assert promotion.condition == ConditionKind.EXPIRING_PRODUCT
        assert promotion.discount_percentage == 40.0
        assert promotion.start_date == clock.now()
        assert promotion.end_date == datetime(2025, 3, 15)
        assert promotion.active
        assert promotion.product_ids == {1}
        assert data_store.get_product(1).price == pytest.approx(60.0)
        assert data_store.get_product(1).promotion_ids == {promotion.id}
        assert data_store.get_product(2).price == 50.0
        assert data_store.get_product(3).price == 80.0

    def test_nothing_eligible_saves_nothing(self, high_sales, data_store, add_product):
        add_product(1, sales=5, expires_in=3)

        result = high_sales.run()

        assert not result.persisted
        assert data_store.get_promotions() == []

    def test_rerun_reuses_promotion_without_rediscounting(self, high_sales, data_store, add_product, clock):
        """Test that the next day's run keeps one promotion and one discount."""
        add_product(1, price=100.0, sales=15, expires_in=3)
        first = high_sales.run()

        clock.advance(days=1)
        second = high_sales.run()

        assert second.promotion_id == first.promotion_id
        assert len(data_store.get_promotions()) == 1
        assert second.admitted_product_ids == [1]
        assert second.discounted_product_ids == []
        assert data_store.get_product(1).price == pytest.approx(60.0)
        assert data_store.get_promotion(first.promotion_id).end_date == datetime(2025, 3, 16)

    def test_rerun_removes_members_that_stopped_qualifying(self, high_sales, data_store, add_product, clock):
        add_product(1, sales=15, expires_in=0)
        add_product(2, sales=15, expires_in=3)
        first = high_sales.run()
        assert data_store.get_promotion(first.promotion_id).product_ids == {1, 2}

        clock.advance(days=1)
        second = high_sales.run()

        assert second.removed_product_ids == [1]
        assert data_store.get_promotion(second.promotion_id).product_ids == {2}
        assert data_store.get_product(1).promotion_ids == set()

    def test_skips_products_in_overlapping_promotion(self, high_sales, data_store, add_product, add_promotion):
        add_product(1, price=100.0, sales=15, expires_in=3)
        add_product(2, price=100.0, sales=15, expires_in=3)
        juices = add_promotion(name="Juices", condition=ConditionKind.GROUP_PURCHASE, product_ids=[2])

        result = high_sales.run()

        assert result.admitted_product_ids == [1]
        assert result.skipped_product_ids == [2]
        product = data_store.get_product(2)
        assert product.price == 100.0
        assert product.promotion_ids == {juices.id}

    def test_all_eligible_conflicting_saves_nothing(self, high_sales, data_store, add_product, add_promotion):
        add_product(1, sales=15, expires_in=3)
        add_promotion(product_ids=[1])

        result = high_sales.run()

        assert not result.persisted
        assert result.skipped_product_ids == [1]
        assert len(data_store.get_promotions()) == 1

    def test_publishes_events_after_commit(self, high_sales, add_product, event_bus):
        add_product(1, sales=15, expires_in=3)

        result = high_sales.run()

        assert len(event_bus.get_event_log(EventTypes.PROMOTION_CREATED)) == 1
        [discounted] = event_bus.get_event_log(EventTypes.PRODUCT_DISCOUNTED)
        assert discounted.payload["product_id"] == 1
        [completed] = event_bus.get_event_log(EventTypes.SCAN_COMPLETED)
        assert completed.payload["promotion_id"] == result.promotion_id
        assert completed.payload["admitted_product_ids"] == [1]

    def test_events_stamped_with_scan_clock(self, high_sales, add_product, event_bus, clock):
        add_product(1, sales=15, expires_in=3)

        high_sales.run()

        events = event_bus.get_event_log()
        assert [e.event_type for e in events] == [
            EventTypes.PROMOTION_CREATED,
            EventTypes.PRODUCT_DISCOUNTED,
            EventTypes.SCAN_COMPLETED,
        ]
        assert {e.timestamp for e in events} == {clock.now()}


class TestScanFailures:
    """A failing product aborts the whole run."""

    def test_error_rolls_back_everything(self, high_sales, data_store, add_product, event_bus, monkeypatch):
        add_product(1, price=100.0, sales=15, expires_in=3)
        add_product(2, price=100.0, sales=15, expires_in=3)
        original = high_sales.evaluator.apply_to_product

        def failing(product, promotion):
            if product.id == 2:
                raise ValueError("corrupt product")
            return original(product, promotion)

        monkeypatch.setattr(high_sales.evaluator, "apply_to_product", failing)

        with pytest.raises(ScanError) as exc_info:
            high_sales.run()

        assert exc_info.value.product_id == 2
        assert isinstance(exc_info.value.__cause__, ValueError)
        assert data_store.get_promotions() == []
        assert data_store.get_product(1).price == 100.0
        assert data_store.get_product(1).promotion_ids == set()
        assert event_bus.get_event_log() == []

    def test_eligibility_error_is_wrapped(self, low_sales, add_product, monkeypatch):
        add_product(1, sales=3, expires_in=2)

        def broken(sales_count):
            raise TypeError("bad sales count")

        monkeypatch.setattr(low_sales, "sales_qualify", broken)

        with pytest.raises(ScanError):
            low_sales.run()

    def test_missing_collaborator(self, high_sales, data_store, add_product):
        add_product(1, sales=15, expires_in=3)
        high_sales.overlap_detector = None

        with pytest.raises(SchedulerStateError):
            high_sales.run()
        assert data_store.get_promotions() == []


class TestLowSalesEligibility:

    @pytest.mark.parametrize("sales,expires_in,expected", [
        (5, 8, True),
        (9, 10, True),
        (10, 3, False),     # threshold is exclusive
        (5, 11, False),
        (0, 0, True),
    ])
    def test_is_eligible(self, low_sales, add_product, clock, sales, expires_in, expected):
        product = add_product(1, sales=sales, expires_in=expires_in)
        assert low_sales.is_eligible(product, clock.today()) is expected


class TestExpiringLowSalesScanner:
    """Tests for the EXPIRING_AND_LOW_SALES replacement."""

    def test_creates_one_week_promotion(self, low_sales, data_store, add_product, clock):
        add_product(1, price=100.0, sales=3, expires_in=8)
        add_product(2, price=100.0, sales=30, expires_in=8)

        result = low_sales.run()

        promotion = data_store.get_promotion(result.promotion_id)
        assert promotion.condition == ConditionKind.EXPIRING_AND_LOW_SALES
        assert promotion.discount_percentage == 45.0
        assert promotion.start_date == clock.now()
        assert promotion.end_date == datetime(2025, 3, 17)
        assert promotion.product_ids == {1}
        assert data_store.get_product(1).price == pytest.approx(55.0)
        assert data_store.get_product(2).price == 100.0

    def test_consecutive_days_replace_the_product_set(self, low_sales, data_store, add_product, clock):
        """Test that the second day's promotion holds exactly the second day's products."""
        add_product(1, price=100.0, sales=3, expires_in=2)
        add_product(2, price=100.0, sales=3, expires_in=9)
        first = low_sales.run()
        assert data_store.get_promotion(first.promotion_id).product_ids == {1, 2}

        product = data_store.get_product(1)
        product.sales_count = 25
        data_store.save_product(product)
        clock.advance(days=1)
        second = low_sales.run()

        assert second.superseded_promotion_ids == [first.promotion_id]
        old = data_store.get_promotion(first.promotion_id)
        assert not old.active
        assert old.product_ids == set()
        new = data_store.get_promotion(second.promotion_id)
        assert new.active
        assert new.product_ids == {2}
        assert data_store.get_product(1).promotion_ids == set()
        assert data_store.get_product(2).promotion_ids == {new.id}
        assert len(data_store.get_active_promotions_by_condition(ConditionKind.EXPIRING_AND_LOW_SALES)) == 1

    def test_detached_products_keep_their_price(self, low_sales, data_store, add_product, clock):
        """Superseding does not restore prices; re-admitted products are discounted again."""
        add_product(1, price=100.0, sales=3, expires_in=5)
        low_sales.run()

        clock.advance(days=1)
        low_sales.run()

        assert data_store.get_product(1).price == pytest.approx(30.25)

    def test_supersedes_even_when_nothing_is_eligible(self, low_sales, data_store, add_product, clock):
        add_product(1, sales=3, expires_in=1)
        first = low_sales.run()

        clock.advance(days=3)
        second = low_sales.run()

        assert not second.persisted
        assert second.superseded_promotion_ids == [first.promotion_id]
        assert data_store.get_active_promotions() == []

    def test_superseded_event(self, low_sales, add_product, clock, event_bus):
        add_product(1, sales=3, expires_in=5)
        first = low_sales.run()
        clock.advance(days=1)
        low_sales.run()

        [event] = event_bus.get_event_log(EventTypes.PROMOTION_DEACTIVATED)
        assert event.payload["promotion_id"] == first.promotion_id
        assert event.payload["reason"] == "superseded"
        assert event.timestamp == clock.now()


class TestScansOverFixtures:
    """Both scans against the JSON catalog in data/."""

    @pytest.fixture
    def fixture_service(self, fixture_store, clock, settings, event_bus) -> PromotionService:
        return PromotionService(data_store=fixture_store, clock=clock, settings=settings, event_bus=event_bus)

    def test_high_sales(self, fixture_service):
        result = fixture_service.run_expiring_high_sales_scan()

        assert result.eligible_product_ids == [1, 2, 8]
        assert result.admitted_product_ids == [1, 2]
        # Orange juice is already in "Buy 3 Juices"
        assert result.skipped_product_ids == [8]

    def test_low_sales(self, fixture_service):
        result = fixture_service.run_expiring_low_sales_scan()

        assert result.eligible_product_ids == [3, 4, 5]
        assert result.admitted_product_ids == [3, 4, 5]
