"""
Tests for the rule evaluator.

These tests verify the per-condition gates, the usage ledger entries written
for each evaluation, and repricing products.
"""

import pytest
from datetime import datetime

from promotion_engine.evaluator import CONDITION_GATES, RuleEvaluator, discounted_price
from promotion_engine.events import EventTypes
from promotion_engine.exceptions import PromotionValidationError
from shared.models import ConditionKind, Product, Promotion


@pytest.fixture
def evaluator(data_store, clock, event_bus) -> RuleEvaluator:
    return RuleEvaluator(data_store, clock, event_bus)


def saved_promotion(data_store, condition, percentage, active=True) -> Promotion:
    return data_store.save_promotion(Promotion(
        name=f"{condition} {percentage}%",
        condition=condition,
        discount_percentage=percentage,
        start_date=datetime(2025, 3, 1),
        end_date=datetime(2025, 3, 31),
        active=active,
    ))


class TestDiscountedPrice:

    def test_discounted_price(self):
        assert discounted_price(100.0, 40) == pytest.approx(60.0)
        assert discounted_price(9.9, 45) == pytest.approx(5.445)
        assert discounted_price(50.0, 0) == 50.0

    def test_every_condition_has_a_gate(self):
        assert set(CONDITION_GATES) == set(ConditionKind)


class TestConditionGates:
    """Tests for apply_promotion with each condition."""

    def test_group_purchase_below_minimum(self, evaluator, data_store):
        """Test that two units do not qualify for a group purchase."""
        promotion = saved_promotion(data_store, ConditionKind.GROUP_PURCHASE, 10)

        assert evaluator.apply_promotion(2, promotion) == 2

    def test_group_purchase_at_minimum(self, evaluator, data_store):
        """Test that three units get the group purchase discount."""
        promotion = saved_promotion(data_store, ConditionKind.GROUP_PURCHASE, 10)

        assert evaluator.apply_promotion(3, promotion) == pytest.approx(2.7)

    def test_min_amount_threshold_is_exclusive(self, evaluator, data_store):
        """Test that exactly 100 does not qualify; anything above does."""
        promotion = saved_promotion(data_store, ConditionKind.MIN_AMOUNT, 20)

        assert evaluator.apply_promotion(100, promotion) == 100
        assert evaluator.apply_promotion(101, promotion) == pytest.approx(80.8)

    @pytest.mark.parametrize("condition", [
        ConditionKind.EXPIRING_PRODUCT,
        ConditionKind.EXPIRING_AND_LOW_SALES,
    ])
    def test_expiring_conditions_always_apply(self, evaluator, data_store, condition):
        promotion = saved_promotion(data_store, condition, 40)

        assert evaluator.apply_promotion(10.0, promotion) == pytest.approx(6.0)

    def test_black_friday_never_applies_to_totals(self, evaluator, data_store):
        """Test that Black Friday only applies through its calendar job."""
        promotion = saved_promotion(data_store, ConditionKind.BLACK_FRIDAY, 50)

        assert evaluator.apply_promotion(500.0, promotion) == 500.0
        assert len(data_store.get_usage_records()) == 1


class TestUsageLedger:
    """Tests for the audit entries written by apply_promotion."""

    def test_entry_written_when_discount_applies(self, evaluator, data_store, clock):
        promotion = saved_promotion(data_store, ConditionKind.MIN_AMOUNT, 20)

        evaluator.apply_promotion(150.0, promotion)

        [record] = data_store.get_usage_records()
        assert record.promotion_id == promotion.id
        assert record.initial_amount == 150.0
        assert record.discounted_amount == pytest.approx(120.0)
        assert record.applied_at == clock.now()

    def test_entry_written_when_gate_rejects(self, evaluator, data_store):
        """Test that rejected evaluations are audited with an unchanged amount."""
        promotion = saved_promotion(data_store, ConditionKind.MIN_AMOUNT, 20)

        evaluator.apply_promotion(80.0, promotion)

        [record] = data_store.get_usage_records()
        assert record.initial_amount == record.discounted_amount == 80.0

    def test_no_entry_without_promotion(self, evaluator, data_store):
        assert evaluator.apply_promotion(150.0, None) == 150.0
        assert data_store.get_usage_records() == []

    def test_no_entry_for_inactive_promotion(self, evaluator, data_store):
        promotion = saved_promotion(data_store, ConditionKind.MIN_AMOUNT, 20, active=False)

        assert evaluator.apply_promotion(150.0, promotion) == 150.0
        assert data_store.get_usage_records() == []

    def test_no_entry_without_condition(self, evaluator, data_store):
        promotion = data_store.save_promotion(Promotion(name="No rule", discount_percentage=20))

        assert evaluator.apply_promotion(150.0, promotion) == 150.0
        assert data_store.get_usage_records() == []

    def test_unsaved_promotion_rejected(self, evaluator, data_store):
        promotion = Promotion(name="Draft", discount_percentage=20, condition=ConditionKind.MIN_AMOUNT)

        with pytest.raises(PromotionValidationError):
            evaluator.apply_promotion(150.0, promotion)
        assert data_store.get_usage_records() == []

    def test_evaluation_event_published(self, evaluator, data_store, event_bus):
        promotion = saved_promotion(data_store, ConditionKind.MIN_AMOUNT, 20)

        evaluator.apply_promotion(150.0, promotion)

        [event] = event_bus.get_event_log(EventTypes.PROMOTION_EVALUATED)
        assert event.payload["promotion_id"] == promotion.id
        assert event.payload["discount_applied"] is True

    def test_event_and_ledger_share_clock_time(self, evaluator, data_store, event_bus, clock):
        clock.set(datetime(2025, 3, 12, 18, 0))
        promotion = saved_promotion(data_store, ConditionKind.MIN_AMOUNT, 20)

        evaluator.apply_promotion(150.0, promotion)

        [event] = event_bus.get_event_log(EventTypes.PROMOTION_EVALUATED)
        assert event.timestamp == datetime(2025, 3, 12, 18, 0)
        assert data_store.get_usage_records()[0].applied_at == event.timestamp


class TestApplyToProduct:
    """Tests for repricing catalog products."""

    def test_discounts_and_links(self, evaluator, data_store):
        promotion = saved_promotion(data_store, ConditionKind.EXPIRING_PRODUCT, 40)
        product = Product(id=1, name="Milk", price=10.0)

        assert evaluator.apply_to_product(product, promotion) is True

        assert product.price == pytest.approx(6.0)
        assert promotion.id in product.promotion_ids
        assert product.id in promotion.product_ids

    def test_idempotent(self, evaluator, data_store):
        """Test that applying the same promotion twice discounts once."""
        promotion = saved_promotion(data_store, ConditionKind.EXPIRING_PRODUCT, 40)
        product = Product(id=1, name="Milk", price=10.0)

        evaluator.apply_to_product(product, promotion)
        assert evaluator.apply_to_product(product, promotion) is False

        assert product.price == pytest.approx(6.0)
        assert product.promotion_ids == {promotion.id}

    def test_does_not_write_ledger(self, evaluator, data_store):
        promotion = saved_promotion(data_store, ConditionKind.EXPIRING_PRODUCT, 40)

        evaluator.apply_to_product(Product(id=1, name="Milk", price=10.0), promotion)

        assert data_store.get_usage_records() == []

    def test_unsaved_promotion_leaves_product_untouched(self, evaluator):
        promotion = Promotion(name="Draft", discount_percentage=40, condition=ConditionKind.EXPIRING_PRODUCT)
        product = Product(id=1, name="Milk", price=10.0)

        with pytest.raises(PromotionValidationError, match="must be saved"):
            evaluator.apply_to_product(product, promotion)

        assert product.price == 10.0
        assert product.promotion_ids == set()
        assert promotion.product_ids == set()
