"""
Shared pytest fixtures for the promotion engine tests.

Most tests build their catalog in code against an empty store and a clock
frozen at 2025-03-10 09:30, so expiration arithmetic is deterministic. The
JSON fixtures under data/ are only used by the store-loading tests.
"""

import pytest
from datetime import datetime, timedelta
from pathlib import Path

from promotion_engine.event_bus import EventBus
from promotion_engine.service import PromotionService
from shared.clock import FixedClock
from shared.data_store import DataStore
from shared.models import ConditionKind, Product, Promotion
from shared.settings import PromotionEngineSettings


NOW = datetime(2025, 3, 10, 9, 30)
TODAY = NOW.date()


@pytest.fixture
def data_dir() -> Path:
    """Path to the JSON fixtures."""
    return Path(__file__).parent.parent / "data"


@pytest.fixture
def fixture_store(data_dir: Path) -> DataStore:
    """DataStore over the JSON fixtures."""
    return DataStore(data_dir=data_dir)


@pytest.fixture
def data_store(tmp_path: Path) -> DataStore:
    """Empty DataStore for each test."""
    return DataStore(data_dir=tmp_path)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def settings(tmp_path: Path) -> PromotionEngineSettings:
    """Default settings, ignoring any .env file and PROMO_ variables."""
    return PromotionEngineSettings(_env_file=None, data_dir=tmp_path, scheduler_timezone=None)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def service(data_store, clock, settings, event_bus) -> PromotionService:
    return PromotionService(data_store=data_store, clock=clock, settings=settings, event_bus=event_bus)


# =============================================================================
# Builders
# =============================================================================

@pytest.fixture
def add_product(data_store: DataStore):
    """
    Save a product. expires_in is in days from TODAY; None means no expiration.
    """
    def _add(product_id: int, price: float = 100.0, sales: int = 0, expires_in=None, **kwargs) -> Product:
        expiration = TODAY + timedelta(days=expires_in) if expires_in is not None else None
        product = Product(
            id=product_id,
            name=kwargs.pop("name", f"Product {product_id}"),
            price=price,
            sales_count=sales,
            expiration_date=expiration,
            **kwargs,
        )
        data_store.save_product(product)
        return product
    return _add


@pytest.fixture
def add_promotion(data_store: DataStore):
    """
    Save a promotion and link the given product ids on both sides.
    """
    def _add(
        name: str = "Promo",
        condition=ConditionKind.MIN_AMOUNT,
        percentage: float = 20,
        start: datetime = datetime(2025, 3, 1),
        end: datetime = datetime(2025, 3, 31),
        active: bool = True,
        product_ids=(),
    ) -> Promotion:
        promotion = Promotion(
            name=name,
            condition=condition,
            discount_percentage=percentage,
            start_date=start,
            end_date=end,
            active=active,
        )
        data_store.save_promotion(promotion)
        for product_id in product_ids:
            product = data_store.get_product(product_id)
            product.promotion_ids.add(promotion.id)
            promotion.product_ids.add(product_id)
            data_store.save_product(product)
        data_store.save_promotion(promotion)
        return promotion
    return _add
