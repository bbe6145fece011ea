"""
JSON-backed data store for the promotion engine.

This module provides the three stores the engine consumes - the product
catalog, the promotion store and the usage ledger - loaded from JSON fixture
files and kept in memory.

Design decisions:
- Repository semantics: reads hand out deep copies and saves store copies, so
  nothing changes until the caller persists it
- Every operation runs under one re-entrant lock
- transaction() is the unit of work: it holds the lock for the whole block
  and restores the pre-block state if the block raises
- Product.promotion_ids is rebuilt from the promotions on load, so the
  fixtures only need to describe membership on the promotion side
- The ledger is append-only; there is no update or delete for usage records
"""

import copy
import json
import logging
import threading
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Iterable, Iterator, Optional

from shared.models import (
    ConditionKind,
    Product,
    Promotion,
    UsageRecord,
)
from shared.settings import get_settings

logger = logging.getLogger("data_store")


class DataStore:
    """
    Central store for products, promotions and promotion usage.

    In production these would be three tables behind an ORM; the engine only
    relies on the finders defined here.
    """

    def __init__(self, data_dir: Optional[Path] = None):
        """
        Initialize the data store.

        Args:
            data_dir: Directory containing products.json, promotions.json and
                     promotion_usage.json. Defaults to the configured data dir.
        """
        if data_dir is None:
            data_dir = get_settings().data_dir

        self.data_dir = Path(data_dir)
        self._lock = threading.RLock()

        # In-memory state - loaded lazily
        self._products: Optional[dict[int, Product]] = None
        self._promotions: Optional[dict[int, Promotion]] = None
        self._usage: Optional[list[UsageRecord]] = None
        self._next_promotion_id = 1
        self._next_usage_id = 1

    # =========================================================================
    # Data Loading (lazy)
    # =========================================================================

    def _load_json(self, filename: str) -> list[dict]:
        """Load a JSON fixture file; a missing file is an empty collection."""
        filepath = self.data_dir / filename
        if not filepath.exists():
            return []
        with open(filepath, "r") as f:
            return json.load(f)

    def _ensure_loaded(self):
        """Lazy load all three stores and rebuild the product side of membership."""
        if self._products is not None:
            return

        products = {p["id"]: Product(**p) for p in self._load_json("products.json")}
        promotions = {p["id"]: Promotion(**p) for p in self._load_json("promotions.json")}
        usage = [UsageRecord(**u) for u in self._load_json("promotion_usage.json")]

        for product in products.values():
            product.promotion_ids = set()
        for promotion in promotions.values():
            # Drop references to products that are not in the catalog
            promotion.product_ids = {pid for pid in promotion.product_ids if pid in products}
            for product_id in promotion.product_ids:
                products[product_id].promotion_ids.add(promotion.id)

        self._products = products
        self._promotions = promotions
        self._usage = usage
        self._next_promotion_id = max(promotions, default=0) + 1
        self._next_usage_id = max((u.id or 0 for u in usage), default=0) + 1
        logger.debug(
            f"Loaded {len(products)} products, {len(promotions)} promotions, "
            f"{len(usage)} usage records from {self.data_dir}"
        )

    # =========================================================================
    # Transactions
    # =========================================================================

    @contextmanager
    def transaction(self) -> Iterator["DataStore"]:
        """
        Run a block of reads and writes atomically.

        Other threads block until the transaction finishes. If the block
        raises, every change made inside it (including ids handed out) is
        rolled back and the exception propagates. Nested transactions join
        the outer one.
        """
        with self._lock:
            self._ensure_loaded()
            snapshot = copy.deepcopy((
                self._products,
                self._promotions,
                self._usage,
                self._next_promotion_id,
                self._next_usage_id,
            ))
            try:
                yield self
            except BaseException:
                (
                    self._products,
                    self._promotions,
                    self._usage,
                    self._next_promotion_id,
                    self._next_usage_id,
                ) = snapshot
                logger.warning("Transaction rolled back")
                raise

    # =========================================================================
    # Product Catalog
    # =========================================================================

    def get_product(self, product_id: int) -> Optional[Product]:
        """Get a product by ID."""
        with self._lock:
            self._ensure_loaded()
            product = self._products.get(product_id)
            return product.model_copy(deep=True) if product else None

    def get_products(self) -> list[Product]:
        """Get all products, ordered by id."""
        with self._lock:
            self._ensure_loaded()
            return [self._products[pid].model_copy(deep=True) for pid in sorted(self._products)]

    def get_products_expiring_between(self, start: date, end: date) -> list[Product]:
        """Products whose expiration date falls within [start, end]."""
        return [
            p for p in self.get_products()
            if p.expiration_date is not None and start <= p.expiration_date <= end
        ]

    def save_product(self, product: Product) -> Product:
        """Insert or replace a product."""
        with self._lock:
            self._ensure_loaded()
            self._products[product.id] = product.model_copy(deep=True)
            return product

    def save_products(self, products: Iterable[Product]) -> None:
        """Insert or replace several products."""
        with self._lock:
            for product in products:
                self.save_product(product)

    # =========================================================================
    # Promotion Store
    # =========================================================================

    def get_promotion(self, promotion_id: int) -> Optional[Promotion]:
        """Get a promotion by ID."""
        with self._lock:
            self._ensure_loaded()
            promotion = self._promotions.get(promotion_id)
            return promotion.model_copy(deep=True) if promotion else None

    def get_promotions(self) -> list[Promotion]:
        """Get all promotions, ordered by id."""
        with self._lock:
            self._ensure_loaded()
            return [self._promotions[pid].model_copy(deep=True) for pid in sorted(self._promotions)]

    def get_promotions_by_ids(self, promotion_ids: Iterable[int]) -> list[Promotion]:
        """Get the promotions that exist among the given ids."""
        found = (self.get_promotion(pid) for pid in promotion_ids)
        return [p for p in found if p is not None]

    def get_active_promotions(self) -> list[Promotion]:
        """Get all promotions whose active flag is set."""
        return [p for p in self.get_promotions() if p.active]

    def get_active_promotions_by_condition(self, *conditions: ConditionKind) -> list[Promotion]:
        """Active promotions having any of the given conditions."""
        return [p for p in self.get_active_promotions() if p.condition in conditions]

    def find_active_promotion_by_condition(self, condition: ConditionKind) -> Optional[Promotion]:
        """The lowest-id active promotion for a condition, if any."""
        matches = self.get_active_promotions_by_condition(condition)
        return matches[0] if matches else None

    def find_promotion_by_name(self, name: str) -> Optional[Promotion]:
        """The lowest-id promotion with exactly this name, if any."""
        return next((p for p in self.get_promotions() if p.name == name), None)

    def save_promotion(self, promotion: Promotion) -> Promotion:
        """
        Insert or replace a promotion.

        A promotion without an id gets the next one; the id is also set on
        the passed object so callers can keep working with it.
        """
        with self._lock:
            self._ensure_loaded()
            if promotion.id is None:
                promotion.id = self._next_promotion_id
                self._next_promotion_id += 1
            else:
                self._next_promotion_id = max(self._next_promotion_id, promotion.id + 1)
            self._promotions[promotion.id] = promotion.model_copy(deep=True)
            return promotion

    def save_promotions(self, promotions: Iterable[Promotion]) -> None:
        with self._lock:
            for promotion in promotions:
                self.save_promotion(promotion)

    def delete_promotion(self, promotion_id: int) -> bool:
        """
        Delete a promotion record.

        Callers are responsible for unlinking its products first; see
        PromotionService.delete_promotion.
        """
        with self._lock:
            self._ensure_loaded()
            return self._promotions.pop(promotion_id, None) is not None

    # =========================================================================
    # Usage Ledger
    # =========================================================================

    def append_usage(self, record: UsageRecord) -> UsageRecord:
        """Append a usage record and return it with its assigned id."""
        with self._lock:
            self._ensure_loaded()
            stored = record.model_copy(update={"id": self._next_usage_id})
            self._next_usage_id += 1
            self._usage.append(stored)
            return stored

    def get_usage_records(self) -> list[UsageRecord]:
        """The whole ledger, in append order."""
        with self._lock:
            self._ensure_loaded()
            return list(self._usage)

    # =========================================================================
    # Utility Methods
    # =========================================================================

    def reload(self):
        """Drop in-memory state; the next access reloads the JSON fixtures."""
        with self._lock:
            self._products = None
            self._promotions = None
            self._usage = None
            self._next_promotion_id = 1
            self._next_usage_id = 1


# Module-level singleton for convenience
# In tests, create a new DataStore instance with test fixtures
_default_store: Optional[DataStore] = None


def get_data_store() -> DataStore:
    """Get the default data store singleton."""
    global _default_store
    if _default_store is None:
        _default_store = DataStore()
    return _default_store
