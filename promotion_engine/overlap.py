"""
Overlap detection.

Keeps two independently discounted promotions from landing on the same
product in the same time window. A promotion never conflicts with another
promotion of its own condition, because the scanner that owns a condition
replaces its own promotion rather than stacking on it.
"""

import logging
from datetime import datetime
from typing import Optional

from shared.data_store import DataStore
from shared.models import ConditionKind, Product, Promotion

logger = logging.getLogger("overlap_detector")


def intervals_overlap(
    start1: Optional[datetime],
    end1: Optional[datetime],
    start2: Optional[datetime],
    end2: Optional[datetime],
) -> bool:
    """
    True if the closed intervals [start1, end1] and [start2, end2] share an instant.

    Touching boundaries overlap. An interval with a missing bound overlaps nothing.
    """
    if start1 is None or end1 is None or start2 is None or end2 is None:
        return False
    return start1 <= end2 and start2 <= end1


class OverlapDetector:
    """Checks a product against the currently active promotions."""

    def __init__(self, data_store: DataStore):
        self.data_store = data_store

    def find_conflict(
        self,
        product: Product,
        candidate_start: Optional[datetime],
        candidate_end: Optional[datetime],
        exclude_condition: Optional[ConditionKind] = None,
    ) -> Optional[Promotion]:
        """The first active promotion that blocks the product in this window, if any."""
        for promotion in self.data_store.get_active_promotions():
            if exclude_condition is not None and promotion.condition == exclude_condition:
                continue
            if promotion.id not in product.promotion_ids:
                continue
            if intervals_overlap(candidate_start, candidate_end, promotion.start_date, promotion.end_date):
                return promotion
        return None

    def conflicts(
        self,
        product: Product,
        candidate_start: Optional[datetime],
        candidate_end: Optional[datetime],
        exclude_condition: Optional[ConditionKind] = None,
    ) -> bool:
        """
        True if the product already belongs to another active promotion
        whose window overlaps [candidate_start, candidate_end].
        """
        blocking = self.find_conflict(product, candidate_start, candidate_end, exclude_condition)
        if blocking is not None:
            logger.info(
                f"{product.name} is already in active promotion {blocking.name} "
                f"over the same interval"
            )
            return True
        return False
