"""
Analytics over the usage ledger.

Rolls the ledger up per promotion. Active promotions that were never
evaluated are still listed, with zero usage, so dormant promotions show up
on the dashboard.
"""

import logging
from collections import defaultdict

from shared.data_store import DataStore
from shared.models import PromotionAnalytics, PromotionStat, UsageRecord

logger = logging.getLogger("promotion_analytics")


class AnalyticsAggregator:
    """Computes PromotionAnalytics from the ledger and the promotion store."""

    def __init__(self, data_store: DataStore):
        self.data_store = data_store

    def compute_analytics(self) -> PromotionAnalytics:
        """
        Per-promotion usage count and revenue impact.

        Revenue impact is the sum of (initial - discounted) over a
        promotion's ledger entries. Entries whose promotion no longer exists
        are skipped with a warning. total_promotions_applied counts every
        ledger entry, including skipped ones.
        """
        usage = self.data_store.get_usage_records()
        logger.info(f"Usage ledger has {len(usage)} entries")

        by_promotion: dict[int, list[UsageRecord]] = defaultdict(list)
        for record in usage:
            by_promotion[record.promotion_id].append(record)

        stats: list[PromotionStat] = []
        for promotion_id in sorted(by_promotion):
            promotion = self.data_store.get_promotion(promotion_id)
            if promotion is None:
                logger.warning(f"Promotion with id {promotion_id} not found, skipping its usage")
                continue

            records = by_promotion[promotion_id]
            stat = PromotionStat(
                promotion_id=promotion_id,
                promotion_name=promotion.name,
                usage_count=len(records),
                total_revenue_impact=sum(r.revenue_impact for r in records),
            )
            stats.append(stat)
            logger.debug(
                f"Stats for {promotion.name}: usage_count={stat.usage_count}, "
                f"total_revenue_impact={stat.total_revenue_impact}"
            )

        reported = {s.promotion_id for s in stats}
        for promotion in self.data_store.get_active_promotions():
            if promotion.id in reported:
                continue
            stats.append(PromotionStat(promotion_id=promotion.id, promotion_name=promotion.name))
            logger.debug(f"Active promotion {promotion.name} has no usage yet")

        return PromotionAnalytics(promotion_stats=stats, total_promotions_applied=len(usage))
