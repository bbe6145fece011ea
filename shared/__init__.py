"""
Shared infrastructure for the promotion engine.

This package contains what the engine consumes rather than implements:
- Domain models (Product, Promotion, UsageRecord) and read-side projections
- Data store for JSON-backed persistence with transactions
- Clock and settings
"""

from shared.models import (
    ConditionKind,
    Product,
    Promotion,
    UsageRecord,
    PromotionAnalytics,
    PromotionStat,
    DynamicPromotionsView,
)
from shared.data_store import DataStore
from shared.clock import Clock, FixedClock, SystemClock
from shared.settings import PromotionEngineSettings, get_settings

__all__ = [
    "ConditionKind",
    "Product",
    "Promotion",
    "UsageRecord",
    "PromotionAnalytics",
    "PromotionStat",
    "DynamicPromotionsView",
    "DataStore",
    "Clock",
    "FixedClock",
    "SystemClock",
    "PromotionEngineSettings",
    "get_settings",
]
