"""
Promotion engine.

This package implements the discount rules and the jobs that maintain them:
- Rule evaluator: applies a promotion to a total and records the evaluation
- Overlap detector: keeps two promotions from discounting a product in the same window
- Eligibility scanners: build promotions for near-expiration products
- Lifecycle jobs: daily sweep and the Black Friday calendar jobs
- Analytics and dynamic view: read-only projections
- Scheduler: runs the jobs on crontab schedules
"""

from promotion_engine.event_bus import Event, EventBus, get_event_bus, reset_event_bus
from promotion_engine.exceptions import (
    PromotionEngineError,
    PromotionNotFoundError,
    PromotionValidationError,
    ScanError,
    SchedulerStateError,
)
from promotion_engine.service import PromotionService

__all__ = [
    "Event",
    "EventBus",
    "get_event_bus",
    "reset_event_bus",
    "PromotionEngineError",
    "PromotionNotFoundError",
    "PromotionValidationError",
    "ScanError",
    "SchedulerStateError",
    "PromotionService",
]
