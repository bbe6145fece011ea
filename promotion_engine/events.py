"""
Event definitions for the promotion engine.

Events are named in past tense and carry everything a subscriber needs, so
nobody has to query the store back to understand what happened.

Every factory takes an optional timestamp. Components pass their clock's
now() so that replayed runs (FixedClock) stamp events with the replayed time.
"""

from datetime import datetime
from typing import Any, Optional

from promotion_engine.event_bus import Event


class EventTypes:
    """Constants for event type names."""
    PROMOTION_CREATED = "PromotionCreated"
    PROMOTION_DEACTIVATED = "PromotionDeactivated"
    PROMOTION_EVALUATED = "PromotionEvaluated"
    PRODUCT_DISCOUNTED = "ProductDiscounted"
    SCAN_COMPLETED = "ScanCompleted"


def _event(
    event_type: str,
    source: str,
    payload: dict[str, Any],
    timestamp: Optional[datetime],
) -> Event:
    if timestamp is None:
        return Event(event_type=event_type, source=source, payload=payload)
    return Event(event_type=event_type, source=source, payload=payload, timestamp=timestamp)


def promotion_created(
    promotion_id: int,
    promotion_name: str,
    condition: Optional[str],
    discount_percentage: float,
    source: str = "promotion-service",
    timestamp: Optional[datetime] = None,
) -> Event:
    """Published when a promotion is created, by an administrator or a scanner."""
    return _event(
        EventTypes.PROMOTION_CREATED,
        source,
        {
            "promotion_id": promotion_id,
            "promotion_name": promotion_name,
            "condition": condition,
            "discount_percentage": discount_percentage,
        },
        timestamp,
    )


def promotion_deactivated(
    promotion_id: int,
    promotion_name: str,
    reason: str,
    source: str = "lifecycle",
    timestamp: Optional[datetime] = None,
) -> Event:
    """
    Published when an active promotion is switched off.

    reason is one of "expired", "no_products", "superseded",
    "black_friday_ended" or "manual".
    """
    return _event(
        EventTypes.PROMOTION_DEACTIVATED,
        source,
        {
            "promotion_id": promotion_id,
            "promotion_name": promotion_name,
            "reason": reason,
        },
        timestamp,
    )


def promotion_evaluated(
    promotion_id: int,
    initial_amount: float,
    discounted_amount: float,
    source: str = "rule-evaluator",
    timestamp: Optional[datetime] = None,
) -> Event:
    """Published for every ledger entry the rule evaluator writes."""
    return _event(
        EventTypes.PROMOTION_EVALUATED,
        source,
        {
            "promotion_id": promotion_id,
            "initial_amount": initial_amount,
            "discounted_amount": discounted_amount,
            "discount_applied": discounted_amount != initial_amount,
        },
        timestamp,
    )


def product_discounted(
    product_id: int,
    product_name: str,
    promotion_id: int,
    previous_price: float,
    new_price: float,
    source: str,
    timestamp: Optional[datetime] = None,
) -> Event:
    """Published when a promotion lowers a product's catalog price."""
    return _event(
        EventTypes.PRODUCT_DISCOUNTED,
        source,
        {
            "product_id": product_id,
            "product_name": product_name,
            "promotion_id": promotion_id,
            "previous_price": previous_price,
            "new_price": new_price,
        },
        timestamp,
    )


def scan_completed(
    scan_name: str,
    promotion_id: Optional[int],
    admitted_product_ids: list[int],
    skipped_product_ids: list[int],
    source: str = "scanner",
    timestamp: Optional[datetime] = None,
) -> Event:
    """Published at the end of a successful eligibility scan."""
    return _event(
        EventTypes.SCAN_COMPLETED,
        source,
        {
            "scan_name": scan_name,
            "promotion_id": promotion_id,
            "admitted_product_ids": admitted_product_ids,
            "skipped_product_ids": skipped_product_ids,
        },
        timestamp,
    )
