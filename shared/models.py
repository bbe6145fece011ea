"""
Domain models for the promotion engine.

These models describe the catalog the engine discounts, the promotions it
manages and the usage ledger it writes to.

Design decisions:
- Using Pydantic for validation and serialization
- Product <-> Promotion membership is kept as two id sets (one on each side)
  rather than nested objects, and is only changed through link()/unlink()
- Usage records are frozen once built - the ledger is append-only
- Read-side projections (analytics, dynamic view) serialize with camelCase
  aliases because that is what the dashboard consumes
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel


# =============================================================================
# Enums
# =============================================================================

class ConditionKind(str, Enum):
    """
    Discriminator selecting which gate and discount policy a promotion uses.

    EXPIRING_PRODUCT and EXPIRING_AND_LOW_SALES promotions are generated by
    the eligibility scanners; the others are created by administrators.
    """
    GROUP_PURCHASE = "GROUP_PURCHASE"                  # total is a unit count, needs >= 3
    MIN_AMOUNT = "MIN_AMOUNT"                          # total must exceed 100
    EXPIRING_PRODUCT = "EXPIRING_PRODUCT"              # high sales, expiring within 5 days
    EXPIRING_AND_LOW_SALES = "EXPIRING_AND_LOW_SALES"  # low sales, expiring within 10 days
    BLACK_FRIDAY = "BLACK_FRIDAY"                      # yearly, applied by the calendar trigger


AUTO_GENERATED_CONDITIONS = frozenset({
    ConditionKind.EXPIRING_PRODUCT,
    ConditionKind.EXPIRING_AND_LOW_SALES,
})


# =============================================================================
# Core Domain Models
# =============================================================================

class Product(BaseModel):
    """
    Catalog product.

    The catalog itself is managed elsewhere; the engine only reads
    sales_count / expiration_date and mutates price and promotion membership.
    Discounts are applied by mutating price directly, so assignment is
    validated to keep the price non-negative.
    """
    id: int = Field(..., description="Unique product identifier")
    name: str = Field(..., description="Product display name")
    price: float = Field(..., ge=0, description="Current (possibly discounted) price")
    currency: Optional[str] = Field(default=None, description="ISO currency code")
    expiration_date: Optional[date] = Field(default=None)
    sales_count: int = Field(default=0, ge=0, description="Units sold so far")
    promotion_ids: set[int] = Field(
        default_factory=set,
        description="Promotions this product currently participates in"
    )

    model_config = ConfigDict(validate_assignment=True)

    def days_until_expiration(self, today: date) -> Optional[int]:
        """Whole days between today and the expiration date (negative once expired)."""
        if self.expiration_date is None:
            return None
        return (self.expiration_date - today).days


class Promotion(BaseModel):
    """
    A time-windowed discount rule.

    The id is assigned by the store on first save. Window ordering
    (end_date >= start_date) is enforced by PromotionService on create and
    update, not here, so that invalid input surfaces as a domain error.
    """
    id: Optional[int] = Field(default=None, description="Assigned by the store")
    name: str = Field(..., description="Display name")
    discount_percentage: float = Field(..., ge=0, le=100)
    start_date: Optional[datetime] = Field(default=None)
    end_date: Optional[datetime] = Field(default=None)
    condition: Optional[ConditionKind] = Field(
        default=None,
        description="Which gate applies; None means the promotion never applies"
    )
    active: bool = Field(default=True)
    product_ids: set[int] = Field(
        default_factory=set,
        description="Products participating in this promotion"
    )

    def has_products(self) -> bool:
        return bool(self.product_ids)

    def is_expired(self, now: datetime) -> bool:
        """True once the end date is strictly in the past."""
        return self.end_date is not None and self.end_date < now


class UsageRecord(BaseModel):
    """
    One entry of the usage ledger.

    Written by the rule evaluator every time an active promotion is
    evaluated against a total, whether or not the total changed.
    """
    id: Optional[int] = Field(default=None, description="Assigned by the ledger")
    promotion_id: int = Field(..., description="Evaluated promotion")
    initial_amount: float
    discounted_amount: float
    applied_at: datetime

    model_config = ConfigDict(frozen=True)

    @property
    def revenue_impact(self) -> float:
        return self.initial_amount - self.discounted_amount


# =============================================================================
# Membership
# =============================================================================

def link(product: Product, promotion: Promotion) -> None:
    """Add the product to the promotion on both sides of the relation."""
    if promotion.id is None:
        raise ValueError(f"Promotion '{promotion.name}' must be saved before products are linked")
    product.promotion_ids.add(promotion.id)
    promotion.product_ids.add(product.id)


def unlink(product: Product, promotion: Promotion) -> None:
    """Remove the product from the promotion on both sides of the relation."""
    product.promotion_ids.discard(promotion.id)
    promotion.product_ids.discard(product.id)


# =============================================================================
# Read-side projections
# =============================================================================

class ProjectionModel(BaseModel):
    """Base for API-facing projections: camelCase on the wire, snake_case in code."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PromotionStat(ProjectionModel):
    """Usage statistics for a single promotion."""
    promotion_id: int
    promotion_name: str
    usage_count: int = 0
    total_revenue_impact: float = 0.0


class PromotionAnalytics(ProjectionModel):
    """Aggregated view of the usage ledger."""
    promotion_stats: list[PromotionStat] = Field(default_factory=list)
    total_promotions_applied: int = 0


class PromotionRef(ProjectionModel):
    id: int
    name: str


class DynamicProduct(ProjectionModel):
    """A product as shown under a promotion, with its computed discounted price."""
    id: int
    name: str
    price: float
    discounted_price: float
    currency: str
    expiration_date: Optional[date] = None
    promotions: list[PromotionRef] = Field(default_factory=list)


class DynamicPromotion(ProjectionModel):
    """A promotion with its deduplicated, annotated products."""
    id: Optional[int] = None
    name: str
    discount_percentage: float
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    condition: Optional[ConditionKind] = None
    active: bool
    products: list[DynamicProduct] = Field(default_factory=list)
    scheduled_activation_date: Optional[date] = None


class DynamicPromotionsView(ProjectionModel):
    """Promotions grouped by how they were generated."""
    black_friday: list[DynamicPromotion] = Field(default_factory=list)
    expiration: list[DynamicPromotion] = Field(default_factory=list)
    low_sales: list[DynamicPromotion] = Field(default_factory=list)
