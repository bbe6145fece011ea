"""
FastAPI application for the promotion engine.

Thin HTTP layer over PromotionService: CRUD for promotions, rule evaluation,
the dashboard projections, and manual triggers for the scheduled jobs.

Run with:
    uvicorn api.main:app --reload

Set PROMO_ENABLE_SCHEDULER=1 to also run the cron triggers inside the server.
Then visit http://localhost:8000/docs for interactive API documentation.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from promotion_engine.exceptions import PromotionNotFoundError, PromotionValidationError
from promotion_engine.scheduler import PromotionScheduler, build_default_triggers
from promotion_engine.service import PromotionService
from shared.logging_config import setup_logging
from shared.models import DynamicPromotionsView, Product, Promotion, PromotionAnalytics
from shared.settings import get_settings

logger = logging.getLogger("promotion_api")

# Module-level instances (would use proper DI in production)
_service: Optional[PromotionService] = None
_scheduler: Optional[PromotionScheduler] = None


def get_service() -> PromotionService:
    """Get the promotion service instance."""
    global _service
    if _service is None:
        _service = PromotionService()
    return _service


def reset_api_state(service: Optional[PromotionService] = None) -> None:
    """Reset API state (for testing)."""
    global _service
    _service = service


# Request / response models
class ApplyPromotionRequest(BaseModel):
    total: float = Field(..., ge=0, description="Cart total, or unit count for group purchases")
    promotion_id: Optional[int] = Field(default=None, description="Promotion to evaluate")


class ApplyPromotionResponse(BaseModel):
    promotion_id: Optional[int]
    initial_amount: float
    discounted_amount: float


class ActiveStatusRequest(BaseModel):
    active: bool


class BulkRequest(BaseModel):
    ids: list[int] = Field(default_factory=list)


class BulkResult(BaseModel):
    affected: int


class JobResult(BaseModel):
    job: str
    result: Any


# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    global _scheduler
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("Starting Promotion Engine API")

    if os.getenv("PROMO_ENABLE_SCHEDULER"):
        _scheduler = PromotionScheduler(settings=settings)
        for trigger in build_default_triggers(get_service(), settings):
            _scheduler.add_trigger(trigger)
        _scheduler.start()

    yield

    if _scheduler is not None:
        _scheduler.shutdown()
        _scheduler = None
    logger.info("Shutting down")


app = FastAPI(
    title="Promotion Engine",
    description="""
    Discount rules for a perishable catalog.

    ## Endpoints

    - `/promotions/*` - Promotion administration, evaluation and analytics
    - `/products/near-expiration` - Products close to their expiration date
    - `/jobs/*` - Run a scheduled job immediately
    """,
    version="1.0.0",
    lifespan=lifespan,
)


def _not_found(error: PromotionNotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(error))


def _bad_request(error: PromotionValidationError) -> HTTPException:
    return HTTPException(status_code=400, detail=str(error))


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "promotion-engine"}


# =============================================================================
# Read-side projections
# =============================================================================
# Declared before /promotions/{promotion_id} so the literal paths win.

@app.get("/promotions/active", response_model=list[Promotion], tags=["Promotions"])
def list_active_promotions(service: PromotionService = Depends(get_service)):
    return service.get_active_promotions()


@app.get("/promotions/dynamic", response_model=DynamicPromotionsView, tags=["Dashboard"])
def dynamic_promotions(service: PromotionService = Depends(get_service)):
    """Black Friday, expiration and low-sales promotions with their discounted products."""
    return service.get_dynamic_promotions_view()


@app.get("/promotions/analytics", response_model=PromotionAnalytics, tags=["Dashboard"])
def promotion_analytics(service: PromotionService = Depends(get_service)):
    """Usage count and revenue impact per promotion."""
    return service.get_promotion_analytics()


@app.get("/products/near-expiration", response_model=list[Product], tags=["Products"])
def products_near_expiration(
    window_days: Optional[int] = None,
    service: PromotionService = Depends(get_service),
):
    return service.get_products_near_expiration(window_days)


# =============================================================================
# Rule evaluation
# =============================================================================

@app.post("/promotions/apply", response_model=ApplyPromotionResponse, tags=["Evaluation"])
def apply_promotion(
    request: ApplyPromotionRequest,
    service: PromotionService = Depends(get_service),
):
    """
    Apply a promotion to a total.

    Every evaluation of an active promotion is recorded in the usage ledger,
    even when its condition leaves the total unchanged.
    """
    try:
        discounted = service.apply_promotion(request.total, request.promotion_id)
    except PromotionNotFoundError as e:
        raise _not_found(e)
    except PromotionValidationError as e:
        raise _bad_request(e)
    return ApplyPromotionResponse(
        promotion_id=request.promotion_id,
        initial_amount=request.total,
        discounted_amount=discounted,
    )


# =============================================================================
# Administration
# =============================================================================

@app.get("/promotions", response_model=list[Promotion], tags=["Promotions"])
def list_promotions(service: PromotionService = Depends(get_service)):
    return service.get_all_promotions()


@app.post("/promotions", response_model=Promotion, status_code=201, tags=["Promotions"])
def create_promotion(promotion: Promotion, service: PromotionService = Depends(get_service)):
    try:
        return service.create_promotion(promotion)
    except PromotionValidationError as e:
        raise _bad_request(e)


@app.post("/promotions/bulk/activate", response_model=BulkResult, tags=["Promotions"])
def bulk_activate(request: BulkRequest, service: PromotionService = Depends(get_service)):
    try:
        return BulkResult(affected=service.bulk_activate(request.ids))
    except PromotionValidationError as e:
        raise _bad_request(e)


@app.post("/promotions/bulk/deactivate", response_model=BulkResult, tags=["Promotions"])
def bulk_deactivate(request: BulkRequest, service: PromotionService = Depends(get_service)):
    return BulkResult(affected=service.bulk_deactivate(request.ids))


@app.post("/promotions/bulk/delete", response_model=BulkResult, tags=["Promotions"])
def bulk_delete(request: BulkRequest, service: PromotionService = Depends(get_service)):
    return BulkResult(affected=service.bulk_delete(request.ids))


@app.get("/promotions/{promotion_id}", response_model=Promotion, tags=["Promotions"])
def get_promotion(promotion_id: int, service: PromotionService = Depends(get_service)):
    try:
        return service.get_promotion_by_id(promotion_id)
    except PromotionNotFoundError as e:
        raise _not_found(e)


@app.put("/promotions/{promotion_id}", response_model=Promotion, tags=["Promotions"])
def update_promotion(
    promotion_id: int,
    promotion: Promotion,
    service: PromotionService = Depends(get_service),
):
    try:
        return service.update_promotion(promotion_id, promotion)
    except PromotionNotFoundError as e:
        raise _not_found(e)
    except PromotionValidationError as e:
        raise _bad_request(e)


@app.patch("/promotions/{promotion_id}/active", response_model=Promotion, tags=["Promotions"])
def toggle_active(
    promotion_id: int,
    request: ActiveStatusRequest,
    service: PromotionService = Depends(get_service),
):
    try:
        return service.toggle_active_status(promotion_id, request.active)
    except PromotionNotFoundError as e:
        raise _not_found(e)
    except PromotionValidationError as e:
        raise _bad_request(e)


@app.delete("/promotions/{promotion_id}", status_code=204, tags=["Promotions"])
def delete_promotion(promotion_id: int, service: PromotionService = Depends(get_service)):
    try:
        service.delete_promotion(promotion_id)
    except PromotionNotFoundError as e:
        raise _not_found(e)


# =============================================================================
# Jobs
# =============================================================================

@app.post("/jobs/{name}", response_model=JobResult, tags=["Jobs"])
def run_job(name: str, service: PromotionService = Depends(get_service)):
    """Run a scheduled job immediately."""
    if name not in service.JOBS:
        raise HTTPException(status_code=404, detail=f"Unknown job: {name}. Valid jobs: {sorted(service.JOBS)}")
    return JobResult(job=name, result=service.run_job(name))
