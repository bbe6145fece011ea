"""Errors raised by the promotion engine."""


class PromotionEngineError(Exception):
    """Base class for all promotion engine errors."""


class PromotionValidationError(PromotionEngineError, ValueError):
    """Raised when a promotion is rejected before any state is touched."""


class PromotionNotFoundError(PromotionEngineError, LookupError):
    """Raised when an operation targets a promotion id that does not exist."""

    def __init__(self, promotion_id):
        self.promotion_id = promotion_id
        super().__init__(f"Promotion not found: {promotion_id}")


class SchedulerStateError(PromotionEngineError, RuntimeError):
    """Raised when a job is unknown or fires without a collaborator it needs."""


class ScanError(PromotionEngineError, RuntimeError):
    """Raised when one product fails during an eligibility scan; the whole run is aborted."""

    def __init__(self, scan_name, product_id, product_name):
        self.scan_name = scan_name
        self.product_id = product_id
        self.product_name = product_name
        super().__init__(
            f"{scan_name}: failed to process product {product_name} (id={product_id})"
        )
