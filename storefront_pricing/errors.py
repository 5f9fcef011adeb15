from __future__ import annotations


class PricingError(Exception):
    pass


class InvalidDiscountSpec(PricingError, ValueError):
    pass


class InvalidPromotionWindow(PricingError, ValueError):
    pass


class InvalidQuantity(PricingError, ValueError):
    pass


class UnknownProduct(PricingError, LookupError):
    pass


class UnknownPromotion(PricingError, LookupError):
    pass


class UnresolvableLineItem(UnknownProduct):
    """A product referenced by a cart or bundle line can no longer be fetched."""


class InsufficientStock(PricingError):
    def __init__(self, product_id: str, requested: int, available: int, line_index: int | None = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.line_index = line_index
        where = f" (line {line_index})" if line_index is not None else ""
        super().__init__(f"Insufficient stock for {product_id}{where}: have={available}, need={requested}")


class RedemptionRaceLost(PricingError):
    """The conditional redemption increment found the promotion already at its cap."""

    def __init__(self, promotion_id: str):
        self.promotion_id = promotion_id
        super().__init__(f"Promotion {promotion_id} has no remaining uses")


class DuplicatePromotion(PricingError, ValueError):
    """A deal or bundle with this id already exists; ids are shared by both kinds."""
