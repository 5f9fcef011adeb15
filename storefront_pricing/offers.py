"""Helpers for product, deal and bundle pages: best deal, status, labels, countdowns."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Sequence

from storefront_pricing.models import Deal, DiscountKind, DiscountSpec, LineKind, PricedLine, Product, PromotionWindow, quantize_money
from storefront_pricing.pricing import HUNDRED, ZERO, apply_discount, best_index, is_eligible


class PromotionStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SCHEDULED = "scheduled"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"


def promotion_status(window: PromotionWindow, now: datetime) -> PromotionStatus:
    if not window.is_active:
        return PromotionStatus.INACTIVE
    if now < window.start:
        return PromotionStatus.SCHEDULED
    if now > window.end:
        return PromotionStatus.EXPIRED
    if window.max_uses is not None and window.current_uses >= window.max_uses:
        return PromotionStatus.EXHAUSTED
    return PromotionStatus.ACTIVE


def best_deal(product: Product, deals: Sequence[Deal], now: datetime) -> Optional[Deal]:
    """
    Eligible deal on ``product`` that takes the most off its price.

    ``deals`` must be in a stable order (creation order); ties keep the earlier one.
    """
    candidates: List[Deal] = [d for d in deals if d.product.id == product.id and is_eligible(d.window, now)]
    idx = best_index(product.price, [d.discount for d in candidates])
    return None if idx is None else candidates[idx]


def price_offer(product: Product, deals: Sequence[Deal], now: datetime) -> PricedLine:
    deal = best_deal(product, deals, now)
    if deal is None:
        return PricedLine(
            kind=LineKind.PLAIN,
            quantity=1,
            original_price=product.price,
            discounted_price=product.price,
            discount_amount=ZERO,
            is_eligible=False,
        )
    discounted = apply_discount(product.price, deal.discount)
    return PricedLine(
        kind=LineKind.DEAL,
        quantity=1,
        original_price=product.price,
        discounted_price=discounted,
        discount_amount=product.price - discounted,
        is_eligible=True,
        promotion_id=deal.id,
    )


def remaining_uses(window: PromotionWindow) -> Optional[int]:
    if window.max_uses is None:
        return None
    return max(window.max_uses - window.current_uses, 0)


def usage_progress(window: PromotionWindow) -> Decimal:
    """Percent of the usage cap already claimed (0 for unlimited promotions)."""
    if window.max_uses is None:
        return ZERO
    if window.max_uses <= 0:
        return HUNDRED
    return min(Decimal(window.current_uses) / Decimal(window.max_uses) * HUNDRED, HUNDRED)


def format_time_remaining(end: datetime, now: datetime) -> str:
    diff = end - now
    if diff.total_seconds() <= 0:
        return "Expired"

    days = diff.days
    hours = diff.seconds // 3600
    minutes = (diff.seconds % 3600) // 60

    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def discount_label(spec: DiscountSpec) -> str:
    if spec.kind is DiscountKind.PERCENTAGE:
        return f"{spec.value.normalize():f}% OFF"
    return f"${quantize_money(spec.value)} OFF"
