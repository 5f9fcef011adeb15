"""
Pricing and eligibility resolution for deals, bundles and plain products.

Everything here is a pure function of its arguments: records come in as
snapshots, "now" is passed explicitly, and nothing is written back. Redemption
counters are moved by the checkout flow, never by valuation.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from storefront_pricing.errors import InsufficientStock, InvalidQuantity
from storefront_pricing.models import (
    Bundle,
    BundleItem,
    BundleLine,
    CartLine,
    CartTotals,
    Deal,
    DealLine,
    DiscountKind,
    DiscountSpec,
    LineKind,
    PlainLine,
    PricedLine,
    PromotionWindow,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _check_quantity(qty: int, what: str) -> None:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise InvalidQuantity(f"{what} quantity must be a positive integer, got {qty!r}")


def is_eligible(window: PromotionWindow, now: datetime) -> bool:
    if not window.is_active:
        return False
    if not (window.start <= now <= window.end):
        return False
    return window.max_uses is None or window.current_uses < window.max_uses


def apply_discount(base_price: Decimal, spec: DiscountSpec) -> Decimal:
    """
    Final price after applying ``spec`` to ``base_price``.

    Percentages above 100 and fixed amounts above the base are not errors:
    the result is floored at zero. No rounding happens here.
    """
    if spec.kind is DiscountKind.PERCENTAGE:
        result = base_price * (1 - spec.value / HUNDRED)
    elif spec.kind is DiscountKind.FIXED:
        result = base_price - spec.value
    else:
        raise TypeError(f"Unknown discount kind: {spec.kind!r}")
    return result if result > ZERO else ZERO


def discount_amount(base_price: Decimal, spec: DiscountSpec) -> Decimal:
    return base_price - apply_discount(base_price, spec)


def best_index(base_price: Decimal, candidates: Sequence[DiscountSpec]) -> Optional[int]:
    """Position of the candidate with the largest absolute discount; first one wins ties."""
    best: Optional[int] = None
    best_amount = ZERO
    for idx, spec in enumerate(candidates):
        amount = discount_amount(base_price, spec)
        if best is None or amount > best_amount:
            best, best_amount = idx, amount
    if best is not None:
        logger.debug("best offer at base=%s: candidate #%d saves %s", base_price, best, best_amount)
    return best


def select_best(base_price: Decimal, candidates: Sequence[DiscountSpec]) -> Optional[DiscountSpec]:
    idx = best_index(base_price, candidates)
    return None if idx is None else candidates[idx]


def unresolved_items(items: Iterable[BundleItem]) -> List[BundleItem]:
    return [item for item in items if item.product is None]


def aggregate_base_price(items: Iterable[BundleItem]) -> Decimal:
    total = ZERO
    for item in items:
        _check_quantity(item.quantity, f"bundle item {item.product_id}")
        if item.product is None:
            logger.warning("bundle item %s could not be resolved; contributing 0", item.product_id)
            continue
        total += item.product.price * item.quantity
    return total


def _price_deal(deal: Deal, quantity: int, now: datetime) -> PricedLine:
    original = deal.product.price
    eligible = is_eligible(deal.window, now)
    discounted = apply_discount(original, deal.discount) if eligible else original
    return PricedLine(
        kind=LineKind.DEAL,
        quantity=quantity,
        original_price=original,
        discounted_price=discounted,
        discount_amount=original - discounted,
        is_eligible=eligible,
        promotion_id=deal.id,
    )


def _price_bundle(bundle: Bundle, quantity: int, now: datetime) -> PricedLine:
    original = aggregate_base_price(bundle.items)
    eligible = is_eligible(bundle.window, now)
    discounted = apply_discount(original, bundle.discount) if eligible else original
    return PricedLine(
        kind=LineKind.BUNDLE,
        quantity=quantity,
        original_price=original,
        discounted_price=discounted,
        discount_amount=original - discounted,
        is_eligible=eligible,
        promotion_id=bundle.id,
        degraded=bool(unresolved_items(bundle.items)),
    )


def _check_stock(line: CartLine, line_index: int) -> None:
    if isinstance(line, PlainLine):
        products = [(line.product, line.quantity)]
    elif isinstance(line, DealLine):
        products = [(line.deal.product, line.quantity)]
    else:
        products = [(item.product, item.quantity * line.quantity) for item in line.bundle.items if item.product is not None]

    for product, needed in products:
        if product.stock < needed:
            raise InsufficientStock(product.id, requested=needed, available=product.stock, line_index=line_index)


def price_line(line: CartLine, now: datetime) -> PricedLine:
    if isinstance(line, PlainLine):
        price = line.product.price
        return PricedLine(
            kind=LineKind.PLAIN,
            quantity=line.quantity,
            original_price=price,
            discounted_price=price,
            discount_amount=ZERO,
            is_eligible=False,
        )
    if isinstance(line, DealLine):
        return _price_deal(line.deal, line.quantity, now)
    if isinstance(line, BundleLine):
        return _price_bundle(line.bundle, line.quantity, now)
    raise TypeError(f"Unsupported cart line: {type(line).__name__}")


def valuate_cart(lines: Sequence[CartLine], now: datetime) -> CartTotals:
    priced: List[PricedLine] = []
    for idx, line in enumerate(lines):
        if not isinstance(line, (PlainLine, DealLine, BundleLine)):
            raise TypeError(f"Unsupported cart line: {type(line).__name__}")
        _check_quantity(line.quantity, f"cart line {idx}")
        _check_stock(line, idx)
        priced.append(price_line(line, now))

    total = sum((p.line_total for p in priced), ZERO)
    original_total = sum((p.original_line_total for p in priced), ZERO)
    return CartTotals(
        lines=priced,
        total=total,
        original_total=original_total,
        total_savings=original_total - total,
    )
