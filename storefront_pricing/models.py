from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Dict, List, Optional, Union

MONEY_QUANT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    """Round to the currency minor unit. Only used when presenting amounts."""
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


class DiscountKind(Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class LineKind(Enum):
    PLAIN = "plain"
    DEAL = "deal"
    BUNDLE = "bundle"


@dataclass(slots=True)
class DiscountSpec:
    kind: DiscountKind
    value: Decimal


@dataclass(slots=True)
class PromotionWindow:
    start: datetime
    end: datetime
    is_active: bool = True
    max_uses: Optional[int] = None
    current_uses: int = 0


@dataclass(slots=True)
class Product:
    id: str
    price: Decimal
    stock: int
    name: str = ""


@dataclass(slots=True)
class Deal:
    id: str
    discount: DiscountSpec
    window: PromotionWindow
    product: Product
    title: str = ""


@dataclass(slots=True)
class BundleItem:
    product_id: str
    quantity: int
    # None when the product could not be resolved at fetch time
    product: Optional[Product] = None


@dataclass(slots=True)
class Bundle:
    id: str
    discount: DiscountSpec
    window: PromotionWindow
    items: List[BundleItem] = field(default_factory=list)
    title: str = ""


@dataclass(slots=True)
class PlainLine:
    product: Product
    quantity: int


@dataclass(slots=True)
class DealLine:
    deal: Deal
    quantity: int


@dataclass(slots=True)
class BundleLine:
    bundle: Bundle
    quantity: int


CartLine = Union[PlainLine, DealLine, BundleLine]


@dataclass(slots=True)
class PricedLine:
    """
    Per-unit pricing of one cart line.

    Computed on every request from the snapshots passed in; never stored.
    """

    kind: LineKind
    quantity: int
    original_price: Decimal
    discounted_price: Decimal
    discount_amount: Decimal
    is_eligible: bool
    promotion_id: Optional[str] = None
    degraded: bool = False

    @property
    def line_total(self) -> Decimal:
        return self.discounted_price * self.quantity

    @property
    def original_line_total(self) -> Decimal:
        return self.original_price * self.quantity


@dataclass(slots=True)
class CartTotals:
    lines: List[PricedLine]
    total: Decimal
    original_total: Decimal
    total_savings: Decimal

    def promotion_ids(self) -> List[str]:
        """Promotions actually applied, once each, in cart order."""
        seen: List[str] = []
        for line in self.lines:
            if line.is_eligible and line.promotion_id and line.promotion_id not in seen:
                seen.append(line.promotion_id)
        return seen

    def as_dict(self) -> Dict[str, object]:
        return {
            "items": [
                {
                    "kind": line.kind.value,
                    "quantity": line.quantity,
                    "promotion_id": line.promotion_id,
                    "original_price": str(quantize_money(line.original_price)),
                    "discounted_price": str(quantize_money(line.discounted_price)),
                    "discount_amount": str(quantize_money(line.discount_amount)),
                    "line_total": str(quantize_money(line.line_total)),
                    "is_eligible": line.is_eligible,
                    "degraded": line.degraded,
                }
                for line in self.lines
            ],
            "total": str(quantize_money(self.total)),
            "original_total": str(quantize_money(self.original_total)),
            "total_savings": str(quantize_money(self.total_savings)),
        }


@dataclass(slots=True)
class CartItemRequest:
    """
    One persisted cart row.

    Exactly one of product_id / deal_id / bundle_id identifies what is in the cart.
    """

    quantity: int
    product_id: Optional[str] = None
    deal_id: Optional[str] = None
    bundle_id: Optional[str] = None


@dataclass(slots=True)
class CheckoutRequest:
    order_id: int
    items: List[CartItemRequest]


@dataclass(slots=True)
class OrderRecord:
    order_id: int
    total: Decimal
    original_total: Decimal
    total_savings: Decimal
    promotion_ids: List[str] = field(default_factory=list)
