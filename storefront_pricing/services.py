from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Sequence, Tuple

from storefront_pricing.errors import (
    InsufficientStock,
    InvalidDiscountSpec,
    InvalidPromotionWindow,
    InvalidQuantity,
    RedemptionRaceLost,
    UnknownProduct,
)
from storefront_pricing.models import (
    BundleLine,
    CartItemRequest,
    CartLine,
    DealLine,
    DiscountKind,
    DiscountSpec,
    PlainLine,
    PromotionWindow,
)
from storefront_pricing.store import Store


class CatalogService:
    """Validates catalog writes before they reach the store."""

    def __init__(self, store: Store):
        self.store = store

    @staticmethod
    def validate_discount(kind: DiscountKind | str, value: Decimal) -> DiscountSpec:
        try:
            kind = DiscountKind(kind)
        except ValueError:
            raise InvalidDiscountSpec(f"Unknown discount type: {kind!r}") from None
        if isinstance(value, (bool, float)) or not isinstance(value, (Decimal, int, str)):
            raise InvalidDiscountSpec(f"Discount value must be a Decimal, int or numeric string, got {value!r}")
        try:
            value = Decimal(value)
        except InvalidOperation:
            raise InvalidDiscountSpec(f"Discount value is not a number: {value!r}") from None
        if not value.is_finite():
            raise InvalidDiscountSpec(f"Discount value must be finite, got {value}")
        if value <= 0:
            raise InvalidDiscountSpec(f"Discount value must be > 0, got {value}")
        return DiscountSpec(kind=kind, value=value)

    @staticmethod
    def validate_window(start: datetime, end: datetime, is_active: bool, max_uses: Optional[int]) -> PromotionWindow:
        if end <= start:
            raise InvalidPromotionWindow(f"Promotion must end after it starts: start={start}, end={end}")
        if max_uses is not None and max_uses < 0:
            raise InvalidPromotionWindow(f"max_uses must be >= 0, got {max_uses}")
        return PromotionWindow(start=start, end=end, is_active=is_active, max_uses=max_uses, current_uses=0)

    def _require_product(self, product_id: str) -> None:
        if product_id not in self.store.products:
            raise UnknownProduct(f"Product {product_id} not found")

    def create_product(self, product_id: str, price: Decimal, stock: int, name: str = "") -> None:
        if price < 0:
            raise ValueError(f"Price must be >= 0, got {price}")
        if stock < 0:
            raise ValueError(f"Stock must be >= 0, got {stock}")
        self.store.add_product(product_id, price=price, stock=stock, name=name)
        self.store.log(f"product created: {product_id} price={price} stock={stock}")

    def create_deal(
        self,
        deal_id: str,
        product_id: str,
        kind: DiscountKind | str,
        value: Decimal,
        start: datetime,
        end: datetime,
        is_active: bool = True,
        max_uses: Optional[int] = None,
        title: str = "",
    ) -> None:
        discount = self.validate_discount(kind, value)
        window = self.validate_window(start, end, is_active, max_uses)
        self._require_product(product_id)
        self.store.add_deal(deal_id, product_id, discount, window, title=title)
        self.store.log(f"deal created: {deal_id} product={product_id} {discount.kind.value}={discount.value}")

    def create_bundle(
        self,
        bundle_id: str,
        items: Sequence[Tuple[str, int]],
        kind: DiscountKind | str,
        value: Decimal,
        start: datetime,
        end: datetime,
        is_active: bool = True,
        max_uses: Optional[int] = None,
        title: str = "",
    ) -> None:
        discount = self.validate_discount(kind, value)
        window = self.validate_window(start, end, is_active, max_uses)
        if not items:
            raise ValueError(f"Bundle {bundle_id} needs at least one item")
        for product_id, qty in items:
            if qty <= 0:
                raise InvalidQuantity(f"Bundle item {product_id} quantity must be > 0, got {qty}")
            self._require_product(product_id)
        self.store.add_bundle(bundle_id, list(items), discount, window, title=title)
        self.store.log(f"bundle created: {bundle_id} items={len(items)} {discount.kind.value}={discount.value}")


class RedemptionService:
    def __init__(self, store: Store):
        self.store = store

    def redeem(self, order_id: int, promotion_id: str) -> None:
        if not self.store.increment_redemption(promotion_id):
            raise RedemptionRaceLost(promotion_id)
        uses = self.store.current_uses(promotion_id)
        self.store.log(f"[order={order_id}] promotion redeemed: {promotion_id} (uses={uses})")

    def release(self, order_id: int, promotion_id: str) -> None:
        self.store.release_redemption(promotion_id)
        uses = self.store.current_uses(promotion_id)
        self.store.log(f"[order={order_id}] promotion released: {promotion_id} (uses={uses})")


class InventoryService:
    def __init__(self, store: Store):
        self.store = store

    def reserve(self, order_id: int, product_id: str, qty: int) -> None:
        if not self.store.adjust_stock(product_id, -qty):
            available = self.store.products[product_id].stock
            raise InsufficientStock(product_id, requested=qty, available=available)
        stock = self.store.products[product_id].stock
        self.store.log(f"[order={order_id}] stock reserved: {product_id} qty={qty} (stock={stock})")

    def release(self, order_id: int, product_id: str, qty: int) -> None:
        if product_id not in self.store.products:
            return
        self.store.adjust_stock(product_id, qty)
        stock = self.store.products[product_id].stock
        self.store.log(f"[order={order_id}] stock released: {product_id} qty={qty} (stock={stock})")


def resolve_line(store: Store, item: CartItemRequest) -> CartLine:
    ids = [i for i in (item.product_id, item.deal_id, item.bundle_id) if i is not None]
    if len(ids) != 1:
        raise ValueError(f"Cart item must reference exactly one of product/deal/bundle, got {item!r}")
    if item.bundle_id is not None:
        return BundleLine(bundle=store.fetch_bundle(item.bundle_id), quantity=item.quantity)
    if item.deal_id is not None:
        return DealLine(deal=store.fetch_deal(item.deal_id), quantity=item.quantity)
    return PlainLine(product=store.fetch_product(item.product_id), quantity=item.quantity)


def resolve_lines(store: Store, items: Sequence[CartItemRequest]) -> List[CartLine]:
    return [resolve_line(store, item) for item in items]


def required_stock(lines: Sequence[CartLine]) -> Dict[str, int]:
    """Units per product the cart needs, summed over all lines."""
    needed: Dict[str, int] = {}
    for line in lines:
        if isinstance(line, PlainLine):
            pairs = [(line.product.id, line.quantity)]
        elif isinstance(line, DealLine):
            pairs = [(line.deal.product.id, line.quantity)]
        elif isinstance(line, BundleLine):
            pairs = [(i.product_id, i.quantity * line.quantity) for i in line.bundle.items if i.product is not None]
        else:
            raise TypeError(f"Unsupported cart line: {type(line).__name__}")
        for product_id, qty in pairs:
            needed[product_id] = needed.get(product_id, 0) + qty
    return needed
