from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Set, Tuple

from storefront_pricing.errors import DuplicatePromotion, UnknownPromotion, UnresolvableLineItem
from storefront_pricing.models import (
    Bundle,
    BundleItem,
    Deal,
    DiscountSpec,
    OrderRecord,
    Product,
    PromotionWindow,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _DealRow:
    id: str
    product_id: str
    discount: DiscountSpec
    window: PromotionWindow
    title: str = ""


@dataclass(slots=True)
class _BundleRow:
    id: str
    discount: DiscountSpec
    window: PromotionWindow
    items: List[Tuple[str, int]] = field(default_factory=list)
    title: str = ""


class Store:
    """
    In-memory catalog and promotion storage.

    Readers only ever get deep-copied snapshots from ``fetch_*``; the only
    in-place mutations are the conditional redemption counter update and
    stock adjustments, both done under one lock.
    """

    def __init__(self) -> None:
        self.products: Dict[str, Product] = {}
        self.deals: Dict[str, _DealRow] = {}
        self.bundles: Dict[str, _BundleRow] = {}
        self.orders: List[OrderRecord] = []
        self._claimed_orders: Set[int] = set()

        self.logs: List[str] = []
        self._lock = threading.Lock()

    def log(self, message: str) -> None:
        self.logs.append(message)
        logger.info(message)

    # Seed helpers (only the id guard, see CatalogService for the rest)
    def add_product(self, product_id: str, price: Decimal, stock: int, name: str = "") -> None:
        self.products[product_id] = Product(id=product_id, price=price, stock=stock, name=name)

    def add_deal(
        self, deal_id: str, product_id: str, discount: DiscountSpec, window: PromotionWindow, title: str = ""
    ) -> None:
        with self._lock:
            self._require_new_promotion(deal_id)
            self.deals[deal_id] = _DealRow(id=deal_id, product_id=product_id, discount=discount, window=window, title=title)

    def add_bundle(
        self,
        bundle_id: str,
        items: List[Tuple[str, int]],
        discount: DiscountSpec,
        window: PromotionWindow,
        title: str = "",
    ) -> None:
        with self._lock:
            self._require_new_promotion(bundle_id)
            self.bundles[bundle_id] = _BundleRow(id=bundle_id, discount=discount, window=window, items=list(items), title=title)

    def _require_new_promotion(self, promotion_id: str) -> None:
        # one counter per id, so deals and bundles must not share ids
        if promotion_id in self.deals or promotion_id in self.bundles:
            raise DuplicatePromotion(f"Promotion {promotion_id} already exists")

    # Reads
    def fetch_product(self, product_id: str) -> Product:
        product = self.products.get(product_id)
        if product is None:
            raise UnresolvableLineItem(f"Product {product_id} not found")
        return copy.deepcopy(product)

    def fetch_deal(self, deal_id: str) -> Deal:
        row = self.deals.get(deal_id)
        if row is None:
            raise UnknownPromotion(f"Deal {deal_id} not found")
        return Deal(
            id=row.id,
            discount=copy.deepcopy(row.discount),
            window=copy.deepcopy(row.window),
            product=self.fetch_product(row.product_id),
            title=row.title,
        )

    def fetch_bundle(self, bundle_id: str) -> Bundle:
        row = self.bundles.get(bundle_id)
        if row is None:
            raise UnknownPromotion(f"Bundle {bundle_id} not found")

        items: List[BundleItem] = []
        for product_id, qty in row.items:
            product: Optional[Product]
            try:
                product = self.fetch_product(product_id)
            except UnresolvableLineItem:
                logger.warning("bundle %s references missing product %s", bundle_id, product_id)
                product = None
            items.append(BundleItem(product_id=product_id, quantity=qty, product=product))

        return Bundle(
            id=row.id,
            discount=copy.deepcopy(row.discount),
            window=copy.deepcopy(row.window),
            items=items,
            title=row.title,
        )

    def deals_for_product(self, product_id: str) -> List[Deal]:
        """Deals bound to ``product_id`` in creation order."""
        return [self.fetch_deal(row.id) for row in self.deals.values() if row.product_id == product_id]

    def _window(self, promotion_id: str) -> PromotionWindow:
        row = self.deals.get(promotion_id) or self.bundles.get(promotion_id)
        if row is None:
            raise UnknownPromotion(f"Promotion {promotion_id} not found")
        return row.window

    # Writes
    def increment_redemption(self, promotion_id: str) -> bool:
        """Increment only if still below the cap. False means already at max."""
        with self._lock:
            window = self._window(promotion_id)
            if window.max_uses is not None and window.current_uses >= window.max_uses:
                return False
            window.current_uses += 1
            return True

    def release_redemption(self, promotion_id: str) -> None:
        with self._lock:
            window = self._window(promotion_id)
            if window.current_uses > 0:
                window.current_uses -= 1

    def adjust_stock(self, product_id: str, delta: int) -> bool:
        """Apply ``delta`` to stock unless it would go negative."""
        with self._lock:
            product = self.products.get(product_id)
            if product is None:
                raise UnresolvableLineItem(f"Product {product_id} not found")
            if product.stock + delta < 0:
                return False
            product.stock += delta
            return True

    def current_uses(self, promotion_id: str) -> int:
        return self._window(promotion_id).current_uses

    def claim_order(self, order_id: int) -> bool:
        """Reserve ``order_id`` for one checkout. False if it is committed or in flight."""
        with self._lock:
            if order_id in self._claimed_orders:
                return False
            self._claimed_orders.add(order_id)
            return True

    def release_order(self, order_id: int) -> None:
        with self._lock:
            self._claimed_orders.discard(order_id)
