from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from storefront_pricing.errors import PricingError, RedemptionRaceLost
from storefront_pricing.models import CartItemRequest, CartTotals, CheckoutRequest, OrderRecord, quantize_money
from storefront_pricing.pricing import valuate_cart
from storefront_pricing.services import InventoryService, RedemptionService, required_stock, resolve_lines
from storefront_pricing.store import Store


class CheckoutError(PricingError):
    pass


class Step(ABC):
    def __init__(self, store: Store, order_id: int):
        self.store = store
        self.order_id = order_id

    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def execute(self) -> None: ...

    @abstractmethod
    def compensate(self) -> None: ...

    def run(self) -> None:
        self.store.log(f"[order={self.order_id}] STEP {self.name()}")
        self.execute()
        self.store.log(f"[order={self.order_id}] STEP {self.name()} OK")

    def run_compensation(self) -> None:
        self.store.log(f"[order={self.order_id}] COMPENSATE {self.name()}")
        self.compensate()
        self.store.log(f"[order={self.order_id}] COMPENSATE {self.name()} OK")


class ReserveStock(Step):
    def __init__(self, store: Store, order_id: int, product_id: str, qty: int):
        super().__init__(store, order_id)
        self.product_id = product_id
        self.qty = qty
        self.service = InventoryService(store)

    def name(self) -> str:
        return "ReserveStock"

    def execute(self) -> None:
        self.service.reserve(self.order_id, self.product_id, self.qty)

    def compensate(self) -> None:
        self.service.release(self.order_id, self.product_id, self.qty)


class RedeemPromotion(Step):
    def __init__(self, store: Store, order_id: int, promotion_id: str):
        super().__init__(store, order_id)
        self.promotion_id = promotion_id
        self.service = RedemptionService(store)

    def name(self) -> str:
        return "RedeemPromotion"

    def execute(self) -> None:
        self.service.redeem(self.order_id, self.promotion_id)

    def compensate(self) -> None:
        self.service.release(self.order_id, self.promotion_id)


class FinalizeOrder(Step):
    def __init__(self, store: Store, order_id: int, totals: CartTotals):
        super().__init__(store, order_id)
        self.totals = totals

    def name(self) -> str:
        return "FinalizeOrder"

    def execute(self) -> None:
        self.store.orders.append(
            OrderRecord(
                order_id=self.order_id,
                total=quantize_money(self.totals.total),
                original_total=quantize_money(self.totals.original_total),
                total_savings=quantize_money(self.totals.total_savings),
                promotion_ids=self.totals.promotion_ids(),
            )
        )
        self.store.log(f"[order={self.order_id}] order finalized")

    def compensate(self) -> None:
        self.store.orders = [o for o in self.store.orders if o.order_id != self.order_id]


@dataclass(slots=True)
class CheckoutResult:
    success: bool
    order_id: int
    totals: CartTotals
    error: Optional[str] = None
    # promotions that hit their cap between valuation and commit
    race_lost: List[str] = field(default_factory=list)
    # pricing recomputed without them; the customer has to confirm it again
    repriced: Optional[CartTotals] = None


class CheckoutOrchestrator:
    """
    Commits a cart: reserve stock, redeem each applied promotion once, record the order.

    The order id is claimed first, so one order commits at most once even when
    checkouts race. Valuation and stock pre-checks raise straight to the caller
    and free the claim. Failures inside the commit steps are compensated in
    reverse order and reported in the result.
    """

    def __init__(self, store: Store):
        self.store = store

    def preview(self, items: Sequence[CartItemRequest], now: datetime) -> CartTotals:
        return valuate_cart(resolve_lines(self.store, items), now)

    def checkout(self, req: CheckoutRequest, now: datetime, fail_at_step: Optional[str] = None) -> CheckoutResult:
        self.store.log(f"[order={req.order_id}] CHECKOUT START items={len(req.items)}")

        if not req.items:
            raise ValueError("cart is empty")
        if not self.store.claim_order(req.order_id):
            raise ValueError(f"Order {req.order_id} already committed or in progress")

        try:
            lines = resolve_lines(self.store, req.items)
            totals = valuate_cart(lines, now)
        except Exception:
            self.store.release_order(req.order_id)
            raise
        self.store.log(
            f"[order={req.order_id}] amounts: original={quantize_money(totals.original_total)} "
            f"savings={quantize_money(totals.total_savings)} total={quantize_money(totals.total)}"
        )

        steps: List[Step] = []
        for product_id, qty in required_stock(lines).items():
            steps.append(ReserveStock(self.store, req.order_id, product_id, qty))
        for promotion_id in totals.promotion_ids():
            steps.append(RedeemPromotion(self.store, req.order_id, promotion_id))
        steps.append(FinalizeOrder(self.store, req.order_id, totals))

        completed: List[Step] = []
        try:
            for step in steps:
                if fail_at_step == step.name():
                    raise CheckoutError(f"Artificial failure at step {step.name()}")
                step.run()
                completed.append(step)

            self.store.log(f"[order={req.order_id}] CHECKOUT OK")
            return CheckoutResult(success=True, order_id=req.order_id, totals=totals)
        except Exception as e:
            self.store.log(f"[order={req.order_id}] CHECKOUT FAILED: {e}")
            for step in reversed(completed):
                try:
                    step.run_compensation()
                except Exception as comp_exc:
                    self.store.log(f"[order={req.order_id}] COMPENSATION FAILED at {step.name()}: {comp_exc}")
            self.store.release_order(req.order_id)
            self.store.log(f"[order={req.order_id}] CHECKOUT END (failed)")
            if not isinstance(e, PricingError):
                raise

            result = CheckoutResult(success=False, order_id=req.order_id, totals=totals, error=str(e))
            if isinstance(e, RedemptionRaceLost):
                result.race_lost.append(e.promotion_id)
                result.repriced = self._reprice(req, now)
            return result

    def _reprice(self, req: CheckoutRequest, now: datetime) -> Optional[CartTotals]:
        try:
            repriced = self.preview(req.items, now)
        except PricingError as e:
            self.store.log(f"[order={req.order_id}] REPRICE FAILED: {e}")
            return None
        self.store.log(f"[order={req.order_id}] repriced: total={quantize_money(repriced.total)}")
        return repriced
