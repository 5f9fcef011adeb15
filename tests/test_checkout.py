"""Tests for committed checkout: stock reservation, redemption counting and compensation."""
import logging
import threading
from decimal import Decimal

import pytest

from storefront_pricing import checkout as checkout_module
from storefront_pricing.checkout import CheckoutOrchestrator
from storefront_pricing.errors import InsufficientStock
from storefront_pricing.models import CartItemRequest, CheckoutRequest
from storefront_pricing.services import RedemptionService

# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def _order_logs(store, order_id: int) -> list[str]:
    return [line for line in store.logs if f"[order={order_id}]" in line]


def test_deal_checkout_redeems_once(store, now):
    """Deal line for two units consumes one redemption and two units of stock."""
    logging.info("\n=== TEST: Deal checkout ===")

    result = CheckoutOrchestrator(store).checkout(
        CheckoutRequest(order_id=1, items=[CartItemRequest(2, deal_id="DEAL30")]), now
    )

    assert result.success is True
    assert result.totals.total == Decimal("70")
    assert result.totals.original_total == Decimal("100")
    assert result.totals.total_savings == Decimal("30")

    assert store.products["HEADPHONES"].stock == 8
    assert store.current_uses("DEAL30") == 1

    order = store.orders[0]
    assert order.order_id == 1
    assert order.total == Decimal("70.00")
    assert order.promotion_ids == ["DEAL30"]

    logs = _order_logs(store, 1)
    assert any("STEP ReserveStock OK" in l for l in logs)
    assert any("STEP RedeemPromotion OK" in l for l in logs)
    assert any("STEP FinalizeOrder OK" in l for l in logs)
    assert any("CHECKOUT OK" in l for l in logs)


def test_same_deal_on_two_lines_is_redeemed_once(store, now):
    """One committed order counts a promotion once, however many lines use it."""
    items = [CartItemRequest(1, deal_id="DEAL30"), CartItemRequest(1, deal_id="DEAL30")]
    result = CheckoutOrchestrator(store).checkout(CheckoutRequest(order_id=2, items=items), now)

    assert result.success is True
    assert store.current_uses("DEAL30") == 1
    assert store.products["HEADPHONES"].stock == 8


def test_bundle_checkout_reserves_every_item(store, now):
    result = CheckoutOrchestrator(store).checkout(
        CheckoutRequest(order_id=3, items=[CartItemRequest(2, bundle_id="KIT")]), now
    )

    assert result.success is True
    assert result.totals.total == Decimal("56")
    assert store.products["CASE"].stock == 6   # 10 - 2*2
    assert store.products["CABLE"].stock == 4  # 10 - 3*2
    assert store.current_uses("KIT") == 1


def test_plain_checkout_skips_redemption(store, now):
    result = CheckoutOrchestrator(store).checkout(
        CheckoutRequest(order_id=4, items=[CartItemRequest(1, product_id="CABLE")]), now
    )

    assert result.success is True
    logs = _order_logs(store, 4)
    assert any("STEP RedeemPromotion" in l for l in logs) is False
    assert any("STEP ReserveStock OK" in l for l in logs)
    assert store.orders[0].promotion_ids == []


def test_expired_deal_is_charged_full_price_and_not_counted(store, now):
    result = CheckoutOrchestrator(store).checkout(
        CheckoutRequest(order_id=5, items=[CartItemRequest(1, deal_id="EXPIRED")]), now
    )

    assert result.success is True
    assert result.totals.total == Decimal("10.00")
    assert store.current_uses("EXPIRED") == 0


def test_insufficient_stock_rejected_before_commit(store, now):
    """Stock shortfall is raised from valuation; nothing is reserved or recorded."""
    logging.info("\n=== TEST: Insufficient stock ===")

    with pytest.raises(InsufficientStock):
        CheckoutOrchestrator(store).checkout(
            CheckoutRequest(order_id=6, items=[CartItemRequest(5, product_id="LOWSTOCK")]), now
        )

    assert store.products["LOWSTOCK"].stock == 3
    assert store.orders == []
    assert any("STEP" in l for l in _order_logs(store, 6)) is False

    # the order id is free again once the shortfall is fixed
    store.adjust_stock("LOWSTOCK", 2)
    result = CheckoutOrchestrator(store).checkout(
        CheckoutRequest(order_id=6, items=[CartItemRequest(5, product_id="LOWSTOCK")]), now
    )
    assert result.success is True
    assert store.products["LOWSTOCK"].stock == 0


def test_artificial_failure_at_finalize_compensates_everything(store, now):
    """Late failure releases stock and redemptions taken by earlier steps."""
    logging.info("\n=== TEST: Artificial failure at FinalizeOrder ===")

    result = CheckoutOrchestrator(store).checkout(
        CheckoutRequest(order_id=7, items=[CartItemRequest(1, deal_id="DEAL30"), CartItemRequest(1, bundle_id="KIT")]),
        now,
        fail_at_step="FinalizeOrder",
    )

    assert result.success is False
    assert "Artificial failure" in result.error
    assert store.products["HEADPHONES"].stock == 10
    assert store.products["CASE"].stock == 10
    assert store.products["CABLE"].stock == 10
    assert store.current_uses("DEAL30") == 0
    assert store.current_uses("KIT") == 0
    assert store.orders == []

    logs = _order_logs(store, 7)
    assert any("COMPENSATE RedeemPromotion OK" in l for l in logs)
    assert any("COMPENSATE ReserveStock OK" in l for l in logs)
    assert any("COMPENSATE FinalizeOrder" in l for l in logs) is False


def test_redemption_race_lost_compensates_and_reprices(store, now, monkeypatch):
    """
    Another checkout takes the last use of LIMITED between our valuation and commit.
    The order is rolled back and the cart is repriced without the promotion.
    """
    logging.info("\n=== TEST: Redemption race lost ===")

    real_valuate = checkout_module.valuate_cart

    def valuate_then_competitor_commits(lines, at):
        totals = real_valuate(lines, at)
        store.increment_redemption("LIMITED")
        return totals

    monkeypatch.setattr(checkout_module, "valuate_cart", valuate_then_competitor_commits)

    result = CheckoutOrchestrator(store).checkout(
        CheckoutRequest(order_id=8, items=[CartItemRequest(1, deal_id="LIMITED")]), now
    )

    assert result.success is False
    assert result.race_lost == ["LIMITED"]
    assert result.totals.total == Decimal("5.00")
    assert result.repriced is not None
    assert result.repriced.total == Decimal("10.00")
    assert result.repriced.lines[0].is_eligible is False

    # only the competitor's redemption remains
    assert store.current_uses("LIMITED") == 1
    assert store.products["CASE"].stock == 10
    assert store.orders == []

    logs = _order_logs(store, 8)
    assert any("COMPENSATE ReserveStock OK" in l for l in logs)
    assert any("repriced" in l for l in logs)


def test_capped_promotion_is_not_applied_after_last_use(store, now):
    orchestrator = CheckoutOrchestrator(store)

    first = orchestrator.checkout(CheckoutRequest(order_id=9, items=[CartItemRequest(1, deal_id="LIMITED")]), now)
    second = orchestrator.checkout(CheckoutRequest(order_id=10, items=[CartItemRequest(1, deal_id="LIMITED")]), now)

    assert first.success is True
    assert first.totals.total == Decimal("5.00")
    assert second.success is True
    assert second.totals.total == Decimal("10.00")
    assert store.current_uses("LIMITED") == 1
    assert store.products["CASE"].stock == 8


def test_preview_has_no_side_effects(store, now):
    totals = CheckoutOrchestrator(store).preview([CartItemRequest(2, deal_id="DEAL30")], now)

    assert totals.total == Decimal("70")
    assert store.current_uses("DEAL30") == 0
    assert store.products["HEADPHONES"].stock == 10
    assert store.orders == []
    assert store.logs == []


def test_order_cannot_be_committed_twice(store, now):
    orchestrator = CheckoutOrchestrator(store)
    req = CheckoutRequest(order_id=11, items=[CartItemRequest(1, deal_id="DEAL30")])
    orchestrator.checkout(req, now)

    with pytest.raises(ValueError):
        orchestrator.checkout(req, now)
    assert store.current_uses("DEAL30") == 1


def test_empty_cart_rejected(store, now):
    with pytest.raises(ValueError):
        CheckoutOrchestrator(store).checkout(CheckoutRequest(order_id=12, items=[]), now)


def test_concurrent_checkouts_of_one_order_commit_once(store, now, monkeypatch):
    """A second checkout of an order that is still in flight is rejected, not committed twice."""
    logging.info("\n=== TEST: Concurrent checkout of one order ===")

    real_valuate = checkout_module.valuate_cart
    entered = threading.Event()
    proceed = threading.Event()

    def slow_valuate(lines, at):
        entered.set()
        proceed.wait(timeout=5)
        return real_valuate(lines, at)

    monkeypatch.setattr(checkout_module, "valuate_cart", slow_valuate)

    orchestrator = CheckoutOrchestrator(store)
    req = CheckoutRequest(order_id=77, items=[CartItemRequest(1, deal_id="DEAL30")])
    outcomes = []

    def run():
        try:
            outcomes.append(orchestrator.checkout(req, now).success)
        except ValueError:
            outcomes.append("rejected")

    first = threading.Thread(target=run)
    first.start()
    assert entered.wait(timeout=5)

    second = threading.Thread(target=run)
    second.start()
    second.join(timeout=5)

    proceed.set()
    first.join(timeout=5)

    assert outcomes == ["rejected", True]
    assert store.current_uses("DEAL30") == 1
    assert store.products["HEADPHONES"].stock == 9
    assert [o.order_id for o in store.orders] == [77]


def test_failed_order_can_be_retried_with_same_id(store, now):
    orchestrator = CheckoutOrchestrator(store)
    req = CheckoutRequest(order_id=15, items=[CartItemRequest(1, deal_id="DEAL30")])

    failed = orchestrator.checkout(req, now, fail_at_step="FinalizeOrder")
    retried = orchestrator.checkout(req, now)

    assert failed.success is False
    assert retried.success is True
    assert store.current_uses("DEAL30") == 1


def test_compensation_continues_past_a_failing_step(store, now, monkeypatch):
    """A compensation that blows up is logged; the earlier steps are still undone."""
    logging.info("\n=== TEST: Failing compensation ===")

    def broken_release(self, order_id, promotion_id):
        raise KeyError(promotion_id)

    monkeypatch.setattr(RedemptionService, "release", broken_release)

    result = CheckoutOrchestrator(store).checkout(
        CheckoutRequest(order_id=13, items=[CartItemRequest(1, deal_id="DEAL30")]),
        now,
        fail_at_step="FinalizeOrder",
    )

    assert result.success is False
    assert store.products["HEADPHONES"].stock == 10
    # the broken release could not give the use back
    assert store.current_uses("DEAL30") == 1

    logs = _order_logs(store, 13)
    assert any("COMPENSATION FAILED at RedeemPromotion" in l for l in logs)
    assert any("COMPENSATE ReserveStock OK" in l for l in logs)
    assert any("CHECKOUT END (failed)" in l for l in logs)


def test_degraded_bundle_checkout(store, now):
    """A bundle whose product was deleted still sells, discounted on the remaining items."""
    del store.products["CABLE"]

    result = CheckoutOrchestrator(store).checkout(
        CheckoutRequest(order_id=14, items=[CartItemRequest(1, bundle_id="KIT")]), now
    )

    assert result.success is True
    line = result.totals.lines[0]
    assert line.degraded is True
    assert line.original_price == Decimal("20")
    assert line.discounted_price == Decimal("16")

    assert store.products["CASE"].stock == 8
    assert store.current_uses("KIT") == 1
    assert store.orders[0].total == Decimal("16.00")
    assert store.orders[0].promotion_ids == ["KIT"]

    logs = _order_logs(store, 14)
    assert any("stock reserved: CASE" in l for l in logs)
    assert any("CABLE" in l for l in logs) is False
