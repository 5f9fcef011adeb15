from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from storefront_pricing.checkout import CheckoutOrchestrator
from storefront_pricing.models import CartItemRequest, CheckoutRequest
from storefront_pricing.offers import discount_label, format_time_remaining, promotion_status
from storefront_pricing.services import CatalogService
from storefront_pricing.store import Store


def seed(store: Store, now: datetime) -> None:
    catalog = CatalogService(store)
    catalog.create_product("HEADPHONES", price=Decimal("50.00"), stock=10, name="Headphones")
    catalog.create_product("CASE", price=Decimal("10.00"), stock=20, name="Carry case")
    catalog.create_product("CABLE", price=Decimal("5.00"), stock=30, name="Cable")

    start, end = now - timedelta(days=1), now + timedelta(days=2, hours=5)
    catalog.create_deal("DEAL30", "HEADPHONES", "percentage", Decimal("30"), start, end, max_uses=100, title="30% off headphones")
    catalog.create_deal("DEAL10OFF", "HEADPHONES", "fixed", Decimal("10"), start, end, title="$10 off headphones")
    catalog.create_bundle(
        "TRAVELKIT",
        [("CASE", 2), ("CABLE", 3)],
        "percentage",
        Decimal("20"),
        start,
        end,
        max_uses=5,
        title="Travel kit",
    )


def main() -> None:
    p = argparse.ArgumentParser(description="Price and check out one cart item against a demo catalog.")
    target = p.add_mutually_exclusive_group()
    target.add_argument("--product", type=str, default=None)
    target.add_argument("--deal", type=str, default=None)
    target.add_argument("--bundle", type=str, default=None)
    p.add_argument("--qty", type=int, default=1)
    p.add_argument("--order-id", type=int, default=1)
    p.add_argument("--now", type=datetime.fromisoformat, default=None, help="ISO timestamp used as the current time")
    p.add_argument("--preview", action="store_true", help="Only price the cart, do not commit")
    p.add_argument("--exhaust", type=str, default=None, help="Promotion id to push to its usage cap before checkout")
    p.add_argument("--fail-at", type=str, default=None, help="Step name to fail artificially (e.g. FinalizeOrder)")
    p.add_argument("--verbose", action="store_true")
    args = p.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(message)s")

    now = args.now or datetime.now(timezone.utc)
    store = Store()
    seed(store, now)

    if not (args.product or args.deal or args.bundle):
        args.deal = "DEAL30"
    item = CartItemRequest(quantity=args.qty, product_id=args.product, deal_id=args.deal, bundle_id=args.bundle)
    orchestrator = CheckoutOrchestrator(store)

    if args.preview:
        totals = orchestrator.preview([item], now)
        print(json.dumps(totals.as_dict(), indent=2))
        return

    if args.exhaust:
        row = store.deals.get(args.exhaust) or store.bundles[args.exhaust]
        if row.window.max_uses is not None:
            row.window.current_uses = row.window.max_uses

    result = orchestrator.checkout(CheckoutRequest(order_id=args.order_id, items=[item]), now, fail_at_step=args.fail_at)

    print("\n=== RESULT ===")
    print("success:", result.success)
    print("totals:", json.dumps(result.totals.as_dict(), indent=2))
    if result.error:
        print("error:", result.error)
    if result.repriced is not None:
        print("repriced:", json.dumps(result.repriced.as_dict(), indent=2))
    print("products:", store.products)
    for deal_id in store.deals:
        deal = store.fetch_deal(deal_id)
        print(
            f"deal {deal.id}: {discount_label(deal.discount)} "
            f"[{promotion_status(deal.window, now).value}] ends in {format_time_remaining(deal.window.end, now)} "
            f"uses={deal.window.current_uses}"
        )
    for bundle_id in store.bundles:
        bundle = store.fetch_bundle(bundle_id)
        print(f"bundle {bundle.id}: {discount_label(bundle.discount)} [{promotion_status(bundle.window, now).value}] uses={bundle.window.current_uses}")
    print("orders:", store.orders)


if __name__ == "__main__":
    main()
