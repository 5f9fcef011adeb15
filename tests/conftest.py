"""Pytest fixtures: a fixed clock and a seeded in-memory catalog."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from helpers import NOW, fixed, pct, window
from storefront_pricing.models import PromotionWindow
from storefront_pricing.store import Store


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store(now) -> Store:
    store = Store()

    store.add_product("HEADPHONES", price=Decimal("50.00"), stock=10)
    store.add_product("CASE", price=Decimal("10.00"), stock=10)
    store.add_product("CABLE", price=Decimal("5.00"), stock=10)
    store.add_product("LOWSTOCK", price=Decimal("20.00"), stock=3)

    store.add_deal("DEAL30", "HEADPHONES", pct("30"), window(now, max_uses=100))
    store.add_deal("DEAL20OFF", "HEADPHONES", fixed("20"), window(now))
    store.add_deal("LIMITED", "CASE", pct("50"), window(now, max_uses=1))
    store.add_deal("EXPIRED", "CASE", pct("10"), PromotionWindow(start=now - timedelta(days=10), end=now - timedelta(days=1)))

    store.add_bundle("KIT", [("CASE", 2), ("CABLE", 3)], pct("20"), window(now, max_uses=5))

    return store
