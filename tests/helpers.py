from datetime import datetime, timedelta, timezone
from decimal import Decimal

from storefront_pricing.models import DiscountKind, DiscountSpec, PromotionWindow

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def window(now: datetime = NOW, days: int = 1, **kwargs) -> PromotionWindow:
    return PromotionWindow(start=now - timedelta(days=days), end=now + timedelta(days=days), **kwargs)


def pct(value: str) -> DiscountSpec:
    return DiscountSpec(kind=DiscountKind.PERCENTAGE, value=Decimal(value))


def fixed(value: str) -> DiscountSpec:
    return DiscountSpec(kind=DiscountKind.FIXED, value=Decimal(value))
