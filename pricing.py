"""
Derived money and rating fields.

These run explicitly in the services right before a document is written, so
stored records never depend on persistence hooks.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Mapping

TAX_RATE = 0.1

# Keyed by ShippingMethod values.
SHIPPING_RATES = {
    "Standard": 5.99,
    "Express": 15.99,
    "Overnight": 29.99,
    "Local Pickup": 0.0,
}

DELIVERY_DAYS = {
    "Standard": 5,
    "Express": 2,
    "Overnight": 1,
    "Local Pickup": 0,
}

DUPLICATE_SKU_MESSAGE = "SKUs must be unique across all variations"
NEGATIVE_PRICE_MESSAGE = "Total price (base price + additional price) cannot be negative"


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


def variation_price(base_price: float, variation: Any) -> float:
    return round(base_price + (_get(variation, "additional_price") or 0), 2)


def validate_variations(base_price: float, variations: Iterable[Any]) -> None:
    """Raise ValueError when variation SKUs repeat or a variation would cost less than zero."""
    variations = list(variations)
    skus = [_get(v, "sku") for v in variations]
    if len(skus) != len(set(skus)):
        raise ValueError(DUPLICATE_SKU_MESSAGE)
    for v in variations:
        if base_price + (_get(v, "additional_price") or 0) < 0:
            raise ValueError(NEGATIVE_PRICE_MESSAGE)


def line_total(items: Iterable[Any]) -> float:
    return round(sum(_get(i, "price") * _get(i, "quantity") for i in items), 2)


def cart_subtotal(items: Iterable[Any]) -> float:
    return line_total(items)


def order_total(items: Iterable[Any]) -> float:
    return line_total(items)


def average_rating(reviews: Iterable[Any]) -> Dict[str, float]:
    ratings = [_get(r, "rating") for r in reviews]
    if not ratings:
        return {"average": 0, "count": 0}
    return {"average": round(sum(ratings) / len(ratings), 1), "count": len(ratings)}


def _method_key(method: Any) -> str:
    return getattr(method, "value", method)


def shipping_cost(method: Any) -> float:
    return SHIPPING_RATES[_method_key(method)]


def tax(amount: float) -> float:
    return round(amount * TAX_RATE, 2)


def estimated_delivery(order_date: datetime, method: Any) -> datetime:
    return order_date + timedelta(days=DELIVERY_DAYS[_method_key(method)])


def format_money(amount: float) -> str:
    return f"${amount:.2f}"
