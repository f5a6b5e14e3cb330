"""Shipping cost calculation from a tenant's delivery schedule"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from storefront.core.errors import UnknownDeliveryMethod
from storefront.services.pricing import round_money, to_decimal


class DeliveryMethod(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"
    PICKUP = "pickup"


@dataclass(frozen=True)
class DeliveryOptions:
    """Per-tenant delivery schedule, amounts in major units"""
    standard_base: Decimal = Decimal("1.60")
    standard_per_item: Decimal = Decimal("0.80")
    express_base: Decimal = Decimal("3.00")
    express_per_item: Decimal = Decimal("1.60")
    pickup_cost: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class ShippingItem:
    quantity: int
    override_cost: Optional[Decimal] = None


DEFAULT_DELIVERY_OPTIONS = DeliveryOptions()

# Stored schedule keys (camelCase, as written by the shop admin) -> field names
_STORED_KEYS = {
    "standardBase": "standard_base",
    "standardPerItem": "standard_per_item",
    "expressBase": "express_base",
    "expressPerItem": "express_per_item",
    "pickupCost": "pickup_cost",
}


def normalize_delivery_options(raw: Optional[dict]) -> DeliveryOptions:
    """Build a DeliveryOptions from a stored schedule.

    Each amount falls back to the platform default when it is missing, not a
    number, or negative. Both camelCase and snake_case keys are accepted.
    """
    if not raw:
        return DEFAULT_DELIVERY_OPTIONS

    values = {}
    for stored_key, name in _STORED_KEYS.items():
        value = raw.get(stored_key, raw.get(name))
        if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
            continue
        try:
            amount = to_decimal(value)
        except ArithmeticError:
            continue
        if amount.is_finite() and amount >= 0:
            values[name] = amount

    return DeliveryOptions(**values)


def parse_delivery_method(method) -> DeliveryMethod:
    if isinstance(method, DeliveryMethod):
        return method
    try:
        return DeliveryMethod(str(method).strip().lower())
    except ValueError:
        raise UnknownDeliveryMethod(str(method))


def compute_shipping_cost(options: DeliveryOptions, method, items: Iterable[ShippingItem]) -> Decimal:
    """Shipping total for a cart.

    Pickup costs the flat pickup amount. Standard and express cost the base
    amount plus, per line, quantity times the line's override (when set and
    non-negative) or the method's per-item default. An override never
    replaces the base amount.
    """
    method = parse_delivery_method(method)
    if method is DeliveryMethod.PICKUP:
        return round_money(options.pickup_cost)

    if method is DeliveryMethod.EXPRESS:
        base, per_item = options.express_base, options.express_per_item
    else:
        base, per_item = options.standard_base, options.standard_per_item

    total = to_decimal(base)
    for item in items:
        unit_cost = per_item
        if item.override_cost is not None and to_decimal(item.override_cost) >= 0:
            unit_cost = to_decimal(item.override_cost)
        total += unit_cost * int(item.quantity)
    return round_money(total)
