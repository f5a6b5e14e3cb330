"""Money helpers: decimal amounts, minor-unit conversion and VAT"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Mapping

CENT = Decimal("0.01")

PRICE_MODE_EXCLUDING_VAT = "HT"
PRICE_MODE_INCLUDING_VAT = "TTC"


def to_decimal(value) -> Decimal:
    """Convert int/float/str/Decimal/None to Decimal without float artifacts"""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value) -> int:
    """Major units to integer minor units, rounding half up"""
    return int((to_decimal(value) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents) -> Decimal:
    return (Decimal(int(cents or 0)) / 100).quantize(CENT)


def normalize_price_mode(price_mode) -> str:
    if price_mode and str(price_mode).upper() == PRICE_MODE_INCLUDING_VAT:
        return PRICE_MODE_INCLUDING_VAT
    return PRICE_MODE_EXCLUDING_VAT


def compute_tax(subtotal, shipping_cost, vat_rate, price_mode) -> Decimal:
    """VAT owed on top of the listed prices.

    In TTC mode prices already include VAT, so nothing is added. In HT mode
    VAT applies to goods and shipping alike.
    """
    if normalize_price_mode(price_mode) == PRICE_MODE_INCLUDING_VAT:
        return Decimal("0.00")
    return round_money((to_decimal(subtotal) + to_decimal(shipping_cost)) * to_decimal(vat_rate))


def lines_subtotal(lines: Iterable[Mapping]) -> Decimal:
    """Sum of price x quantity over stored order lines"""
    total = Decimal("0")
    for line in lines:
        total += to_decimal(line.get("price")) * int(line.get("quantity") or 0)
    return round_money(total)
