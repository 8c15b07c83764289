from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .errors import PriceMismatchError, ValidationError

CENT = Decimal("0.01")
# Claimed amounts must agree with the server's to the cent
PRICE_TOLERANCE = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def prices_match(calculated: Decimal, claimed: Decimal) -> bool:
    return abs(Decimal(calculated) - Decimal(claimed)) < PRICE_TOLERANCE


@dataclass
class PriceQuote:
    items_price: Decimal
    shipping_price: Decimal

    @property
    def total_price(self) -> Decimal:
        return self.items_price + self.shipping_price


def check_claimed_prices(
    quote: PriceQuote,
    items_price: Optional[Decimal],
    shipping_price: Optional[Decimal],
    total_price: Optional[Decimal],
) -> None:
    """Reject client-side totals that disagree with the server quote."""
    if items_price is None or shipping_price is None or total_price is None:
        raise ValidationError("Items, shipping and total prices are required")
    if not prices_match(quote.items_price, items_price):
        raise PriceMismatchError("Items price mismatch")
    if Decimal(str(shipping_price)) != quote.shipping_price:
        raise PriceMismatchError("Shipping price mismatch")
    if not prices_match(quote.total_price, total_price):
        raise PriceMismatchError("Total price mismatch")
