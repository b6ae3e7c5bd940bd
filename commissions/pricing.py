# commissions/pricing.py
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_money(value):
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount):
    """Decimal pounds -> integer pence, as Stripe expects."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(amount):
    return to_money(Decimal(amount) / 100)


def customer_price_for(artist_price, artist):
    """Artist price plus the platform margin for the artist's subscription tier."""
    artist_price = to_money(artist_price)
    margin = to_money(artist_price * artist.platform_margin_rate())
    return artist_price + margin
