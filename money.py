from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CURRENCY_SYMBOLS = {
    "INR": "₹",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "CAD": "C$",
    "AUD": "A$",
}
DEFAULT_CURRENCY_SYMBOL = CURRENCY_SYMBOLS["INR"]


def amount_to_cents(value: Union[str, int, float, Decimal]) -> int:
    """Convert a major-unit amount (``12.5``) to integer minor units (``1250``).

    Floats go through ``str`` first so ``0.1`` becomes exactly ten cents.
    """
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < 0:
        raise ValueError("Amount cannot be negative")
    return cents


def cents_to_amount(cents: int) -> float:
    return cents / 100


def currency_symbol(code: str) -> str:
    return CURRENCY_SYMBOLS.get(code.upper(), DEFAULT_CURRENCY_SYMBOL)
