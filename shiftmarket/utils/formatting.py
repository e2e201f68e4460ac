"""Display formatters for prices and satoshi amounts."""

from decimal import Decimal

from babel.numbers import format_currency, format_decimal


def format_price(amount: Decimal | float | int | str, currency: str) -> str:
    """Format a listing price for display.

    GBP amounts use en-GB currency formatting; any other currency is shown as
    the plain amount followed by its code.

    Examples:
        >>> format_price(Decimal("1234.5"), "GBP")
        '£1,234.50'
        >>> format_price(Decimal("20"), "EUR")
        '20 EUR'
    """
    if isinstance(amount, str):
        amount = Decimal(amount)

    if currency == "GBP":
        return format_currency(amount, "GBP", locale="en_GB")
    return f"{amount} {currency}"


def format_sats(sats: int) -> str:
    """Format a satoshi amount, e.g. ``format_sats(10200) == '10,200 sats'``."""
    return f"{format_decimal(sats, locale='en_GB')} sats"
