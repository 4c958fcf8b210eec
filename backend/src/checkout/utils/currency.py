"""Currency validation and minor-unit conversion for gateway calls."""
from decimal import ROUND_HALF_UP, Decimal

# ISO 4217 currency codes accepted at checkout
supported_currencies = [
    "INR",  # Indian Rupee
    "USD",  # United States Dollar
    "EUR",  # Euro
    "GBP",  # British Pound Sterling
    "AED",  # UAE Dirham
    "SGD",  # Singapore Dollar
    "AUD",  # Australian Dollar
    "CAD",  # Canadian Dollar
    "JPY",  # Japanese Yen
]

# Currencies that don't use decimal places (smallest unit is whole currency)
zero_decimal_currencies = [
    "JPY",  # Japanese Yen
    "KRW",  # South Korean Won
    "VND",  # Vietnamese Đồng
]

currency_symbols = {
    "INR": "₹",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "AED": "AED ",
    "SGD": "S$",
    "AUD": "A$",
    "CAD": "CA$",
    "JPY": "¥",
}


def validate_currency(currency: str) -> bool:
    """
    Validate if a currency code is supported.

    Example:
        >>> validate_currency("INR")
        True
        >>> validate_currency("XYZ")
        False
    """
    if not currency:
        return False

    return currency.upper() in supported_currencies


def get_currency_decimal_places(currency: str) -> int:
    """Number of decimal places for a currency (0 for JPY, 2 for INR)."""
    if currency.upper() in zero_decimal_currencies:
        return 0
    return 2


def convert_to_smallest_unit(amount: Decimal | int | float | str, currency: str) -> int:
    """
    Convert a major-unit amount to the smallest currency unit (paise, cents).

    Rounds half up so 499.995 becomes 50000 paise.

    Examples:
        >>> convert_to_smallest_unit(Decimal("500"), "INR")
        50000
        >>> convert_to_smallest_unit(1000, "JPY")
        1000
    """
    value = Decimal(str(amount))
    places = get_currency_decimal_places(currency)
    scaled = value * (Decimal(10) ** places)
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def convert_from_smallest_unit(amount: int, currency: str) -> Decimal:
    """Convert from the smallest currency unit back to major units."""
    places = get_currency_decimal_places(currency)
    return Decimal(amount) / (Decimal(10) ** places)


def format_amount(amount: Decimal | int | float, currency: str) -> str:
    """
    Format a major-unit amount for display.

    Examples:
        >>> format_amount(Decimal("500"), "INR")
        '₹500.00'
        >>> format_amount(1000, "JPY")
        '¥1,000'
    """
    currency_upper = currency.upper()
    symbol = currency_symbols.get(currency_upper, f"{currency_upper} ")
    places = get_currency_decimal_places(currency_upper)
    return f"{symbol}{Decimal(str(amount)):,.{places}f}"
