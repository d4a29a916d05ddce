"""
Value formatting for rendered documents: amounts, quantities, rates, dates.

Currency styles are keyed by ISO code. Codes without a built-in style use
the configuration's currency and number settings. Any value that cannot be
read as a number or a date raises RenderError.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, NamedTuple

from core.exceptions import RenderError
from core.rendering.config import RenderConfig


class CurrencyStyle(NamedTuple):
    symbol: str
    position: str
    decimal_separator: str
    thousands_separator: str


CURRENCY_STYLES: dict[str, CurrencyStyle] = {
    "USD": CurrencyStyle("$", "before", ".", ","),
    "CAD": CurrencyStyle("CAD$", "before", ".", ","),
    "EUR": CurrencyStyle("€", "after", ",", " "),
    "CDF": CurrencyStyle("FC", "after", ",", " "),
}

_DATE_TOKENS = re.compile(r"YYYY|YY|MM|DD")


def currency_style(devise: str | None, config: RenderConfig) -> CurrencyStyle:
    """Built-in style for devise, or the configured fallback."""
    style = CURRENCY_STYLES.get((devise or "").upper())
    if style is not None:
        return style

    currency = config.formatting.currency
    numbers = config.formatting.numbers
    return CurrencyStyle(
        currency.symbol,
        currency.position,
        numbers.decimal_separator,
        numbers.thousands_separator,
    )


def to_decimal(value: Any, field: str) -> Decimal:
    """
    Read value as a finite Decimal.

    Raises:
        RenderError: If value is missing, boolean, or not a finite number
    """
    if value is None or isinstance(value, bool):
        raise RenderError(f"{field} is not numeric: {value!r}")
    if isinstance(value, Decimal):
        number = value
    else:
        try:
            number = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            raise RenderError(f"{field} is not numeric: {value!r}") from e

    if not number.is_finite():
        raise RenderError(f"{field} is not a finite number: {value!r}")
    return number


def format_number(
    value: Decimal,
    decimals: int = 2,
    decimal_separator: str = ",",
    thousands_separator: str = " ",
) -> str:
    """Fixed-point rendering with grouped thousands, rounded half up."""
    exponent = Decimal(1).scaleb(-decimals)
    rounded = value.quantize(exponent, rounding=ROUND_HALF_UP)

    sign = "-" if rounded < 0 else ""
    whole, _, fraction = f"{abs(rounded):f}".partition(".")

    groups = []
    while len(whole) > 3:
        groups.insert(0, whole[-3:])
        whole = whole[:-3]
    groups.insert(0, whole)

    text = thousands_separator.join(groups)
    if decimals:
        text = f"{text}{decimal_separator}{fraction}"
    return f"{sign}{text}"


def format_currency(value: Any, devise: str | None, config: RenderConfig, field: str = "amount") -> str:
    """
    Amount with the currency symbol on the side its style puts it.

        format_currency(Decimal("1530"), "USD", config)  -> "$1,530.00"
        format_currency(Decimal("1530"), "EUR", config)  -> "1 530,00 €"
    """
    amount = to_decimal(value, field)
    style = currency_style(devise, config)
    decimals = config.formatting.currency.decimals
    text = format_number(amount, decimals, style.decimal_separator, style.thousands_separator)

    if style.position == "before":
        return f"{style.symbol}{text}"
    return f"{text} {style.symbol}"


def format_quantity(value: Any, decimal_separator: str = ",", field: str = "quantity") -> str:
    """Quantity without trailing zeros: 12.500 -> "12,5", 3.00 -> "3"."""
    quantity = to_decimal(value, field)
    text = f"{quantity.normalize():f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text.replace(".", decimal_separator)


def format_percent(value: Any, decimal_separator: str = ",", field: str = "rate") -> str:
    """Rate in percent with a trailing %: 20.00 -> "20%", 5.5 -> "5,5%"."""
    return f"{format_quantity(value, decimal_separator, field)}%"


def parse_date(value: Any, field: str = "date") -> date:
    """
    Read value as a date. Accepts date, datetime or an ISO 8601 string.

    Raises:
        RenderError: If value cannot be read as a date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError as e:
            raise RenderError(f"{field} is not a date: {value!r}") from e
    raise RenderError(f"{field} is not a date: {value!r}")


def format_date(value: Any, pattern: str = "DD/MM/YYYY", field: str = "date") -> str:
    """
    Date rendered with the tokens YYYY, YY, MM and DD. None renders empty.

        format_date(date(2024, 3, 5), "DD/MM/YYYY") -> "05/03/2024"
    """
    if value is None:
        return ""

    day = parse_date(value, field)
    tokens = {
        "YYYY": f"{day.year:04d}",
        "YY": f"{day.year % 100:02d}",
        "MM": f"{day.month:02d}",
        "DD": f"{day.day:02d}",
    }
    return _DATE_TOKENS.sub(lambda match: tokens[match.group(0)], pattern)
