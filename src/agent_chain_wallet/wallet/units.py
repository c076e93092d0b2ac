"""Conversions between decimal strings and integer base units."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, localcontext


def parse_amount(amount: str | Decimal) -> Decimal:
    """Parse a strictly positive, finite decimal amount.

    Raises ``ValueError`` for anything else.
    """
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"'{amount}' is not a decimal number") from exc
    if not value.is_finite():
        raise ValueError(f"'{amount}' is not a finite number")
    if value <= 0:
        raise ValueError(f"Amount must be greater than zero, got '{amount}'")
    return value


def to_base_units(amount: str | Decimal, decimals: int) -> int:
    """Convert a decimal amount into integer base units (e.g. ether to wei).

    Raises ``ValueError`` when the amount has more fractional digits than
    *decimals* allows.
    """
    value = parse_amount(amount)
    with localcontext() as ctx:
        ctx.prec = 80
        scaled = value.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(f"'{amount}' has more than {decimals} decimal places")
        return int(scaled)


def format_units(value: int, decimals: int) -> str:
    """Format integer base units as a plain decimal string (``"1.5"``, ``"0"``)."""
    with localcontext() as ctx:
        ctx.prec = 80
        scaled = Decimal(value).scaleb(-decimals).normalize()
    return format(scaled, "f")
