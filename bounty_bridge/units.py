"""Fixed-point conversion between wei and 18-decimal display amounts."""

from decimal import Decimal, InvalidOperation, localcontext
from typing import Union

DECIMALS = 18
WEI_PER_ETHER = 10**DECIMALS

Amount = Union[str, int, Decimal]


def format_ether(wei: int) -> str:
    """Format a wei integer as an exact decimal string.

    Always keeps at least one fractional digit, so 3 ether is "3.0" and
    zero is "0.0". Integer arithmetic only, nothing is rounded.
    """
    wei = int(wei)
    sign = "-" if wei < 0 else ""
    whole, fraction = divmod(abs(wei), WEI_PER_ETHER)
    fraction_digits = str(fraction).rjust(DECIMALS, "0").rstrip("0") or "0"
    return f"{sign}{whole}.{fraction_digits}"


def to_wei(amount: Amount) -> int:
    """Parse a positive ether amount into wei.

    Raises:
        ValueError: If the amount is not a finite positive number or has
            more than 18 fractional digits.
    """
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid amount: {amount!r}")

    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    if value <= 0:
        raise ValueError("Amount must be positive")

    with localcontext() as ctx:
        ctx.prec = 80
        scaled = value.scaleb(DECIMALS)
        if scaled != scaled.to_integral_value():
            raise ValueError(f"Amount {amount!r} has more than {DECIMALS} decimal places")
        return int(scaled)
