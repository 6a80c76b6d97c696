"""Indian rupee formatting for finding messages."""
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

RUPEE_SYMBOL = "₹"
LAKH = 100_000
CRORE = 10_000_000

_ONE_DECIMAL = Decimal("0.1")


def group_indian_digits(digits: str) -> str:
    """Group a digit string the South-Asian way: ``1234567`` -> ``12,34,567``.

    The last three digits form one group; the rest are grouped in pairs.
    """
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    pairs = []
    while len(head) > 2:
        pairs.insert(0, head[-2:])
        head = head[:-2]
    if head:
        pairs.insert(0, head)
    return ",".join(pairs + [tail])


def _scaled(amount: int, unit: int) -> str:
    return str((Decimal(amount) / Decimal(unit)).quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP))


def format_inr(amount: Optional[Union[int, float, Decimal]]) -> str:
    """Format an amount for display, abbreviating lakhs and crores.

    Zero (or any falsy value) renders as a bare ``"0"``; everything else carries
    the rupee symbol. Amounts of a lakh or more are abbreviated to one decimal
    place, smaller amounts are digit grouped.

    Examples:
        >>> format_inr(56789)
        '₹56,789'
        >>> format_inr(150000)
        '₹1.5 L'
        >>> format_inr(12000000)
        '₹1.2 Cr'
    """
    if not amount:
        return "0"

    rounded = int(Decimal(str(amount)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    if rounded == 0:
        return "0"
    # Negative amounts keep the sign in front of the symbol
    if rounded < 0:
        return "-" + format_inr(-rounded)

    if rounded >= CRORE:
        return f"{RUPEE_SYMBOL}{_scaled(rounded, CRORE)} Cr"
    if rounded >= LAKH:
        return f"{RUPEE_SYMBOL}{_scaled(rounded, LAKH)} L"
    return RUPEE_SYMBOL + group_indian_digits(str(rounded))
