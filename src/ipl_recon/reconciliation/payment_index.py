"""Recovery of the resident payment index encoded in a transfer amount."""

import math
from typing import Optional, Sequence

MIN_INDEX = 10
MAX_INDEX = 9999


def extract_payment_index(amount: float, base_amount: int) -> Optional[int]:
    """Extract the payment index for one base due amount.

    Residents append a short code to the dues they transfer, so 250087 paid
    against a 250000 tariff carries index 87. Multi-period transfers keep
    the code in the remainder (500087 still yields 87).

    Args:
        amount: Transaction amount.
        base_amount: Monthly due amount.

    Returns:
        The index in [10, 9999], or None if the amount carries no index.
    """
    if base_amount <= 0 or amount is None or not math.isfinite(amount) or amount <= 0:
        return None

    periods = math.floor(amount / base_amount)
    if periods < 1:
        return None

    remainder = amount - periods * base_amount
    if remainder != int(remainder):
        return None

    remainder = int(remainder)
    if MIN_INDEX <= remainder <= MAX_INDEX:
        return remainder
    return None


def find_payment_index(amount: float, base_amounts: Sequence[int]) -> Optional[int]:
    """Return the first valid index across base amounts in configured order."""
    for base_amount in base_amounts:
        index = extract_payment_index(amount, base_amount)
        if index is not None:
            return index
    return None
