"""Keyword categorization of statement transactions."""

import logging
from typing import Optional, Sequence, Tuple

from .models import Categorization, TransactionCategory, TransactionType

logger = logging.getLogger(__name__)

DEPOSIT_KEYWORDS = ("deposit", "renovasi", "dp", "uang muka")
ADMIN_KEYWORDS = ("admin", "biaya", "fee", "charge", "administrasi")
DUES_KEYWORDS = ("ipl", "kas", "bulanan", "bayar")
HOLIDAY_KEYWORDS = ("thr", "lebaran", "hari raya")
DONATION_KEYWORDS = ("sumbangan", "donasi", "infak")


def _mentions(text: str, keywords: Sequence[str]) -> bool:
    return any(keyword in text for keyword in keywords)


# (keywords, category, confidence, omit reason) in priority order
_RULES: Tuple[Tuple[Sequence[str], TransactionCategory, float, Optional[str]], ...] = (
    (DEPOSIT_KEYWORDS, TransactionCategory.DEPOSIT, 0.9,
     "Renovation deposit - not related to IPL payments"),
    (ADMIN_KEYWORDS, TransactionCategory.ADMIN_FEE, 0.9,
     "Administrative fee - not related to IPL payments"),
    (DUES_KEYWORDS, TransactionCategory.IPL, 0.8, None),
    (HOLIDAY_KEYWORDS, TransactionCategory.THR, 0.8, None),
    (DONATION_KEYWORDS, TransactionCategory.DONATION, 0.7, None),
)


def categorize_transaction(
    description: str,
    transaction_type: Optional[TransactionType] = None,
) -> Categorization:
    """Categorize a transaction and decide whether it should skip matching.

    Debits are money leaving the account and are never resident dues, so
    they are omitted before any keyword is looked at. Keyword checks are
    plain substring tests on the lowercased description.

    Args:
        description: Statement description.
        transaction_type: Credit/debit flag, if known.

    Returns:
        Categorization with category, confidence and omission decision.
    """
    if transaction_type == TransactionType.DEBIT:
        return Categorization(
            category=TransactionCategory.OTHER,
            confidence=0.9,
            should_omit=True,
            omit_reason="DB transaction - money out from account holder perspective",
        )

    text = (description or "").lower()
    for keywords, category, confidence, omit_reason in _RULES:
        if _mentions(text, keywords):
            return Categorization(
                category=category,
                confidence=confidence,
                should_omit=omit_reason is not None,
                omit_reason=omit_reason,
            )

    if transaction_type == TransactionType.CREDIT:
        return Categorization(category=TransactionCategory.OTHER, confidence=0.6)

    return Categorization(category=TransactionCategory.OTHER, confidence=0.5)
