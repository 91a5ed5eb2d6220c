"""Environment-driven settings for the reconciliation engine."""

import os
import logging
from typing import List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_BASE_AMOUNTS = "200000,250000"


def parse_base_amounts(raw: Optional[str]) -> List[int]:
    """Parse a comma-separated list of due-amount bases.

    Entries that are not positive integers are dropped. The order of the
    remaining entries is kept, since it decides which tariff wins when more
    than one base yields a valid payment index.

    Args:
        raw: Comma-separated string, e.g. "200000,250000".

    Returns:
        Ordered list of positive base amounts.
    """
    amounts: List[int] = []
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        try:
            value = int(part)
        except ValueError:
            logger.warning(f"Ignoring invalid IPL base amount: {part!r}")
            continue
        if value > 0:
            amounts.append(value)
    return amounts


class ReconSettings(BaseModel):
    """Runtime configuration for matching and verification."""
    base_amounts: List[int] = Field(default_factory=lambda: parse_base_amounts(DEFAULT_BASE_AMOUNTS))
    external_match_url: Optional[str] = Field(default=None, description="External scoring service URL")
    external_match_timeout: float = Field(default=10.0)
    auto_match_threshold: float = Field(default=0.8)
    external_auto_verify_threshold: float = Field(default=0.9)
    payment_window_days: int = Field(default=7)

    @classmethod
    def from_env(cls) -> "ReconSettings":
        """Build settings from environment variables."""
        base_amounts = parse_base_amounts(os.getenv("IPL_BASE_AMOUNT", DEFAULT_BASE_AMOUNTS))
        if not base_amounts:
            logger.warning("IPL_BASE_AMOUNT has no usable values, falling back to defaults")
            base_amounts = parse_base_amounts(DEFAULT_BASE_AMOUNTS)

        return cls(
            base_amounts=base_amounts,
            external_match_url=os.getenv("EXTERNAL_MATCH_API_URL") or None,
            external_match_timeout=float(os.getenv("EXTERNAL_MATCH_TIMEOUT", "10")),
            auto_match_threshold=float(os.getenv("AUTO_MATCH_THRESHOLD", "0.8")),
            external_auto_verify_threshold=float(os.getenv("EXTERNAL_AUTO_VERIFY_THRESHOLD", "0.9")),
            payment_window_days=int(os.getenv("PAYMENT_WINDOW_DAYS", "7")),
        )
