"""House address extraction and matching for descriptions like ``C11/9`` or ``C 11 nomor 09``."""

import logging
import re
from typing import List, Optional, Sequence, Tuple

from .models import AddressMatch, AddressToken, ResidentSnapshot

logger = logging.getLogger(__name__)

ADDRESS_CONFIDENCE = 0.85
NEAR_MISS_FLOOR = 0.75

_BLOCK = r"([A-Z])\s*\.?\s*(\d+)"

# Most specific separators first; the first pattern that matches wins.
ADDRESS_PATTERNS: Tuple[Tuple[str, re.Pattern], ...] = (
    ("cluster", re.compile(rf"\bcluster\s*{_BLOCK}\s*no\.?\s*(\d+)", re.IGNORECASE)),
    ("blok", re.compile(rf"\bblok\s*{_BLOCK}\s*(?:no\.?|nomor|/|-)?\s*(\d+)", re.IGNORECASE)),
    ("nomor", re.compile(rf"\b{_BLOCK}\s*nomor\s*(\d+)", re.IGNORECASE)),
    ("no", re.compile(rf"\b{_BLOCK}\s*no\.?\s*(\d+)", re.IGNORECASE)),
    ("slash", re.compile(rf"\b{_BLOCK}\s*/\s*(\d+)", re.IGNORECASE)),
    ("dash", re.compile(rf"\b{_BLOCK}\s*-\s*(\d+)", re.IGNORECASE)),
    ("space", re.compile(rf"\b{_BLOCK}\s+(\d+)\b", re.IGNORECASE)),
)

_HOUSE_TOKEN = re.compile(r"^\s*(?:blok\s*)?([A-Z][\s.\-]*\d+)\s*[/\-]\s*(\d+)\s*$", re.IGNORECASE)


def normalize_block(block: str) -> str:
    """Canonical block code: ``"blok c-011"`` becomes ``"C11"``."""
    value = re.sub(r"[\s.\-]", "", (block or "").upper())
    if value.startswith("BLOK"):
        value = value[4:]
    return re.sub(r"^([A-Z]+)0+(\d)", r"\1\2", value)


def normalize_house_number(house_number: str) -> str:
    value = (house_number or "").strip()
    if not value:
        return ""
    return value.lstrip("0") or "0"


def extract_address(description: str) -> Optional[AddressToken]:
    """Find the first house address in a description.

    Returns:
        AddressToken with normalized block and house number, or None.
    """
    for _, pattern in ADDRESS_PATTERNS:
        match = pattern.search(description or "")
        if match:
            letter, block_number, house_number = match.groups()
            return AddressToken(
                block=normalize_block(f"{letter}{block_number}"),
                house_number=normalize_house_number(house_number),
                raw_match=match.group(0),
            )
    return None


def parse_house_token(text: str) -> Optional[AddressToken]:
    """Parse a house token as written in the manual verification column.

    Accepts the canonical ``"C11 / 10"`` form and anything
    :func:`extract_address` understands.
    """
    match = _HOUSE_TOKEN.match(text or "")
    if match:
        return AddressToken(
            block=normalize_block(match.group(1)),
            house_number=normalize_house_number(match.group(2)),
            raw_match=text,
        )
    return extract_address(text)


def _as_int(value: str) -> Optional[int]:
    return int(value) if value.isdigit() else None


def address_similarity(token: AddressToken, block: str, house_number: str) -> float:
    """Compare an extracted token with a resident address.

    Matching block and matching house each contribute 0.5. A house number
    that is off by one contributes 0.25 instead.
    """
    similarity = 0.0
    if normalize_block(block) == token.block:
        similarity += 0.5

    resident_house = normalize_house_number(house_number)
    if resident_house == token.house_number:
        similarity += 0.5
    else:
        first, second = _as_int(resident_house), _as_int(token.house_number)
        if first is not None and second is not None and abs(first - second) == 1:
            similarity += 0.25
    return similarity


class AddressMatcher:
    """Matches description addresses against the resident directory."""

    def __init__(self, residents: Sequence[ResidentSnapshot]):
        self.residents = [
            resident for resident in residents
            if resident.is_active and resident.block and resident.house_number
        ]

    def find_exact(self, token: AddressToken) -> Optional[ResidentSnapshot]:
        """Return the resident living exactly at the token's address."""
        for resident in self.residents:
            if address_similarity(token, resident.block, resident.house_number) == 1.0:
                return resident
        return None

    def match(self, description: str) -> Optional[AddressMatch]:
        """Match the address found in a description.

        An exact address gives ``ADDRESS_CONFIDENCE``. A same-block address
        whose house number is off by one is scaled down by its similarity,
        which keeps it below the auto-match threshold.

        Args:
            description: Transaction description.

        Returns:
            AddressMatch or None when no address or no close resident exists.
        """
        token = extract_address(description)
        if token is None:
            return None

        ranked: List[Tuple[float, ResidentSnapshot]] = [
            (address_similarity(token, resident.block, resident.house_number), resident)
            for resident in self.residents
        ]
        if not ranked:
            return None

        similarity, resident = max(ranked, key=lambda item: item[0])
        if similarity < NEAR_MISS_FLOOR:
            logger.debug(f"Address {token.canonical} has no matching resident")
            return None

        return AddressMatch(
            resident_id=resident.id,
            token=token,
            similarity=similarity,
            confidence=ADDRESS_CONFIDENCE * similarity,
        )
