"""Fuzzy matching of names found in transaction descriptions."""

import logging
import re
from typing import Iterable, List, Optional, Sequence

from rapidfuzz.distance import Levenshtein

from .models import AliasSnapshot, DescriptionHints, NameMatch, ResidentSnapshot, RtRw

logger = logging.getLogger(__name__)

SIMILARITY_FLOOR = 0.7
CONTAINMENT_FLOOR = 0.8

PRIMARY_NAME_WEIGHT = 0.6
ALIAS_WEIGHT = 0.6
VERIFIED_ALIAS_WEIGHT = 0.7
TRUSTED_ALIAS_WEIGHT = 0.8
TRUSTED_ALIAS_FREQUENCY = 3

IPL_KEYWORDS = ("ipl", "kas", "rt", "rw", "bulanan", "bayar", "sumbangan", "thr")

# Words that show up in statement descriptions but never belong to a name
NAME_KEYWORDS = frozenset(IPL_KEYWORDS) | frozenset({
    "transfer", "trf", "trsf", "tf", "bank", "via", "dari", "ke", "iuran",
    "payment", "from", "to", "blok", "no", "nomor", "cluster", "cr", "db",
    "mandiri", "bca", "bni", "bri", "btn", "cimb", "danamon", "permata",
    "ebanking", "banking", "mbanking", "atm", "setoran", "tunai",
    "jan", "feb", "mar", "apr", "mei", "may", "jun", "jul", "agu", "agt",
    "aug", "sep", "okt", "oct", "nov", "des", "dec",
    "januari", "februari", "maret", "april", "juni", "juli", "agustus",
    "september", "oktober", "november", "desember",
})

_ALL_CAPS_NAMES = re.compile(r"\b[A-Z][A-Z]+(?:\s+[A-Z][A-Z]+)+\b")
_TITLE_CASE_NAMES = re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)+\b")
_INITIALS_NAMES = re.compile(r"\b(?:[A-Z]\.\s*|[A-Z]\s+)+[A-Z]{2,}\b")
_SINGLE_WORDS = re.compile(r"\b[a-zA-Z]{3,}\b")
_NUMBERS = re.compile(r"\b\d+\b")
_RT_RW = re.compile(r"\brt\s*\.?\s*(\d+)(?:\s*/?\s*rw\s*\.?\s*(\d+))?", re.IGNORECASE)
_NAME_SEPARATORS = re.compile(r"[/&]")
_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    """Lowercase, drop punctuation and collapse whitespace."""
    name = _PUNCTUATION.sub(" ", (name or "").lower())
    return _WHITESPACE.sub(" ", name).strip()


def name_similarity(first: str, second: str) -> float:
    """Levenshtein similarity normalized by the longer string, in [0, 1]."""
    a = (first or "").lower().strip()
    b = (second or "").lower().strip()
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def split_name_parts(name: str) -> List[str]:
    """Split a household name such as ``"ANNA / BUDI"`` into its people."""
    return [part.strip() for part in _NAME_SEPARATORS.split(name or "") if part.strip()]


def _contains_words(haystack: str, needle: str) -> bool:
    return re.search(rf"\b{re.escape(needle)}\b", haystack) is not None


def resident_name_similarity(candidate: str, resident_name: str) -> float:
    """Score a candidate against a resident name and each of its parts.

    A multi-word candidate found whole-word inside the name (or one of its
    parts) scores at least ``CONTAINMENT_FLOOR``.
    """
    normalized = normalize_name(candidate)
    if not normalized:
        return 0.0

    best = 0.0
    for target in [resident_name, *split_name_parts(resident_name)]:
        target_normalized = normalize_name(target)
        score = name_similarity(normalized, target_normalized)
        if " " in normalized and _contains_words(target_normalized, normalized):
            score = max(score, CONTAINMENT_FLOOR)
        best = max(best, score)
    return best


def _strip_keywords(candidate: str) -> str:
    words = [word for word in candidate.split() if word.lower() not in NAME_KEYWORDS]
    return " ".join(words)


def _dedupe(values: Iterable[str]) -> List[str]:
    seen = set()
    unique: List[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            unique.append(value)
    return unique


def extract_name_candidates(description: str) -> List[str]:
    """Extract possible person names from a description.

    Layers, in order: all-caps multi-word names, title-case multi-word
    names, initials followed by a surname, and finally single words of at
    least three letters not already covered. Known statement keywords are
    removed from every candidate.
    """
    description = description or ""
    names: List[str] = []

    for pattern in (_ALL_CAPS_NAMES, _TITLE_CASE_NAMES, _INITIALS_NAMES):
        for match in pattern.findall(description):
            stripped = _strip_keywords(match)
            if len(stripped.replace(" ", "")) >= 3:
                names.append(stripped)

    for word in _SINGLE_WORDS.findall(description):
        if word.lower() in NAME_KEYWORDS:
            continue
        if any(word in name.split() for name in names):
            continue
        names.append(word)

    return _dedupe(names)


def parse_description(description: str) -> DescriptionHints:
    """Extract names, numbers, IPL keywords and RT/RW from a description."""
    description = description or ""
    lowered = description.lower()

    rt_rw = None
    match = _RT_RW.search(description)
    if match:
        rt_rw = RtRw(rt=int(match.group(1)), rw=int(match.group(2)) if match.group(2) else 1)

    return DescriptionHints(
        names=extract_name_candidates(description),
        numbers=_NUMBERS.findall(description),
        keywords=[keyword for keyword in IPL_KEYWORDS if keyword in lowered],
        rt_rw=rt_rw,
    )


def alias_weight(alias: AliasSnapshot) -> float:
    """Trust factor of a learned alias, rising with verification and use."""
    if alias.is_verified and alias.frequency >= TRUSTED_ALIAS_FREQUENCY:
        return TRUSTED_ALIAS_WEIGHT
    if alias.is_verified:
        return VERIFIED_ALIAS_WEIGHT
    return ALIAS_WEIGHT


class NameMatcher:
    """Resolves name candidates against resident names and learned aliases."""

    def __init__(
        self,
        residents: Sequence[ResidentSnapshot],
        similarity_floor: float = SIMILARITY_FLOOR,
    ):
        self.residents = [resident for resident in residents if resident.is_active]
        self.similarity_floor = similarity_floor

    def best_match(self, candidate: str) -> Optional[NameMatch]:
        """Find the resident that best explains one name candidate.

        Args:
            candidate: Name text taken from a description.

        Returns:
            NameMatch with the highest weighted score whose similarity reaches
            the floor, or None.
        """
        best: Optional[NameMatch] = None

        for resident in self.residents:
            options = [(resident.name, resident_name_similarity(candidate, resident.name), False, PRIMARY_NAME_WEIGHT)]
            for alias in resident.aliases:
                options.append((
                    alias.bank_name,
                    name_similarity(normalize_name(candidate), normalize_name(alias.bank_name)),
                    True,
                    alias_weight(alias),
                ))

            for matched_name, similarity, from_alias, weight in options:
                if similarity < self.similarity_floor:
                    continue
                match = NameMatch(
                    resident_id=resident.id,
                    candidate=candidate,
                    matched_name=matched_name,
                    similarity=similarity,
                    from_alias=from_alias,
                    weight=weight,
                )
                if best is None or (match.weighted_score, match.similarity) > (best.weighted_score, best.similarity):
                    best = match

        return best

    def match_candidates(self, candidates: Sequence[str]) -> Optional[NameMatch]:
        """Return the strongest match across several candidates."""
        best: Optional[NameMatch] = None
        for candidate in candidates:
            match = self.best_match(candidate)
            if match is None:
                continue
            if best is None or (match.weighted_score, match.similarity) > (best.weighted_score, best.similarity):
                best = match
        if best is not None:
            logger.debug(
                f"Name '{best.candidate}' matched resident {best.resident_id} "
                f"via '{best.matched_name}' ({best.similarity:.2f})"
            )
        return best

    def names_for_resident(self, candidates: Sequence[str], resident_id: str) -> List[str]:
        """Return the candidates whose best match is the given resident."""
        names: List[str] = []
        for candidate in candidates:
            match = self.best_match(candidate)
            if match is not None and match.resident_id == resident_id:
                names.append(candidate)
        return names
