"""Match orchestration: resolves a transaction to a resident with a confidence score."""

import logging
from datetime import date
from typing import Dict, List, Optional, Sequence

from ..config import ReconSettings
from .address_matcher import AddressMatcher
from .errors import ExternalMatchError
from .external import ExternalMatchClient, build_payload
from .models import (
    MatchDecision,
    MatchingStrategy,
    MutationState,
    PaymentSnapshot,
    ResidentSnapshot,
)
from .name_matcher import IPL_KEYWORDS, NameMatcher, extract_name_candidates
from .payment_index import find_payment_index

logger = logging.getLogger(__name__)

PAYMENT_INDEX_SCORE = 0.9
PAYMENT_INDEX_CORROBORATED_SCORE = 0.95


def calculate_match_confidence(
    payment_index_match: bool,
    amount_match: bool,
    date_proximity_days: Optional[float],
    name_similarity: float,
    description_relevance: float,
    window_days: int = 7,
) -> float:
    """Combine weak signals into one confidence.

    Weights: payment index 0.4, exact amount 0.3, date proximity 0.15
    (linear decay to zero at ``window_days``), name similarity 0.1 and
    description relevance 0.05. The result is capped at 1.0.

    Args:
        payment_index_match: The amount carried the resident's payment index.
        amount_match: A payment of exactly this amount exists.
        date_proximity_days: Days to the closest payment, None if there is none.
        name_similarity: Name similarity in [0, 1].
        description_relevance: Description relevance in [0, 1].
        window_days: Days after which date proximity stops counting.

    Returns:
        Confidence in [0, 1].
    """
    confidence = 0.0
    if payment_index_match:
        confidence += 0.4
    if amount_match:
        confidence += 0.3
    if date_proximity_days is not None and window_days > 0:
        confidence += max(0.0, 1 - abs(date_proximity_days) / window_days) * 0.15
    confidence += max(0.0, min(1.0, name_similarity)) * 0.1
    confidence += max(0.0, min(1.0, description_relevance)) * 0.05
    return min(1.0, confidence)


def description_relevance(description: str) -> float:
    """1.0 when the description mentions IPL vocabulary, else 0."""
    lowered = (description or "").lower()
    return 1.0 if any(keyword in lowered for keyword in IPL_KEYWORDS) else 0.0


class MatchOrchestrator:
    """
    Runs the matching strategies in priority order for one transaction.

    1. Payment index encoded in the amount.
    2. Learned alias or fuzzy resident name.
    3. House address pattern.
    4. External scoring service, when configured.

    The first strategy that yields a resident wins.
    """

    def __init__(
        self,
        residents: Sequence[ResidentSnapshot],
        payments: Sequence[PaymentSnapshot] = (),
        settings: Optional[ReconSettings] = None,
        external: Optional[ExternalMatchClient] = None,
    ):
        """Initialize the orchestrator over a directory snapshot.

        Args:
            residents: Active residents with their learned aliases.
            payments: Payments around the transactions being matched.
            settings: Thresholds and base amounts.
            external: Client for the external strategy, if configured.
        """
        self.settings = settings or ReconSettings()
        self.residents = [resident for resident in residents if resident.is_active]
        self.external = external

        self._by_index: Dict[int, ResidentSnapshot] = {
            resident.payment_index: resident
            for resident in self.residents
            if resident.payment_index is not None
        }
        self._payments: Dict[str, List[PaymentSnapshot]] = {}
        for payment in payments:
            self._payments.setdefault(payment.resident_id, []).append(payment)

        self.names = NameMatcher(self.residents)
        self.addresses = AddressMatcher(self.residents)

    def _within_window(self, payment: PaymentSnapshot, transaction_date: date) -> bool:
        return abs((payment.payment_date - transaction_date).days) <= self.settings.payment_window_days

    def find_payment(self, resident_id: str, amount: float, transaction_date: date) -> Optional[PaymentSnapshot]:
        """Latest same-amount payment of a resident inside the date window."""
        candidates = [
            payment for payment in self._payments.get(resident_id, [])
            if payment.amount == amount and self._within_window(payment, transaction_date)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda payment: payment.payment_date)

    def _closest_payment_days(self, resident_id: str, transaction_date: date) -> Optional[int]:
        payments = self._payments.get(resident_id, [])
        if not payments:
            return None
        return min(abs((payment.payment_date - transaction_date).days) for payment in payments)

    def classify(self, decision: MatchDecision) -> MatchDecision:
        """Set the state implied by the decision's resident and score."""
        if decision.resident_id is None:
            decision.state = MutationState.UNMATCHED
            decision.score = 0.0
        elif decision.score >= self.settings.auto_match_threshold:
            decision.state = MutationState.MATCHED_AUTO
        else:
            decision.state = MutationState.MATCHED_PENDING
        return decision

    def _match_payment_index(self, amount: float, transaction_date: date) -> Optional[MatchDecision]:
        index = find_payment_index(amount, self.settings.base_amounts)
        if index is None:
            return None
        resident = self._by_index.get(index)
        if resident is None:
            logger.debug(f"Payment index {index} belongs to no active resident")
            return None

        decision = MatchDecision(
            resident_id=resident.id,
            score=PAYMENT_INDEX_SCORE,
            strategy=MatchingStrategy.PAYMENT_INDEX,
            factors=[f"payment index {index}"],
        )
        payment = self.find_payment(resident.id, amount, transaction_date)
        if payment is not None:
            decision.payment_id = payment.id
            decision.score = PAYMENT_INDEX_CORROBORATED_SCORE
            decision.factors.append(f"payment {payment.id} on {payment.payment_date.isoformat()}")
        return decision

    def _match_name(self, description: str, amount: float, transaction_date: date) -> Optional[MatchDecision]:
        candidates = extract_name_candidates(description)
        if not candidates:
            return None
        match = self.names.match_candidates(candidates)
        if match is None:
            return None

        payment = self.find_payment(match.resident_id, amount, transaction_date)
        composite = calculate_match_confidence(
            payment_index_match=False,
            amount_match=payment is not None,
            date_proximity_days=self._closest_payment_days(match.resident_id, transaction_date),
            name_similarity=match.similarity,
            description_relevance=description_relevance(description),
            window_days=self.settings.payment_window_days,
        )

        return MatchDecision(
            resident_id=match.resident_id,
            payment_id=payment.id if payment is not None else None,
            score=min(1.0, max(match.weighted_score, composite)),
            strategy=MatchingStrategy.BANK_ALIAS if match.from_alias else MatchingStrategy.NAME_MATCH,
            factors=[f"name '{match.candidate}' ~ '{match.matched_name}' ({match.similarity:.2f})"],
            alias_names=self.names.names_for_resident(candidates, match.resident_id),
        )

    def _match_address(self, description: str, amount: float, transaction_date: date) -> Optional[MatchDecision]:
        match = self.addresses.match(description)
        if match is None:
            return None
        payment = self.find_payment(match.resident_id, amount, transaction_date)
        return MatchDecision(
            resident_id=match.resident_id,
            payment_id=payment.id if payment is not None else None,
            score=match.confidence,
            strategy=MatchingStrategy.HOUSE_PATTERN,
            factors=[f"address {match.token.canonical} ({match.similarity:.2f})"],
        )

    def decide(self, description: str, amount: float, transaction_date: date) -> MatchDecision:
        """Run the local strategies for one transaction.

        Args:
            description: Statement description.
            amount: Transaction amount.
            transaction_date: Transaction date.

        Returns:
            MatchDecision with resident, optional payment, score, strategy and
            the resulting state.
        """
        decision = (
            self._match_payment_index(amount, transaction_date)
            or self._match_name(description, amount, transaction_date)
            or self._match_address(description, amount, transaction_date)
            or MatchDecision(factors=["no strategy matched"])
        )
        return self.classify(decision)

    async def match(
        self,
        description: str,
        amount: float,
        transaction_date: date,
        mutation_id: Optional[str] = None,
    ) -> MatchDecision:
        """Run the local strategies, then the external service if still unmatched.

        A failing external service leaves the transaction unmatched.
        """
        decision = self.decide(description, amount, transaction_date)
        if decision.is_matched or self.external is None:
            return decision

        payload = build_payload(mutation_id, amount, description, transaction_date, self.residents)
        try:
            score = await self.external.score(payload)
        except ExternalMatchError as exc:
            logger.warning(f"External scoring skipped: {exc}")
            decision.factors.append("external scoring failed")
            return decision

        return self.classify(self.external_decision(score.resident_id, score.confidence, score.payment_id))

    def external_decision(
        self,
        resident_id: Optional[str],
        confidence: float,
        payment_id: Optional[str] = None,
    ) -> MatchDecision:
        """Turn an external answer into a decision, ignoring unknown residents."""
        known = {resident.id for resident in self.residents}
        if not resident_id or resident_id not in known:
            return MatchDecision(factors=["external service found no resident"])
        return MatchDecision(
            resident_id=resident_id,
            payment_id=payment_id,
            score=confidence,
            strategy=MatchingStrategy.EXTERNAL_API,
            factors=[f"external confidence {confidence:.2f}"],
        )
