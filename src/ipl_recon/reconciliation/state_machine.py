"""Lifecycle rules for bank mutations.

Every function here validates its preconditions, applies the transition to
the mutation in place and returns the audit entry to record. A rejected
transition raises :class:`StateTransitionError` before anything changes.

States::

    UNMATCHED -> MATCHED_PENDING | MATCHED_AUTO
    MATCHED_*  -> VERIFIED | OMITTED
    VERIFIED   -> MATCHED_PENDING (unverify) | OMITTED
    OMITTED    -> UNMATCHED (restore)
"""

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel

from ..database.models import BankMutation, utcnow
from .errors import StateTransitionError
from .models import MatchDecision, MatchingStrategy, MutationState, VerificationAction

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "SYSTEM"
AUTO_ACTOR = "AUTO"
HISTORICAL_ACTOR = "HISTORICAL_IMPORT"


class Transition(BaseModel):
    """Audit entry produced by one state-changing operation."""
    action: VerificationAction
    previous_state: Optional[MutationState] = None
    new_state: MutationState
    confidence: Optional[float] = None
    verified_by: str
    previous_matched_payment_id: Optional[str] = None
    new_matched_payment_id: Optional[str] = None
    notes: Optional[str] = None

    def audit_fields(self) -> Dict[str, Any]:
        """Keyword arguments for VerificationRepository.create."""
        return {
            "action": self.action.value,
            "previous_state": self.previous_state.value if self.previous_state else None,
            "new_state": self.new_state.value,
            "confidence": self.confidence,
            "verified_by": self.verified_by,
            "previous_matched_payment_id": self.previous_matched_payment_id,
            "new_matched_payment_id": self.new_matched_payment_id,
            "notes": self.notes,
        }


def current_state(mutation: BankMutation) -> MutationState:
    return MutationState(mutation.state or MutationState.UNMATCHED.value)


def _reject(mutation: BankMutation, reason: str) -> StateTransitionError:
    logger.warning(f"Rejected transition on mutation {mutation.id} ({mutation.state}): {reason}")
    return StateTransitionError(mutation.id, mutation.state, reason)


def _clear_match(mutation: BankMutation) -> None:
    mutation.matched_resident_id = None
    mutation.matched_payment_id = None
    mutation.match_score = None
    mutation.matching_strategy = None


def _clear_verification(mutation: BankMutation) -> None:
    mutation.verified_at = None
    mutation.verified_by = None


def _require_house_number(mutation: BankMutation, house_number: Optional[str]) -> None:
    if not (house_number or "").strip():
        raise _reject(mutation, "Matched resident has no house number recorded")


def apply_match(
    mutation: BankMutation,
    decision: MatchDecision,
    actor: str = SYSTEM_ACTOR,
) -> Transition:
    """Write an automated match decision onto a mutation.

    Verified and omitted mutations are never re-matched.
    """
    previous = current_state(mutation)
    if previous in (MutationState.VERIFIED, MutationState.OMITTED):
        raise _reject(mutation, f"Cannot re-match a {previous.value} transaction")

    previous_payment_id = mutation.matched_payment_id
    if decision.is_matched:
        mutation.matched_resident_id = decision.resident_id
        mutation.matched_payment_id = decision.payment_id
        mutation.match_score = decision.score
        mutation.matching_strategy = decision.strategy.value if decision.strategy else None
    else:
        _clear_match(mutation)
    mutation.state = decision.state.value

    strategy = decision.strategy.value if decision.strategy else "NONE"
    return Transition(
        action=decision.action,
        previous_state=previous,
        new_state=decision.state,
        confidence=decision.score,
        verified_by=actor,
        previous_matched_payment_id=previous_payment_id,
        new_matched_payment_id=decision.payment_id,
        notes=f"Match using {strategy} strategy",
    )


def verify(
    mutation: BankMutation,
    house_number: Optional[str],
    actor: str,
    action: VerificationAction = VerificationAction.MANUAL_CONFIRM,
    notes: Optional[str] = None,
) -> Transition:
    """Confirm the current match.

    Args:
        mutation: Mutation to verify.
        house_number: House number of the matched resident.
        actor: Who confirms.
        action: MANUAL_CONFIRM for reviewers, AUTO_MATCH for batch verification.
        notes: Optional audit notes.

    Raises:
        StateTransitionError: When the mutation is omitted, already verified,
            unmatched, or its resident has no house number.
    """
    previous = current_state(mutation)
    if previous == MutationState.OMITTED:
        raise _reject(mutation, "Omitted transactions must be restored before verification")
    if previous == MutationState.VERIFIED:
        raise _reject(mutation, "Transaction is already verified")
    if not mutation.matched_resident_id:
        raise _reject(mutation, "Transaction has no matched resident")
    _require_house_number(mutation, house_number)

    mutation.state = MutationState.VERIFIED.value
    mutation.verified_at = utcnow()
    mutation.verified_by = actor

    return Transition(
        action=action,
        previous_state=previous,
        new_state=MutationState.VERIFIED,
        confidence=mutation.match_score,
        verified_by=actor,
        previous_matched_payment_id=mutation.matched_payment_id,
        new_matched_payment_id=mutation.matched_payment_id,
        notes=notes or "Transaction verified",
    )


def omit(
    mutation: BankMutation,
    reason: Optional[str],
    actor: str,
    action: VerificationAction = VerificationAction.MANUAL_OMIT,
) -> Transition:
    """Exclude a mutation from dues reconciliation. Match fields are kept until restore."""
    previous = current_state(mutation)
    reason = (reason or "").strip()
    if not reason:
        raise _reject(mutation, "Omit reason is required")
    if previous == MutationState.OMITTED:
        raise _reject(mutation, "Transaction is already omitted")

    mutation.state = MutationState.OMITTED.value
    mutation.omit_reason = reason
    _clear_verification(mutation)

    return Transition(
        action=action,
        previous_state=previous,
        new_state=MutationState.OMITTED,
        confidence=mutation.match_score,
        verified_by=actor,
        notes=f"Omitted: {reason}",
    )


def restore(mutation: BankMutation, actor: str) -> Transition:
    """Bring an omitted mutation back as if it had never been matched."""
    previous = current_state(mutation)
    if previous != MutationState.OMITTED:
        raise _reject(mutation, "Only omitted transactions can be restored")

    previous_payment_id = mutation.matched_payment_id
    mutation.state = MutationState.UNMATCHED.value
    mutation.omit_reason = None
    _clear_match(mutation)
    _clear_verification(mutation)

    return Transition(
        action=VerificationAction.SYSTEM_UNMATCH,
        previous_state=previous,
        new_state=MutationState.UNMATCHED,
        confidence=0.0,
        verified_by=actor,
        previous_matched_payment_id=previous_payment_id,
        notes="Restored from omitted; match cleared",
    )


def manual_match(
    mutation: BankMutation,
    resident_id: str,
    house_number: Optional[str],
    payment_id: Optional[str],
    payment_resident_id: Optional[str],
    verified: bool,
    actor: str,
    resident_name: Optional[str] = None,
) -> Transition:
    """Override any automated match with a reviewer's choice.

    Args:
        mutation: Mutation to match.
        resident_id: Chosen resident.
        house_number: House number of the chosen resident.
        payment_id: Optional payment to attach.
        payment_resident_id: Owner of that payment.
        verified: Also verify the mutation.
        actor: Who matched.
        resident_name: Used in the audit notes.
    """
    previous = current_state(mutation)
    if previous == MutationState.OMITTED:
        raise _reject(mutation, "Omitted transactions must be restored before matching")
    if payment_id is not None and payment_resident_id != resident_id:
        raise _reject(mutation, "Payment does not belong to the specified resident")
    if verified:
        _require_house_number(mutation, house_number)

    previous_payment_id = mutation.matched_payment_id
    mutation.matched_resident_id = resident_id
    mutation.matched_payment_id = payment_id
    mutation.match_score = 1.0
    mutation.matching_strategy = MatchingStrategy.MANUAL.value

    if verified:
        mutation.state = MutationState.VERIFIED.value
        mutation.verified_at = utcnow()
        mutation.verified_by = actor
    else:
        mutation.state = MutationState.MATCHED_PENDING.value
        _clear_verification(mutation)

    notes = f"Manual match to resident {resident_name or resident_id}"
    if payment_id:
        notes += f" and payment {payment_id}"

    return Transition(
        action=VerificationAction.MANUAL_CONFIRM if verified else VerificationAction.MANUAL_OVERRIDE,
        previous_state=previous,
        new_state=current_state(mutation),
        confidence=1.0,
        verified_by=actor,
        previous_matched_payment_id=previous_payment_id,
        new_matched_payment_id=payment_id,
        notes=notes,
    )


def unverify(mutation: BankMutation, actor: str) -> Transition:
    """Reopen a verified mutation for editing; the match is kept."""
    previous = current_state(mutation)
    if previous != MutationState.VERIFIED:
        raise _reject(mutation, "Only verified transactions can be unverified")

    mutation.state = MutationState.MATCHED_PENDING.value
    _clear_verification(mutation)

    return Transition(
        action=VerificationAction.MANUAL_OVERRIDE,
        previous_state=previous,
        new_state=MutationState.MATCHED_PENDING,
        confidence=0.0,
        verified_by=actor,
        previous_matched_payment_id=mutation.matched_payment_id,
        new_matched_payment_id=mutation.matched_payment_id,
        notes="Unverified transaction for editing",
    )


def import_verified(
    mutation: BankMutation,
    resident_id: str,
    house_token: str,
    period: str,
) -> Transition:
    """Record a match confirmed in the spreadsheet's manual verification columns."""
    previous = current_state(mutation)
    if previous != MutationState.UNMATCHED:
        raise _reject(mutation, "Historical verification applies to new transactions only")

    mutation.matched_resident_id = resident_id
    mutation.match_score = 1.0
    mutation.matching_strategy = MatchingStrategy.HISTORICAL_IMPORT.value
    mutation.state = MutationState.VERIFIED.value
    mutation.verified_at = utcnow()
    mutation.verified_by = HISTORICAL_ACTOR

    return Transition(
        action=VerificationAction.MANUAL_CONFIRM,
        previous_state=previous,
        new_state=MutationState.VERIFIED,
        confidence=1.0,
        verified_by=HISTORICAL_ACTOR,
        notes=f"Historical verification: {house_token} - {period}",
    )
