"""Tests for the verification lifecycle."""

import pytest
from datetime import date

from ipl_recon.database.models import BankMutation
from ipl_recon.reconciliation import state_machine
from ipl_recon.reconciliation.errors import StateTransitionError
from ipl_recon.reconciliation.models import (
    MatchDecision,
    MatchingStrategy,
    MutationState,
    VerificationAction,
)


def make_mutation(state: MutationState = MutationState.UNMATCHED, **fields) -> BankMutation:
    mutation = BankMutation(
        id="m-1",
        transaction_date=date(2024, 3, 5),
        description="TRANSFER DARI BUDI SANTOSO",
        amount=200012,
        upload_batch="batch_test",
        state=state.value,
    )
    for name, value in fields.items():
        setattr(mutation, name, value)
    return mutation


def matched_mutation(state: MutationState = MutationState.MATCHED_PENDING) -> BankMutation:
    return make_mutation(
        state,
        matched_resident_id="r-budi",
        matched_payment_id="p-budi-mar",
        match_score=0.6,
        matching_strategy=MatchingStrategy.NAME_MATCH.value,
    )


class TestApplyMatch:
    """Tests for writing automated decisions."""

    def test_matched_decision(self):
        mutation = make_mutation()
        decision = MatchDecision(
            resident_id="r-budi",
            payment_id="p-budi-mar",
            score=0.95,
            strategy=MatchingStrategy.PAYMENT_INDEX,
            state=MutationState.MATCHED_AUTO,
        )

        transition = state_machine.apply_match(mutation, decision)

        assert mutation.state == MutationState.MATCHED_AUTO.value
        assert mutation.matched_resident_id == "r-budi"
        assert mutation.matched_payment_id == "p-budi-mar"
        assert mutation.match_score == 0.95
        assert mutation.matching_strategy == "PAYMENT_INDEX"
        assert transition.action == VerificationAction.AUTO_MATCH
        assert transition.previous_state == MutationState.UNMATCHED
        assert transition.new_matched_payment_id == "p-budi-mar"
        assert transition.verified_by == state_machine.SYSTEM_ACTOR
        assert transition.notes == "Match using PAYMENT_INDEX strategy"

    def test_unmatched_decision_clears_match(self):
        mutation = matched_mutation()

        transition = state_machine.apply_match(mutation, MatchDecision())

        assert mutation.state == MutationState.UNMATCHED.value
        assert mutation.matched_resident_id is None
        assert mutation.match_score is None
        assert transition.action == VerificationAction.SYSTEM_UNMATCH
        assert transition.previous_matched_payment_id == "p-budi-mar"

    @pytest.mark.parametrize("state", [MutationState.VERIFIED, MutationState.OMITTED])
    def test_never_rematches_closed_mutations(self, state):
        mutation = matched_mutation(state)

        with pytest.raises(StateTransitionError):
            state_machine.apply_match(mutation, MatchDecision())
        assert mutation.state == state.value


class TestVerify:

    def test_verify_matched(self):
        mutation = matched_mutation()

        transition = state_machine.verify(mutation, "5", "admin")

        assert mutation.state == MutationState.VERIFIED.value
        assert mutation.verified_by == "admin"
        assert mutation.verified_at is not None
        assert transition.action == VerificationAction.MANUAL_CONFIRM
        assert transition.previous_state == MutationState.MATCHED_PENDING
        assert transition.new_state == MutationState.VERIFIED

    def test_requires_resident(self):
        with pytest.raises(StateTransitionError, match="no matched resident"):
            state_machine.verify(make_mutation(), "5", "admin")

    @pytest.mark.parametrize("house_number", [None, "", "  "])
    def test_requires_house_number(self, house_number):
        mutation = matched_mutation()

        with pytest.raises(StateTransitionError, match="house number"):
            state_machine.verify(mutation, house_number, "admin")
        assert mutation.state == MutationState.MATCHED_PENDING.value

    def test_rejects_omitted_and_verified(self):
        with pytest.raises(StateTransitionError):
            state_machine.verify(matched_mutation(MutationState.OMITTED), "5", "admin")
        with pytest.raises(StateTransitionError):
            state_machine.verify(matched_mutation(MutationState.VERIFIED), "5", "admin")


class TestOmitAndRestore:

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_omit_requires_reason(self, reason):
        mutation = matched_mutation()

        with pytest.raises(StateTransitionError, match="reason is required"):
            state_machine.omit(mutation, reason, "admin")
        assert mutation.state == MutationState.MATCHED_PENDING.value

    def test_omit_keeps_match_and_clears_verification(self):
        mutation = matched_mutation()
        state_machine.verify(mutation, "5", "admin")

        transition = state_machine.omit(mutation, "Double transfer", "admin")

        assert mutation.state == MutationState.OMITTED.value
        assert mutation.omit_reason == "Double transfer"
        assert mutation.matched_resident_id == "r-budi"
        assert mutation.verified_at is None
        assert transition.action == VerificationAction.MANUAL_OMIT
        assert transition.previous_state == MutationState.VERIFIED

    def test_omit_twice(self):
        mutation = matched_mutation()
        state_machine.omit(mutation, "Double transfer", "admin")

        with pytest.raises(StateTransitionError):
            state_machine.omit(mutation, "Again", "admin")

    def test_restore_clears_everything(self):
        mutation = matched_mutation()
        state_machine.omit(mutation, "Double transfer", "admin")

        transition = state_machine.restore(mutation, "admin")

        assert mutation.state == MutationState.UNMATCHED.value
        assert mutation.omit_reason is None
        assert mutation.matched_resident_id is None
        assert mutation.matched_payment_id is None
        assert mutation.match_score is None
        assert mutation.matching_strategy is None
        assert transition.action == VerificationAction.SYSTEM_UNMATCH
        assert transition.confidence == 0.0
        assert transition.previous_matched_payment_id == "p-budi-mar"

    def test_restore_requires_omitted(self):
        with pytest.raises(StateTransitionError, match="Only omitted"):
            state_machine.restore(matched_mutation(), "admin")


class TestManualMatch:

    def test_manual_match_pending(self):
        mutation = make_mutation()

        transition = state_machine.manual_match(
            mutation,
            resident_id="r-agus",
            house_number="10",
            payment_id="p-agus-mar",
            payment_resident_id="r-agus",
            verified=False,
            actor="admin",
            resident_name="AGUSTINUS ERWIN",
        )

        assert mutation.state == MutationState.MATCHED_PENDING.value
        assert mutation.match_score == 1.0
        assert mutation.matching_strategy == MatchingStrategy.MANUAL.value
        assert transition.action == VerificationAction.MANUAL_OVERRIDE
        assert transition.notes == "Manual match to resident AGUSTINUS ERWIN and payment p-agus-mar"

    def test_manual_match_verified_overrides_previous(self):
        mutation = matched_mutation()

        transition = state_machine.manual_match(
            mutation, "r-agus", "10", None, None, verified=True, actor="admin"
        )

        assert mutation.state == MutationState.VERIFIED.value
        assert mutation.matched_resident_id == "r-agus"
        assert mutation.matched_payment_id is None
        assert transition.action == VerificationAction.MANUAL_CONFIRM
        assert transition.previous_matched_payment_id == "p-budi-mar"

    def test_payment_must_belong_to_resident(self):
        with pytest.raises(StateTransitionError, match="does not belong"):
            state_machine.manual_match(make_mutation(), "r-budi", "5", "p-agus-mar", "r-agus", False, "admin")

    def test_verified_manual_match_requires_house_number(self):
        with pytest.raises(StateTransitionError):
            state_machine.manual_match(make_mutation(), "r-dewi", None, None, None, True, "admin")

    def test_rejects_omitted(self):
        with pytest.raises(StateTransitionError):
            state_machine.manual_match(
                matched_mutation(MutationState.OMITTED), "r-agus", "10", None, None, False, "admin"
            )


class TestUnverify:

    def test_unverify_keeps_match(self):
        mutation = matched_mutation()
        state_machine.verify(mutation, "5", "admin")

        transition = state_machine.unverify(mutation, "admin")

        assert mutation.state == MutationState.MATCHED_PENDING.value
        assert mutation.matched_resident_id == "r-budi"
        assert mutation.verified_at is None
        assert transition.action == VerificationAction.MANUAL_OVERRIDE
        assert transition.confidence == 0.0
        assert transition.notes == "Unverified transaction for editing"

    def test_unverify_requires_verified(self):
        with pytest.raises(StateTransitionError):
            state_machine.unverify(matched_mutation(), "admin")


class TestImportVerified:

    def test_historical_import(self):
        mutation = make_mutation()

        transition = state_machine.import_verified(mutation, "r-budi", "A2 / 5", "03/2024")

        assert mutation.state == MutationState.VERIFIED.value
        assert mutation.verified_by == state_machine.HISTORICAL_ACTOR
        assert mutation.matching_strategy == MatchingStrategy.HISTORICAL_IMPORT.value
        assert transition.action == VerificationAction.MANUAL_CONFIRM
        assert transition.confidence == 1.0
        assert transition.notes == "Historical verification: A2 / 5 - 03/2024"

    def test_only_new_mutations(self):
        with pytest.raises(StateTransitionError):
            state_machine.import_verified(matched_mutation(), "r-budi", "A2 / 5", "03/2024")


class TestTransition:

    def test_audit_fields(self):
        mutation = matched_mutation(MutationState.VERIFIED)
        transition = state_machine.unverify(mutation, "admin")
        fields = transition.audit_fields()

        assert fields["action"] == "MANUAL_OVERRIDE"
        assert fields["previous_state"] == MutationState.VERIFIED.value
        assert fields["new_state"] == MutationState.MATCHED_PENDING.value
        assert fields["verified_by"] == "admin"
        assert fields["new_matched_payment_id"] == "p-budi-mar"
