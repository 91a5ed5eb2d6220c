"""Tests for the match orchestrator and composite confidence."""

import pytest
from datetime import date
from unittest.mock import AsyncMock

from ipl_recon.config import ReconSettings
from ipl_recon.reconciliation.errors import ExternalMatchError
from ipl_recon.reconciliation.external import ExternalScore
from ipl_recon.reconciliation.matcher import (
    MatchOrchestrator,
    calculate_match_confidence,
    description_relevance,
)
from ipl_recon.reconciliation.models import (
    AliasSnapshot,
    MatchDecision,
    MatchingStrategy,
    MutationState,
    PaymentSnapshot,
    VerificationAction,
)


@pytest.fixture
def orchestrator(resident_snapshots, payment_snapshots, settings):
    return MatchOrchestrator(resident_snapshots, payment_snapshots, settings=settings)


class TestCalculateMatchConfidence:
    """Tests for the weighted confidence formula."""

    def test_all_signals(self):
        assert calculate_match_confidence(True, True, 0, 1.0, 1.0) == pytest.approx(1.0)

    def test_capped_at_one(self):
        assert calculate_match_confidence(True, True, 0, 5.0, 5.0) <= 1.0

    def test_date_proximity_decays_linearly(self):
        assert calculate_match_confidence(False, False, 3.5, 0, 0) == pytest.approx(0.075)
        assert calculate_match_confidence(False, False, 7, 0, 0) == 0.0
        assert calculate_match_confidence(False, False, 30, 0, 0) == 0.0

    def test_no_payment_contributes_nothing(self):
        assert calculate_match_confidence(False, False, None, 0.5, 0) == pytest.approx(0.05)

    @pytest.mark.parametrize("name_similarity", [0.0, 0.5, 0.8, 1.0])
    def test_corroborating_evidence_never_lowers_confidence(self, name_similarity):
        scores = [
            calculate_match_confidence(False, False, None, name_similarity, 0),
            calculate_match_confidence(False, False, 6, name_similarity, 0),
            calculate_match_confidence(False, False, 0, name_similarity, 0),
            calculate_match_confidence(False, True, 0, name_similarity, 0),
            calculate_match_confidence(True, True, 0, name_similarity, 0),
        ]

        assert scores == sorted(scores)
        assert scores[0] < scores[-1]

    def test_description_relevance(self):
        assert description_relevance("IPL MARET") == 1.0
        assert description_relevance("KIRIMAN") == 0.0


class TestPaymentIndexStrategy:

    def test_corroborated_index_match(self, orchestrator):
        decision = orchestrator.decide(
            "TRSF E-BANKING CR 0503/FTSCY/WS95051 250087.00 IPL MARET",
            250087,
            date(2024, 3, 3),
        )

        assert decision.resident_id == "r-agus"
        assert decision.payment_id == "p-agus-mar"
        assert decision.score == 0.95
        assert decision.strategy == MatchingStrategy.PAYMENT_INDEX
        assert decision.state == MutationState.MATCHED_AUTO
        assert decision.action == VerificationAction.AUTO_MATCH

    def test_index_wins_over_noise(self, orchestrator):
        decision = orchestrator.decide("TRANSFER DARI BUDI SANTOSO C11/10", 250087, date(2024, 3, 5))

        assert decision.resident_id == "r-agus"
        assert decision.strategy == MatchingStrategy.PAYMENT_INDEX

    def test_payment_outside_window_is_not_attached(self, orchestrator):
        decision = orchestrator.decide("IPL", 250087, date(2024, 3, 20))

        assert decision.payment_id is None
        assert decision.score == 0.9
        assert decision.state == MutationState.MATCHED_AUTO

    def test_unknown_index_falls_through(self, orchestrator):
        # index 55 belongs to nobody
        decision = orchestrator.decide("KIRIMAN QWERTY", 250055, date(2024, 3, 5))
        assert decision.state == MutationState.UNMATCHED


class TestNameStrategy:

    def test_primary_name_needs_review(self, orchestrator):
        decision = orchestrator.decide("TRANSFER DARI AGUSTINUS ERWIN", 300000, date(2024, 4, 20))

        assert decision.resident_id == "r-agus"
        assert decision.strategy == MatchingStrategy.NAME_MATCH
        assert decision.score == pytest.approx(0.6)
        assert decision.state == MutationState.MATCHED_PENDING
        assert decision.alias_names == ["AGUSTINUS ERWIN"]

    def test_trusted_alias_auto_matches(self, resident_snapshots, payment_snapshots, settings):
        resident_snapshots[0].aliases = [AliasSnapshot(bank_name="A ERWIN", frequency=3, is_verified=True)]
        orchestrator = MatchOrchestrator(resident_snapshots, payment_snapshots, settings=settings)

        decision = orchestrator.decide("TRF FROM A ERWIN", 300000, date(2024, 4, 20))

        assert decision.resident_id == "r-agus"
        assert decision.strategy == MatchingStrategy.BANK_ALIAS
        assert decision.score == pytest.approx(0.8)
        assert decision.state == MutationState.MATCHED_AUTO

    def test_name_match_attaches_equal_payment(self, resident_snapshots, settings):
        payments = [PaymentSnapshot(id="p-agus-apr", resident_id="r-agus", amount=300000, payment_date=date(2024, 4, 20))]
        orchestrator = MatchOrchestrator(resident_snapshots, payments, settings=settings)

        decision = orchestrator.decide("TRANSFER DARI AGUSTINUS ERWIN", 300000, date(2024, 4, 20))

        assert decision.strategy == MatchingStrategy.NAME_MATCH
        assert decision.payment_id == "p-agus-apr"
        assert decision.score == pytest.approx(0.6)

    def test_payment_evidence_never_lowers_name_score(self, resident_snapshots, settings):
        description = "TRANSFER DARI AGUSTINUS ERWIN"
        transaction_date = date(2024, 4, 20)
        far = PaymentSnapshot(id="p-agus-jan", resident_id="r-agus", amount=250000, payment_date=date(2024, 1, 5))
        near = PaymentSnapshot(id="p-agus-apr", resident_id="r-agus", amount=300000, payment_date=date(2024, 4, 18))

        scores = [
            MatchOrchestrator(resident_snapshots, payments, settings=settings)
            .decide(description, 300000, transaction_date)
            .score
            for payments in ([], [far], [far, near])
        ]

        assert scores == sorted(scores)

    def test_fractional_amount_has_no_payment(self, orchestrator):
        decision = orchestrator.decide("TRANSFER DARI AGUSTINUS ERWIN", 250087.5, date(2024, 3, 5))

        assert decision.strategy == MatchingStrategy.NAME_MATCH
        assert decision.payment_id is None


class TestAddressStrategy:

    def test_exact_address_auto_matches(self, orchestrator):
        decision = orchestrator.decide("SETORAN TUNAI C11/10", 123456, date(2024, 3, 8))

        assert decision.resident_id == "r-agus"
        assert decision.strategy == MatchingStrategy.HOUSE_PATTERN
        assert decision.score == pytest.approx(0.85)
        assert decision.state == MutationState.MATCHED_AUTO

    def test_near_address_needs_review(self, orchestrator):
        decision = orchestrator.decide("SETORAN TUNAI C11/11", 123456, date(2024, 3, 8))

        assert decision.state == MutationState.MATCHED_PENDING


class TestNoMatch:

    def test_unmatched(self, orchestrator):
        decision = orchestrator.decide("KIRIMAN QWERTY", 150000, date(2024, 3, 9))

        assert decision.resident_id is None
        assert decision.score == 0.0
        assert decision.strategy is None
        assert decision.state == MutationState.UNMATCHED
        assert decision.action == VerificationAction.SYSTEM_UNMATCH

    def test_custom_threshold(self, resident_snapshots):
        settings = ReconSettings(base_amounts=[250000], auto_match_threshold=0.5)
        orchestrator = MatchOrchestrator(resident_snapshots, settings=settings)

        decision = orchestrator.decide("TRANSFER DARI BUDI SANTOSO", 300000, date(2024, 3, 9))
        assert decision.state == MutationState.MATCHED_AUTO

    def test_classify(self, orchestrator):
        assert orchestrator.classify(MatchDecision(score=0.9)).state == MutationState.UNMATCHED
        assert orchestrator.classify(MatchDecision(resident_id="r-agus", score=0.8)).state == MutationState.MATCHED_AUTO
        assert orchestrator.classify(MatchDecision(resident_id="r-agus", score=0.79)).state == MutationState.MATCHED_PENDING


class TestExternalStrategy:
    """Tests for the optional external scoring fallback."""

    async def test_used_only_when_unmatched(self, resident_snapshots, settings):
        external = AsyncMock()
        external.score.return_value = ExternalScore(resident_id="r-budi", confidence=0.85)
        orchestrator = MatchOrchestrator(resident_snapshots, settings=settings, external=external)

        decision = await orchestrator.match("KIRIMAN QWERTY", 150000, date(2024, 3, 9), mutation_id="m-1")

        assert decision.resident_id == "r-budi"
        assert decision.strategy == MatchingStrategy.EXTERNAL_API
        assert decision.state == MutationState.MATCHED_AUTO
        payload = external.score.call_args.args[0]
        assert payload["id"] == "m-1"
        assert {"id": "r-budi", "name": "BUDI SANTOSO"} in payload["candidates"]

        external.score.reset_mock()
        await orchestrator.match("SETORAN TUNAI C11/10", 123456, date(2024, 3, 8))
        external.score.assert_not_called()

    async def test_unknown_resident_is_ignored(self, resident_snapshots, settings):
        external = AsyncMock()
        external.score.return_value = ExternalScore(resident_id="r-nobody", confidence=0.99)
        orchestrator = MatchOrchestrator(resident_snapshots, settings=settings, external=external)

        decision = await orchestrator.match("KIRIMAN QWERTY", 150000, date(2024, 3, 9))
        assert decision.state == MutationState.UNMATCHED

    async def test_failure_leaves_transaction_unmatched(self, resident_snapshots, settings):
        external = AsyncMock()
        external.score.side_effect = ExternalMatchError("boom")
        orchestrator = MatchOrchestrator(resident_snapshots, settings=settings, external=external)

        decision = await orchestrator.match("KIRIMAN QWERTY", 150000, date(2024, 3, 9))

        assert decision.state == MutationState.UNMATCHED
        assert "external scoring failed" in decision.factors
