"""Tests for payment index extraction."""

import pytest

from ipl_recon.reconciliation.payment_index import extract_payment_index, find_payment_index


class TestExtractPaymentIndex:

    def test_single_period(self):
        assert extract_payment_index(250087, 250000) == 87

    def test_multi_period_keeps_remainder(self):
        assert extract_payment_index(500087, 250000) == 87

    def test_four_digit_index(self):
        assert extract_payment_index(209999, 200000) == 9999

    @pytest.mark.parametrize(
        "amount,base",
        [
            (250000, 250000),    # no remainder
            (250009, 250000),    # below range
            (260000, 250000),    # above range
            (150087, 250000),    # less than one period
            (250087.5, 250000),  # fractional
            (0, 250000),
            (-250087, 250000),
            (250087, 0),
        ],
    )
    def test_no_index(self, amount, base):
        assert extract_payment_index(amount, base) is None


class TestFindPaymentIndex:

    def test_uses_first_base_that_yields_an_index(self):
        # 250087 against 200000 leaves 50087, out of range
        assert find_payment_index(250087, [200000, 250000]) == 87

    def test_single_base(self):
        assert find_payment_index(400100, [200000]) == 100

    def test_no_base_matches(self):
        assert find_payment_index(123456, [200000, 250000]) is None
        assert find_payment_index(250087, []) is None
