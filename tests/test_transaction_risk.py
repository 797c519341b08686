"""
Tests for the transaction risk scorer: pure weights plus the
database-backed path with an optional fraud advisor.
"""
from decimal import Decimal

import pytest

from escrow_risk.core.errors import NotFound
from escrow_risk.scoring.transaction_risk import (
    _round_clamp,
    amount_weight,
    category_weight,
    compute_transaction_risk,
    explain_transaction_risk,
    score_transaction,
)
from tests.support import NOW


class _FixedAdvisor:
    def __init__(self, score):
        self.score = score
        self.calls = []

    async def enhanced_score(self, *, transaction_id, buyer_id, seller_id, raw_score):
        self.calls.append((transaction_id, raw_score))
        return self.score


class _BrokenAdvisor:
    async def enhanced_score(self, **kwargs):
        raise TimeoutError("advisor timed out")


class TestWeights:
    def test_category_weights(self):
        assert category_weight("OWNERSHIP_TRANSFER") == 20
        assert category_weight("DIGITAL") == 10
        assert category_weight("SERVICES") == 5
        assert category_weight("PHYSICAL") == 0
        assert category_weight("TICKETS") == 0

    def test_unknown_category_weighs_nothing(self):
        assert category_weight("SPACESHIPS") == 0
        assert category_weight(None) == 0

    def test_amount_bands(self):
        assert amount_weight(Decimal("1000.00")) == 20
        assert amount_weight(Decimal("999.99")) == 10
        assert amount_weight(Decimal("200")) == 10
        assert amount_weight(Decimal("50")) == 5
        assert amount_weight(Decimal("49.99")) == 0


class TestScoreTransaction:
    def test_formula(self):
        result = score_transaction("DIGITAL", Decimal("100.00"), buyer_risk=10, seller_risk=10)
        # 10 + 5 + 4 + 4
        assert result.score == 23
        assert result.raw_score == Decimal("23.0")

    def test_rounds_half_up(self):
        assert _round_clamp(Decimal("2.5")) == 3
        assert _round_clamp(Decimal("3.5")) == 4
        assert _round_clamp(Decimal("2.49")) == 2

    def test_fractional_user_risk(self):
        # 0.4 * 4 = 1.6
        assert score_transaction("PHYSICAL", Decimal("10"), 4, 0).score == 2
        assert score_transaction("PHYSICAL", Decimal("10"), 1, 0).score == 0

    def test_clamped_to_100(self):
        result = score_transaction("OWNERSHIP_TRANSFER", Decimal("5000"), 100, 100)
        assert result.raw_score == Decimal("120.0")
        assert result.score == 100


class TestComputeTransactionRisk:
    async def test_scores_from_fresh_profiles(self, session, make_transaction):
        tx = await make_transaction()
        breakdown = await explain_transaction_risk(session, tx.id, now=NOW)
        assert breakdown.buyer_risk == 10
        assert breakdown.seller_risk == 10
        assert breakdown.score == 23
        assert breakdown.advisory_used is False

    async def test_ignores_cached_profile_scores(self, session, make_profile, make_transaction):
        await make_profile("buyer-1", buyer_risk_score=90, chargebacks=1)
        tx = await make_transaction()
        breakdown = await explain_transaction_risk(session, tx.id, now=NOW)
        # recomputed: base 10 + chargeback 40
        assert breakdown.buyer_risk == 50

    async def test_advisor_replaces_raw(self, session, make_transaction):
        tx = await make_transaction()
        advisor = _FixedAdvisor(42.5)
        score = await compute_transaction_risk(session, tx.id, advisor=advisor, now=NOW)
        assert score == 43
        assert advisor.calls == [(tx.id, 23.0)]

    async def test_failing_advisor_falls_back(self, session, make_transaction):
        tx = await make_transaction()
        breakdown = await explain_transaction_risk(session, tx.id, advisor=_BrokenAdvisor(), now=NOW)
        assert breakdown.score == 23
        assert breakdown.advisory_used is False

    async def test_out_of_range_advisor_falls_back(self, session, make_transaction):
        tx = await make_transaction()
        score = await compute_transaction_risk(session, tx.id, advisor=_FixedAdvisor(150), now=NOW)
        assert score == 23

    async def test_missing_transaction(self, session):
        with pytest.raises(NotFound):
            await compute_transaction_risk(session, "TX-missing", now=NOW)
