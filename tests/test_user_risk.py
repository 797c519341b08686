"""
Unit tests for the user risk scorer.
Pure functions only: every case builds a ProfileSnapshot by hand.
"""
from datetime import datetime, timedelta, timezone

from escrow_risk.schemas.enums import RiskRole
from escrow_risk.scoring.user_risk import ProfileSnapshot, compute_user_risk, explain_user_risk

REF = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _make_profile(**overrides) -> ProfileSnapshot:
    """Established user with a clean history, then override specific counters."""
    kwargs = {
        "user_id": "USER-001",
        "account_created_at": REF - timedelta(days=400),
    }
    kwargs.update(overrides)
    return ProfileSnapshot(**kwargs)


class TestBaseline:
    def test_clean_established_user_scores_base(self):
        assert compute_user_risk(_make_profile(), RiskRole.BUYER, REF) == 10

    def test_both_roles_share_formula(self):
        profile = _make_profile(chargebacks=1, strikes=4)
        assert compute_user_risk(profile, RiskRole.BUYER, REF) == compute_user_risk(profile, RiskRole.SELLER, REF)

    def test_pure_and_repeatable(self):
        profile = _make_profile(disputes_opened=4, disputes_lost=3)
        first = explain_user_risk(profile, RiskRole.BUYER, REF)
        second = explain_user_risk(profile, RiskRole.BUYER, REF)
        assert first == second


class TestFactors:
    def test_chargeback_adds_40(self):
        assert compute_user_risk(_make_profile(chargebacks=1), RiskRole.BUYER, REF) == 50

    def test_dispute_losses_need_three_opened(self):
        # 2/2 lost but too few disputes to count
        assert compute_user_risk(_make_profile(disputes_opened=2, disputes_lost=2), RiskRole.BUYER, REF) == 10
        assert compute_user_risk(_make_profile(disputes_opened=4, disputes_lost=3), RiskRole.BUYER, REF) == 25

    def test_exactly_half_lost_does_not_fire(self):
        assert compute_user_risk(_make_profile(disputes_opened=4, disputes_lost=2), RiskRole.BUYER, REF) == 10

    def test_three_strikes(self):
        assert compute_user_risk(_make_profile(strikes=2), RiskRole.SELLER, REF) == 10
        assert compute_user_risk(_make_profile(strikes=3), RiskRole.SELLER, REF) == 20

    def test_new_account(self):
        profile = _make_profile(account_created_at=REF - timedelta(days=3))
        assert compute_user_risk(profile, RiskRole.BUYER, REF) == 20

    def test_account_at_fourteen_days_is_not_new(self):
        profile = _make_profile(account_created_at=REF - timedelta(days=14))
        assert compute_user_risk(profile, RiskRole.BUYER, REF) == 10

    def test_unknown_account_age_counts_as_new(self):
        result = explain_user_risk(_make_profile(account_created_at=None), RiskRole.BUYER, REF)
        assert result.score == 20
        assert "new_account" in {f.name for f in result.factors}

    def test_naive_creation_time_treated_as_utc(self):
        naive = (REF - timedelta(days=3)).replace(tzinfo=None)
        assert compute_user_risk(_make_profile(account_created_at=naive), RiskRole.BUYER, REF) == 20

    def test_history_discounts(self):
        profile = _make_profile(successful_transactions=10, total_volume_minor=500_000)
        # 10 - 10 - 10 clamps to 0
        assert compute_user_risk(profile, RiskRole.SELLER, REF) == 0

    def test_volume_just_below_threshold(self):
        profile = _make_profile(total_volume_minor=499_999)
        assert compute_user_risk(profile, RiskRole.SELLER, REF) == 10


class TestBounds:
    def test_worst_case_stays_in_range(self):
        profile = _make_profile(
            chargebacks=5,
            disputes_opened=10,
            disputes_lost=10,
            strikes=9,
            account_created_at=REF - timedelta(hours=1),
        )
        assert compute_user_risk(profile, RiskRole.BUYER, REF) == 85

    def test_more_chargebacks_never_lower_score(self):
        scores = [
            compute_user_risk(_make_profile(chargebacks=n), RiskRole.BUYER, REF)
            for n in range(0, 4)
        ]
        assert scores == sorted(scores)
        assert all(0 <= s <= 100 for s in scores)

    def test_factor_points_sum_to_score(self):
        profile = _make_profile(chargebacks=1, strikes=3)
        result = explain_user_risk(profile, RiskRole.BUYER, REF)
        assert sum(f.points for f in result.factors) == result.score == 60
