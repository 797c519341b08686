"""
User Risk Scorer: buyer / seller risk on a 0-100 scale.

Pure functions over an explicit ProfileSnapshot: no I/O, no caches. The
caller reads the profile and persists the result separately
(ProfileStore.refresh_scores).

Convention: HIGHER score = HIGHER risk.

Rules (applied additively to a base of 10, then clamped to [0, 100]):
  +40  chargebacks >= 1
  +15  disputes_lost / disputes_opened > 0.5 AND disputes_opened >= 3
  +10  strikes >= 3
  +10  account younger than 14 days
  -10  successful_transactions >= 10
  -10  total volume >= 5,000.00 (500,000 minor units)
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from escrow_risk.schemas.enums import RiskRole

BASE_SCORE = 10
NEW_ACCOUNT_DAYS = 14
TRUSTED_TRANSACTION_COUNT = 10
TRUSTED_VOLUME_MINOR = 500_000


@dataclass(frozen=True)
class ProfileSnapshot:
    user_id: str
    strikes: int = 0
    chargebacks: int = 0
    disputes_opened: int = 0
    disputes_lost: int = 0
    successful_transactions: int = 0
    total_volume_minor: int = 0
    account_created_at: Optional[datetime] = None

    @classmethod
    def from_profile(cls, profile) -> ProfileSnapshot:
        """Freeze a RiskProfile row. Falls back to the row's own creation time for account age."""
        return cls(
            user_id=profile.user_id,
            strikes=profile.strikes or 0,
            chargebacks=profile.chargebacks or 0,
            disputes_opened=profile.disputes_opened or 0,
            disputes_lost=profile.disputes_lost or 0,
            successful_transactions=profile.successful_transactions or 0,
            total_volume_minor=profile.total_volume_minor or 0,
            account_created_at=profile.account_created_at or profile.created_at,
        )


@dataclass(frozen=True)
class RiskFactor:
    name: str
    points: int
    detail: str


@dataclass(frozen=True)
class UserRiskResult:
    user_id: str
    role: RiskRole
    score: int
    factors: tuple[RiskFactor, ...]


def _account_age_days(created_at: Optional[datetime], reference_time: datetime) -> Optional[float]:
    if created_at is None:
        return None
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return (reference_time - created_at).total_seconds() / 86_400


def explain_user_risk(
    profile: ProfileSnapshot,
    role: RiskRole,
    reference_time: Optional[datetime] = None,
) -> UserRiskResult:
    ref = reference_time or datetime.now(timezone.utc)
    factors: list[RiskFactor] = [RiskFactor("base", BASE_SCORE, "Base score")]

    if profile.chargebacks >= 1:
        factors.append(RiskFactor("chargebacks", 40, f"{profile.chargebacks} chargeback(s)"))

    if profile.disputes_opened >= 3:
        loss_ratio = profile.disputes_lost / profile.disputes_opened
        if loss_ratio > 0.5:
            factors.append(RiskFactor(
                "dispute_losses", 15,
                f"{profile.disputes_lost}/{profile.disputes_opened} disputes lost ({loss_ratio:.0%})",
            ))

    if profile.strikes >= 3:
        factors.append(RiskFactor("strikes", 10, f"{profile.strikes} strikes"))

    # Unknown account age counts as new
    age_days = _account_age_days(profile.account_created_at, ref)
    if age_days is None or age_days < NEW_ACCOUNT_DAYS:
        detail = "Account age unknown" if age_days is None else f"Account age {age_days:.1f} days"
        factors.append(RiskFactor("new_account", 10, detail))

    if profile.successful_transactions >= TRUSTED_TRANSACTION_COUNT:
        factors.append(RiskFactor(
            "transaction_history", -10,
            f"{profile.successful_transactions} successful transactions",
        ))

    if profile.total_volume_minor >= TRUSTED_VOLUME_MINOR:
        factors.append(RiskFactor(
            "volume_history", -10,
            f"Lifetime volume {profile.total_volume_minor / 100:,.2f}",
        ))

    raw = sum(f.points for f in factors)
    score = max(0, min(100, raw))
    return UserRiskResult(user_id=profile.user_id, role=role, score=score, factors=tuple(factors))


def compute_user_risk(
    profile: ProfileSnapshot,
    role: RiskRole,
    reference_time: Optional[datetime] = None,
) -> int:
    """Score in [0, 100]. Both roles share one formula; role is kept for explainability."""
    return explain_user_risk(profile, role, reference_time).score
