"""
Prometheus counters: exposed through the /metrics ASGI mount in main.py.
"""
from prometheus_client import Counter

RELEASE_DECISIONS = Counter(
    "escrow_release_decisions_total",
    "Release eligibility evaluations by category and outcome",
    ["category", "eligible"],
)

FUNDS_RELEASED = Counter(
    "escrow_funds_released_total",
    "Transactions moved to RELEASED",
    ["category"],
)

TRIAGE_DECISIONS = Counter(
    "escrow_triage_decisions_total",
    "Dispute auto-triage outcomes",
    ["category", "decision"],
)

ENFORCEMENT_ACTIONS = Counter(
    "escrow_enforcement_actions_total",
    "Enforcement actions appended",
    ["action_type"],
)

ADVISOR_FALLBACKS = Counter(
    "escrow_advisor_fallbacks_total",
    "Fraud advisory calls that fell back to the raw score",
)

AUDIT_WRITE_FAILURES = Counter(
    "escrow_audit_write_failures_total",
    "Event log appends that failed and were swallowed",
    ["event_type"],
)
