"""
Closed enums shared by the models, services and API payloads.

Every set here is closed: parsing an unknown value returns None through
`parse_enum`, and the evaluators treat None as "fail closed"
(ineligible / needs_review).
"""
from __future__ import annotations

from enum import Enum
from typing import Optional, TypeVar


class ItemCategory(str, Enum):
    PHYSICAL = "PHYSICAL"
    DIGITAL = "DIGITAL"
    TICKETS = "TICKETS"
    SERVICES = "SERVICES"
    OWNERSHIP_TRANSFER = "OWNERSHIP_TRANSFER"


class TransactionStatus(str, Enum):
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    FUNDED = "FUNDED"
    PROOF_SUBMITTED = "PROOF_SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    DELIVERED_PENDING_RELEASE = "DELIVERED_PENDING_RELEASE"
    DISPUTED = "DISPUTED"
    RELEASED = "RELEASED"
    PAID_OUT = "PAID_OUT"
    REFUNDED = "REFUNDED"
    CANCELED = "CANCELED"


BLOCKING_STATUSES = frozenset({
    TransactionStatus.DISPUTED,
    TransactionStatus.REFUNDED,
    TransactionStatus.CANCELED,
})


class ActorType(str, Enum):
    BUYER = "BUYER"
    SELLER = "SELLER"
    SYSTEM = "SYSTEM"
    ADMIN = "ADMIN"


class EventType(str, Enum):
    RISK_SCORED = "RISK_SCORED"
    BUYER_CONFIRMED_RECEIPT = "BUYER_CONFIRMED_RECEIPT"
    BUYER_CONFIRMED_TICKET_RECEIPT = "BUYER_CONFIRMED_TICKET_RECEIPT"
    SELLER_MARKED_DELIVERED = "SELLER_MARKED_DELIVERED"
    RELEASE_ELIGIBLE = "RELEASE_ELIGIBLE"
    FUNDS_RELEASED = "FUNDS_RELEASED"
    FUNDS_FROZEN = "FUNDS_FROZEN"
    STATUS_CHANGED = "STATUS_CHANGED"
    DISPUTE_OPENED = "DISPUTE_OPENED"
    DISPUTE_AUTO_TRIAGED = "DISPUTE_AUTO_TRIAGED"
    DISPUTE_ABUSE_FLAGGED = "DISPUTE_ABUSE_FLAGGED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
    CHARGEBACK_OR_DISPUTE_CREATED = "CHARGEBACK_OR_DISPUTE_CREATED"
    CHARGEBACK_OR_DISPUTE_UPDATED = "CHARGEBACK_OR_DISPUTE_UPDATED"
    CHARGEBACK_OR_DISPUTE_CLOSED = "CHARGEBACK_OR_DISPUTE_CLOSED"


class EnforcementActionType(str, Enum):
    STRIKE = "strike"
    REQUIRE_CONFIRMATION = "require_confirmation"
    EXTEND_HOLD = "extend_hold"
    FREEZE_FUNDS = "freeze_funds"
    RESTRICT_DISPUTES = "restrict_disputes"
    RESTRICT_CATEGORY = "restrict_category"
    BAN = "ban"


class DisputeReason(str, Enum):
    NOT_RECEIVED = "not_received"
    NOT_AS_DESCRIBED = "not_as_described"
    UNAUTHORIZED = "unauthorized"
    SELLER_NONRESPONSIVE = "seller_nonresponsive"
    OTHER = "other"


class DisputeStatus(str, Enum):
    SUBMITTED = "submitted"
    NEEDS_INFO = "needs_info"
    UNDER_REVIEW = "under_review"
    AUTO_REJECTED = "auto_rejected"
    RESOLVED_BUYER = "resolved_buyer"
    RESOLVED_SELLER = "resolved_seller"
    REJECTED = "rejected"


OPEN_DISPUTE_STATUSES = frozenset({
    DisputeStatus.SUBMITTED,
    DisputeStatus.NEEDS_INFO,
    DisputeStatus.UNDER_REVIEW,
})


class DisputeResolution(str, Enum):
    """Terminal outcomes fed to the metrics updater."""
    RESOLVED_BUYER = "resolved_buyer"
    RESOLVED_SELLER = "resolved_seller"
    AUTO_REJECTED = "auto_rejected"
    REJECTED = "rejected"


class ProcessorDisputeStatus(str, Enum):
    WARNING_NEEDS_RESPONSE = "warning_needs_response"
    WARNING_UNDER_REVIEW = "warning_under_review"
    WARNING_CLOSED = "warning_closed"
    NEEDS_RESPONSE = "needs_response"
    UNDER_REVIEW = "under_review"
    WON = "won"
    LOST = "lost"


OPEN_PROCESSOR_DISPUTE_STATUSES = frozenset({
    ProcessorDisputeStatus.NEEDS_RESPONSE,
    ProcessorDisputeStatus.WARNING_NEEDS_RESPONSE,
    ProcessorDisputeStatus.UNDER_REVIEW,
})


class ProcessorEventKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    CLOSED = "closed"


class TriageDecision(str, Enum):
    AUTO_REJECT = "auto_reject"
    NEEDS_REVIEW = "needs_review"


class RiskRole(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"


class RiskTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TicketTransferStatus(str, Enum):
    PENDING = "pending"
    SELLER_SENT = "seller_sent"
    BUYER_CONFIRMED = "buyer_confirmed"


E = TypeVar("E", bound=Enum)


def parse_enum(enum_cls: type[E], value) -> Optional[E]:
    """Coerce a raw value to `enum_cls`, returning None when unrecognized."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None
