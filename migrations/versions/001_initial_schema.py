"""
001: Initial schema: transactions, event log, risk profiles, enforcement,
disputes, processor disputes and delivery signals

Revision ID: 001
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSON

revision = "001"
down_revision = None
branch_labels = None
depends_on = None

TZ = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "transactions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("item_category", sa.String(30), nullable=False),
        sa.Column("subtotal", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("buyer_id", sa.String(64), nullable=False),
        sa.Column("seller_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(40), nullable=False, server_default="AWAITING_PAYMENT"),

        sa.Column("risk_score", sa.Integer, nullable=True),
        sa.Column("risk_scored_at", TZ, nullable=True),
        sa.Column("hold_until", TZ, nullable=True),
        sa.Column("requires_buyer_confirmation", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("requires_manual_review", sa.Boolean, nullable=False, server_default=sa.false()),

        sa.Column("release_eligible_at", TZ, nullable=True),
        sa.Column("released_at", TZ, nullable=True),
        sa.Column("event_date", TZ, nullable=True),
        sa.Column("funded_at", TZ, nullable=True),

        sa.Column("created_at", TZ, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", TZ, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_transactions_buyer_id", "transactions", ["buyer_id"])
    op.create_index("ix_transactions_seller_id", "transactions", ["seller_id"])
    op.create_index("ix_transactions_status", "transactions", ["status"])

    op.create_table(
        "transaction_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("transaction_id", sa.String(64), nullable=False),
        sa.Column("actor_type", sa.String(10), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("event_type", sa.String(60), nullable=False),
        sa.Column("payload", JSON, nullable=False),
        sa.Column("ip_hash", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text, nullable=True),
        sa.Column("device_fingerprint", sa.String(255), nullable=True),
        sa.Column("created_at", TZ, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_transaction_events_tx_type", "transaction_events", ["transaction_id", "event_type"])
    op.create_index("ix_transaction_events_tx_created", "transaction_events", ["transaction_id", "created_at"])

    op.create_table(
        "risk_profiles",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("buyer_risk_score", sa.Integer, nullable=False, server_default="0"),
        sa.Column("seller_risk_score", sa.Integer, nullable=False, server_default="0"),
        sa.Column("strikes", sa.Integer, nullable=False, server_default="0"),
        sa.Column("chargebacks", sa.Integer, nullable=False, server_default="0"),
        sa.Column("disputes_opened", sa.Integer, nullable=False, server_default="0"),
        sa.Column("disputes_lost", sa.Integer, nullable=False, server_default="0"),
        sa.Column("successful_transactions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_volume_minor", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("last_chargeback_at", TZ, nullable=True),
        sa.Column("last_dispute_at", TZ, nullable=True),
        sa.Column("account_created_at", TZ, nullable=True),
        sa.Column("created_at", TZ, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", TZ, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("buyer_risk_score >= 0 AND buyer_risk_score <= 100", name="ck_buyer_risk_range"),
        sa.CheckConstraint("seller_risk_score >= 0 AND seller_risk_score <= 100", name="ck_seller_risk_range"),
    )

    op.create_table(
        "metric_ledger",
        sa.Column("dedup_key", sa.String(160), primary_key=True),
        sa.Column("created_at", TZ, nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "enforcement_actions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("action_type", sa.String(30), nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("meta", JSON, nullable=False),
        sa.Column("created_at", TZ, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_enforcement_actions_user_id", "enforcement_actions", ["user_id"])
    op.create_index("ix_enforcement_actions_action_type", "enforcement_actions", ["action_type"])
    op.create_index("ix_enforcement_actions_created_at", "enforcement_actions", ["created_at"])

    op.create_table(
        "user_restrictions",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("funds_frozen", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("frozen_reason", sa.Text, nullable=True),
        sa.Column("disputes_restricted_until", TZ, nullable=True),
        sa.Column("categories_blocked", JSON, nullable=False),
        sa.Column("banned_at", TZ, nullable=True),
        sa.Column("updated_at", TZ, nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "disputes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("transaction_id", sa.String(64), nullable=False),
        sa.Column("opened_by", sa.String(64), nullable=False),
        sa.Column("reason", sa.String(40), nullable=False),
        sa.Column("category", sa.String(30), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="submitted"),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("triage_decision", sa.String(20), nullable=True),
        sa.Column("triage_signals", JSON, nullable=True),
        sa.Column("triage_rationale", sa.Text, nullable=True),
        sa.Column("created_at", TZ, nullable=False, server_default=sa.func.now()),
        sa.Column("resolved_at", TZ, nullable=True),
    )
    op.create_index("ix_disputes_transaction_id", "disputes", ["transaction_id"])
    op.create_index("ix_disputes_opened_by", "disputes", ["opened_by"])
    op.create_index("ix_disputes_status", "disputes", ["status"])

    op.create_table(
        "processor_disputes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("processor_dispute_id", sa.String(100), nullable=False, unique=True),
        sa.Column("charge_id", sa.String(100), nullable=False),
        sa.Column("transaction_id", sa.String(64), nullable=True),
        sa.Column("buyer_id", sa.String(64), nullable=True),
        sa.Column("seller_id", sa.String(64), nullable=True),
        sa.Column("amount_minor", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("reason", sa.String(60), nullable=True),
        sa.Column("evidence_due_by", TZ, nullable=True),
        sa.Column("created_at", TZ, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", TZ, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_processor_disputes_charge_id", "processor_disputes", ["charge_id"])
    op.create_index("ix_processor_disputes_transaction_id", "processor_disputes", ["transaction_id"])

    op.create_table(
        "digital_deliveries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("transaction_id", sa.String(64), nullable=False, unique=True),
        sa.Column("uploaded_at", TZ, nullable=False),
    )
    op.create_table(
        "delivery_views",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("transaction_id", sa.String(64), nullable=False),
        sa.Column("viewer_id", sa.String(64), nullable=True),
        sa.Column("downloaded", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("seconds_viewed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", TZ, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_delivery_views_transaction_id", "delivery_views", ["transaction_id"])
    op.create_table(
        "ticket_transfers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("transaction_id", sa.String(64), nullable=False, unique=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("seller_claimed_sent_at", TZ, nullable=True),
        sa.Column("buyer_confirmed_received_at", TZ, nullable=True),
    )


def downgrade() -> None:
    for table in (
        "ticket_transfers",
        "delivery_views",
        "digital_deliveries",
        "processor_disputes",
        "disputes",
        "user_restrictions",
        "enforcement_actions",
        "metric_ledger",
        "risk_profiles",
        "transaction_events",
        "transactions",
    ):
        op.drop_table(table)
