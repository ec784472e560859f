"""initial_schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "kines",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uid", sa.String(length=128), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("first_name", sa.String(length=100), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("stripe_customer_id", sa.String(length=255), nullable=True),
        sa.Column("referral_code", sa.String(length=16), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("stripe_customer_id"),
        sa.UniqueConstraint("referral_code"),
    )
    op.create_index("ix_kines_uid", "kines", ["uid"], unique=True)

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "kine_id",
            sa.Integer(),
            sa.ForeignKey("kines.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("stripe_subscription_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_customer_id", sa.String(length=255), nullable=True),
        sa.Column("plan_type", sa.String(length=20), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "cancel_at_period_end",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("last_event_created", sa.BigInteger(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("kine_id"),
        sa.UniqueConstraint("stripe_subscription_id"),
    )
    op.create_index(
        "idx_subscriptions_customer", "subscriptions", ["stripe_customer_id"]
    )

    op.create_table(
        "processed_webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider", sa.String(length=20), nullable=False),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("outcome", sa.String(length=20), nullable=False),
        sa.Column("detail", sa.Text(), nullable=True),
        _timestamp("received_at"),
        sa.UniqueConstraint("event_id"),
    )

    op.create_table(
        "referrals",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("referrer_id", sa.Integer(), sa.ForeignKey("kines.id"), nullable=False),
        sa.Column("referee_id", sa.Integer(), sa.ForeignKey("kines.id"), nullable=False),
        sa.Column("code", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("plan_subscribed", sa.String(length=20), nullable=True),
        sa.Column("credit_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "referrer_credited", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "referee_credited", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        _timestamp("created_at"),
        sa.Column("credited_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("referee_id"),
    )
    op.create_index(
        "idx_referrals_referrer_status", "referrals", ["referrer_id", "status"]
    )

    op.create_table(
        "patients",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "kine_id",
            sa.Integer(),
            sa.ForeignKey("kines.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("phone", sa.String(length=30), nullable=True),
        sa.Column(
            "whatsapp_consent", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        _timestamp("created_at"),
    )

    op.create_table(
        "programmes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "patient_id",
            sa.Integer(),
            sa.ForeignKey("patients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("date_fin", sa.DateTime(timezone=True), nullable=False),
        _timestamp("created_at"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "kine_id",
            sa.Integer(),
            sa.ForeignKey("kines.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id"), nullable=True),
        sa.Column(
            "programme_id", sa.Integer(), sa.ForeignKey("programmes.id"), nullable=True
        ),
        sa.Column("type", sa.String(length=40), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
    )
    op.create_index(
        "idx_notifications_kine_read", "notifications", ["kine_id", "is_read"]
    )
    op.create_index(
        "idx_notifications_kine_created", "notifications", ["kine_id", "created_at"]
    )

    op.create_table(
        "message_send_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("kine_id", sa.Integer(), sa.ForeignKey("kines.id"), nullable=False),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id"), nullable=True),
        sa.Column(
            "programme_id", sa.Integer(), sa.ForeignKey("programmes.id"), nullable=True
        ),
        sa.Column("method", sa.String(length=20), nullable=False),
        sa.Column("recipient", sa.String(length=320), nullable=False),
        sa.Column("template_name", sa.String(length=100), nullable=True),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_message_history_kine_sent", "message_send_history", ["kine_id", "sent_at"]
    )

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "kine_id",
            sa.Integer(),
            sa.ForeignKey("kines.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index(
        "idx_chat_messages_kine_created", "chat_messages", ["kine_id", "created_at"]
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("idx_chat_messages_kine_created", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_index("idx_message_history_kine_sent", table_name="message_send_history")
    op.drop_table("message_send_history")
    op.drop_index("idx_notifications_kine_created", table_name="notifications")
    op.drop_index("idx_notifications_kine_read", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("programmes")
    op.drop_table("patients")
    op.drop_index("idx_referrals_referrer_status", table_name="referrals")
    op.drop_table("referrals")
    op.drop_table("processed_webhook_events")
    op.drop_index("idx_subscriptions_customer", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_index("ix_kines_uid", table_name="kines")
    op.drop_table("kines")
