"""saved contexts and extra-slot add-ons

Revision ID: 0003_saved_contexts
Revises: 0002_credit_holds
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0003_saved_contexts"
down_revision = "0002_credit_holds"
branch_labels = None
depends_on = None


def upgrade() -> None:
    from sqlalchemy import inspect as sa_inspect
    inspector = sa_inspect(op.get_bind())
    tables = set(inspector.get_table_names())

    if "saved_contexts" not in tables:
        op.create_table(
            "saved_contexts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("context_name", sa.String(length=100), nullable=False),
            sa.Column("context_text", sa.Text(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.UniqueConstraint("user_id", "context_name", name="uq_saved_contexts_user_name"),
        )
        op.create_index("ix_saved_contexts_user_id", "saved_contexts", ["user_id"])

    if "context_addons" not in tables:
        op.create_table(
            "context_addons",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("chargebee_subscription_id", sa.String(), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("chargebee_status", sa.String(), nullable=True),
            sa.Column("next_billing_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
        op.create_index("ix_context_addons_user_id", "context_addons", ["user_id"])
        op.create_index(
            "ix_context_addons_chargebee_subscription_id", "context_addons", ["chargebee_subscription_id"], unique=True
        )
        op.create_index("ix_context_addons_status", "context_addons", ["status"])


def downgrade() -> None:
    op.drop_table("context_addons")
    op.drop_table("saved_contexts")
