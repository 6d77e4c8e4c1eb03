"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    inspector = _inspector()
    existing_tables = set(inspector.get_table_names())

    def existing_indexes(table: str) -> set[str]:
        if table not in existing_tables:
            return set()
        return {idx["name"] for idx in inspector.get_indexes(table)}

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("display_name", sa.String(), nullable=True),
            sa.Column("role", sa.String(), nullable=True),
            sa.Column("credits_remaining", sa.BigInteger(), nullable=False, server_default="0"),
            sa.Column("package_type", sa.String(), nullable=True),
            sa.Column("billing_model", sa.String(), nullable=True),
            sa.Column("plan_code", sa.String(), nullable=True),
            sa.Column("chargebee_customer_id", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("users")
    if "ix_users_id" not in idxs:
        op.create_index("ix_users_id", "users", ["id"])
    if "ix_users_email" not in idxs:
        op.create_index("ix_users_email", "users", ["email"])
    if "ix_users_package_type" not in idxs:
        op.create_index("ix_users_package_type", "users", ["package_type"])
    if "ix_users_chargebee_customer_id" not in idxs:
        op.create_index("ix_users_chargebee_customer_id", "users", ["chargebee_customer_id"])

    if "credits_transactions" not in existing_tables:
        op.create_table(
            "credits_transactions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("transaction_type", sa.String(), nullable=False),
            sa.Column("credits_change", sa.BigInteger(), nullable=False),
            sa.Column("description", sa.String(), nullable=True),
            sa.Column("source", sa.String(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("credits_transactions")
    for name, cols in (
        ("ix_credits_transactions_id", ["id"]),
        ("ix_credits_transactions_user_id", ["user_id"]),
        ("ix_credits_transactions_transaction_type", ["transaction_type"]),
        ("ix_credits_transactions_source", ["source"]),
        ("ix_credits_transactions_created_at", ["created_at"]),
    ):
        if name not in idxs:
            op.create_index(name, "credits_transactions", cols)

    if "target_profiles" not in existing_tables:
        op.create_table(
            "target_profiles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("linkedin_url", sa.String(), nullable=False),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("snapshot_id", sa.String(), nullable=True),
            sa.Column("full_name", sa.String(), nullable=True),
            sa.Column("headline", sa.String(), nullable=True),
            sa.Column("current_company", sa.String(), nullable=True),
            sa.Column("location", sa.String(), nullable=True),
            sa.Column("about", sa.Text(), nullable=True),
            sa.Column("data_json", sa.JSON(), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("scraped_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.UniqueConstraint("user_id", "linkedin_url", name="uq_target_profiles_user_url"),
        )
    idxs = existing_indexes("target_profiles")
    for name, cols in (
        ("ix_target_profiles_id", ["id"]),
        ("ix_target_profiles_user_id", ["user_id"]),
        ("ix_target_profiles_linkedin_url", ["linkedin_url"]),
        ("ix_target_profiles_status", ["status"]),
    ):
        if name not in idxs:
            op.create_index(name, "target_profiles", cols)

    if "message_logs" not in existing_tables:
        op.create_table(
            "message_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("target_profile_id", sa.Integer(), nullable=True),
            sa.Column("target_profile_url", sa.String(), nullable=True),
            sa.Column("target_name", sa.String(), nullable=True),
            sa.Column("target_first_name", sa.String(), nullable=True),
            sa.Column("target_company", sa.String(), nullable=True),
            sa.Column("message_type", sa.String(), nullable=True),
            sa.Column("context_text", sa.Text(), nullable=True),
            sa.Column("generated_message", sa.Text(), nullable=True),
            sa.Column("model_name", sa.String(), nullable=True),
            sa.Column("prompt_tokens", sa.Integer(), nullable=True),
            sa.Column("completion_tokens", sa.Integer(), nullable=True),
            sa.Column("credits_used", sa.BigInteger(), nullable=True),
            sa.Column("email_finder", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("message_logs")
    for name, cols in (
        ("ix_message_logs_id", ["id"]),
        ("ix_message_logs_user_id", ["user_id"]),
        ("ix_message_logs_target_profile_id", ["target_profile_id"]),
        ("ix_message_logs_target_profile_url", ["target_profile_url"]),
        ("ix_message_logs_message_type", ["message_type"]),
        ("ix_message_logs_created_at", ["created_at"]),
    ):
        if name not in idxs:
            op.create_index(name, "message_logs", cols)


def downgrade() -> None:
    op.drop_table("message_logs")
    op.drop_table("target_profiles")
    op.drop_table("credits_transactions")
    op.drop_table("users")
