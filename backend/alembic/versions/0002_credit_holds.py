"""credit holds

Revision ID: 0002_credit_holds
Revises: 0001_init
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_credit_holds"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade() -> None:
    from sqlalchemy import inspect as sa_inspect
    inspector = sa_inspect(op.get_bind())
    if "credit_holds" not in set(inspector.get_table_names()):
        op.create_table(
            "credit_holds",
            sa.Column("hold_id", sa.String(), primary_key=True),
            sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("amount", sa.BigInteger(), nullable=False),
            sa.Column("operation", sa.String(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        existing_idxs: set[str] = set()
    else:
        existing_idxs = {idx["name"] for idx in inspector.get_indexes("credit_holds")}

    # unique: one outstanding hold per user
    if "ix_credit_holds_user_id" not in existing_idxs:
        op.create_index("ix_credit_holds_user_id", "credit_holds", ["user_id"], unique=True)
    if "ix_credit_holds_created_at" not in existing_idxs:
        op.create_index("ix_credit_holds_created_at", "credit_holds", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_credit_holds_created_at", table_name="credit_holds")
    op.drop_index("ix_credit_holds_user_id", table_name="credit_holds")
    op.drop_table("credit_holds")
