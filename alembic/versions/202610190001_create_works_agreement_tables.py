"""create works agreement tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "works_agreement",
        sa.Column("job_id", sa.String(length=64), nullable=False),
        sa.Column("job_no", sa.String(length=80), nullable=False),
        sa.Column("job_name", sa.String(length=255), nullable=False),
        sa.Column("client_name", sa.String(length=255), nullable=False),
        sa.Column("site_address", sa.Text(), nullable=False),
        sa.Column("site_name", sa.String(length=255), nullable=False),
        sa.Column("initial_works", sa.Text(), nullable=False),
        sa.Column("colour_scheme", sa.String(length=255), nullable=False),
        sa.Column("total_inc_gst", sa.Numeric(18, 2), nullable=False),
        sa.Column("agreement_date", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="draft"),
        sa.Column("provenance", sa.String(length=16), nullable=False),
        sa.PrimaryKeyConstraint("job_id"),
    )

    op.create_table(
        "works_agreement_payment",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.String(length=64), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("label", sa.String(length=64), nullable=False),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(["job_id"], ["works_agreement.job_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_works_agreement_payment_job", "works_agreement_payment", ["job_id", "position"])

    op.create_table(
        "works_agreement_audit",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("job_id", sa.String(length=64), nullable=False),
        sa.Column("source_kind", sa.String(length=32), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("outcome", sa.String(length=32), nullable=False),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column("total_inc_gst", sa.Numeric(18, 2), nullable=True),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_works_agreement_audit_job", "works_agreement_audit", ["job_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_works_agreement_audit_job", table_name="works_agreement_audit")
    op.drop_table("works_agreement_audit")

    op.drop_index("ix_works_agreement_payment_job", table_name="works_agreement_payment")
    op.drop_table("works_agreement_payment")

    op.drop_table("works_agreement")
