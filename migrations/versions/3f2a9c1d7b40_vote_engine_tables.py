"""vote engine tables

Revision ID: 3f2a9c1d7b40
Revises:
Create Date: 2026-10-19 09:12:44.516203

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3f2a9c1d7b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create award, nominee, vote and vote_bias tables."""
    op.create_table(
        "award",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("voting_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voting_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "nominee",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("award_id", sa.String(length=32), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(["award_id"], ["award.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_nominee_award_id", "nominee", ["award_id"], unique=False)

    op.create_table(
        "vote",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("voter_id", sa.String(length=64), nullable=False),
        sa.Column("award_id", sa.String(length=32), nullable=False),
        sa.Column("nominee_id", sa.String(length=32), nullable=False),
        sa.Column("identity_verified", sa.Boolean(), nullable=False),
        sa.Column("origin_hash", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["award_id"], ["award.id"]),
        sa.ForeignKeyConstraint(["nominee_id"], ["nominee.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("voter_id", "award_id", name="uq_vote_voter_award"),
    )
    op.create_index("ix_vote_award_created", "vote", ["award_id", "created_at"], unique=False)
    op.create_index("ix_vote_nominee_id", "vote", ["nominee_id"], unique=False)

    op.create_table(
        "vote_bias",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("award_id", sa.String(length=32), nullable=False),
        sa.Column("nominee_id", sa.String(length=32), nullable=False),
        sa.Column("bias_amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("applied_by", sa.String(length=64), nullable=False),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_by", sa.String(length=64), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deactivated_by", sa.String(length=64), nullable=True),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deactivation_reason", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["award_id"], ["award.id"]),
        sa.ForeignKeyConstraint(["nominee_id"], ["nominee.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_vote_bias_active_pair",
        "vote_bias",
        ["award_id", "nominee_id"],
        unique=True,
        sqlite_where=sa.text("is_active = 1"),
        postgresql_where=sa.text("is_active"),
    )
    op.create_index(
        "ix_vote_bias_award_active", "vote_bias", ["award_id", "is_active"], unique=False
    )
    op.create_index("ix_vote_bias_applied_at", "vote_bias", ["applied_at"], unique=False)


def downgrade() -> None:
    """Drop the vote engine tables."""
    op.drop_index("ix_vote_bias_applied_at", table_name="vote_bias")
    op.drop_index("ix_vote_bias_award_active", table_name="vote_bias")
    op.drop_index("uq_vote_bias_active_pair", table_name="vote_bias")
    op.drop_table("vote_bias")
    op.drop_index("ix_vote_nominee_id", table_name="vote")
    op.drop_index("ix_vote_award_created", table_name="vote")
    op.drop_table("vote")
    op.drop_index("ix_nominee_award_id", table_name="nominee")
    op.drop_table("nominee")
    op.drop_table("award")
