"""Create datasets and lastsync tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

from qvain_sync.adapters.sqlalchemy.mappings import JsonBlob, UTCDateTime

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "datasets",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("creator", sa.Uuid(), nullable=False),
        sa.Column("owner", sa.Uuid(), nullable=False),
        sa.Column("created", UTCDateTime(), nullable=True),
        sa.Column("modified", UTCDateTime(), nullable=True),
        sa.Column("synced", UTCDateTime(), nullable=True),
        sa.Column("seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("valid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("family", sa.Integer(), nullable=False),
        sa.Column("schema", sa.String(length=64), nullable=False),
        sa.Column("based_on", sa.Uuid(), nullable=True),
        sa.Column("blob", JsonBlob(), nullable=False),
        sa.ForeignKeyConstraint(
            ["based_on"], ["datasets.id"], name=op.f("fk_datasets_based_on_datasets")
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_datasets")),
    )
    op.create_index(op.f("ix_datasets_owner"), "datasets", ["owner"], unique=False)

    op.create_table(
        "lastsync",
        sa.Column("uid", sa.Uuid(), nullable=False),
        sa.Column("ts", UTCDateTime(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("uid", name=op.f("pk_lastsync")),
    )


def downgrade() -> None:
    op.drop_table("lastsync")
    op.drop_index(op.f("ix_datasets_owner"), table_name="datasets")
    op.drop_table("datasets")
