"""initial

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19

Assets are owned by a single script through a ``script_id`` column and the
scene documents point at generated media with ``generatedImageId`` /
``generatedVideoId``.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _asset_table(name: str, *extra: sa.Column) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("script_id", sa.Integer(), nullable=True),
        sa.Column("data", sa.LargeBinary(), nullable=False),
        *extra,
    )
    op.create_index(f"ix_{name}_script_id", name, ["script_id"])


def upgrade() -> None:
    op.create_table(
        "scripts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("acts", sa.JSON(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_scripts_title", "scripts", ["title"])

    _asset_table("images")
    _asset_table("videos", sa.Column("duration", sa.Float(), nullable=True))
    _asset_table(
        "audios",
        sa.Column("duration", sa.Float(), nullable=True),
        sa.Column("is_full_script", sa.Boolean(), nullable=False, server_default=sa.false()),
    )

    op.create_table(
        "prompts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=False, server_default="general"),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_prompts_category", "prompts", ["category"])
    op.create_index("ix_prompts_created_at", "prompts", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_prompts_created_at", table_name="prompts")
    op.drop_index("ix_prompts_category", table_name="prompts")
    op.drop_table("prompts")
    for name in ("audios", "videos", "images"):
        op.drop_index(f"ix_{name}_script_id", table_name=name)
        op.drop_table(name)
    op.drop_index("ix_scripts_title", table_name="scripts")
    op.drop_table("scripts")
