"""asset independence

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19

Assets stop belonging to one script. Ownership moves into
``script_asset_mappings`` as script-level rows, assets gain upload metadata
(backfilled for existing rows), and the ``script_id`` column is dropped.
Scene-level slots are rebuilt afterwards from the legacy scene pointers by
the ``rebuild_mappings_from_scenes`` repair.
"""

from __future__ import annotations

from datetime import datetime, timezone

import sqlalchemy as sa
from alembic import op


revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


ASSET_TABLES = {
    "images": ("image", "image/png"),
    "videos": ("video", "video/mp4"),
    "audios": ("audio", "audio/mpeg"),
}


def upgrade() -> None:
    op.create_table(
        "script_asset_mappings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("script_id", sa.Integer(), nullable=False),
        sa.Column("scene_id", sa.String(length=64), nullable=True),
        sa.Column("asset_type", sa.String(length=16), nullable=False),
        sa.Column("asset_id", sa.Integer(), nullable=False),
        sa.Column("linked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=True),
    )
    op.create_index("ix_script_asset_mappings_script_id", "script_asset_mappings", ["script_id"])
    op.create_index(
        "uq_script_asset_mappings_slot",
        "script_asset_mappings",
        ["script_id", "scene_id", "asset_type"],
        unique=True,
    )
    op.create_index(
        "uq_script_asset_mappings_script_asset",
        "script_asset_mappings",
        ["script_id", "asset_type", "asset_id"],
        unique=True,
        sqlite_where=sa.text("scene_id IS NULL"),
        postgresql_where=sa.text("scene_id IS NULL"),
    )
    op.create_index("ix_script_asset_mappings_script_type", "script_asset_mappings", ["script_id", "asset_type"])
    op.create_index("ix_script_asset_mappings_type_asset", "script_asset_mappings", ["asset_type", "asset_id"])

    for table in ASSET_TABLES:
        with op.batch_alter_table(table) as batch_op:
            batch_op.add_column(sa.Column("upload_source", sa.String(length=32), nullable=True))
            batch_op.add_column(sa.Column("original_filename", sa.String(length=512), nullable=True))
            batch_op.add_column(sa.Column("mime_type", sa.String(length=128), nullable=True))
            batch_op.add_column(sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=True))

    bind = op.get_bind()
    now = datetime.now(timezone.utc)
    mappings = sa.table(
        "script_asset_mappings",
        sa.column("script_id", sa.Integer),
        sa.column("scene_id", sa.String),
        sa.column("asset_type", sa.String),
        sa.column("asset_id", sa.Integer),
        sa.column("linked_at", sa.DateTime(timezone=True)),
        sa.column("role", sa.String),
    )
    for table, (asset_type, default_mime) in ASSET_TABLES.items():
        columns = [
            sa.column("id", sa.Integer),
            sa.column("script_id", sa.Integer),
            sa.column("upload_source", sa.String),
            sa.column("mime_type", sa.String),
            sa.column("uploaded_at", sa.DateTime(timezone=True)),
        ]
        if table == "audios":
            columns.append(sa.column("is_full_script", sa.Boolean))
        assets = sa.table(table, *columns)

        rows = bind.execute(sa.select(assets).where(assets.c.script_id.is_not(None))).mappings().all()
        if rows:
            bind.execute(
                mappings.insert(),
                [
                    {
                        "script_id": row["script_id"],
                        "scene_id": None,
                        "asset_type": asset_type,
                        "asset_id": row["id"],
                        "linked_at": now,
                        "role": "full-script-audio" if row.get("is_full_script") else None,
                    }
                    for row in rows
                ],
            )

        bind.execute(
            assets.update()
            .where(assets.c.upload_source.is_(None))
            .values(upload_source="ai-generated")
        )
        bind.execute(assets.update().where(assets.c.uploaded_at.is_(None)).values(uploaded_at=now))
        bind.execute(assets.update().where(assets.c.mime_type.is_(None)).values(mime_type=default_mime))

    for table in ASSET_TABLES:
        op.drop_index(f"ix_{table}_script_id", table_name=table)
        with op.batch_alter_table(table) as batch_op:
            batch_op.drop_column("script_id")
            batch_op.create_index(f"ix_{table}_uploaded_at", ["uploaded_at"])
            batch_op.create_index(f"ix_{table}_upload_source", ["upload_source"])


def downgrade() -> None:
    # Scene-level links have no home once assets are owned by one script again;
    # only the first script-level owner of each asset survives.
    for table in ASSET_TABLES:
        with op.batch_alter_table(table) as batch_op:
            batch_op.drop_index(f"ix_{table}_upload_source")
            batch_op.drop_index(f"ix_{table}_uploaded_at")
            batch_op.add_column(sa.Column("script_id", sa.Integer(), nullable=True))
        op.create_index(f"ix_{table}_script_id", table, ["script_id"])

    bind = op.get_bind()
    for table, (asset_type, _) in ASSET_TABLES.items():
        bind.execute(
            sa.text(
                f"UPDATE {table} SET script_id = ("
                "SELECT m.script_id FROM script_asset_mappings m "
                f"WHERE m.asset_type = :asset_type AND m.asset_id = {table}.id "
                "ORDER BY m.id LIMIT 1)"
            ),
            {"asset_type": asset_type},
        )
        with op.batch_alter_table(table) as batch_op:
            batch_op.drop_column("uploaded_at")
            batch_op.drop_column("mime_type")
            batch_op.drop_column("original_filename")
            batch_op.drop_column("upload_source")

    op.drop_index("ix_script_asset_mappings_type_asset", table_name="script_asset_mappings")
    op.drop_index("ix_script_asset_mappings_script_type", table_name="script_asset_mappings")
    op.drop_index("uq_script_asset_mappings_script_asset", table_name="script_asset_mappings")
    op.drop_index("uq_script_asset_mappings_slot", table_name="script_asset_mappings")
    op.drop_index("ix_script_asset_mappings_script_id", table_name="script_asset_mappings")
    op.drop_table("script_asset_mappings")
