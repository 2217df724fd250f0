"""kpi_tracker_core_tables

Create indicators / activities / risks and the import_history ledger.

Revision ID: 7c1e4a9b2d30
Revises:
Create Date: 2026-10-12 09:30:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "7c1e4a9b2d30"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "indicators" not in existing_tables:
        op.create_table(
            "indicators",
            sa.Column("id", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=300), nullable=False),
            sa.Column("area", sa.String(length=30), nullable=False),
            sa.Column("target", sa.Float(), nullable=False),
            sa.Column("actual", sa.Float(), nullable=False),
            sa.Column("measurement_date", sa.Date(), nullable=True),
            sa.Column("responsible", sa.String(length=150), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("seq", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("observations", sa.Text(), nullable=True),
            sa.Column("import_batch_id", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_indicators_area", "indicators", ["area"])
        op.create_index("ix_indicators_status", "indicators", ["status"])
        op.create_index("ix_indicators_import_batch_id", "indicators", ["import_batch_id"])

    if "activities" not in existing_tables:
        op.create_table(
            "activities",
            sa.Column("id", sa.String(length=120), nullable=False),
            sa.Column("indicator_id", sa.String(length=64), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("name", sa.String(length=300), nullable=False),
            sa.Column("area", sa.String(length=30), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("progress", sa.Integer(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("estimated_end_date", sa.Date(), nullable=True),
            sa.Column("actual_end_date", sa.Date(), nullable=True),
            sa.Column("responsible", sa.String(length=150), nullable=True),
            sa.Column("observations", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["indicator_id"], ["indicators.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_activities_indicator_id", "activities", ["indicator_id"])

    if "risks" not in existing_tables:
        op.create_table(
            "risks",
            sa.Column("id", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=300), nullable=False),
            sa.Column("area", sa.String(length=30), nullable=False),
            sa.Column("category", sa.String(length=100), nullable=True),
            sa.Column("impact", sa.String(length=10), nullable=True),
            sa.Column("probability", sa.String(length=10), nullable=True),
            sa.Column("exposure", sa.Integer(), nullable=True),
            sa.Column("mitigation_plan", sa.Text(), nullable=True),
            sa.Column("mitigation_status", sa.String(length=20), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("responsible", sa.String(length=150), nullable=True),
            sa.Column("import_batch_id", sa.String(length=36), nullable=True),
            sa.Column("seq", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_risks_area", "risks", ["area"])
        op.create_index("ix_risks_status", "risks", ["status"])
        op.create_index("ix_risks_import_batch_id", "risks", ["import_batch_id"])

    if "import_history" not in existing_tables:
        op.create_table(
            "import_history",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("seq", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("file_name", sa.String(length=255), nullable=False),
            sa.Column("file_size", sa.Integer(), nullable=True),
            sa.Column("file_hash", sa.String(length=64), nullable=False, server_default="unknown"),
            sa.Column("file_type", sa.String(length=10), nullable=True),
            sa.Column("imported_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("indicators_count", sa.Integer(), nullable=True),
            sa.Column("activities_count", sa.Integer(), nullable=True),
            sa.Column("risks_count", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=10), nullable=False, server_default="error"),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("imported_by_id", sa.String(length=64), nullable=True),
            sa.Column("imported_by", sa.String(length=150), nullable=True),
            sa.Column("imported_by_role", sa.String(length=30), nullable=True),
            sa.Column("areas", sa.JSON(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_import_history_hash", "import_history", ["file_hash"])
        op.create_index("idx_import_history_name_status", "import_history", ["file_name", "status"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "import_history" in existing_tables:
        op.drop_index("idx_import_history_name_status", table_name="import_history")
        op.drop_index("idx_import_history_hash", table_name="import_history")
        op.drop_table("import_history")

    if "risks" in existing_tables:
        op.drop_index("ix_risks_import_batch_id", table_name="risks")
        op.drop_index("ix_risks_status", table_name="risks")
        op.drop_index("ix_risks_area", table_name="risks")
        op.drop_table("risks")

    if "activities" in existing_tables:
        op.drop_index("ix_activities_indicator_id", table_name="activities")
        op.drop_table("activities")

    if "indicators" in existing_tables:
        op.drop_index("ix_indicators_import_batch_id", table_name="indicators")
        op.drop_index("ix_indicators_status", table_name="indicators")
        op.drop_index("ix_indicators_area", table_name="indicators")
        op.drop_table("indicators")
