"""number format options, error ordering by sheet

Revision ID: 0002_number_format_error_order
Revises: 0001_init
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0002_number_format_error_order"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade():
    op.add_column("import_job", sa.Column("decimal_separator", sa.String(length=8), nullable=False, server_default="auto"))
    op.add_column("import_job", sa.Column("thousands_separator", sa.String(length=8), nullable=False, server_default="auto"))

    op.add_column("import_error", sa.Column("sheet_index", sa.Integer(), nullable=False, server_default="0"))
    op.create_index(
        "ix_import_error_job_order",
        "import_error",
        ["import_job_id", "sheet_index", "row_num"],
    )


def downgrade():
    op.drop_index("ix_import_error_job_order", table_name="import_error")
    op.drop_column("import_error", "sheet_index")
    op.drop_column("import_job", "thousands_separator")
    op.drop_column("import_job", "decimal_separator")
