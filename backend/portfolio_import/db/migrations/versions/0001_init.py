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

def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    ]

def upgrade():
    op.create_table(
        "import_job",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("original_name", sa.String(length=255), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("mime_type", sa.String(length=128), nullable=False),
        sa.Column("file_path", sa.String(length=500), nullable=True),
        sa.Column("import_type", sa.String(length=32), nullable=False, server_default="mixed"),
        sa.Column("has_headers", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("date_format", sa.String(length=16), nullable=False, server_default="auto"),
        sa.Column("allow_duplicates", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("progress_percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("progress_step", sa.String(length=32), nullable=False, server_default="uploading"),
        sa.Column("progress_message", sa.String(length=200), nullable=True),
        sa.Column("total_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processed_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("successful_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duplicate_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("positions_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cash_operations_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pending_orders_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("records_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("can_rollback", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_rolled_back", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("rollback_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rollback_reason", sa.String(length=200), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("heartbeat_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("avg_ms_per_row", sa.Float(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_import_job_user_id", "import_job", ["user_id"])
    op.create_index("ix_import_job_status", "import_job", ["status"])
    op.create_index("ix_import_job_user_status", "import_job", ["user_id", "status"])

    op.create_table(
        "import_error",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("import_job_id", sa.Integer(), sa.ForeignKey("import_job.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sheet", sa.String(length=128), nullable=True),
        sa.Column("row_num", sa.Integer(), nullable=False),
        sa.Column("column", sa.String(length=128), nullable=True),
        sa.Column("field", sa.String(length=64), nullable=True),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("message", sa.String(length=500), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False, server_default="error"),
        *_timestamps(),
    )
    op.create_index("ix_import_error_import_job_id", "import_error", ["import_job_id"])

    # import_batch_id is a weak reference to import_job.id (no FK): deleting a job keeps its records
    op.create_table(
        "position",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("position_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("import_batch_id", sa.BigInteger(), nullable=True),
        sa.Column("symbol", sa.String(length=16), nullable=False),
        sa.Column("side", sa.String(length=4), nullable=False),
        sa.Column("volume", sa.Float(), nullable=False),
        sa.Column("open_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("open_price", sa.Float(), nullable=False),
        sa.Column("close_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("close_price", sa.Float(), nullable=True),
        sa.Column("market_price", sa.Float(), nullable=True),
        sa.Column("purchase_value", sa.Float(), nullable=False),
        sa.Column("commission", sa.Float(), nullable=False, server_default="0"),
        sa.Column("swap", sa.Float(), nullable=False, server_default="0"),
        sa.Column("taxes", sa.Float(), nullable=False, server_default="0"),
        sa.Column("profit", sa.Float(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=8), nullable=False, server_default="open"),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("comment", sa.String(length=500), nullable=True),
        sa.Column("imported_from", sa.String(length=16), nullable=False, server_default="excel"),
        *_timestamps(),
    )
    op.create_index("ix_position_position_id", "position", ["position_id"], unique=True)
    op.create_index("ix_position_user_id", "position", ["user_id"])
    op.create_index("ix_position_import_batch_id", "position", ["import_batch_id"])
    op.create_index("ix_position_user_status", "position", ["user_id", "status"])
    op.create_index("ix_position_user_symbol", "position", ["user_id", "symbol"])

    op.create_table(
        "cash_operation",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("operation_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("import_batch_id", sa.BigInteger(), nullable=True),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("comment", sa.String(length=200), nullable=False),
        sa.Column("symbol", sa.String(length=16), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="completed"),
        sa.Column("source", sa.String(length=16), nullable=False, server_default="import"),
        *_timestamps(),
    )
    op.create_index("ix_cash_operation_operation_id", "cash_operation", ["operation_id"], unique=True)
    op.create_index("ix_cash_operation_user_id", "cash_operation", ["user_id"])
    op.create_index("ix_cash_operation_import_batch_id", "cash_operation", ["import_batch_id"])
    op.create_index("ix_cash_operation_user_type", "cash_operation", ["user_id", "type"])
    op.create_index("ix_cash_operation_user_time", "cash_operation", ["user_id", "time"])

    op.create_table(
        "pending_order",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("import_batch_id", sa.BigInteger(), nullable=True),
        sa.Column("symbol", sa.String(length=16), nullable=False),
        sa.Column("order_type", sa.String(length=16), nullable=False),
        sa.Column("side", sa.String(length=4), nullable=False),
        sa.Column("volume", sa.Float(), nullable=False),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("stop_price", sa.Float(), nullable=True),
        sa.Column("purchase_value", sa.Float(), nullable=False, server_default="0"),
        sa.Column("open_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expiry_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("comment", sa.String(length=500), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_pending_order_order_id", "pending_order", ["order_id"], unique=True)
    op.create_index("ix_pending_order_user_id", "pending_order", ["user_id"])
    op.create_index("ix_pending_order_import_batch_id", "pending_order", ["import_batch_id"])
    op.create_index("ix_pending_order_user_status", "pending_order", ["user_id", "status"])

def downgrade():
    op.drop_table("pending_order")
    op.drop_table("cash_operation")
    op.drop_table("position")
    op.drop_table("import_error")
    op.drop_table("import_job")
