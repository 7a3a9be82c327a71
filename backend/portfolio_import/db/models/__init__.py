# import all models for Alembic
from portfolio_import.db.models.import_job import ImportJob
from portfolio_import.db.models.import_error import ImportError
from portfolio_import.db.models.position import Position
from portfolio_import.db.models.cash_operation import CashOperation
from portfolio_import.db.models.pending_order import PendingOrder
