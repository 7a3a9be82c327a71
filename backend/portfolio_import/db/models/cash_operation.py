import datetime as dt
from sqlalchemy import BigInteger, DateTime, Float, String, Index
from sqlalchemy.orm import Mapped, mapped_column

from portfolio_import.db.base import Base
from portfolio_import.db.models._mixins import TimestampMixin

class CashOperation(Base, TimestampMixin):
    __tablename__ = "cash_operation"
    __table_args__ = (
        Index("ix_cash_operation_user_type", "user_id", "type"),
        Index("ix_cash_operation_user_time", "user_id", "time"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    operation_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    user_id: Mapped[int] = mapped_column(BigInteger, index=True)
    import_batch_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)

    type: Mapped[str] = mapped_column(String(32))
    time: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    amount: Mapped[float] = mapped_column(Float)
    currency: Mapped[str] = mapped_column(String(3))
    comment: Mapped[str] = mapped_column(String(200))
    symbol: Mapped[str | None] = mapped_column(String(16), nullable=True)

    status: Mapped[str] = mapped_column(String(16), default="completed")
    source: Mapped[str] = mapped_column(String(16), default="import")
