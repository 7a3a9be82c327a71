import datetime as dt
from sqlalchemy import BigInteger, DateTime, Float, String, Index
from sqlalchemy.orm import Mapped, mapped_column

from portfolio_import.db.base import Base
from portfolio_import.db.models._mixins import TimestampMixin

class Position(Base, TimestampMixin):
    __tablename__ = "position"
    __table_args__ = (
        Index("ix_position_user_status", "user_id", "status"),
        Index("ix_position_user_symbol", "user_id", "symbol"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    position_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    user_id: Mapped[int] = mapped_column(BigInteger, index=True)
    # weak reference to import_job.id, used only by rollback
    import_batch_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)

    symbol: Mapped[str] = mapped_column(String(16))
    side: Mapped[str] = mapped_column(String(4))  # BUY|SELL
    volume: Mapped[float] = mapped_column(Float)
    open_time: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    open_price: Mapped[float] = mapped_column(Float)
    close_time: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    close_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    market_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    purchase_value: Mapped[float] = mapped_column(Float)

    commission: Mapped[float] = mapped_column(Float, default=0.0)
    swap: Mapped[float] = mapped_column(Float, default=0.0)
    taxes: Mapped[float] = mapped_column(Float, default=0.0)
    profit: Mapped[float] = mapped_column(Float, default=0.0)

    status: Mapped[str] = mapped_column(String(8), default="open")  # open|closed
    currency: Mapped[str] = mapped_column(String(3))
    comment: Mapped[str | None] = mapped_column(String(500), nullable=True)
    imported_from: Mapped[str] = mapped_column(String(16), default="excel")
