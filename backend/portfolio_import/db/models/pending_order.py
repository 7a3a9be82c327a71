import datetime as dt
from sqlalchemy import BigInteger, DateTime, Float, String, Index
from sqlalchemy.orm import Mapped, mapped_column

from portfolio_import.db.base import Base
from portfolio_import.db.models._mixins import TimestampMixin

class PendingOrder(Base, TimestampMixin):
    __tablename__ = "pending_order"
    __table_args__ = (Index("ix_pending_order_user_status", "user_id", "status"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    user_id: Mapped[int] = mapped_column(BigInteger, index=True)
    import_batch_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)

    symbol: Mapped[str] = mapped_column(String(16))
    order_type: Mapped[str] = mapped_column(String(16))  # market|limit|stop|stop_limit|trailing_stop
    side: Mapped[str] = mapped_column(String(4))  # buy|sell
    volume: Mapped[float] = mapped_column(Float)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    stop_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    purchase_value: Mapped[float] = mapped_column(Float, default=0.0)
    open_time: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    expiry_time: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    status: Mapped[str] = mapped_column(String(16), default="pending")
    comment: Mapped[str | None] = mapped_column(String(500), nullable=True)
