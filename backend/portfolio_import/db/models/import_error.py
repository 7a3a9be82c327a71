from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from portfolio_import.db.base import Base
from portfolio_import.db.models._mixins import TimestampMixin

class ImportError(Base, TimestampMixin):
    __tablename__ = "import_error"

    id: Mapped[int] = mapped_column(primary_key=True)
    import_job_id: Mapped[int] = mapped_column(ForeignKey("import_job.id", ondelete="CASCADE"), index=True)
    sheet: Mapped[str | None] = mapped_column(String(128), nullable=True)
    sheet_index: Mapped[int] = mapped_column(Integer, default=0)  # workbook order of the sheet
    row_num: Mapped[int] = mapped_column(Integer)
    column: Mapped[str | None] = mapped_column(String(128), nullable=True)
    field: Mapped[str | None] = mapped_column(String(64), nullable=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    message: Mapped[str] = mapped_column(String(500))
    severity: Mapped[str] = mapped_column(String(16), default="error")  # warning|error|critical

    import_job = relationship("ImportJob", back_populates="errors")
