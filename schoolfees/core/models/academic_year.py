from datetime import datetime, timezone

from sqlalchemy import Column, Date, DateTime, Integer, String, Uuid

from schoolfees.db.session import Base


class AcademicYear(Base):
    """
    Academic year per campus (e.g. "2025-2026").
    Owned by the academic module; the fee ledger only reads year_name for display.
    """

    __tablename__ = "academic_years"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    campus_id = Column(Integer, nullable=False, index=True)
    year_name = Column(String(50), nullable=False)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
