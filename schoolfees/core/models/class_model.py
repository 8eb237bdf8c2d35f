"""Campus-scoped classes (e.g. Nursery, Grade 5). Model named SchoolClass to avoid Python 'class' keyword."""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from schoolfees.db.session import Base


class SchoolClass(Base):
    """Class master per campus. Fee tables never reference it directly, only through class_uuid()."""

    __tablename__ = "classes"
    __table_args__ = (
        UniqueConstraint("campus_id", "class_name", name="uq_class_campus_name"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    campus_id = Column(Integer, nullable=False, index=True)
    class_level = Column(Integer, nullable=True)
    class_name = Column(String(50), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
