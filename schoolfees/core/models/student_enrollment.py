from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from schoolfees.core.enums import EnrollmentStatus
from schoolfees.db.session import Base


class StudentEnrollment(Base):
    """
    Student enrollment per academic year, keyed by username and class name.
    Promotion creates a new record; the old one moves to PROMOTED.
    """

    __tablename__ = "student_enrollment"
    __table_args__ = (
        UniqueConstraint("username", "academic_year_id", name="uq_enrollment_username_year"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), nullable=False, index=True)
    campus_id = Column(Integer, nullable=False)
    academic_year_id = Column(Integer, ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False)
    class_name = Column(String(50), nullable=False)
    admission_number = Column(String(50), nullable=True)
    status = Column(String(20), nullable=False, default=EnrollmentStatus.ACTIVE.value)  # ACTIVE | PROMOTED | LEFT
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
