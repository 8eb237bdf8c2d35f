import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Uuid

from schoolfees.db.session import Base


class User(Base):
    """User within a tenant. Students are identified in the fee ledger by student_uuid(username)."""

    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    # Home campus; null for tenant-wide administrators
    campus_id = Column(Integer, nullable=True)
    username = Column(String(100), nullable=False, unique=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=True)
    # Admin, Employee, Teacher, Student, Parent
    role = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default="ACTIVE")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
