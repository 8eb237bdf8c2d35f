"""Fee structure per class per academic year, decomposed into dated installments."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import relationship

from schoolfees.db.session import Base


class FeeStructure(Base):
    """
    "Students of class X in year Y owe total_amount for fee type Z."
    class_id is class_uuid(campus_id, class_name), not a foreign key into classes.
    """

    __tablename__ = "fee_structures"
    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="chk_fee_structure_total_amount"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    campus_id = Column(Integer, nullable=False, index=True)
    academic_year_id = Column(Integer, ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False)
    class_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    fee_type_id = Column(Uuid(as_uuid=True), ForeignKey("fee_types.id", ondelete="RESTRICT"), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    fee_type = relationship("FeeType")
    installments = relationship(
        "FeeInstallment",
        back_populates="fee_structure",
        cascade="all, delete-orphan",
        order_by="FeeInstallment.due_date",
    )


class FeeInstallment(Base):
    """One scheduled portion of a fee structure. due_date drives waterfall ordering."""

    __tablename__ = "fee_installments"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="chk_fee_installment_amount"),
        CheckConstraint("penalty_amount >= 0", name="chk_fee_installment_penalty"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    fee_structure_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("fee_structures.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    installment_name = Column(String(100), nullable=False)
    due_date = Column(Date, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    penalty_amount = Column(Numeric(12, 2), nullable=False, default=0)

    fee_structure = relationship("FeeStructure", back_populates="installments")
