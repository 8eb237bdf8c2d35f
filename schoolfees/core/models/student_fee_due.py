"""Student fee due: one row per student per installment, carrying the outstanding balance."""

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Numeric, UniqueConstraint, Uuid

from schoolfees.db.session import Base


class StudentFeeDue(Base):
    """
    Created (upserted) by due generation; mutated only by payment collection.
    student_id is student_uuid(username). balance_amount never goes below zero.
    """

    __tablename__ = "student_fee_dues"
    __table_args__ = (
        UniqueConstraint("student_id", "installment_id", name="uq_student_fee_due_student_installment"),
        CheckConstraint("discount_amount >= 0", name="chk_student_fee_due_discount"),
        CheckConstraint("balance_amount >= 0", name="chk_student_fee_due_balance"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    installment_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("fee_installments.id", ondelete="RESTRICT"),
        nullable=False,
    )
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    balance_amount = Column(Numeric(12, 2), nullable=False)
    is_paid = Column(Boolean, nullable=False, default=False)
