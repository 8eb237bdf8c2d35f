"""Fee payments (one lump collection) and their allocations against student dues."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from schoolfees.db.session import Base


class FeePayment(Base):
    """Immutable record of money received from a student. Allocated across dues in the same transaction."""

    __tablename__ = "fee_payments"
    __table_args__ = (
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_fee_payment_tenant_idempotency_key"),
        CheckConstraint("amount_paid > 0", name="chk_fee_payment_amount"),
        CheckConstraint(
            "payment_method IN ('Cash','Bank Transfer','Cheque','Online')",
            name="chk_fee_payment_method",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    student_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    amount_paid = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(30), nullable=False)
    collected_by = Column(Uuid(as_uuid=True), nullable=True)
    remarks = Column(Text, nullable=True)
    # Client-generated token; a retried request with the same key replays the original result
    idempotency_key = Column(String(100), nullable=True)
    payment_date = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    allocations = relationship("PaymentAllocation", back_populates="payment")


class PaymentAllocation(Base):
    """Portion of a payment applied to one due. Sum per payment never exceeds amount_paid."""

    __tablename__ = "payment_allocations"
    __table_args__ = (
        CheckConstraint("amount_allocated > 0", name="chk_payment_allocation_amount"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payment_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("fee_payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    due_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("student_fee_dues.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount_allocated = Column(Numeric(12, 2), nullable=False)

    payment = relationship("FeePayment", back_populates="allocations")
