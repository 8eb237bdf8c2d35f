"""
Fee ledger persistence. Every function takes the caller's session and never commits;
transaction boundaries belong to the service layer.
"""

import uuid
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import Row, case, delete, func, select, true, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.core.models import (
    AcademicYear,
    FeeInstallment,
    FeePayment,
    FeeStructure,
    FeeType,
    PaymentAllocation,
    StudentFeeDue,
)


def _to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


# --- Fee types ---
async def get_fee_type(db: AsyncSession, tenant_id: UUID, fee_type_id: UUID) -> Optional[FeeType]:
    result = await db.execute(
        select(FeeType).where(FeeType.id == fee_type_id, FeeType.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


async def count_structures_for_fee_type(db: AsyncSession, fee_type_id: UUID) -> int:
    result = await db.execute(
        select(func.count(FeeStructure.id)).where(FeeStructure.fee_type_id == fee_type_id)
    )
    return int(result.scalar() or 0)


# --- Fee structures / installments ---
def structure_query():
    """Structure row with fee type name and academic year name."""
    return (
        select(
            FeeStructure,
            FeeType.name.label("fee_type_name"),
            AcademicYear.year_name.label("year_name"),
        )
        .outerjoin(FeeType, FeeStructure.fee_type_id == FeeType.id)
        .outerjoin(AcademicYear, FeeStructure.academic_year_id == AcademicYear.id)
    )


async def get_fee_structure(db: AsyncSession, tenant_id: UUID, fee_structure_id: UUID) -> Optional[FeeStructure]:
    result = await db.execute(
        select(FeeStructure).where(
            FeeStructure.id == fee_structure_id,
            FeeStructure.tenant_id == tenant_id,
        )
    )
    return result.scalar_one_or_none()


async def get_fee_structures_for_class(
    db: AsyncSession,
    tenant_id: UUID,
    campus_id: int,
    academic_year_id: int,
    class_ref: UUID,
) -> Sequence[FeeStructure]:
    result = await db.execute(
        select(FeeStructure)
        .outerjoin(FeeType, FeeStructure.fee_type_id == FeeType.id)
        .where(
            FeeStructure.tenant_id == tenant_id,
            FeeStructure.campus_id == campus_id,
            FeeStructure.academic_year_id == academic_year_id,
            FeeStructure.class_id == class_ref,
        )
        .order_by(FeeType.name)
    )
    return result.scalars().all()


async def insert_installments(
    db: AsyncSession,
    fee_structure_id: UUID,
    installments: Iterable,
) -> List[FeeInstallment]:
    rows: List[FeeInstallment] = []
    for ins in installments:
        row = FeeInstallment(
            fee_structure_id=fee_structure_id,
            installment_name=ins.installment_name.strip(),
            due_date=ins.due_date,
            amount=ins.amount,
            penalty_amount=ins.penalty_amount or Decimal("0"),
        )
        db.add(row)
        rows.append(row)
    await db.flush()
    return rows


async def get_installments(db: AsyncSession, fee_structure_ids: Sequence[UUID]) -> Dict[UUID, List[FeeInstallment]]:
    """Installments per structure ordered by due date, then name."""
    grouped: Dict[UUID, List[FeeInstallment]] = {sid: [] for sid in fee_structure_ids}
    if not fee_structure_ids:
        return grouped
    result = await db.execute(
        select(FeeInstallment)
        .where(FeeInstallment.fee_structure_id.in_(fee_structure_ids))
        .order_by(FeeInstallment.due_date, FeeInstallment.installment_name)
    )
    for ins in result.scalars().all():
        grouped.setdefault(ins.fee_structure_id, []).append(ins)
    return grouped


async def count_dues_for_structure(db: AsyncSession, fee_structure_id: UUID) -> int:
    result = await db.execute(
        select(func.count(StudentFeeDue.id))
        .join(FeeInstallment, StudentFeeDue.installment_id == FeeInstallment.id)
        .where(FeeInstallment.fee_structure_id == fee_structure_id)
    )
    return int(result.scalar() or 0)


async def delete_installments_by_structure(db: AsyncSession, fee_structure_id: UUID) -> None:
    await db.execute(
        delete(FeeInstallment)
        .where(FeeInstallment.fee_structure_id == fee_structure_id)
        .execution_options(synchronize_session=False)
    )


async def delete_fee_structure(db: AsyncSession, fee_structure_id: UUID) -> None:
    await delete_installments_by_structure(db, fee_structure_id)
    await db.execute(
        delete(FeeStructure)
        .where(FeeStructure.id == fee_structure_id)
        .execution_options(synchronize_session=False)
    )


# --- Student dues ---
def _dialect_insert(db: AsyncSession):
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


async def get_allocated_by_installment(
    db: AsyncSession,
    student_id: UUID,
    installment_ids: Sequence[UUID],
) -> Dict[UUID, Decimal]:
    """Amount already paid against each of the student's dues, keyed by installment."""
    if not installment_ids:
        return {}
    rows = (
        await db.execute(
            select(
                StudentFeeDue.installment_id,
                func.coalesce(func.sum(PaymentAllocation.amount_allocated), 0),
            )
            .join(PaymentAllocation, PaymentAllocation.due_id == StudentFeeDue.id)
            .where(
                StudentFeeDue.student_id == student_id,
                StudentFeeDue.installment_id.in_(installment_ids),
            )
            .group_by(StudentFeeDue.installment_id)
        )
    ).all()
    return {installment_id: _to_decimal(total) for installment_id, total in rows}


async def upsert_student_due(
    db: AsyncSession,
    *,
    student_id: UUID,
    installment_id: UUID,
    amount: Decimal,
    discount_amount: Decimal = Decimal("0"),
    already_allocated: Decimal = Decimal("0"),
) -> None:
    """Insert the due, or overwrite discount/balance/paid flag of the existing (student, installment) row."""
    balance = _to_decimal(amount) - _to_decimal(discount_amount) - _to_decimal(already_allocated)
    insert = _dialect_insert(db)
    stmt = insert(StudentFeeDue.__table__).values(
        id=uuid.uuid4(),
        student_id=student_id,
        installment_id=installment_id,
        discount_amount=_to_decimal(discount_amount),
        balance_amount=max(balance, Decimal("0")),
        is_paid=balance <= 0,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["student_id", "installment_id"],
        set_={
            "discount_amount": stmt.excluded.discount_amount,
            "balance_amount": stmt.excluded.balance_amount,
            "is_paid": stmt.excluded.is_paid,
        },
    )
    await db.execute(stmt)


async def get_unpaid_dues_by_student(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    for_update: bool = False,
) -> Sequence[Row]:
    """
    Open dues oldest first (due_date, then installment name).
    for_update locks the due rows until the surrounding transaction ends.
    """
    stmt = (
        select(
            StudentFeeDue.id.label("due_id"),
            StudentFeeDue.balance_amount,
            FeeInstallment.installment_name,
            FeeInstallment.due_date,
            FeeType.name.label("fee_type_name"),
        )
        .join(FeeInstallment, StudentFeeDue.installment_id == FeeInstallment.id)
        .join(FeeStructure, FeeInstallment.fee_structure_id == FeeStructure.id)
        .join(FeeType, FeeStructure.fee_type_id == FeeType.id)
        .where(
            StudentFeeDue.student_id == student_id,
            FeeStructure.tenant_id == tenant_id,
            StudentFeeDue.is_paid.is_(False),
            StudentFeeDue.balance_amount > 0,
        )
        .order_by(FeeInstallment.due_date, FeeInstallment.installment_name)
    )
    if for_update:
        stmt = stmt.with_for_update(of=StudentFeeDue)
    return (await db.execute(stmt)).all()


async def reduce_due_balance(db: AsyncSession, due_id: UUID, amount: Decimal) -> None:
    """Subtract in one statement, clamp at zero, and flip is_paid once nothing is left."""
    remaining = StudentFeeDue.balance_amount - amount
    await db.execute(
        update(StudentFeeDue)
        .where(StudentFeeDue.id == due_id)
        .values(
            balance_amount=case((remaining > 0, remaining), else_=0),
            is_paid=case((remaining <= 0, true()), else_=StudentFeeDue.is_paid),
        )
        .execution_options(synchronize_session=False)
    )


# --- Payments ---
async def insert_payment(
    db: AsyncSession,
    *,
    tenant_id: UUID,
    student_id: UUID,
    amount_paid: Decimal,
    payment_method: str,
    collected_by: Optional[UUID],
    remarks: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> FeePayment:
    payment = FeePayment(
        tenant_id=tenant_id,
        student_id=student_id,
        amount_paid=amount_paid,
        payment_method=payment_method,
        collected_by=collected_by,
        remarks=remarks,
        idempotency_key=idempotency_key,
    )
    db.add(payment)
    await db.flush()
    return payment


async def insert_payment_allocation(
    db: AsyncSession,
    *,
    payment_id: UUID,
    due_id: UUID,
    amount_allocated: Decimal,
) -> PaymentAllocation:
    allocation = PaymentAllocation(
        payment_id=payment_id,
        due_id=due_id,
        amount_allocated=amount_allocated,
    )
    db.add(allocation)
    await db.flush()
    return allocation


async def get_payment(db: AsyncSession, tenant_id: UUID, payment_id: UUID) -> Optional[FeePayment]:
    result = await db.execute(
        select(FeePayment).where(FeePayment.id == payment_id, FeePayment.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


async def get_payment_by_idempotency_key(
    db: AsyncSession,
    tenant_id: UUID,
    idempotency_key: str,
) -> Optional[FeePayment]:
    result = await db.execute(
        select(FeePayment).where(
            FeePayment.tenant_id == tenant_id,
            FeePayment.idempotency_key == idempotency_key,
        )
    )
    return result.scalar_one_or_none()


async def get_allocations(db: AsyncSession, payment_id: UUID) -> Sequence[PaymentAllocation]:
    """Allocations in installment order, the order the waterfall applies them."""
    result = await db.execute(
        select(PaymentAllocation)
        .join(StudentFeeDue, PaymentAllocation.due_id == StudentFeeDue.id)
        .join(FeeInstallment, StudentFeeDue.installment_id == FeeInstallment.id)
        .where(PaymentAllocation.payment_id == payment_id)
        .order_by(FeeInstallment.due_date, FeeInstallment.installment_name)
    )
    return result.scalars().all()
