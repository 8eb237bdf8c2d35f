"""Fees service: fee types, fee structures with installments, due generation, ledger and payment reports."""

import logging
from decimal import Decimal
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.core.enums import EnrollmentStatus
from schoolfees.core.exceptions import ServiceError
from schoolfees.core.identity import class_uuid, student_uuid
from schoolfees.core.models import (
    AcademicYear,
    FeeInstallment,
    FeePayment,
    FeeStructure,
    FeeType,
    StudentEnrollment,
    StudentFeeDue,
)
from schoolfees.db.session import transaction

from . import repository
from .resolver import (
    build_class_directory,
    build_student_directory,
    get_class_name,
    resolve_class_ref,
    student_filter_ref,
)
from .schemas import (
    AssignEnrollmentRequest,
    AssignEnrollmentResponse,
    FeeInstallmentResponse,
    FeePaymentResponse,
    FeeStructureCreate,
    FeeStructureResponse,
    FeeStructureUpdate,
    FeeTypeCreate,
    FeeTypeResponse,
    FeeTypeUpdate,
    GenerateDuesResponse,
    PaymentAllocationResponse,
    PaymentDetailResponse,
    PaymentHistoryItem,
    StudentFeeDueItem,
)

logger = logging.getLogger(__name__)

UNKNOWN_CLASS = "Unknown Class"
UNKNOWN_STUDENT = "Unknown Student"


def _to_uuid(val):
    if val is None:
        return None
    return val if isinstance(val, UUID) else UUID(str(val))


def _to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


# --- Fee Types ---
def _fee_type_to_response(ft: FeeType) -> FeeTypeResponse:
    return FeeTypeResponse(
        id=_to_uuid(ft.id),
        tenant_id=_to_uuid(ft.tenant_id),
        campus_id=ft.campus_id,
        name=ft.name,
        description=ft.description,
        created_at=ft.created_at,
        updated_at=ft.updated_at,
    )


async def create_fee_type(
    db: AsyncSession,
    tenant_id: UUID,
    campus_id: int,
    payload: FeeTypeCreate,
) -> FeeTypeResponse:
    name = payload.name.strip()
    if not name:
        raise ServiceError("name required", status.HTTP_400_BAD_REQUEST)
    async with transaction(db):
        ft = FeeType(
            tenant_id=tenant_id,
            campus_id=campus_id,
            name=name,
            description=(payload.description or "").strip() or None,
        )
        db.add(ft)
        await db.flush()
    await db.refresh(ft)
    return _fee_type_to_response(ft)


async def list_fee_types(
    db: AsyncSession,
    tenant_id: UUID,
    campus_id: int,
) -> List[FeeTypeResponse]:
    result = await db.execute(
        select(FeeType)
        .where(FeeType.tenant_id == tenant_id, FeeType.campus_id == campus_id)
        .order_by(FeeType.name)
    )
    return [_fee_type_to_response(ft) for ft in result.scalars().all()]


async def update_fee_type(
    db: AsyncSession,
    tenant_id: UUID,
    fee_type_id: UUID,
    payload: FeeTypeUpdate,
) -> FeeTypeResponse:
    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes and not (changes["name"] or "").strip():
        raise ServiceError("name cannot be empty", status.HTTP_400_BAD_REQUEST)
    ft = await repository.get_fee_type(db, tenant_id, fee_type_id)
    if not ft:
        raise ServiceError("Fee type not found", status.HTTP_404_NOT_FOUND)
    async with transaction(db):
        if "name" in changes:
            ft.name = changes["name"].strip()
        if "description" in changes:
            ft.description = (changes["description"] or "").strip() or None
    await db.refresh(ft)
    return _fee_type_to_response(ft)


async def delete_fee_type(
    db: AsyncSession,
    tenant_id: UUID,
    fee_type_id: UUID,
) -> FeeTypeResponse:
    ft = await repository.get_fee_type(db, tenant_id, fee_type_id)
    if not ft:
        raise ServiceError("Fee type not found", status.HTTP_404_NOT_FOUND)
    if await repository.count_structures_for_fee_type(db, fee_type_id):
        raise ServiceError("Fee type is used by a fee structure", status.HTTP_409_CONFLICT)
    deleted = _fee_type_to_response(ft)
    async with transaction(db):
        await db.delete(ft)
    return deleted


# --- Fee Structures ---
def _installment_to_response(ins: FeeInstallment) -> FeeInstallmentResponse:
    return FeeInstallmentResponse(
        id=_to_uuid(ins.id),
        fee_structure_id=_to_uuid(ins.fee_structure_id),
        installment_name=ins.installment_name,
        due_date=ins.due_date,
        amount=_to_decimal(ins.amount),
        penalty_amount=_to_decimal(ins.penalty_amount),
    )


def _structure_to_response(
    fs: FeeStructure,
    installments: Sequence[FeeInstallment],
    fee_type_name: Optional[str] = None,
    year_name: Optional[str] = None,
    class_directory: Optional[Dict] = None,
) -> FeeStructureResponse:
    class_id, class_name = (class_directory or {}).get(_to_uuid(fs.class_id), (None, UNKNOWN_CLASS))
    return FeeStructureResponse(
        id=_to_uuid(fs.id),
        tenant_id=_to_uuid(fs.tenant_id),
        campus_id=fs.campus_id,
        academic_year_id=fs.academic_year_id,
        year_name=year_name,
        class_ref=_to_uuid(fs.class_id),
        class_id=class_id,
        class_name=class_name,
        fee_type_id=_to_uuid(fs.fee_type_id),
        fee_type_name=fee_type_name,
        total_amount=_to_decimal(fs.total_amount),
        installments=[_installment_to_response(i) for i in installments],
        created_at=fs.created_at,
        updated_at=fs.updated_at,
    )


async def _require_fee_type(db: AsyncSession, tenant_id: UUID, campus_id: int, fee_type_id: UUID) -> FeeType:
    ft = await repository.get_fee_type(db, tenant_id, fee_type_id)
    if not ft or ft.campus_id != campus_id:
        raise ServiceError("Invalid fee type", status.HTTP_400_BAD_REQUEST)
    return ft


async def create_fee_structure(
    db: AsyncSession,
    tenant_id: UUID,
    campus_id: int,
    payload: FeeStructureCreate,
) -> FeeStructureResponse:
    """Create the structure and every installment atomically; a failed installment leaves nothing behind."""
    class_ref = await resolve_class_ref(db, campus_id, payload.class_id, payload.class_name)
    await _require_fee_type(db, tenant_id, campus_id, payload.fee_type_id)
    try:
        async with transaction(db):
            fs = FeeStructure(
                tenant_id=tenant_id,
                campus_id=campus_id,
                academic_year_id=payload.academic_year_id,
                class_id=class_ref,
                fee_type_id=payload.fee_type_id,
                total_amount=payload.total_amount,
            )
            db.add(fs)
            await db.flush()
            await repository.insert_installments(db, fs.id, payload.installments)
    except Exception:
        logger.exception("Error creating fee structure for campus %s", campus_id)
        raise
    logger.info(
        "Created fee structure %s (%d installments) for class %s, year %s",
        fs.id, len(payload.installments), class_ref, payload.academic_year_id,
    )
    return await get_fee_structure(db, tenant_id, fs.id)


async def get_fee_structure(
    db: AsyncSession,
    tenant_id: UUID,
    fee_structure_id: UUID,
) -> FeeStructureResponse:
    row = (
        await db.execute(
            repository.structure_query().where(
                FeeStructure.id == fee_structure_id,
                FeeStructure.tenant_id == tenant_id,
            )
        )
    ).one_or_none()
    if row is None:
        raise ServiceError("Fee structure not found", status.HTTP_404_NOT_FOUND)
    fs, fee_type_name, year_name = row
    installments = await repository.get_installments(db, [fs.id])
    class_directory = await build_class_directory(db, fs.campus_id)
    return _structure_to_response(fs, installments[fs.id], fee_type_name, year_name, class_directory)


async def list_fee_structures(
    db: AsyncSession,
    tenant_id: UUID,
    campus_id: int,
) -> List[FeeStructureResponse]:
    stmt = repository.structure_query().where(
        FeeStructure.tenant_id == tenant_id,
        FeeStructure.campus_id == campus_id,
    )
    stmt = stmt.order_by(AcademicYear.year_name.desc(), FeeStructure.created_at)
    rows = (await db.execute(stmt)).all()
    installments = await repository.get_installments(db, [fs.id for fs, _, _ in rows])
    class_directory = await build_class_directory(db, campus_id)
    return [
        _structure_to_response(fs, installments[fs.id], fee_type_name, year_name, class_directory)
        for fs, fee_type_name, year_name in rows
    ]


async def list_installments(
    db: AsyncSession,
    tenant_id: UUID,
    fee_structure_id: UUID,
) -> List[FeeInstallmentResponse]:
    fs = await repository.get_fee_structure(db, tenant_id, fee_structure_id)
    if not fs:
        raise ServiceError("Fee structure not found", status.HTTP_404_NOT_FOUND)
    installments = await repository.get_installments(db, [fs.id])
    return [_installment_to_response(i) for i in installments[fs.id]]


_REQUIRED_STRUCTURE_FIELDS = ("academic_year_id", "fee_type_id", "total_amount")


async def update_fee_structure(
    db: AsyncSession,
    tenant_id: UUID,
    campus_id: int,
    fee_structure_id: UUID,
    payload: FeeStructureUpdate,
) -> FeeStructureResponse:
    """
    Apply the scalar fields present in the request, then replace the whole installment list,
    all in one transaction. Refused once dues have been generated from the current installments.
    """
    changes = payload.model_dump(exclude_unset=True, exclude={"installments"})
    cleared = [f for f in _REQUIRED_STRUCTURE_FIELDS if f in changes and changes[f] is None]
    if cleared:
        raise ServiceError(f"{cleared[0]} cannot be null", status.HTTP_400_BAD_REQUEST)

    fs = await repository.get_fee_structure(db, tenant_id, fee_structure_id)
    if not fs:
        raise ServiceError("Fee structure not found", status.HTTP_404_NOT_FOUND)

    class_ref = None
    if changes.get("class_id") is not None or changes.get("class_name"):
        class_ref = await resolve_class_ref(db, fs.campus_id, payload.class_id, payload.class_name)
    if "fee_type_id" in changes:
        await _require_fee_type(db, tenant_id, fs.campus_id, payload.fee_type_id)
    if await repository.count_dues_for_structure(db, fs.id):
        raise ServiceError(
            "Cannot replace installments: student dues have already been generated for this fee structure",
            status.HTTP_409_CONFLICT,
        )

    try:
        async with transaction(db):
            if "academic_year_id" in changes:
                fs.academic_year_id = payload.academic_year_id
            if "fee_type_id" in changes:
                fs.fee_type_id = payload.fee_type_id
            if "total_amount" in changes:
                fs.total_amount = payload.total_amount
            if class_ref is not None:
                fs.class_id = class_ref
            await db.flush()
            await repository.delete_installments_by_structure(db, fs.id)
            await repository.insert_installments(db, fs.id, payload.installments)
    except Exception:
        logger.exception("Error updating fee structure %s", fee_structure_id)
        raise
    logger.info("Updated fee structure %s with %d installments", fs.id, len(payload.installments))
    return await get_fee_structure(db, tenant_id, fs.id)


async def delete_fee_structure(
    db: AsyncSession,
    tenant_id: UUID,
    fee_structure_id: UUID,
) -> FeeStructureResponse:
    existing = await get_fee_structure(db, tenant_id, fee_structure_id)
    if await repository.count_dues_for_structure(db, fee_structure_id):
        raise ServiceError(
            "Cannot delete fee structure: student dues have already been generated",
            status.HTTP_409_CONFLICT,
        )
    async with transaction(db):
        await repository.delete_fee_structure(db, fee_structure_id)
    logger.info("Deleted fee structure %s", fee_structure_id)
    return existing


# --- Due Generation ---
async def assign_fees_for_enrollment(
    db: AsyncSession,
    tenant_id: UUID,
    campus_id: int,
    academic_year_id: int,
    class_name: str,
    username: str,
    discount_amount: Decimal = Decimal("0"),
) -> AssignEnrollmentResponse:
    """
    Upsert one due per installment of every fee structure of the student's class and year.
    Runs inside the caller's transaction. Safe to repeat: an existing due is overwritten with its
    balance recomputed net of what has already been paid against it.
    """
    student_ref = student_uuid(username)
    class_ref = class_uuid(campus_id, class_name)
    structures = await repository.get_fee_structures_for_class(
        db, tenant_id, campus_id, academic_year_id, class_ref
    )
    installments = await repository.get_installments(db, [fs.id for fs in structures])

    assigned = 0
    dues = 0
    for fs in structures:
        items = installments[fs.id]
        allocated = await repository.get_allocated_by_installment(db, student_ref, [i.id for i in items])
        for ins in items:
            await repository.upsert_student_due(
                db,
                student_id=student_ref,
                installment_id=ins.id,
                amount=_to_decimal(ins.amount),
                discount_amount=discount_amount,
                already_allocated=allocated.get(ins.id, Decimal("0")),
            )
            dues += 1
        assigned += 1
    return AssignEnrollmentResponse(assigned=assigned, dues=dues)


async def assign_fees_for_student(
    db: AsyncSession,
    tenant_id: UUID,
    campus_id: int,
    payload: AssignEnrollmentRequest,
) -> AssignEnrollmentResponse:
    """Single-enrollment entry point (student registration / re-sync)."""
    class_name = payload.class_name.strip()
    username = payload.username.strip()
    if not class_name or not username:
        raise ServiceError("class_name and username are required", status.HTTP_400_BAD_REQUEST)
    try:
        async with transaction(db):
            result = await assign_fees_for_enrollment(
                db, tenant_id, campus_id, payload.academic_year_id, class_name, username
            )
    except Exception:
        logger.exception("Error assigning fees to %s", payload.username)
        raise
    logger.info("Assigned %d fee structure(s) to %s", result.assigned, payload.username)
    return result


async def generate_dues_for_class(
    db: AsyncSession,
    tenant_id: UUID,
    campus_id: int,
    academic_year_id: int,
    class_id: int,
) -> GenerateDuesResponse:
    """Generate dues for every active enrollment of a class; all students or none."""
    class_name = await get_class_name(db, campus_id, class_id)
    if class_name is None:
        raise ServiceError("Class not found", status.HTTP_404_NOT_FOUND)

    try:
        async with transaction(db):
            usernames = (
                await db.execute(
                    select(StudentEnrollment.username)
                    .where(
                        StudentEnrollment.campus_id == campus_id,
                        StudentEnrollment.academic_year_id == academic_year_id,
                        StudentEnrollment.class_name == class_name,
                        StudentEnrollment.status == EnrollmentStatus.ACTIVE.value,
                    )
                    .order_by(StudentEnrollment.username)
                )
            ).scalars().all()

            total_assigned = 0
            for username in usernames:
                result = await assign_fees_for_enrollment(
                    db, tenant_id, campus_id, academic_year_id, class_name, username
                )
                if result.assigned > 0:
                    total_assigned += 1
    except Exception:
        logger.exception("Error generating dues for class %s, year %s", class_id, academic_year_id)
        raise
    logger.info(
        "Generated dues for class %s (%s), year %s: %d/%d students assigned",
        class_id, class_name, academic_year_id, total_assigned, len(usernames),
    )
    return GenerateDuesResponse(total_students=len(usernames), total_assigned=total_assigned)


# --- Reports ---
async def get_student_fee_dues(
    db: AsyncSession,
    tenant_id: UUID,
    campus_id: int,
    student_id: Optional[str] = None,
    class_id: Optional[int] = None,
    academic_year_id: Optional[int] = None,
) -> List[StudentFeeDueItem]:
    """Ledger of dues with balances. student_id may be a username or a student reference."""
    stmt = (
        select(
            StudentFeeDue.id,
            StudentFeeDue.student_id,
            StudentFeeDue.installment_id,
            StudentFeeDue.discount_amount,
            StudentFeeDue.balance_amount,
            StudentFeeDue.is_paid,
            FeeInstallment.installment_name,
            FeeInstallment.due_date,
            FeeInstallment.amount,
            FeeInstallment.penalty_amount,
            FeeStructure.id.label("fee_structure_id"),
            FeeStructure.academic_year_id,
            FeeStructure.class_id,
            FeeType.name.label("fee_type_name"),
        )
        .join(FeeInstallment, StudentFeeDue.installment_id == FeeInstallment.id)
        .join(FeeStructure, FeeInstallment.fee_structure_id == FeeStructure.id)
        .join(FeeType, FeeStructure.fee_type_id == FeeType.id)
        .where(FeeStructure.tenant_id == tenant_id, FeeStructure.campus_id == campus_id)
    )
    student_ref = student_filter_ref(student_id)
    if student_ref is not None:
        stmt = stmt.where(StudentFeeDue.student_id == student_ref)
    if class_id is not None:
        class_name = await get_class_name(db, campus_id, class_id)
        if class_name is None:
            return []
        stmt = stmt.where(FeeStructure.class_id == class_uuid(campus_id, class_name))
    if academic_year_id is not None:
        stmt = stmt.where(FeeStructure.academic_year_id == academic_year_id)
    stmt = stmt.order_by(FeeInstallment.due_date, FeeInstallment.installment_name)

    rows = (await db.execute(stmt)).all()
    if not rows:
        return []
    students = await build_student_directory(db, tenant_id)
    items = []
    for row in rows:
        ident = students.get(_to_uuid(row.student_id))
        items.append(
            StudentFeeDueItem(
                due_id=_to_uuid(row.id),
                student_id=_to_uuid(row.student_id),
                installment_id=_to_uuid(row.installment_id),
                fee_structure_id=_to_uuid(row.fee_structure_id),
                academic_year_id=row.academic_year_id,
                class_ref=_to_uuid(row.class_id),
                fee_type_name=row.fee_type_name,
                installment_name=row.installment_name,
                due_date=row.due_date,
                amount=_to_decimal(row.amount),
                penalty_amount=_to_decimal(row.penalty_amount),
                discount_amount=_to_decimal(row.discount_amount),
                balance_amount=_to_decimal(row.balance_amount),
                is_paid=bool(row.is_paid),
                student_name=ident.full_name if ident else UNKNOWN_STUDENT,
                username=ident.username if ident else None,
                admission_number=ident.admission_number if ident else None,
            )
        )
    return items


def _payment_to_history(p: FeePayment, students: Dict) -> PaymentHistoryItem:
    ident = students.get(_to_uuid(p.student_id))
    return PaymentHistoryItem(
        **FeePaymentResponse.model_validate(p).model_dump(),
        first_name=ident.first_name if ident else None,
        last_name=ident.last_name if ident else None,
        admission_number=ident.admission_number if ident else None,
        student_name=ident.full_name if ident else "Unknown",
    )


async def list_payments(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: Optional[str] = None,
) -> List[PaymentHistoryItem]:
    stmt = select(FeePayment).where(FeePayment.tenant_id == tenant_id)
    student_ref = student_filter_ref(student_id)
    if student_ref is not None:
        stmt = stmt.where(FeePayment.student_id == student_ref)
    stmt = stmt.order_by(FeePayment.payment_date.desc())
    payments = (await db.execute(stmt)).scalars().all()
    if not payments:
        return []
    students = await build_student_directory(db, tenant_id)
    return [_payment_to_history(p, students) for p in payments]


async def get_payment(
    db: AsyncSession,
    tenant_id: UUID,
    payment_id: UUID,
) -> PaymentDetailResponse:
    """One payment with the dues it was applied to (receipt view)."""
    payment = await repository.get_payment(db, tenant_id, payment_id)
    if not payment:
        raise ServiceError("Payment not found", status.HTTP_404_NOT_FOUND)
    allocations = await repository.get_allocations(db, payment.id)
    allocated = sum((_to_decimal(a.amount_allocated) for a in allocations), Decimal("0"))
    students = await build_student_directory(db, tenant_id)
    return PaymentDetailResponse(
        **_payment_to_history(payment, students).model_dump(),
        allocations=[PaymentAllocationResponse.model_validate(a) for a in allocations],
        amount_unallocated=max(_to_decimal(payment.amount_paid) - allocated, Decimal("0")),
    )
