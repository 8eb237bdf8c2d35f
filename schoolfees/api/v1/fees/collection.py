"""
Payment collection: record one lump payment from a student and spread it over their open dues.

Manual mode applies the allocations the cashier chose; waterfall mode pays dues oldest first.
The dues are read with row locks in the same transaction that reduces them, so two cashiers
collecting for the same student are serialized.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.core.config import settings
from schoolfees.core.exceptions import ServiceError
from schoolfees.core.models import FeePayment
from schoolfees.db.session import transaction

from . import repository
from .resolver import resolve_student_ref
from .schemas import (
    AllocationItem,
    CollectPaymentRequest,
    CollectPaymentResponse,
    FeePaymentResponse,
    PaymentAllocationResponse,
)

logger = logging.getLogger(__name__)

TOLERANCE = settings.fee_allocation_tolerance
FULLY_ALLOCATED = "Payment recorded and fully allocated"
SURPLUS = "Payment recorded with surplus amount"
REPLAYED = "Payment already recorded for this idempotency key"


def _to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


def plan_manual_allocations(
    allocations: Sequence[AllocationItem],
    balances: Dict[UUID, Decimal],
    amount_received: Decimal,
) -> List[Tuple[UUID, Decimal]]:
    """
    Validate cashier-chosen allocations against the locked open balances.
    Balances are consumed as entries are checked, so listing a due twice cannot pay it twice.
    """
    remaining = dict(balances)
    plan: List[Tuple[UUID, Decimal]] = []
    total = Decimal("0")
    for item in allocations:
        amount = _to_decimal(item.amount)
        if amount <= 0:
            continue
        if item.due_id not in remaining:
            raise ServiceError(f"Invalid or already paid due: {item.due_id}", status.HTTP_400_BAD_REQUEST)
        if amount > remaining[item.due_id] + TOLERANCE:
            raise ServiceError(
                f"Allocation {amount} exceeds balance {remaining[item.due_id]} for due {item.due_id}",
                status.HTTP_400_BAD_REQUEST,
            )
        applied = min(amount, remaining[item.due_id])
        remaining[item.due_id] -= applied
        total += amount
        if applied > 0:
            plan.append((item.due_id, applied))
    if total > amount_received + TOLERANCE:
        raise ServiceError(
            f"Total allocated {total} exceeds amount received {amount_received}",
            status.HTTP_400_BAD_REQUEST,
        )
    return plan


def plan_waterfall_allocations(dues: Sequence, amount_received: Decimal) -> List[Tuple[UUID, Decimal]]:
    """Pay the oldest dues first until the money or the dues run out."""
    if not dues:
        raise ServiceError("No unpaid dues for student", status.HTTP_400_BAD_REQUEST)
    remaining = amount_received
    plan: List[Tuple[UUID, Decimal]] = []
    for due in dues:
        if remaining <= 0:
            break
        applied = min(remaining, _to_decimal(due.balance_amount))
        if applied <= 0:
            continue
        plan.append((due.due_id, applied))
        remaining -= applied
    return plan


def _build_response(
    payment: FeePayment,
    allocations: Sequence,
    message: Optional[str] = None,
) -> CollectPaymentResponse:
    allocated = sum((_to_decimal(a.amount_allocated) for a in allocations), Decimal("0"))
    unallocated = max(_to_decimal(payment.amount_paid) - allocated, Decimal("0"))
    return CollectPaymentResponse(
        payment=FeePaymentResponse.model_validate(payment),
        allocations=[PaymentAllocationResponse.model_validate(a) for a in allocations],
        amount_unallocated=unallocated,
        message=message or (SURPLUS if unallocated > 0 else FULLY_ALLOCATED),
    )


async def _replay(
    db: AsyncSession,
    payment: FeePayment,
    student_ref: UUID,
    amount: Decimal,
) -> CollectPaymentResponse:
    if payment.student_id != student_ref or _to_decimal(payment.amount_paid) != amount:
        raise ServiceError(
            "Idempotency key already used for a different payment",
            status.HTTP_409_CONFLICT,
        )
    allocations = await repository.get_allocations(db, payment.id)
    return _build_response(payment, allocations, REPLAYED)


async def collect_payment(
    db: AsyncSession,
    tenant_id: UUID,
    payload: CollectPaymentRequest,
    collected_by: Optional[UUID],
) -> CollectPaymentResponse:
    student_ref = await resolve_student_ref(db, tenant_id, payload.student_id, payload.student_username)
    amount = _to_decimal(payload.total_amount_received)
    if amount <= 0:
        raise ServiceError("total_amount_received must be greater than 0", status.HTTP_400_BAD_REQUEST)
    key = (payload.idempotency_key or "").strip() or None

    if key:
        existing = await repository.get_payment_by_idempotency_key(db, tenant_id, key)
        if existing:
            logger.info("Replaying payment %s for idempotency key %s", existing.id, key)
            return await _replay(db, existing, student_ref, amount)

    try:
        async with transaction(db):
            dues = await repository.get_unpaid_dues_by_student(db, tenant_id, student_ref, for_update=True)
            if payload.allocations:
                balances = {due.due_id: _to_decimal(due.balance_amount) for due in dues}
                plan = plan_manual_allocations(payload.allocations, balances, amount)
            else:
                plan = plan_waterfall_allocations(dues, amount)

            payment = await repository.insert_payment(
                db,
                tenant_id=tenant_id,
                student_id=student_ref,
                amount_paid=amount,
                payment_method=payload.payment_method.value,
                collected_by=collected_by,
                remarks=payload.remarks,
                idempotency_key=key,
            )
            allocations = []
            for due_id, applied in plan:
                await repository.reduce_due_balance(db, due_id, applied)
                allocations.append(
                    await repository.insert_payment_allocation(
                        db, payment_id=payment.id, due_id=due_id, amount_allocated=applied
                    )
                )
    except ServiceError as e:
        logger.warning("Payment for student %s rejected: %s", student_ref, e.message)
        raise
    except IntegrityError:
        if key:
            existing = await repository.get_payment_by_idempotency_key(db, tenant_id, key)
            if existing:
                logger.info("Concurrent duplicate for idempotency key %s", key)
                return await _replay(db, existing, student_ref, amount)
        logger.exception("Integrity error recording payment for student %s", student_ref)
        raise ServiceError("Payment could not be recorded", status.HTTP_409_CONFLICT)

    response = _build_response(payment, allocations)
    logger.info(
        "Collected %s from student %s (payment %s, %d allocations, unallocated %s)",
        amount, student_ref, payment.id, len(allocations), response.amount_unallocated,
    )
    return response
