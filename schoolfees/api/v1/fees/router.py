"""Fees router: fee types, fee structures, due generation, ledger, payments."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.auth.dependencies import get_campus_id
from schoolfees.auth.rbac import require_roles
from schoolfees.auth.schemas import CurrentUser
from schoolfees.core.enums import UserRole
from schoolfees.core.exceptions import ServiceError
from schoolfees.core.schemas import ApiResponse
from schoolfees.db.session import get_db

from . import collection, service
from .schemas import (
    AssignEnrollmentRequest,
    AssignEnrollmentResponse,
    CollectPaymentRequest,
    CollectPaymentResponse,
    FeeInstallmentResponse,
    FeeStructureCreate,
    FeeStructureResponse,
    FeeStructureUpdate,
    FeeTypeCreate,
    FeeTypeResponse,
    FeeTypeUpdate,
    GenerateDuesRequest,
    GenerateDuesResponse,
    PaymentDetailResponse,
    PaymentHistoryItem,
    StudentFeeDueItem,
)

router = APIRouter(prefix="/api/v1/fees", tags=["fees"])

staff_only = require_roles(UserRole.ADMIN, UserRole.EMPLOYEE)
ledger_readers = require_roles(UserRole.ADMIN, UserRole.EMPLOYEE, UserRole.STUDENT, UserRole.PARENT)


# --- Fee Types ---
@router.post(
    "/fee-types",
    response_model=ApiResponse[FeeTypeResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_fee_type(
    payload: FeeTypeCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(staff_only),
    campus_id: int = Depends(get_campus_id),
) -> ApiResponse[FeeTypeResponse]:
    try:
        data = await service.create_fee_type(db, current_user.tenant_id, campus_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=data, message="Fee type created")


@router.get("/fee-types", response_model=ApiResponse[List[FeeTypeResponse]])
async def list_fee_types(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(staff_only),
    campus_id: int = Depends(get_campus_id),
) -> ApiResponse[List[FeeTypeResponse]]:
    data = await service.list_fee_types(db, current_user.tenant_id, campus_id)
    return ApiResponse(data=data)


@router.put("/fee-types/{fee_type_id}", response_model=ApiResponse[FeeTypeResponse])
async def update_fee_type(
    fee_type_id: UUID,
    payload: FeeTypeUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(staff_only),
) -> ApiResponse[FeeTypeResponse]:
    try:
        data = await service.update_fee_type(db, current_user.tenant_id, fee_type_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=data, message="Fee type updated")


@router.delete("/fee-types/{fee_type_id}", response_model=ApiResponse[FeeTypeResponse])
async def delete_fee_type(
    fee_type_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(staff_only),
) -> ApiResponse[FeeTypeResponse]:
    try:
        data = await service.delete_fee_type(db, current_user.tenant_id, fee_type_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=data, message="Fee type deleted")


# --- Fee Structures ---
@router.post(
    "/fee-structures",
    response_model=ApiResponse[FeeStructureResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_fee_structure(
    payload: FeeStructureCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(staff_only),
    campus_id: int = Depends(get_campus_id),
) -> ApiResponse[FeeStructureResponse]:
    try:
        data = await service.create_fee_structure(db, current_user.tenant_id, campus_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=data, message="Fee structure created")


@router.get("/fee-structures", response_model=ApiResponse[List[FeeStructureResponse]])
async def list_fee_structures(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(staff_only),
    campus_id: int = Depends(get_campus_id),
) -> ApiResponse[List[FeeStructureResponse]]:
    data = await service.list_fee_structures(db, current_user.tenant_id, campus_id)
    return ApiResponse(data=data)


@router.get("/fee-structures/{fee_structure_id}", response_model=ApiResponse[FeeStructureResponse])
async def get_fee_structure(
    fee_structure_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(staff_only),
) -> ApiResponse[FeeStructureResponse]:
    try:
        data = await service.get_fee_structure(db, current_user.tenant_id, fee_structure_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=data)


@router.get(
    "/fee-structures/{fee_structure_id}/installments",
    response_model=ApiResponse[List[FeeInstallmentResponse]],
)
async def list_installments(
    fee_structure_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(staff_only),
) -> ApiResponse[List[FeeInstallmentResponse]]:
    try:
        data = await service.list_installments(db, current_user.tenant_id, fee_structure_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=data)


@router.put("/fee-structures/{fee_structure_id}", response_model=ApiResponse[FeeStructureResponse])
async def update_fee_structure(
    fee_structure_id: UUID,
    payload: FeeStructureUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(staff_only),
    campus_id: int = Depends(get_campus_id),
) -> ApiResponse[FeeStructureResponse]:
    try:
        data = await service.update_fee_structure(
            db, current_user.tenant_id, campus_id, fee_structure_id, payload
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=data, message="Fee structure updated")


@router.delete("/fee-structures/{fee_structure_id}", response_model=ApiResponse[FeeStructureResponse])
async def delete_fee_structure(
    fee_structure_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(staff_only),
) -> ApiResponse[FeeStructureResponse]:
    try:
        data = await service.delete_fee_structure(db, current_user.tenant_id, fee_structure_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=data, message="Fee structure deleted")


# --- Dues ---
@router.post("/dues/generate", response_model=ApiResponse[GenerateDuesResponse])
async def generate_dues(
    payload: GenerateDuesRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(staff_only),
    campus_id: int = Depends(get_campus_id),
) -> ApiResponse[GenerateDuesResponse]:
    try:
        data = await service.generate_dues_for_class(
            db, current_user.tenant_id, campus_id, payload.academic_year_id, payload.class_id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=data, message=f"Dues generated for {data.total_assigned} student(s)")


@router.post("/dues/assign", response_model=ApiResponse[AssignEnrollmentResponse])
async def assign_dues(
    payload: AssignEnrollmentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(staff_only),
    campus_id: int = Depends(get_campus_id),
) -> ApiResponse[AssignEnrollmentResponse]:
    try:
        data = await service.assign_fees_for_student(db, current_user.tenant_id, campus_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=data)


@router.get("/dues/student", response_model=ApiResponse[List[StudentFeeDueItem]])
async def get_student_fee_dues(
    student_id: Optional[str] = Query(None, description="Student reference UUID or username"),
    class_id: Optional[int] = Query(None),
    academic_year_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(ledger_readers),
    campus_id: int = Depends(get_campus_id),
) -> ApiResponse[List[StudentFeeDueItem]]:
    if current_user.role == UserRole.STUDENT.value:
        student_id = current_user.username
    try:
        data = await service.get_student_fee_dues(
            db,
            current_user.tenant_id,
            campus_id,
            student_id=student_id,
            class_id=class_id,
            academic_year_id=academic_year_id,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=data)


# --- Payments ---
@router.post(
    "/payments/collect",
    response_model=ApiResponse[CollectPaymentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def collect_payment(
    payload: CollectPaymentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(staff_only),
) -> ApiResponse[CollectPaymentResponse]:
    try:
        data = await collection.collect_payment(db, current_user.tenant_id, payload, collected_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=data, message=data.message)


@router.get("/payments", response_model=ApiResponse[List[PaymentHistoryItem]])
async def list_payments(
    student_id: Optional[str] = Query(None, description="Student reference UUID or username"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(staff_only),
) -> ApiResponse[List[PaymentHistoryItem]]:
    try:
        data = await service.list_payments(db, current_user.tenant_id, student_id=student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=data)


@router.get("/payments/{payment_id}", response_model=ApiResponse[PaymentDetailResponse])
async def get_payment(
    payment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(staff_only),
) -> ApiResponse[PaymentDetailResponse]:
    try:
        data = await service.get_payment(db, current_user.tenant_id, payment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=data)
