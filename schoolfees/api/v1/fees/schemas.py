"""Fees schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from schoolfees.core.enums import PaymentMethod


# --- Fee Type ---
class FeeTypeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None


class FeeTypeUpdate(BaseModel):
    """Partial update: only keys present in the request body are applied.
    description may be set to null to clear it; name may not.
    """

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None


class FeeTypeResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    campus_id: int
    name: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# --- Fee Structure ---
class FeeInstallmentCreate(BaseModel):
    installment_name: str = Field(..., min_length=1, max_length=100)
    due_date: date
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    penalty_amount: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)


class FeeInstallmentResponse(BaseModel):
    id: UUID
    fee_structure_id: UUID
    installment_name: str
    due_date: date
    amount: Decimal
    penalty_amount: Decimal

    class Config:
        from_attributes = True


class FeeStructureCreate(BaseModel):
    """class_id may be the integer id from the classes dropdown or an existing class reference UUID;
    class_name takes precedence when both are sent."""

    academic_year_id: int
    class_id: Optional[Union[int, UUID]] = None
    class_name: Optional[str] = Field(None, max_length=50)
    fee_type_id: UUID
    total_amount: Decimal = Field(..., ge=0, decimal_places=2)
    installments: List[FeeInstallmentCreate] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_class(self) -> "FeeStructureCreate":
        if self.class_id is None and not self.class_name:
            raise ValueError("class_id or class_name is required")
        return self


class FeeStructureUpdate(BaseModel):
    """
    Scalar fields are partial (absent = untouched). The installment list is always replaced
    as a whole, so the complete schedule must be sent even to change a single due date.
    """

    academic_year_id: Optional[int] = None
    class_id: Optional[Union[int, UUID]] = None
    class_name: Optional[str] = Field(None, max_length=50)
    fee_type_id: Optional[UUID] = None
    total_amount: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    installments: List[FeeInstallmentCreate]


class FeeStructureResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    campus_id: int
    academic_year_id: int
    year_name: Optional[str] = None
    class_ref: UUID
    class_id: Optional[int] = None
    class_name: Optional[str] = None
    fee_type_id: UUID
    fee_type_name: Optional[str] = None
    total_amount: Decimal
    installments: List[FeeInstallmentResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


# --- Dues ---
class GenerateDuesRequest(BaseModel):
    academic_year_id: int
    class_id: int


class GenerateDuesResponse(BaseModel):
    total_students: int
    total_assigned: int


class AssignEnrollmentRequest(BaseModel):
    academic_year_id: int
    class_name: str = Field(..., min_length=1, max_length=50)
    username: str = Field(..., min_length=1, max_length=100)


class AssignEnrollmentResponse(BaseModel):
    assigned: int
    dues: int


class StudentFeeDueItem(BaseModel):
    """Ledger row: one due with its installment, structure and display names."""

    due_id: UUID
    student_id: UUID
    installment_id: UUID
    fee_structure_id: UUID
    academic_year_id: int
    class_ref: UUID
    fee_type_name: Optional[str] = None
    installment_name: str
    due_date: date
    amount: Decimal
    penalty_amount: Decimal
    discount_amount: Decimal
    balance_amount: Decimal
    is_paid: bool
    student_name: str
    username: Optional[str] = None
    admission_number: Optional[str] = None


# --- Payment ---
class AllocationItem(BaseModel):
    due_id: UUID
    amount: Decimal = Field(..., ge=0, decimal_places=2)


class CollectPaymentRequest(BaseModel):
    """student_id may be a student reference UUID or a username; student_username is used when it is absent."""

    student_username: Optional[str] = Field(None, max_length=100)
    student_id: Optional[str] = Field(None, max_length=100)
    total_amount_received: Decimal = Field(..., gt=0, decimal_places=2)
    payment_method: PaymentMethod
    remarks: Optional[str] = None
    allocations: Optional[List[AllocationItem]] = None
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=100)

    @model_validator(mode="after")
    def validate_student(self) -> "CollectPaymentRequest":
        if not self.student_id and not self.student_username:
            raise ValueError("student_username or student_id is required")
        return self


class FeePaymentResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    student_id: UUID
    amount_paid: Decimal
    payment_method: str
    collected_by: Optional[UUID] = None
    remarks: Optional[str] = None
    idempotency_key: Optional[str] = None
    payment_date: datetime

    class Config:
        from_attributes = True


class PaymentAllocationResponse(BaseModel):
    id: UUID
    payment_id: UUID
    due_id: UUID
    amount_allocated: Decimal

    class Config:
        from_attributes = True


class CollectPaymentResponse(BaseModel):
    payment: FeePaymentResponse
    allocations: List[PaymentAllocationResponse] = Field(default_factory=list)
    amount_unallocated: Decimal
    message: str


class PaymentHistoryItem(FeePaymentResponse):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    admission_number: Optional[str] = None
    student_name: str


class PaymentDetailResponse(PaymentHistoryItem):
    allocations: List[PaymentAllocationResponse] = Field(default_factory=list)
    amount_unallocated: Decimal
