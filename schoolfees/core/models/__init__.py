from schoolfees.core.models.academic_year import AcademicYear
from schoolfees.core.models.class_model import SchoolClass
from schoolfees.core.models.student_enrollment import StudentEnrollment
from schoolfees.core.models.fee_type import FeeType
from schoolfees.core.models.fee_structure import FeeInstallment, FeeStructure
from schoolfees.core.models.student_fee_due import StudentFeeDue
from schoolfees.core.models.fee_payment import FeePayment, PaymentAllocation

__all__ = [
    "AcademicYear",
    "SchoolClass",
    "StudentEnrollment",
    "FeeType",
    "FeeStructure",
    "FeeInstallment",
    "StudentFeeDue",
    "FeePayment",
    "PaymentAllocation",
]
