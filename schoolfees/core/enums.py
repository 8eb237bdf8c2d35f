from enum import Enum


class PaymentMethod(str, Enum):
    CASH = "Cash"
    BANK_TRANSFER = "Bank Transfer"
    CHEQUE = "Cheque"
    ONLINE = "Online"


class UserRole(str, Enum):
    ADMIN = "Admin"
    EMPLOYEE = "Employee"
    TEACHER = "Teacher"
    STUDENT = "Student"
    PARENT = "Parent"


class EnrollmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PROMOTED = "PROMOTED"
    LEFT = "LEFT"
