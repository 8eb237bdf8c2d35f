"""
Resolve classes and students to their deterministic fee-ledger references, and back.
The reverse direction cannot be computed from a UUIDv5, so it rescans the (small) classes/users
tables for the campus/tenant and rebuilds a reference -> name map on every call.
"""

from typing import Dict, NamedTuple, Optional, Tuple, Union
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.auth.models import User
from schoolfees.core.exceptions import ServiceError
from schoolfees.core.identity import class_uuid, is_uuid, student_uuid
from schoolfees.core.models import SchoolClass, StudentEnrollment


class StudentIdentity(NamedTuple):
    username: str
    first_name: Optional[str]
    last_name: Optional[str]
    admission_number: Optional[str]

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


async def get_class_name(db: AsyncSession, campus_id: int, class_id: int) -> Optional[str]:
    result = await db.execute(
        select(SchoolClass.class_name).where(
            SchoolClass.id == class_id,
            SchoolClass.campus_id == campus_id,
        )
    )
    return result.scalar_one_or_none()


async def resolve_class_ref(
    db: AsyncSession,
    campus_id: int,
    class_id: Optional[Union[int, UUID]] = None,
    class_name: Optional[str] = None,
) -> UUID:
    """
    Class reference for a fee structure.
    class_name wins; an integer class_id is looked up in the campus; a UUID class_id is already a reference.
    """
    if class_name:
        return class_uuid(campus_id, class_name.strip())
    if isinstance(class_id, UUID):
        return class_id
    if class_id is None:
        raise ServiceError("class_id or class_name is required", status.HTTP_400_BAD_REQUEST)
    name = await get_class_name(db, campus_id, class_id)
    if name is None:
        raise ServiceError("Class not found", status.HTTP_404_NOT_FOUND)
    return class_uuid(campus_id, name)


async def resolve_student_ref(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: Optional[str] = None,
    student_username: Optional[str] = None,
) -> UUID:
    """
    Student reference for payments and ledger filters.
    A UUID-shaped student_id is taken as-is; anything else is a username that must exist in the tenant.
    """
    if student_id and is_uuid(student_id):
        return student_id if isinstance(student_id, UUID) else UUID(str(student_id))
    username = (student_id or student_username or "").strip()
    if not username:
        raise ServiceError("student_username or student_id is required", status.HTTP_400_BAD_REQUEST)
    exists = (
        await db.execute(
            select(User.id).where(User.tenant_id == tenant_id, User.username == username)
        )
    ).scalar_one_or_none()
    if exists is None:
        raise ServiceError("Student not found", status.HTTP_404_NOT_FOUND)
    return student_uuid(username)


def student_filter_ref(student_id: Optional[str]) -> Optional[UUID]:
    """Reference for a read-view filter. Unknown usernames are not looked up; they simply match nothing."""
    student_id = (student_id or "").strip()
    if not student_id:
        return None
    return UUID(student_id) if is_uuid(student_id) else student_uuid(student_id)


async def build_class_directory(db: AsyncSession, campus_id: int) -> Dict[UUID, Tuple[int, str]]:
    """class reference -> (class_id, class_name) for every class of the campus."""
    rows = (
        await db.execute(
            select(SchoolClass.id, SchoolClass.class_name).where(SchoolClass.campus_id == campus_id)
        )
    ).all()
    return {class_uuid(campus_id, name): (cid, name) for cid, name in rows}


async def build_student_directory(db: AsyncSession, tenant_id: UUID) -> Dict[UUID, StudentIdentity]:
    """student reference -> identity for every enrolled student of the tenant."""
    rows = (
        await db.execute(
            select(
                User.username,
                User.first_name,
                User.last_name,
                StudentEnrollment.admission_number,
            )
            .join(StudentEnrollment, StudentEnrollment.username == User.username)
            .where(User.tenant_id == tenant_id)
        )
    ).all()
    directory: Dict[UUID, StudentIdentity] = {}
    for username, first_name, last_name, admission_number in rows:
        directory[student_uuid(username)] = StudentIdentity(username, first_name, last_name, admission_number)
    return directory
