"""
Deterministic identities for the fee ledger.
Classes and students are referenced by UUIDv5 of a stable business key instead of a foreign key:
class -> "<campus_id>::<class_name>", student -> username. The two namespaces never overlap.
"""

import re
import uuid
from typing import Union

NAMESPACE_CLASS = uuid.UUID("4d8a1f6c-0cb0-4c3e-9e5d-4f9fd1fbb001")
NAMESPACE_STUDENT = uuid.UUID("4d8a1f6c-0cb0-4c3e-9e5d-4f9fd1fbb002")

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-5][0-9a-f]{3}-[089ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def class_uuid(campus_id: Union[int, str], class_name: str) -> uuid.UUID:
    """
    Reference for a class within a campus.

    Examples:
        class_uuid(3, "Grade 5") == class_uuid("3", "Grade 5")
        class_uuid(3, "Grade 5") != class_uuid(4, "Grade 5")
    """
    if campus_id is None or str(campus_id) == "":
        raise ValueError("campus_id is required")
    if not class_name:
        raise ValueError("class_name is required")
    return uuid.uuid5(NAMESPACE_CLASS, f"{campus_id}::{class_name}")


def student_uuid(username: str) -> uuid.UUID:
    """Reference for a student, derived from the login username."""
    if not username:
        raise ValueError("username is required")
    return uuid.uuid5(NAMESPACE_STUDENT, username)


def is_uuid(value: object) -> bool:
    """True when value is already a UUID (or its canonical string form) rather than a username."""
    if isinstance(value, uuid.UUID):
        return True
    return bool(value) and isinstance(value, str) and _UUID_RE.match(value) is not None
