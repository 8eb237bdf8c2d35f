import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import uuid
from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from typing import AsyncGenerator, Callable, Dict, Optional, Sequence, Tuple

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from schoolfees.api.v1.fees import service
from schoolfees.api.v1.fees.schemas import FeeInstallmentCreate, FeeStructureCreate
from schoolfees.auth.models import User
from schoolfees.auth.security import create_access_token
from schoolfees.core.models import (
    AcademicYear,
    FeeInstallment,
    FeeType,
    SchoolClass,
    StudentEnrollment,
    StudentFeeDue,
)
from schoolfees.db.session import Base, get_db
from schoolfees.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TENANT_ID = uuid.UUID("11111111-1111-4111-8111-111111111111")
OTHER_TENANT_ID = uuid.UUID("22222222-2222-4222-8222-222222222222")
CAMPUS_ID = 1


@pytest.fixture()
async def engine():
    """Fresh in-memory database per test; StaticPool keeps every session on the same connection."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.clear()


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def _user(
    username: str,
    role: str,
    first_name: str,
    last_name: Optional[str] = None,
    tenant_id: uuid.UUID = TENANT_ID,
    campus_id: Optional[int] = CAMPUS_ID,
) -> User:
    return User(
        tenant_id=tenant_id,
        campus_id=campus_id,
        username=username,
        first_name=first_name,
        last_name=last_name,
        role=role,
    )


@pytest.fixture()
async def seed(db_session: AsyncSession) -> SimpleNamespace:
    """
    One campus with Grade 5 (alice, bob active; carol left) and Grade 6 (dave),
    staff users for every role, and Tuition/Transport fee types.
    """
    year = AcademicYear(tenant_id=TENANT_ID, campus_id=CAMPUS_ID, year_name="2025-2026")
    grade5 = SchoolClass(campus_id=CAMPUS_ID, class_level=5, class_name="Grade 5")
    grade6 = SchoolClass(campus_id=CAMPUS_ID, class_level=6, class_name="Grade 6")
    db_session.add_all([year, grade5, grade6])
    await db_session.flush()

    admin = _user("admin", "Admin", "Ada", "Admin")
    cashier = _user("cashier", "Employee", "Carl", "Cashier")
    teacher = _user("teacher", "Teacher", "Tina", "Teacher")
    roaming_admin = _user("hq.admin", "Admin", "Hank", "Quarters", campus_id=None)
    alice = _user("alice", "Student", "Alice", "Smith")
    bob = _user("bob", "Student", "Bob", "Jones")
    carol = _user("carol", "Student", "Carol", "White")
    dave = _user("dave", "Student", "Dave", "Brown")
    outsider = _user("eve", "Student", "Eve", "Other", tenant_id=OTHER_TENANT_ID)
    db_session.add_all([admin, cashier, teacher, roaming_admin, alice, bob, carol, dave, outsider])

    db_session.add_all(
        [
            StudentEnrollment(
                username="alice", campus_id=CAMPUS_ID, academic_year_id=year.id,
                class_name="Grade 5", admission_number="A-001",
            ),
            StudentEnrollment(
                username="bob", campus_id=CAMPUS_ID, academic_year_id=year.id,
                class_name="Grade 5", admission_number="A-002",
            ),
            StudentEnrollment(
                username="carol", campus_id=CAMPUS_ID, academic_year_id=year.id,
                class_name="Grade 5", admission_number="A-003", status="LEFT",
            ),
            StudentEnrollment(
                username="dave", campus_id=CAMPUS_ID, academic_year_id=year.id,
                class_name="Grade 6", admission_number="A-004",
            ),
        ]
    )

    tuition = FeeType(tenant_id=TENANT_ID, campus_id=CAMPUS_ID, name="Tuition")
    transport = FeeType(tenant_id=TENANT_ID, campus_id=CAMPUS_ID, name="Transport")
    db_session.add_all([tuition, transport])
    await db_session.commit()
    # Detached, so a rollback inside a test cannot expire them
    db_session.expunge_all()

    return SimpleNamespace(
        year=year,
        grade5=grade5,
        grade6=grade6,
        admin=admin,
        cashier=cashier,
        teacher=teacher,
        roaming_admin=roaming_admin,
        alice=alice,
        bob=bob,
        carol=carol,
        dave=dave,
        outsider=outsider,
        tuition=tuition,
        transport=transport,
    )


def token_for(user: User, campus_id: Optional[int] = CAMPUS_ID) -> str:
    claims = {
        "user_id": str(user.id),
        "tenant_id": str(user.tenant_id),
        "role": user.role,
        "username": user.username,
    }
    if campus_id is not None:
        claims["campus_id"] = campus_id
    return create_access_token(subject=claims)


@pytest.fixture()
def auth_headers() -> Callable[..., Dict[str, str]]:
    def _headers(user: User, campus_id: Optional[int] = CAMPUS_ID) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token_for(user, campus_id)}"}

    return _headers


SUMMER_TERM: Sequence[Tuple[str, date, str]] = (
    ("June", date(2025, 6, 10), "50"),
    ("July", date(2025, 7, 10), "30"),
)


async def create_structure(
    db: AsyncSession,
    seed: SimpleNamespace,
    installments: Sequence[Tuple[str, date, str]] = SUMMER_TERM,
    class_name: str = "Grade 5",
    fee_type: Optional[FeeType] = None,
):
    total = sum((Decimal(amount) for _, _, amount in installments), Decimal("0"))
    payload = FeeStructureCreate(
        academic_year_id=seed.year.id,
        class_name=class_name,
        fee_type_id=(fee_type or seed.tuition).id,
        total_amount=total,
        installments=[
            FeeInstallmentCreate(installment_name=name, due_date=due, amount=Decimal(amount))
            for name, due, amount in installments
        ],
    )
    return await service.create_fee_structure(db, TENANT_ID, CAMPUS_ID, payload)


async def read_dues(db: AsyncSession, student_id: uuid.UUID) -> Dict[str, Tuple[Decimal, bool]]:
    """installment name -> (balance, is_paid), read straight from the table."""
    rows = (
        await db.execute(
            select(FeeInstallment.installment_name, StudentFeeDue.balance_amount, StudentFeeDue.is_paid)
            .join(FeeInstallment, StudentFeeDue.installment_id == FeeInstallment.id)
            .where(StudentFeeDue.student_id == student_id)
        )
    ).all()
    return {name: (Decimal(str(balance)), bool(is_paid)) for name, balance, is_paid in rows}
