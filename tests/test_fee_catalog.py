import uuid
from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.api.v1.fees import repository, service
from schoolfees.api.v1.fees.schemas import (
    FeeInstallmentCreate,
    FeeStructureCreate,
    FeeStructureUpdate,
    FeeTypeCreate,
    FeeTypeUpdate,
    GenerateDuesResponse,
)
from schoolfees.core.exceptions import ServiceError
from schoolfees.core.identity import class_uuid
from schoolfees.core.models import FeeStructure

from conftest import CAMPUS_ID, OTHER_TENANT_ID, TENANT_ID, create_structure


QUARTERS = (
    ("Q3", date(2025, 10, 1), "300"),
    ("Q1", date(2025, 4, 1), "300"),
    ("Q2", date(2025, 7, 1), "300"),
)


# --- Fee types ---
@pytest.mark.asyncio
async def test_create_and_list_fee_types(db_session: AsyncSession, seed) -> None:
    created = await service.create_fee_type(
        db_session, TENANT_ID, CAMPUS_ID, FeeTypeCreate(name="  Exam  ", description="Term exams")
    )
    assert created.name == "Exam"
    assert created.campus_id == CAMPUS_ID

    names = [ft.name for ft in await service.list_fee_types(db_session, TENANT_ID, CAMPUS_ID)]
    assert names == ["Exam", "Transport", "Tuition"]


@pytest.mark.asyncio
async def test_update_fee_type_applies_only_sent_fields(db_session: AsyncSession, seed) -> None:
    created = await service.create_fee_type(
        db_session, TENANT_ID, CAMPUS_ID, FeeTypeCreate(name="Library", description="Books")
    )

    updated = await service.update_fee_type(
        db_session, TENANT_ID, created.id, FeeTypeUpdate(description="Books and journals")
    )
    assert updated.name == "Library"
    assert updated.description == "Books and journals"

    cleared = await service.update_fee_type(
        db_session, TENANT_ID, created.id, FeeTypeUpdate(description=None)
    )
    assert cleared.name == "Library"
    assert cleared.description is None


@pytest.mark.asyncio
async def test_update_fee_type_rejects_null_name(db_session: AsyncSession, seed) -> None:
    with pytest.raises(ServiceError) as exc:
        await service.update_fee_type(db_session, TENANT_ID, seed.tuition.id, FeeTypeUpdate(name=None))
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_delete_fee_type(db_session: AsyncSession, seed) -> None:
    await create_structure(db_session, seed)

    with pytest.raises(ServiceError) as exc:
        await service.delete_fee_type(db_session, TENANT_ID, seed.tuition.id)
    assert exc.value.status_code == 409

    deleted = await service.delete_fee_type(db_session, TENANT_ID, seed.transport.id)
    assert deleted.name == "Transport"
    names = [ft.name for ft in await service.list_fee_types(db_session, TENANT_ID, CAMPUS_ID)]
    assert names == ["Tuition"]

    with pytest.raises(ServiceError) as exc:
        await service.delete_fee_type(db_session, TENANT_ID, seed.transport.id)
    assert exc.value.status_code == 404


# --- Fee structures ---
@pytest.mark.asyncio
async def test_create_structure_orders_installments_by_due_date(db_session: AsyncSession, seed) -> None:
    fs = await create_structure(db_session, seed, installments=QUARTERS)

    assert [i.installment_name for i in fs.installments] == ["Q1", "Q2", "Q3"]
    assert fs.total_amount == Decimal("900")
    assert fs.class_ref == class_uuid(CAMPUS_ID, "Grade 5")
    assert fs.class_id == seed.grade5.id
    assert fs.class_name == "Grade 5"
    assert fs.fee_type_name == "Tuition"
    assert fs.year_name == "2025-2026"


@pytest.mark.asyncio
async def test_create_structure_by_integer_class_id(db_session: AsyncSession, seed) -> None:
    payload = FeeStructureCreate(
        academic_year_id=seed.year.id,
        class_id=seed.grade6.id,
        fee_type_id=seed.transport.id,
        total_amount=Decimal("120"),
        installments=[FeeInstallmentCreate(installment_name="Annual", due_date=date(2025, 5, 1), amount=Decimal("120"))],
    )
    fs = await service.create_fee_structure(db_session, TENANT_ID, CAMPUS_ID, payload)
    assert fs.class_ref == class_uuid(CAMPUS_ID, "Grade 6")
    assert fs.class_name == "Grade 6"


@pytest.mark.asyncio
async def test_create_structure_unknown_class_id(db_session: AsyncSession, seed) -> None:
    payload = FeeStructureCreate(
        academic_year_id=seed.year.id,
        class_id=9999,
        fee_type_id=seed.tuition.id,
        total_amount=Decimal("0"),
    )
    with pytest.raises(ServiceError) as exc:
        await service.create_fee_structure(db_session, TENANT_ID, CAMPUS_ID, payload)
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_create_structure_rejects_fee_type_of_other_campus(db_session: AsyncSession, seed) -> None:
    other = await service.create_fee_type(db_session, TENANT_ID, CAMPUS_ID + 1, FeeTypeCreate(name="Hostel"))
    payload = FeeStructureCreate(
        academic_year_id=seed.year.id,
        class_name="Grade 5",
        fee_type_id=other.id,
        total_amount=Decimal("10"),
    )
    with pytest.raises(ServiceError) as exc:
        await service.create_fee_structure(db_session, TENANT_ID, CAMPUS_ID, payload)
    assert exc.value.status_code == 400
    assert await service.list_fee_structures(db_session, TENANT_ID, CAMPUS_ID) == []


@pytest.mark.asyncio
async def test_list_structures_falls_back_to_unknown_class(db_session: AsyncSession, seed) -> None:
    await create_structure(db_session, seed, class_name="Grade 12")
    [fs] = await service.list_fee_structures(db_session, TENANT_ID, CAMPUS_ID)
    assert fs.class_name == "Unknown Class"
    assert fs.class_id is None
    assert len(fs.installments) == 2


@pytest.mark.asyncio
async def test_get_structure_from_other_tenant_is_not_found(db_session: AsyncSession, seed) -> None:
    fs = await create_structure(db_session, seed)
    with pytest.raises(ServiceError) as exc:
        await service.get_fee_structure(db_session, OTHER_TENANT_ID, fs.id)
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_update_replaces_installments(db_session: AsyncSession, seed) -> None:
    fs = await create_structure(db_session, seed, installments=QUARTERS)

    updated = await service.update_fee_structure(
        db_session,
        TENANT_ID,
        CAMPUS_ID,
        fs.id,
        FeeStructureUpdate(
            installments=[
                FeeInstallmentCreate(installment_name="Annual", due_date=date(2025, 4, 15), amount=Decimal("850")),
            ],
        ),
    )
    assert [i.installment_name for i in updated.installments] == ["Annual"]
    # absent scalar fields are untouched
    assert updated.total_amount == Decimal("900")
    assert updated.fee_type_id == seed.tuition.id

    schedule = await service.list_installments(db_session, TENANT_ID, fs.id)
    assert [(i.installment_name, i.amount) for i in schedule] == [("Annual", Decimal("850"))]


@pytest.mark.asyncio
async def test_update_changes_scalars_and_class(db_session: AsyncSession, seed) -> None:
    fs = await create_structure(db_session, seed)
    updated = await service.update_fee_structure(
        db_session,
        TENANT_ID,
        CAMPUS_ID,
        fs.id,
        FeeStructureUpdate(
            class_name="Grade 6",
            total_amount=Decimal("95"),
            installments=[
                FeeInstallmentCreate(installment_name="June", due_date=date(2025, 6, 10), amount=Decimal("95")),
            ],
        ),
    )
    assert updated.total_amount == Decimal("95")
    assert updated.class_ref == class_uuid(CAMPUS_ID, "Grade 6")


@pytest.mark.asyncio
async def test_update_rejects_null_required_field(db_session: AsyncSession, seed) -> None:
    fs = await create_structure(db_session, seed)
    with pytest.raises(ServiceError) as exc:
        await service.update_fee_structure(
            db_session, TENANT_ID, CAMPUS_ID, fs.id, FeeStructureUpdate(total_amount=None, installments=[])
        )
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_structure_with_dues_cannot_be_replaced_or_deleted(db_session: AsyncSession, seed) -> None:
    fs = await create_structure(db_session, seed)
    result = await service.generate_dues_for_class(db_session, TENANT_ID, CAMPUS_ID, seed.year.id, seed.grade5.id)
    assert result == GenerateDuesResponse(total_students=2, total_assigned=2)

    with pytest.raises(ServiceError) as exc:
        await service.update_fee_structure(
            db_session, TENANT_ID, CAMPUS_ID, fs.id, FeeStructureUpdate(installments=[])
        )
    assert exc.value.status_code == 409

    with pytest.raises(ServiceError) as exc:
        await service.delete_fee_structure(db_session, TENANT_ID, fs.id)
    assert exc.value.status_code == 409

    schedule = await service.list_installments(db_session, TENANT_ID, fs.id)
    assert [i.installment_name for i in schedule] == ["June", "July"]


@pytest.mark.asyncio
async def test_delete_structure(db_session: AsyncSession, seed) -> None:
    fs = await create_structure(db_session, seed)
    deleted = await service.delete_fee_structure(db_session, TENANT_ID, fs.id)
    assert deleted.id == fs.id

    with pytest.raises(ServiceError) as exc:
        await service.get_fee_structure(db_session, TENANT_ID, fs.id)
    assert exc.value.status_code == 404
    with pytest.raises(ServiceError) as exc:
        await service.list_installments(db_session, TENANT_ID, fs.id)
    assert exc.value.status_code == 404


# --- Atomicity ---
async def _failing_insert(*args, **kwargs):
    raise RuntimeError("installment insert failed")


@pytest.mark.asyncio
async def test_create_structure_rolls_back_when_installments_fail(
    db_session: AsyncSession, seed, monkeypatch
) -> None:
    monkeypatch.setattr(repository, "insert_installments", _failing_insert)
    with pytest.raises(RuntimeError):
        await create_structure(db_session, seed)

    count = (await db_session.execute(select(func.count(FeeStructure.id)))).scalar()
    assert count == 0
    assert await service.list_fee_structures(db_session, TENANT_ID, CAMPUS_ID) == []


@pytest.mark.asyncio
async def test_update_structure_rolls_back_scalars_when_installments_fail(
    db_session: AsyncSession, seed, monkeypatch
) -> None:
    fs = await create_structure(db_session, seed)
    monkeypatch.setattr(repository, "insert_installments", _failing_insert)
    with pytest.raises(RuntimeError):
        await service.update_fee_structure(
            db_session,
            TENANT_ID,
            CAMPUS_ID,
            fs.id,
            FeeStructureUpdate(
                class_name="Grade 6",
                total_amount=Decimal("95"),
                installments=[
                    FeeInstallmentCreate(installment_name="June", due_date=date(2025, 6, 10), amount=Decimal("95")),
                ],
            ),
        )

    current = await service.get_fee_structure(db_session, TENANT_ID, fs.id)
    assert current.total_amount == Decimal("80")
    assert current.class_ref == class_uuid(CAMPUS_ID, "Grade 5")
    assert [i.installment_name for i in current.installments] == ["June", "July"]


# --- Storage ---
@pytest.mark.asyncio
async def test_digit_only_tenant_id_reads_back(db_session: AsyncSession, seed) -> None:
    tenant = uuid.UUID("33333333-3333-4333-8333-333333333333")
    await service.create_fee_type(db_session, tenant, CAMPUS_ID, FeeTypeCreate(name="Lab"))
    db_session.expunge_all()

    [fee_type] = await service.list_fee_types(db_session, tenant, CAMPUS_ID)
    assert fee_type.tenant_id == tenant
    assert fee_type.name == "Lab"


def test_money_fields_reject_sub_cent_amounts() -> None:
    with pytest.raises(ValidationError):
        FeeInstallmentCreate(installment_name="June", due_date=date(2025, 6, 10), amount=Decimal("10.555"))
    with pytest.raises(ValidationError):
        FeeStructureUpdate(total_amount=Decimal("0.001"), installments=[])
    assert FeeInstallmentCreate(
        installment_name="June", due_date=date(2025, 6, 10), amount=Decimal("10.50")
    ).amount == Decimal("10.50")
