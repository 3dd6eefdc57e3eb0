from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from subsync.domain.errors import UpstreamError, ValidationError
from subsync.domain.model import FieldMappingTable, Side
from subsync.domain.reconciliation import ApplyEngine, Governor

if TYPE_CHECKING:
    from collections.abc import Callable

    from subsync.adapters.sqlalchemy import SqlAlchemySyncUnitOfWork
    from tests.support.fakes import FakePrimaryStore, FakeSecondaryService, ManualClock

type UowFactory = Callable[[], SqlAlchemySyncUnitOfWork]


@pytest.fixture
def engine(
    primary: FakePrimaryStore, secondary: FakeSecondaryService, clock: ManualClock
) -> ApplyEngine:
    return ApplyEngine(
        primary=primary,
        secondary=secondary,
        governor=Governor(clock=clock, sleep=clock.sleep),
        mappings=FieldMappingTable(),
    )


def test_create_on_secondary_records_crosswalk_and_shadow(
    engine: ApplyEngine,
    secondary: FakeSecondaryService,
    sqlite_unit_of_work: UowFactory,
) -> None:
    with sqlite_unit_of_work() as uow:
        outcome = engine.create(
            uow.repositories,
            target=Side.SECONDARY,
            email=" Ann@Example.com",
            values={"first_name": "Ann", "phone": None},
        )
        uow.commit()

    assert outcome.created
    assert secondary.created == [("ann@example.com", {"name": "Ann"})]

    with sqlite_unit_of_work() as uow:
        entry = uow.repositories.crosswalk.get("ann@example.com")
        shadow = uow.repositories.shadows.get("ann@example.com")

    assert entry is not None
    assert entry.secondary_id == outcome.target_id
    assert shadow is not None
    assert shadow.value_for(Side.PRIMARY, "first_name") == "Ann"
    assert shadow.value_for(Side.SECONDARY, "first_name") == "Ann"


def test_create_is_insert_if_missing(
    engine: ApplyEngine,
    secondary: FakeSecondaryService,
    sqlite_unit_of_work: UowFactory,
) -> None:
    existing_id = secondary.seed("ann@example.com", name="Old")

    with sqlite_unit_of_work() as uow:
        outcome = engine.create(
            uow.repositories,
            target=Side.SECONDARY,
            email="ann@example.com",
            values={"first_name": "Ann"},
        )
        uow.commit()

    assert not outcome.created
    assert outcome.target_id == existing_id
    assert secondary.created == []
    assert secondary.updates == [(existing_id, {"name": "Ann"})]


def test_create_on_primary_writes_primary_field_names(
    engine: ApplyEngine,
    primary: FakePrimaryStore,
    sqlite_unit_of_work: UowFactory,
) -> None:
    with sqlite_unit_of_work() as uow:
        outcome = engine.create(
            uow.repositories,
            target=Side.PRIMARY,
            email="bob@example.com",
            values={"first_name": "Bob", "city": "Oslo"},
        )
        uow.commit()

    assert primary.created == [
        {"email": "bob@example.com", "first_name": "Bob", "city": "Oslo"}
    ]
    assert primary.rows[outcome.target_id]["first_name"] == "Bob"


def test_update_resolves_target_through_crosswalk(
    engine: ApplyEngine,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    sqlite_unit_of_work: UowFactory,
) -> None:
    record_id = primary.seed("ann@example.com", first_name="Ann")

    with sqlite_unit_of_work() as uow:
        uow.repositories.crosswalk.upsert("ann@example.com", primary_id=record_id)
        engine.update(
            uow.repositories,
            target=Side.PRIMARY,
            email="ann@example.com",
            values={"city": " Bergen "},
        )
        uow.commit()

    assert primary.updates == [(record_id, {"city": "Bergen"})]
    assert secondary.calls == []


def test_update_without_a_target_record_fails(
    engine: ApplyEngine,
    sqlite_unit_of_work: UowFactory,
) -> None:
    with sqlite_unit_of_work() as uow, pytest.raises(UpstreamError):
        engine.update(
            uow.repositories,
            target=Side.SECONDARY,
            email="ghost@example.com",
            values={"city": "Oslo"},
        )


def test_update_rejects_empty_and_unmapped_values(
    engine: ApplyEngine,
    sqlite_unit_of_work: UowFactory,
) -> None:
    with sqlite_unit_of_work() as uow:
        with pytest.raises(ValidationError):
            engine.update(uow.repositories, target=Side.PRIMARY, email="a@x.io", values={})
        with pytest.raises(ValidationError):
            engine.update(
                uow.repositories,
                target=Side.PRIMARY,
                email="a@x.io",
                values={"company": "ACME"},
                record_id="p0001",
            )
