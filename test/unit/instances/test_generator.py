"""Unit tests for daily instance generation."""

from __future__ import annotations

from contextlib import closing
from datetime import date, datetime, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from catalog.repository import (
    CatalogRepository,
    ItemCreateInput,
    ItemUpdateInput,
    PetCreateInput,
    ScheduleCreateInput,
)
from instances.errors import ItemNotFoundError, ScheduleNotFoundError
from instances.generator import InstanceGenerator
from models import DailyInstance, ItemSchedule

DAY = date(2026, 6, 15)


def _seed(session_factory: sessionmaker) -> dict[str, str]:
    """Create two pets with morning and evening schedules."""
    catalog = CatalogRepository(session_factory)
    rex = catalog.create_pet(PetCreateInput(name="Rex", id="pet-rex"))
    tom = catalog.create_pet(PetCreateInput(name="Tom", id="pet-tom"))
    drops = catalog.create_item(
        ItemCreateInput(
            name="Eye Drop A",
            type="medication",
            frequency="2x_daily",
            pet_id=rex.id,
            id="item-drops",
        )
    )
    food = catalog.create_item(
        ItemCreateInput(name="Kibble", type="food", frequency="1x_daily", pet_id=tom.id, id="item-food")
    )
    catalog.create_schedule(
        ScheduleCreateInput(item_id=drops.id, time_slot="evening", time_of_day="20:00", id="sched-pm")
    )
    catalog.create_schedule(
        ScheduleCreateInput(item_id=drops.id, time_slot="morning", time_of_day="08:00", id="sched-am")
    )
    catalog.create_schedule(
        ScheduleCreateInput(item_id=food.id, time_slot="morning", time_of_day="08:00", id="sched-food")
    )
    return {"rex": rex.id, "tom": tom.id, "drops": drops.id, "food": food.id}


def test_generates_one_instance_per_active_schedule(
    sqlite_session_factory: sessionmaker,
) -> None:
    """Each active schedule yields a pending instance at its local wall-clock time."""
    _seed(sqlite_session_factory)
    generator = InstanceGenerator(sqlite_session_factory)

    instances = generator.ensure_instances_for_date(DAY)

    assert [instance.schedule_id for instance in instances] == [
        "sched-am",
        "sched-food",
        "sched-pm",
    ]
    assert all(instance.status == "pending" for instance in instances)
    assert instances[0].scheduled_at == datetime(2026, 6, 15, 15, 0, tzinfo=timezone.utc)
    assert instances[2].scheduled_at == datetime(2026, 6, 16, 3, 0, tzinfo=timezone.utc)
    assert all(instance.instance_date == DAY for instance in instances)


def test_generation_is_idempotent(sqlite_session_factory: sessionmaker) -> None:
    """Repeated calls return the same rows and never reset confirmed state."""
    _seed(sqlite_session_factory)
    generator = InstanceGenerator(sqlite_session_factory)

    first = generator.ensure_instances_for_date(DAY)
    with closing(sqlite_session_factory()) as session:
        row = session.get(DailyInstance, first[0].id)
        row.status = "confirmed"
        row.confirmed_at = datetime(2026, 6, 15, 15, 5, tzinfo=timezone.utc)
        session.commit()
    second = generator.ensure_instances_for_date(DAY)

    assert [instance.id for instance in second] == [instance.id for instance in first]
    assert second[0].status == "confirmed"
    with closing(sqlite_session_factory()) as session:
        assert session.query(DailyInstance).count() == 3


def test_pet_filter_limits_generation(sqlite_session_factory: sessionmaker) -> None:
    """A pet filter only materializes that pet's items."""
    ids = _seed(sqlite_session_factory)
    generator = InstanceGenerator(sqlite_session_factory)

    instances = generator.ensure_instances_for_date(DAY, pet_id=ids["tom"])

    assert [instance.schedule_id for instance in instances] == ["sched-food"]
    with closing(sqlite_session_factory()) as session:
        assert session.query(DailyInstance).count() == 1


def test_inactive_and_out_of_range_items_are_skipped(
    sqlite_session_factory: sessionmaker,
) -> None:
    """Inactive items and items outside their date range produce no instances."""
    ids = _seed(sqlite_session_factory)
    catalog = CatalogRepository(sqlite_session_factory)
    catalog.update_item(ids["food"], ItemUpdateInput(active=False))
    catalog.update_item(ids["drops"], ItemUpdateInput(end_date=date(2026, 6, 14)))

    instances = InstanceGenerator(sqlite_session_factory).ensure_instances_for_date(DAY)

    assert instances == []


def test_start_and_end_dates_are_inclusive(sqlite_session_factory: sessionmaker) -> None:
    """Items are active on their first and last day."""
    ids = _seed(sqlite_session_factory)
    CatalogRepository(sqlite_session_factory).update_item(
        ids["drops"],
        ItemUpdateInput(start_date=DAY, end_date=DAY),
    )

    instances = InstanceGenerator(sqlite_session_factory).ensure_instances_for_date(
        DAY,
        pet_id=ids["rex"],
    )

    assert len(instances) == 2


def test_schedule_with_missing_item_fails(sqlite_session_factory: sessionmaker) -> None:
    """A schedule pointing at a deleted item is reported, not skipped."""
    _seed(sqlite_session_factory)
    with closing(sqlite_session_factory()) as session:
        session.add(
            ItemSchedule(
                id="sched-orphan",
                item_id="item-gone",
                time_slot="noon",
                time_of_day=datetime(2026, 1, 1, 12, 0).time(),
                active=True,
            )
        )
        session.commit()

    with pytest.raises(ScheduleNotFoundError) as exc_info:
        InstanceGenerator(sqlite_session_factory).ensure_instances_for_date(DAY)

    assert exc_info.value.code == "not_found"
    assert exc_info.value.details["schedule_id"] == "sched-orphan"
    with closing(sqlite_session_factory()) as session:
        assert session.query(DailyInstance).count() == 0


def test_adhoc_instances_sort_after_scheduled_ones(sqlite_session_factory: sessionmaker) -> None:
    """Ad-hoc instances are listed with the day and follow same-time scheduled rows."""
    ids = _seed(sqlite_session_factory)
    generator = InstanceGenerator(sqlite_session_factory)

    adhoc = generator.create_adhoc_instance(
        ids["drops"],
        datetime(2026, 6, 15, 15, 0, tzinfo=timezone.utc),
        notes="extra dose",
        instance_id="adhoc-1",
    )
    instances = generator.ensure_instances_for_date(DAY)

    assert adhoc.is_adhoc is True
    assert adhoc.schedule_id is None
    assert adhoc.instance_date == DAY
    assert [instance.id for instance in instances][2] == "adhoc-1"
    assert [instance.schedule_id for instance in instances][:2] == ["sched-am", "sched-food"]


def test_adhoc_instance_with_known_id_is_returned(sqlite_session_factory: sessionmaker) -> None:
    """Re-creating an ad-hoc instance with the same id returns the original."""
    ids = _seed(sqlite_session_factory)
    generator = InstanceGenerator(sqlite_session_factory)
    scheduled_at = datetime(2026, 6, 15, 18, 0, tzinfo=timezone.utc)

    first = generator.create_adhoc_instance(ids["food"], scheduled_at, instance_id="adhoc-2")
    second = generator.create_adhoc_instance(ids["food"], scheduled_at, instance_id="adhoc-2")

    assert first.id == second.id
    with closing(sqlite_session_factory()) as session:
        assert session.query(DailyInstance).filter(DailyInstance.is_adhoc.is_(True)).count() == 1


def test_adhoc_instance_requires_known_item(sqlite_session_factory: sessionmaker) -> None:
    """Unknown items are rejected."""
    with pytest.raises(ItemNotFoundError):
        InstanceGenerator(sqlite_session_factory).create_adhoc_instance(
            "missing",
            datetime(2026, 6, 15, 18, 0, tzinfo=timezone.utc),
        )


def test_ensure_instance_for_schedule_reuses_existing(
    sqlite_session_factory: sessionmaker,
) -> None:
    """Single-schedule generation returns the row the day view created."""
    _seed(sqlite_session_factory)
    generator = InstanceGenerator(sqlite_session_factory)
    day = generator.ensure_instances_for_date(DAY)

    instance = generator.ensure_instance_for_schedule("sched-pm", DAY)

    assert instance.id == next(row.id for row in day if row.schedule_id == "sched-pm")
    with pytest.raises(ScheduleNotFoundError):
        generator.ensure_instance_for_schedule("sched-missing", DAY)
