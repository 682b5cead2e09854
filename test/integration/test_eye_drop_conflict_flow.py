"""Integration test for a full day of spaced eye drop doses."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from sqlalchemy.orm import sessionmaker

from catalog.repository import (
    CatalogRepository,
    ConflictGroupCreateInput,
    ItemCreateInput,
    PetCreateInput,
    ScheduleCreateInput,
)
from instances.classifier import bucket_instances
from instances.conflicts import ConflictDetector
from instances.generator import InstanceGenerator
from instances.history import ConfirmationHistoryRepository
from instances.reconciler import OfflineReconciler
from instances.transition_service import InstanceTransitionService

DAY = date(2026, 6, 15)
EIGHT_AM = datetime(2026, 6, 15, 15, 0, tzinfo=timezone.utc)


def test_eye_drop_spacing_day(sqlite_session_factory: sessionmaker) -> None:
    """Two drops in one group need spacing, overrides work, and the day expires cleanly."""
    catalog = CatalogRepository(sqlite_session_factory)
    pet = catalog.create_pet(PetCreateInput(name="Rex", id="pet-rex"))
    catalog.create_conflict_group(
        ConflictGroupCreateInput(name="Eye drops", spacing_minutes=30, id="group-eyes")
    )
    for key in ("a", "b"):
        item = catalog.create_item(
            ItemCreateInput(
                name=f"Eye Drop {key.upper()}",
                type="medication",
                frequency="2x_daily",
                pet_id=pet.id,
                conflict_group_id="group-eyes",
                id=f"item-{key}",
            )
        )
        for slot, clock_time in (("morning", "08:00"), ("evening", "20:00")):
            catalog.create_schedule(
                ScheduleCreateInput(
                    item_id=item.id,
                    time_slot=slot,
                    time_of_day=clock_time,
                    id=f"sched-{key}-{slot}",
                )
            )

    generator = InstanceGenerator(sqlite_session_factory)
    transitions = InstanceTransitionService(sqlite_session_factory)
    detector = ConflictDetector(sqlite_session_factory)
    history = ConfirmationHistoryRepository(sqlite_session_factory)

    instances = generator.ensure_instances_for_date(DAY, pet_id=pet.id)
    by_schedule = {instance.schedule_id: instance for instance in instances}
    assert len(instances) == 4
    assert generator.ensure_instances_for_date(DAY, pet_id=pet.id)[0].id == instances[0].id

    drop_a = by_schedule["sched-a-morning"]
    drop_b = by_schedule["sched-b-morning"]
    confirmed_a = transitions.confirm(
        drop_a.id,
        now=EIGHT_AM + timedelta(minutes=5),
        confirmed_by="sam",
    )
    assert confirmed_a.status == "confirmed"

    check = detector.check_conflict(drop_b, EIGHT_AM + timedelta(minutes=10))
    assert check.has_conflict is True
    assert check.conflicting_item_name == "Eye Drop A"
    assert check.remaining_minutes == 25

    blocked = transitions.confirm(drop_b.id, now=EIGHT_AM + timedelta(minutes=10), confirmed_by="sam")
    assert blocked.status == "conflict"
    assert history.get_for_instance(drop_b.id) is None

    overridden = transitions.confirm(
        drop_b.id,
        now=EIGHT_AM + timedelta(minutes=10),
        confirmed_by="sam",
        override=True,
    )
    assert overridden.status == "confirmed"
    assert overridden.conflict.has_conflict is True

    day_start = datetime(2026, 6, 15, 7, 0, tzinfo=timezone.utc)
    entries = history.list_range(start=day_start, end=day_start + timedelta(days=1))
    assert [entry.item_id for entry in entries] == ["item-b", "item-a"]

    evening_check = detector.check_conflict(
        by_schedule["sched-b-evening"],
        EIGHT_AM + timedelta(hours=12),
    )
    assert evening_check.has_conflict is False

    # Evening doses are queued offline and synced after midnight.
    reconciler = OfflineReconciler(
        sqlite_session_factory,
        clock=lambda: EIGHT_AM + timedelta(hours=17),
    )
    outcomes = reconciler.reconcile(
        [
            {
                "id": "evening-b",
                "type": "confirm",
                "payload": {"instance_id": by_schedule["sched-b-evening"].id},
                "client_timestamp": "2026-06-15T20:20:00-07:00",
            },
            {
                "id": "evening-a",
                "type": "confirm",
                "payload": {"instance_id": by_schedule["sched-a-evening"].id},
                "client_timestamp": "2026-06-15T20:00:00-07:00",
            },
        ]
    )
    assert [(outcome.action_id, outcome.outcome) for outcome in outcomes] == [
        ("evening-a", "confirmed"),
        ("evening-b", "conflict"),
    ]
    assert outcomes[1].detail["remaining_minutes"] == 10

    next_morning = EIGHT_AM + timedelta(days=1)
    assert transitions.expire_elapsed(next_morning) == 1
    final = generator.ensure_instances_for_date(DAY, pet_id=pet.id)
    grouped = bucket_instances(final, next_morning)
    assert len(grouped.confirmed) == 3
    assert [instance.status for instance in final if instance.confirmed_at is None] == ["expired"]
