"""Materialize recurring item schedules into per-day instances."""

from __future__ import annotations

from contextlib import closing
from datetime import date, datetime, timezone
import logging
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from instances.errors import ItemNotFoundError, ScheduleNotFoundError
from instances.repository import list_instances_for_date
from models import DailyInstance, Item, ItemSchedule
from time_utils import combine_local, local_date, to_utc

logger = logging.getLogger(__name__)


class InstanceGenerator:
    """Create the day's instances for active schedules, once per date."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize the generator with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def ensure_instances_for_date(
        self,
        target_date: date,
        *,
        pet_id: str | None = None,
    ) -> list[DailyInstance]:
        """Return the date's instances, creating missing scheduled ones.

        Existing instances are returned untouched, so repeated calls never
        duplicate or reset confirmed and snoozed instances. ``pet_id=None``
        covers every item.
        """

        def handler(session: Session) -> list[DailyInstance]:
            created = _create_missing_instances(session, target_date, pet_id=pet_id)
            if created:
                logger.info(
                    "Generated daily instances: date=%s pet_id=%s created=%s",
                    target_date,
                    pet_id,
                    created,
                )
            return list_instances_for_date(session, target_date, pet_id=pet_id)

        try:
            return self._execute(handler)
        except IntegrityError:
            # Another request inserted the same (schedule, date) rows first.
            logger.info("Concurrent instance generation detected: date=%s", target_date)
            return self._execute(handler)

    def ensure_instance_for_schedule(self, schedule_id: str, target_date: date) -> DailyInstance:
        """Return the instance for one schedule and date, creating it if missing."""

        def handler(session: Session) -> DailyInstance:
            return _ensure_schedule_instance(session, schedule_id, target_date)

        try:
            return self._execute(handler)
        except IntegrityError:
            logger.info(
                "Concurrent instance generation detected: schedule_id=%s date=%s",
                schedule_id,
                target_date,
            )
            return self._execute(handler)

    def create_adhoc_instance(
        self,
        item_id: str,
        scheduled_at: datetime,
        *,
        notes: str | None = None,
        instance_id: str | None = None,
        now: datetime | None = None,
    ) -> DailyInstance:
        """Create a pending instance that is not backed by a schedule.

        When ``instance_id`` is supplied and already exists, the existing
        instance is returned so client-assigned ids replay safely.
        """

        def handler(session: Session) -> DailyInstance:
            if instance_id is not None:
                existing = session.get(DailyInstance, instance_id)
                if existing is not None:
                    return existing
            if session.get(Item, item_id) is None:
                raise ItemNotFoundError(f"Item not found: {item_id}", {"item_id": item_id})
            scheduled_utc = to_utc(scheduled_at)
            timestamp = to_utc(now or datetime.now(timezone.utc))
            instance = DailyInstance(
                item_id=item_id,
                schedule_id=None,
                instance_date=local_date(scheduled_utc),
                scheduled_at=scheduled_utc,
                status="pending",
                notes=notes,
                is_adhoc=True,
                created_at=timestamp,
                updated_at=timestamp,
            )
            if instance_id is not None:
                instance.id = instance_id
            session.add(instance)
            session.flush()
            logger.info(
                "Created ad-hoc instance: instance_id=%s item_id=%s",
                instance.id,
                item_id,
            )
            return instance

        return self._execute(handler)

    def _execute(self, handler):
        """Execute generator work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result


def _create_missing_instances(
    session: Session,
    target_date: date,
    *,
    pet_id: str | None,
) -> int:
    """Insert pending instances for active schedules lacking one on the date."""
    rows = (
        session.query(ItemSchedule, Item)
        .outerjoin(Item, Item.id == ItemSchedule.item_id)
        .filter(ItemSchedule.active.is_(True))
        .order_by(ItemSchedule.id)
        .all()
    )
    existing_schedule_ids = {
        schedule_id
        for (schedule_id,) in session.query(DailyInstance.schedule_id)
        .filter(DailyInstance.instance_date == target_date)
        .filter(DailyInstance.schedule_id.isnot(None))
        .all()
    }
    created = 0
    for schedule, item in rows:
        if item is None:
            raise ScheduleNotFoundError(
                f"Schedule {schedule.id} references missing item {schedule.item_id}",
                {"schedule_id": schedule.id, "item_id": schedule.item_id},
            )
        if pet_id is not None and item.pet_id != pet_id:
            continue
        if not is_item_active_on(item, target_date):
            continue
        if schedule.id in existing_schedule_ids:
            continue
        session.add(_build_instance(schedule, target_date))
        created += 1
    if created:
        session.flush()
    return created


def _ensure_schedule_instance(
    session: Session,
    schedule_id: str,
    target_date: date,
) -> DailyInstance:
    """Return or create the instance for a single schedule and date."""
    existing = (
        session.query(DailyInstance)
        .filter(DailyInstance.schedule_id == schedule_id)
        .filter(DailyInstance.instance_date == target_date)
        .one_or_none()
    )
    if existing is not None:
        return existing
    schedule = session.get(ItemSchedule, schedule_id)
    if schedule is None:
        raise ScheduleNotFoundError(
            f"Schedule not found: {schedule_id}",
            {"schedule_id": schedule_id},
        )
    if session.get(Item, schedule.item_id) is None:
        raise ScheduleNotFoundError(
            f"Schedule {schedule.id} references missing item {schedule.item_id}",
            {"schedule_id": schedule.id, "item_id": schedule.item_id},
        )
    instance = _build_instance(schedule, target_date)
    session.add(instance)
    session.flush()
    return instance


def _build_instance(schedule: ItemSchedule, target_date: date) -> DailyInstance:
    """Build a pending instance for a schedule on a date."""
    return DailyInstance(
        schedule_id=schedule.id,
        item_id=schedule.item_id,
        instance_date=target_date,
        scheduled_at=combine_local(target_date, schedule.time_of_day),
        status="pending",
        is_adhoc=False,
    )


def is_item_active_on(item: Item, target_date: date) -> bool:
    """Return True when the item is active and within its date range."""
    if not item.active:
        return False
    if item.start_date is not None and item.start_date > target_date:
        return False
    if item.end_date is not None and item.end_date < target_date:
        return False
    return True


__all__ = ["InstanceGenerator", "is_item_active_on"]
