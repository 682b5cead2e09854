"""Repository helpers for pets, items, schedules, and conflict groups."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Callable

from sqlalchemy.orm import Session

from config import settings
from instances.errors import InstanceValidationError, ItemNotFoundError, ScheduleNotFoundError
from models import ConflictGroup, Item, ItemFrequencyEnum, ItemSchedule, ItemTypeEnum, Pet
from time_utils import parse_time_of_day, to_utc

UNSET = object()


@dataclass(frozen=True)
class PetCreateInput:
    """Input payload for creating a pet record."""

    name: str
    breed: str | None = None
    weight_kg: float | None = None
    notes: str | None = None
    id: str | None = None


@dataclass(frozen=True)
class ConflictGroupCreateInput:
    """Input payload for creating a conflict group."""

    name: str
    spacing_minutes: int | None = None
    id: str | None = None


@dataclass(frozen=True)
class ItemCreateInput:
    """Input payload for creating an item record."""

    name: str
    type: str
    frequency: str
    pet_id: str | None = None
    category: str | None = None
    location: str | None = None
    dose: str | None = None
    notes: str | None = None
    active: bool = True
    start_date: date | None = None
    end_date: date | None = None
    conflict_group_id: str | None = None
    id: str | None = None


@dataclass(frozen=True)
class ItemUpdateInput:
    """Input payload for updating item fields."""

    name: str | object = UNSET
    type: str | object = UNSET
    frequency: str | object = UNSET
    pet_id: str | None | object = UNSET
    category: str | None | object = UNSET
    location: str | None | object = UNSET
    dose: str | None | object = UNSET
    notes: str | None | object = UNSET
    active: bool | object = UNSET
    start_date: date | None | object = UNSET
    end_date: date | None | object = UNSET
    conflict_group_id: str | None | object = UNSET


@dataclass(frozen=True)
class ScheduleCreateInput:
    """Input payload for creating an item schedule."""

    item_id: str
    time_slot: str
    time_of_day: time | str
    active: bool = True
    id: str | None = None


@dataclass(frozen=True)
class ScheduleUpdateInput:
    """Input payload for updating schedule fields."""

    time_slot: str | object = UNSET
    time_of_day: time | str | object = UNSET
    active: bool | object = UNSET


_ITEM_FIELDS = (
    "name",
    "type",
    "frequency",
    "pet_id",
    "category",
    "location",
    "dose",
    "notes",
    "active",
    "start_date",
    "end_date",
    "conflict_group_id",
)


class CatalogRepository:
    """Repository for the catalog the instance engine reads from."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def create_pet(self, payload: PetCreateInput) -> Pet:
        """Create and persist a pet record."""

        def handler(session: Session) -> Pet:
            pet = Pet(
                name=payload.name,
                breed=payload.breed,
                weight_kg=payload.weight_kg,
                notes=payload.notes,
            )
            if payload.id is not None:
                pet.id = payload.id
            session.add(pet)
            session.flush()
            return pet

        return self._execute(handler)

    def create_conflict_group(self, payload: ConflictGroupCreateInput) -> ConflictGroup:
        """Create and persist a conflict group.

        Spacing defaults to ``instances.default_spacing_minutes``.
        """
        spacing_minutes = payload.spacing_minutes
        if spacing_minutes is None:
            spacing_minutes = settings.instances.default_spacing_minutes
        if spacing_minutes < 1:
            raise InstanceValidationError(
                "spacing_minutes must be >= 1.",
                {"field": "spacing_minutes"},
            )

        def handler(session: Session) -> ConflictGroup:
            group = ConflictGroup(name=payload.name, spacing_minutes=spacing_minutes)
            if payload.id is not None:
                group.id = payload.id
            session.add(group)
            session.flush()
            return group

        return self._execute(handler)

    def create_item(self, payload: ItemCreateInput, *, now: datetime | None = None) -> Item:
        """Create and persist an item record."""
        _validate_item_enums(payload.type, payload.frequency)

        def handler(session: Session) -> Item:
            timestamp = to_utc(now or datetime.now(timezone.utc))
            item = Item(
                **{name: getattr(payload, name) for name in _ITEM_FIELDS},
                created_at=timestamp,
                updated_at=timestamp,
            )
            if payload.id is not None:
                item.id = payload.id
            session.add(item)
            session.flush()
            return item

        return self._execute(handler)

    def get_item(self, item_id: str) -> Item | None:
        """Fetch an item by its primary key."""

        def handler(session: Session) -> Item | None:
            return session.get(Item, item_id)

        return self._execute(handler)

    def list_items(self, *, pet_id: str | None = None) -> list[Item]:
        """Return items, optionally restricted to one pet, ordered by name."""

        def handler(session: Session) -> list[Item]:
            query = session.query(Item)
            if pet_id is not None:
                query = query.filter(Item.pet_id == pet_id)
            return list(query.order_by(Item.name, Item.id).all())

        return self._execute(handler)

    def update_item(
        self,
        item_id: str,
        updates: ItemUpdateInput,
        *,
        now: datetime | None = None,
    ) -> Item:
        """Update an item record by ID."""
        _validate_item_enums(updates.type, updates.frequency)

        def handler(session: Session) -> Item:
            item = _fetch_item(session, item_id)
            for name in _ITEM_FIELDS:
                value = getattr(updates, name)
                if value is not UNSET:
                    setattr(item, name, value)
            item.updated_at = to_utc(now or datetime.now(timezone.utc))
            session.flush()
            return item

        return self._execute(handler)

    def create_schedule(self, payload: ScheduleCreateInput) -> ItemSchedule:
        """Create a schedule for an existing item."""
        time_of_day = _coerce_time_of_day(payload.time_of_day)

        def handler(session: Session) -> ItemSchedule:
            _fetch_item(session, payload.item_id)
            schedule = ItemSchedule(
                item_id=payload.item_id,
                time_slot=payload.time_slot,
                time_of_day=time_of_day,
                active=payload.active,
            )
            if payload.id is not None:
                schedule.id = payload.id
            session.add(schedule)
            session.flush()
            return schedule

        return self._execute(handler)

    def get_schedule(self, schedule_id: str) -> ItemSchedule | None:
        """Fetch a schedule by its primary key."""

        def handler(session: Session) -> ItemSchedule | None:
            return session.get(ItemSchedule, schedule_id)

        return self._execute(handler)

    def update_schedule(self, schedule_id: str, updates: ScheduleUpdateInput) -> ItemSchedule:
        """Update a schedule record by ID."""

        def handler(session: Session) -> ItemSchedule:
            schedule = session.get(ItemSchedule, schedule_id)
            if schedule is None:
                raise ScheduleNotFoundError(
                    f"Schedule not found: {schedule_id}",
                    {"schedule_id": schedule_id},
                )
            if updates.time_slot is not UNSET:
                schedule.time_slot = updates.time_slot
            if updates.time_of_day is not UNSET:
                schedule.time_of_day = _coerce_time_of_day(updates.time_of_day)
            if updates.active is not UNSET:
                schedule.active = updates.active
            session.flush()
            return schedule

        return self._execute(handler)

    def _execute(self, handler):
        """Execute repository work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result


def _fetch_item(session: Session, item_id: str) -> Item:
    """Return an item or raise when missing."""
    item = session.get(Item, item_id)
    if item is None:
        raise ItemNotFoundError(f"Item not found: {item_id}", {"item_id": item_id})
    return item


def _coerce_time_of_day(value: time | str) -> time:
    """Accept ``HH:MM`` strings or ``time`` values for schedule times."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0, tzinfo=None)
    try:
        return parse_time_of_day(value)
    except ValueError as exc:
        raise InstanceValidationError(str(exc), {"field": "time_of_day"}) from exc


def _validate_item_enums(item_type: str | object, frequency: str | object) -> None:
    """Validate item type and frequency against allowed values."""
    if item_type is not UNSET and item_type not in ItemTypeEnum.enums:
        raise InstanceValidationError(
            f"Invalid item type: {item_type}.",
            {"field": "type", "type": str(item_type)},
        )
    if frequency is not UNSET and frequency not in ItemFrequencyEnum.enums:
        raise InstanceValidationError(
            f"Invalid frequency: {frequency}.",
            {"field": "frequency", "frequency": str(frequency)},
        )
