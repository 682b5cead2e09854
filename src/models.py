"""Data models for PawDose."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm.attributes import set_committed_value

from time_utils import ensure_aware

# SQLAlchemy base
Base = declarative_base()

ItemTypeEnum = Enum(
    "medication",
    "food",
    "supplement",
    name="item_type",
    native_enum=False,
)
ItemFrequencyEnum = Enum(
    "1x_daily",
    "2x_daily",
    "4x_daily",
    "12h",
    "as_needed",
    name="item_frequency",
    native_enum=False,
)
InstanceStatusEnum = Enum(
    "pending",
    "confirmed",
    "snoozed",
    "expired",
    name="instance_status",
    native_enum=False,
)
OfflineActionTypeEnum = Enum(
    "confirm",
    "snooze",
    "edit",
    "create",
    name="offline_action_type",
    native_enum=False,
)


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Pet(Base):
    """Animal receiving care."""

    __tablename__ = "pets"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    breed = Column(String(255), nullable=True)
    weight_kg = Column(Numeric(5, 2), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class ConflictGroup(Base):
    """Items that must be administered at least ``spacing_minutes`` apart."""

    __tablename__ = "conflict_groups"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    spacing_minutes = Column(Integer, nullable=False, default=30)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class Item(Base):
    """Medication, food, or supplement given to a pet."""

    __tablename__ = "items"

    id = Column(String(36), primary_key=True, default=_new_id)
    pet_id = Column(String(36), ForeignKey("pets.id"), nullable=True)
    name = Column(String(255), nullable=False)
    type = Column(ItemTypeEnum, nullable=False)
    category = Column(String(50), nullable=True)
    location = Column(String(255), nullable=True)
    dose = Column(String(100), nullable=True)
    frequency = Column(ItemFrequencyEnum, nullable=False)
    notes = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    conflict_group_id = Column(String(36), ForeignKey("conflict_groups.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("idx_items_pet_id", "pet_id"),
        Index("idx_items_active", "active"),
    )


class ItemSchedule(Base):
    """Recurring daily wall-clock time for giving an item."""

    __tablename__ = "item_schedules"

    id = Column(String(36), primary_key=True, default=_new_id)
    item_id = Column(String(36), ForeignKey("items.id"), nullable=False)
    time_slot = Column(String(50), nullable=False)
    time_of_day = Column(Time, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (Index("idx_item_schedules_item_id", "item_id"),)


class DailyInstance(Base):
    """One schedule materialized for one calendar date."""

    __tablename__ = "daily_instances"

    id = Column(String(36), primary_key=True, default=_new_id)
    schedule_id = Column(String(36), ForeignKey("item_schedules.id"), nullable=True)
    item_id = Column(String(36), ForeignKey("items.id"), nullable=False)
    instance_date = Column(Date, nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(InstanceStatusEnum, nullable=False, default="pending")
    snoozed_until = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_by = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    is_adhoc = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("schedule_id", "instance_date", name="uq_daily_instances_schedule_date"),
        Index("idx_daily_instances_item_id", "item_id"),
        Index("idx_daily_instances_date", "instance_date"),
        Index("idx_daily_instances_status", "status"),
    )


class ConfirmationHistory(Base):
    """Audit ledger entry for a confirmed instance."""

    __tablename__ = "confirmation_history"

    id = Column(String(36), primary_key=True, default=_new_id)
    instance_id = Column(String(36), ForeignKey("daily_instances.id"), nullable=False)
    item_id = Column(String(36), ForeignKey("items.id"), nullable=False)
    confirmed_by = Column(String(255), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=False)
    notes = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    edited_at = Column(DateTime(timezone=True), nullable=True)
    edited_by = Column(String(255), nullable=True)
    previous_values = Column(JSON, nullable=True)
    applied_action_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("instance_id", name="uq_confirmation_history_instance"),
        Index("idx_confirmation_history_item_confirmed", "item_id", "confirmed_at"),
    )


class OfflineAction(Base):
    """Client-queued action received for reconciliation."""

    __tablename__ = "offline_actions"

    id = Column(String(64), primary_key=True)
    type = Column(OfflineActionTypeEnum, nullable=False)
    payload = Column(JSON, nullable=False)
    client_timestamp = Column(DateTime(timezone=True), nullable=False)
    synced = Column(Boolean, nullable=False, default=False)
    outcome = Column(String(50), nullable=True)
    outcome_detail = Column(JSON, nullable=True)
    received_at = Column(DateTime(timezone=True), default=_utcnow)
    synced_at = Column(DateTime(timezone=True), nullable=True)


_INSTANCE_TIMESTAMPS = ("scheduled_at", "snoozed_until", "confirmed_at", "created_at", "updated_at")
_HISTORY_TIMESTAMPS = ("confirmed_at", "edited_at", "created_at")
_OFFLINE_ACTION_TIMESTAMPS = ("client_timestamp", "received_at", "synced_at")


def _normalize_loaded_timestamps(target: Base, names: tuple[str, ...]) -> None:
    """Mark loaded timestamps as UTC without flagging the row as modified."""
    for name in names:
        value = target.__dict__.get(name)
        if value is not None and value.tzinfo is None:
            set_committed_value(target, name, ensure_aware(value))


@event.listens_for(DailyInstance, "load")
def _normalize_instance_on_load(target: DailyInstance, _context: object) -> None:
    """Ensure loaded instance timestamps retain timezone awareness."""
    _normalize_loaded_timestamps(target, _INSTANCE_TIMESTAMPS)


@event.listens_for(DailyInstance, "refresh")
def _normalize_instance_on_refresh(target: DailyInstance, _context: object, _attrs: object) -> None:
    _normalize_loaded_timestamps(target, _INSTANCE_TIMESTAMPS)


@event.listens_for(ConfirmationHistory, "load")
def _normalize_history_on_load(target: ConfirmationHistory, _context: object) -> None:
    """Ensure loaded history timestamps retain timezone awareness."""
    _normalize_loaded_timestamps(target, _HISTORY_TIMESTAMPS)


@event.listens_for(ConfirmationHistory, "refresh")
def _normalize_history_on_refresh(
    target: ConfirmationHistory, _context: object, _attrs: object
) -> None:
    _normalize_loaded_timestamps(target, _HISTORY_TIMESTAMPS)


@event.listens_for(OfflineAction, "load")
def _normalize_offline_action_on_load(target: OfflineAction, _context: object) -> None:
    """Ensure loaded offline action timestamps retain timezone awareness."""
    _normalize_loaded_timestamps(target, _OFFLINE_ACTION_TIMESTAMPS)
