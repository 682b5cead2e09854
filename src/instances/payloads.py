"""Pydantic models for queued offline actions and their payloads."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SnoozeMinutes = Literal[15, 30, 60]
OfflineActionType = Literal["confirm", "snooze", "edit", "create"]


class OfflineActionInput(BaseModel):
    """One action recorded by a client while disconnected."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1, max_length=64)
    type: OfflineActionType
    payload: dict[str, Any] = Field(default_factory=dict)
    client_timestamp: datetime

    @field_validator("client_timestamp")
    @classmethod
    def _require_timezone(cls, value: datetime) -> datetime:
        """Client timestamps must carry an offset to order actions globally."""
        if value.tzinfo is None:
            raise ValueError("client_timestamp must include a timezone offset")
        return value


class ConfirmPayload(BaseModel):
    """Confirm either a known instance or a schedule's instance on a date."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    instance_id: str | None = None
    schedule_id: str | None = None
    instance_date: date | None = Field(default=None, alias="date")
    confirmed_by: str | None = None
    notes: str | None = None
    override: bool = False

    @model_validator(mode="after")
    def _validate_target(self) -> "ConfirmPayload":
        """Require an instance id or a schedule id with a date."""
        if self.instance_id is None and (self.schedule_id is None or self.instance_date is None):
            raise ValueError("confirm requires instance_id or schedule_id and date")
        return self


class SnoozePayload(BaseModel):
    """Snooze an instance for one of the offered durations."""

    model_config = ConfigDict(extra="forbid")

    instance_id: str
    minutes: SnoozeMinutes


class ItemFields(BaseModel):
    """Item attributes accepted by create and edit actions."""

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    name: str | None = None
    type: Literal["medication", "food", "supplement"] | None = None
    frequency: Literal["1x_daily", "2x_daily", "4x_daily", "12h", "as_needed"] | None = None
    pet_id: str | None = None
    category: str | None = None
    location: str | None = None
    dose: str | None = None
    notes: str | None = None
    active: bool | None = None
    start_date: date | None = None
    end_date: date | None = None
    conflict_group_id: str | None = None


class ScheduleFields(BaseModel):
    """Schedule attributes accepted by create and edit actions."""

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    item_id: str | None = None
    time_slot: str | None = None
    time_of_day: str | None = None
    active: bool | None = None


class AdhocInstanceFields(BaseModel):
    """Attributes for an ad-hoc instance created offline."""

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    item_id: str
    scheduled_at: datetime
    notes: str | None = None


class HistoryFields(BaseModel):
    """Correctable confirmation history attributes."""

    model_config = ConfigDict(extra="forbid")

    confirmed_at: datetime | None = None
    confirmed_by: str | None = None
    notes: str | None = None
    edited_by: str | None = None


class CreatePayload(BaseModel):
    """Create a catalog entity or an ad-hoc instance."""

    model_config = ConfigDict(extra="forbid")

    entity: Literal["item", "schedule", "instance"]
    data: dict[str, Any]


class EditPayload(BaseModel):
    """Edit a catalog entity or correct a confirmation."""

    model_config = ConfigDict(extra="forbid")

    entity: Literal["item", "schedule", "history"]
    id: str
    data: dict[str, Any]


__all__ = [
    "AdhocInstanceFields",
    "ConfirmPayload",
    "CreatePayload",
    "EditPayload",
    "HistoryFields",
    "ItemFields",
    "OfflineActionInput",
    "ScheduleFields",
    "SnoozeMinutes",
    "SnoozePayload",
]
