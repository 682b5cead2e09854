"""Request and response models for the HTTP API."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from instances.classifier import Bucket
from instances.payloads import OfflineActionInput, SnoozeMinutes
from models import ConfirmationHistory, DailyInstance


class InstanceView(BaseModel):
    """One daily instance with its bucket at request time."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    schedule_id: str | None
    item_id: str
    instance_date: date
    scheduled_at: datetime
    status: str
    bucket: Bucket
    snoozed_until: datetime | None = None
    confirmed_at: datetime | None = None
    confirmed_by: str | None = None
    notes: str | None = None
    is_adhoc: bool = False

    @classmethod
    def from_model(cls, instance: DailyInstance, bucket: Bucket) -> "InstanceView":
        """Build the view from a persisted instance."""
        return cls(
            id=instance.id,
            schedule_id=instance.schedule_id,
            item_id=instance.item_id,
            instance_date=instance.instance_date,
            scheduled_at=instance.scheduled_at,
            status=instance.status,
            bucket=bucket,
            snoozed_until=instance.snoozed_until,
            confirmed_at=instance.confirmed_at,
            confirmed_by=instance.confirmed_by,
            notes=instance.notes,
            is_adhoc=bool(instance.is_adhoc),
        )


class InstanceListResponse(BaseModel):
    """Instances for one date."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    date: date
    pending_count: int
    instances: list[InstanceView]


class HistoryView(BaseModel):
    """One confirmation history entry."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    instance_id: str
    item_id: str
    confirmed_by: str | None
    confirmed_at: datetime
    notes: str | None
    version: int
    edited_at: datetime | None = None
    edited_by: str | None = None
    previous_values: dict[str, Any] | None = None

    @classmethod
    def from_model(cls, history: ConfirmationHistory) -> "HistoryView":
        """Build the view from a persisted history entry."""
        return cls(
            id=history.id,
            instance_id=history.instance_id,
            item_id=history.item_id,
            confirmed_by=history.confirmed_by,
            confirmed_at=history.confirmed_at,
            notes=history.notes,
            version=history.version,
            edited_at=history.edited_at,
            edited_by=history.edited_by,
            previous_values=history.previous_values,
        )


class ConfirmRequest(BaseModel):
    """Body of a confirm request."""

    model_config = ConfigDict(extra="forbid")

    confirmed_by: str | None = None
    notes: str | None = None
    override: bool = False
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=64)


class ConfirmResponse(BaseModel):
    """Confirm outcome; a spacing conflict is a normal response."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: Literal["confirmed", "already_confirmed", "conflict"]
    has_conflict: bool
    conflicting_item_name: str | None = None
    remaining_minutes: int | None = None
    can_override: bool = True
    instance: InstanceView
    history: HistoryView | None = None


class SnoozeRequest(BaseModel):
    """Body of a snooze request."""

    model_config = ConfigDict(extra="forbid")

    minutes: SnoozeMinutes
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=64)


class AdhocInstanceRequest(BaseModel):
    """Body for logging an unscheduled dose."""

    model_config = ConfigDict(extra="forbid")

    item_id: str
    scheduled_at: datetime | None = None
    notes: str | None = None
    id: str | None = None


class ExpireResponse(BaseModel):
    """Result of an expiry sweep."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    expired: int


class HistoryCorrectionRequest(BaseModel):
    """Fields to correct on a confirmation history entry."""

    model_config = ConfigDict(extra="forbid")

    confirmed_at: datetime | None = None
    confirmed_by: str | None = None
    notes: str | None = None
    edited_by: str | None = None


class SyncRequest(BaseModel):
    """Batch of offline actions to reconcile."""

    model_config = ConfigDict(extra="forbid")

    actions: list[OfflineActionInput] = Field(default_factory=list)


class ActionOutcomeView(BaseModel):
    """Reconciliation result for one offline action."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    action_id: str
    action_type: str
    outcome: str
    detail: dict[str, Any]
    synced: bool
    replayed: bool


class SyncResponse(BaseModel):
    """Per-action outcomes in replay order."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    results: list[ActionOutcomeView]


class HealthResponse(BaseModel):
    """Liveness and database reachability."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: Literal["ok", "degraded"]
    database: bool
