"""Time-relative status buckets for daily instances.

Buckets are computed on every read from the caller's ``now`` instead of being
stored, so a list always reflects the moment it was requested without a
background job moving instances between states.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Literal

from config import settings
from models import DailyInstance
from time_utils import to_utc

Bucket = Literal["overdue", "due", "upcoming", "snoozed", "confirmed"]
BUCKETS: tuple[Bucket, ...] = ("overdue", "due", "upcoming", "snoozed", "confirmed")


def classify(
    scheduled_at: datetime,
    snoozed_until: datetime | None,
    confirmed_at: datetime | None,
    now: datetime,
    due_window_minutes: int,
    overdue_grace_minutes: int,
) -> Bucket:
    """Return the display bucket for one scheduled instant.

    A naive ``now`` is read as household local time, like every other engine
    entry point.
    """
    now = to_utc(now)
    if confirmed_at is not None:
        return "confirmed"
    if snoozed_until is not None and now < snoozed_until:
        return "snoozed"
    if now > scheduled_at + timedelta(minutes=overdue_grace_minutes):
        return "overdue"
    if now >= scheduled_at - timedelta(minutes=due_window_minutes):
        return "due"
    return "upcoming"


def classify_instance(
    instance: DailyInstance,
    now: datetime,
    *,
    due_window_minutes: int | None = None,
    overdue_grace_minutes: int | None = None,
) -> Bucket:
    """Classify a persisted instance using configured windows by default."""
    return classify(
        instance.scheduled_at,
        instance.snoozed_until,
        instance.confirmed_at,
        now,
        _resolve_due_window(due_window_minutes),
        _resolve_overdue_grace(overdue_grace_minutes),
    )


@dataclass
class InstancesByBucket:
    """Instances grouped into display buckets, each ordered by schedule time."""

    overdue: list[DailyInstance] = field(default_factory=list)
    due: list[DailyInstance] = field(default_factory=list)
    upcoming: list[DailyInstance] = field(default_factory=list)
    snoozed: list[DailyInstance] = field(default_factory=list)
    confirmed: list[DailyInstance] = field(default_factory=list)

    def get(self, bucket: Bucket) -> list[DailyInstance]:
        """Return the instances for one bucket."""
        return getattr(self, bucket)

    @property
    def pending_count(self) -> int:
        """Instances still needing attention (overdue, due, or snoozed)."""
        return len(self.overdue) + len(self.due) + len(self.snoozed)


def bucket_instances(
    instances: Iterable[DailyInstance],
    now: datetime,
    *,
    due_window_minutes: int | None = None,
    overdue_grace_minutes: int | None = None,
) -> InstancesByBucket:
    """Group instances by their bucket at ``now``."""
    due_window = _resolve_due_window(due_window_minutes)
    grace = _resolve_overdue_grace(overdue_grace_minutes)
    grouped = InstancesByBucket()
    for instance in instances:
        bucket = classify_instance(
            instance,
            now,
            due_window_minutes=due_window,
            overdue_grace_minutes=grace,
        )
        grouped.get(bucket).append(instance)
    for bucket in BUCKETS:
        grouped.get(bucket).sort(key=lambda item: (item.scheduled_at, item.id))
    return grouped


def _resolve_due_window(value: int | None) -> int:
    """Return the explicit due window or the configured default."""
    return settings.instances.due_window_minutes if value is None else value


def _resolve_overdue_grace(value: int | None) -> int:
    """Return the explicit overdue grace or the configured default."""
    return settings.instances.overdue_grace_minutes if value is None else value


__all__ = [
    "BUCKETS",
    "Bucket",
    "InstancesByBucket",
    "bucket_instances",
    "classify",
    "classify_instance",
]
