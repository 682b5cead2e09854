"""Spacing conflict detection across items sharing a conflict group."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timedelta
import math
from typing import Callable

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import ConfirmationHistory, ConflictGroup, DailyInstance, Item
from time_utils import ensure_aware, to_utc


@dataclass(frozen=True)
class ConflictCheck:
    """Outcome of a spacing check for one candidate instance."""

    has_conflict: bool
    conflicting_item_name: str | None = None
    remaining_minutes: int | None = None
    can_override: bool = True


NO_CONFLICT = ConflictCheck(has_conflict=False)


class ConflictDetector:
    """Read-only spacing checks against recent confirmations."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize the detector with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def check_conflict(self, instance: DailyInstance, now: datetime) -> ConflictCheck:
        """Return whether confirming ``instance`` at ``now`` breaks group spacing."""
        with closing(self._session_factory()) as session:
            return check_conflict_in_session(session, instance.item_id, now)


def check_conflict_in_session(session: Session, item_id: str, now: datetime) -> ConflictCheck:
    """Evaluate spacing for ``item_id`` at ``now`` using an open session.

    Only the latest confirmation at or before ``now`` per other group member
    counts. Of those inside the spacing window, the most recent one decides
    the result because it leaves the longest wait.
    """
    item = session.get(Item, item_id)
    if item is None or item.conflict_group_id is None:
        return NO_CONFLICT
    group = session.get(ConflictGroup, item.conflict_group_id)
    if group is None:
        return NO_CONFLICT

    now_utc = to_utc(now)
    spacing = timedelta(minutes=group.spacing_minutes)
    latest_per_item = (
        session.query(
            ConfirmationHistory.item_id.label("item_id"),
            func.max(ConfirmationHistory.confirmed_at).label("confirmed_at"),
        )
        .join(Item, Item.id == ConfirmationHistory.item_id)
        .filter(Item.conflict_group_id == group.id)
        .filter(Item.id != item.id)
        .filter(ConfirmationHistory.confirmed_at <= now_utc)
        .group_by(ConfirmationHistory.item_id)
        .subquery()
    )
    rows = (
        session.query(Item.name, latest_per_item.c.confirmed_at)
        .join(latest_per_item, latest_per_item.c.item_id == Item.id)
        .all()
    )

    nearest: tuple[str, datetime] | None = None
    for name, confirmed_at in rows:
        confirmed_at = ensure_aware(_coerce_datetime(confirmed_at))
        if now_utc - confirmed_at >= spacing:
            continue
        if nearest is None or confirmed_at > nearest[1]:
            nearest = (name, confirmed_at)
    if nearest is None:
        return NO_CONFLICT

    name, confirmed_at = nearest
    remaining_seconds = (spacing - (now_utc - confirmed_at)).total_seconds()
    return ConflictCheck(
        has_conflict=True,
        conflicting_item_name=name,
        remaining_minutes=math.ceil(remaining_seconds / 60),
        can_override=True,
    )


def _coerce_datetime(value: datetime | str) -> datetime:
    """Aggregates over SQLite datetime columns come back as strings."""
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


__all__ = ["ConflictCheck", "ConflictDetector", "NO_CONFLICT", "check_conflict_in_session"]
