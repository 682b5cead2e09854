"""Read helpers for persisted daily instances."""

from __future__ import annotations

from contextlib import closing
from datetime import date
from typing import Callable

from sqlalchemy.orm import Session

from instances.errors import InstanceNotFoundError
from models import DailyInstance, Item


class DailyInstanceRepository:
    """Repository for daily instance reads."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def require(self, instance_id: str) -> DailyInstance:
        """Fetch an instance or raise when missing."""

        def handler(session: Session) -> DailyInstance:
            return fetch_instance(session, instance_id)

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


def fetch_instance(session: Session, instance_id: str) -> DailyInstance:
    """Return an instance or raise when missing."""
    instance = session.get(DailyInstance, instance_id)
    if instance is None:
        raise InstanceNotFoundError(
            f"Instance not found: {instance_id}",
            {"instance_id": instance_id},
        )
    return instance


def list_instances_for_date(
    session: Session,
    target_date: date,
    *,
    pet_id: str | None = None,
) -> list[DailyInstance]:
    """Return instances for a date ordered by scheduled time, then schedule id."""
    query = session.query(DailyInstance).filter(DailyInstance.instance_date == target_date)
    if pet_id is not None:
        query = query.join(Item, Item.id == DailyInstance.item_id).filter(Item.pet_id == pet_id)
    return sorted(query.all(), key=instance_sort_key)


def instance_sort_key(instance: DailyInstance) -> tuple:
    """Order by instant; scheduled rows before ad-hoc rows at the same instant."""
    return (
        instance.scheduled_at,
        instance.schedule_id is None,
        instance.schedule_id or "",
        instance.id,
    )


__all__ = [
    "DailyInstanceRepository",
    "fetch_instance",
    "instance_sort_key",
    "list_instances_for_date",
]
