"""Confirm, snooze, and expire transitions for daily instances.

Every state change is a compare-and-set ``UPDATE`` guarded on the instance
still being ``pending`` or ``snoozed``. Two callers racing to confirm the same
instance therefore serialize on the row: the first one flips the status and
writes history, the second updates zero rows and reports the winner's
confirmation. The unique constraint on ``confirmation_history.instance_id``
backs this up at the storage level.
"""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Callable, Literal

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from instances.conflicts import NO_CONFLICT, ConflictCheck, check_conflict_in_session
from instances.errors import (
    AlreadyConfirmedError,
    InstanceExpiredError,
    InstanceValidationError,
)
from instances.history import history_for_instance
from instances.repository import fetch_instance
from log_config import log_context
from models import ConfirmationHistory, DailyInstance
from time_utils import local_date, to_utc

logger = logging.getLogger(__name__)

_OPEN_STATUSES = ("pending", "snoozed")

ConfirmationStatus = Literal["confirmed", "already_confirmed", "conflict"]


@dataclass(frozen=True)
class ConfirmationResult:
    """Outcome of a confirm request.

    ``conflict`` is always populated with the spacing check that was
    evaluated; on an overridden confirm it records what was overridden.
    """

    status: ConfirmationStatus
    instance: DailyInstance
    history: ConfirmationHistory | None
    conflict: ConflictCheck


class InstanceTransitionService:
    """Apply state transitions to daily instances."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize the service with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def confirm(
        self,
        instance_id: str,
        *,
        now: datetime,
        confirmed_by: str | None,
        notes: str | None = None,
        override: bool = False,
    ) -> ConfirmationResult:
        """Confirm an instance, writing exactly one history entry.

        Confirming an already confirmed instance is not an error: the
        existing history entry is returned with ``already_confirmed``. A
        spacing conflict without ``override`` returns ``conflict`` and leaves
        the instance untouched.
        """
        now_utc = to_utc(now)

        def handler(session: Session) -> ConfirmationResult:
            instance = fetch_instance(session, instance_id)
            if instance.status == "confirmed":
                return _already_confirmed(session, instance)
            if instance.status == "expired":
                raise _expired_error(instance)

            conflict = check_conflict_in_session(session, instance.item_id, now_utc)
            if conflict.has_conflict and not override:
                logger.info(
                    "Confirmation blocked by spacing conflict: instance_id=%s "
                    "conflicting_item=%s remaining_minutes=%s",
                    instance.id,
                    conflict.conflicting_item_name,
                    conflict.remaining_minutes,
                )
                return ConfirmationResult(
                    status="conflict",
                    instance=instance,
                    history=None,
                    conflict=conflict,
                )

            values: dict[str, object] = {
                "status": "confirmed",
                "confirmed_at": now_utc,
                "confirmed_by": confirmed_by,
                "snoozed_until": None,
                "updated_at": now_utc,
            }
            if notes is not None:
                values["notes"] = notes
            if not _compare_and_set(session, instance.id, values):
                session.refresh(instance)
                if instance.status == "confirmed":
                    return _already_confirmed(session, instance, conflict)
                raise _expired_error(instance)

            history = ConfirmationHistory(
                instance_id=instance.id,
                item_id=instance.item_id,
                confirmed_by=confirmed_by,
                confirmed_at=now_utc,
                notes=notes,
                version=1,
                created_at=now_utc,
            )
            session.add(history)
            session.flush()
            session.refresh(instance)
            with log_context({"event": "instance_confirmed", "instance_id": instance.id}):
                logger.info(
                    "Instance confirmed: item_id=%s confirmed_by=%s override=%s",
                    instance.item_id,
                    confirmed_by,
                    override and conflict.has_conflict,
                )
            return ConfirmationResult(
                status="confirmed",
                instance=instance,
                history=history,
                conflict=conflict,
            )

        try:
            return self._execute(handler)
        except IntegrityError:
            # A concurrent confirm committed its history row first.
            return self._execute(
                lambda session: _already_confirmed(session, fetch_instance(session, instance_id))
            )

    def snooze(self, instance_id: str, *, now: datetime, minutes: int) -> DailyInstance:
        """Snooze an open instance until ``now + minutes``.

        Re-snoozing replaces the previous deadline instead of extending it.
        """
        if minutes <= 0:
            raise InstanceValidationError(
                "Snooze minutes must be positive.",
                {"field": "minutes", "minutes": minutes},
            )
        now_utc = to_utc(now)
        snoozed_until = now_utc + timedelta(minutes=minutes)

        def handler(session: Session) -> DailyInstance:
            instance = fetch_instance(session, instance_id)
            _ensure_open(session, instance)
            values = {
                "status": "snoozed",
                "snoozed_until": snoozed_until,
                "updated_at": now_utc,
            }
            if not _compare_and_set(session, instance.id, values):
                session.refresh(instance)
                _ensure_open(session, instance)
            session.refresh(instance)
            with log_context({"event": "instance_snoozed", "instance_id": instance.id}):
                logger.info(
                    "Instance snoozed: minutes=%s snoozed_until=%s",
                    minutes,
                    snoozed_until.isoformat(),
                )
            return instance

        return self._execute(handler)

    def expire_elapsed(self, now: datetime) -> int:
        """Expire open instances whose calendar date is before today.

        Returns the number of instances expired by this call; a second call
        with the same ``now`` returns zero.
        """
        today = local_date(now)
        now_utc = to_utc(now)

        def handler(session: Session) -> int:
            result = session.execute(
                update(DailyInstance)
                .where(DailyInstance.status.in_(_OPEN_STATUSES))
                .where(DailyInstance.instance_date < today)
                .values(status="expired", updated_at=now_utc)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

        count = self._execute(handler)
        with log_context({"event": "instances_expired"}):
            logger.info("Expired elapsed instances: before=%s count=%s", today, count)
        return count

    def _execute(self, handler):
        """Execute transition work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result


def _compare_and_set(session: Session, instance_id: str, values: dict[str, object]) -> bool:
    """Apply ``values`` only while the instance is still open."""
    result = session.execute(
        update(DailyInstance)
        .where(DailyInstance.id == instance_id)
        .where(DailyInstance.status.in_(_OPEN_STATUSES))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _ensure_open(session: Session, instance: DailyInstance) -> None:
    """Raise when the instance is in a terminal state."""
    if instance.status == "confirmed":
        raise AlreadyConfirmedError(
            f"Instance already confirmed: {instance.id}",
            {"instance_id": instance.id},
            history=history_for_instance(session, instance.id),
        )
    if instance.status == "expired":
        raise _expired_error(instance)


def _already_confirmed(
    session: Session,
    instance: DailyInstance,
    conflict: ConflictCheck = NO_CONFLICT,
) -> ConfirmationResult:
    """Build the idempotent result for an instance confirmed earlier."""
    return ConfirmationResult(
        status="already_confirmed",
        instance=instance,
        history=history_for_instance(session, instance.id),
        conflict=conflict,
    )


def _expired_error(instance: DailyInstance) -> InstanceExpiredError:
    """Build the error raised for actions on an expired instance."""
    return InstanceExpiredError(
        f"Instance expired: {instance.id}",
        {"instance_id": instance.id, "instance_date": instance.instance_date.isoformat()},
    )


__all__ = ["ConfirmationResult", "InstanceTransitionService"]
