"""Confirmation history reads and in-place corrections."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Callable

from sqlalchemy.orm import Session

from catalog.repository import UNSET
from instances.errors import HistoryNotFoundError, InstanceValidationError
from log_config import log_context
from models import ConfirmationHistory
from time_utils import to_utc

logger = logging.getLogger(__name__)

_CORRECTABLE_FIELDS = ("confirmed_at", "confirmed_by", "notes")


@dataclass(frozen=True)
class ConfirmationCorrectionInput:
    """Fields of a confirmation that may be corrected after the fact."""

    confirmed_at: datetime | object = UNSET
    confirmed_by: str | None | object = UNSET
    notes: str | None | object = UNSET


class ConfirmationHistoryRepository:
    """Repository for the confirmation audit ledger."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def get(self, history_id: str) -> ConfirmationHistory:
        """Fetch a history entry or raise when missing."""

        def handler(session: Session) -> ConfirmationHistory:
            return _fetch_history(session, history_id)

        return self._execute(handler)

    def get_for_instance(self, instance_id: str) -> ConfirmationHistory | None:
        """Return the confirmation recorded for an instance, if any."""

        def handler(session: Session) -> ConfirmationHistory | None:
            return history_for_instance(session, instance_id)

        return self._execute(handler)

    def list_for_instance(self, instance_id: str) -> list[ConfirmationHistory]:
        """Return history entries for one instance, newest first."""

        def handler(session: Session) -> list[ConfirmationHistory]:
            return list(
                session.query(ConfirmationHistory)
                .filter(ConfirmationHistory.instance_id == instance_id)
                .order_by(ConfirmationHistory.confirmed_at.desc(), ConfirmationHistory.id)
                .all()
            )

        return self._execute(handler)

    def list_range(
        self,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
    ) -> list[ConfirmationHistory]:
        """Return history entries with ``start <= confirmed_at <= end``, newest first."""
        if limit < 1:
            raise InstanceValidationError("limit must be >= 1.", {"field": "limit"})

        def handler(session: Session) -> list[ConfirmationHistory]:
            query = session.query(ConfirmationHistory)
            if start is not None:
                query = query.filter(ConfirmationHistory.confirmed_at >= to_utc(start))
            if end is not None:
                query = query.filter(ConfirmationHistory.confirmed_at <= to_utc(end))
            return list(
                query.order_by(ConfirmationHistory.confirmed_at.desc(), ConfirmationHistory.id)
                .limit(limit)
                .all()
            )

        return self._execute(handler)

    def correct(
        self,
        history_id: str,
        correction: ConfirmationCorrectionInput,
        *,
        edited_by: str | None,
        now: datetime,
        action_id: str | None = None,
    ) -> ConfirmationHistory:
        """Correct a confirmation record in place.

        Prior values of the changed fields are kept in ``previous_values`` and
        the version is bumped. The linked instance is never modified, so a
        correction cannot un-confirm or re-confirm anything.

        ``action_id`` names the offline action applying the correction. When
        it matches the last action applied to the row, the row is returned
        unchanged so a replayed edit keeps the original snapshot.
        """
        changes = {
            name: getattr(correction, name)
            for name in _CORRECTABLE_FIELDS
            if getattr(correction, name) is not UNSET
        }
        if not changes:
            raise InstanceValidationError(
                "Correction must change at least one field.",
                {"fields": list(_CORRECTABLE_FIELDS)},
            )
        if "confirmed_at" in changes:
            if changes["confirmed_at"] is None:
                raise InstanceValidationError(
                    "confirmed_at cannot be cleared.",
                    {"field": "confirmed_at"},
                )
            changes["confirmed_at"] = to_utc(changes["confirmed_at"])

        def handler(session: Session) -> ConfirmationHistory:
            history = _fetch_history(session, history_id)
            if action_id is not None and history.applied_action_id == action_id:
                logger.info(
                    "Confirmation correction already applied: history_id=%s action_id=%s",
                    history.id,
                    action_id,
                )
                return history
            previous = {name: _snapshot(getattr(history, name)) for name in changes}
            for name, value in changes.items():
                setattr(history, name, value)
            history.previous_values = previous
            history.version = (history.version or 1) + 1
            history.edited_at = to_utc(now)
            history.edited_by = edited_by
            if action_id is not None:
                history.applied_action_id = action_id
            session.flush()
            with log_context({"event": "history_corrected", "history_id": history.id}):
                logger.info(
                    "Confirmation history corrected: instance_id=%s version=%s fields=%s",
                    history.instance_id,
                    history.version,
                    ",".join(sorted(changes)),
                )
            return history

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


def history_for_instance(session: Session, instance_id: str) -> ConfirmationHistory | None:
    """Return the single confirmation row for an instance, if present."""
    return (
        session.query(ConfirmationHistory)
        .filter(ConfirmationHistory.instance_id == instance_id)
        .one_or_none()
    )


def _fetch_history(session: Session, history_id: str) -> ConfirmationHistory:
    """Return a history entry or raise when missing."""
    history = session.get(ConfirmationHistory, history_id)
    if history is None:
        raise HistoryNotFoundError(
            f"Confirmation history not found: {history_id}",
            {"history_id": history_id},
        )
    return history


def _snapshot(value: object) -> object:
    """Render a field value for the JSON ``previous_values`` column."""
    if isinstance(value, datetime):
        return to_utc(value).isoformat()
    return value


__all__ = [
    "ConfirmationCorrectionInput",
    "ConfirmationHistoryRepository",
    "history_for_instance",
]
