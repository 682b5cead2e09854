"""Replay of actions queued by clients while offline.

Actions are replayed in client time order through the same services that
serve live requests, each one evaluated as of its own ``client_timestamp``.
Every action id is recorded in ``offline_actions``; once an action reaches a
settled outcome its id acts as an idempotency key and later submissions
return the recorded outcome without touching engine state again.
"""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import uuid
from typing import Any, Callable, Iterable, Literal, Mapping, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from catalog.repository import (
    CatalogRepository,
    ItemCreateInput,
    ItemUpdateInput,
    ScheduleCreateInput,
    ScheduleUpdateInput,
)
from instances.errors import AlreadyConfirmedError, InstanceServiceError, InstanceValidationError
from instances.generator import InstanceGenerator
from instances.history import ConfirmationCorrectionInput, ConfirmationHistoryRepository
from instances.payloads import (
    AdhocInstanceFields,
    ConfirmPayload,
    CreatePayload,
    EditPayload,
    HistoryFields,
    ItemFields,
    OfflineActionInput,
    ScheduleFields,
    SnoozePayload,
)
from instances.transition_service import ConfirmationResult, InstanceTransitionService
from log_config import log_context
from models import OfflineAction
from time_utils import to_utc

logger = logging.getLogger(__name__)

Outcome = Literal[
    "confirmed",
    "already_confirmed",
    "conflict",
    "snoozed",
    "created",
    "edited",
    "error",
]
SETTLED_OUTCOMES: frozenset[str] = frozenset(
    {"confirmed", "already_confirmed", "snoozed", "created", "edited"}
)

_ModelT = TypeVar("_ModelT", bound=BaseModel)

# Entities created offline without a client id get an id derived from the
# action id, so replaying the action finds the entity it already created.
_CREATED_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "urn:pawdose:offline-action")


@dataclass(frozen=True)
class ActionOutcome:
    """Result of replaying one offline action."""

    action_id: str
    action_type: str
    outcome: Outcome
    detail: dict[str, Any] = field(default_factory=dict)
    synced: bool = False
    replayed: bool = False


class OfflineReconciler:
    """Replay offline action batches against the instance engine."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        generator: InstanceGenerator | None = None,
        transitions: InstanceTransitionService | None = None,
        catalog: CatalogRepository | None = None,
        history: ConfirmationHistoryRepository | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the reconciler and the services actions replay through."""
        self._session_factory = session_factory
        self._generator = generator or InstanceGenerator(session_factory)
        self._transitions = transitions or InstanceTransitionService(session_factory)
        self._catalog = catalog or CatalogRepository(session_factory)
        self._history = history or ConfirmationHistoryRepository(session_factory)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def reconcile(
        self,
        actions: Iterable[OfflineActionInput | Mapping[str, Any]],
    ) -> list[ActionOutcome]:
        """Replay a batch ordered by ``(client_timestamp, id)``.

        The envelope of every action is validated before any action runs;
        payload problems are reported per action and do not stop the batch.
        """
        parsed = [_parse_action(action) for action in actions]
        ordered = sorted(parsed, key=lambda action: (to_utc(action.client_timestamp), action.id))
        outcomes = [self.apply_action(action) for action in ordered]
        logger.info(
            "Offline batch reconciled: actions=%s synced=%s replayed=%s",
            len(outcomes),
            sum(1 for outcome in outcomes if outcome.synced),
            sum(1 for outcome in outcomes if outcome.replayed),
        )
        return outcomes

    def apply_action(self, action: OfflineActionInput | Mapping[str, Any]) -> ActionOutcome:
        """Apply a single action unless its id already has a settled outcome."""
        action = _parse_action(action)
        with log_context({"action_id": action.id, "action_type": action.type}):
            try:
                recorded = self._record_received(action)
            except InstanceValidationError as exc:
                logger.info("Offline action rejected: code=%s message=%s", exc.code, exc.message)
                return ActionOutcome(
                    action_id=action.id,
                    action_type=action.type,
                    outcome="error",
                    detail=_error_detail(exc),
                )
            if recorded is not None:
                logger.info("Offline action already settled: outcome=%s", recorded.outcome)
                return recorded

            try:
                outcome, detail = self._dispatch(action)
            except InstanceServiceError as exc:
                outcome = "error"
                detail = _error_detail(exc)

            result = ActionOutcome(
                action_id=action.id,
                action_type=action.type,
                outcome=outcome,
                detail=detail,
                synced=outcome in SETTLED_OUTCOMES,
            )
            self._record_outcome(result)
            with log_context({"event": "offline_action_reconciled"}):
                logger.info(
                    "Offline action reconciled: outcome=%s synced=%s",
                    result.outcome,
                    result.synced,
                )
            return result

    def _dispatch(self, action: OfflineActionInput) -> tuple[Outcome, dict[str, Any]]:
        """Route an action to the service that applies it."""
        now = to_utc(action.client_timestamp)
        if action.type == "confirm":
            return self._apply_confirm(_parse_model(ConfirmPayload, action.payload), now)
        if action.type == "snooze":
            return self._apply_snooze(_parse_model(SnoozePayload, action.payload), now)
        if action.type == "create":
            return self._apply_create(_parse_model(CreatePayload, action.payload), now, action.id)
        return self._apply_edit(_parse_model(EditPayload, action.payload), now, action.id)

    def _apply_confirm(
        self,
        payload: ConfirmPayload,
        now: datetime,
    ) -> tuple[Outcome, dict[str, Any]]:
        instance_id = payload.instance_id
        if instance_id is None:
            instance = self._generator.ensure_instance_for_schedule(
                payload.schedule_id,
                payload.instance_date,
            )
            instance_id = instance.id
        result = self._transitions.confirm(
            instance_id,
            now=now,
            confirmed_by=payload.confirmed_by,
            notes=payload.notes,
            override=payload.override,
        )
        return result.status, confirmation_detail(result)

    def _apply_snooze(
        self,
        payload: SnoozePayload,
        now: datetime,
    ) -> tuple[Outcome, dict[str, Any]]:
        try:
            instance = self._transitions.snooze(
                payload.instance_id,
                now=now,
                minutes=payload.minutes,
            )
        except AlreadyConfirmedError as exc:
            # A confirmation recorded first supersedes the queued snooze.
            return "already_confirmed", {
                "instance_id": payload.instance_id,
                "history_id": exc.history.id if exc.history is not None else None,
            }
        return "snoozed", {
            "instance_id": instance.id,
            "snoozed_until": instance.snoozed_until.isoformat(),
        }

    def _apply_create(
        self,
        payload: CreatePayload,
        now: datetime,
        action_id: str,
    ) -> tuple[Outcome, dict[str, Any]]:
        if payload.entity == "item":
            fields = _parse_model(ItemFields, payload.data)
            _require_fields(fields, "name", "type", "frequency")
            item_id = fields.id or _created_id(action_id, "item")
            if self._catalog.get_item(item_id) is not None:
                return "created", {"entity": "item", "id": item_id, "existing": True}
            values = fields.model_dump(exclude_none=True) | {"id": item_id}
            item = self._catalog.create_item(ItemCreateInput(**values), now=now)
            return "created", {"entity": "item", "id": item.id}

        if payload.entity == "schedule":
            fields = _parse_model(ScheduleFields, payload.data)
            _require_fields(fields, "item_id", "time_slot", "time_of_day")
            schedule_id = fields.id or _created_id(action_id, "schedule")
            if self._catalog.get_schedule(schedule_id) is not None:
                return "created", {"entity": "schedule", "id": schedule_id, "existing": True}
            values = fields.model_dump(exclude_none=True) | {"id": schedule_id}
            schedule = self._catalog.create_schedule(ScheduleCreateInput(**values))
            return "created", {"entity": "schedule", "id": schedule.id}

        fields = _parse_model(AdhocInstanceFields, payload.data)
        instance = self._generator.create_adhoc_instance(
            fields.item_id,
            fields.scheduled_at,
            notes=fields.notes,
            instance_id=fields.id or _created_id(action_id, "instance"),
            now=now,
        )
        return "created", {"entity": "instance", "id": instance.id}

    def _apply_edit(
        self,
        payload: EditPayload,
        now: datetime,
        action_id: str,
    ) -> tuple[Outcome, dict[str, Any]]:
        if payload.entity == "item":
            fields = _parse_model(ItemFields, payload.data)
            changes = _edit_changes(
                fields,
                immutable=("id",),
                required=("name", "type", "frequency", "active"),
            )
            item = self._catalog.update_item(payload.id, ItemUpdateInput(**changes), now=now)
            return "edited", {"entity": "item", "id": item.id, "fields": sorted(changes)}

        if payload.entity == "schedule":
            fields = _parse_model(ScheduleFields, payload.data)
            changes = _edit_changes(
                fields,
                immutable=("id", "item_id"),
                required=("time_slot", "time_of_day", "active"),
            )
            schedule = self._catalog.update_schedule(payload.id, ScheduleUpdateInput(**changes))
            return "edited", {"entity": "schedule", "id": schedule.id, "fields": sorted(changes)}

        fields = _parse_model(HistoryFields, payload.data)
        changes = fields.model_dump(exclude_unset=True)
        edited_by = changes.pop("edited_by", None)
        history = self._history.correct(
            payload.id,
            ConfirmationCorrectionInput(**changes),
            edited_by=edited_by,
            now=now,
            action_id=action_id,
        )
        return "edited", {
            "entity": "history",
            "id": history.id,
            "version": history.version,
            "fields": sorted(changes),
        }

    def _record_received(self, action: OfflineActionInput) -> ActionOutcome | None:
        """Persist the action id, returning the stored outcome when settled.

        Reusing an id for a different kind of action or a different target is
        rejected; retrying the same action with changed options such as
        ``override`` is allowed while it is unsynced.
        """
        payload = action.model_dump(mode="json")["payload"]

        def handler(session: Session) -> ActionOutcome | None:
            row = session.get(OfflineAction, action.id)
            if row is None:
                session.add(
                    OfflineAction(
                        id=action.id,
                        type=action.type,
                        payload=payload,
                        client_timestamp=to_utc(action.client_timestamp),
                        synced=False,
                        received_at=to_utc(self._clock()),
                    )
                )
                session.flush()
                return None
            recorded_target = _action_target(row.type, row.payload)
            if row.type != action.type or recorded_target != _action_target(action.type, payload):
                raise InstanceValidationError(
                    f"Action id already used for a different action: {action.id}",
                    {"action_id": action.id, "recorded_type": row.type},
                )
            if not row.synced:
                return None
            return ActionOutcome(
                action_id=row.id,
                action_type=row.type,
                outcome=row.outcome,
                detail=dict(row.outcome_detail or {}),
                synced=True,
                replayed=True,
            )

        try:
            return self._execute(handler)
        except IntegrityError:
            # The same id arrived concurrently; read what the other request stored.
            return self._execute(handler)

    def _record_outcome(self, result: ActionOutcome) -> None:
        """Store the outcome of an executed action."""

        def handler(session: Session) -> None:
            row = session.get(OfflineAction, result.action_id)
            row.outcome = result.outcome
            row.outcome_detail = result.detail
            row.synced = result.synced
            row.synced_at = to_utc(self._clock()) if result.synced else None
            session.flush()

        self._execute(handler)

    def _execute(self, handler):
        """Execute reconciler bookkeeping inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result


def confirmation_detail(result: ConfirmationResult) -> dict[str, Any]:
    """Describe a confirmation result as JSON-compatible data."""
    detail: dict[str, Any] = {"instance_id": result.instance.id}
    if result.status == "conflict":
        detail.update(
            {
                "conflicting_item_name": result.conflict.conflicting_item_name,
                "remaining_minutes": result.conflict.remaining_minutes,
                "can_override": result.conflict.can_override,
            }
        )
        return detail
    if result.history is not None:
        detail["history_id"] = result.history.id
        detail["confirmed_at"] = result.history.confirmed_at.isoformat()
    return detail


def _created_id(action_id: str, entity: str) -> str:
    """Derive a stable entity id from the creating action id."""
    return str(uuid.uuid5(_CREATED_ID_NAMESPACE, f"{entity}:{action_id}"))


def _action_target(action_type: str, payload: Mapping[str, Any]) -> tuple[Any, ...]:
    """Identify what an action acts on, ignoring options such as ``override``."""
    if action_type in ("confirm", "snooze"):
        return (payload.get("instance_id"), payload.get("schedule_id"), payload.get("date"))
    data = payload.get("data")
    data_id = data.get("id") if isinstance(data, Mapping) else None
    return (payload.get("entity"), payload.get("id"), data_id)


def _error_detail(exc: InstanceServiceError) -> dict[str, Any]:
    return {"code": exc.code, "message": exc.message, "details": exc.details}


def _parse_action(action: OfflineActionInput | Mapping[str, Any]) -> OfflineActionInput:
    """Validate an action envelope."""
    if isinstance(action, OfflineActionInput):
        return action
    return _parse_model(OfflineActionInput, action)


def _parse_model(model: type[_ModelT], data: Mapping[str, Any]) -> _ModelT:
    """Validate ``data`` against ``model`` as an engine validation error."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise InstanceValidationError(
            f"Invalid {model.__name__} payload.",
            {
                "errors": [
                    {"loc": [str(part) for part in error["loc"]], "msg": error["msg"]}
                    for error in exc.errors()
                ]
            },
        ) from exc


def _require_fields(fields: BaseModel, *names: str) -> None:
    """Raise when any required creation field is missing."""
    missing = [name for name in names if getattr(fields, name) is None]
    if missing:
        raise InstanceValidationError(
            f"Missing required fields: {', '.join(missing)}.",
            {"fields": missing},
        )


def _edit_changes(
    fields: BaseModel,
    *,
    immutable: tuple[str, ...],
    required: tuple[str, ...] = (),
) -> dict[str, Any]:
    """Return the explicitly supplied fields, rejecting immutable or cleared ones."""
    changes = fields.model_dump(exclude_unset=True)
    blocked = [name for name in immutable if name in changes]
    blocked += [name for name in required if name in changes and changes[name] is None]
    if blocked:
        raise InstanceValidationError(
            f"Fields cannot be edited: {', '.join(blocked)}.",
            {"fields": blocked},
        )
    if not changes:
        raise InstanceValidationError("Edit must change at least one field.", {"fields": []})
    return changes


__all__ = ["SETTLED_OUTCOMES", "ActionOutcome", "OfflineReconciler", "confirmation_detail"]
