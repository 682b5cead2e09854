"""HTTP routes mapping requests onto instance engine operations."""

from __future__ import annotations

from contextlib import closing
from datetime import date, time, timedelta
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request

from api.schemas import (
    ActionOutcomeView,
    AdhocInstanceRequest,
    ConfirmRequest,
    ConfirmResponse,
    ExpireResponse,
    HealthResponse,
    HistoryCorrectionRequest,
    HistoryView,
    InstanceListResponse,
    InstanceView,
    SnoozeRequest,
    SyncRequest,
    SyncResponse,
)
from catalog.repository import UNSET
from instances.classifier import Bucket, bucket_instances, classify_instance
from instances.errors import AlreadyConfirmedError, InstanceServiceError
from instances.history import ConfirmationCorrectionInput
from instances.payloads import OfflineActionInput
from instances.reconciler import ActionOutcome
from instances.transition_service import ConfirmationResult
from services.database import check_connection
from time_utils import combine_local, local_date

router = APIRouter()


def _state(request: Request):
    """Return the application state holding engine services."""
    return request.app.state


def _now(request: Request):
    """Return the request time from the application clock."""
    return _state(request).clock()


def _instance_view(request: Request, instance, now) -> InstanceView:
    """Render an instance with its bucket at ``now``."""
    instances_config = _state(request).settings.instances
    bucket = classify_instance(
        instance,
        now,
        due_window_minutes=instances_config.due_window_minutes,
        overdue_grace_minutes=instances_config.overdue_grace_minutes,
    )
    return InstanceView.from_model(instance, bucket)


@router.get("/health", response_model=HealthResponse)
def health(request: Request) -> HealthResponse:
    """Report liveness and database reachability."""
    with closing(_state(request).session_factory()) as session:
        database_ok = check_connection(session.get_bind())
    return HealthResponse(status="ok" if database_ok else "degraded", database=database_ok)


@router.get("/instances", response_model=InstanceListResponse)
def list_instances(
    request: Request,
    date_: date | None = Query(default=None, alias="date"),
    pet_id: str | None = None,
    bucket: Bucket | None = None,
) -> InstanceListResponse:
    """Generate the day's instances and return them with their buckets."""
    state = _state(request)
    now = _now(request)
    target_date = date_ or local_date(now)
    instances = state.generator.ensure_instances_for_date(target_date, pet_id=pet_id)
    grouped = bucket_instances(
        instances,
        now,
        due_window_minutes=state.settings.instances.due_window_minutes,
        overdue_grace_minutes=state.settings.instances.overdue_grace_minutes,
    )
    views = [_instance_view(request, instance, now) for instance in instances]
    if bucket is not None:
        views = [view for view in views if view.bucket == bucket]
    return InstanceListResponse(
        date=target_date,
        pending_count=grouped.pending_count,
        instances=views,
    )


@router.post("/instances/adhoc", response_model=InstanceView, status_code=201)
def create_adhoc_instance(request: Request, body: AdhocInstanceRequest) -> InstanceView:
    """Log an unscheduled dose as a pending ad-hoc instance."""
    now = _now(request)
    instance = _state(request).generator.create_adhoc_instance(
        body.item_id,
        body.scheduled_at or now,
        notes=body.notes,
        instance_id=body.id,
        now=now,
    )
    return _instance_view(request, instance, now)


@router.post("/instances/expire", response_model=ExpireResponse)
def expire_instances(request: Request) -> ExpireResponse:
    """Expire open instances left over from previous days."""
    return ExpireResponse(expired=_state(request).transitions.expire_elapsed(_now(request)))


@router.get("/instances/{instance_id}", response_model=InstanceView)
def get_instance(request: Request, instance_id: str) -> InstanceView:
    """Return one instance with its bucket."""
    instance = _state(request).instances.require(instance_id)
    return _instance_view(request, instance, _now(request))


@router.post("/instances/{instance_id}/confirm", response_model=ConfirmResponse)
def confirm_instance(
    request: Request,
    instance_id: str,
    body: ConfirmRequest,
) -> ConfirmResponse:
    """Confirm an instance; spacing conflicts come back as a normal response."""
    state = _state(request)
    now = _now(request)
    if body.idempotency_key is None:
        result = state.transitions.confirm(
            instance_id,
            now=now,
            confirmed_by=body.confirmed_by,
            notes=body.notes,
            override=body.override,
        )
        return _confirm_response(request, result, now)

    outcome = state.reconciler.apply_action(
        OfflineActionInput(
            id=body.idempotency_key,
            type="confirm",
            payload={
                "instance_id": instance_id,
                "confirmed_by": body.confirmed_by,
                "notes": body.notes,
                "override": body.override,
            },
            client_timestamp=now,
        )
    )
    _raise_for_error_outcome(outcome)
    instance = state.instances.require(outcome.detail["instance_id"])
    history = state.history.get_for_instance(instance.id)
    has_conflict = outcome.outcome == "conflict"
    return ConfirmResponse(
        status=outcome.outcome,
        has_conflict=has_conflict,
        conflicting_item_name=outcome.detail.get("conflicting_item_name"),
        remaining_minutes=outcome.detail.get("remaining_minutes"),
        can_override=outcome.detail.get("can_override", True),
        instance=_instance_view(request, instance, now),
        history=HistoryView.from_model(history) if history is not None else None,
    )


@router.post("/instances/{instance_id}/snooze", response_model=InstanceView)
def snooze_instance(request: Request, instance_id: str, body: SnoozeRequest) -> InstanceView:
    """Snooze an instance for 15, 30, or 60 minutes."""
    state = _state(request)
    now = _now(request)
    if body.idempotency_key is None:
        instance = state.transitions.snooze(instance_id, now=now, minutes=body.minutes)
        return _instance_view(request, instance, now)

    outcome = state.reconciler.apply_action(
        OfflineActionInput(
            id=body.idempotency_key,
            type="snooze",
            payload={"instance_id": instance_id, "minutes": body.minutes},
            client_timestamp=now,
        )
    )
    _raise_for_error_outcome(outcome)
    if outcome.outcome == "already_confirmed":
        raise AlreadyConfirmedError(
            f"Instance already confirmed: {instance_id}",
            {"instance_id": instance_id},
        )
    instance = state.instances.require(outcome.detail["instance_id"])
    return _instance_view(request, instance, now)


@router.get("/history", response_model=list[HistoryView])
def list_history(
    request: Request,
    from_: date | None = Query(default=None, alias="from"),
    to: date | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
) -> list[HistoryView]:
    """Return confirmations within a local date range, newest first."""
    start, end = _date_range_bounds(from_, to)
    entries = _state(request).history.list_range(start=start, end=end, limit=limit)
    return [HistoryView.from_model(entry) for entry in entries]


@router.get("/history/instance/{instance_id}", response_model=list[HistoryView])
def history_for_instance(request: Request, instance_id: str) -> list[HistoryView]:
    """Return confirmations recorded for one instance."""
    _state(request).instances.require(instance_id)
    entries = _state(request).history.list_for_instance(instance_id)
    return [HistoryView.from_model(entry) for entry in entries]


@router.patch("/history/{history_id}", response_model=HistoryView)
def correct_history(
    request: Request,
    history_id: str,
    body: HistoryCorrectionRequest,
) -> HistoryView:
    """Correct a confirmation record without changing the instance."""
    supplied = body.model_fields_set
    correction = ConfirmationCorrectionInput(
        confirmed_at=body.confirmed_at if "confirmed_at" in supplied else UNSET,
        confirmed_by=body.confirmed_by if "confirmed_by" in supplied else UNSET,
        notes=body.notes if "notes" in supplied else UNSET,
    )
    history = _state(request).history.correct(
        history_id,
        correction,
        edited_by=body.edited_by,
        now=_now(request),
    )
    return HistoryView.from_model(history)


@router.post("/sync", response_model=SyncResponse)
def sync_offline_actions(request: Request, body: SyncRequest) -> SyncResponse:
    """Reconcile a batch of offline actions in client time order."""
    outcomes = _state(request).reconciler.reconcile(body.actions)
    return SyncResponse(results=[_outcome_view(outcome) for outcome in outcomes])


def _confirm_response(request: Request, result: ConfirmationResult, now) -> ConfirmResponse:
    """Render a confirmation result."""
    conflict = result.conflict if result.status == "conflict" else None
    return ConfirmResponse(
        status=result.status,
        has_conflict=conflict is not None,
        conflicting_item_name=conflict.conflicting_item_name if conflict else None,
        remaining_minutes=conflict.remaining_minutes if conflict else None,
        can_override=result.conflict.can_override,
        instance=_instance_view(request, result.instance, now),
        history=HistoryView.from_model(result.history) if result.history is not None else None,
    )


def _outcome_view(outcome: ActionOutcome) -> ActionOutcomeView:
    """Render a reconciliation outcome."""
    return ActionOutcomeView(
        action_id=outcome.action_id,
        action_type=outcome.action_type,
        outcome=outcome.outcome,
        detail=outcome.detail,
        synced=outcome.synced,
        replayed=outcome.replayed,
    )


def _raise_for_error_outcome(outcome: ActionOutcome) -> None:
    """Re-raise an ``error`` outcome so it maps onto an HTTP status."""
    if outcome.outcome != "error":
        return
    detail: dict[str, Any] = outcome.detail
    raise InstanceServiceError(
        detail.get("code", "error"),
        detail.get("message", "Action failed."),
        detail.get("details") or {},
    )


def _date_range_bounds(start: date | None, end: date | None):
    """Convert inclusive local dates into UTC instant bounds."""
    if start is not None and end is not None and start > end:
        raise HTTPException(status_code=422, detail="from must not be after to")
    start_at = combine_local(start, time.min) if start is not None else None
    end_at = (
        combine_local(end + timedelta(days=1), time.min) - timedelta(microseconds=1)
        if end is not None
        else None
    )
    return start_at, end_at
