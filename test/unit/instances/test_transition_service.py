"""Unit tests for confirm, snooze, and expiry transitions."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from contextlib import closing
from datetime import date, datetime, timedelta, timezone
import threading

import pytest
from sqlalchemy.orm import sessionmaker

from catalog.repository import (
    CatalogRepository,
    ConflictGroupCreateInput,
    ItemCreateInput,
    ScheduleCreateInput,
)
from instances.errors import (
    AlreadyConfirmedError,
    InstanceExpiredError,
    InstanceNotFoundError,
    InstanceValidationError,
)
from instances.generator import InstanceGenerator
from instances.transition_service import InstanceTransitionService
from models import ConfirmationHistory, DailyInstance

DAY = date(2026, 6, 15)
EIGHT_AM = datetime(2026, 6, 15, 15, 0, tzinfo=timezone.utc)


def _seed(session_factory: sessionmaker) -> dict[str, str]:
    """Create two grouped eye drops and return their instance ids by item key."""
    catalog = CatalogRepository(session_factory)
    catalog.create_conflict_group(ConflictGroupCreateInput(name="Eyes", id="group-eyes"))
    for key in ("a", "b"):
        catalog.create_item(
            ItemCreateInput(
                name=f"Eye Drop {key.upper()}",
                type="medication",
                frequency="1x_daily",
                conflict_group_id="group-eyes",
                id=f"item-{key}",
            )
        )
        catalog.create_schedule(
            ScheduleCreateInput(
                item_id=f"item-{key}",
                time_slot="morning",
                time_of_day="08:00",
                id=f"sched-{key}",
            )
        )
    instances = InstanceGenerator(session_factory).ensure_instances_for_date(DAY)
    return {instance.item_id.removeprefix("item-"): instance.id for instance in instances}


def _history_count(session_factory: sessionmaker) -> int:
    """Return the number of confirmation history rows."""
    with closing(session_factory()) as session:
        return session.query(ConfirmationHistory).count()


def test_confirm_records_history(sqlite_session_factory: sessionmaker) -> None:
    """A confirm flips status and writes exactly one history row."""
    ids = _seed(sqlite_session_factory)
    service = InstanceTransitionService(sqlite_session_factory)
    now = EIGHT_AM + timedelta(minutes=2)

    result = service.confirm(ids["a"], now=now, confirmed_by="sam", notes="left eye")

    assert result.status == "confirmed"
    assert result.instance.status == "confirmed"
    assert result.instance.confirmed_at == now
    assert result.instance.confirmed_by == "sam"
    assert result.instance.notes == "left eye"
    assert result.history.instance_id == ids["a"]
    assert result.history.version == 1
    assert result.conflict.has_conflict is False
    assert _history_count(sqlite_session_factory) == 1


def test_second_confirm_reports_existing_history(sqlite_session_factory: sessionmaker) -> None:
    """Confirming twice is idempotent and returns the first confirmation."""
    ids = _seed(sqlite_session_factory)
    service = InstanceTransitionService(sqlite_session_factory)
    first = service.confirm(ids["a"], now=EIGHT_AM, confirmed_by="sam")

    second = service.confirm(ids["a"], now=EIGHT_AM + timedelta(hours=1), confirmed_by="alex")

    assert second.status == "already_confirmed"
    assert second.history.id == first.history.id
    assert second.instance.confirmed_by == "sam"
    assert _history_count(sqlite_session_factory) == 1


def test_conflict_blocks_without_override(sqlite_session_factory: sessionmaker) -> None:
    """A spacing conflict returns a result and leaves the instance pending."""
    ids = _seed(sqlite_session_factory)
    service = InstanceTransitionService(sqlite_session_factory)
    service.confirm(ids["a"], now=EIGHT_AM, confirmed_by="sam")

    result = service.confirm(ids["b"], now=EIGHT_AM + timedelta(minutes=5), confirmed_by="sam")

    assert result.status == "conflict"
    assert result.history is None
    assert result.conflict.remaining_minutes == 25
    assert result.conflict.conflicting_item_name == "Eye Drop A"
    with closing(sqlite_session_factory()) as session:
        assert session.get(DailyInstance, ids["b"]).status == "pending"
    assert _history_count(sqlite_session_factory) == 1


def test_override_confirms_through_conflict(sqlite_session_factory: sessionmaker) -> None:
    """Override confirms and still reports the conflict that was overridden."""
    ids = _seed(sqlite_session_factory)
    service = InstanceTransitionService(sqlite_session_factory)
    service.confirm(ids["a"], now=EIGHT_AM, confirmed_by="sam")

    result = service.confirm(
        ids["b"],
        now=EIGHT_AM + timedelta(minutes=5),
        confirmed_by="sam",
        override=True,
    )

    assert result.status == "confirmed"
    assert result.conflict.has_conflict is True
    assert _history_count(sqlite_session_factory) == 2


def test_confirm_clears_snooze(sqlite_session_factory: sessionmaker) -> None:
    """Confirming a snoozed instance clears its snooze deadline."""
    ids = _seed(sqlite_session_factory)
    service = InstanceTransitionService(sqlite_session_factory)
    service.snooze(ids["a"], now=EIGHT_AM, minutes=15)

    result = service.confirm(ids["a"], now=EIGHT_AM + timedelta(minutes=20), confirmed_by="sam")

    assert result.status == "confirmed"
    assert result.instance.snoozed_until is None


def test_missing_instance_raises(sqlite_session_factory: sessionmaker) -> None:
    """Unknown ids raise not-found errors."""
    service = InstanceTransitionService(sqlite_session_factory)

    with pytest.raises(InstanceNotFoundError):
        service.confirm("missing", now=EIGHT_AM, confirmed_by=None)
    with pytest.raises(InstanceNotFoundError):
        service.snooze("missing", now=EIGHT_AM, minutes=15)


def test_resnooze_overwrites_deadline(sqlite_session_factory: sessionmaker) -> None:
    """A second snooze replaces the deadline rather than stacking it."""
    ids = _seed(sqlite_session_factory)
    service = InstanceTransitionService(sqlite_session_factory)

    service.snooze(ids["a"], now=EIGHT_AM, minutes=15)
    later = EIGHT_AM + timedelta(minutes=5)
    instance = service.snooze(ids["a"], now=later, minutes=30)

    assert instance.status == "snoozed"
    assert instance.snoozed_until == later + timedelta(minutes=30)


def test_snooze_rejects_non_positive_minutes(sqlite_session_factory: sessionmaker) -> None:
    """Snooze durations must be positive."""
    ids = _seed(sqlite_session_factory)

    with pytest.raises(InstanceValidationError):
        InstanceTransitionService(sqlite_session_factory).snooze(ids["a"], now=EIGHT_AM, minutes=0)


def test_snooze_confirmed_instance_raises_with_history(
    sqlite_session_factory: sessionmaker,
) -> None:
    """Snoozing a confirmed instance fails and carries the existing confirmation."""
    ids = _seed(sqlite_session_factory)
    service = InstanceTransitionService(sqlite_session_factory)
    confirmed = service.confirm(ids["a"], now=EIGHT_AM, confirmed_by="sam")

    with pytest.raises(AlreadyConfirmedError) as exc_info:
        service.snooze(ids["a"], now=EIGHT_AM + timedelta(minutes=1), minutes=15)

    assert exc_info.value.code == "already_confirmed"
    assert exc_info.value.history.id == confirmed.history.id


def test_expire_elapsed_sweeps_previous_days(sqlite_session_factory: sessionmaker) -> None:
    """Open instances from earlier days expire; today's and confirmed ones stay."""
    ids = _seed(sqlite_session_factory)
    service = InstanceTransitionService(sqlite_session_factory)
    service.confirm(ids["a"], now=EIGHT_AM, confirmed_by="sam")
    service.snooze(ids["b"], now=EIGHT_AM + timedelta(hours=1), minutes=60)
    today = InstanceGenerator(sqlite_session_factory).ensure_instances_for_date(date(2026, 6, 16))
    next_morning = datetime(2026, 6, 16, 15, 0, tzinfo=timezone.utc)

    assert service.expire_elapsed(next_morning) == 1
    assert service.expire_elapsed(next_morning) == 0

    with closing(sqlite_session_factory()) as session:
        assert session.get(DailyInstance, ids["a"]).status == "confirmed"
        assert session.get(DailyInstance, ids["b"]).status == "expired"
        assert {session.get(DailyInstance, row.id).status for row in today} == {"pending"}


def test_expired_instance_rejects_transitions(sqlite_session_factory: sessionmaker) -> None:
    """Confirm and snooze both refuse an expired instance."""
    ids = _seed(sqlite_session_factory)
    service = InstanceTransitionService(sqlite_session_factory)
    service.expire_elapsed(datetime(2026, 6, 17, 15, 0, tzinfo=timezone.utc))

    with pytest.raises(InstanceExpiredError):
        service.confirm(ids["a"], now=EIGHT_AM, confirmed_by="sam")
    with pytest.raises(InstanceExpiredError):
        service.snooze(ids["a"], now=EIGHT_AM, minutes=15)
    assert _history_count(sqlite_session_factory) == 0


def test_concurrent_confirms_write_one_history(file_session_factory: sessionmaker) -> None:
    """Racing confirms produce one confirmation; the others see it."""
    ids = _seed(file_session_factory)
    service = InstanceTransitionService(file_session_factory)
    barrier = threading.Barrier(4)

    def confirm(worker: int):
        barrier.wait()
        return service.confirm(ids["a"], now=EIGHT_AM, confirmed_by=f"worker-{worker}")

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(confirm, range(4)))

    statuses = sorted(result.status for result in results)
    assert statuses == ["already_confirmed", "already_confirmed", "already_confirmed", "confirmed"]
    assert len({result.history.id for result in results}) == 1
    assert _history_count(file_session_factory) == 1
