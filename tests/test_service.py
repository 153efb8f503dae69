import pytest

from hplc_scheduler.data_loader import parse_batch_records
from hplc_scheduler.errors import IncompatibleInstrument, StaleSchedulingPlan
from hplc_scheduler.events import MemoryAuditSink
from hplc_scheduler.service import SchedulingService


class FailingSink:
    def publish(self, event):
        raise ConnectionError("audit log unavailable")


@pytest.fixture
def load(batch_records):
    return parse_batch_records(batch_records)


def test_schedule_stores_plan_and_publishes_events(load, uv_instruments):
    sink = MemoryAuditSink()
    service = SchedulingService(sinks=[sink])

    result = service.schedule(load, uv_instruments, "CO1", "LOC1")

    assert result.plan.version == 1
    assert result.warnings == []
    assert len(result.pool.rejected) == 1
    assert len(result.grouping.groups) == 1
    assert sink.events == result.events
    kinds = [e.kind for e in result.events]
    assert kinds.count("ASSIGNED") == 2
    assert kinds.count("GROUPED") == 1


def test_audit_failure_is_a_warning(load, uv_instruments):
    service = SchedulingService(sinks=[FailingSink()])

    result = service.schedule(load, uv_instruments, "CO1", "LOC1")

    assert result.warnings
    assert "audit log unavailable" in result.warnings[0]
    assert service.store.version("CO1", "LOC1") == 1


def test_move_through_service(load, uv_instruments):
    service = SchedulingService()
    scheduled = service.schedule(load, uv_instruments, "CO1", "LOC1")

    result = service.move("CO1", "LOC1", "B2-0", "HPLC-2", 0, base_version=scheduled.plan.version)

    assert result.plan.version == 2
    assert result.events[0].kind == "MOVED"
    assert result.events[0].old_instrument_id == "HPLC-1"
    assert result.events[0].new_instrument_id == "HPLC-2"
    assert "GROUP_DISSOLVED" in [e.kind for e in result.events]


def test_stale_move_is_rejected(load, uv_instruments):
    service = SchedulingService()
    scheduled = service.schedule(load, uv_instruments, "CO1", "LOC1")
    service.move("CO1", "LOC1", "B2-0", "HPLC-2", 0, base_version=scheduled.plan.version)

    with pytest.raises(StaleSchedulingPlan):
        service.move("CO1", "LOC1", "B1-0", "HPLC-2", 0, base_version=scheduled.plan.version)
    assert service.store.version("CO1", "LOC1") == 2


def test_incompatible_move_leaves_store_unchanged(load, uv_instruments):
    service = SchedulingService()
    scheduled = service.schedule(load, uv_instruments, "CO1", "LOC1")

    with pytest.raises(IncompatibleInstrument):
        service.move("CO1", "LOC1", "B1-0", "HPLC-3", 0, base_version=scheduled.plan.version)

    stored = service.store.get("CO1", "LOC1")
    assert stored.version == 1
    assert [t.id for t in stored.schedules["HPLC-1"].tests] == ["B1-0", "B2-0"]


def test_reschedule_over_a_newer_plan_is_rejected(load, uv_instruments):
    service = SchedulingService()
    first = service.schedule(load, uv_instruments, "CO1", "LOC1")
    service.move("CO1", "LOC1", "B2-0", "HPLC-2", 0, base_version=first.plan.version)

    with pytest.raises(StaleSchedulingPlan) as exc_info:
        service.schedule(load, uv_instruments, "CO1", "LOC1", base_version=first.plan.version)
    assert exc_info.value.current_version == 2

    stored = service.store.get("CO1", "LOC1")
    assert stored.version == 2
    assert [t.id for t in stored.schedules["HPLC-2"].tests] == ["B2-0"]


def test_reschedule_from_latest_version(load, uv_instruments):
    service = SchedulingService()
    first = service.schedule(load, uv_instruments, "CO1", "LOC1")

    second = service.schedule(load, uv_instruments, "CO1", "LOC1", base_version=first.plan.version)

    assert second.plan.version == 2
