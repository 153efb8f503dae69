import pytest

from hplc_scheduler.errors import SchedulingError, StaleSchedulingPlan
from hplc_scheduler.plan import SchedulingPlan
from hplc_scheduler.store import PlanStore


def test_versions_increase_on_each_save():
    store = PlanStore()
    first = store.save(SchedulingPlan("CO1", "LOC1"), base_version=0)
    second = store.save(first, base_version=first.version)

    assert first.version == 1
    assert second.version == 2
    assert store.version("CO1", "LOC1") == 2


def test_stale_write_is_rejected():
    store = PlanStore()
    stored = store.save(SchedulingPlan("CO1", "LOC1"), base_version=0)
    store.save(stored, base_version=1)

    with pytest.raises(StaleSchedulingPlan) as exc_info:
        store.save(stored, base_version=1)
    assert exc_info.value.current_version == 2
    assert store.version("CO1", "LOC1") == 2


def test_plans_are_kept_per_location():
    store = PlanStore()
    store.save(SchedulingPlan("CO1", "LOC1"), base_version=0)
    store.save(SchedulingPlan("CO1", "LOC2"), base_version=0)

    assert store.version("CO1", "LOC1") == 1
    assert store.version("CO1", "LOC2") == 1
    assert store.version("CO2", "LOC1") == 0


def test_get_returns_independent_copy():
    store = PlanStore()
    store.save(SchedulingPlan("CO1", "LOC1"), base_version=0)

    fetched = store.get("CO1", "LOC1")
    fetched.unassigned.append("garbage")
    assert store.get("CO1", "LOC1").unassigned == []


def test_get_unknown_plan():
    with pytest.raises(SchedulingError):
        PlanStore().get("CO1", "LOC1")
