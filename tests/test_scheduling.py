from datetime import date

import pytest

from production_erp.domain import AttendanceStatus, ItemMaterial, ProcessStatus, WorkOrderStatus
from production_erp.errors import PersistenceFailure, ValidationError, WorkOrderLockedError
from production_erp.scheduling import worker_ids_for_order


def test_overlapping_order_reports_conflict(service, workers, make_order):
    marko = workers["marko"]
    order_a = make_order({"Cutting": marko.id}, project_name="Apartment Novak")
    order_b = make_order({"Edging": marko.id})
    assert service.schedule_work_order(order_a.id, date(2024, 6, 1), date(2024, 6, 5)).success

    report = service.check_worker_conflicts(
        worker_ids_for_order(order_b), date(2024, 6, 3), date(2024, 6, 7), order_b.id
    )

    assert report.has_conflicts
    [conflict] = report.conflicts
    assert conflict.worker_id == marko.id
    assert conflict.worker_name == "Marko"
    assert conflict.conflicting_work_order_id == order_a.id
    assert conflict.conflicting_project_name == "Apartment Novak"
    assert (conflict.overlap_start, conflict.overlap_end) == (date(2024, 6, 3), date(2024, 6, 5))


def test_unforced_schedule_with_conflict_changes_nothing(service, workers, make_order):
    marko = workers["marko"]
    order_a = make_order({"Cutting": marko.id})
    order_b = make_order({"Cutting": marko.id})
    service.schedule_work_order(order_a.id, date(2024, 6, 1), date(2024, 6, 5))

    result = service.schedule_work_order(order_b.id, date(2024, 6, 5), date(2024, 6, 7))

    assert not result.success
    assert len(result.conflicts) == 1
    stored = service.get_work_order(order_b.id)
    assert not stored.is_scheduled
    assert stored.planned_start is None
    assert stored.status == WorkOrderStatus.ASSIGNED


def test_forced_schedule_proceeds(service, workers, make_order):
    marko = workers["marko"]
    order_a = make_order({"Cutting": marko.id})
    order_b = make_order({"Cutting": marko.id})
    service.schedule_work_order(order_a.id, date(2024, 6, 1), date(2024, 6, 5))

    result = service.schedule_work_order(order_b.id, date(2024, 6, 3), date(2024, 6, 7), force=True)

    assert result.success
    stored = service.get_work_order(order_b.id)
    assert stored.is_scheduled
    assert stored.status == WorkOrderStatus.SCHEDULED
    assert (stored.planned_start, stored.planned_end) == (date(2024, 6, 3), date(2024, 6, 7))


def test_adjacent_days_and_other_workers_do_not_conflict(service, workers, make_order):
    order_a = make_order({"Cutting": workers["marko"].id})
    order_b = make_order({"Cutting": workers["marko"].id})
    order_c = make_order({"Cutting": workers["ana"].id})
    service.schedule_work_order(order_a.id, date(2024, 6, 1), date(2024, 6, 5))

    assert service.schedule_work_order(order_b.id, date(2024, 6, 6), date(2024, 6, 8)).success
    assert service.schedule_work_order(order_c.id, date(2024, 6, 1), date(2024, 6, 5)).success


def test_closed_orders_are_ignored(service, workers, make_order):
    order_a = make_order({"Cutting": workers["marko"].id})
    order_b = make_order({"Cutting": workers["marko"].id})
    service.schedule_work_order(order_a.id, date(2024, 6, 1), date(2024, 6, 5))
    service.cancel_work_order(order_a.id)

    assert service.schedule_work_order(order_b.id, date(2024, 6, 1), date(2024, 6, 5)).success


def test_helpers_count_as_booked_workers(service, workers, make_order):
    order_a = make_order({"Cutting": workers["marko"].id})
    order_b = make_order()
    item = order_b.items[0]
    service.assign_worker(order_b.id, item.id, workers["ana"].id, helper_ids=[workers["marko"].id])
    service.schedule_work_order(order_a.id, date(2024, 6, 10), date(2024, 6, 12))

    report = service.check_worker_conflicts(
        worker_ids_for_order(service.get_work_order(order_b.id)),
        date(2024, 6, 11),
        date(2024, 6, 11),
    )

    assert [conflict.worker_id for conflict in report.conflicts] == [workers["marko"].id]


def test_end_before_start_is_rejected(service, make_order):
    order = make_order()

    with pytest.raises(ValidationError):
        service.schedule_work_order(order.id, date(2024, 6, 5), date(2024, 6, 4))


def test_reschedule_to_same_dates_is_noop(service, workers, make_order):
    order_a = make_order({"Cutting": workers["marko"].id})
    order_b = make_order({"Cutting": workers["marko"].id})
    service.schedule_work_order(order_a.id, date(2024, 6, 1), date(2024, 6, 5))
    service.schedule_work_order(order_b.id, date(2024, 6, 3), date(2024, 6, 7), force=True)
    before = service.get_work_order(order_b.id)

    result = service.reschedule_work_order(order_b.id, date(2024, 6, 3), date(2024, 6, 7))

    assert result.success
    assert result.conflicts == []
    after = service.get_work_order(order_b.id)
    assert after.scheduled_at == before.scheduled_at
    assert (after.planned_start, after.planned_end) == (date(2024, 6, 3), date(2024, 6, 7))


def test_shift_moves_both_dates(service, make_order):
    order = make_order()
    service.schedule_work_order(order.id, date(2024, 6, 3), date(2024, 6, 5))

    assert service.shift_work_order(order.id, 2).success

    stored = service.get_work_order(order.id)
    assert (stored.planned_start, stored.planned_end) == (date(2024, 6, 5), date(2024, 6, 7))
    assert service.shift_work_order(order.id, 0).message == "Schedule unchanged"


def test_unschedule_returns_order_to_backlog(service, workers, make_order):
    order = make_order({"Cutting": workers["marko"].id})
    service.schedule_work_order(order.id, date(2024, 6, 3), date(2024, 6, 5))

    assert service.unschedule_work_order(order.id).success

    stored = service.get_work_order(order.id)
    assert not stored.is_scheduled
    assert stored.planned_start is None and stored.planned_end is None
    assert stored.status == WorkOrderStatus.ASSIGNED


def test_in_progress_order_is_locked(service, workers, make_order):
    order = make_order({"Cutting": workers["marko"].id})
    service.schedule_work_order(order.id, date(2024, 6, 3), date(2024, 6, 5))
    assert service.start_work_order(order.id).success

    with pytest.raises(WorkOrderLockedError):
        service.reschedule_work_order(order.id, date(2024, 6, 4), date(2024, 6, 6))
    with pytest.raises(WorkOrderLockedError):
        service.reschedule_work_order(order.id, date(2024, 6, 3), date(2024, 6, 5))
    with pytest.raises(WorkOrderLockedError):
        service.unschedule_work_order(order.id)
    with pytest.raises(WorkOrderLockedError):
        service.shift_work_order(order.id, 1)
    with pytest.raises(WorkOrderLockedError):
        service.schedule_work_order(order.id, date(2024, 6, 4), date(2024, 6, 6))

    stored = service.get_work_order(order.id)
    assert (stored.planned_start, stored.planned_end) == (date(2024, 6, 3), date(2024, 6, 5))


def test_start_sets_current_stage_in_progress(service, workers, make_order):
    order = make_order({"Cutting": workers["marko"].id})
    service.schedule_work_order(order.id, date(2024, 6, 3), date(2024, 6, 5))

    result = service.start_work_order(order.id)

    assert result.success
    stored = service.get_work_order(order.id)
    assert stored.status == WorkOrderStatus.IN_PROGRESS
    assert stored.started_at is not None
    cutting = stored.items[0].mode.assignment_for("Cutting")
    assert cutting.status == ProcessStatus.IN_PROGRESS
    assert stored.items[0].mode.assignment_for("Edging").status == ProcessStatus.PENDING


def test_start_refuses_future_order(service, make_order):
    order = make_order()
    service.schedule_work_order(order.id, date(2024, 6, 10), date(2024, 6, 12))

    with pytest.raises(ValidationError):
        service.start_work_order(order.id)
    assert service.get_work_order(order.id).status == WorkOrderStatus.SCHEDULED


def test_start_with_early_start_allowed(service, make_order):
    order = make_order()
    service.schedule_work_order(order.id, date(2024, 6, 10), date(2024, 6, 12))
    service.planning_options.allow_early_start = True

    assert service.start_work_order(order.id).success


def test_start_refuses_cancelled_order(service, make_order):
    order = make_order()
    service.cancel_work_order(order.id)

    with pytest.raises(ValidationError):
        service.start_work_order(order.id)


def test_start_warns_about_absent_workers(service, workers, make_order, clock):
    order = make_order({"Cutting": workers["marko"].id, "Edging": workers["ana"].id})
    service.mark_attendance(workers["ana"].id, clock().date(), AttendanceStatus.VACATION)
    service.mark_attendance(workers["marko"].id, clock().date(), AttendanceStatus.PRESENT)

    result = service.start_work_order(order.id)

    assert result.success
    [warning] = result.warnings
    assert warning.worker_id == workers["ana"].id
    assert warning.status == AttendanceStatus.VACATION


def test_scheduled_orders_window(service, make_order):
    early = make_order()
    late = make_order()
    make_order()
    service.schedule_work_order(late.id, date(2024, 6, 20), date(2024, 6, 22))
    service.schedule_work_order(early.id, date(2024, 6, 3), date(2024, 6, 5))

    assert [order.id for order in service.scheduled_work_orders()] == [early.id, late.id]
    assert [order.id for order in service.scheduled_work_orders(date(2024, 6, 21))] == [late.id]


class FailingRepository:
    def __init__(self, inner):
        self.inner = inner

    def __iter__(self):
        return iter(self.inner)

    def get(self, item_id):
        return self.inner.get(item_id)

    def list(self):
        return self.inner.list()

    def upsert(self, item_id, item):
        raise PersistenceFailure("disk full")


def test_persistence_failure_leaves_state_unchanged(service, make_order):
    order = make_order()
    service.scheduler.work_orders = FailingRepository(service.work_orders)

    result = service.schedule_work_order(order.id, date(2024, 6, 3), date(2024, 6, 5))

    assert not result.success
    assert "Could not save" in result.message
    stored = service.work_orders.get(order.id)
    assert not stored.is_scheduled
    assert stored.planned_start is None


def test_staffing_a_scheduled_order_keeps_it_movable(service, workers, make_order):
    order = make_order()
    service.schedule_work_order(order.id, date(2024, 6, 10), date(2024, 6, 12))

    service.assign_worker(order.id, order.items[0].id, workers["marko"].id, stage="Cutting")

    stored = service.get_work_order(order.id)
    assert stored.status == WorkOrderStatus.SCHEDULED
    assert stored.items[0].mode.assignment_for("Cutting").status == ProcessStatus.IN_PROGRESS
    assert service.reschedule_work_order(order.id, date(2024, 6, 11), date(2024, 6, 13)).success
    assert service.shift_work_order(order.id, -1).success
    with pytest.raises(ValidationError):
        service.start_work_order(order.id)
    assert service.unschedule_work_order(order.id).success
    assert service.get_work_order(order.id).status == WorkOrderStatus.ASSIGNED


def test_start_waits_for_essential_materials(service, workers, make_order):
    order = make_order(
        {"Cutting": workers["marko"].id},
        materials=[
            ItemMaterial(name="Oak board", status="Ordered", is_essential=True),
            ItemMaterial(name="Edge banding", status="Ordered"),
            ItemMaterial(name="Hinges", status="In stock", is_essential=True),
        ],
    )

    result = service.start_work_order(order.id)

    assert not result.success
    assert result.missing_materials == ["Oak board"]
    assert "Oak board" in result.message
    assert service.get_work_order(order.id).status == WorkOrderStatus.ASSIGNED

    stored = service.work_orders.get(order.id)
    stored.items[0].materials[0].status = "Received"
    service.work_orders.upsert(order.id, stored)

    assert service.start_work_order(order.id).success
    assert service.get_work_order(order.id).status == WorkOrderStatus.IN_PROGRESS
