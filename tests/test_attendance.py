from datetime import date, datetime

from production_erp.attendance import AttendanceBook
from production_erp.domain import AttendanceStatus, ProcessStatus

DAY = date(2024, 6, 3)


def test_latest_revision_is_authoritative():
    book = AttendanceBook()
    book.record("w-1", DAY, AttendanceStatus.SICK, worker_name="Marko")
    correction = book.record("w-1", DAY, AttendanceStatus.PRESENT, worker_name="Marko")

    assert correction.revision == 2
    assert book.get_worker_attendance("w-1", DAY).status == AttendanceStatus.PRESENT
    assert [entry.status for entry in book.history("w-1", DAY)] == [
        AttendanceStatus.SICK,
        AttendanceStatus.PRESENT,
    ]
    assert book.get_worker_attendance("w-1", date(2024, 6, 4)) is None


def test_monthly_attendance_and_ranges():
    book = AttendanceBook()
    book.record("w-1", date(2024, 6, 10), AttendanceStatus.FIELD)
    book.record("w-1", date(2024, 6, 3), AttendanceStatus.PRESENT)
    book.record("w-1", date(2024, 6, 3), AttendanceStatus.ABSENT)
    book.record("w-1", date(2024, 7, 1), AttendanceStatus.PRESENT)
    book.record("w-2", date(2024, 6, 3), AttendanceStatus.VACATION)

    june = book.get_worker_monthly_attendance("w-1", 2024, 6)
    assert [(entry.day, entry.status) for entry in june] == [
        (date(2024, 6, 3), AttendanceStatus.ABSENT),
        (date(2024, 6, 10), AttendanceStatus.FIELD),
    ]
    window = book.records_between(date(2024, 6, 1), date(2024, 6, 5))
    assert [(entry.worker_id, entry.status) for entry in window] == [
        ("w-1", AttendanceStatus.ABSENT),
        ("w-2", AttendanceStatus.VACATION),
    ]
    assert len(book.records_between(date(2024, 6, 1), date(2024, 6, 30), ["w-2"])) == 1


def test_availability_gate():
    book = AttendanceBook()
    assert book.can_worker_start_process("w-1", DAY).allowed

    for status in (AttendanceStatus.ABSENT, AttendanceStatus.SICK, AttendanceStatus.VACATION):
        book.record("w-1", DAY, status)
        availability = book.can_worker_start_process("w-1", DAY)
        assert not availability.allowed
        assert availability.status == status
        assert availability.reason

    book.record("w-1", DAY, AttendanceStatus.FIELD)
    assert book.can_worker_start_process("w-1", DAY).allowed


def test_assignment_warns_but_proceeds(service, workers, make_order, clock):
    ana = workers["ana"]
    order = make_order()
    service.mark_attendance(ana.id, clock().date(), AttendanceStatus.SICK)

    warnings = service.assign_worker(order.id, order.items[0].id, ana.id)

    assert [warning.worker_id for warning in warnings] == [ana.id]
    cutting = service.get_work_order(order.id).items[0].mode.assignment_for("Cutting")
    assert cutting.worker.worker_id == ana.id
    assert cutting.status == ProcessStatus.IN_PROGRESS


def test_reconciliation_creates_missing_logs(service, workers, make_order, clock):
    marko = workers["marko"]
    order = make_order({"Cutting": marko.id})
    service.start_work_order(order.id)
    service.mark_attendance(marko.id, clock().date(), AttendanceStatus.PRESENT)

    result = service.trigger_work_log_reconciliation(marko.id)

    assert (result.created, result.skipped) == (1, 0)
    [log] = service.work_logs_for_item(order.items[0].id)
    assert log.from_attendance
    assert log.process_name == "Cutting"
    assert log.daily_rate == 80.0
    assert service.get_work_order(order.id).actual_labor_cost == 80.0

    again = service.trigger_work_log_reconciliation(marko.id)
    assert (again.created, again.skipped) == (0, 1)


def test_reconciliation_skips_non_working_days(service, workers, make_order, clock):
    marko = workers["marko"]
    order = make_order({"Cutting": marko.id})
    service.start_work_order(order.id)
    service.mark_attendance(marko.id, clock().date(), AttendanceStatus.SICK)

    result = service.trigger_work_log_reconciliation(marko.id)

    assert result.created == 0
    assert service.work_logs_for_item(order.items[0].id) == []


def test_reconciliation_skips_paused_items_and_idle_orders(service, workers, make_order, clock):
    marko = workers["marko"]
    paused = make_order({"Cutting": marko.id})
    make_order({"Cutting": marko.id})
    service.start_work_order(paused.id)
    service.pause_item(paused.id, paused.items[0].id)
    service.mark_attendance(marko.id, clock().date(), AttendanceStatus.FIELD)

    result = service.trigger_work_log_reconciliation(marko.id)

    assert result.created == 0
    assert len(service.work_logs) == 0


def test_reconciliation_on_split_items_tracks_subtask(service, workers, make_order, clock):
    marko = workers["marko"]
    order = make_order()
    item_id = order.items[0].id
    first, second = service.split_item(order.id, item_id, [6, 4])
    service.assign_worker(order.id, item_id, marko.id, subtask_id=second.id)
    service.start_work_order(order.id)
    service.mark_attendance(marko.id, clock().date(), AttendanceStatus.PRESENT)

    service.trigger_work_log_reconciliation(marko.id)

    [log] = service.work_logs_for_item(item_id)
    assert log.subtask_id == second.id
    assert log.process_name == "Cutting"


def test_recorded_at_uses_service_clock(service, workers, clock):
    entry = service.mark_attendance(workers["ivan"].id, date(2024, 6, 1), AttendanceStatus.WEEKEND)

    assert entry.recorded_at == datetime(2024, 6, 3, 8, 0)
    assert entry.worker_name == "Ivan"
