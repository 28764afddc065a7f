from datetime import date, datetime

from production_erp.domain import (
    AttendanceStatus,
    ItemMaterial,
    LegacyMode,
    PausePeriod,
    ProcessAssignment,
    SplitMode,
    SubTask,
    WorkerAttendance,
    WorkerRef,
    WorkLog,
    WorkOrder,
    WorkOrderItem,
)
from production_erp.timeline import DayType, EntryType, reconstruct

STEPS = ("Cutting", "Edging")
TODAY = date(2024, 6, 6)


def make_order(started_at=datetime(2024, 6, 1, 8, 0), created_at=datetime(2024, 5, 30, 9, 0)):
    item = WorkOrderItem(
        id="item-1",
        work_order_id="wo-1",
        product_id="p-1",
        product_name="Cabinet",
        quantity=4,
        mode=LegacyMode(
            assignments=[
                ProcessAssignment(
                    process_name="Cutting",
                    worker=WorkerRef("w-1", "Marko"),
                    helpers=[WorkerRef("w-2", "Ana")],
                ),
                ProcessAssignment(process_name="Edging"),
            ]
        ),
        started_at=started_at,
        pause_periods=[
            PausePeriod(started_at=datetime(2024, 6, 4, 7, 0), ended_at=datetime(2024, 6, 5, 18, 0))
        ],
    )
    order = WorkOrder(
        id="wo-1",
        number="WO-001",
        production_steps=STEPS,
        items=[item],
        created_at=created_at,
    )
    return order, item


def log(day, worker_id="w-1", name="Marko", rate=50.0, item_id="item-1", log_id=None):
    return WorkLog(
        id=log_id or f"{worker_id}-{day.isoformat()}",
        worker_id=worker_id,
        worker_name=name,
        day=day,
        daily_rate=rate,
        work_order_id="wo-1",
        item_id=item_id,
        process_name="Cutting",
    )


def attendance(worker_id, day, status, revision=1):
    return WorkerAttendance(
        id=f"{worker_id}:{day.isoformat()}:{revision}",
        worker_id=worker_id,
        day=day,
        status=status,
        revision=revision,
    )


def test_paused_item_timeline():
    order, item = make_order()
    logs = [log(date(2024, 6, 3), worker_id="w-1", rate=50.0)]

    timeline = reconstruct(order, item, logs, [], today=TODAY)

    assert [day.day for day in timeline.days] == [date(2024, 6, d) for d in range(1, 7)]
    # 2024-06-01 falls on a Saturday
    assert [day.day_type for day in timeline.days] == [
        DayType.WEEKEND,
        DayType.WEEKEND,
        DayType.WORKING,
        DayType.PAUSED,
        DayType.PAUSED,
        DayType.NO_WORK,
    ]
    assert timeline.days[2].daily_labor_cost == 50.0
    assert [day.cumulative_labor_cost for day in timeline.days] == [0, 0, 50, 50, 50, 50]
    assert timeline.stats.total_labor_cost == 50.0
    assert timeline.stats.working_days == 1
    assert timeline.stats.paused_days == 2
    assert timeline.stats.total_days == 6


def test_day_count_matches_range():
    order, item = make_order()

    timeline = reconstruct(order, item, [], [], today=TODAY)

    assert len(timeline.days) == (timeline.end - timeline.start).days + 1


def test_entries_on_each_day():
    order, item = make_order()
    logs = [log(date(2024, 6, 3))]

    timeline = reconstruct(order, item, logs, [], today=TODAY)
    by_day = {day.day: day for day in timeline.days}

    monday = [(entry.type, entry.worker_id) for entry in by_day[date(2024, 6, 3)].entries]
    assert monday == [(EntryType.WORKER, "w-1"), (EntryType.ABSENT_WORKER, "w-2")]
    assert by_day[date(2024, 6, 1)].entries == []
    assert [entry.type for entry in by_day[date(2024, 6, 4)].entries] == [EntryType.PAUSE_START]
    assert [entry.type for entry in by_day[date(2024, 6, 5)].entries] == [EntryType.PAUSE_END]
    absent = by_day[date(2024, 6, 6)].entries
    assert [entry.worker_id for entry in absent] == ["w-1", "w-2"]
    assert {entry.attendance_status for entry in absent} == {"unknown"}


def test_other_items_logs_are_ignored():
    order, item = make_order()
    logs = [log(date(2024, 6, 3), item_id="other-item")]

    timeline = reconstruct(order, item, logs, [], today=TODAY)

    assert timeline.stats.total_labor_cost == 0
    assert timeline.days[2].day_type == DayType.NO_WORK


def test_reconstruction_is_idempotent():
    order, item = make_order()
    logs = [log(date(2024, 6, 3))]
    records = [attendance("w-2", date(2024, 6, 3), AttendanceStatus.SICK)]

    first = reconstruct(order, item, logs, records, today=TODAY)
    second = reconstruct(order, item, logs, records, today=TODAY)

    assert first == second


def test_attendance_correction_only_changes_that_day():
    order, item = make_order()
    logs = [log(date(2024, 6, 3))]
    original = [attendance("w-2", date(2024, 6, 6), AttendanceStatus.SICK)]
    corrected = original + [attendance("w-2", date(2024, 6, 6), AttendanceStatus.FIELD, revision=2)]

    before = reconstruct(order, item, logs, original, today=TODAY)
    after = reconstruct(order, item, logs, corrected, today=TODAY)

    changed = [
        old.day for old, new in zip(before.days, after.days) if old != new
    ]
    assert changed == [date(2024, 6, 6)]
    old_day, new_day = before.days[-1], after.days[-1]
    assert [e for e in old_day.entries if e.type != EntryType.ABSENT_WORKER] == [
        e for e in new_day.entries if e.type != EntryType.ABSENT_WORKER
    ]
    statuses = {e.worker_id: e.attendance_status for e in new_day.entries}
    assert statuses == {"w-1": "unknown", "w-2": "Field"}
    assert before.stats == after.stats


def test_start_is_clamped_to_order_creation():
    order, item = make_order(
        started_at=datetime(2024, 5, 20, 8, 0), created_at=datetime(2024, 6, 3, 9, 0)
    )

    timeline = reconstruct(order, item, [], [], today=TODAY)

    assert timeline.start == date(2024, 6, 3)


def test_start_falls_back_to_first_log():
    order, item = make_order(started_at=None, created_at=None)
    logs = [log(date(2024, 6, 5)), log(date(2024, 6, 3), log_id="early")]

    timeline = reconstruct(order, item, logs, [], today=TODAY)

    assert timeline.start == date(2024, 6, 3)


def test_timeline_ends_at_completion():
    order, item = make_order()
    item.completed_at = datetime(2024, 6, 4, 15, 0)

    timeline = reconstruct(order, item, [], [], today=TODAY)

    assert timeline.end == date(2024, 6, 4)
    assert timeline.days[-1].day == date(2024, 6, 4)


def test_holidays_and_materials():
    order, item = make_order()
    item.pause_periods = []
    item.materials = [
        ItemMaterial(name="Oak board", received_on=date(2024, 6, 3)),
        ItemMaterial(name="Hinges"),
    ]

    timeline = reconstruct(order, item, [], [], holidays=[date(2024, 6, 4)], today=TODAY)
    by_day = {day.day: day for day in timeline.days}

    assert by_day[date(2024, 6, 4)].day_type == DayType.HOLIDAY
    assert by_day[date(2024, 6, 4)].entries == []
    materials = [
        entry.description
        for entry in by_day[date(2024, 6, 3)].entries
        if entry.type == EntryType.MATERIAL_RECEIVED
    ]
    assert materials == ["Material received: Oak board"]


def test_open_pause_covers_until_today():
    order, item = make_order()
    item.pause_periods = [PausePeriod(started_at=datetime(2024, 6, 5, 10, 0))]

    timeline = reconstruct(order, item, [], [], today=TODAY)

    assert [day.day_type for day in timeline.days[-2:]] == [DayType.PAUSED, DayType.PAUSED]


def split_order():
    order, item = make_order()
    item.pause_periods = []
    item.mode = SplitMode(
        subtasks=[
            SubTask(
                id="sub-1",
                quantity=3,
                current_process="Cutting",
                worker=WorkerRef("w-1", "Marko"),
                pause_periods=[
                    PausePeriod(started_at=datetime(2024, 6, 4, 7, 0), ended_at=datetime(2024, 6, 5, 16, 0))
                ],
            ),
            SubTask(
                id="sub-2",
                quantity=1,
                current_process="Cutting",
                pause_periods=[
                    PausePeriod(started_at=datetime(2024, 6, 4, 9, 0), ended_at=datetime(2024, 6, 5, 12, 0))
                ],
            ),
        ]
    )
    return order, item


def test_subtask_pauses_mark_split_item_days():
    order, item = split_order()

    timeline = reconstruct(order, item, [], [], today=TODAY)
    by_day = {day.day: day for day in timeline.days}

    assert by_day[date(2024, 6, 4)].day_type == DayType.PAUSED
    assert by_day[date(2024, 6, 5)].day_type == DayType.PAUSED
    assert [entry.type for entry in by_day[date(2024, 6, 4)].entries] == [EntryType.PAUSE_START]
    assert [entry.type for entry in by_day[date(2024, 6, 5)].entries] == [EntryType.PAUSE_END]
    assert by_day[date(2024, 6, 6)].day_type == DayType.NO_WORK
    assert timeline.stats.paused_days == 2


def test_split_item_timeline_through_service(service, workers, make_order, clock):
    marko = workers["marko"]
    order = make_order()
    item_id = order.items[0].id
    first, second = service.split_item(order.id, item_id, [6, 4])
    service.assign_worker(order.id, item_id, marko.id, subtask_id=first.id)
    service.pause_item(order.id, item_id, subtask_id=first.id)
    service.pause_item(order.id, item_id, subtask_id=second.id)
    clock.advance()
    service.resume_item(order.id, item_id, subtask_id=first.id)
    service.resume_item(order.id, item_id, subtask_id=second.id)
    clock.advance()

    timeline = service.build_timeline(order.id, item_id)

    assert [(day.day, day.day_type) for day in timeline.days] == [
        (date(2024, 6, 3), DayType.PAUSED),
        (date(2024, 6, 4), DayType.PAUSED),
        (date(2024, 6, 5), DayType.NO_WORK),
    ]
    absent = [
        entry.worker_name
        for day in timeline.days
        for entry in day.entries
        if entry.type == EntryType.ABSENT_WORKER
    ]
    assert absent == ["Marko"]
