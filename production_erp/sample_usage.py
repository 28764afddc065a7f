"""Demonstration script for production tracking."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from pprint import pprint

from . import AttendanceStatus, ItemRequest, ProductionService


class DemoClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, days: int = 1) -> None:
        self.current += timedelta(days=days)


def main() -> None:
    clock = DemoClock(datetime(2024, 6, 3, 7, 30))
    erp = ProductionService(clock=clock)

    # Master data
    marko = erp.register_worker("Marko Horvat", 80.0, role="Cutting")
    ana = erp.register_worker("Ana Kovač", 75.0, role="Edging")
    ivan = erp.register_worker("Ivan Babić", 90.0, role="Assembly")
    steps = ["Cutting", "Edging", "Assembly"]

    kitchen = erp.create_work_order(
        "WO-2024-041",
        steps,
        [
            ItemRequest(
                product_id="P-100",
                product_name="Kitchen cabinet",
                quantity=10,
                project_name="Apartment Novak",
                product_value=4200.0,
                material_cost=1300.0,
                planned_labor_cost=900.0,
                stage_workers={"Cutting": marko.id, "Edging": ana.id, "Assembly": ivan.id},
            )
        ],
        due_date=date(2024, 6, 28),
    )
    wardrobe = erp.create_work_order(
        "WO-2024-042",
        steps,
        [
            ItemRequest(
                product_id="P-200",
                product_name="Wardrobe",
                quantity=4,
                project_name="Villa Marić",
                product_value=3100.0,
                material_cost=950.0,
                stage_workers={"Cutting": marko.id},
            )
        ],
    )

    # Planning
    print(erp.schedule_work_order(kitchen.id, date(2024, 6, 3), date(2024, 6, 7)).message)
    attempt = erp.schedule_work_order(wardrobe.id, date(2024, 6, 5), date(2024, 6, 10))
    print(attempt.message)
    for conflict in attempt.conflicts:
        print(
            f" - {conflict.worker_name} is on {conflict.conflicting_work_order_number}"
            f" from {conflict.overlap_start} to {conflict.overlap_end}"
        )
    print(erp.schedule_work_order(wardrobe.id, date(2024, 6, 10), date(2024, 6, 12)).message)

    # Production
    erp.mark_attendance(ana.id, clock().date(), AttendanceStatus.SICK)
    started = erp.start_work_order(kitchen.id)
    print(started.message)
    for warning in started.warnings:
        print(f" ! {warning.worker_name}: {warning.reason}")

    item = erp.get_work_order(kitchen.id).items[0]
    erp.record_work_log(kitchen.id, item.id, marko.id, clock().date())
    erp.complete_stage(kitchen.id, item.id, "Cutting")

    clock.advance()
    erp.mark_attendance(ana.id, clock().date(), AttendanceStatus.PRESENT)
    print(erp.trigger_work_log_reconciliation(ana.id).message)

    first, second = erp.split_item(kitchen.id, item.id, [6, 4])
    erp.move_subtask(kitchen.id, item.id, first.id, "Assembly")

    clock.advance()
    erp.pause_item(kitchen.id, item.id)
    clock.advance()
    erp.resume_item(kitchen.id, item.id)
    erp.move_subtask(kitchen.id, item.id, second.id, "Assembly")

    order = erp.recalculate_work_order(kitchen.id)
    print("\nWork order figures")
    pprint(
        {
            "status": order.status.value,
            "value": order.total_value,
            "labor": order.actual_labor_cost,
            "profit": order.profit,
            "margin": round(order.profit_margin, 1),
        }
    )

    print("\nTimeline")
    timeline = erp.build_timeline(kitchen.id, item.id)
    for day in timeline.days:
        print(
            f" {day.day:%a %d.%m} {day.day_type.value:<8} "
            f"{day.daily_labor_cost:>7.2f} {day.cumulative_labor_cost:>8.2f}"
        )
    pprint(timeline.stats)


if __name__ == "__main__":  # pragma: no cover - manual execution
    main()
