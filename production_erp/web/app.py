"""FastAPI-based web interface for production tracking."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, Field

from ..config import Settings, get_settings
from ..domain import AttendanceStatus, ItemMaterial, ProcessStatus, SplitMode, WorkOrder
from ..errors import PersistenceFailure, ValidationError, WorkOrderLockedError
from ..repository import DuplicateRecordError, RecordNotFoundError
from ..scheduling import CommandResult, worker_ids_for_order
from ..services import ItemRequest, PlanningOptions, ProductionService
from ..state_machine import current_stage, is_paused, item_status
from ..storage import ProductionDatabase

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Request bodies
# ----------------------------------------------------------------------
class WorkerIn(BaseModel):
    name: str
    daily_rate: float = Field(ge=0)
    role: str = ""


class MaterialIn(BaseModel):
    name: str
    status: str = "Ordered"
    received_on: Optional[date] = None
    is_essential: bool = False


class ItemIn(BaseModel):
    product_id: str
    product_name: str
    quantity: int = Field(ge=1)
    project_id: str = ""
    project_name: str = ""
    product_value: float = 0.0
    material_cost: float = 0.0
    planned_labor_cost: float = 0.0
    stage_workers: Dict[str, str] = Field(default_factory=dict)
    materials: List[MaterialIn] = Field(default_factory=list)


class WorkOrderIn(BaseModel):
    number: str
    production_steps: List[str]
    items: List[ItemIn]
    due_date: Optional[date] = None
    notes: str = ""


class ScheduleIn(BaseModel):
    start: date
    end: date
    force: bool = False


class ShiftIn(BaseModel):
    day_offset: int
    force: bool = False


class ConflictCheckIn(BaseModel):
    worker_ids: List[str]
    start: date
    end: date
    exclude_work_order_id: Optional[str] = None


class AssignIn(BaseModel):
    worker_id: str
    stage: Optional[str] = None
    subtask_id: Optional[str] = None
    helper_ids: List[str] = Field(default_factory=list)


class StatusIn(BaseModel):
    status: ProcessStatus
    stage: Optional[str] = None
    subtask_id: Optional[str] = None


class StageIn(BaseModel):
    stage: Optional[str] = None


class PauseIn(BaseModel):
    subtask_id: Optional[str] = None


class SplitIn(BaseModel):
    groups: List[int]


class MoveIn(BaseModel):
    target: str


class WorkLogIn(BaseModel):
    worker_id: str
    day: date
    process_name: Optional[str] = None
    subtask_id: Optional[str] = None
    hours_worked: Optional[float] = Field(default=None, ge=0)
    notes: str = ""


class AttendanceIn(BaseModel):
    day: date
    status: AttendanceStatus


class ReconcileIn(BaseModel):
    day: Optional[date] = None


# ----------------------------------------------------------------------
# Serialisation
# ----------------------------------------------------------------------
def order_payload(order: WorkOrder) -> dict:
    """JSON view of a work order with the derived item state attached."""

    payload = jsonable_encoder(order)
    for item, item_payload in zip(order.items, payload["items"]):
        item_payload["mode_type"] = "split" if isinstance(item.mode, SplitMode) else "legacy"
        item_payload["status"] = item_status(item).value
        item_payload["current_stage"] = current_stage(item, order.production_steps)
        item_payload["paused"] = is_paused(item)
    payload["worker_ids"] = worker_ids_for_order(order)
    return payload


def command_response(result: CommandResult) -> JSONResponse:
    if result.success:
        status_code = 200
    elif result.conflicts or result.missing_materials:
        status_code = 409
    else:
        status_code = 503
    return JSONResponse(status_code=status_code, content=jsonable_encoder(result))


def create_app(
    database_path: Optional[str] = None,
    *,
    settings: Optional[Settings] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    database = ProductionDatabase(database_path or settings.database_path)
    service = ProductionService(
        worker_repo=database.workers,
        work_order_repo=database.work_orders,
        work_log_repo=database.work_logs,
        attendance_repo=database.attendance,
        clock=clock,
        planning_options=PlanningOptions(
            auto_merge_subtasks=settings.auto_merge_subtasks,
            default_hours_worked=settings.default_hours_worked,
            allow_early_start=settings.allow_early_start,
        ),
    )
    if settings.load_demo_data:
        ensure_demo_data(service)

    app = FastAPI(title="Production ERP")
    app.state.production_service = service
    app.state.database = database

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        database.close()

    @app.exception_handler(RecordNotFoundError)
    async def not_found_handler(request: Request, exc: RecordNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(WorkOrderLockedError)
    async def locked_handler(request: Request, exc: WorkOrderLockedError):
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(DuplicateRecordError)
    async def duplicate_handler(request: Request, exc: DuplicateRecordError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(PersistenceFailure)
    async def persistence_handler(request: Request, exc: PersistenceFailure):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.get("/")
    async def planner(request: Request):
        service: ProductionService = request.app.state.production_service
        today = service.today()
        orders = service.work_orders.list()
        scheduled = service.scheduled_work_orders()
        unscheduled = sorted(
            (
                order
                for order in orders
                if not order.is_scheduled and not order.status.is_closed
            ),
            key=lambda order: (order.due_date or date.max, order.number),
        )
        return templates.TemplateResponse(
            request,
            "planner.html",
            {
                "today": today,
                "scheduled": scheduled,
                "unscheduled": unscheduled,
                "workers": sorted(service.workers.list(), key=lambda worker: worker.name),
            },
        )

    # ------------------------------------------------------------------
    # Workers & attendance
    # ------------------------------------------------------------------
    @app.get("/api/workers")
    async def list_workers(request: Request):
        service: ProductionService = request.app.state.production_service
        return jsonable_encoder(sorted(service.workers.list(), key=lambda worker: worker.name))

    @app.post("/api/workers", status_code=201)
    async def create_worker(body: WorkerIn, request: Request):
        service: ProductionService = request.app.state.production_service
        return jsonable_encoder(service.register_worker(body.name, body.daily_rate, role=body.role))

    @app.post("/api/workers/{worker_id}/attendance", status_code=201)
    async def mark_attendance(worker_id: str, body: AttendanceIn, request: Request):
        service: ProductionService = request.app.state.production_service
        return jsonable_encoder(service.mark_attendance(worker_id, body.day, body.status))

    @app.get("/api/workers/{worker_id}/attendance")
    async def monthly_attendance(worker_id: str, year: int, month: int, request: Request):
        service: ProductionService = request.app.state.production_service
        service.workers.get(worker_id)
        return jsonable_encoder(
            service.attendance.get_worker_monthly_attendance(worker_id, year, month)
        )

    @app.get("/api/workers/{worker_id}/availability")
    async def worker_availability(worker_id: str, request: Request):
        service: ProductionService = request.app.state.production_service
        service.workers.get(worker_id)
        return jsonable_encoder(
            service.attendance.can_worker_start_process(worker_id, service.today())
        )

    @app.post("/api/workers/{worker_id}/reconcile")
    async def reconcile(worker_id: str, body: ReconcileIn, request: Request):
        service: ProductionService = request.app.state.production_service
        return jsonable_encoder(service.trigger_work_log_reconciliation(worker_id, body.day))

    # ------------------------------------------------------------------
    # Work orders
    # ------------------------------------------------------------------
    @app.get("/api/work-orders")
    async def list_work_orders(request: Request):
        service: ProductionService = request.app.state.production_service
        orders = sorted(service.work_orders.list(), key=lambda order: order.number)
        return [order_payload(order) for order in orders]

    @app.post("/api/work-orders", status_code=201)
    async def create_work_order(body: WorkOrderIn, request: Request):
        service: ProductionService = request.app.state.production_service
        items = [
            ItemRequest(
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                project_id=item.project_id,
                project_name=item.project_name,
                product_value=item.product_value,
                material_cost=item.material_cost,
                planned_labor_cost=item.planned_labor_cost,
                stage_workers=item.stage_workers,
                materials=[
                    ItemMaterial(
                        name=m.name,
                        status=m.status,
                        received_on=m.received_on,
                        is_essential=m.is_essential,
                    )
                    for m in item.materials
                ],
            )
            for item in body.items
        ]
        order = service.create_work_order(
            body.number,
            body.production_steps,
            items,
            due_date=body.due_date,
            notes=body.notes,
        )
        return order_payload(order)

    @app.get("/api/work-orders/{order_id}")
    async def get_work_order(order_id: str, request: Request):
        service: ProductionService = request.app.state.production_service
        return order_payload(service.get_work_order(order_id))

    @app.post("/api/work-orders/{order_id}/cancel")
    async def cancel_work_order(order_id: str, request: Request):
        service: ProductionService = request.app.state.production_service
        return order_payload(service.cancel_work_order(order_id))

    @app.post("/api/work-orders/{order_id}/recalculate")
    async def recalculate(order_id: str, request: Request):
        service: ProductionService = request.app.state.production_service
        return order_payload(service.recalculate_work_order(order_id))

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    @app.get("/api/schedule")
    async def scheduled_orders(
        request: Request, start: Optional[date] = None, end: Optional[date] = None
    ):
        service: ProductionService = request.app.state.production_service
        return [order_payload(order) for order in service.scheduled_work_orders(start, end)]

    @app.post("/api/conflicts/check")
    async def check_conflicts(body: ConflictCheckIn, request: Request):
        service: ProductionService = request.app.state.production_service
        report = service.check_worker_conflicts(
            body.worker_ids, body.start, body.end, body.exclude_work_order_id
        )
        return {
            "has_conflicts": report.has_conflicts,
            "conflicts": jsonable_encoder(report.conflicts),
        }

    @app.post("/api/work-orders/{order_id}/schedule")
    async def schedule(order_id: str, body: ScheduleIn, request: Request):
        service: ProductionService = request.app.state.production_service
        return command_response(
            service.schedule_work_order(order_id, body.start, body.end, force=body.force)
        )

    @app.post("/api/work-orders/{order_id}/reschedule")
    async def reschedule(order_id: str, body: ScheduleIn, request: Request):
        service: ProductionService = request.app.state.production_service
        return command_response(
            service.reschedule_work_order(order_id, body.start, body.end, force=body.force)
        )

    @app.post("/api/work-orders/{order_id}/shift")
    async def shift(order_id: str, body: ShiftIn, request: Request):
        service: ProductionService = request.app.state.production_service
        return command_response(
            service.shift_work_order(order_id, body.day_offset, force=body.force)
        )

    @app.post("/api/work-orders/{order_id}/unschedule")
    async def unschedule(order_id: str, request: Request):
        service: ProductionService = request.app.state.production_service
        return command_response(service.unschedule_work_order(order_id))

    @app.post("/api/work-orders/{order_id}/start")
    async def start(order_id: str, request: Request):
        service: ProductionService = request.app.state.production_service
        return command_response(service.start_work_order(order_id))

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------
    item_path = "/api/work-orders/{order_id}/items/{item_id}"

    @app.post(item_path + "/assign")
    async def assign(order_id: str, item_id: str, body: AssignIn, request: Request):
        service: ProductionService = request.app.state.production_service
        warnings = service.assign_worker(
            order_id,
            item_id,
            body.worker_id,
            stage=body.stage,
            subtask_id=body.subtask_id,
            helper_ids=body.helper_ids,
        )
        return {"warnings": jsonable_encoder(warnings)}

    @app.post(item_path + "/status")
    async def set_status(order_id: str, item_id: str, body: StatusIn, request: Request):
        service: ProductionService = request.app.state.production_service
        status = service.set_process_status(
            order_id, item_id, body.status, stage=body.stage, subtask_id=body.subtask_id
        )
        return {"item_status": status.value}

    @app.post(item_path + "/complete-stage")
    async def finish_stage(order_id: str, item_id: str, body: StageIn, request: Request):
        service: ProductionService = request.app.state.production_service
        return {"next_stage": service.complete_stage(order_id, item_id, body.stage)}

    @app.post(item_path + "/pause")
    async def pause_item(order_id: str, item_id: str, body: PauseIn, request: Request):
        service: ProductionService = request.app.state.production_service
        return jsonable_encoder(service.pause_item(order_id, item_id, subtask_id=body.subtask_id))

    @app.post(item_path + "/resume")
    async def resume_item(order_id: str, item_id: str, body: PauseIn, request: Request):
        service: ProductionService = request.app.state.production_service
        return jsonable_encoder(service.resume_item(order_id, item_id, subtask_id=body.subtask_id))

    @app.post(item_path + "/split")
    async def split(order_id: str, item_id: str, body: SplitIn, request: Request):
        service: ProductionService = request.app.state.production_service
        return jsonable_encoder(service.split_item(order_id, item_id, body.groups))

    @app.post(item_path + "/subtasks/{subtask_id}/move")
    async def move(order_id: str, item_id: str, subtask_id: str, body: MoveIn, request: Request):
        service: ProductionService = request.app.state.production_service
        return jsonable_encoder(service.move_subtask(order_id, item_id, subtask_id, body.target))

    @app.post(item_path + "/work-logs", status_code=201)
    async def record_work_log(order_id: str, item_id: str, body: WorkLogIn, request: Request):
        service: ProductionService = request.app.state.production_service
        log = service.record_work_log(
            order_id,
            item_id,
            body.worker_id,
            body.day,
            process_name=body.process_name,
            subtask_id=body.subtask_id,
            hours_worked=body.hours_worked,
            notes=body.notes,
        )
        return jsonable_encoder(log)

    @app.get(item_path + "/timeline")
    async def timeline(order_id: str, item_id: str, request: Request, today: Optional[date] = None):
        service: ProductionService = request.app.state.production_service
        return jsonable_encoder(service.build_timeline(order_id, item_id, today=today))

    return app


def ensure_demo_data(service: ProductionService) -> None:
    if len(service.workers) > 0:
        return

    today = service.today()
    cutter = service.register_worker("Marko Horvat", 80.0, role="Cutting")
    edger = service.register_worker("Ana Kovač", 75.0, role="Edging")
    assembler = service.register_worker("Ivan Babić", 90.0, role="Assembly")
    steps = ["Cutting", "Edging", "Assembly"]

    kitchen = service.create_work_order(
        "WO-0001",
        steps,
        [
            ItemRequest(
                product_id="P-100",
                product_name="Kitchen cabinet",
                quantity=10,
                project_id="PRJ-1",
                project_name="Apartment Novak",
                product_value=4200.0,
                material_cost=1300.0,
                planned_labor_cost=900.0,
                stage_workers={"Cutting": cutter.id, "Edging": edger.id},
            )
        ],
        due_date=today + timedelta(days=14),
    )
    wardrobe = service.create_work_order(
        "WO-0002",
        steps,
        [
            ItemRequest(
                product_id="P-200",
                product_name="Wardrobe",
                quantity=4,
                project_id="PRJ-2",
                project_name="Villa Marić",
                product_value=3100.0,
                material_cost=950.0,
                planned_labor_cost=600.0,
                stage_workers={"Cutting": cutter.id, "Assembly": assembler.id},
            )
        ],
        due_date=today + timedelta(days=21),
    )
    service.schedule_work_order(kitchen.id, today, today + timedelta(days=4))
    service.schedule_work_order(
        wardrobe.id, today + timedelta(days=7), today + timedelta(days=10)
    )


__all__ = ["create_app", "ensure_demo_data", "order_payload"]
