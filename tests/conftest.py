"""Shared fixtures for production tests."""

from datetime import datetime, timedelta

import pytest

from production_erp.services import ItemRequest, ProductionService

STEPS = ("Cutting", "Edging", "Assembly")


class FixedClock:
    """Clock returning a settable instant."""

    def __init__(self, current: datetime) -> None:
        self.current = current

    def __call__(self) -> datetime:
        return self.current

    def advance(self, days: int = 1) -> None:
        self.current += timedelta(days=days)


@pytest.fixture
def clock():
    # Monday
    return FixedClock(datetime(2024, 6, 3, 8, 0))


@pytest.fixture
def service(clock):
    return ProductionService(clock=clock)


@pytest.fixture
def workers(service):
    return {
        "marko": service.register_worker("Marko", 80.0),
        "ana": service.register_worker("Ana", 75.0),
        "ivan": service.register_worker("Ivan", 90.0),
    }


@pytest.fixture
def make_order(service):
    """Factory creating a one-item work order with optional stage workers."""

    counter = {"value": 0}

    def factory(stage_workers=None, *, quantity=10, project_name="Project", **item_fields):
        counter["value"] += 1
        request = ItemRequest(
            product_id=f"P-{counter['value']}",
            product_name=f"Product {counter['value']}",
            quantity=quantity,
            project_name=project_name,
            stage_workers=stage_workers or {},
            **item_fields,
        )
        return service.create_work_order(f"WO-{counter['value']:03d}", STEPS, [request])

    return factory
