import os
from datetime import date, time
from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

os.environ.setdefault("AUTO_CREATE_TABLES", "false")

from fuel_ledger.core.database import get_session, init_db
from fuel_ledger.models import (
    DailySession,
    FuelStorage,
    FuelTruck,
    Shift,
    Unit,
    UnitType,
)


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=eng)
    yield eng
    SQLModel.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as ses:
        yield ses


def _save(session, obj):
    session.add(obj)
    session.commit()
    session.refresh(obj)
    return obj


@pytest.fixture()
def storage(session):
    return _save(
        session,
        FuelStorage(
            storage_code="ST-01",
            storage_name="Main Tank",
            capacity=Decimal("50000"),
            current_level=Decimal("32500"),
            minimum_level=Decimal("5000"),
        ),
    )


@pytest.fixture()
def truck(session):
    return _save(
        session,
        FuelTruck(
            truck_code="FT-01",
            truck_name="Fuel Truck 1",
            capacity=Decimal("8000"),
            current_level=Decimal("5200"),
        ),
    )


@pytest.fixture()
def unit_type(session):
    return _save(
        session,
        UnitType(
            type_code="EXC",
            type_name="Excavator",
            default_consumption_per_hour=Decimal("15"),
            default_consumption_per_km=Decimal("0"),
        ),
    )


@pytest.fixture()
def unit(session, unit_type):
    return _save(
        session,
        Unit(
            unit_code="EX-01",
            unit_name="Excavator 01",
            unit_type_id=unit_type.id,
            current_hour_meter=Decimal("100"),
            current_odometer=Decimal("500"),
            fuel_tank_capacity=Decimal("400"),
        ),
    )


@pytest.fixture()
def shift(session):
    return _save(session, Shift(shift_code="S1", shift_name="Day", start_time=time(6, 0), end_time=time(18, 0)))


@pytest.fixture()
def daily_session(session, shift):
    return _save(session, DailySession(session_date=date(2026, 3, 2), shift_id=shift.id))


@pytest.fixture()
def client(session):
    from fastapi.testclient import TestClient

    from fuel_ledger.main import app

    app.dependency_overrides[get_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()
