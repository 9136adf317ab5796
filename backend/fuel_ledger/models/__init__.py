"""
Aggregate export for all SQLModel table classes.

Having each model re-exported here guarantees that
`import fuel_ledger.models` will register every table in
`SQLModel.metadata`, so Alembic can discover them
during `--autogenerate`.
"""

# --- Containers ------------------------------------------------------------
from .container import (  # noqa: F401
    CONTAINER_MODELS,
    ContainerKind,
    FuelSourceRef,
    FuelStorage,
    FuelTruck,
    FuelType,
)

# --- Units & rates ---------------------------------------------------------
from .unit import FuelConsumptionRate, RateSource, Unit, UnitType, WorkCondition  # noqa: F401

# --- Shifts / sessions -----------------------------------------------------
from .session import DailySession, SessionStatus, Shift  # noqa: F401

# --- Ledger events ---------------------------------------------------------
from .transfer import FuelTransfer  # noqa: F401
from .transaction import FuelTransaction  # noqa: F401

# --- Reconciliation --------------------------------------------------------
from .stock_check import CheckMethod, PhysicalStockCheck, VarianceStatus  # noqa: F401
from .variance_report import ReportStatus, ReportType, VarianceReport  # noqa: F401

# --- Roll-ups --------------------------------------------------------------
from .summary import PeriodType, UnitConsumptionSummary  # noqa: F401

__all__ = [
    "CONTAINER_MODELS",
    "ContainerKind",
    "FuelSourceRef",
    "FuelStorage",
    "FuelTruck",
    "FuelType",
    "FuelConsumptionRate",
    "RateSource",
    "Unit",
    "UnitType",
    "WorkCondition",
    "DailySession",
    "SessionStatus",
    "Shift",
    "FuelTransfer",
    "FuelTransaction",
    "CheckMethod",
    "PhysicalStockCheck",
    "VarianceStatus",
    "ReportStatus",
    "ReportType",
    "VarianceReport",
    "PeriodType",
    "UnitConsumptionSummary",
]
