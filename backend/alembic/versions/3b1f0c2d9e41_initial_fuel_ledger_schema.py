"""initial fuel ledger schema

Revision ID: 3b1f0c2d9e41
Revises:
Create Date: 2026-10-12 09:20:14.512307

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3b1f0c2d9e41'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum types are created once up front; with ``metadata`` set, PostgreSQL
# does not try to CREATE TYPE again for every table that uses them.
_enum_meta = sa.MetaData()
fuel_type = sa.Enum("DIESEL", "GASOLINE", "PREMIUM", name="fueltype", metadata=_enum_meta)
container_kind = sa.Enum("STORAGE", "TRUCK", name="containerkind", metadata=_enum_meta)
work_condition = sa.Enum("LIGHT", "NORMAL", "HEAVY", name="workcondition", metadata=_enum_meta)
rate_source = sa.Enum("MANUFACTURER", "HISTORICAL", "FIELD_TEST", "MANUAL", name="ratesource", metadata=_enum_meta)
session_status = sa.Enum("ACTIVE", "CLOSED", name="sessionstatus", metadata=_enum_meta)
check_method = sa.Enum("DIPSTICK", "GAUGE", "FLOW_METER", "VISUAL", name="checkmethod", metadata=_enum_meta)
variance_status = sa.Enum("NORMAL", "MINOR", "WARNING", "CRITICAL", name="variancestatus", metadata=_enum_meta)
report_type = sa.Enum("DAILY", "WEEKLY", "MONTHLY", name="reporttype", metadata=_enum_meta)
report_status = sa.Enum("DRAFT", "FINAL", "APPROVED", name="reportstatus", metadata=_enum_meta)
period_type = sa.Enum("DAILY", "SHIFT", name="periodtype", metadata=_enum_meta)

_ENUMS = (
    fuel_type,
    container_kind,
    work_condition,
    rate_source,
    session_status,
    check_method,
    variance_status,
    report_type,
    report_status,
    period_type,
)


def upgrade() -> None:
    """Upgrade schema: every ledger table, with indexes and constraints."""
    bind = op.get_bind()
    for enum in _ENUMS:
        enum.create(bind, checkfirst=True)

    # --- containers ------------------------------------------------------
    op.create_table(
        "fuel_storage",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("storage_code", sa.String(length=20), nullable=False),
        sa.Column("storage_name", sa.String(length=100), nullable=False),
        sa.Column("capacity", sa.Numeric(12, 2), nullable=False),
        sa.Column("current_level", sa.Numeric(12, 2), nullable=False),
        sa.Column("minimum_level", sa.Numeric(12, 2), nullable=False),
        sa.Column("fuel_type", fuel_type, nullable=False),
        sa.Column("location", sa.String(length=200), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_fuel_storage_storage_code", "fuel_storage", ["storage_code"], unique=True)

    op.create_table(
        "fuel_truck",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("truck_code", sa.String(length=20), nullable=False),
        sa.Column("truck_name", sa.String(length=100), nullable=False),
        sa.Column("capacity", sa.Numeric(12, 2), nullable=False),
        sa.Column("current_level", sa.Numeric(12, 2), nullable=False),
        sa.Column("fuel_type", fuel_type, nullable=False),
        sa.Column("license_plate", sa.String(length=20), nullable=True),
        sa.Column("driver_name", sa.String(length=100), nullable=True),
        sa.Column("brand", sa.String(length=50), nullable=True),
        sa.Column("model", sa.String(length=50), nullable=True),
        sa.Column("manufacture_year", sa.Integer(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_fuel_truck_truck_code", "fuel_truck", ["truck_code"], unique=True)

    # --- units -----------------------------------------------------------
    op.create_table(
        "unit_type",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("type_code", sa.String(length=20), nullable=False),
        sa.Column("type_name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("default_consumption_per_hour", sa.Numeric(8, 2), nullable=True),
        sa.Column("default_consumption_per_km", sa.Numeric(8, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_unit_type_type_code", "unit_type", ["type_code"], unique=True)

    op.create_table(
        "fuel_consumption_rate",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("unit_type_id", sa.Integer(), sa.ForeignKey("unit_type.id"), nullable=False),
        sa.Column("consumption_per_hour", sa.Numeric(8, 2), nullable=False),
        sa.Column("consumption_per_km", sa.Numeric(8, 2), nullable=False),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_until", sa.Date(), nullable=True),
        sa.Column("work_condition", work_condition, nullable=False),
        sa.Column("rate_source", rate_source, nullable=False),
        sa.Column("condition_description", sa.String(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_by", sa.String(length=100), nullable=False),
        sa.UniqueConstraint("unit_type_id", "work_condition", "effective_from", name="uq_rate_period"),
    )
    op.create_index("ix_fuel_consumption_rate_unit_type_id", "fuel_consumption_rate", ["unit_type_id"])

    op.create_table(
        "unit",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("unit_code", sa.String(length=20), nullable=False),
        sa.Column("unit_name", sa.String(length=100), nullable=False),
        sa.Column("unit_type_id", sa.Integer(), sa.ForeignKey("unit_type.id"), nullable=False),
        sa.Column("current_hour_meter", sa.Numeric(12, 2), nullable=False),
        sa.Column("current_odometer", sa.Numeric(12, 2), nullable=False),
        sa.Column("fuel_tank_capacity", sa.Numeric(8, 2), nullable=True),
        sa.Column("brand", sa.String(length=50), nullable=True),
        sa.Column("model", sa.String(length=50), nullable=True),
        sa.Column("manufacture_year", sa.Integer(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_unit_unit_code", "unit", ["unit_code"], unique=True)
    op.create_index("ix_unit_unit_type_id", "unit", ["unit_type_id"])

    # --- shifts / sessions -----------------------------------------------
    op.create_table(
        "shift",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("shift_code", sa.String(length=20), nullable=False),
        sa.Column("shift_name", sa.String(length=50), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_shift_shift_code", "shift", ["shift_code"], unique=True)

    op.create_table(
        "daily_session",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_date", sa.Date(), nullable=False),
        sa.Column("shift_id", sa.Integer(), sa.ForeignKey("shift.id"), nullable=False),
        sa.Column("session_name", sa.String(length=100), nullable=True),
        sa.Column("start_datetime", sa.DateTime(), nullable=True),
        sa.Column("end_datetime", sa.DateTime(), nullable=True),
        sa.Column("status", session_status, nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.UniqueConstraint("session_date", "shift_id", name="uq_session_date_shift"),
    )
    op.create_index("ix_daily_session_session_date", "daily_session", ["session_date"])
    op.create_index("ix_daily_session_shift_id", "daily_session", ["shift_id"])

    # --- ledger ----------------------------------------------------------
    op.create_table(
        "fuel_transfer",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transfer_number", sa.String(length=50), nullable=False),
        sa.Column("fuel_storage_id", sa.Integer(), sa.ForeignKey("fuel_storage.id"), nullable=False),
        sa.Column("fuel_truck_id", sa.Integer(), sa.ForeignKey("fuel_truck.id"), nullable=False),
        sa.Column("daily_session_id", sa.Integer(), sa.ForeignKey("daily_session.id"), nullable=True),
        sa.Column("transferred_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("storage_level_before", sa.Numeric(12, 2), nullable=False),
        sa.Column("storage_level_after", sa.Numeric(12, 2), nullable=False),
        sa.Column("truck_level_before", sa.Numeric(12, 2), nullable=False),
        sa.Column("truck_level_after", sa.Numeric(12, 2), nullable=False),
        sa.Column("transfer_datetime", sa.DateTime(), nullable=False),
        sa.Column("operator_name", sa.String(length=100), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
    )
    op.create_index("ix_fuel_transfer_transfer_number", "fuel_transfer", ["transfer_number"], unique=True)
    op.create_index("ix_fuel_transfer_fuel_storage_id", "fuel_transfer", ["fuel_storage_id"])
    op.create_index("ix_fuel_transfer_fuel_truck_id", "fuel_transfer", ["fuel_truck_id"])
    op.create_index("ix_fuel_transfer_daily_session_id", "fuel_transfer", ["daily_session_id"])
    op.create_index("ix_fuel_transfer_transfer_datetime", "fuel_transfer", ["transfer_datetime"])

    op.create_table(
        "fuel_transaction",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_number", sa.String(length=50), nullable=False),
        sa.Column("unit_id", sa.Integer(), sa.ForeignKey("unit.id"), nullable=False),
        sa.Column("daily_session_id", sa.Integer(), sa.ForeignKey("daily_session.id"), nullable=True),
        sa.Column("fuel_source_type", container_kind, nullable=False),
        sa.Column("fuel_source_id", sa.Integer(), nullable=False),
        sa.Column("previous_hour_meter", sa.Numeric(12, 2), nullable=False),
        sa.Column("current_hour_meter", sa.Numeric(12, 2), nullable=False),
        sa.Column("previous_odometer", sa.Numeric(12, 2), nullable=False),
        sa.Column("current_odometer", sa.Numeric(12, 2), nullable=False),
        sa.Column("fuel_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("source_level_before", sa.Numeric(12, 2), nullable=False),
        sa.Column("source_level_after", sa.Numeric(12, 2), nullable=False),
        sa.Column("fuel_efficiency_per_hour", sa.Numeric(10, 4), nullable=True),
        sa.Column("fuel_efficiency_per_km", sa.Numeric(10, 4), nullable=True),
        sa.Column("combined_efficiency", sa.Numeric(10, 4), nullable=True),
        sa.Column("transaction_datetime", sa.DateTime(), nullable=False),
        sa.Column("operator_name", sa.String(length=100), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("calculated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_fuel_transaction_transaction_number", "fuel_transaction", ["transaction_number"], unique=True)
    op.create_index("ix_fuel_transaction_daily_session_id", "fuel_transaction", ["daily_session_id"])
    op.create_index("ix_fuel_transaction_unit_datetime", "fuel_transaction", ["unit_id", "transaction_datetime"])
    op.create_index("ix_fuel_transaction_source", "fuel_transaction", ["fuel_source_type", "fuel_source_id"])

    # --- reconciliation --------------------------------------------------
    op.create_table(
        "physical_stock_check",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("check_number", sa.String(length=50), nullable=False),
        sa.Column("checkable_type", container_kind, nullable=False),
        sa.Column("checkable_id", sa.Integer(), nullable=False),
        sa.Column("check_datetime", sa.DateTime(), nullable=False),
        sa.Column("system_level", sa.Numeric(12, 2), nullable=False),
        sa.Column("physical_level", sa.Numeric(12, 2), nullable=False),
        sa.Column("variance", sa.Numeric(12, 2), nullable=False),
        sa.Column("variance_percentage", sa.Numeric(10, 4), nullable=False),
        sa.Column("variance_status", variance_status, nullable=False),
        sa.Column("checker_name", sa.String(length=100), nullable=False),
        sa.Column("check_method", check_method, nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("corrective_action", sa.String(), nullable=True),
        sa.Column("system_adjusted", sa.Boolean(), nullable=False),
        sa.Column("adjustment_amount", sa.Numeric(12, 2), nullable=True),
    )
    op.create_index("ix_physical_stock_check_check_number", "physical_stock_check", ["check_number"], unique=True)
    op.create_index("ix_physical_stock_check_check_datetime", "physical_stock_check", ["check_datetime"])
    op.create_index(
        "ix_stock_check_checkable", "physical_stock_check", ["checkable_type", "checkable_id", "check_datetime"]
    )
    op.create_index("ix_stock_check_status", "physical_stock_check", ["variance_status", "system_adjusted"])

    op.create_table(
        "variance_report",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("report_number", sa.String(length=50), nullable=False),
        sa.Column("report_date", sa.Date(), nullable=False),
        sa.Column("report_type", report_type, nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("total_system_fuel", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_physical_fuel", sa.Numeric(14, 2), nullable=False),
        sa.Column("storage_variance", sa.Numeric(12, 2), nullable=False),
        sa.Column("truck_variance", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_checks_performed", sa.Integer(), nullable=False),
        sa.Column("critical_variances_count", sa.Integer(), nullable=False),
        sa.Column("report_status", report_status, nullable=False),
        sa.Column("summary_notes", sa.String(), nullable=True),
        sa.Column("recommended_actions", sa.String(), nullable=True),
        sa.Column("prepared_by", sa.String(length=100), nullable=False),
        sa.Column("reviewed_by", sa.String(length=100), nullable=True),
        sa.Column("approved_by", sa.String(length=100), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_variance_report_report_number", "variance_report", ["report_number"], unique=True)
    op.create_index("ix_variance_report_report_status", "variance_report", ["report_status"])
    op.create_index("ix_variance_report_period", "variance_report", ["period_start", "period_end"])
    op.create_index("ix_variance_report_date_type", "variance_report", ["report_date", "report_type"])

    # --- rollups ---------------------------------------------------------
    op.create_table(
        "unit_consumption_summary",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("unit_id", sa.Integer(), sa.ForeignKey("unit.id"), nullable=False),
        sa.Column("summary_date", sa.Date(), nullable=False),
        sa.Column("shift_id", sa.Integer(), sa.ForeignKey("shift.id"), nullable=True),
        sa.Column("period_type", period_type, nullable=False),
        sa.Column("total_transactions", sa.Integer(), nullable=False),
        sa.Column("total_fuel_consumed", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_hour_meter_diff", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_odometer_diff", sa.Numeric(12, 2), nullable=False),
        sa.Column("avg_fuel_per_hour", sa.Numeric(10, 4), nullable=True),
        sa.Column("avg_fuel_per_km", sa.Numeric(10, 4), nullable=True),
        sa.Column("avg_combined_efficiency", sa.Numeric(10, 4), nullable=True),
        sa.Column("min_efficiency_per_hour", sa.Numeric(10, 4), nullable=True),
        sa.Column("max_efficiency_per_hour", sa.Numeric(10, 4), nullable=True),
        sa.Column("min_efficiency_per_km", sa.Numeric(10, 4), nullable=True),
        sa.Column("max_efficiency_per_km", sa.Numeric(10, 4), nullable=True),
        sa.Column("first_transaction_at", sa.DateTime(), nullable=True),
        sa.Column("last_transaction_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("unit_id", "summary_date", "period_type", "shift_id", name="uq_unit_summary_period"),
    )
    op.create_index("ix_unit_consumption_summary_unit_id", "unit_consumption_summary", ["unit_id"])
    op.create_index("ix_unit_consumption_summary_summary_date", "unit_consumption_summary", ["summary_date"])


def downgrade() -> None:
    """Downgrade schema: drop every ledger table (reverse FK order) and enum type."""
    for table in (
        "unit_consumption_summary",
        "variance_report",
        "physical_stock_check",
        "fuel_transaction",
        "fuel_transfer",
        "daily_session",
        "shift",
        "unit",
        "fuel_consumption_rate",
        "unit_type",
        "fuel_truck",
        "fuel_storage",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum in _ENUMS:
        enum.drop(bind, checkfirst=True)
