"""
containers.py
=============

Row-locked level mutations for storage tanks and fuel trucks.

Every function here works on the caller's session and **never commits**;
the engines (transfers / transactions / stock checks) wrap calls in
``core.database.atomic`` so that all container writes of one operation land
in a single database transaction.

Lock order is global: storages before trucks, then ascending id
(``FuelSourceRef.lock_key``). Callers needing more than one container must
take them through :func:`lock_containers` in one call.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Protocol, runtime_checkable

from sqlmodel import Session, select

from fuel_ledger.core.errors import (
    CapacityExceeded,
    InsufficientFuel,
    InvalidAmount,
    NotFound,
    OutOfRange,
)
from fuel_ledger.models.container import (
    CONTAINER_MODELS,
    ContainerKind,
    FuelContainerBase,
    FuelSourceRef,
)
from fuel_ledger.utils.decimals import ZERO, to_amount

logger = logging.getLogger(__name__)


@runtime_checkable
class Dispensable(Protocol):
    """Anything fuel can be taken from: a storage tank or a truck."""

    capacity: Decimal
    current_level: Decimal
    is_active: bool

    @property
    def ref(self) -> FuelSourceRef: ...

    @property
    def display_name(self) -> str: ...

    def can_dispense(self, amount: Decimal) -> bool: ...


# --------------------------------------------------------------------------- #
# lookup & locking                                                            #
# --------------------------------------------------------------------------- #
def get_container(session: Session, ref: FuelSourceRef) -> FuelContainerBase:
    """Plain read without a lock (display / reports)."""
    model = CONTAINER_MODELS[ref.kind]
    obj = session.get(model, ref.id)
    if obj is None:
        raise NotFound(f"{ref.kind.value} {ref.id} not found")
    return obj


def find_container_by_code(session: Session, kind: ContainerKind, code: str) -> FuelContainerBase | None:
    model = CONTAINER_MODELS[kind]
    column = getattr(model, model.code_column)
    return session.exec(select(model).where(column == code.strip())).first()


def lock_containers(session: Session, *refs: FuelSourceRef) -> dict[FuelSourceRef, FuelContainerBase]:
    """Lock and freshly re-read each referenced container.

    Rows are locked with ``SELECT ... FOR UPDATE`` in ``lock_key`` order and
    ``populate_existing`` overwrites any stale identity-map copy, so the
    returned objects carry the committed levels.
    """
    # pending writes must reach the db before we re-read over them
    session.flush()
    locked: dict[FuelSourceRef, FuelContainerBase] = {}
    for ref in sorted(set(refs), key=lambda r: r.lock_key):
        model = CONTAINER_MODELS[ref.kind]
        stmt = (
            select(model)
            .where(model.id == ref.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        obj = session.exec(stmt).first()
        if obj is None:
            raise NotFound(f"{ref.kind.value} {ref.id} not found")
        locked[ref] = obj
    return locked


def lock_container(session: Session, ref: FuelSourceRef) -> FuelContainerBase:
    return lock_containers(session, ref)[ref]


# --------------------------------------------------------------------------- #
# mutations                                                                   #
# --------------------------------------------------------------------------- #
def add_fuel(session: Session, container: FuelContainerBase, amount) -> Decimal:
    """Increase the level by *amount*; returns the new level."""
    amount = to_amount(amount)
    if amount <= 0:
        raise InvalidAmount("Amount must be positive", "amount")
    fresh = lock_container(session, container.ref)
    if fresh.current_level + amount > fresh.capacity:
        raise CapacityExceeded(
            f"Adding {amount}L to {fresh.display_name} would exceed capacity "
            f"(available {fresh.remaining_capacity}L)",
            "amount",
        )
    fresh.current_level = fresh.current_level + amount
    session.add(fresh)
    session.flush()
    return fresh.current_level


def remove_fuel(session: Session, container: Dispensable, amount) -> Decimal:
    """Decrease the level by *amount* (floored at 0); returns the new level."""
    amount = to_amount(amount)
    if amount <= 0:
        raise InvalidAmount("Amount must be positive", "amount")
    fresh = lock_container(session, container.ref)
    if fresh.current_level < amount:
        raise InsufficientFuel(
            f"{fresh.display_name} holds {fresh.current_level}L, cannot remove {amount}L",
            "amount",
        )
    fresh.current_level = max(ZERO, fresh.current_level - amount)
    session.add(fresh)
    session.flush()
    return fresh.current_level


def set_level(session: Session, container: FuelContainerBase, new_level) -> Decimal:
    new_level = to_amount(new_level)
    fresh = lock_container(session, container.ref)
    if new_level < 0 or new_level > fresh.capacity:
        raise OutOfRange(
            f"Level {new_level}L is outside 0..{fresh.capacity}L for {fresh.display_name}",
            "new_level",
        )
    old_level = fresh.current_level
    fresh.current_level = new_level
    session.add(fresh)
    session.flush()
    logger.info("set_level: %s %s -> %s", fresh.ref, old_level, new_level)
    return new_level
