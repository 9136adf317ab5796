"""
Domain exceptions raised by the ledger services.

Every container-mutating service either commits completely or raises one of
these after rolling the session back, so callers can rely on "exception means
nothing changed".

* ``ValidationError``      – one or more business rules failed (HTTP 422)
* ``NotFound``             – referenced row does not exist (HTTP 404)
* ``ConcurrencyConflict``  – lock contention / deadlock, safe to retry (HTTP 409)
* ``RollbackError``        – a delete could not compensate container levels (HTTP 409)
* ``AdjustmentError``      – stock check cannot be adjusted (handled, returns False)
* ``ReportStateError``     – variance report workflow step not allowed
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Iterable


@dataclass(frozen=True)
class ValidationIssue:
    """A single violated rule."""

    code: str
    message: str
    field: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class LedgerError(Exception):
    """Base class for every error raised by the ledger core."""


class ValidationError(LedgerError):
    """Request rejected; ``issues`` holds every rule that failed."""

    def __init__(self, issues: Iterable[ValidationIssue]):
        self.issues: list[ValidationIssue] = list(issues)
        super().__init__("; ".join(i.message for i in self.issues) or "validation failed")

    @property
    def codes(self) -> list[str]:
        return [i.code for i in self.issues]


class _SingleIssueError(ValidationError):
    code: str = "invalid"

    def __init__(self, message: str, field: str | None = None):
        super().__init__([ValidationIssue(self.code, message, field)])


class InvalidAmount(_SingleIssueError):
    code = "invalid_amount"


class CapacityExceeded(_SingleIssueError):
    code = "capacity_exceeded"


class InsufficientFuel(_SingleIssueError):
    code = "insufficient_fuel"


class OutOfRange(_SingleIssueError):
    code = "out_of_range"


class MeterRegression(_SingleIssueError):
    code = "meter_regression"


class InactiveContainer(_SingleIssueError):
    code = "inactive_container"


_SINGLE_ISSUE_TYPES: dict[str, type[_SingleIssueError]] = {
    cls.code: cls
    for cls in (
        InvalidAmount,
        CapacityExceeded,
        InsufficientFuel,
        OutOfRange,
        MeterRegression,
        InactiveContainer,
    )
}


def raise_for_issues(issues: list[ValidationIssue]) -> None:
    """Raise the most specific error for *issues*; no-op when empty.

    A lone issue whose code has a dedicated exception type is raised as that
    type so callers can catch e.g. ``InsufficientFuel`` directly.
    """
    if not issues:
        return
    if len(issues) == 1 and issues[0].code in _SINGLE_ISSUE_TYPES:
        issue = issues[0]
        raise _SINGLE_ISSUE_TYPES[issue.code](issue.message, issue.field)
    raise ValidationError(issues)


class NotFound(LedgerError):
    """Referenced entity does not exist."""


class ConcurrencyConflict(LedgerError):
    """Row lock could not be obtained or the database aborted a deadlock."""


class RollbackError(LedgerError):
    """Compensating action for a delete failed; ledger left untouched."""

    def __init__(self, message: str, issues: Iterable[ValidationIssue] = ()):
        self.issues = list(issues)
        super().__init__(message)


class AdjustmentError(LedgerError):
    """Stock check is not eligible for a system adjustment."""


class ReportStateError(LedgerError):
    """Variance report workflow transition is not allowed from its status."""
