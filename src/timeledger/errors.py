"""Error taxonomy raised by the timeledger rule engine.

Every rule violation carries a machine-readable ``code``, a human ``detail``
string, and optional extra payload fields. Callers translate them into
responses through :meth:`BusinessRuleViolation.to_payload` and
:attr:`BusinessRuleViolation.status_code`.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""

    code = "api/business-rule-violation"
    status_code = 400

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail if detail is not None else message
        self.extra: Dict[str, Any] = dict(extra or {})

    def to_payload(self) -> Dict[str, Any]:
        """Render the error in the ``{message, cause: {code, detail, ...}}`` shape."""

        cause: Dict[str, Any] = {"code": self.code, "detail": self.detail}
        cause.update(self.extra)
        return {"message": self.message, "cause": cause}


class EntityNotFound(BusinessRuleViolation):
    """Raised when a client, project, invoice, line, or entry is absent or not owned."""

    code = "api/not-found"
    status_code = 404


class EntriesNotFound(EntityNotFound):
    """Raised when a bulk request names entries the user does not own."""

    code = "api/entries-not-found"


class InvalidTimeRange(BusinessRuleViolation):
    code = "api/invalid-time-range"


class DurationTooLong(BusinessRuleViolation):
    code = "api/duration-too-long"


class DurationTooShort(BusinessRuleViolation):
    code = "api/duration-too-short"


class OutsideBusinessHours(BusinessRuleViolation):
    code = "api/outside-business-hours"


class TimeEntryOverlap(BusinessRuleViolation):
    """Raised when an entry overlaps a stored entry or another batch member."""

    code = "api/time-entry-overlap"


class DuplicateClientName(BusinessRuleViolation):
    code = "api/duplicate-client-name"


class DuplicateProjectName(BusinessRuleViolation):
    code = "api/duplicate-project-name"


class FieldRequired(BusinessRuleViolation):
    code = "api/field-required"


class FieldTooLong(BusinessRuleViolation):
    code = "api/field-too-long"


class TimeEntryLocked(BusinessRuleViolation):
    """Raised when a mutation targets an entry billed into an invoice."""

    code = "api/time-entry-locked"


class InvalidStatusTransition(BusinessRuleViolation):
    code = "api/invalid-status-transition"


class InvoiceNotEditable(BusinessRuleViolation):
    code = "api/invoice-not-editable"


class InvoiceNotDeletable(BusinessRuleViolation):
    code = "api/invoice-not-deletable"


class NoTimeEntries(BusinessRuleViolation):
    code = "api/no-time-entries"


class InvalidDateRange(BusinessRuleViolation):
    code = "api/invalid-date-range"


class InvalidAmount(BusinessRuleViolation):
    """Raised when hours, rates, or payments are not strictly positive."""

    code = "api/invalid-amount"


class BatchTooLarge(BusinessRuleViolation):
    code = "api/batch-too-large"


__all__ = [
    "BusinessRuleViolation",
    "EntityNotFound",
    "EntriesNotFound",
    "InvalidTimeRange",
    "DurationTooLong",
    "DurationTooShort",
    "OutsideBusinessHours",
    "TimeEntryOverlap",
    "DuplicateClientName",
    "DuplicateProjectName",
    "FieldRequired",
    "FieldTooLong",
    "TimeEntryLocked",
    "InvalidStatusTransition",
    "InvoiceNotEditable",
    "InvoiceNotDeletable",
    "NoTimeEntries",
    "InvalidDateRange",
    "InvalidAmount",
    "BatchTooLarge",
]
