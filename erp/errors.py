"""
Error kinds raised by the ledger core.

Every error carries a machine-readable ``code`` so callers can branch on the
type or the code instead of parsing messages. Decision points that need a
user's confirmation are not errors; see ``erp.notices``.
"""

from __future__ import annotations

from typing import Any, Optional


class LedgerError(Exception):
    code = "LEDGER_ERROR"

    def __init__(self, message: str, **data: Any):
        super().__init__(message)
        self.message = message
        self.data = data


class ValidationError(LedgerError, ValueError):
    """Missing field, non-positive quantity or otherwise malformed input."""

    code = "VALIDATION_FAILED"


class BatchClosedError(ValidationError):
    code = "BATCH_CLOSED"

    def __init__(self, batch_code: str):
        super().__init__(f"Batch {batch_code} is already completed.", batch_code=batch_code)
        self.batch_code = batch_code


class ReferenceNotFoundError(LedgerError, LookupError):
    """A referenced batch, formulation or item does not exist."""

    code = "REFERENCE_NOT_FOUND"

    def __init__(self, kind: str, ref: Any):
        super().__init__(f"{kind.capitalize()} not found: {ref}", kind=kind, ref=ref)
        self.kind = kind
        self.ref = ref


class ImmutableRecordError(LedgerError):
    """Only records dated today may be created or deleted."""

    code = "IMMUTABLE_RECORD"

    def __init__(self, record_date: str, today: str, movement_id: Optional[int] = None):
        super().__init__(
            f"Records dated {record_date} are locked; only entries for {today} can be changed.",
            record_date=record_date,
            today=today,
            movement_id=movement_id,
        )
        self.record_date = record_date
        self.today = today
        self.movement_id = movement_id
