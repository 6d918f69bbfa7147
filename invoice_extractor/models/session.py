"""
Session-scoped invoice state.

Holds what a single user is working on: the current invoice record, the
uploaded image and the latest validation errors. Only one extract or
validate call may be outstanding at a time; resetting the session discards
the result of any call still in flight.
"""

from typing import Any

from loguru import logger

from .invoice import InvoiceRecord, LineItem, ValidationErrorSet, ValidationOutcome
from ..core.config import settings
from ..services.dates import normalize_date
from ..services.normalizer import normalize_invoice, to_text

EDITABLE_ITEM_FIELDS = {"description", "quantity", "unit_price"}
DATE_FIELDS = {"invoice_date", "due_date"}


class RequestInFlightError(RuntimeError):
    """Raised when a second extract/validate call starts before the first finished"""


class InvoiceSession:
    def __init__(self, tax_rate: float | None = None):
        self.tax_rate = settings.form_tax_rate if tax_rate is None else tax_rate
        self.record: InvoiceRecord | None = None
        self.image_bytes: bytes | None = None
        self.mime_type: str | None = None
        self.errors: ValidationErrorSet = {}
        self.in_flight = False
        self._generation = 0

    def set_upload(self, image_bytes: bytes, mime_type: str) -> None:
        """Replace the uploaded image; the previous record and errors no longer apply"""
        self.reset()
        self.image_bytes = image_bytes
        self.mime_type = mime_type

    def begin_request(self) -> int:
        """
        Mark a model call as outstanding.

        Returns:
            Token to hand back to apply_*/finish_request

        Raises:
            RequestInFlightError: if another call is still outstanding
        """
        if self.in_flight:
            raise RequestInFlightError("A request is already in progress for this session")
        self.in_flight = True
        return self._generation

    def finish_request(self, token: int) -> None:
        if token == self._generation:
            self.in_flight = False

    def is_current(self, token: int) -> bool:
        return token == self._generation

    def apply_extraction(self, token: int, raw: Any) -> bool:
        """
        Normalize a raw extraction into the session's record.

        Returns:
            False when the session was reset since the call started, in
            which case the result is discarded
        """
        if not self.is_current(token):
            logger.info("Discarding extraction from a reset session")
            return False
        self.record = normalize_invoice(raw)
        self.errors = {}
        return True

    def apply_validation(self, token: int, outcome: ValidationOutcome) -> bool:
        """Replace the error set with the outcome's errors (no merging across attempts)"""
        if not self.is_current(token):
            logger.info("Discarding validation result from a reset session")
            return False
        self.errors = dict(outcome.errors)
        return True

    def update_field(self, name: str, value: Any) -> InvoiceRecord:
        """Set a scalar field of the current record"""
        record = self._require_record()
        if name == "items" or name not in InvoiceRecord.model_fields:
            raise KeyError(f"Unknown invoice field: {name}")
        if name in DATE_FIELDS:
            # Unreadable dates are kept as typed
            value = normalize_date(value) or to_text(value).strip()
        self.record = InvoiceRecord.model_validate({**record.model_dump(), name: value})
        return self.record

    def update_item(self, index: int, field: str, value: Any) -> InvoiceRecord:
        """
        Edit a line item, then recompute the totals.

        Editing quantity or unit_price recomputes the item amount. Subtotal
        becomes the sum of item amounts, tax is subtotal x tax_rate and total
        is subtotal + tax.

        Raises:
            pydantic.ValidationError: if the value is not a valid amount
        """
        record = self._require_record()
        if field not in EDITABLE_ITEM_FIELDS:
            raise KeyError(f"Unknown line item field: {field}")

        items = list(record.items)
        items[index] = items[index].with_changes(**{field: value})
        self.record = self._with_totals(record, items)
        return self.record

    def add_item(self) -> InvoiceRecord:
        record = self._require_record()
        self.record = record.model_copy(update={"items": [*record.items, LineItem()]})
        return self.record

    def remove_item(self, index: int) -> InvoiceRecord:
        record = self._require_record()
        items = list(record.items)
        del items[index]
        self.record = self._with_totals(record, items)
        return self.record

    def reset(self) -> None:
        """Clear all state; results of in-flight calls will be discarded"""
        self.record = None
        self.image_bytes = None
        self.mime_type = None
        self.errors = {}
        self.in_flight = False
        self._generation += 1

    def _with_totals(self, record: InvoiceRecord, items: list[LineItem]) -> InvoiceRecord:
        subtotal = sum((item.amount for item in items), 0.0)
        tax = subtotal * self.tax_rate
        return record.model_copy(
            update={"items": items, "subtotal": subtotal, "tax": tax, "total": subtotal + tax}
        )

    def _require_record(self) -> InvoiceRecord:
        if self.record is None:
            raise LookupError("No invoice loaded in this session")
        return self.record
