"""
Field reconciliation between user-entered form values and extracted values.

Decides, per invoice field, whether a difference between what the user typed
and what the model read off the invoice is an error:

- Case A (mismatch): both sides have a value and they differ -> error
- Case B (form empty, invoice has a value) -> error only under the strict
  missing-field policy
- Case C (invoice has no value) -> never an error

The verdict is "fail" exactly when at least one error was recorded.
"""

from typing import Any, Literal, Mapping, Sequence

from loguru import logger
from pydantic import BaseModel

from .dates import normalize_date
from .normalizer import normalize_invoice, to_number, to_text
from ..models.invoice import InvoiceRecord, LineItem, ValidationErrorSet, ValidationOutcome

FieldKind = Literal["text", "number", "date"]

# (attribute, wire key, label, kind)
SCALAR_FIELDS: Sequence[tuple[str, str, str, FieldKind]] = (
    ("invoice_number", "invoiceNumber", "Invoice Number", "text"),
    ("invoice_date", "invoiceDate", "Invoice Date", "date"),
    ("due_date", "dueDate", "Due Date", "date"),
    ("vendor_name", "vendorName", "Vendor Name", "text"),
    ("vendor_email", "vendorEmail", "Vendor Email", "text"),
    ("vendor_address", "vendorAddress", "Vendor Address", "text"),
    ("bill_to_name", "billToName", "Bill To Name", "text"),
    ("bill_to_address", "billToAddress", "Bill To Address", "text"),
    ("subtotal", "subtotal", "Subtotal", "number"),
    ("tax", "tax", "Tax", "number"),
    ("total", "total", "Total", "number"),
)

# Amount is derived from quantity x unit price, so it is not compared
ITEM_FIELDS: Sequence[tuple[str, str, str, FieldKind]] = (
    ("description", "description", "Description", "text"),
    ("quantity", "quantity", "Quantity", "number"),
    ("unit_price", "unitPrice", "Unit Price", "number"),
)


def _display(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _canonical(kind: FieldKind, value: Any, *, extracted: bool) -> Any:
    """Comparable form of a value, or None when the value is absent"""
    if kind == "number":
        number = to_number(value)
        return number if number != 0 else None

    text = to_text(value).strip()
    if not text:
        return None
    if kind == "date":
        iso = normalize_date(text)
        # An unreadable date on the invoice side counts as not found;
        # on the form side it is compared as typed and will mismatch
        if extracted:
            return iso
        return iso or text
    return text


class ReconcilerConfig(BaseModel):
    """Policy knobs for reconciliation (loaded from environment)"""
    strict_missing_field_policy: bool = True


class InvoiceReconciler:
    """
    Compares a user-entered invoice against the extracted one.

    Field paths in the error set use wire names: ``vendorName`` for scalar
    fields and ``items[<index>].<field>`` for line items.

    Line item lists of different lengths are compared up to the longer list,
    padding the shorter side with empty items. An invoice item missing from
    the form is therefore Case B for each of its fields, and a form item the
    invoice does not have is Case C.
    """

    def __init__(self, config: ReconcilerConfig | None = None):
        self.config = config or ReconcilerConfig()

    def reconcile(
        self,
        user: InvoiceRecord | Mapping[str, Any],
        extracted: InvoiceRecord | Mapping[str, Any],
    ) -> ValidationOutcome:
        """
        Reconcile form values against extracted values.

        Args:
            user: Values the user entered (record or wire-format mapping)
            extracted: Extracted record, or a raw extraction to normalize first

        Returns:
            ValidationOutcome with verdict and per-field errors
        """
        if not isinstance(user, InvoiceRecord):
            user = InvoiceRecord.model_validate(user)
        if not isinstance(extracted, InvoiceRecord):
            extracted = normalize_invoice(extracted)

        errors: ValidationErrorSet = {}

        for attr, key, label, kind in SCALAR_FIELDS:
            self._compare_field(errors, key, label, kind, getattr(user, attr), getattr(extracted, attr))

        item_count = max(len(user.items), len(extracted.items))
        for index in range(item_count):
            user_item = user.items[index] if index < len(user.items) else LineItem()
            extracted_item = extracted.items[index] if index < len(extracted.items) else LineItem()
            for attr, key, label, kind in ITEM_FIELDS:
                self._compare_field(
                    errors,
                    f"items[{index}].{key}",
                    f"Item {index + 1} {label}",
                    kind,
                    getattr(user_item, attr),
                    getattr(extracted_item, attr),
                )

        outcome = ValidationOutcome.from_errors(errors)

        logger.info(
            "Invoice reconciliation",
            verdict=outcome.validation_result,
            error_count=len(errors),
            error_fields=sorted(errors),
            strict_missing_field_policy=self.config.strict_missing_field_policy,
        )
        return outcome

    def _compare_field(
        self,
        errors: ValidationErrorSet,
        key: str,
        label: str,
        kind: FieldKind,
        user_value: Any,
        extracted_value: Any,
    ) -> None:
        expected = _canonical(kind, extracted_value, extracted=True)
        if expected is None:
            # Case C: not on the invoice
            return

        actual = _canonical(kind, user_value, extracted=False)
        if actual is None:
            # Case B
            if self.config.strict_missing_field_policy:
                errors[key] = f"{label} is missing. The invoice shows '{_display(expected)}'."
            return

        if actual != expected:
            # Case A
            errors[key] = (
                f"{label} does not match the invoice. "
                f"Expected '{_display(expected)}', got '{_display(actual)}'."
            )


def coerce_model_outcome(payload: Any) -> ValidationOutcome:
    """
    Shape an untrusted ``{validationResult, errors}`` payload from the model.

    Keys and messages are stringified, empty messages dropped. Errors always
    mean "fail"; a "fail" without any errors gets a generic ``invoice`` error
    so that the error set is empty exactly when the verdict is "pass".
    """
    data = payload if isinstance(payload, Mapping) else {}
    raw_errors = data.get("errors")

    errors: ValidationErrorSet = {}
    if isinstance(raw_errors, Mapping):
        for key, message in raw_errors.items():
            text = message if isinstance(message, str) else to_text(message)
            if text.strip():
                errors[str(key)] = text

    verdict = str(data.get("validationResult", "")).strip().lower()
    if verdict == "fail" and not errors:
        logger.warning("Model reported failure without field errors")
        errors["invoice"] = "The invoice did not match the submitted data."
    elif verdict not in ("pass", "fail"):
        logger.warning("Unexpected validationResult from model", validation_result=data.get("validationResult"))

    return ValidationOutcome.from_errors(errors)


def create_reconciler(strict_missing_field_policy: bool | None = None) -> InvoiceReconciler:
    """
    Factory function to create a reconciler with optional overrides.

    Uses environment variables as defaults, can be overridden per request.
    """
    from ..core.config import settings

    config = ReconcilerConfig(
        strict_missing_field_policy=(
            strict_missing_field_policy
            if strict_missing_field_policy is not None
            else settings.strict_missing_field_policy
        ),
    )
    return InvoiceReconciler(config)
