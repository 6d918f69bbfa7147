"""
Canonical invoice schema shared by extraction, the form and validation.

Field names are snake_case in Python and camelCase on the wire
(``vendorName``, ``unitPrice``); both spellings are accepted on input.
"""

from typing import Any, Dict, List, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# Untyped model output, consumed once by the normalizer
RawExtraction = Mapping[str, Any]

# Field path (``vendorName`` or ``items[0].unitPrice``) -> message
ValidationErrorSet = Dict[str, str]


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _none_means_default(cls, data: Any) -> Any:
        # Form payloads send null for cleared inputs
        if isinstance(data, Mapping):
            return {k: v for k, v in data.items() if v is not None}
        return data

    def to_wire(self) -> dict:
        """Serialize with camelCase keys, as sent to and from the UI"""
        return self.model_dump(by_alias=True)


class LineItem(_WireModel):
    description: str = ""
    quantity: float = Field(default=0, ge=0)
    unit_price: float = Field(default=0, ge=0)
    amount: float = 0

    def with_changes(self, **changes: Any) -> "LineItem":
        """
        Return a validated copy with ``changes`` applied.

        Editing quantity or unit_price recomputes amount. An amount that came
        from extraction is left as-is until one of those is edited.
        """
        updated = self.model_validate({**self.model_dump(), **changes})
        if "quantity" in changes or "unit_price" in changes:
            updated.amount = updated.quantity * updated.unit_price
        return updated


class InvoiceRecord(_WireModel):
    invoice_number: str = ""
    invoice_date: str = ""  # YYYY-MM-DD or ""
    due_date: str = ""  # YYYY-MM-DD or ""
    vendor_name: str = ""
    vendor_email: str = ""
    vendor_address: str = ""
    bill_to_name: str = ""
    bill_to_address: str = ""
    items: List[LineItem] = Field(default_factory=list)
    subtotal: float = 0
    tax: float = 0
    total: float = 0


class ValidationOutcome(BaseModel):
    """Verdict plus per-field errors; errors is empty exactly when passing"""
    model_config = ConfigDict(populate_by_name=True)

    validation_result: Literal["pass", "fail"] = Field(alias="validationResult")
    errors: ValidationErrorSet = Field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.validation_result == "pass"

    @classmethod
    def from_errors(cls, errors: ValidationErrorSet) -> "ValidationOutcome":
        return cls(validation_result="fail" if errors else "pass", errors=dict(errors))
