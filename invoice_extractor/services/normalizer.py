"""
Normalization of raw model output into an InvoiceRecord.

The hosted model returns loosely-typed JSON: vendor/customer may be nested
(``vendor.name``) or flat (``vendorName``), numbers may arrive as strings
("$1,200.00"), keys may be missing. ``normalize_invoice`` turns any of that
into a fully-populated InvoiceRecord and never raises.
"""

import math
import re
from typing import Any, Iterable, Mapping

from loguru import logger

from .dates import normalize_date
from ..models.invoice import InvoiceRecord, LineItem

# (nested parent, nested key, flat key) in resolution order
PARTY_FIELDS = {
    "vendor_name": ("vendor", "name", "vendorName"),
    "vendor_email": ("vendor", "email", "vendorEmail"),
    "vendor_address": ("vendor", "address", "vendorAddress"),
    "bill_to_name": ("customer", "name", "billToName"),
    "bill_to_address": ("customer", "address", "billToAddress"),
}

_CURRENCY_NOISE = re.compile(r"[$€£¥₹]|USD|AUD|EUR|GBP|CAD|JPY|CNY|INR", re.IGNORECASE)


def to_number(value: Any) -> float:
    """
    Coerce a loosely-typed value to a number, 0 when not numeric.

    Handles currency symbols/codes and thousands separators in strings
    ("USD 1,234.50" -> 1234.5).
    """
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return 0.0
    elif isinstance(value, str):
        text = _CURRENCY_NOISE.sub("", value).replace(",", "").strip()
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return 0.0
    else:
        return 0.0

    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def to_text(value: Any) -> str:
    """Strings pass through, numbers become text, anything else is empty"""
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return ""
        return str(value)
    return ""


def _first_present(*candidates: Any) -> Any:
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return None


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _resolve_party_field(raw: Mapping[str, Any], parent: str, key: str, flat_key: str) -> str:
    nested = _mapping(raw.get(parent)).get(key)
    return to_text(_first_present(nested, raw.get(flat_key)))


def _normalize_item(raw_item: Any) -> LineItem:
    item = _mapping(raw_item)
    return LineItem(
        description=to_text(item.get("description")),
        # Negative quantities/prices are not valid line items
        quantity=max(to_number(item.get("quantity")), 0.0),
        unit_price=max(to_number(_first_present(item.get("unitPrice"), item.get("unit_price"))), 0.0),
        amount=to_number(item.get("amount")),
    )


def _normalize_items(raw_items: Any) -> list[LineItem]:
    if not isinstance(raw_items, (list, tuple)):
        return []
    return [_normalize_item(item) for item in raw_items]


def _sum_amounts(items: Iterable[LineItem]) -> float:
    return sum((item.amount for item in items), 0.0)


def normalize_invoice(raw: Any) -> InvoiceRecord:
    """
    Convert a raw extraction into a fully-populated InvoiceRecord.

    Resolution per field: nested representation, then flat, then default
    ("" or 0). Dates become YYYY-MM-DD, or "" when unparseable.

    Subtotal quirk: a subtotal that coerces to 0, including an explicit 0,
    counts as missing and is recomputed as the sum of item amounts. Tax and
    total are never derived.

    Args:
        raw: Untyped model output (non-mappings are treated as empty)

    Returns:
        InvoiceRecord with every field defined
    """
    data = _mapping(raw)
    if data is not raw:
        logger.warning("Raw extraction is not an object; using defaults", raw_type=type(raw).__name__)

    items = _normalize_items(data.get("items"))
    subtotal = to_number(data.get("subtotal")) or _sum_amounts(items)

    record = InvoiceRecord(
        invoice_number=to_text(data.get("invoiceNumber")),
        invoice_date=normalize_date(data.get("invoiceDate")) or "",
        due_date=normalize_date(data.get("dueDate")) or "",
        items=items,
        subtotal=subtotal,
        tax=to_number(data.get("tax")),
        total=to_number(data.get("total")),
        **{
            field: _resolve_party_field(data, parent, key, flat_key)
            for field, (parent, key, flat_key) in PARTY_FIELDS.items()
        },
    )

    logger.debug(
        "Normalized raw extraction",
        invoice_number=record.invoice_number,
        item_count=len(record.items),
        subtotal=record.subtotal,
    )
    return record
