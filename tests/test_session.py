import pytest
from pydantic import ValidationError

from invoice_extractor.models.invoice import LineItem, ValidationOutcome
from invoice_extractor.models.session import InvoiceSession, RequestInFlightError

RAW = {
    "invoiceNumber": "INV-5",
    "vendorName": "Acme Corp",
    "items": [
        {"description": "Widget", "quantity": 2, "unitPrice": 5, "amount": 10},
        {"description": "Gadget", "quantity": 1, "unitPrice": 3, "amount": 3},
    ],
    "subtotal": 13,
    "tax": 1.3,
    "total": 14.3,
}


@pytest.fixture
def session():
    return InvoiceSession(tax_rate=0.1)


@pytest.fixture
def loaded(session):
    token = session.begin_request()
    session.apply_extraction(token, RAW)
    session.finish_request(token)
    return session


def test_extraction_is_normalized_into_record(session):
    session.set_upload(b"image", "image/png")
    token = session.begin_request()

    assert session.apply_extraction(token, RAW) is True
    session.finish_request(token)

    assert session.record.vendor_name == "Acme Corp"
    assert len(session.record.items) == 2
    assert session.in_flight is False
    assert session.image_bytes == b"image"


def test_only_one_request_in_flight(session):
    session.begin_request()
    with pytest.raises(RequestInFlightError):
        session.begin_request()


def test_reset_discards_in_flight_result(session):
    token = session.begin_request()
    session.reset()

    assert session.apply_extraction(token, RAW) is False
    assert session.record is None
    # A new request may start right away
    session.begin_request()


def test_stale_finish_does_not_clear_new_request(session):
    stale = session.begin_request()
    session.reset()
    session.begin_request()

    session.finish_request(stale)
    assert session.in_flight is True


def test_validation_errors_replace_previous_set(loaded):
    token = loaded.begin_request()
    loaded.apply_validation(token, ValidationOutcome.from_errors({"vendorName": "wrong", "tax": "wrong"}))
    loaded.finish_request(token)
    assert set(loaded.errors) == {"vendorName", "tax"}

    token = loaded.begin_request()
    loaded.apply_validation(token, ValidationOutcome.from_errors({"total": "wrong"}))
    loaded.finish_request(token)
    assert loaded.errors == {"total": "wrong"}


def test_editing_quantity_recomputes_amount_and_totals(loaded):
    record = loaded.update_item(0, "quantity", 4)

    assert record.items[0].amount == 20
    assert record.subtotal == 23
    assert record.tax == pytest.approx(2.3)
    assert record.total == pytest.approx(25.3)


def test_editing_unit_price_recomputes_amount(loaded):
    record = loaded.update_item(1, "unit_price", 7)
    assert record.items[1].amount == 7


def test_editing_description_keeps_extracted_amount(loaded):
    record = loaded.update_item(0, "description", "Blue widget")
    assert record.items[0].description == "Blue widget"
    assert record.items[0].amount == 10


def test_update_field(loaded):
    record = loaded.update_field("vendor_email", "billing@acme.test")
    assert record.vendor_email == "billing@acme.test"

    with pytest.raises(KeyError):
        loaded.update_field("not_a_field", "x")
    with pytest.raises(KeyError):
        loaded.update_item(0, "amount", 1)


def test_add_and_remove_items(loaded):
    record = loaded.add_item()
    assert record.items[-1] == LineItem()

    record = loaded.remove_item(0)
    assert [item.description for item in record.items] == ["Gadget", ""]
    assert record.subtotal == 3


def test_edit_without_record_raises(session):
    with pytest.raises(LookupError):
        session.update_field("vendor_name", "x")


def test_line_item_with_changes_only_recomputes_on_price_or_quantity():
    item = LineItem(description="Widget", quantity=2, unit_price=5, amount=11)
    assert item.with_changes(description="W").amount == 11
    assert item.with_changes(quantity=3).amount == 15


def test_negative_quantity_edit_is_rejected(loaded):
    with pytest.raises(ValidationError):
        loaded.update_item(0, "quantity", -3)

    assert loaded.record.items[0].quantity == 2
    assert loaded.record.items[0].amount == 10


def test_numeric_text_edit_is_coerced(loaded):
    record = loaded.update_item(0, "quantity", "3")

    assert record.items[0].quantity == 3
    assert record.items[0].amount == 15
    assert record.subtotal == 18


def test_update_field_validates_value(loaded):
    with pytest.raises(ValidationError):
        loaded.update_field("total", "lots")
    assert loaded.record.total == pytest.approx(14.3)


def test_update_field_normalizes_dates(loaded):
    assert loaded.update_field("invoice_date", "January 15, 2022").invoice_date == "2022-01-15"
    assert loaded.update_field("due_date", " soon ").due_date == "soon"
