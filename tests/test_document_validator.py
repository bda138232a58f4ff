"""
Tests for structural document validation
"""
import copy
from decimal import Decimal

import pytest

from conftest import VALID_DOCUMENT, make_document
from app.utils.document_validator import REQUIRED_STRING_FIELDS, normalize_payload, validate_document
from app.utils.error_responses import ValidationError


def assert_rejected(payload, field):
    with pytest.raises(ValidationError) as exc_info:
        validate_document(payload)
    assert exc_info.value.field == field
    assert field.split(".")[0].split("[")[0] in exc_info.value.message
    return exc_info.value


def test_minimal_valid_document():
    document = validate_document(make_document())

    assert document.document_name == "FacturaElectronica"
    assert document.emitter.full_name == "Empresa Emisora S.A."
    assert document.receiver.identifier.id == "112340567"
    assert document.order_lines[0].unitary_price == Decimal("100")


def test_wrapped_and_flat_payloads_are_equivalent():
    flat = validate_document(make_document())
    wrapped = validate_document({"document": make_document()})
    assert flat == wrapped


@pytest.mark.parametrize("field", REQUIRED_STRING_FIELDS)
def test_missing_required_field(field):
    payload = make_document()
    del payload[field]
    assert_rejected(payload, field)


@pytest.mark.parametrize("field", REQUIRED_STRING_FIELDS)
def test_blank_required_field(field):
    assert_rejected(make_document(**{field: "   "}), field)


@pytest.mark.parametrize("security_code", ["1234567", "123456789", "1234567a"])
def test_security_code_format(security_code):
    assert_rejected(make_document(securityCode=security_code), "securityCode")


def test_security_code_of_eight_digits_is_accepted():
    assert validate_document(make_document(securityCode="00000001")).security_code == "00000001"


def test_missing_emitter():
    payload = make_document()
    del payload["emitter"]
    assert_rejected(payload, "emitter")


def test_emitter_location_must_be_complete():
    payload = make_document()
    del payload["emitter"]["location"]["neighborhood"]
    assert_rejected(payload, "emitter.location.neighborhood")


def test_emitter_identifier_required():
    payload = make_document()
    payload["emitter"]["identifier"] = {"type": "02"}
    assert_rejected(payload, "emitter.identifier")


def test_receiver_required_for_invoice():
    payload = make_document()
    del payload["receiver"]
    assert_rejected(payload, "receiver")


def test_ticket_may_omit_receiver():
    payload = make_document(documentName="TiqueteElectronico")
    del payload["receiver"]

    document = validate_document(payload)
    assert document.receiver is None


def test_ticket_receiver_is_not_checked():
    payload = make_document(documentName="TiqueteElectronico", receiver={"fullName": "Consumidor"})

    document = validate_document(payload)
    assert document.receiver is None
    assert payload["receiver"] == {"fullName": "Consumidor"}


def test_ticket_keeps_complete_receiver():
    payload = make_document(documentName="TiqueteElectronico")

    document = validate_document(payload)
    assert document.receiver.full_name == "Cliente Receptor"


def test_party_name_too_long():
    payload = make_document()
    payload["emitter"]["fullName"] = "E" * 101
    assert_rejected(payload, "emitter.fullName")


def test_identification_type_must_be_code():
    payload = make_document()
    payload["receiver"]["identifier"]["type"] = "Fisica"
    assert_rejected(payload, "receiver.identifier.type")


def test_identification_too_long():
    payload = make_document()
    payload["receiver"]["identifier"]["id"] = "1" * 21
    assert_rejected(payload, "receiver.identifier.id")


def test_phone_must_be_object():
    payload = make_document()
    payload["emitter"]["phone"] = "22223333"
    assert_rejected(payload, "emitter.phone")


@pytest.mark.parametrize("name,value", [("email", 42), ("commercialName", ["Ejemplo"])])
def test_optional_party_strings(name, value):
    payload = make_document()
    payload["emitter"][name] = value
    assert_rejected(payload, f"emitter.{name}")


def test_optional_line_fields_must_be_strings():
    payload = make_document()
    payload["orderLines"][0]["measureUnit"] = 7
    assert_rejected(payload, "orderLines[0].measureUnit")


def test_echoed_key_must_be_string():
    assert_rejected(make_document(documentKey=12345), "documentKey")


def test_order_lines_must_not_be_empty():
    assert_rejected(make_document(orderLines=[]), "orderLines")


def test_order_lines_must_be_a_list():
    assert_rejected(make_document(orderLines={"detail": "x"}), "orderLines")


def test_order_line_detail_required():
    payload = make_document()
    payload["orderLines"][0]["detail"] = ""
    assert_rejected(payload, "orderLines[0].detail")


@pytest.mark.parametrize("price", ["100", None, True])
def test_unitary_price_must_be_numeric(price):
    payload = make_document()
    payload["orderLines"][0]["unitaryPrice"] = price
    assert_rejected(payload, "orderLines[0].unitaryPrice")


def test_unitary_price_cannot_be_negative():
    payload = make_document()
    payload["orderLines"][0]["unitaryPrice"] = -1
    assert_rejected(payload, "orderLines[0].unitaryPrice")


def test_quantity_must_be_numeric_when_present():
    payload = make_document()
    payload["orderLines"][0]["quantity"] = "one"
    assert_rejected(payload, "orderLines[0].quantity")


def test_quantity_is_optional():
    payload = make_document()
    del payload["orderLines"][0]["quantity"]
    assert validate_document(payload).order_lines[0].quantity is None


def test_tax_must_be_complete():
    payload = make_document()
    del payload["orderLines"][0]["tax"]["rateCode"]
    assert_rejected(payload, "orderLines[0].tax")


def test_line_without_tax_is_valid():
    payload = make_document()
    del payload["orderLines"][0]["tax"]
    assert validate_document(payload).order_lines[0].tax is None


@pytest.mark.parametrize("field", ["currencyCode", "exchangeRate"])
def test_optional_strings_must_be_strings(field):
    assert_rejected(make_document(**{field: 1}), field)


def test_reference_info_fields_required():
    reference = {"documentType": "01", "number": "5" * 50, "issueDate": "2025-01-01T00:00:00-06:00", "code": "01"}
    assert_rejected(
        make_document(documentName="NotaCreditoElectronica", referenceInfo=reference),
        "referenceInfo.reason"
    )


def test_decimal_precision_is_preserved():
    payload = make_document()
    payload["orderLines"][0]["unitaryPrice"] = Decimal("1234.56789")

    document = validate_document(payload)
    assert document.order_lines[0].unitary_price == Decimal("1234.56789")
    assert str(document.order_lines[0].unitary_price) == "1234.56789"


def test_validation_does_not_mutate_payload():
    payload = make_document()
    snapshot = copy.deepcopy(payload)

    first = validate_document(payload)
    second = validate_document(payload)

    assert payload == snapshot
    assert first == second


def test_first_violation_is_reported():
    payload = make_document(securityCode="1")
    del payload["emitter"]
    del payload["providerId"]
    assert_rejected(payload, "providerId")


@pytest.mark.parametrize("body", [None, [], "document", 42])
def test_non_object_body(body):
    with pytest.raises(ValidationError) as exc_info:
        normalize_payload(body)
    assert exc_info.value.field == "document"


def test_valid_document_constant_untouched():
    assert VALID_DOCUMENT["orderLines"][0]["unitaryPrice"] == 100
