"""
Tests for the emission pipeline and the Hacienda exchange
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_document
from app.schemas.enums import DocumentStatus
from app.services.document_service import DocumentService, emit
from app.services.signature_service import SimulatedSigner
from app.utils.document_validator import validate_document
from app.utils.error_responses import (
    DuplicateDocumentError,
    HaciendaNetworkError,
    HaciendaTimeoutError,
    KeyFormatError,
    SignatureError,
    StateTransitionError,
    SubmissionOrderError,
    ValidationError,
)
from app.utils.key_generator import generate_key, verify_document_key

ACCOUNT = "account-1"
ISSUE_DATE = datetime(2025, 3, 10, 8, 0, tzinfo=timezone(timedelta(hours=-6)))


@pytest.fixture
def service(db_session, gateway):
    return DocumentService(db_session, gateway, signer=SimulatedSigner())


def emit_one(service, **overrides):
    return service.validate_and_emit(make_document(**overrides), ACCOUNT, issue_date=ISSUE_DATE)


def test_emit_without_signer_is_deterministic():
    document = validate_document(make_document())

    first = emit(document, issue_date=ISSUE_DATE)
    second = emit(document, issue_date=ISSUE_DATE)

    assert first.xml == second.xml
    assert first.signed_xml is None
    assert first.document_key in first.xml
    assert "Empresa Emisora S.A." in first.xml
    assert "Cliente Receptor" in first.xml


def test_emit_derives_key_from_payload():
    result = emit(validate_document(make_document(branch="2", terminal="3")), issue_date=ISSUE_DATE)

    assert len(result.document_key) == 50
    assert verify_document_key(result.document_key)
    assert result.document_key[3:9] == "100325"
    assert result.document_key[9:21] == "003101123456"
    assert result.consecutive_number == "00200003010000000001"
    assert result.document_key[21:41] == result.consecutive_number


def test_echoed_key_is_used():
    key = generate_key("5", "7", "01", "42", ISSUE_DATE, issuer_id="3101123456", security_code="12345678")
    result = emit(validate_document(make_document(documentKey=key)), issue_date=ISSUE_DATE)

    assert result.document_key == key
    assert result.consecutive_number == key[21:41]


def test_malformed_echoed_key():
    key = generate_key("1", "1", "01", "1", ISSUE_DATE)
    bad = key[:-1] + str((int(key[-1]) + 1) % 10)

    with pytest.raises(KeyFormatError) as exc_info:
        emit(validate_document(make_document(documentKey=bad)), issue_date=ISSUE_DATE)
    assert exc_info.value.field == "documentKey"


def test_unknown_document_name():
    with pytest.raises(ValidationError) as exc_info:
        emit(validate_document(make_document(documentName="FacturaInventada")), issue_date=ISSUE_DATE)
    assert exc_info.value.field == "documentName"


def test_simulated_signature_is_deterministic():
    document = validate_document(make_document())
    signer = SimulatedSigner()

    first = emit(document, signer, ISSUE_DATE)
    second = emit(document, signer, ISSUE_DATE)

    assert first.signed_xml == second.signed_xml
    assert "<ds:Signature" in first.signed_xml
    assert first.signed_xml.rstrip().endswith("</FacturaElectronica>")


def test_validate_and_emit_registers_pending(service, db_session):
    response = emit_one(service)

    assert response.status == DocumentStatus.PENDING.value
    assert len(response.document_key) == 50
    assert response.signed_xml is not None

    record = service.get_record(response.document_key, ACCOUNT)
    assert record.status == "pending"
    assert record.attempt == 1
    assert service.get_xml(response.document_key, ACCOUNT) == response.signed_xml


def test_validation_failure_stores_nothing(service, gateway):
    with pytest.raises(ValidationError):
        service.validate_and_emit(make_document(securityCode="123"), ACCOUNT, issue_date=ISSUE_DATE)
    assert gateway.calls == []


def test_signature_failure_stores_nothing(db_session, gateway):
    class FailingSigner:
        def sign(self, xml):
            raise SignatureError("Certificate has expired")

    service = DocumentService(db_session, gateway, signer=FailingSigner())
    with pytest.raises(SignatureError):
        emit_one(service)

    healthy = DocumentService(db_session, gateway, signer=SimulatedSigner())
    assert emit_one(healthy).status == "pending"


def test_duplicate_emission(service):
    emit_one(service)
    with pytest.raises(DuplicateDocumentError):
        emit_one(service)


def test_submit_then_poll_to_accepted(service, gateway):
    key = emit_one(service).document_key

    record = asyncio.run(service.submit(key, ACCOUNT))
    assert record.status == "sent"

    name, call = gateway.calls[0]
    assert name == "submit_document"
    assert call["document_key"] == key
    assert call["emitter"] == {"tipoIdentificacion": "02", "numeroIdentificacion": "3101123456"}
    assert call["receiver"] == {"tipoIdentificacion": "01", "numeroIdentificacion": "112340567"}
    assert "<ds:Signature" in call["signed_xml"]

    record = asyncio.run(service.poll_status(key, ACCOUNT))
    assert record.status == "sent"
    assert record.remote_status == "procesando"
    assert record.last_polled_at is not None

    gateway.status_response = {"ind-estado": "aceptado"}
    record = asyncio.run(service.poll_status(key, ACCOUNT))
    assert record.status == "accepted"
    assert [event.event_type for event in record.events] == [
        "created", "submitted", "poll", "poll", "response"
    ]


def test_poll_never_overrides_terminal_state(service, gateway):
    key = emit_one(service).document_key
    asyncio.run(service.submit(key, ACCOUNT))
    gateway.status_response = {"ind-estado": "rechazado"}
    asyncio.run(service.poll_status(key, ACCOUNT))

    gateway.status_response = {"ind-estado": "aceptado"}
    record = asyncio.run(service.poll_status(key, ACCOUNT))
    assert record.status == "rejected"
    assert record.remote_status == "aceptado"


def test_gateway_failure_leaves_state_untouched(service, gateway):
    key = emit_one(service).document_key
    gateway.error = HaciendaNetworkError("Hacienda submission network error")

    with pytest.raises(HaciendaNetworkError):
        asyncio.run(service.submit(key, ACCOUNT))
    assert service.get_record(key, ACCOUNT).status == "pending"

    gateway.error = None
    assert asyncio.run(service.submit(key, ACCOUNT)).status == "sent"


def test_double_submit(service):
    key = emit_one(service).document_key
    asyncio.run(service.submit(key, ACCOUNT))

    with pytest.raises(StateTransitionError):
        asyncio.run(service.submit(key, ACCOUNT))


def test_poll_before_submit(service, gateway):
    key = emit_one(service).document_key
    with pytest.raises(SubmissionOrderError):
        asyncio.run(service.poll_status(key, ACCOUNT))
    assert gateway.calls == []


def test_confirm_applies_terminal_verdict(service, gateway):
    key = emit_one(service).document_key
    asyncio.run(service.submit(key, ACCOUNT))

    result = asyncio.run(service.confirm(key, ACCOUNT, "https://example.test/confirm", "token-1"))

    assert result == {"ind-estado": "aceptado"}
    assert gateway.calls[-1] == ("send_confirmation", {"url": "https://example.test/confirm", "token": "token-1"})
    assert service.get_record(key, ACCOUNT).status == "accepted"


def test_confirm_before_submit(service, gateway):
    key = emit_one(service).document_key
    with pytest.raises(SubmissionOrderError):
        asyncio.run(service.confirm(key, ACCOUNT, "https://example.test/confirm", "token-1"))
    assert gateway.calls == []


def test_confirm_timeout_is_surfaced(service, gateway):
    key = emit_one(service).document_key
    asyncio.run(service.submit(key, ACCOUNT))
    gateway.error = HaciendaTimeoutError("Hacienda confirmation timed out")

    with pytest.raises(HaciendaTimeoutError):
        asyncio.run(service.confirm(key, ACCOUNT, "https://example.test/confirm", "token-1"))
    assert service.get_record(key, ACCOUNT).status == "sent"


def test_resubmit_after_error(service, gateway):
    key = emit_one(service).document_key
    asyncio.run(service.submit(key, ACCOUNT))
    service.handle_callback({"clave": key, "ind-estado": "error"})

    record = service.resubmit(key, ACCOUNT)
    assert record.status == "pending"
    assert record.attempt == 2

    assert asyncio.run(service.submit(key, ACCOUNT)).attempt == 2


def test_callback_requires_key(service):
    with pytest.raises(ValidationError) as exc_info:
        service.handle_callback({"ind-estado": "aceptado"})
    assert exc_info.value.field == "clave"


def test_taxpayer_lookup_forwards_identification(service, gateway):
    result = asyncio.run(service.lookup_taxpayer("3-101-123456"))
    assert result["tipoIdentificacion"] == "02"
    assert gateway.calls[-1] == ("lookup_taxpayer", {"identification": "3-101-123456"})
