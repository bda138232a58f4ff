"""
Document pipeline for Costa Rica electronic documents.

validate -> derive key -> generate XML -> sign -> register -> submit ->
confirm / poll. Validation and key errors are raised before any external
call; gateway failures leave the local state exactly as it was.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.logging import audit_logger
from app.models.document import Document
from app.schemas.documents import (
    DocumentEventResponse,
    DocumentRecordResponse,
    EmissionResponse,
    ValidatedDocument,
)
from app.schemas.enums import DocumentStatus, DocumentType, HACIENDA_VERDICTS, document_type_for_name
from app.services.status_service import DocumentStateTracker, remote_verdict
from app.utils.document_validator import validate_document
from app.utils.error_responses import (
    KeyFormatError,
    StateTransitionError,
    SubmissionOrderError,
    ValidationError,
)
from app.utils.hacienda_client import HaciendaClient
from app.utils.key_generator import (
    generate_consecutive_number,
    generate_key,
    parse_document_key,
    verify_document_key,
)
from app.utils.xml_generator import generate_document_xml

logger = logging.getLogger(__name__)

# Documents are dated in Costa Rica local time
COSTA_RICA_TZ = timezone(timedelta(hours=-6), name="America/Costa_Rica")


@dataclass
class EmissionResult:
    document_type: DocumentType
    document_key: str
    consecutive_number: str
    issue_date: datetime
    xml: str
    signed_xml: Optional[str] = None


def resolve_document_type(document: ValidatedDocument) -> DocumentType:
    document_type = document_type_for_name(document.document_name)
    if document_type is None:
        raise ValidationError("documentName", f"Unknown documentName '{document.document_name}'")
    return document_type


def assign_key(document: ValidatedDocument, document_type: DocumentType, issue_date: datetime):
    """
    Use the echoed key when the payload carries one, otherwise derive it.

    Returns:
        Tuple of (document_key, consecutive_number)
    """
    if document.document_key:
        if not verify_document_key(document.document_key):
            raise KeyFormatError(
                f"documentKey is not a valid 50-digit key: {document.document_key}",
                field="documentKey"
            )
        return document.document_key, parse_document_key(document.document_key)["consecutive"]

    document_key = generate_key(
        branch=document.branch,
        terminal=document.terminal,
        document_type=document_type.value,
        sequence_number=document.consecutive_identifier,
        issue_date=issue_date,
        issuer_id=document.emitter.identifier.id,
        security_code=document.security_code,
        situation=document.ce_situation,
        country_code=document.country_code,
    )
    consecutive_number = generate_consecutive_number(
        document.branch, document.terminal, document_type.value, document.consecutive_identifier
    )
    return document_key, consecutive_number


def emit(document: ValidatedDocument, signer=None, issue_date: Optional[datetime] = None) -> EmissionResult:
    """
    Build the XML (and signature, when a signer is given) for a validated document.

    Without a signer the result is the unsigned XML, deterministic for a fixed
    issue date.
    """
    issue_date = issue_date or datetime.now(COSTA_RICA_TZ).replace(microsecond=0)
    document_type = resolve_document_type(document)
    document_key, consecutive_number = assign_key(document, document_type, issue_date)

    xml = generate_document_xml(document, document_type, document_key, consecutive_number, issue_date)
    signed_xml = signer.sign(xml) if signer is not None else None

    return EmissionResult(
        document_type=document_type,
        document_key=document_key,
        consecutive_number=consecutive_number,
        issue_date=issue_date,
        xml=xml,
        signed_xml=signed_xml,
    )


def to_record(document: Document) -> DocumentRecordResponse:
    submission = document.current_submission
    return DocumentRecordResponse(
        document_key=document.document_key,
        document_type=document.document_type,
        document_name=document.document_name,
        consecutive_number=document.consecutive_number,
        issue_date=document.issue_date,
        status=submission.status,
        attempt=submission.attempt,
        submitted_at=submission.submitted_at,
        last_polled_at=submission.last_polled_at,
        remote_status=submission.remote_status,
        events=[DocumentEventResponse.model_validate(event) for event in document.events],
    )


class DocumentService:
    """
    Orchestrates emission and the Hacienda exchange for one account request.
    """

    def __init__(self, db: Session, gateway: HaciendaClient, signer=None):
        self.db = db
        self.gateway = gateway
        self.signer = signer
        self.tracker = DocumentStateTracker(db)

    def validate(self, payload: Any) -> ValidatedDocument:
        document = validate_document(payload)
        resolve_document_type(document)
        return document

    def validate_and_emit(
        self,
        payload: Any,
        account_id: str,
        issue_date: Optional[datetime] = None
    ) -> EmissionResponse:
        """
        Validate, key, render, sign and register a document as pending.

        Raises:
            ValidationError, KeyFormatError: Before anything is stored
            SignatureError, CertificateError: If signing fails; nothing is stored
            DuplicateDocumentError: If the key was already registered
        """
        document = validate_document(payload)
        result = emit(document, self.signer, issue_date)

        receiver = document.receiver
        self.tracker.register(
            account_id=account_id,
            document_key=result.document_key,
            document_type=result.document_type.value,
            document_name=document.document_name,
            consecutive_number=result.consecutive_number,
            issue_date=result.issue_date,
            emitter_name=document.emitter.full_name,
            emitter_identification_type=document.emitter.identifier.type,
            emitter_identification=document.emitter.identifier.id,
            receiver_name=receiver.full_name if receiver else None,
            receiver_identification_type=receiver.identifier.type if receiver else None,
            receiver_identification=receiver.identifier.id if receiver else None,
            xml=result.xml,
            signed_xml=result.signed_xml,
        )

        return EmissionResponse(
            document_key=result.document_key,
            consecutive_number=result.consecutive_number,
            status=DocumentStatus.PENDING.value,
            xml=result.xml,
            signed_xml=result.signed_xml,
        )

    def get_record(self, document_key: str, account_id: str) -> DocumentRecordResponse:
        return to_record(self.tracker.get(document_key, account_id))

    def get_xml(self, document_key: str, account_id: str) -> str:
        document = self.tracker.get(document_key, account_id)
        return document.signed_xml or document.xml

    async def submit(self, document_key: str, account_id: str) -> DocumentRecordResponse:
        """
        Send the stored XML to Hacienda and mark the attempt as sent.

        Raises:
            StateTransitionError: If the current attempt is not pending
            HaciendaError: If the gateway call fails; state is unchanged
        """
        document = self.tracker.get(document_key, account_id)
        submission = document.current_submission
        if submission.status != DocumentStatus.PENDING.value:
            raise StateTransitionError(
                f"Document {document_key} attempt {submission.attempt} is already '{submission.status}'",
                details={"status": submission.status, "attempt": submission.attempt}
            )

        xml_payload = document.signed_xml or document.xml
        receiver = None
        if document.receiver_identification:
            receiver = {
                "tipoIdentificacion": document.receiver_identification_type,
                "numeroIdentificacion": document.receiver_identification,
            }

        gateway_response = await self.gateway.submit_document(
            document_key=document.document_key,
            signed_xml=xml_payload,
            issue_date=document.issue_date,
            emitter={
                "tipoIdentificacion": document.emitter_identification_type,
                "numeroIdentificacion": document.emitter_identification,
            },
            receiver=receiver,
        )
        audit_logger.log_hacienda_interaction("submission", document_key, response_data=gateway_response)

        self.tracker.record_submission(document_key, xml_payload, gateway_response=gateway_response)
        return self.get_record(document_key, account_id)

    def _require_submitted(self, document: Document) -> None:
        if document.current_submission.status == DocumentStatus.PENDING.value:
            raise SubmissionOrderError(f"Document {document.document_key} has not been submitted")

    def _reconcile(self, document_key: str, remote: Any) -> None:
        """Apply a terminal remote verdict to an attempt that is still sent."""
        if not isinstance(remote, dict):
            return
        if HACIENDA_VERDICTS.get(remote_verdict(remote)) is None:
            return
        if self.tracker.current_status(document_key) != DocumentStatus.SENT:
            return
        self.tracker.record_response(document_key, remote)

    async def confirm(self, document_key: str, account_id: str, url: str, token: str) -> Any:
        """
        Forward a confirmation request and return the raw gateway answer.

        Raises:
            SubmissionOrderError: If the document was never submitted
            HaciendaError: On network failure or timeout, never retried
        """
        document = self.tracker.get(document_key, account_id)
        self._require_submitted(document)

        result = await self.gateway.send_confirmation(url, token)
        audit_logger.log_hacienda_interaction("confirmation", document_key, response_data=result)

        self.tracker.record_confirmation(document_key, result)
        self._reconcile(document_key, result)
        return result

    async def poll_status(self, document_key: str, account_id: str) -> DocumentRecordResponse:
        """
        Query Hacienda for the latest status.

        The poll is stored as advisory data; it only moves the local state when
        the attempt is still sent and Hacienda reports a final verdict.
        """
        document = self.tracker.get(document_key, account_id)
        self._require_submitted(document)

        remote = await self.gateway.get_status(document_key)
        audit_logger.log_hacienda_interaction("status query", document_key, response_data=remote)

        self.tracker.record_poll(document_key, remote)
        self._reconcile(document_key, remote)
        return self.get_record(document_key, account_id)

    def resubmit(self, document_key: str, account_id: str) -> DocumentRecordResponse:
        self.tracker.get(document_key, account_id)
        self.tracker.resubmit(document_key)
        return self.get_record(document_key, account_id)

    def handle_callback(self, payload: Dict[str, Any]) -> str:
        """
        Apply a verdict pushed by Hacienda to the callback URL.

        Returns:
            The resulting attempt status
        """
        if not isinstance(payload, dict) or not payload.get("clave"):
            raise ValidationError("clave", "Callback payload must include 'clave'")
        submission = self.tracker.record_response(str(payload["clave"]), payload)
        return submission.status

    async def lookup_taxpayer(self, identification: str) -> Any:
        """Forwarded as is; the taxpayer API decides what it accepts"""
        return await self.gateway.lookup_taxpayer(identification)
