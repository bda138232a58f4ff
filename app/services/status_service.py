"""
Document state tracking for submissions to Hacienda

Each document has one or more submission attempts. An attempt moves
pending -> sent -> accepted | rejected | error and is never rewritten once
terminal; resubmitting an errored document opens a new pending attempt.
Every change is appended to document_events.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.logging import audit_logger
from app.models.document import Document, DocumentEvent, DocumentSubmission
from app.schemas.enums import DocumentEventType, DocumentStatus, HACIENDA_VERDICTS
from app.utils.error_responses import (
    DocumentNotFoundError,
    DuplicateDocumentError,
    StateTransitionError,
    SubmissionOrderError,
)

logger = logging.getLogger(__name__)

VERDICT_FIELD = "ind-estado"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def remote_verdict(response: Optional[Dict[str, Any]]) -> Optional[str]:
    """Lower-cased ``ind-estado`` of a Hacienda answer, if any"""
    if not isinstance(response, dict):
        return None
    value = response.get(VERDICT_FIELD)
    return str(value).strip().lower() if value else None


class DocumentStateTracker:
    """
    Persists document identity and the submission state machine.
    """

    def __init__(self, db: Session):
        self.db = db

    def register(
        self,
        account_id: str,
        document_key: str,
        document_type: str,
        document_name: str,
        consecutive_number: str,
        issue_date: datetime,
        emitter_name: str,
        emitter_identification_type: str,
        emitter_identification: str,
        xml: str,
        signed_xml: Optional[str] = None,
        receiver_name: Optional[str] = None,
        receiver_identification_type: Optional[str] = None,
        receiver_identification: Optional[str] = None
    ) -> Document:
        """
        Insert a document with its first pending attempt.

        Raises:
            DuplicateDocumentError: If the key is already registered
        """
        document = Document(
            account_id=account_id,
            document_key=document_key,
            document_type=document_type,
            document_name=document_name,
            consecutive_number=consecutive_number,
            issue_date=issue_date,
            emitter_name=emitter_name,
            emitter_identification_type=emitter_identification_type,
            emitter_identification=emitter_identification,
            receiver_name=receiver_name,
            receiver_identification_type=receiver_identification_type,
            receiver_identification=receiver_identification,
            xml=xml,
            signed_xml=signed_xml,
        )
        document.submissions.append(DocumentSubmission(attempt=1, status=DocumentStatus.PENDING.value))
        document.events.append(DocumentEvent(
            attempt=1,
            event_type=DocumentEventType.CREATED.value,
            to_status=DocumentStatus.PENDING.value,
        ))

        self.db.add(document)
        try:
            self.db.commit()
        except IntegrityError as e:
            # Unique constraint on document_key
            self.db.rollback()
            raise DuplicateDocumentError(document_key) from e
        except SQLAlchemyError:
            self.db.rollback()
            raise

        self.db.refresh(document)
        audit_logger.log_document_lifecycle(
            DocumentEventType.CREATED.value, document_key, account_id=account_id,
            attempt=1, to_status=DocumentStatus.PENDING.value
        )
        return document

    def get(self, document_key: str, account_id: Optional[str] = None) -> Document:
        """
        Load a document, optionally restricted to its owning account.

        Raises:
            DocumentNotFoundError: If missing or owned by another account
        """
        query = self.db.query(Document).filter(Document.document_key == document_key)
        if account_id is not None:
            query = query.filter(Document.account_id == account_id)
        document = query.first()
        if document is None:
            raise DocumentNotFoundError(document_key)
        return document

    def current_status(self, document_key: str) -> DocumentStatus:
        return DocumentStatus(self.get(document_key).current_submission.status)

    def history(self, document_key: str) -> List[DocumentEvent]:
        return list(self.get(document_key).events)

    def _append_event(
        self,
        document: Document,
        event_type: DocumentEventType,
        attempt: Optional[int],
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None
    ) -> None:
        self.db.add(DocumentEvent(
            document_id=document.id,
            attempt=attempt,
            event_type=event_type.value,
            from_status=from_status,
            to_status=to_status,
            payload=payload,
        ))

    def _transition(
        self,
        submission: DocumentSubmission,
        expected: DocumentStatus,
        target: DocumentStatus,
        **values
    ) -> bool:
        """Compare-and-set on the attempt status. False when another writer won."""
        result = self.db.execute(
            update(DocumentSubmission)
            .where(DocumentSubmission.id == submission.id)
            .where(DocumentSubmission.status == expected.value)
            .values(status=target.value, **values)
        )
        return result.rowcount == 1

    def record_submission(
        self,
        document_key: str,
        xml_payload: str,
        gateway_response: Optional[Dict[str, Any]] = None,
        submitted_at: Optional[datetime] = None
    ) -> DocumentSubmission:
        """
        Move the current attempt from pending to sent.

        Raises:
            StateTransitionError: If the attempt is not pending (double submission)
        """
        document = self.get(document_key)
        submission = document.current_submission

        if submission.status != DocumentStatus.PENDING.value or not self._transition(
            submission,
            DocumentStatus.PENDING,
            DocumentStatus.SENT,
            submitted_at=submitted_at or _now(),
            submitted_xml=xml_payload,
        ):
            self.db.rollback()
            raise StateTransitionError(
                f"Document {document_key} attempt {submission.attempt} cannot be submitted "
                f"from status '{submission.status}'",
                details={"status": submission.status, "attempt": submission.attempt}
            )

        self._append_event(
            document, DocumentEventType.SUBMITTED, submission.attempt,
            DocumentStatus.PENDING.value, DocumentStatus.SENT.value, gateway_response
        )
        self.db.commit()
        self.db.refresh(submission)

        audit_logger.log_document_lifecycle(
            DocumentEventType.SUBMITTED.value, document_key, account_id=document.account_id,
            attempt=submission.attempt, from_status=DocumentStatus.PENDING.value,
            to_status=DocumentStatus.SENT.value
        )
        return submission

    def _require_submitted(self, document: Document) -> DocumentSubmission:
        submission = document.current_submission
        if submission.status == DocumentStatus.PENDING.value:
            raise SubmissionOrderError(
                f"Document {document.document_key} has not been submitted",
                details={"attempt": submission.attempt}
            )
        return submission

    def record_response(self, document_key: str, response: Dict[str, Any]) -> DocumentSubmission:
        """
        Apply a Hacienda verdict to the current attempt.

        A non-terminal verdict (recibido, procesando) is logged and leaves the
        attempt in sent.

        Raises:
            SubmissionOrderError: If nothing was submitted yet
            StateTransitionError: If the attempt already holds a verdict
        """
        document = self.get(document_key)
        submission = self._require_submitted(document)

        if submission.status != DocumentStatus.SENT.value:
            raise StateTransitionError(
                f"Document {document_key} attempt {submission.attempt} is already '{submission.status}'",
                details={"status": submission.status, "attempt": submission.attempt}
            )

        verdict = remote_verdict(response)
        target = HACIENDA_VERDICTS.get(verdict)

        if target is None:
            submission.remote_status = verdict
            self._append_event(
                document, DocumentEventType.RESPONSE, submission.attempt,
                DocumentStatus.SENT.value, DocumentStatus.SENT.value, response
            )
            self.db.commit()
            self.db.refresh(submission)
            logger.info(f"Non-terminal verdict '{verdict}' for document {document_key}")
            return submission

        if not self._transition(
            submission,
            DocumentStatus.SENT,
            target,
            responded_at=_now(),
            response_payload=response,
            remote_status=verdict,
        ):
            self.db.rollback()
            raise StateTransitionError(f"Document {document_key} verdict was recorded concurrently")

        self._append_event(
            document, DocumentEventType.RESPONSE, submission.attempt,
            DocumentStatus.SENT.value, target.value, response
        )
        self.db.commit()
        self.db.refresh(submission)

        audit_logger.log_document_lifecycle(
            DocumentEventType.RESPONSE.value, document_key, account_id=document.account_id,
            attempt=submission.attempt, from_status=DocumentStatus.SENT.value, to_status=target.value
        )
        return submission

    def record_poll(self, document_key: str, poll_response: Dict[str, Any]) -> DocumentSubmission:
        """
        Store advisory poll data. The attempt status is never changed here.

        Raises:
            SubmissionOrderError: If nothing was submitted yet
        """
        document = self.get(document_key)
        submission = self._require_submitted(document)

        submission.last_polled_at = _now()
        verdict = remote_verdict(poll_response)
        if verdict is not None:
            submission.remote_status = verdict
        self._append_event(
            document, DocumentEventType.POLL, submission.attempt,
            submission.status, submission.status, poll_response
        )
        self.db.commit()
        self.db.refresh(submission)
        return submission

    def record_confirmation(self, document_key: str, result: Any) -> DocumentSubmission:
        """
        Log a forwarded confirmation and its raw answer.

        Raises:
            SubmissionOrderError: If nothing was submitted yet
        """
        document = self.get(document_key)
        submission = self._require_submitted(document)

        self._append_event(
            document, DocumentEventType.CONFIRMATION, submission.attempt,
            submission.status, submission.status,
            result if isinstance(result, dict) else {"response": result}
        )
        self.db.commit()
        return submission

    def resubmit(self, document_key: str) -> DocumentSubmission:
        """
        Open a new pending attempt after an error verdict.

        Raises:
            StateTransitionError: If the current attempt is not in error
        """
        document = self.get(document_key)
        previous = document.current_submission

        if previous.status != DocumentStatus.ERROR.value:
            raise StateTransitionError(
                f"Only documents in 'error' can be resubmitted; {document_key} is '{previous.status}'",
                details={"status": previous.status, "attempt": previous.attempt}
            )

        submission = DocumentSubmission(
            document_id=document.id,
            attempt=previous.attempt + 1,
            status=DocumentStatus.PENDING.value,
        )
        self.db.add(submission)
        self._append_event(
            document, DocumentEventType.RESUBMISSION, submission.attempt,
            DocumentStatus.ERROR.value, DocumentStatus.PENDING.value
        )
        try:
            self.db.commit()
        except IntegrityError as e:
            # Another resubmission created the same attempt number
            self.db.rollback()
            raise StateTransitionError(f"Document {document_key} was resubmitted concurrently") from e

        self.db.refresh(submission)
        audit_logger.log_document_lifecycle(
            DocumentEventType.RESUBMISSION.value, document_key, account_id=document.account_id,
            attempt=submission.attempt, from_status=DocumentStatus.ERROR.value,
            to_status=DocumentStatus.PENDING.value
        )
        return submission
