"""
Error taxonomy for the Hacienda document broker.

Every error carries a stable machine-readable ``error_code`` and the HTTP status
the boundary layer answers with. Messages never include key material or
decrypted passwords.
"""
from typing import Any, Dict, Optional


class APIError(Exception):
    """
    Base API error class with structured error information
    """
    error_code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "success": False,
            "error": self.message,
            "code": self.error_code,
        }
        if self.field:
            body["field"] = self.field
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(APIError):
    """Client payload is malformed. Never retried."""
    error_code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, field: str, message: str, **kwargs):
        super().__init__(message, field=field, **kwargs)


class KeyFormatError(APIError):
    """A document key field does not fit its fixed width"""
    error_code = "KEY_FORMAT_ERROR"
    status_code = 400


class SignatureError(APIError):
    """Signing failed: certificate missing, expired or wrong password"""
    error_code = "SIGNATURE_ERROR"
    status_code = 400

    def __init__(self, reason: str, **kwargs):
        super().__init__(reason, **kwargs)
        self.reason = reason


class CertificateError(APIError):
    """Stored credential invalid or expired"""
    error_code = "CERTIFICATE_ERROR"
    status_code = 400


class NotFoundError(APIError):
    error_code = "RESOURCE_NOT_FOUND"
    status_code = 404


class DocumentNotFoundError(NotFoundError):
    error_code = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_key: str):
        super().__init__(f"Document {document_key} not found")
        self.document_key = document_key


class CertificateNotFoundError(NotFoundError):
    error_code = "CERTIFICATE_NOT_FOUND"

    def __init__(self, certificate_id: Any):
        super().__init__(f"Certificate {certificate_id} not found")


class DuplicateDocumentError(APIError):
    """A document with the same key was already registered"""
    error_code = "DUPLICATE_DOCUMENT"
    status_code = 409

    def __init__(self, document_key: str):
        super().__init__(f"Document {document_key} already exists", field="documentKey")
        self.document_key = document_key


class StateTransitionError(APIError):
    """Requested transition is not legal from the current state"""
    error_code = "INVALID_STATE_TRANSITION"
    status_code = 409


class SubmissionOrderError(StateTransitionError):
    """A response, poll or confirmation arrived before any submission"""
    error_code = "SUBMISSION_ORDER_ERROR"


class HaciendaError(APIError):
    """
    Remote tax-authority failure. Potentially retryable by the caller,
    never retried by this service.
    """
    error_code = "HACIENDA_ERROR"
    status_code = 502

    def __init__(
        self,
        message: str,
        remote_status: Optional[int] = None,
        remote_body: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", None) or {}
        if remote_status is not None:
            details["remote_status"] = remote_status
        if remote_body:
            details["remote_body"] = remote_body[:500]
        super().__init__(message, details=details, **kwargs)
        self.remote_status = remote_status


class HaciendaAuthenticationError(HaciendaError):
    error_code = "HACIENDA_AUTHENTICATION_ERROR"


class HaciendaTimeoutError(HaciendaError):
    error_code = "HACIENDA_TIMEOUT"


class HaciendaNetworkError(HaciendaError):
    error_code = "HACIENDA_NETWORK_ERROR"


class HaciendaRejectedError(HaciendaError):
    """Hacienda answered with a 4xx/5xx status"""
    error_code = "HACIENDA_REJECTED"
