"""
Certificate management service.
Handles P12 registration, validation, encrypted storage and scoped access to
decrypted key material for signing.
"""
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import audit_logger
from app.models.certificate import Certificate
from app.utils.crypto_utils import SecureDataManager
from app.utils.error_responses import CertificateError, CertificateNotFoundError
from app.utils.xml_signature import P12CertificateManager

# One lock per certificate id; decrypted material is read by one caller at a time
_certificate_locks: Dict[int, threading.Lock] = {}
_locks_guard = threading.Lock()


def _certificate_lock(certificate_id: int) -> threading.Lock:
    with _locks_guard:
        return _certificate_locks.setdefault(certificate_id, threading.Lock())


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class CertificateService:
    """
    Stores P12 certificates encrypted with AES-256-GCM.

    Raw key material and passwords never leave this service except inside
    ``signing_material``.
    """

    def __init__(self, db: Session, data_manager: Optional[SecureDataManager] = None):
        self.db = db
        self.data_manager = data_manager or SecureDataManager()

    def register(
        self,
        account_id: str,
        p12_data: bytes,
        password: str,
        name: Optional[str] = None
    ) -> Certificate:
        """
        Validate and store a P12 certificate.

        Raises:
            CertificateError: If the container is too large, cannot be opened,
                is expired, or cannot sign
        """
        if not p12_data:
            raise CertificateError("Certificate file is empty", field="p12")
        if len(p12_data) > settings.MAX_CERTIFICATE_SIZE:
            raise CertificateError(
                f"Certificate size exceeds maximum allowed ({settings.MAX_CERTIFICATE_SIZE} bytes)",
                field="p12"
            )

        try:
            manager = P12CertificateManager(p12_data, password)
            is_valid, error_msg = manager.validate_certificate()
            if not is_valid:
                raise CertificateError(f"Certificate validation failed: {error_msg}", field="p12")
        except CertificateError as e:
            audit_logger.log_certificate_event("rejected", account_id, success=False, error_message=e.message)
            raise

        info = manager.get_certificate_info()
        certificate = Certificate(
            account_id=account_id,
            name=name,
            subject=info["subject"],
            issuer=info["issuer"],
            serial_number=info["serial_number"],
            valid_from=info["not_valid_before"],
            valid_to=info["not_valid_after"],
            fingerprint=info["fingerprint_sha256"],
            hacienda_compatible=info["hacienda_compatible"],
            p12_encrypted=self.data_manager.encrypt_certificate(p12_data),
            password_encrypted=self.data_manager.encrypt_password(password),
        )
        self.db.add(certificate)
        self.db.commit()
        self.db.refresh(certificate)

        audit_logger.log_certificate_event(
            "registered", account_id,
            certificate_id=certificate.id,
            fingerprint=certificate.fingerprint,
            expiry_date=certificate.valid_to
        )
        return certificate

    def get(self, certificate_id: int, account_id: Optional[str] = None) -> Certificate:
        """
        Raises:
            CertificateNotFoundError: If missing or owned by another account
        """
        query = self.db.query(Certificate).filter(Certificate.id == certificate_id)
        if account_id is not None:
            query = query.filter(Certificate.account_id == account_id)
        certificate = query.first()
        if certificate is None:
            raise CertificateNotFoundError(certificate_id)
        return certificate

    @contextmanager
    def signing_material(self, certificate_id: int) -> Iterator[Tuple[bytes, str]]:
        """
        Yield the decrypted ``(p12_data, password)`` under the certificate lock.

        Raises:
            CertificateNotFoundError: If the certificate does not exist
            CertificateError: If it expired or cannot be decrypted
        """
        certificate = self.get(certificate_id)

        if datetime.now(timezone.utc) > _as_utc(certificate.valid_to):
            raise CertificateError(f"Certificate {certificate_id} has expired")

        with _certificate_lock(certificate.id):
            try:
                p12_data = self.data_manager.decrypt_certificate(certificate.p12_encrypted)
                password = self.data_manager.decrypt_password(certificate.password_encrypted)
            except ValueError as e:
                audit_logger.log_certificate_event(
                    "decryption_failed", certificate.account_id,
                    certificate_id=certificate.id, success=False, error_message=str(e)
                )
                raise CertificateError(f"Stored certificate {certificate_id} cannot be decrypted") from e

            try:
                yield p12_data, password
            finally:
                del p12_data, password
