"""
Stored signing certificates. Key material and password are encrypted at rest.
"""
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from app.core.database import Base
from app.models.document import utcnow


class Certificate(Base):
    __tablename__ = "certificates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(String(100), nullable=False, index=True)
    name = Column(String(100), nullable=True)

    # Metadata extracted on upload
    subject = Column(String(500), nullable=False)
    issuer = Column(String(500), nullable=False)
    serial_number = Column(String(100), nullable=False)
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_to = Column(DateTime(timezone=True), nullable=False)
    fingerprint = Column(String(64), nullable=False, index=True,
                         comment="SHA-256 of the X.509 certificate")
    hacienda_compatible = Column(Boolean, nullable=False, default=False,
                                 comment="RSA >= 2048 with digital signature usage")

    # AES-256-GCM, base64(nonce + ciphertext + tag)
    p12_encrypted = Column(Text, nullable=False)
    password_encrypted = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Certificate(id={self.id}, fingerprint='{self.fingerprint[:12]}')>"
