"""
Document persistence: immutable document identity, one row per submission
attempt, and an append-only event log
"""
from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import relationship

from app.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Document(Base):
    """
    Electronic document keyed by its 50-digit clave.

    Identity columns never change after insert; state lives in submissions.
    """
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)

    account_id = Column(String(100), nullable=False, index=True,
                        comment="Account that owns the document")

    # Identification
    document_key = Column(String(50), nullable=False, unique=True, index=True,
                          comment="50-digit document key")
    document_type = Column(String(2), nullable=False, comment="Document type code: 01-10")
    document_name = Column(String(40), nullable=False, comment="Root element name, e.g. FacturaElectronica")
    consecutive_number = Column(String(20), nullable=False,
                                comment="Branch(3)+Terminal(5)+DocType(2)+Sequential(10)")
    issue_date = Column(DateTime(timezone=True), nullable=False)

    # Parties, kept for submission metadata
    emitter_name = Column(String(100), nullable=False)
    emitter_identification_type = Column(String(2), nullable=False)
    emitter_identification = Column(String(20), nullable=False, index=True)
    receiver_name = Column(String(100), nullable=True)
    receiver_identification_type = Column(String(2), nullable=True)
    receiver_identification = Column(String(20), nullable=True)

    # XML storage
    xml = Column(Text, nullable=False, comment="Generated unsigned XML")
    signed_xml = Column(Text, nullable=True, comment="XML with signature, when a signer is configured")

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    submissions = relationship(
        "DocumentSubmission",
        back_populates="document",
        order_by="DocumentSubmission.attempt",
        cascade="all, delete-orphan"
    )
    events = relationship(
        "DocumentEvent",
        back_populates="document",
        order_by="DocumentEvent.id",
        cascade="all, delete-orphan"
    )

    @property
    def current_submission(self) -> "DocumentSubmission":
        return self.submissions[-1]

    def __repr__(self):
        return f"<Document(key='{self.document_key}', type='{self.document_type}')>"


class DocumentSubmission(Base):
    """One submission attempt: pending -> sent -> accepted | rejected | error"""
    __tablename__ = "document_submissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    attempt = Column(Integer, nullable=False, comment="1 for the first submission, +1 per resubmission")

    status = Column(String(20), nullable=False, default="pending", index=True)

    # Outbound payload
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    submitted_xml = Column(Text, nullable=True)

    # Verdict
    responded_at = Column(DateTime(timezone=True), nullable=True)
    response_payload = Column(JSON, nullable=True, comment="Raw Hacienda verdict")

    # Advisory data from polls, never drives the state
    last_polled_at = Column(DateTime(timezone=True), nullable=True)
    remote_status = Column(String(30), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    document = relationship("Document", back_populates="submissions")

    __table_args__ = (
        UniqueConstraint("document_id", "attempt", name="uq_document_submission_attempt"),
    )

    def __repr__(self):
        return f"<DocumentSubmission(document_id={self.document_id}, attempt={self.attempt}, status='{self.status}')>"


class DocumentEvent(Base):
    """Append-only audit record of a document transition or exchange"""
    __tablename__ = "document_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    attempt = Column(Integer, nullable=True)
    event_type = Column(String(20), nullable=False)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=True)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    document = relationship("Document", back_populates="events")

    __table_args__ = (
        Index("idx_document_events_document", "document_id", "id"),
    )
