"""
Core enums for Costa Rica electronic documents.
Codes follow the Ministry of Finance v4.4 document format.
"""
from enum import Enum
from typing import Optional


class DocumentType(str, Enum):
    """Document types according to Costa Rican tax authority."""
    FACTURA_ELECTRONICA = "01"
    NOTA_DEBITO_ELECTRONICA = "02"
    NOTA_CREDITO_ELECTRONICA = "03"
    TIQUETE_ELECTRONICO = "04"
    FACTURA_COMPRA = "08"
    FACTURA_EXPORTACION = "09"
    RECIBO_PAGO = "10"


# documentName as sent by clients -> document type code
DOCUMENT_NAMES = {
    "FacturaElectronica": DocumentType.FACTURA_ELECTRONICA,
    "NotaDebitoElectronica": DocumentType.NOTA_DEBITO_ELECTRONICA,
    "NotaCreditoElectronica": DocumentType.NOTA_CREDITO_ELECTRONICA,
    "TiqueteElectronico": DocumentType.TIQUETE_ELECTRONICO,
    "FacturaElectronicaCompra": DocumentType.FACTURA_COMPRA,
    "FacturaElectronicaExportacion": DocumentType.FACTURA_EXPORTACION,
    "ReciboElectronicoPago": DocumentType.RECIBO_PAGO,
}

TICKET_DOCUMENT_NAME = "TiqueteElectronico"


def document_type_for_name(document_name: str) -> Optional[DocumentType]:
    return DOCUMENT_NAMES.get(document_name)


class DocumentStatus(str, Enum):
    """Life cycle of a submission attempt"""
    PENDING = "pending"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ERROR = "error"


# Hacienda "ind-estado" values -> local status. Absent keys are non-terminal.
HACIENDA_VERDICTS = {
    "aceptado": DocumentStatus.ACCEPTED,
    "rechazado": DocumentStatus.REJECTED,
    "error": DocumentStatus.ERROR,
}


class DocumentEventType(str, Enum):
    """Audit events appended to a document history"""
    CREATED = "created"
    SUBMITTED = "submitted"
    RESPONSE = "response"
    POLL = "poll"
    CONFIRMATION = "confirmation"
    RESUBMISSION = "resubmission"


class SigningMode(str, Enum):
    NONE = "none"
    SIMULATED = "simulated"
    P12 = "p12"
